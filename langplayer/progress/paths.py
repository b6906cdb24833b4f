"""Language and level resolution from a navigation path.

The audio library is laid out as ``root / language / level / files``, so the
folder path the user is browsing determines what a played file counts toward.
"""

from collections.abc import Mapping, Sequence
from typing import NamedTuple

from .models import UNKNOWN_SEGMENT, PathSegment


class LanguageLevel(NamedTuple):
    language: str
    level: str


def _segment_name(segment: PathSegment | Mapping[str, object]) -> str:
    if isinstance(segment, PathSegment):
        return segment.name
    return str(segment["name"])


def resolve(path: Sequence[PathSegment | Mapping[str, object]]) -> LanguageLevel:
    """Map a path to ``(language, level)``.

    Segment 0 is the library root; segment 1 names the language and segment 2
    the level. Missing segments resolve to ``"Unknown"``.

    >>> resolve([PathSegment(name="Pimsleur"), PathSegment(name="French")])
    LanguageLevel(language='French', level='Unknown')
    """
    language = _segment_name(path[1]) if len(path) >= 2 else UNKNOWN_SEGMENT
    level = _segment_name(path[2]) if len(path) >= 3 else UNKNOWN_SEGMENT
    return LanguageLevel(language, level)
