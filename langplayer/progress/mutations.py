"""Typed field mutations over the progress document.

A write is expressed as a ``MutationSet``: an ordered list of ``SetField`` and
``IncrementField`` operations. Targets are ``FieldPath`` values built through
scope-specific constructors that check the field name against the document
models, so a misspelled field fails when the mutation is built instead of
silently creating a stray key in storage.
"""

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel

from .models import (
    AudioFileProgress,
    DailyActivity,
    LanguageProgress,
    LevelProgress,
    UserProgressAggregate,
)


class Scope(str, Enum):
    """Which part of the document a path addresses."""

    ROOT = "root"
    LANGUAGE = "language"
    LEVEL = "level"
    AUDIO_FILE = "audio_file"
    DAY = "day"


_SCOPE_MODELS: dict[Scope, type[BaseModel]] = {
    Scope.ROOT: UserProgressAggregate,
    Scope.LANGUAGE: LanguageProgress,
    Scope.LEVEL: LevelProgress,
    Scope.AUDIO_FILE: AudioFileProgress,
    Scope.DAY: DailyActivity,
}

_SCOPE_KEY_COUNT = {
    Scope.ROOT: 0,
    Scope.LANGUAGE: 1,
    Scope.LEVEL: 2,
    Scope.AUDIO_FILE: 1,
    Scope.DAY: 1,
}

# Keyed collections are only changed through entry paths
_COLLECTION_FIELDS = frozenset(
    {"languages_progress", "levels_progress", "audio_progress", "daily_activity"}
)


class InvalidFieldPathError(ValueError):
    """A FieldPath or mutation does not fit the document schema."""


class MutationError(RuntimeError):
    """A mutation set could not be applied to a document."""


@dataclass(frozen=True)
class FieldPath:
    """Address of a field (or of a whole keyed entry when ``field`` is None)."""

    scope: Scope
    keys: tuple[str, ...] = ()
    field: str | None = None

    def __post_init__(self) -> None:
        if len(self.keys) != _SCOPE_KEY_COUNT[self.scope]:
            msg = f"{self.scope.value} path needs {_SCOPE_KEY_COUNT[self.scope]} keys"
            raise InvalidFieldPathError(msg)
        if self.field is None:
            if self.scope is Scope.ROOT:
                raise InvalidFieldPathError("root path must name a field")
            return
        model = _SCOPE_MODELS[self.scope]
        if self.field not in model.model_fields:
            msg = f"{model.__name__} has no field {self.field!r}"
            raise InvalidFieldPathError(msg)
        if self.field in _COLLECTION_FIELDS:
            msg = f"{self.field!r} is a keyed collection, address its entries"
            raise InvalidFieldPathError(msg)

    @classmethod
    def root(cls, field: str) -> "FieldPath":
        return cls(Scope.ROOT, (), field)

    @classmethod
    def language(cls, language: str, field: str | None = None) -> "FieldPath":
        return cls(Scope.LANGUAGE, (language,), field)

    @classmethod
    def level(cls, language: str, level: str, field: str | None = None) -> "FieldPath":
        return cls(Scope.LEVEL, (language, level), field)

    @classmethod
    def audio_file(cls, file_id: str, field: str | None = None) -> "FieldPath":
        return cls(Scope.AUDIO_FILE, (file_id,), field)

    @classmethod
    def day(cls, day_key: str, field: str | None = None) -> "FieldPath":
        return cls(Scope.DAY, (day_key,), field)

    @property
    def model(self) -> type[BaseModel]:
        return _SCOPE_MODELS[self.scope]

    def is_numeric(self) -> bool:
        if self.field is None:
            return False
        return self.model.model_fields[self.field].annotation in (int, float)

    def __str__(self) -> str:
        if self.scope is Scope.ROOT:
            base = ""
        elif self.scope is Scope.LEVEL:
            base = f"languages_progress[{self.keys[0]}].levels_progress[{self.keys[1]}]"
        else:
            collection = {
                Scope.LANGUAGE: "languages_progress",
                Scope.AUDIO_FILE: "audio_progress",
                Scope.DAY: "daily_activity",
            }[self.scope]
            base = f"{collection}[{self.keys[0]}]"
        if self.field is None:
            return base
        return f"{base}.{self.field}" if base else self.field


@dataclass(frozen=True)
class SetField:
    target: FieldPath
    value: Any

    def __post_init__(self) -> None:
        if self.target.field is None and not isinstance(self.value, self.target.model):
            msg = f"{self.target} expects a {self.target.model.__name__}"
            raise InvalidFieldPathError(msg)


@dataclass(frozen=True)
class IncrementField:
    target: FieldPath
    delta: int | float

    def __post_init__(self) -> None:
        if not self.target.is_numeric():
            msg = f"{self.target} is not a numeric field"
            raise InvalidFieldPathError(msg)


Mutation = SetField | IncrementField


class MutationSet:
    """Ordered mutations applied together or not at all."""

    def __init__(self, mutations: Iterable[Mutation] = ()) -> None:
        self._mutations: list[Mutation] = list(mutations)

    def set(self, target: FieldPath, value: Any) -> "MutationSet":
        self._mutations.append(SetField(target, value))
        return self

    def increment(self, target: FieldPath, delta: int | float) -> "MutationSet":
        if delta:
            self._mutations.append(IncrementField(target, delta))
        return self

    def __iter__(self) -> Iterator[Mutation]:
        return iter(self._mutations)

    def __len__(self) -> int:
        return len(self._mutations)

    def __bool__(self) -> bool:
        return bool(self._mutations)

    def describe(self) -> list[str]:
        """Compact textual form for logs."""
        return [
            f"{m.target}={m.value!r}" if isinstance(m, SetField) else f"{m.target}+={m.delta}"
            for m in self._mutations
        ]


def _entries(document: UserProgressAggregate, path: FieldPath) -> dict[str, Any]:
    """Keyed collection that holds the entry addressed by ``path``."""
    if path.scope is Scope.LANGUAGE:
        return document.languages_progress
    if path.scope is Scope.AUDIO_FILE:
        return document.audio_progress
    if path.scope is Scope.DAY:
        return document.daily_activity
    language = document.languages_progress.get(path.keys[0])
    if language is None:
        msg = f"language {path.keys[0]!r} missing for {path}"
        raise MutationError(msg)
    return language.levels_progress


def _target_entry(document: UserProgressAggregate, path: FieldPath) -> BaseModel:
    if path.scope is Scope.ROOT:
        return document
    entry = _entries(document, path).get(path.keys[-1])
    if entry is None:
        msg = f"no entry at {path}"
        raise MutationError(msg)
    return entry


def _apply_one(document: UserProgressAggregate, mutation: Mutation) -> None:
    target = mutation.target
    if target.field is None:
        # SetField on a whole entry: insert or replace it
        _entries(document, target)[target.keys[-1]] = mutation.value.model_copy(
            deep=True
        )
        return

    entry = _target_entry(document, target)
    if isinstance(mutation, IncrementField):
        setattr(entry, target.field, getattr(entry, target.field) + mutation.delta)
    else:
        value = mutation.value
        if isinstance(value, BaseModel):
            value = value.model_copy(deep=True)
        elif isinstance(value, list):
            value = [v.model_copy(deep=True) if isinstance(v, BaseModel) else v for v in value]
        setattr(entry, target.field, value)


def apply_mutations(
    document: UserProgressAggregate,
    mutations: Iterable[Mutation],
) -> UserProgressAggregate:
    """Return a copy of ``document`` with every mutation applied in order.

    The input document is never modified, so a failure part-way leaves the
    caller's state untouched.

    Raises:
        MutationError: If a mutation addresses an entry that does not exist
    """
    result = document.model_copy(deep=True)
    for mutation in mutations:
        _apply_one(result, mutation)
    return result
