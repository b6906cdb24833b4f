"""Redis cache for loaded progress documents.

Reads for display (dashboard, file badges) hit the cache. Every successful
write stores the resulting document; reads only fill an empty slot. Cache
failures never fail a request.
"""

from typing import TYPE_CHECKING

import structlog
from pydantic import ValidationError
from redis.exceptions import RedisError

from langplayer.core.redis import progress_snapshot_key

from .models import UserProgressAggregate


if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = structlog.get_logger(__name__)


class ProgressSnapshotCache:
    """Aggregate snapshots keyed by user, with a TTL."""

    def __init__(self, redis: "Redis | None", ttl_seconds: int = 300):
        self.redis = redis
        self.ttl_seconds = ttl_seconds

    async def get(self, user_id: str) -> UserProgressAggregate | None:
        if self.redis is None:
            return None
        try:
            raw = await self.redis.get(progress_snapshot_key(user_id))
        except RedisError as e:
            logger.warning("progress_cache_read_failed", error=str(e))
            return None
        if raw is None:
            return None
        try:
            return UserProgressAggregate.model_validate_json(raw)
        except ValidationError:
            # Written by an older schema
            await self.invalidate(user_id)
            return None

    async def set(
        self,
        user_id: str,
        aggregate: UserProgressAggregate,
        only_if_absent: bool = False,
    ) -> None:
        """Store a snapshot.

        Writers overwrite; read-through fills pass ``only_if_absent`` so they
        never replace a snapshot stored by a write that committed after the
        read.
        """
        if self.redis is None:
            return
        try:
            await self.redis.set(
                progress_snapshot_key(user_id),
                aggregate.model_dump_json(),
                ex=self.ttl_seconds,
                nx=only_if_absent,
            )
        except RedisError as e:
            logger.warning("progress_cache_write_failed", error=str(e))

    async def invalidate(self, user_id: str) -> None:
        if self.redis is None:
            return
        try:
            await self.redis.delete(progress_snapshot_key(user_id))
        except RedisError as e:
            logger.warning("progress_cache_invalidate_failed", error=str(e))
