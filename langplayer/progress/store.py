"""Progress document stores.

A store keeps one versioned document per user and applies mutation sets
all-or-nothing, conditional on the version the caller read. A ``False``
return from ``apply`` means somebody else wrote first; the caller re-reads
and rebuilds its mutations.

Implementations:
- ``CassandraProgressStore``: JSON document per row, lightweight transaction
  on the ``version`` column
- ``MemoryProgressStore``: in-process dictionary, for tests and local runs
"""

import asyncio
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Protocol

import structlog
from cassandra import DriverException, OperationTimedOut
from cassandra.cluster import NoHostAvailable
from pydantic import ValidationError

from .exceptions import CorruptDocumentError, StoreUnavailableError
from .models import UserProgressAggregate
from .mutations import MutationSet, apply_mutations


if TYPE_CHECKING:
    from cassandra.cluster import Session

logger = structlog.get_logger(__name__)

_DRIVER_ERRORS = (DriverException, NoHostAvailable, OperationTimedOut)


@dataclass(frozen=True)
class StoredAggregate:
    """A document together with the version it was read at."""

    aggregate: UserProgressAggregate
    version: int


class ProgressStore(Protocol):
    """Per-user document store used by the aggregator."""

    async def get(self, user_id: str) -> StoredAggregate | None:
        """Read the user's document, None if absent."""
        ...

    async def create_if_absent(
        self, user_id: str, aggregate: UserProgressAggregate
    ) -> bool:
        """Insert the document unless one exists. True if inserted."""
        ...

    async def apply(
        self, user_id: str, mutations: MutationSet, expected_version: int
    ) -> bool:
        """Apply all mutations if the stored version still matches."""
        ...


class MemoryProgressStore:
    """Process-local store; documents are kept serialized like in Cassandra."""

    def __init__(self) -> None:
        self._documents: dict[str, tuple[str, int]] = {}
        self._lock = asyncio.Lock()

    async def get(self, user_id: str) -> StoredAggregate | None:
        row = self._documents.get(user_id)
        if row is None:
            return None
        document, version = row
        return StoredAggregate(UserProgressAggregate.model_validate_json(document), version)

    async def create_if_absent(
        self, user_id: str, aggregate: UserProgressAggregate
    ) -> bool:
        async with self._lock:
            if user_id in self._documents:
                return False
            self._documents[user_id] = (aggregate.model_dump_json(), 1)
            return True

    async def apply(
        self, user_id: str, mutations: MutationSet, expected_version: int
    ) -> bool:
        async with self._lock:
            row = self._documents.get(user_id)
            if row is None or row[1] != expected_version:
                return False
            current = UserProgressAggregate.model_validate_json(row[0])
            updated = apply_mutations(current, mutations)
            self._documents[user_id] = (updated.model_dump_json(), expected_version + 1)
            return True


class CassandraProgressStore:
    """Progress documents in the ``user_progress`` table."""

    def __init__(self, session: "Session", keyspace: str):
        """Initialize with Cassandra session."""
        self.session = session
        self.keyspace = keyspace
        self._prepare_statements()

    def _prepare_statements(self) -> None:
        """Prepare CQL statements for efficient execution."""
        self._get_document = self.session.prepare(f"""
            SELECT document, version FROM {self.keyspace}.user_progress
            WHERE user_id = ?
        """)

        self._insert_document = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.user_progress
            (user_id, document, version, created_at, updated_at)
            VALUES (?, ?, 1, ?, ?)
            IF NOT EXISTS
        """)

        self._update_document = self.session.prepare(f"""
            UPDATE {self.keyspace}.user_progress
            SET document = ?, version = ?, updated_at = ?
            WHERE user_id = ?
            IF version = ?
        """)

    async def get(self, user_id: str) -> StoredAggregate | None:
        try:
            result = await self.session.aexecute(self._get_document, [user_id])
        except _DRIVER_ERRORS as e:
            logger.error("progress_store_read_failed", user_id=user_id, error=str(e))
            raise StoreUnavailableError from e

        row = result.one()
        if row is None:
            return None

        try:
            aggregate = UserProgressAggregate.model_validate_json(row.document)
        except ValidationError as e:
            logger.error("progress_document_corrupt", user_id=user_id, error=str(e))
            raise CorruptDocumentError from e
        return StoredAggregate(aggregate, row.version or 0)

    async def create_if_absent(
        self, user_id: str, aggregate: UserProgressAggregate
    ) -> bool:
        now = datetime.now(UTC)
        try:
            result = await self.session.aexecute(
                self._insert_document,
                [user_id, aggregate.model_dump_json(), now, now],
            )
        except _DRIVER_ERRORS as e:
            logger.error("progress_store_create_failed", user_id=user_id, error=str(e))
            raise StoreUnavailableError from e
        return bool(result.was_applied)

    async def apply(
        self, user_id: str, mutations: MutationSet, expected_version: int
    ) -> bool:
        current = await self.get(user_id)
        if current is None or current.version != expected_version:
            return False

        updated = apply_mutations(current.aggregate, mutations)
        try:
            result = await self.session.aexecute(
                self._update_document,
                [
                    updated.model_dump_json(),
                    expected_version + 1,
                    datetime.now(UTC),
                    user_id,
                    expected_version,
                ],
            )
        except _DRIVER_ERRORS as e:
            # A timed out LWT may or may not have been applied
            logger.error(
                "progress_store_write_failed",
                user_id=user_id,
                expected_version=expected_version,
                error=str(e),
            )
            raise StoreUnavailableError from e
        return bool(result.was_applied)
