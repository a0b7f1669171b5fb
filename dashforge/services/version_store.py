"""
Versioned storage of dashboard documents with optimistic concurrency.

Every dashboard has an append-only history of immutable snapshots. A commit
names the version it was computed against; if that is no longer the current
version the commit fails with VERSION_CONFLICT and nothing is written. Of two
concurrent commits against the same version exactly one succeeds.

Implementations:
- InMemorySpecVersionStore: per-process, serialized with an asyncio.Lock.
- PostgresSpecVersionStore: asyncpg; compare-and-swap inside a transaction,
  backed by the UNIQUE (dashboard_id, version) constraint.

Registries map dashboard ids to stores:
- InMemorySpecVersionRegistry
- PostgresSpecVersionRegistry

The store stamps `version` into each committed document, so the document of
snapshot N always carries {"version": N}.

Usage:
    registry = InMemorySpecVersionRegistry()
    store = await registry.create("sales", {"title": "Sales"})
    record = await store.commit(1, new_document, note="Add CPL card")
"""

import asyncio
import copy
import json
import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import asyncpg
from asyncpg import Pool

from dashforge.core.errors import NotFoundError, ServiceError, VersionConflictError
from dashforge.models.enums import ErrorCode
from dashforge.models.schemas import VersionRecord
from dashforge.sql.version_queries import (
    get_create_versions_table_query,
    get_dashboard_exists_query,
    get_history_query,
    get_insert_version_query,
    get_latest_version_query,
    get_max_version_query,
    get_version_query,
)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def stamp_version(document: Any, version: int) -> Any:
    """Deep-copy a document and set its `version` member."""
    stamped = copy.deepcopy(document)
    if isinstance(stamped, dict):
        stamped['version'] = version
    return stamped


def rollback_note(target_version: int) -> str:
    return f"Rollback to version {target_version}"


# =============================================================================
# Store Interface
# =============================================================================

class SpecVersionStore(ABC):
    """
    Versioned document store for a single dashboard.

    Returned records are independent snapshots: mutating a returned document
    never affects stored state.
    """

    def __init__(self, dashboard_id: str) -> None:
        self.dashboard_id = dashboard_id

    @abstractmethod
    async def current(self) -> VersionRecord:
        """Latest snapshot."""

    @abstractmethod
    async def get(self, version: int) -> VersionRecord:
        """
        Snapshot by version number.

        Raises:
            NotFoundError: If the version does not exist.
        """

    @abstractmethod
    async def commit(
        self,
        expected_version: int,
        document: Dict[str, Any],
        note: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> VersionRecord:
        """
        Append `document` as version expected_version + 1.

        Raises:
            VersionConflictError: If `expected_version` is not the current version.
        """

    @abstractmethod
    async def history(self, limit: int = 20) -> List[VersionRecord]:
        """Up to `limit` snapshots, newest first."""

    async def rollback(
        self,
        target_version: int,
        created_by: Optional[str] = None,
    ) -> VersionRecord:
        """
        Commit a copy of an earlier snapshot as a new version.

        History is never rewritten: rolling back from 5 to 2 creates version 6
        whose content equals version 2 (apart from the stamped version).
        """
        target = await self.get(target_version)
        current = await self.current()
        logger.info(
            f"Rolling back dashboard {self.dashboard_id} from v{current.version} to v{target_version}"
        )
        return await self.commit(
            current.version,
            target.document,
            note=rollback_note(target_version),
            created_by=created_by,
        )


# =============================================================================
# In-Memory Implementation
# =============================================================================

class InMemorySpecVersionStore(SpecVersionStore):
    """Process-local store. Commits are serialized by an asyncio.Lock."""

    def __init__(
        self,
        dashboard_id: str,
        document: Dict[str, Any],
        created_by: Optional[str] = None,
        note: Optional[str] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        super().__init__(dashboard_id)
        self._clock = clock
        self._lock = asyncio.Lock()
        self._records: List[VersionRecord] = [
            VersionRecord(
                version=1,
                document=stamp_version(document, 1),
                createdAt=clock(),
                createdBy=created_by,
                note=note,
            )
        ]

    @staticmethod
    def _snapshot(record: VersionRecord) -> VersionRecord:
        return record.model_copy(deep=True)

    async def current(self) -> VersionRecord:
        return self._snapshot(self._records[-1])

    async def get(self, version: int) -> VersionRecord:
        if 1 <= version <= len(self._records):
            return self._snapshot(self._records[version - 1])
        raise NotFoundError(
            f"Version {version} of dashboard {self.dashboard_id} not found",
            {"dashboardId": self.dashboard_id, "version": version},
        )

    async def commit(
        self,
        expected_version: int,
        document: Dict[str, Any],
        note: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> VersionRecord:
        async with self._lock:
            actual = self._records[-1].version
            if expected_version != actual:
                logger.info(
                    f"Version conflict on dashboard {self.dashboard_id}: "
                    f"expected v{expected_version}, current v{actual}"
                )
                raise VersionConflictError(expected_version, actual)
            new_version = actual + 1
            record = VersionRecord(
                version=new_version,
                document=stamp_version(document, new_version),
                createdAt=self._clock(),
                createdBy=created_by,
                note=note,
            )
            self._records.append(record)
        logger.info(f"Committed dashboard {self.dashboard_id} v{new_version}")
        return self._snapshot(record)

    async def history(self, limit: int = 20) -> List[VersionRecord]:
        newest_first = list(reversed(self._records))[:max(limit, 0)]
        return [self._snapshot(r) for r in newest_first]


# =============================================================================
# PostgreSQL Implementation
# =============================================================================

def _record_from_row(row: Any) -> VersionRecord:
    document = row['dashboard_spec']
    if isinstance(document, str):
        document = json.loads(document)
    return VersionRecord(
        version=row['version'],
        document=document,
        createdAt=row['created_at'],
        createdBy=row['created_by'],
        note=row['notes'],
    )


class PostgresSpecVersionStore(SpecVersionStore):
    """
    asyncpg-backed store.

    commit() runs in a transaction: it locks the latest row, compares versions
    and inserts the next one. A UniqueViolationError (another process inserted
    the same version first) is reported as VERSION_CONFLICT.
    """

    def __init__(self, dashboard_id: str, pool: Pool) -> None:
        super().__init__(dashboard_id)
        self._pool = pool

    async def current(self) -> VersionRecord:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(get_latest_version_query(), self.dashboard_id)
        if row is None:
            raise NotFoundError(
                f"Dashboard {self.dashboard_id} not found",
                {"dashboardId": self.dashboard_id},
            )
        return _record_from_row(row)

    async def get(self, version: int) -> VersionRecord:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(get_version_query(), self.dashboard_id, version)
        if row is None:
            raise NotFoundError(
                f"Version {version} of dashboard {self.dashboard_id} not found",
                {"dashboardId": self.dashboard_id, "version": version},
            )
        return _record_from_row(row)

    async def commit(
        self,
        expected_version: int,
        document: Dict[str, Any],
        note: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> VersionRecord:
        async with self._pool.acquire() as conn:
            try:
                async with conn.transaction():
                    latest = await conn.fetchrow(
                        get_latest_version_query(for_update=True), self.dashboard_id
                    )
                    if latest is None:
                        raise NotFoundError(
                            f"Dashboard {self.dashboard_id} not found",
                            {"dashboardId": self.dashboard_id},
                        )
                    if latest['version'] != expected_version:
                        raise VersionConflictError(expected_version, latest['version'])
                    new_version = expected_version + 1
                    row = await conn.fetchrow(
                        get_insert_version_query(),
                        self.dashboard_id,
                        new_version,
                        json.dumps(stamp_version(document, new_version)),
                        created_by,
                        note,
                    )
            except asyncpg.UniqueViolationError:
                actual = await conn.fetchval(
                    get_max_version_query(),
                    self.dashboard_id,
                )
                raise VersionConflictError(expected_version, actual or expected_version + 1)
        logger.info(f"Committed dashboard {self.dashboard_id} v{new_version}")
        return _record_from_row(row)

    async def history(self, limit: int = 20) -> List[VersionRecord]:
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(get_history_query(), self.dashboard_id, max(limit, 0))
        return [_record_from_row(r) for r in rows]


# =============================================================================
# Registries
# =============================================================================

class SpecVersionRegistry(ABC):
    """Maps dashboard ids to their version stores."""

    @abstractmethod
    async def create(
        self,
        document: Dict[str, Any],
        dashboard_id: Optional[str] = None,
        created_by: Optional[str] = None,
        note: Optional[str] = None,
    ) -> SpecVersionStore:
        """
        Register a new dashboard at version 1.

        Raises:
            ServiceError: VALIDATION_ERROR if the id is already taken.
        """

    @abstractmethod
    async def get(self, dashboard_id: str) -> SpecVersionStore:
        """
        Raises:
            NotFoundError: If the dashboard does not exist.
        """


def _duplicate(dashboard_id: str) -> ServiceError:
    return ServiceError(
        ErrorCode.VALIDATION_ERROR,
        f"Dashboard {dashboard_id} already exists",
        {"dashboardId": dashboard_id},
    )


class InMemorySpecVersionRegistry(SpecVersionRegistry):
    """Process-local registry of InMemorySpecVersionStore."""

    def __init__(self) -> None:
        self._stores: Dict[str, InMemorySpecVersionStore] = {}
        self._lock = asyncio.Lock()

    async def create(
        self,
        document: Dict[str, Any],
        dashboard_id: Optional[str] = None,
        created_by: Optional[str] = None,
        note: Optional[str] = None,
    ) -> SpecVersionStore:
        dashboard_id = dashboard_id or uuid.uuid4().hex
        async with self._lock:
            if dashboard_id in self._stores:
                raise _duplicate(dashboard_id)
            store = InMemorySpecVersionStore(dashboard_id, document, created_by, note)
            self._stores[dashboard_id] = store
        logger.info(f"Created dashboard {dashboard_id}")
        return store

    async def get(self, dashboard_id: str) -> SpecVersionStore:
        store = self._stores.get(dashboard_id)
        if store is None:
            raise NotFoundError(
                f"Dashboard {dashboard_id} not found",
                {"dashboardId": dashboard_id},
            )
        return store


class PostgresSpecVersionRegistry(SpecVersionRegistry):
    """Registry backed by the dashboard_spec_versions table."""

    def __init__(self, pool: Pool) -> None:
        self._pool = pool

    async def ensure_schema(self) -> None:
        """Create the versions table when it does not exist."""
        async with self._pool.acquire() as conn:
            await conn.execute(get_create_versions_table_query())

    async def create(
        self,
        document: Dict[str, Any],
        dashboard_id: Optional[str] = None,
        created_by: Optional[str] = None,
        note: Optional[str] = None,
    ) -> SpecVersionStore:
        dashboard_id = dashboard_id or uuid.uuid4().hex
        async with self._pool.acquire() as conn:
            try:
                await conn.fetchrow(
                    get_insert_version_query(),
                    dashboard_id,
                    1,
                    json.dumps(stamp_version(document, 1)),
                    created_by,
                    note,
                )
            except asyncpg.UniqueViolationError:
                raise _duplicate(dashboard_id)
        logger.info(f"Created dashboard {dashboard_id}")
        return PostgresSpecVersionStore(dashboard_id, self._pool)

    async def get(self, dashboard_id: str) -> SpecVersionStore:
        async with self._pool.acquire() as conn:
            exists = await conn.fetchval(get_dashboard_exists_query(), dashboard_id)
        if not exists:
            raise NotFoundError(
                f"Dashboard {dashboard_id} not found",
                {"dashboardId": dashboard_id},
            )
        return PostgresSpecVersionStore(dashboard_id, self._pool)
