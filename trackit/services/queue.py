"""Durable queue of local metric and image entries awaiting reconciliation."""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from trackit.core.errors import EntryNotFoundError, InvalidTransitionError, StorageError
from trackit.core.observable import StateFlow
from trackit.models.database import QueuedEntry
from trackit.models.sync import (
    PAYLOAD_FORMAT_VERSION,
    EntryKind,
    ImagePayload,
    MetricPayload,
    Payload,
    SyncEntry,
    SyncStatus,
    payload_from_document,
    payload_to_document,
)

logger = logging.getLogger(__name__)

UPLOADABLE = (SyncStatus.PENDING.value, SyncStatus.FAILED.value)
PURGEABLE = (SyncStatus.DELETED_LOCALLY.value, SyncStatus.DELETED_ON_SERVER.value)

DEFERRED_DELETE = {"version": PAYLOAD_FORMAT_VERSION, "deleted": True}


def _kind_of(payload: Payload) -> EntryKind:
    return EntryKind.METRIC if isinstance(payload, MetricPayload) else EntryKind.IMAGE


def _apply_payload(row: QueuedEntry, payload: Payload) -> None:
    """Copy payload fields onto a row."""
    row.date = payload.date
    if isinstance(payload, MetricPayload):
        row.metric_type_id = payload.metric_type_id
        row.value = payload.value
        row.is_apple_health = payload.is_apple_health
    else:
        row.file_path = payload.file_path
        row.image_type_id = payload.image_type_id


def _payload_of(row: QueuedEntry) -> Payload:
    if row.kind == EntryKind.METRIC.value:
        return MetricPayload(
            metric_type_id=row.metric_type_id,
            value=row.value,
            date=row.date,
            is_apple_health=bool(row.is_apple_health),
        )
    return ImagePayload(file_path=row.file_path, image_type_id=row.image_type_id, date=row.date)


def _to_entry(row: QueuedEntry) -> SyncEntry:
    return SyncEntry(
        local_id=row.local_id,
        kind=EntryKind(row.kind),
        payload=_payload_of(row),
        status=SyncStatus(row.status),
        server_id=row.server_id,
        created_at=row.created_at,
        updated_at=row.updated_at,
        last_sync_attempt=row.last_sync_attempt,
        has_deferred_edit=row.deferred_edit is not None,
    )


def _apply_deferred(row: QueuedEntry) -> bool:
    """
    Apply an edit that arrived while the entry was SYNCING.

    Returns True if there was one. The entry ends up PENDING (edit) or
    DELETED_LOCALLY (deletion).
    """
    document = row.deferred_edit
    if document is None:
        return False

    row.deferred_edit = None
    if document.get("deleted"):
        row.status = SyncStatus.DELETED_LOCALLY.value
        return True

    try:
        payload = payload_from_document(document)
    except (KeyError, TypeError, ValueError) as e:
        raise StorageError(f"Corrupt deferred edit for {row.local_id}: {e}") from e
    _apply_payload(row, payload)
    row.status = SyncStatus.PENDING.value
    return True


class EntryQueue:
    """
    Single source of truth for entries pending reconciliation.

    Writes are serialized through one lock, so status transitions for a
    local id never interleave. Every write is one transaction.
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker
        self._lock = asyncio.Lock()
        # Bumped on every local mutation (enqueue/delete), observed by the orchestrator
        self.revision: StateFlow[int] = StateFlow(0)

    @asynccontextmanager
    async def _write(self, action: str) -> AsyncIterator[AsyncSession]:
        async with self._lock:
            try:
                async with self.session_maker() as db:
                    yield db
                    await db.commit()
            except SQLAlchemyError as e:
                logger.error(f"Entry queue {action} failed: {e}")
                raise StorageError(f"Entry queue {action} failed") from e

    @asynccontextmanager
    async def _read(self, action: str) -> AsyncIterator[AsyncSession]:
        try:
            async with self.session_maker() as db:
                yield db
        except SQLAlchemyError as e:
            logger.error(f"Entry queue {action} failed: {e}")
            raise StorageError(f"Entry queue {action} failed") from e

    @staticmethod
    async def _find(db: AsyncSession, local_id: str) -> Optional[QueuedEntry]:
        result = await db.execute(select(QueuedEntry).where(QueuedEntry.local_id == local_id))
        return result.scalar_one_or_none()

    async def _require(self, db: AsyncSession, local_id: str) -> QueuedEntry:
        row = await self._find(db, local_id)
        if row is None:
            raise EntryNotFoundError(f"No queued entry with local id {local_id!r}")
        return row

    def _bump(self) -> None:
        self.revision.set(self.revision.value + 1)

    async def _enqueue(self, local_id: str, payload: Payload) -> SyncEntry:
        kind = _kind_of(payload)
        now = datetime.utcnow()

        async with self._write("enqueue") as db:
            row = await self._find(db, local_id)
            if row is None:
                row = QueuedEntry(
                    local_id=local_id,
                    kind=kind.value,
                    status=SyncStatus.PENDING.value,
                    created_at=now,
                    updated_at=now,
                )
                _apply_payload(row, payload)
                db.add(row)
            elif row.kind != kind.value:
                raise InvalidTransitionError(f"Entry {local_id!r} is a {row.kind}, not a {kind.value}")
            elif row.status == SyncStatus.SYNCING.value:
                # Applied once the in-flight upload completes
                row.deferred_edit = payload_to_document(payload)
                row.updated_at = now
                logger.info(f"Entry {local_id} is syncing, deferring edit")
            else:
                _apply_payload(row, payload)
                row.status = SyncStatus.PENDING.value
                row.deferred_edit = None
                row.updated_at = now
            await db.flush()
            entry = _to_entry(row)

        self._bump()
        return entry

    async def enqueue_metric(self, local_id: str, payload: MetricPayload) -> SyncEntry:
        """Insert or update a metric entry and mark it PENDING."""
        return await self._enqueue(local_id, payload)

    async def enqueue_image(self, local_id: str, payload: ImagePayload) -> SyncEntry:
        """Insert or update an image entry and mark it PENDING."""
        return await self._enqueue(local_id, payload)

    async def mark_syncing(self, local_id: str) -> SyncEntry:
        """Claim an entry for upload; returns it as currently stored."""
        async with self._write("mark_syncing") as db:
            row = await self._require(db, local_id)
            if row.status != SyncStatus.SYNCING.value:
                if row.status not in UPLOADABLE:
                    raise InvalidTransitionError(f"Cannot sync entry {local_id!r} in status {row.status}")
                row.status = SyncStatus.SYNCING.value
            return _to_entry(row)

    async def mark_synced(self, local_id: str, server_id: str) -> SyncEntry:
        async with self._write("mark_synced") as db:
            row = await self._require(db, local_id)
            row.server_id = server_id
            row.last_sync_attempt = datetime.utcnow()
            if _apply_deferred(row):
                logger.info(f"Applied deferred change to {local_id} after upload")
            else:
                row.status = SyncStatus.SYNCED.value
            return _to_entry(row)

    async def mark_failed(self, local_id: str) -> SyncEntry:
        async with self._write("mark_failed") as db:
            row = await self._require(db, local_id)
            row.last_sync_attempt = datetime.utcnow()
            if _apply_deferred(row):
                logger.info(f"Applied deferred change to {local_id} after failed upload")
            else:
                row.status = SyncStatus.FAILED.value
            return _to_entry(row)

    async def mark_deleted_locally(self, local_id: str) -> None:
        """Tombstone an entry; the server copy is deleted on the next pass."""
        async with self._write("mark_deleted_locally") as db:
            row = await self._require(db, local_id)
            if row.status in PURGEABLE:
                return
            if row.status == SyncStatus.SYNCING.value:
                row.deferred_edit = dict(DEFERRED_DELETE)
                logger.info(f"Entry {local_id} is syncing, deferring deletion")
            else:
                row.status = SyncStatus.DELETED_LOCALLY.value
            row.updated_at = datetime.utcnow()
        self._bump()

    async def mark_deleted_on_server(self, local_id: str) -> None:
        async with self._write("mark_deleted_on_server") as db:
            row = await self._require(db, local_id)
            if row.deferred_edit is not None:
                logger.warning(f"Entry {local_id} is gone on the server, discarding its deferred change")
            row.status = SyncStatus.DELETED_ON_SERVER.value
            row.deferred_edit = None

    async def purge(self, local_id: str) -> None:
        """Remove an entry permanently. Only tombstoned entries can be purged."""
        async with self._write("purge") as db:
            row = await self._require(db, local_id)
            if row.status not in PURGEABLE:
                raise InvalidTransitionError(f"Cannot purge entry {local_id!r} in status {row.status}")
            await db.execute(delete(QueuedEntry).where(QueuedEntry.id == row.id))

    async def finish_delete(self, local_id: str) -> bool:
        """
        Purge a tombstone once its server copy is gone.

        Returns False if the entry was edited again in the meantime. It then
        stays queued without a server id, so the next upload recreates it.
        """
        async with self._write("finish_delete") as db:
            row = await self._require(db, local_id)
            if row.status in PURGEABLE:
                await db.execute(delete(QueuedEntry).where(QueuedEntry.id == row.id))
                return True
            row.server_id = None
            logger.info(f"Entry {local_id} was re-enqueued during its deletion, it will be uploaded as new")
            return False

    async def upsert_synced(self, local_id: str, server_id: str, payload: Payload) -> SyncEntry:
        """Record an entry that originated on the server as SYNCED."""
        now = datetime.utcnow()
        async with self._write("upsert_synced") as db:
            row = await self._find(db, local_id)
            if row is None:
                row = QueuedEntry(local_id=local_id, kind=_kind_of(payload).value, created_at=now)
                db.add(row)
            _apply_payload(row, payload)
            row.server_id = server_id
            row.status = SyncStatus.SYNCED.value
            row.updated_at = now
            row.last_sync_attempt = now
            await db.flush()
            return _to_entry(row)

    async def reset_interrupted(self) -> int:
        """Return entries left SYNCING by an interrupted process to the queue."""
        async with self._write("reset_interrupted") as db:
            result = await db.execute(select(QueuedEntry).where(QueuedEntry.status == SyncStatus.SYNCING.value))
            rows = result.scalars().all()
            for row in rows:
                if not _apply_deferred(row):
                    row.status = SyncStatus.PENDING.value
        if rows:
            logger.warning(f"Reset {len(rows)} entries interrupted mid-sync")
        return len(rows)

    async def get(self, local_id: str) -> Optional[SyncEntry]:
        async with self._read("get") as db:
            row = await self._find(db, local_id)
            return _to_entry(row) if row else None

    async def find_by_server_id(self, kind: EntryKind, server_id: str) -> Optional[SyncEntry]:
        async with self._read("find_by_server_id") as db:
            result = await db.execute(
                select(QueuedEntry).where(QueuedEntry.kind == kind.value, QueuedEntry.server_id == server_id)
            )
            row = result.scalars().first()
            return _to_entry(row) if row else None

    async def _select(self, action: str, *statuses: str, kind: Optional[EntryKind] = None) -> list[SyncEntry]:
        stmt = select(QueuedEntry)
        if statuses:
            stmt = stmt.where(QueuedEntry.status.in_(statuses))
        if kind is not None:
            stmt = stmt.where(QueuedEntry.kind == kind.value)
        stmt = stmt.order_by(QueuedEntry.created_at, QueuedEntry.id)
        async with self._read(action) as db:
            result = await db.execute(stmt)
            return [_to_entry(row) for row in result.scalars().all()]

    async def pending_entries(self) -> list[SyncEntry]:
        """Entries needing upload (PENDING or FAILED), oldest first."""
        return await self._select("pending_entries", *UPLOADABLE)

    async def deleted_entries(self) -> list[SyncEntry]:
        """Local tombstones awaiting server-side deletion, oldest first."""
        return await self._select("deleted_entries", SyncStatus.DELETED_LOCALLY.value)

    async def synced_entries(self, kind: EntryKind) -> list[SyncEntry]:
        return await self._select("synced_entries", SyncStatus.SYNCED.value, kind=kind)

    async def all_entries(self) -> list[SyncEntry]:
        return await self._select("all_entries")

    async def counts(self) -> tuple[int, int]:
        """(pending, failed) where pending counts PENDING and FAILED entries."""
        async with self._read("counts") as db:
            result = await db.execute(
                select(QueuedEntry.status, func.count()).group_by(QueuedEntry.status)
            )
            by_status = {status: count for status, count in result.all()}
        failed = by_status.get(SyncStatus.FAILED.value, 0)
        pending = by_status.get(SyncStatus.PENDING.value, 0) + failed
        return pending, failed
