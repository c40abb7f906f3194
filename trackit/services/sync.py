"""Sync orchestration - reconciles the local entry queue with the server."""

import asyncio
import logging
import os
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path
from typing import Any, Coroutine, Optional

from sqlalchemy import desc, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from trackit.core.errors import (
    AuthError,
    ConflictError,
    EntryNotFoundError,
    InvalidTransitionError,
    NetworkError,
    ServerError,
    StorageError,
)
from trackit.core.observable import StateFlow
from trackit.models.metric_types import image_category, metric_type_for_id
from trackit.models.sync import EntryKind, ImagePayload, MetricPayload, SyncEntry, SyncState, SyncStatus
from trackit.models.sync_log import SyncLog
from trackit.services.auth import AuthSessionManager
from trackit.services.queue import EntryQueue
from trackit.services.remote import ImagesApi, MetricsApi

logger = logging.getLogger(__name__)

NETWORK_FAILURE_MESSAGE = "Network unavailable - changes will be synced when the connection is back"


@dataclass
class _PassReport:
    """Counters collected during one pass."""
    uploaded: int = 0
    failed: int = 0
    deleted: int = 0
    delete_failures: int = 0
    removed_on_server: int = 0
    downloaded: int = 0
    network_failures: int = 0
    auth_error: Optional[str] = None
    session_lost: bool = False
    errors: list[str] = field(default_factory=list)

    def as_details(self) -> dict[str, Any]:
        return {
            "uploaded": self.uploaded,
            "failed": self.failed,
            "deleted": self.deleted,
            "delete_failures": self.delete_failures,
            "removed_on_server": self.removed_on_server,
            "downloaded": self.downloaded,
            "network_failures": self.network_failures,
            "errors": self.errors[:20],
        }


class SyncOrchestrator:
    """
    Runs reconciliation passes between the entry queue and the remote API.

    At most one pass runs at a time. Passes are started manually, when
    connectivity comes back, or automatically when the published state shows
    pending uploads while online and idle.
    """

    def __init__(
        self,
        queue: EntryQueue,
        auth: AuthSessionManager,
        metrics_api: MetricsApi,
        images_api: ImagesApi,
        session_maker: async_sessionmaker[AsyncSession],
        photos_dir: str,
        page_size: int = 1000,
        download_server_data: bool = True,
    ):
        self.queue = queue
        self.auth = auth
        self.metrics_api = metrics_api
        self.images_api = images_api
        self.session_maker = session_maker
        self.photos_dir = photos_dir
        self.page_size = page_size
        self.download_server_data = download_server_data

        self.state: StateFlow[SyncState] = StateFlow(SyncState())
        self._tasks: set[asyncio.Task] = set()
        self._unsubscribers: list = []
        self._auto_trigger_enabled = True
        self._changed_during_pass = False
        self._stopping = False

    # Lifecycle

    async def start(self) -> None:
        """Restore aggregate state and start observing queue and state changes."""
        self._stopping = False
        await self.queue.reset_interrupted()
        pending, failed = await self.queue.counts()
        last_sync = await self._last_sync_time()
        self._set_state(
            replace(self.state.value, last_sync_timestamp=last_sync, pending_uploads=pending, failed_uploads=failed),
            auto_trigger=False,
        )
        self._unsubscribers.append(self.queue.revision.listen(self._on_queue_change))
        self._unsubscribers.append(self.state.listen(self._on_state))
        logger.info(f"Sync orchestrator started: {pending} pending, {failed} failed")

    async def stop(self) -> None:
        """Stop triggering passes and wait for the running one to finish its current entry."""
        self._stopping = True
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        await self.wait_idle()
        logger.info("Sync orchestrator stopped")

    async def wait_idle(self) -> None:
        """Wait until every scheduled pass and state refresh has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _schedule(self, coro: Coroutine) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Background sync task failed: {task.exception()!r}")

    # State

    def _set_state(self, state: SyncState, auto_trigger: bool = True) -> None:
        self._auto_trigger_enabled = auto_trigger
        try:
            self.state.set(state)
        finally:
            self._auto_trigger_enabled = True

    def _on_state(self, state: SyncState) -> None:
        if self._stopping or not self._auto_trigger_enabled:
            return
        if state.is_online and state.pending_uploads > 0 and not state.is_syncing:
            logger.debug(f"Auto-sync: {state.pending_uploads} pending uploads")
            self._schedule(self.perform_sync(trigger="auto"))

    def _on_queue_change(self, _revision: int) -> None:
        if self.state.value.is_syncing:
            self._changed_during_pass = True
        if not self._stopping:
            self._schedule(self.refresh_state())

    async def refresh_state(self) -> SyncState:
        """Recompute queue counts after local mutations."""
        pending, failed = await self.queue.counts()
        self._set_state(replace(self.state.value, pending_uploads=pending, failed_uploads=failed))
        return self.state.value

    def set_online(self, online: bool) -> None:
        """Record connectivity; regaining it triggers a pass."""
        was_online = self.state.value.is_online
        self._set_state(replace(self.state.value, is_online=online), auto_trigger=False)
        if online and not was_online and not self._stopping:
            logger.info("Connectivity regained, triggering sync")
            self._schedule(self.perform_sync(trigger="connectivity"))

    def clear_error(self) -> None:
        self._set_state(replace(self.state.value, error_message=None), auto_trigger=False)

    # Pass

    async def perform_sync(self, trigger: str = "manual") -> Optional[SyncState]:
        """
        Run one reconciliation pass.

        Returns the published state, or None when a pass was already running
        or nobody is logged in.

        Raises:
            StorageError: local persistence failed; the pass is abandoned
        """
        # Check-and-set with no await in between: this is the single-flight guard
        if self.state.value.is_syncing:
            logger.info(f"Sync already in progress, ignoring {trigger} trigger")
            return None

        if not self.auth.is_logged_in.value:
            logger.info(f"Not logged in, skipping {trigger} sync")
            if trigger == "manual":
                self._set_state(replace(self.state.value, error_message="Not logged in"), auto_trigger=False)
            return None

        self._changed_during_pass = False
        self._set_state(replace(self.state.value, is_syncing=True, error_message=None), auto_trigger=False)
        started_at = datetime.utcnow()
        report = _PassReport()
        logger.info(f"Starting sync pass ({trigger})")

        try:
            await self._upload_pending(report)
            await self._delete_tombstones(report)
            if self.download_server_data:
                await self._download(report)
        except AuthError as e:
            logger.error(f"Sync pass aborted, authentication could not be recovered: {e}")
            report.auth_error = str(e)
            report.session_lost = not self.auth.is_logged_in.value
        except StorageError as e:
            logger.error(f"Sync pass failed on local storage: {e}")
            await self._release_claimed()
            self._set_state(
                replace(self.state.value, is_syncing=False, error_message=f"Sync failed: {e}"),
                auto_trigger=False,
            )
            raise
        except BaseException as e:
            logger.error(f"Sync pass failed: {e!r}")
            self._set_state(
                replace(self.state.value, is_syncing=False, error_message=f"Sync failed: {e}"),
                auto_trigger=False,
            )
            raise

        return await self._finish_pass(trigger, started_at, report)

    async def _upload_pending(self, report: _PassReport) -> None:
        entries = await self.queue.pending_entries()
        logger.info(f"Found {len(entries)} entries to upload")
        for entry in entries:
            if self._stopping:
                logger.info("Stopping, leaving remaining entries for the next pass")
                return
            await self._upload_entry(entry, report)

    async def _release_claimed(self) -> None:
        """Return entries left SYNCING by a failed pass to the queue."""
        try:
            await self.queue.reset_interrupted()
        except StorageError as e:
            logger.error(f"Could not release entries claimed by the failed pass: {e}")

    async def _upload_entry(self, listed: SyncEntry, report: _PassReport) -> None:
        try:
            # Upload what is stored now, not what was listed at the start of the pass
            entry = await self.queue.mark_syncing(listed.local_id)
        except (InvalidTransitionError, EntryNotFoundError) as e:
            logger.info(f"Skipping {listed.local_id}, it changed since the pass started: {e}")
            return

        try:
            server_id = await self._push(entry)
        except AuthError:
            await self.queue.mark_failed(entry.local_id)
            raise
        except ConflictError as e:
            logger.warning(f"Entry {entry.local_id} (server id {entry.server_id}) is gone on the server: {e}")
            await self.queue.mark_deleted_on_server(entry.local_id)
            await self.queue.purge(entry.local_id)
            report.removed_on_server += 1
        except NetworkError as e:
            logger.warning(f"Upload of {entry.local_id} failed: {e}")
            await self.queue.mark_failed(entry.local_id)
            report.failed += 1
            report.network_failures += 1
            report.errors.append(f"{entry.local_id}: {e}")
        except (ServerError, OSError) as e:
            logger.error(f"Upload of {entry.local_id} failed: {e}")
            await self.queue.mark_failed(entry.local_id)
            report.failed += 1
            report.errors.append(f"{entry.local_id}: {e}")
        else:
            await self.queue.mark_synced(entry.local_id, server_id)
            report.uploaded += 1
            logger.debug(f"Uploaded {entry.local_id} as {server_id}")

    async def _push(self, entry: SyncEntry) -> str:
        """Create or update one entry on the server; returns its server id."""
        payload = entry.payload
        if isinstance(payload, MetricPayload):
            if entry.server_id:
                await self.metrics_api.update_entry(entry.server_id, payload)
                return entry.server_id
            result = await self.metrics_api.create_entry(payload)
            return result.entry_id

        # Images have no update endpoint: upload again and drop the superseded copy
        new_id = await self.images_api.upload_image(payload)
        if entry.server_id and entry.server_id != new_id:
            try:
                await self.images_api.delete_image(entry.server_id)
            except (NetworkError, ServerError, ConflictError) as e:
                logger.warning(f"Could not delete superseded image {entry.server_id}: {e}")
        return new_id

    async def _delete_tombstones(self, report: _PassReport) -> None:
        entries = await self.queue.deleted_entries()
        logger.info(f"Found {len(entries)} entries to delete")
        for listed in entries:
            if self._stopping:
                return
            entry = await self.queue.get(listed.local_id)
            if entry is None or entry.status != SyncStatus.DELETED_LOCALLY:
                logger.info(f"Skipping deletion of {listed.local_id}, it changed since the pass started")
                continue
            if not entry.server_id:
                # Never uploaded, nothing to delete remotely
                if await self.queue.finish_delete(entry.local_id):
                    report.deleted += 1
                continue

            try:
                if entry.kind == EntryKind.METRIC:
                    await self.metrics_api.delete_entry(entry.server_id)
                else:
                    await self.images_api.delete_image(entry.server_id)
            except ConflictError:
                logger.info(f"Entry {entry.local_id} was already deleted on the server")
            except NetworkError as e:
                logger.warning(f"Delete of {entry.local_id} failed, will retry: {e}")
                report.delete_failures += 1
                report.network_failures += 1
                continue
            except ServerError as e:
                logger.error(f"Delete of {entry.local_id} failed, will retry: {e}")
                report.delete_failures += 1
                report.errors.append(f"{entry.local_id}: {e}")
                continue

            if await self.queue.finish_delete(entry.local_id):
                report.deleted += 1

    async def _download(self, report: _PassReport) -> None:
        """Pull server entries that are not known locally. Failures never fail the pass."""
        try:
            await self._check_metric_types()
            await self._download_metrics(report)
            await self._download_images(report)
        except NetworkError as e:
            logger.warning(f"Failed to download server data: {e}")
            report.network_failures += 1
        except (ServerError, ConflictError) as e:
            logger.warning(f"Failed to download server data: {e}")

    async def _check_metric_types(self) -> None:
        response = await self.metrics_api.list_types()
        if not response.success:
            return
        for remote in response.types:
            local = metric_type_for_id(remote.id)
            if local is None or local.local_name != remote.name:
                logger.warning(
                    f"Server metric type {remote.id} '{remote.name}' does not match local table "
                    f"({local.local_name if local else 'unknown'})"
                )

    async def _download_metrics(self, report: _PassReport) -> None:
        offset = 0
        server_entries = []
        while True:
            page = await self.metrics_api.list_entries(limit=self.page_size, offset=offset)
            if not page.success:
                logger.warning("Server refused to list metric entries")
                return
            server_entries.extend(page.entries)
            offset += len(page.entries)
            if not page.entries or offset >= page.total:
                break

        tombstoned = {e.server_id for e in await self.queue.deleted_entries() if e.server_id}
        for server_entry in server_entries:
            if server_entry.id in tombstoned:
                logger.debug(f"Skipping server entry {server_entry.id}, marked for deletion locally")
                continue
            if metric_type_for_id(server_entry.metric_type_id) is None:
                logger.debug(f"Skipping server entry {server_entry.id} with unknown type {server_entry.metric_type_id}")
                continue
            if await self.queue.find_by_server_id(EntryKind.METRIC, server_entry.id):
                continue

            await self.queue.upsert_synced(
                f"server-metric-{server_entry.id}",
                server_entry.id,
                MetricPayload(
                    metric_type_id=server_entry.metric_type_id,
                    value=server_entry.value,
                    date=server_entry.date,
                    is_apple_health=server_entry.is_apple_health,
                ),
            )
            report.downloaded += 1

    async def _download_images(self, report: _PassReport) -> None:
        response = await self.images_api.list_images(limit=self.page_size)
        tombstoned = {
            e.server_id for e in await self.queue.deleted_entries()
            if e.server_id and e.kind == EntryKind.IMAGE
        }

        for image in response.images:
            if image.id in tombstoned:
                continue
            if await self.queue.find_by_server_id(EntryKind.IMAGE, image.id):
                continue

            try:
                content = await self.images_api.download_image(image.id)
                path = await self._save_photo(image.id, image.image_type_id, content)
            except (NetworkError, ServerError, ConflictError, OSError) as e:
                logger.warning(f"Failed to download image {image.id}: {e}")
                if isinstance(e, NetworkError):
                    report.network_failures += 1
                continue

            await self.queue.upsert_synced(
                f"server-image-{image.id}",
                image.id,
                ImagePayload(file_path=str(path), image_type_id=image.image_type_id, date=image.date),
            )
            report.downloaded += 1
            logger.info(f"Downloaded server image {image.id} to {path}")

    async def _save_photo(self, image_id: str, image_type_id: int, content: bytes) -> Path:
        category = image_category(image_type_id).lower()
        path = Path(self.photos_dir) / f"IMG_server_{image_id}_{category}.jpg"

        def _write():
            os.makedirs(self.photos_dir, exist_ok=True)
            path.write_bytes(content)

        await asyncio.to_thread(_write)
        return path

    async def _finish_pass(self, trigger: str, started_at: datetime, report: _PassReport) -> SyncState:
        completed_at = datetime.utcnow()

        if report.auth_error:
            status = "aborted"
            if report.session_lost:
                message = f"Authentication failed: {report.auth_error}. Please log in again."
            else:
                # The refresh failed without revoking the session
                message = f"Could not refresh authentication: {report.auth_error}. Will retry on the next sync."
        elif report.failed or report.delete_failures:
            status = "partial" if (report.uploaded or report.deleted) else "failed"
            message = (
                NETWORK_FAILURE_MESSAGE if report.network_failures
                else f"{report.failed + report.delete_failures} entries failed to sync"
            )
        elif report.network_failures:
            status = "partial"
            message = NETWORK_FAILURE_MESSAGE
        else:
            status = "success"
            message = None

        try:
            pending, failed = await self.queue.counts()
            await self._record_pass(trigger, started_at, completed_at, status, report, message)
        except StorageError as e:
            self._set_state(
                replace(self.state.value, is_syncing=False, error_message=f"Local storage error: {e}"),
                auto_trigger=False,
            )
            raise

        state = replace(
            self.state.value,
            is_syncing=False,
            pending_uploads=pending,
            failed_uploads=failed,
            last_sync_timestamp=self.state.value.last_sync_timestamp if report.auth_error else completed_at,
            error_message=message,
        )
        # The end of a pass only re-triggers when the queue changed underneath it
        self._set_state(state, auto_trigger=self._changed_during_pass)
        self._changed_during_pass = False

        logger.info(
            f"Sync pass {status}: {report.uploaded} uploaded, {report.failed} failed, "
            f"{report.deleted} deleted, {report.downloaded} downloaded; {pending} pending"
        )
        return state

    # Sync log

    async def _record_pass(
        self,
        trigger: str,
        started_at: datetime,
        completed_at: datetime,
        status: str,
        report: _PassReport,
        message: Optional[str],
    ) -> None:
        try:
            async with self.session_maker() as db:
                db.add(SyncLog(
                    trigger=trigger,
                    started_at=started_at,
                    completed_at=completed_at,
                    status=status,
                    details=report.as_details(),
                    error_message=message,
                ))
                await db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to record sync pass: {e}")
            raise StorageError("Failed to record sync pass") from e

    async def _last_sync_time(self) -> Optional[datetime]:
        try:
            async with self.session_maker() as db:
                result = await db.execute(
                    select(SyncLog.completed_at)
                    .where(SyncLog.status != "aborted", SyncLog.completed_at.is_not(None))
                    .order_by(desc(SyncLog.completed_at))
                    .limit(1)
                )
                return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise StorageError("Failed to read sync log") from e

    async def recent_passes(self, limit: int = 20) -> list[SyncLog]:
        try:
            async with self.session_maker() as db:
                result = await db.execute(select(SyncLog).order_by(desc(SyncLog.started_at)).limit(limit))
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise StorageError("Failed to read sync log") from e
