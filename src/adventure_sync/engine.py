"""Sync engine: drives queued uploads from pending to completed or failed.

Status transitions:

    pending   -> uploading   picked up by a sync pass
    uploading -> completed   every remote write succeeded; local bytes purged
    uploading -> failed      any remote write raised; retry_count += 1
    failed    -> pending     manual retry only
    pending, failed -> cancelled

A pass handles one row at a time, in queue order. A row left "uploading" by
an interrupted pass is picked up again like a pending one. Remote writes of a
failed attempt are not rolled back: retrying creates a new album.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import mimetypes
import secrets
import string
import time
from datetime import datetime, timezone
from pathlib import PurePosixPath

from adventure_sync._internal.rest_client import SupabaseRestClient
from adventure_sync.blob_store import BlobStore
from adventure_sync.config import Settings
from adventure_sync.connectivity import ConnectivityMonitor
from adventure_sync.exceptions import (
    AuthenticationError,
    BlobNotFoundError,
    InvalidTransitionError,
    LocalStoreError,
    RetryLimitError,
    SyncError,
    UploadNotFoundError,
)
from adventure_sync.models import (
    LOCAL_BYTES_STATUSES,
    SYNCABLE_STATUSES,
    AlbumPayload,
    PhotoBlob,
    ResourceType,
    SyncReport,
    UploadIntent,
    UploadStatus,
)
from adventure_sync.remote import RemoteBackend

logger = logging.getLogger(__name__)

_ID_ALPHABET = string.ascii_lowercase + string.digits
FAVORITE_PHOTO_COUNT = 3


def _random_suffix(length: int = 9) -> str:
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(length))


def _now() -> datetime:
    return datetime.now(timezone.utc)


def generate_local_id(prefix: str = ResourceType.ALBUM.value) -> str:
    """New local upload id, e.g. ``album_1718000000000_k3j9x0a1b``."""
    return f"{prefix}_{int(time.time() * 1000)}_{_random_suffix()}"


def build_storage_path(album_id: str, photo: PhotoBlob) -> str:
    """Collision-resistant storage path for a photo of an album."""
    extension = PurePosixPath(photo.file_name).suffix.lower()
    if not extension:
        extension = mimetypes.guess_extension(photo.mime_type) or ".jpg"
    return f"{album_id}/{int(time.time() * 1000)}_{_random_suffix()}{extension}"


class SyncEngine:
    """Queues album uploads locally and replays them against the backend.

    Example:
        engine = SyncEngine(backend, BlobStore(db_path), ConnectivityMonitor(probe_url))
        local_id = await engine.queue_album_upload(AlbumPayload("Lisbon"), photos)
        report = await engine.sync_pending_uploads()
    """

    def __init__(
        self,
        backend: RemoteBackend,
        blob_store: BlobStore,
        monitor: ConnectivityMonitor | None = None,
    ) -> None:
        self.backend = backend
        self.blob_store = blob_store
        self.monitor = monitor or ConnectivityMonitor()
        self.queue_items: list[UploadIntent] = []
        self.last_report: SyncReport | None = None
        self._syncing = False
        # Serializes remote writes of passes, retries and cancels.
        self._write_lock = asyncio.Lock()
        self._tasks: set[asyncio.Task[SyncReport]] = set()
        self.monitor.on_reconnect(self.request_sync)

    @classmethod
    def from_settings(cls, settings: Settings) -> SyncEngine:
        """Wire an engine to the configured backend and local database."""
        rest = SupabaseRestClient(settings.supabase_url, settings.supabase_anon_key)
        backend = RemoteBackend(
            rest, bucket=settings.bucket, token_cache_path=settings.token_cache_path
        )
        monitor = ConnectivityMonitor(
            settings.probe_url, check_interval=settings.probe_interval
        )
        return cls(backend, BlobStore(settings.blob_db_path), monitor)

    async def close(self) -> None:
        await self.monitor.stop()
        await self.wait_idle()
        await self.backend.close()
        self.blob_store.close()

    @property
    def is_syncing(self) -> bool:
        return self._syncing

    @property
    def is_online(self) -> bool:
        return self.monitor.current_status()

    def request_sync(self) -> asyncio.Task[SyncReport] | None:
        """Schedule a sync pass in the background without waiting for it."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop; sync request dropped")
            return None
        task = loop.create_task(self.sync_pending_uploads())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def wait_idle(self) -> None:
        """Wait until every scheduled background pass has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _require_user(self) -> str:
        user_id = await self.backend.current_user_id()
        if not user_id:
            raise AuthenticationError("Not authenticated")
        return user_id

    async def queue_album_upload(self, metadata: AlbumPayload, photos: list[PhotoBlob]) -> str:
        """Stage an album with its photos for upload.

        The photo bytes go to the local blob store and a pending row is added
        to the remote queue. When online a sync pass is started in the
        background; this call does not wait for it.

        Args:
            metadata: Album fields to create remotely
            photos: Photo bytes with caption and order index

        Returns:
            The new local id

        Raises:
            AuthenticationError: If nobody is signed in
            RemoteError: If the queue row could not be created
            LocalStoreError: If the bytes could not be stored
        """
        user_id = await self._require_user()
        local_id = generate_local_id()
        payload = dataclasses.replace(metadata, photo_count=len(photos))

        await asyncio.to_thread(self.blob_store.put, local_id, photos)
        try:
            await self.backend.create_intent(
                user_id, local_id, payload, [photo.descriptor() for photo in photos]
            )
        except Exception:
            try:
                await asyncio.to_thread(self.blob_store.delete, local_id)
            except LocalStoreError as e:
                logger.error(f"Could not remove offline files for {local_id}: {e}")
            raise
        logger.info(f"Queued album '{payload.title}' ({len(photos)} photo(s)) as {local_id}")

        await self._refresh_snapshot(user_id)

        if self.monitor.current_status():
            self.request_sync()
        return local_id

    async def sync_pending_uploads(self) -> SyncReport:
        """Run one sync pass over the user's pending and uploading rows.

        A call made while another pass is running returns at once with
        ``ran=False``. Failures of single rows are recorded on those rows and
        in the report; they never abort the pass or reach the caller.
        """
        if self._syncing:
            logger.warning("Sync already in progress")
            return SyncReport()
        if not self.monitor.current_status():
            logger.warning("Offline, cannot sync")
            return SyncReport()

        self._syncing = True
        try:
            # A retry or cancel in flight finishes before the pass starts.
            async with self._write_lock:
                report = await self._run_pass()
        finally:
            self._syncing = False
        self.last_report = report
        return report

    async def _run_pass(self) -> SyncReport:
        try:
            user_id = await self.backend.current_user_id()
        except Exception as e:
            logger.error(f"Could not resolve the signed-in user: {e}")
            return SyncReport(errors=[str(e)])
        if not user_id:
            logger.warning("Not authenticated, skipping sync")
            return SyncReport(errors=["Not authenticated"])

        report = SyncReport(ran=True)
        try:
            items = await self.backend.list_intents(user_id, SYNCABLE_STATUSES)
        except Exception as e:
            logger.error(f"Failed to list pending uploads: {e}")
            report.errors.append(str(e))
            return report

        report.total_items = len(items)
        if items:
            logger.info(f"Starting sync of {len(items)} upload(s)")

        for intent in items:
            error = await self._process_item(user_id, intent)
            report.processed.append(intent.local_id)
            if error is None:
                report.synced_items += 1
            else:
                report.failed_items += 1
                report.errors.append(f"{intent.local_id}: {error}")

        await self._refresh_snapshot(user_id)

        if items:
            logger.info(
                f"Sync completed: {report.synced_items} synced, {report.failed_items} failed"
            )
        return report

    async def _process_item(self, user_id: str, intent: UploadIntent) -> str | None:
        """Process one row. Returns None on success, else the error message."""
        try:
            await self._materialize(user_id, intent)
        except Exception as e:
            message = str(e) or type(e).__name__
            logger.error(f"Failed to process upload {intent.id} ({intent.local_id}): {message}")
            try:
                await self.backend.update_intent(
                    intent.id,
                    status=UploadStatus.FAILED,
                    error_message=message,
                    retry_count=intent.retry_count + 1,
                )
            except Exception as update_error:
                logger.error(f"Could not mark upload {intent.id} as failed: {update_error}")
            return message

        try:
            await asyncio.to_thread(self.blob_store.delete, intent.local_id)
        except LocalStoreError as e:
            logger.error(f"Upload {intent.id} completed but its offline files remain: {e}")
        return None

    async def _materialize(self, user_id: str, intent: UploadIntent) -> None:
        if intent.resource_type != ResourceType.ALBUM:
            raise SyncError(f"Unsupported resource type: {intent.resource_type.value}")

        await self.backend.update_intent(
            intent.id, status=UploadStatus.UPLOADING, upload_started_at=_now()
        )

        record = await asyncio.to_thread(self.blob_store.get, intent.local_id)
        if record is None:
            raise BlobNotFoundError("Files not found in offline storage")

        album_id = await self.backend.create_album(user_id, intent.payload)
        logger.info(f"Created album {album_id} for {intent.local_id}")

        photo_ids: list[str] = []
        photo_paths: list[str] = []
        for photo in sorted(record.photos, key=lambda p: p.order_index):
            path = build_storage_path(album_id, photo)
            await self.backend.upload_photo(path, photo.data, photo.mime_type)
            photo_id = await self.backend.create_photo(
                album_id, user_id, path, photo.caption, photo.order_index
            )
            photo_ids.append(photo_id)
            photo_paths.append(path)
            logger.debug(f"Uploaded {photo.file_name} to {path}")

        if photo_paths:
            await self.backend.update_album(
                album_id,
                {
                    "cover_photo_url": photo_paths[0],
                    "favorite_photo_urls": photo_paths[:FAVORITE_PHOTO_COUNT],
                },
            )

        await self.backend.update_intent(
            intent.id,
            status=UploadStatus.COMPLETED,
            upload_completed_at=_now(),
            remote_album_id=album_id,
            remote_photo_ids=photo_ids,
            error_message=None,
        )
        logger.info(f"Upload {intent.local_id} completed ({len(photo_ids)} photo(s))")

    async def _refresh_snapshot(self, user_id: str) -> None:
        try:
            self.queue_items = await self.backend.list_intents(user_id, LOCAL_BYTES_STATUSES)
        except Exception as e:
            logger.warning(f"Failed to refresh upload queue: {e}")

    async def refresh(self) -> list[UploadIntent]:
        """Reload the user's pending, uploading and failed rows."""
        user_id = await self.backend.current_user_id()
        if not user_id:
            self.queue_items = []
            return []
        self.queue_items = await self.backend.list_intents(user_id, LOCAL_BYTES_STATUSES)
        return self.queue_items

    async def _get_owned_intent(self, upload_id: str) -> tuple[str, UploadIntent]:
        user_id = await self._require_user()
        intent = await self.backend.get_intent(upload_id)
        if intent is None or intent.user_id != user_id:
            raise UploadNotFoundError(f"Upload {upload_id} not found")
        return user_id, intent

    async def retry_upload(self, upload_id: str) -> None:
        """Put a failed row back to pending so the next pass picks it up.

        Raises:
            UploadNotFoundError: If the row does not exist
            InvalidTransitionError: If the row is not failed
            RetryLimitError: If the row has used up its retries
        """
        async with self._write_lock:
            user_id, intent = await self._get_owned_intent(upload_id)
            if intent.status != UploadStatus.FAILED:
                raise InvalidTransitionError(
                    f"Only failed uploads can be retried (upload {upload_id} is {intent.status.value})"
                )
            if intent.retry_count >= intent.max_retries:
                raise RetryLimitError(
                    f"Upload {upload_id} already failed {intent.retry_count} time(s) "
                    f"(limit {intent.max_retries})"
                )
            await self.backend.update_intent(
                upload_id, status=UploadStatus.PENDING, error_message=None
            )
            logger.info(f"Upload {intent.local_id} queued for retry")
            await self._refresh_snapshot(user_id)

        if self.monitor.current_status():
            self.request_sync()

    async def cancel_upload(self, upload_id: str) -> None:
        """Cancel a pending or failed row and drop its local bytes."""
        async with self._write_lock:
            user_id, intent = await self._get_owned_intent(upload_id)
            if intent.status not in (UploadStatus.PENDING, UploadStatus.FAILED):
                raise InvalidTransitionError(
                    f"Upload {upload_id} is {intent.status.value} and cannot be cancelled"
                )
            await self.backend.update_intent(upload_id, status=UploadStatus.CANCELLED)
            await asyncio.to_thread(self.blob_store.delete, intent.local_id)
            logger.info(f"Upload {intent.local_id} cancelled")
            await self._refresh_snapshot(user_id)
