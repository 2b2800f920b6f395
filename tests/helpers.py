"""Shared test helpers for adventure_sync tests."""

from __future__ import annotations

import asyncio
import itertools
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

from adventure_sync.blob_store import BlobStore
from adventure_sync.exceptions import RemoteError
from adventure_sync.models import (
    AlbumPayload,
    FileDescriptor,
    PhotoBlob,
    ResourceType,
    UploadIntent,
    UploadStatus,
)

BASE_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def make_photo(order_index: int, caption: str | None = None, name: str | None = None) -> PhotoBlob:
    """A small fake JPEG."""
    return PhotoBlob(
        data=b"\xff\xd8\xff" + f"photo-{order_index}".encode(),
        file_name=name or f"IMG_{order_index:04d}.jpg",
        mime_type="image/jpeg",
        order_index=order_index,
        caption=caption if caption is not None else f"caption {order_index}",
    )


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class FakeBackend:
    """In-memory stand-in for RemoteBackend that records every call.

    Set ``failures[name]`` to make a method raise. Set ``gate`` to hold
    create_album until the event is set, and ``intent_gate`` to hold
    get_intent the same way.
    """

    def __init__(self, user_id: str | None = "user-1") -> None:
        self.user_id = user_id
        self.rows: dict[str, dict[str, Any]] = {}
        self.albums: dict[str, dict[str, Any]] = {}
        self.photos: dict[str, dict[str, Any]] = {}
        self.objects: dict[str, bytes] = {}
        self.calls: list[tuple[str, str]] = []
        self.failures: dict[str, Exception] = {}
        self.gate: asyncio.Event | None = None
        self.intent_gate: asyncio.Event | None = None
        self._ids = itertools.count(1)
        self._clock = itertools.count()

    def _record(self, name: str, key: str) -> None:
        self.calls.append((name, key))
        if name in self.failures:
            raise self.failures[name]

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}-{next(self._ids)}"

    async def current_user_id(self) -> str | None:
        return self.user_id

    async def create_intent(
        self,
        user_id: str,
        local_id: str,
        payload: AlbumPayload,
        files: list[FileDescriptor],
        resource_type: ResourceType = ResourceType.ALBUM,
    ) -> UploadIntent:
        await asyncio.sleep(0)
        self._record("create_intent", local_id)
        row_id = self._next_id("upload")
        self.rows[row_id] = {
            "id": row_id,
            "user_id": user_id,
            "resource_type": resource_type.value,
            "local_id": local_id,
            "payload": payload.to_dict(),
            "files_to_upload": [f.to_dict() for f in files],
            "status": UploadStatus.PENDING.value,
            "retry_count": 0,
            "max_retries": 3,
            "created_at": (BASE_TIME + timedelta(seconds=next(self._clock))).isoformat(),
        }
        return UploadIntent.from_row(self.rows[row_id])

    async def list_intents(
        self, user_id: str, statuses: tuple[UploadStatus, ...] | list[UploadStatus]
    ) -> list[UploadIntent]:
        await asyncio.sleep(0)
        self._record("list_intents", user_id)
        wanted = {s.value for s in statuses}
        rows = [
            row
            for row in self.rows.values()
            if row["user_id"] == user_id and row["status"] in wanted
        ]
        rows.sort(key=lambda row: row["created_at"])
        return [UploadIntent.from_row(row) for row in rows]

    async def get_intent(self, upload_id: str) -> UploadIntent | None:
        if self.intent_gate is not None:
            await self.intent_gate.wait()
        row = self.rows.get(upload_id)
        return UploadIntent.from_row(row) if row else None

    async def update_intent(self, upload_id: str, **fields: Any) -> None:
        await asyncio.sleep(0)
        row = self.rows.get(upload_id)
        self._record("update_intent", f"{row['local_id'] if row else upload_id}:{_plain(fields.get('status'))}")
        if row is None:
            raise RemoteError(f"Upload {upload_id} not found")
        row.update({key: _plain(value) for key, value in fields.items()})

    async def create_album(self, user_id: str, payload: AlbumPayload) -> str:
        if self.gate is not None:
            await self.gate.wait()
        await asyncio.sleep(0)
        self._record("create_album", payload.title)
        album_id = self._next_id("album")
        self.albums[album_id] = {"id": album_id, "user_id": user_id, **payload.to_dict()}
        return album_id

    async def update_album(self, album_id: str, values: dict[str, Any]) -> None:
        await asyncio.sleep(0)
        self._record("update_album", album_id)
        self.albums[album_id].update(values)

    async def upload_photo(self, path: str, data: bytes, content_type: str) -> None:
        await asyncio.sleep(0)
        self._record("upload_photo", path)
        self.objects[path] = data

    async def create_photo(
        self,
        album_id: str,
        user_id: str,
        file_path: str,
        caption: str | None,
        order_index: int,
    ) -> str:
        await asyncio.sleep(0)
        self._record("create_photo", file_path)
        photo_id = self._next_id("photo")
        self.photos[photo_id] = {
            "id": photo_id,
            "album_id": album_id,
            "user_id": user_id,
            "file_path": file_path,
            "caption": caption,
            "order_index": order_index,
        }
        return photo_id

    async def close(self) -> None:
        pass

    def row_for(self, local_id: str) -> dict[str, Any]:
        return next(row for row in self.rows.values() if row["local_id"] == local_id)

    def photos_of(self, album_id: str) -> list[dict[str, Any]]:
        return sorted(
            (p for p in self.photos.values() if p["album_id"] == album_id),
            key=lambda p: p["order_index"],
        )


def seed_intent(
    backend: FakeBackend,
    blob_store: BlobStore,
    local_id: str,
    photos: list[PhotoBlob],
    *,
    status: UploadStatus = UploadStatus.PENDING,
    store_bytes: bool = True,
    resource_type: ResourceType = ResourceType.ALBUM,
) -> str:
    """Put a queue row (and optionally its bytes) in place without the engine.

    Returns the remote row id.
    """
    if store_bytes:
        blob_store.put(local_id, photos)
    intent = asyncio.run(
        backend.create_intent(
            backend.user_id or "user-1",
            local_id,
            AlbumPayload(title=f"Album {local_id}", photo_count=len(photos)),
            [p.descriptor() for p in photos],
            resource_type,
        )
    )
    backend.rows[intent.id]["status"] = status.value
    backend.calls.clear()
    return intent.id
