"""Data models for the adventure_sync library."""

from __future__ import annotations

import mimetypes
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

from dateutil import parser as date_parser


class UploadStatus(str, Enum):
    """Status of an upload_queue row."""

    PENDING = "pending"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ResourceType(str, Enum):
    """Kind of resource an upload_queue row materializes."""

    ALBUM = "album"
    PHOTO = "photo"
    STORY = "story"
    COMMENT = "comment"
    LIKE = "like"


# Rows a sync pass picks up. An "uploading" row was abandoned mid-pass.
SYNCABLE_STATUSES = (UploadStatus.PENDING, UploadStatus.UPLOADING)

# Rows whose photo bytes must still be present locally.
LOCAL_BYTES_STATUSES = (UploadStatus.PENDING, UploadStatus.UPLOADING, UploadStatus.FAILED)

DEFAULT_MAX_RETRIES = 3


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp as returned by the backend."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    return date_parser.isoparse(str(value))


@dataclass(frozen=True)
class AlbumPayload:
    """Album metadata snapshot taken when an upload is queued."""

    title: str
    description: str | None = None
    location_name: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    country_code: str | None = None
    photo_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "description": self.description,
            "location_name": self.location_name,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "country_code": self.country_code,
            "photo_count": self.photo_count,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AlbumPayload:
        return cls(
            title=str(data.get("title") or ""),
            description=data.get("description"),
            location_name=data.get("location_name"),
            latitude=data.get("latitude"),
            longitude=data.get("longitude"),
            country_code=data.get("country_code"),
            photo_count=int(data.get("photo_count") or 0),
        )


@dataclass(frozen=True)
class FileDescriptor:
    """Metadata for one queued photo. The bytes live in the local blob store."""

    name: str
    mime_type: str
    size: int
    order_index: int
    caption: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.name,
            "type": self.mime_type,
            "size": self.size,
            "caption": self.caption,
            "order_index": self.order_index,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FileDescriptor:
        return cls(
            name=str(data.get("path") or ""),
            mime_type=str(data.get("type") or "application/octet-stream"),
            size=int(data.get("size") or 0),
            order_index=int(data.get("order_index") or 0),
            caption=data.get("caption"),
        )


@dataclass(frozen=True)
class PhotoBlob:
    """Raw bytes of one photo plus the fields copied onto its photo row."""

    data: bytes
    file_name: str
    mime_type: str
    order_index: int
    caption: str | None = None

    @classmethod
    def from_path(
        cls, file_path: str | Path, order_index: int, caption: str | None = None
    ) -> PhotoBlob:
        """Read a photo from disk."""
        file_path = Path(file_path)
        mime_type = mimetypes.guess_type(file_path.name)[0] or "application/octet-stream"
        return cls(
            data=file_path.read_bytes(),
            file_name=file_path.name,
            mime_type=mime_type,
            order_index=order_index,
            caption=caption,
        )

    def descriptor(self) -> FileDescriptor:
        return FileDescriptor(
            name=self.file_name,
            mime_type=self.mime_type,
            size=len(self.data),
            order_index=self.order_index,
            caption=self.caption,
        )


@dataclass(frozen=True)
class BlobRecord:
    """Locally stored bytes for one queued upload."""

    local_id: str
    photos: list[PhotoBlob]
    created_at: datetime


@dataclass(frozen=True)
class UploadIntent:
    """One upload_queue row."""

    id: str
    user_id: str
    local_id: str
    resource_type: ResourceType
    payload: AlbumPayload
    status: UploadStatus
    files_to_upload: list[FileDescriptor] = field(default_factory=list)
    retry_count: int = 0
    max_retries: int = DEFAULT_MAX_RETRIES
    error_message: str | None = None
    remote_album_id: str | None = None
    remote_photo_ids: list[str] = field(default_factory=list)
    upload_started_at: datetime | None = None
    upload_completed_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.status in SYNCABLE_STATUSES

    @property
    def can_retry(self) -> bool:
        return self.status == UploadStatus.FAILED and self.retry_count < self.max_retries

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> UploadIntent:
        """Build an intent from an upload_queue row."""
        return cls(
            id=str(row["id"]),
            user_id=str(row.get("user_id") or ""),
            local_id=str(row.get("local_id") or ""),
            resource_type=ResourceType(row.get("resource_type") or ResourceType.ALBUM.value),
            payload=AlbumPayload.from_dict(row.get("payload") or {}),
            status=UploadStatus(row.get("status") or UploadStatus.PENDING.value),
            files_to_upload=[
                FileDescriptor.from_dict(item) for item in row.get("files_to_upload") or []
            ],
            retry_count=int(row.get("retry_count") or 0),
            max_retries=int(
                row["max_retries"] if row.get("max_retries") is not None else DEFAULT_MAX_RETRIES
            ),
            error_message=row.get("error_message"),
            remote_album_id=row.get("remote_album_id"),
            remote_photo_ids=[str(pid) for pid in row.get("remote_photo_ids") or []],
            upload_started_at=parse_timestamp(row.get("upload_started_at")),
            upload_completed_at=parse_timestamp(row.get("upload_completed_at")),
            created_at=parse_timestamp(row.get("created_at")),
            updated_at=parse_timestamp(row.get("updated_at")),
        )

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly view used by the CLI and the local service."""
        return {
            "id": self.id,
            "local_id": self.local_id,
            "resource_type": self.resource_type.value,
            "title": self.payload.title,
            "status": self.status.value,
            "photo_count": self.payload.photo_count,
            "retry_count": self.retry_count,
            "max_retries": self.max_retries,
            "error_message": self.error_message,
            "remote_album_id": self.remote_album_id,
            "remote_photo_ids": list(self.remote_photo_ids),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass
class SyncReport:
    """Outcome of one sync pass."""

    ran: bool = False
    total_items: int = 0
    synced_items: int = 0
    failed_items: int = 0
    errors: list[str] = field(default_factory=list)
    processed: list[str] = field(default_factory=list)

    @property
    def progress(self) -> float:
        if not self.total_items:
            return 0.0
        return (self.synced_items + self.failed_items) / self.total_items * 100

    @property
    def success(self) -> bool:
        return self.ran and not self.errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "ran": self.ran,
            "total_items": self.total_items,
            "synced_items": self.synced_items,
            "failed_items": self.failed_items,
            "progress": round(self.progress, 1),
            "errors": list(self.errors),
            "processed": list(self.processed),
        }
