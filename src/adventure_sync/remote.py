"""Calls the sync engine makes against the Adventure Log backend."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

from adventure_sync._internal.rest_client import SupabaseRestClient, eq, in_
from adventure_sync.exceptions import AuthenticationError, RemoteError
from adventure_sync.models import (
    AlbumPayload,
    FileDescriptor,
    ResourceType,
    UploadIntent,
    UploadStatus,
)

logger = logging.getLogger(__name__)

QUEUE_TABLE = "upload_queue"
ALBUMS_TABLE = "albums"
PHOTOS_TABLE = "photos"
DEFAULT_BUCKET = "photos"


def _serialize(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class RemoteBackend:
    """Authenticated access to the upload queue, albums, photos and storage.

    Example:
        rest = SupabaseRestClient(url, anon_key)
        backend = RemoteBackend(rest, token_cache_path=Path("tokens.json"))
        await backend.login("user@example.com", "password")
        user_id = await backend.current_user_id()
    """

    def __init__(
        self,
        rest: SupabaseRestClient,
        *,
        bucket: str = DEFAULT_BUCKET,
        token_cache_path: Path | str | None = None,
    ) -> None:
        self.rest = rest
        self.bucket = bucket
        self._token_cache_path = Path(token_cache_path) if token_cache_path else None
        self._user_id: str | None = None
        self._user_token: str | None = None

    # Session

    def _load_token_cache(self) -> dict[str, Any]:
        if not self._token_cache_path or not self._token_cache_path.exists():
            return {}
        try:
            data = json.loads(self._token_cache_path.read_text())
            return data if isinstance(data, dict) else {}
        except Exception as e:
            logger.warning(f"Failed to load token cache: {e}")
            return {}

    def _save_token_cache(self, email: str) -> None:
        if not self._token_cache_path:
            return
        data = self._load_token_cache()
        data[email] = {
            "access_token": self.rest.access_token,
            "refresh_token": self.rest.refresh_token,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }
        try:
            self._token_cache_path.parent.mkdir(parents=True, exist_ok=True)
            self._token_cache_path.write_text(json.dumps(data, indent=2))
        except Exception as e:
            logger.warning(f"Failed to save token cache: {e}")

    def _clear_cached_session(self, email: str) -> None:
        data = self._load_token_cache()
        if email in data and self._token_cache_path:
            del data[email]
            self._token_cache_path.write_text(json.dumps(data, indent=2))

    async def restore_session(self, email: str) -> bool:
        """Reuse a cached session for email. Returns True if it is still valid."""
        cached = self._load_token_cache().get(email)
        if not isinstance(cached, dict) or not cached.get("access_token"):
            return False
        self.rest.set_session(cached["access_token"], cached.get("refresh_token"))
        try:
            user_id = await self.current_user_id()
        except AuthenticationError:
            user_id = None
        if user_id:
            logger.info("Using cached session")
            # The token may have been refreshed on the way.
            self._save_token_cache(email)
            return True
        logger.info("Cached session invalid; sign-in required")
        self._clear_cached_session(email)
        self.rest.set_session(None)
        return False

    async def login(self, email: str, password: str) -> str:
        """Sign in and cache the session.

        Returns:
            The signed-in user's id

        Raises:
            AuthenticationError: If sign-in fails
        """
        if not email or not password:
            raise AuthenticationError("Email and password are required")
        session = await self.rest.sign_in(email, password)
        user = session.get("user") or {}
        self._user_id = user.get("id")
        self._user_token = self.rest.access_token
        self._save_token_cache(email)
        logger.info(f"Signed in as {email}")
        return self._user_id or await self._require_user_id()

    async def current_user_id(self) -> str | None:
        """Id of the signed-in user, or None when nobody is signed in."""
        if self._user_id and self._user_token == self.rest.access_token:
            return self._user_id
        try:
            user = await self.rest.get_user()
        except AuthenticationError:
            user = None
        self._user_id = str(user["id"]) if user and user.get("id") else None
        self._user_token = self.rest.access_token
        return self._user_id

    async def _require_user_id(self) -> str:
        user_id = await self.current_user_id()
        if not user_id:
            raise AuthenticationError("Not authenticated")
        return user_id

    # Upload queue

    async def create_intent(
        self,
        user_id: str,
        local_id: str,
        payload: AlbumPayload,
        files: list[FileDescriptor],
        resource_type: ResourceType = ResourceType.ALBUM,
    ) -> UploadIntent:
        row = await self.rest.insert(
            QUEUE_TABLE,
            {
                "user_id": user_id,
                "resource_type": resource_type.value,
                "local_id": local_id,
                "payload": payload.to_dict(),
                "files_to_upload": [f.to_dict() for f in files],
                "status": UploadStatus.PENDING.value,
            },
        )
        return UploadIntent.from_row(row)

    async def list_intents(
        self, user_id: str, statuses: tuple[UploadStatus, ...] | list[UploadStatus]
    ) -> list[UploadIntent]:
        """The user's queue rows in the given statuses, oldest first."""
        rows = await self.rest.select(
            QUEUE_TABLE,
            {
                "user_id": eq(user_id),
                "status": in_([s.value for s in statuses]),
            },
            order="created_at.asc",
        )
        return [UploadIntent.from_row(row) for row in rows]

    async def get_intent(self, upload_id: str) -> UploadIntent | None:
        rows = await self.rest.select(QUEUE_TABLE, {"id": eq(upload_id)})
        return UploadIntent.from_row(rows[0]) if rows else None

    async def update_intent(self, upload_id: str, **fields: Any) -> None:
        values = {key: _serialize(value) for key, value in fields.items()}
        values["updated_at"] = datetime.now(timezone.utc).isoformat()
        rows = await self.rest.update(QUEUE_TABLE, values, {"id": eq(upload_id)})
        if not rows:
            raise RemoteError(f"Upload {upload_id} not found")

    # Albums and photos

    async def create_album(self, user_id: str, payload: AlbumPayload) -> str:
        row = await self.rest.insert(
            ALBUMS_TABLE,
            {
                "user_id": user_id,
                "title": payload.title,
                "description": payload.description,
                "location_name": payload.location_name,
                "latitude": payload.latitude,
                "longitude": payload.longitude,
                "country_code": payload.country_code,
                "visibility": "public",
            },
        )
        return str(row["id"])

    async def update_album(self, album_id: str, values: dict[str, Any]) -> None:
        await self.rest.update(ALBUMS_TABLE, values, {"id": eq(album_id)})

    async def upload_photo(self, path: str, data: bytes, content_type: str) -> None:
        await self.rest.upload_object(self.bucket, path, data, content_type)

    async def create_photo(
        self,
        album_id: str,
        user_id: str,
        file_path: str,
        caption: str | None,
        order_index: int,
    ) -> str:
        row = await self.rest.insert(
            PHOTOS_TABLE,
            {
                "album_id": album_id,
                "user_id": user_id,
                "file_path": file_path,
                "caption": caption,
                "order_index": order_index,
            },
        )
        return str(row["id"])

    async def close(self) -> None:
        await self.rest.aclose()
