"""Local HTTP service exposing the upload queue to the Adventure Log client."""

from __future__ import annotations

import asyncio
import logging
import re
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from pydantic import BaseModel, Field, field_validator

from adventure_sync import (
    AlbumPayload,
    AuthenticationError,
    InvalidTransitionError,
    LocalStoreError,
    PhotoBlob,
    RemoteError,
    SyncEngine,
    UploadNotFoundError,
    get_config,
)

logger = logging.getLogger(__name__)

COUNTRY_CODE_PATTERN = re.compile(r"^[A-Za-z]{2}$")


# --- Pydantic Models ---
class PhotoSpec(BaseModel):
    path: str
    caption: Optional[str] = None
    order_index: Optional[int] = None

    @field_validator("path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        if not Path(v).expanduser().is_file():
            raise ValueError(f"file not found: {v}")
        return v


class AlbumUploadRequest(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    location_name: Optional[str] = None
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    country_code: Optional[str] = None
    photos: list[PhotoSpec] = Field(min_length=1)

    @field_validator("country_code")
    @classmethod
    def validate_country_code(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        if not COUNTRY_CODE_PATTERN.match(v):
            raise ValueError("country_code must be a two-letter ISO code")
        return v.upper()


class AlbumUploadResponse(BaseModel):
    local_id: str
    syncing: bool


class ConnectivityRequest(BaseModel):
    online: bool


# --- Application Setup ---
async def _start_session(engine: SyncEngine) -> None:
    settings = get_config()
    if settings.email and settings.password:
        await engine.backend.login(settings.email, settings.password)
    elif settings.email:
        await engine.backend.restore_session(settings.email)


def create_app(engine: SyncEngine | None = None) -> FastAPI:
    """Build the service. Without an engine one is created from the environment."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        owned = engine is None
        app.state.engine = engine if engine is not None else SyncEngine.from_settings(get_config())
        if owned:
            try:
                await _start_session(app.state.engine)
            except AuthenticationError as e:
                logger.error(f"Sign-in at startup failed: {e}")
            app.state.engine.monitor.start()
        logger.info("Adventure Sync service is starting.")
        try:
            yield
        finally:
            if owned:
                await app.state.engine.close()
            logger.info("Adventure Sync service stopped.")

    app = FastAPI(title="Adventure Sync API", version="0.1.0", lifespan=lifespan)

    def get_engine(request: Request) -> SyncEngine:
        return request.app.state.engine  # type: ignore[no-any-return]

    @app.get("/")
    async def read_root() -> dict[str, str]:
        return {"message": "Welcome to the Adventure Sync API"}

    @app.get("/api/status")
    async def read_status(engine: SyncEngine = Depends(get_engine)) -> dict[str, Any]:
        return {
            "online": engine.is_online,
            "syncing": engine.is_syncing,
            "offline_uploads": await asyncio.to_thread(engine.blob_store.count),
            "last_report": engine.last_report.to_dict() if engine.last_report else None,
        }

    @app.get("/api/queue")
    async def read_queue(engine: SyncEngine = Depends(get_engine)) -> dict[str, Any]:
        try:
            items = await engine.refresh()
        except RemoteError as e:
            raise HTTPException(status_code=502, detail=str(e)) from e
        return {"items": [item.to_dict() for item in items]}

    @app.post("/api/sync")
    async def run_sync(engine: SyncEngine = Depends(get_engine)) -> dict[str, Any]:
        report = await engine.sync_pending_uploads()
        return report.to_dict()

    @app.post("/api/albums", response_model=AlbumUploadResponse, status_code=202)
    async def queue_album(
        request_data: AlbumUploadRequest, engine: SyncEngine = Depends(get_engine)
    ) -> AlbumUploadResponse:
        try:
            photos = [
                await asyncio.to_thread(
                    PhotoBlob.from_path,
                    Path(photo.path).expanduser(),
                    order_index=photo.order_index if photo.order_index is not None else i,
                    caption=photo.caption,
                )
                for i, photo in enumerate(request_data.photos)
            ]
        except OSError as e:
            raise HTTPException(status_code=422, detail=f"Could not read photo: {e}") from e
        metadata = AlbumPayload(
            title=request_data.title,
            description=request_data.description,
            location_name=request_data.location_name,
            latitude=request_data.latitude,
            longitude=request_data.longitude,
            country_code=request_data.country_code,
        )
        try:
            local_id = await engine.queue_album_upload(metadata, photos)
        except AuthenticationError as e:
            raise HTTPException(status_code=401, detail=str(e)) from e
        except RemoteError as e:
            raise HTTPException(status_code=502, detail=str(e)) from e
        except LocalStoreError as e:
            raise HTTPException(status_code=500, detail=f"Local store error: {e}") from e
        logger.info(f"Queued album '{request_data.title}' as {local_id}")
        return AlbumUploadResponse(local_id=local_id, syncing=engine.is_online)

    async def _change_status(action: Any, upload_id: str) -> None:
        try:
            await action(upload_id)
        except AuthenticationError as e:
            raise HTTPException(status_code=401, detail=str(e)) from e
        except UploadNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e)) from e
        except InvalidTransitionError as e:
            raise HTTPException(status_code=409, detail=str(e)) from e
        except RemoteError as e:
            raise HTTPException(status_code=502, detail=str(e)) from e
        except LocalStoreError as e:
            raise HTTPException(status_code=500, detail=f"Local store error: {e}") from e

    @app.post("/api/queue/{upload_id}/retry")
    async def retry_upload(
        upload_id: str, engine: SyncEngine = Depends(get_engine)
    ) -> dict[str, str]:
        await _change_status(engine.retry_upload, upload_id)
        return {"id": upload_id, "status": "pending"}

    @app.post("/api/queue/{upload_id}/cancel")
    async def cancel_upload(
        upload_id: str, engine: SyncEngine = Depends(get_engine)
    ) -> dict[str, str]:
        await _change_status(engine.cancel_upload, upload_id)
        return {"id": upload_id, "status": "cancelled"}

    @app.post("/api/connectivity")
    async def report_connectivity(
        request_data: ConnectivityRequest, engine: SyncEngine = Depends(get_engine)
    ) -> dict[str, bool]:
        engine.monitor.set_online(request_data.online)
        return {"online": engine.is_online}

    return app


logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")

app = create_app()
