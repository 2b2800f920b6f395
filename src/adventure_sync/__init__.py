"""Adventure Sync - offline upload queue for Adventure Log albums.

Albums created while offline are staged locally (photo bytes in a SQLite
blob store, a pending row in the remote upload queue) and replayed against
the backend once the connection returns.

Example usage:
    from adventure_sync import AlbumPayload, PhotoBlob, SyncEngine, get_config

    engine = SyncEngine.from_settings(get_config())
    await engine.backend.login("user@example.com", "password")

    photos = [PhotoBlob.from_path("beach.jpg", order_index=0, caption="Day one")]
    local_id = await engine.queue_album_upload(AlbumPayload("Lisbon"), photos)

    report = await engine.sync_pending_uploads()
    print(f"{report.synced_items}/{report.total_items} uploads synced")
    await engine.close()
"""

from adventure_sync.blob_store import BlobStore
from adventure_sync.config import Settings, get_config
from adventure_sync.connectivity import ConnectivityMonitor
from adventure_sync.engine import SyncEngine
from adventure_sync.exceptions import (
    AuthenticationError,
    BlobNotFoundError,
    ConfigError,
    InvalidTransitionError,
    LocalStoreError,
    RemoteError,
    RemoteUnavailableError,
    RetryLimitError,
    SyncError,
    UploadNotFoundError,
)
from adventure_sync.models import (
    AlbumPayload,
    BlobRecord,
    FileDescriptor,
    PhotoBlob,
    ResourceType,
    SyncReport,
    UploadIntent,
    UploadStatus,
)
from adventure_sync.remote import RemoteBackend

__version__ = "0.1.0"

__all__ = [
    # Engine and collaborators
    "SyncEngine",
    "BlobStore",
    "ConnectivityMonitor",
    "RemoteBackend",
    # Configuration
    "Settings",
    "get_config",
    # Models
    "AlbumPayload",
    "BlobRecord",
    "FileDescriptor",
    "PhotoBlob",
    "ResourceType",
    "SyncReport",
    "UploadIntent",
    "UploadStatus",
    # Exceptions
    "SyncError",
    "AuthenticationError",
    "BlobNotFoundError",
    "ConfigError",
    "InvalidTransitionError",
    "LocalStoreError",
    "RemoteError",
    "RemoteUnavailableError",
    "RetryLimitError",
    "UploadNotFoundError",
]
