"""Pytest fixtures for adventure_sync tests."""

from __future__ import annotations

from pathlib import Path
from typing import Any
from unittest.mock import patch

import pytest
from helpers import FakeBackend

from adventure_sync import BlobStore, ConnectivityMonitor, Settings, SyncEngine


@pytest.fixture
def blob_store(tmp_path: Path) -> Any:
    """Blob store backed by a temporary SQLite file."""
    store = BlobStore(tmp_path / "offline_uploads.db")
    yield store
    store.close()


@pytest.fixture
def backend() -> FakeBackend:
    """In-memory backend with a signed-in user."""
    return FakeBackend()


@pytest.fixture
def monitor() -> ConnectivityMonitor:
    """Monitor without a probe URL, starting online."""
    return ConnectivityMonitor()


@pytest.fixture
def engine(
    backend: FakeBackend, blob_store: BlobStore, monitor: ConnectivityMonitor
) -> SyncEngine:
    """Engine wired to the fake backend and a temporary blob store."""
    return SyncEngine(backend, blob_store, monitor)  # type: ignore[arg-type]


@pytest.fixture
def temp_photos(tmp_path: Path) -> list[Path]:
    """Three small photo files on disk."""
    paths = []
    for i, name in enumerate(["beach.jpg", "tram.jpg", "castle.png"]):
        path = tmp_path / name
        path.write_bytes(b"\xff\xd8\xff" + f"image {i}".encode())
        paths.append(path)
    return paths


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings pointing at a temporary data directory."""
    return Settings(
        supabase_url="https://project.supabase.co",
        supabase_anon_key="anon-key",
        data_dir=tmp_path / "data",
    )


@pytest.fixture
def patch_get_config(settings: Settings) -> Any:
    """Patch the CLI's config loader to return test settings."""
    with patch("adventure_sync.cli.get_config", return_value=settings) as mock_get_config:
        yield mock_get_config
