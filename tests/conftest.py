"""
Shared pytest fixtures for the zedex test suite.

Provides fixtures for:
- A temporary cache root and file store
- The in-memory upstream double
- Fetch coordinators and resolvers in both modes
- A TestClient factory wired to the fake upstream
"""

import asyncio
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from zedex.core.config import MirrorConfig
from zedex.core.dependencies import reset_dependencies
from zedex.services.fetcher import FetchCoordinator
from zedex.services.modes import LocalMode, ProxyMode
from zedex.services.resolver import MirrorResolver
from zedex.services.single_flight import SingleFlight
from zedex.storage.file_store import FileArtifactStore

from tests.fakes import FakeUpstream


@pytest.fixture
def cache_root(tmp_path: Path) -> Path:
    return tmp_path / "cache"


@pytest.fixture
def store(cache_root: Path) -> FileArtifactStore:
    return FileArtifactStore(cache_root)


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def coordinator(store: FileArtifactStore, upstream: FakeUpstream) -> FetchCoordinator:
    return FetchCoordinator(store, upstream)


@pytest.fixture
def local_resolver(store: FileArtifactStore, coordinator: FetchCoordinator) -> MirrorResolver:
    return MirrorResolver(store, coordinator, LocalMode())


@pytest.fixture
def proxy_resolver(store: FileArtifactStore, coordinator: FetchCoordinator) -> MirrorResolver:
    return MirrorResolver(store, coordinator, ProxyMode(SingleFlight(timeout=5)))


@pytest.fixture
def seed(store: FileArtifactStore):
    """Synchronous seeding helpers for tests that run outside an event loop."""

    class Seeder:
        def archive(self, ext_id: str, version: str, data: bytes = None) -> bytes:
            data = data if data is not None else f"{ext_id}-{version}".encode()
            asyncio.run(store.write_archive(ext_id, version, data))
            return data

        def release(self, asset, data: bytes = b"release-bytes", with_file: bool = True) -> None:
            store.save_release_asset(asset)
            if with_file:
                asyncio.run(store.write_release(asset.channel, asset.version, asset.filename, data))

    return Seeder()


@pytest.fixture
def make_client(cache_root: Path, upstream: FakeUpstream):
    """Build a TestClient for the app configured against the fake upstream."""

    def _make(mode: str = "local", **settings) -> TestClient:
        config = MirrorConfig(root_dir=cache_root, mode=mode, **settings)
        reset_dependencies(config, upstream)
        from zedex.main import app

        return TestClient(app)

    yield _make
    reset_dependencies()
