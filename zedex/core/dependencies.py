from pathlib import Path
from typing import Optional

from zedex.core.config import MirrorConfig, load_config
from zedex.services.fetcher import FetchCoordinator
from zedex.services.modes import build_mode
from zedex.services.resolver import MirrorResolver
from zedex.services.upstream import HttpUpstreamClient, UpstreamOrigin
from zedex.storage.artifact_store import ArtifactStore
from zedex.storage.file_store import FileArtifactStore

_config: Optional[MirrorConfig] = None
_store: Optional[ArtifactStore] = None
_upstream: Optional[UpstreamOrigin] = None
_coordinator: Optional[FetchCoordinator] = None
_resolver: Optional[MirrorResolver] = None


def get_config() -> MirrorConfig:
    global _config
    if _config is None:
        _config = load_config()
    return _config


def get_root_dir() -> Path:
    return get_config().root_dir


def get_store() -> ArtifactStore:
    global _store
    if _store is None:
        _store = FileArtifactStore(get_root_dir())
    return _store


def get_upstream() -> UpstreamOrigin:
    global _upstream
    if _upstream is None:
        config = get_config()
        _upstream = HttpUpstreamClient(
            extensions_api_url=config.extensions_api_url,
            releases_api_url=config.releases_api_url,
            timeout=config.upstream_timeout,
            retries=config.upstream_retries,
        )
    return _upstream


def get_coordinator() -> FetchCoordinator:
    global _coordinator
    if _coordinator is None:
        config = get_config()
        _coordinator = FetchCoordinator(
            get_store(),
            get_upstream(),
            concurrency=config.bulk_concurrency,
            rate_limit=config.bulk_rate_limit_seconds,
        )
    return _coordinator


def get_resolver() -> MirrorResolver:
    global _resolver
    if _resolver is None:
        config = get_config()
        _resolver = MirrorResolver(
            get_store(),
            get_coordinator(),
            build_mode(config.mode, fetch_timeout=config.fetch_timeout),
            default_channel=config.default_channel,
            public_url=config.public_url,
        )
    return _resolver


def reset_dependencies(
    config: Optional[MirrorConfig] = None,
    upstream: Optional[UpstreamOrigin] = None,
) -> None:
    """Drop every cached singleton, optionally seeding the config and upstream client."""
    global _config, _store, _upstream, _coordinator, _resolver
    _config = config
    _store = None
    _upstream = upstream
    _coordinator = None
    _resolver = None
