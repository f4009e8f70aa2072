"""
Mirror resolver: answers every request from the store, delegating misses to
the configured resolution mode.

The resolver owns the current index snapshot. Snapshots are immutable
``ExtensionIndex`` objects; a refresh builds a new one and swaps the
reference, so readers holding the previous snapshot are never affected.
"""
from __future__ import annotations

import logging
from functools import cmp_to_key
from typing import List, Optional, Tuple

from zedex.core.errors import NotFound, UpstreamNotFound
from zedex.domain import filters
from zedex.domain.models import (
    ArchiveFetch,
    ExtensionIndex,
    ExtensionListParams,
    ExtensionRecord,
    ExtensionUpdatesParams,
    ReleaseAsset,
    ReleaseParams,
    VersionInfo,
    merge_records,
)
from zedex.domain.versions import compare_versions, sort_versions
from zedex.services.fetcher import FetchCoordinator
from zedex.services.modes import ResolutionMode
from zedex.storage.artifact_store import ArtifactStore

logger = logging.getLogger(__name__)


class MirrorResolver:
    def __init__(
        self,
        store: ArtifactStore,
        coordinator: FetchCoordinator,
        mode: ResolutionMode,
        default_channel: str = "stable",
        public_url: Optional[str] = None,
    ):
        self.store = store
        self.coordinator = coordinator
        self.mode = mode
        self.default_channel = default_channel
        self.public_url = public_url.rstrip("/") if public_url else None
        self._snapshot: Optional[ExtensionIndex] = None
        self._stamp: Optional[Tuple[int, int]] = None

    @property
    def mode_name(self) -> str:
        return self.mode.name

    @property
    def indexed_extensions(self) -> int:
        snapshot = self._snapshot
        return len(snapshot.ids()) if snapshot is not None else 0

    # ========================================================================
    # Index snapshot
    # ========================================================================

    def _swap(self, index: ExtensionIndex) -> None:
        self._snapshot = index
        self._stamp = self.store.index_stamp()

    def cached_index(self) -> Optional[ExtensionIndex]:
        """
        The snapshot of the index on disk, reloaded when the file changed.
        None if no index has been fetched yet.
        """
        stamp = self.store.index_stamp()
        if stamp is None:
            return None
        if self._snapshot is not None and stamp == self._stamp:
            return self._snapshot
        try:
            index = self.store.load_index()
        except NotFound:
            return None
        logger.info(f"Loaded extension index snapshot ({len(index.data)} records)")
        self._snapshot = index
        self._stamp = stamp
        return index

    async def current_index(self) -> ExtensionIndex:
        index = self.cached_index()
        if index is not None:
            return index
        return await self.mode.on_miss(
            ("index",),
            self._fetch_index,
            "Extension index has not been fetched yet",
        )

    async def _fetch_index(self) -> ExtensionIndex:
        index = await self.coordinator.refresh_index()
        self._swap(index)
        return index

    async def refresh_index(self) -> ExtensionIndex:
        """Fetch a fresh index from upstream and swap it in. The old snapshot stays on failure."""
        return await self._fetch_index()

    # ========================================================================
    # Extension queries
    # ========================================================================

    async def list_extensions(self, params: ExtensionListParams) -> List[ExtensionRecord]:
        index = await self.current_index()
        return filters.list_extensions(
            index,
            filter_text=params.filter or None,
            max_schema_version=params.max_schema_version,
            provides=params.provides or None,
        )

    async def check_updates(self, params: ExtensionUpdatesParams) -> List[ExtensionRecord]:
        index = await self.current_index()
        return filters.extension_updates(
            index,
            min_schema_version=params.min_schema_version,
            max_schema_version=params.max_schema_version,
            min_wasm_api_version=params.min_wasm_api_version,
            max_wasm_api_version=params.max_wasm_api_version,
            ids=params.id_list(),
        )

    def _stored_versions(self, extension_id: str) -> List[ExtensionRecord]:
        try:
            return self.store.load_versions(extension_id)
        except NotFound:
            return []

    async def list_versions(self, extension_id: str) -> List[ExtensionRecord]:
        """Every known version of one extension, newest first."""
        index = self.cached_index()
        indexed = filters.extension_versions(index, extension_id) if index is not None else []
        stored = self._stored_versions(extension_id)

        if not indexed and not stored:
            stored = await self.mode.on_miss(
                ("versions", extension_id),
                lambda: self.coordinator.fetch_extension_versions(extension_id),
                f"Unknown extension: {extension_id}",
            )

        records = merge_records(indexed, stored)
        if not records:
            raise NotFound(f"Unknown extension: {extension_id}")
        return sorted(
            records,
            key=cmp_to_key(lambda a, b: compare_versions(a.version, b.version)),
            reverse=True,
        )

    # ========================================================================
    # Archives
    # ========================================================================

    def _candidate_versions(self, extension_id: str) -> List[str]:
        """Versions known from the index, the stored listing and the archive directory, newest first."""
        versions: List[str] = []
        index = self.cached_index()
        if index is not None:
            versions.extend(r.version for r in index.records_for(extension_id))
        versions.extend(r.version for r in self._stored_versions(extension_id))
        versions.extend(self.store.list_archive_versions(extension_id))
        return sort_versions(dict.fromkeys(versions), newest_first=True)

    async def _fetch_archive(self, extension_id: str, version: Optional[str]) -> ArchiveFetch:
        return await self.coordinator.fetch_extension_archive(extension_id, version)

    async def _newest_cached(self, extension_id: str, candidates: List[str]) -> Optional[ArchiveFetch]:
        for candidate in candidates:
            if self.store.has_archive(extension_id, candidate):
                data = await self.store.read_archive(extension_id, candidate)
                return ArchiveFetch(id=extension_id, version=candidate, data=data)
        return None

    async def download_archive(self, extension_id: str, version: Optional[str] = None) -> ArchiveFetch:
        if version is not None:
            if self.store.has_archive(extension_id, version):
                data = await self.store.read_archive(extension_id, version)
                return ArchiveFetch(id=extension_id, version=version, data=data)
            return await self.mode.on_miss(
                ("archive", extension_id, version),
                lambda: self._fetch_archive(extension_id, version),
                f"Extension archive not found: {extension_id} {version}",
            )

        candidates = self._candidate_versions(extension_id)
        if self.mode.serves_misses:
            if candidates:
                try:
                    return await self.download_archive(extension_id, candidates[0])
                except UpstreamNotFound:
                    # Stale index: upstream dropped the version it still names.
                    cached = await self._newest_cached(extension_id, candidates[1:])
                    if cached is None:
                        raise
                    logger.warning(
                        f"{extension_id} {candidates[0]} is gone upstream; serving cached {cached.version}"
                    )
                    return cached
            return await self.mode.on_miss(
                ("archive", extension_id, None),
                lambda: self._fetch_archive(extension_id, None),
                f"Unknown extension: {extension_id}",
            )

        cached = await self._newest_cached(extension_id, candidates)
        if cached is not None:
            return cached
        return await self.mode.on_miss(
            ("archive", extension_id, None),
            lambda: self._fetch_archive(extension_id, None),
            f"No cached archive for extension: {extension_id}",
        )

    # ========================================================================
    # Releases
    # ========================================================================

    def release_file_url(self, base_url: str, channel: str, version: str, filename: str) -> str:
        base = (self.public_url or base_url).rstrip("/")
        return f"{base}/api/releases/{channel}/{version}/{filename}?update=1"

    async def _latest_release_asset(self, channel: str, params: ReleaseParams) -> ReleaseAsset:
        versions = self.store.list_release_versions(channel, params.asset, params.os, params.arch)
        if versions:
            return self.store.get_release_asset(channel, params.asset, params.os, params.arch, versions[-1])
        return await self.mode.on_miss(
            ("release", channel, params.asset, params.os, params.arch),
            lambda: self.coordinator.fetch_release_asset(channel, params.os, params.arch, params.asset),
            f"No {channel} release of {params.asset} for {params.os}/{params.arch}",
        )

    async def resolve_latest_release(
        self,
        channel: Optional[str],
        params: ReleaseParams,
        base_url: str,
    ) -> VersionInfo:
        """
        Newest known release for (channel, os, arch, asset). ``api_url``
        points back at this mirror whenever it can serve the file.
        """
        channel = channel or self.default_channel
        release = await self._latest_release_asset(channel, params)

        api_url = None
        if self.mode.serves_misses or self.store.has_release(channel, release.version, release.filename):
            api_url = self.release_file_url(base_url, channel, release.version, release.filename)

        return VersionInfo(version=release.version, url=release.url, api_url=api_url, notes=release.notes)

    async def read_release_file(self, channel: str, version: str, filename: str) -> bytes:
        if self.store.has_release(channel, version, filename):
            return await self.store.read_release(channel, version, filename)
        return await self.mode.on_miss(
            ("release-file", channel, version, filename),
            lambda: self.coordinator.fetch_release_file(channel, version, filename),
            f"Release file not found: {channel} {version} {filename}",
        )

    async def read_legacy_release(self, asset: str, filename: str) -> bytes:
        """Older clients ask for /releases/<asset>/<filename>; only cached files are served."""
        release = self.store.find_release_by_filename(self.default_channel, asset, filename)
        if release is None:
            raise NotFound(f"Release file not found: {asset} {filename}")
        return await self.store.read_release(release.channel, release.version, filename)
