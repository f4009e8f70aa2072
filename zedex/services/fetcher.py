"""
Fetch coordinator: populates the artifact store from the upstream origin.

Used by the pre-fetch commands (whole index, every extension, release
matrix) and by the resolver for single on-demand fetches in proxy mode.
"""
from __future__ import annotations

import asyncio
import logging
from typing import List, Optional, Sequence, Tuple

from zedex.core.errors import MirrorError, NotFound, UpstreamNotFound, UpstreamUnavailable
from zedex.domain.models import (
    ArchiveFetch,
    ExtensionIndex,
    ExtensionRecord,
    FetchReport,
    ReleaseAsset,
    merge_records,
)
from zedex.domain.versions import compare_versions, newest, sort_versions
from zedex.services.upstream import UpstreamOrigin
from zedex.storage.artifact_store import ArtifactStore

logger = logging.getLogger(__name__)

# (asset, os, arch) published upstream
DEFAULT_RELEASE_PLATFORMS: List[Tuple[str, str, str]] = [
    ("zed", "linux", "x86_64"),
    ("zed-remote-server", "linux", "x86_64"),
    ("zed", "linux", "aarch64"),
    ("zed-remote-server", "linux", "aarch64"),
    ("zed", "macos", "x86_64"),
    ("zed-remote-server", "macos", "x86_64"),
    ("zed", "macos", "aarch64"),
]


class FetchCoordinator:
    """
    Drives population of the store.

    ``concurrency`` bounds parallel downloads during bulk runs and
    ``rate_limit`` is a pause (seconds) after each bulk download.
    """

    def __init__(
        self,
        store: ArtifactStore,
        upstream: UpstreamOrigin,
        concurrency: int = 1,
        rate_limit: float = 0.0,
    ):
        self.store = store
        self.upstream = upstream
        self.concurrency = max(1, concurrency)
        self.rate_limit = max(0.0, rate_limit)

    # ========================================================================
    # Extension index
    # ========================================================================

    async def refresh_index(self, provides: Optional[Sequence[str]] = None) -> ExtensionIndex:
        """
        Fetch the index and replace the cached one.

        Upstream caps the size of a single listing, so without explicit
        capabilities the full listing is followed by one listing per
        capability seen in it. With explicit capabilities only those are
        fetched. Records are merged by (id, version). If any request fails
        the cached index is left as it was and the error propagates.
        """
        groups: List[List[ExtensionRecord]] = []
        if provides:
            capabilities = list(provides)
        else:
            full = await self.upstream.fetch_index()
            groups.append(list(full.data))
            capabilities = full.capabilities()

        for capability in capabilities:
            partial = await self.upstream.fetch_index(provides=capability)
            groups.append(list(partial.data))

        records = merge_records(*groups)
        records.sort(key=lambda r: r.download_count, reverse=True)
        index = ExtensionIndex(data=records)
        self.store.replace_index(index)
        logger.info(f"Extension index refreshed: {len(index.ids())} extensions, {len(records)} records")
        return index

    # ========================================================================
    # Single extensions
    # ========================================================================

    async def fetch_extension_versions(self, extension_id: str) -> List[ExtensionRecord]:
        records = await self.upstream.fetch_extension_versions(extension_id)
        self.store.replace_versions(extension_id, records)
        logger.info(f"Cached version listing for {extension_id} ({len(records)} versions)")
        return records

    async def latest_upstream_version(self, extension_id: str) -> str:
        records = await self.fetch_extension_versions(extension_id)
        version = newest(r.version for r in records)
        if version is None:
            raise UpstreamNotFound(f"Extension {extension_id} has no published versions upstream")
        return version

    async def fetch_extension_archive(self, extension_id: str, version: Optional[str] = None) -> ArchiveFetch:
        """
        Download one archive into the store. Without ``version`` the newest
        version published upstream is used. An archive that is already
        cached is read back instead of downloaded again.
        """
        if version is None:
            version = await self.latest_upstream_version(extension_id)

        if self.store.has_archive(extension_id, version):
            logger.debug(f"Extension {extension_id} {version} already cached")
            return ArchiveFetch(id=extension_id, version=version, data=await self.store.read_archive(extension_id, version))

        data = await self.upstream.fetch_archive(extension_id, version)
        if not data:
            raise UpstreamUnavailable(f"Upstream returned an empty archive for {extension_id} {version}")
        await self.store.write_archive(extension_id, version, data)
        return ArchiveFetch(id=extension_id, version=version, data=data)

    # ========================================================================
    # Bulk extensions
    # ========================================================================

    async def _bulk_targets(self, index: ExtensionIndex, all_versions: bool, report: FetchReport) -> List[Tuple[str, str, str]]:
        targets: List[Tuple[str, str, str]] = []
        for extension_id in index.ids():
            if not all_versions:
                version = newest(r.version for r in index.records_for(extension_id))
                if not version:
                    logger.error(f"Index lists no usable version of {extension_id}")
                    report.failed[extension_id] = f"No version listed for {extension_id}"
                    continue
                targets.append((extension_id, extension_id, version))
                continue
            try:
                records = await self.fetch_extension_versions(extension_id)
            except MirrorError as e:
                logger.error(f"Failed to list versions of {extension_id}: {e}")
                report.failed[extension_id] = str(e)
                continue
            for version in sort_versions({r.version for r in records}, newest_first=True):
                targets.append((f"{extension_id}@{version}", extension_id, version))
        return targets

    async def fetch_all_extensions(self, all_versions: bool = False) -> FetchReport:
        """
        Download the newest archive of every indexed extension (every
        version with ``all_versions``). Failures are recorded per item and
        do not stop the run. Report keys are extension ids, or ``id@version``
        when fetching every version.
        """
        try:
            index = self.store.load_index()
        except NotFound:
            logger.info("No cached extension index; fetching it first")
            index = await self.refresh_index()

        report = FetchReport()
        targets = await self._bulk_targets(index, all_versions, report)
        logger.info(f"Bulk fetch of {len(targets)} archives (concurrency={self.concurrency}, rate_limit={self.rate_limit}s)")

        semaphore = asyncio.Semaphore(self.concurrency)

        async def run_one(key: str, extension_id: str, version: str) -> Tuple[str, str, Optional[str]]:
            async with semaphore:
                try:
                    if self.store.has_archive(extension_id, version):
                        return key, "skipped", None
                    await self.fetch_extension_archive(extension_id, version)
                except MirrorError as e:
                    logger.error(f"Failed to fetch {key}: {e}")
                    return key, "failed", str(e)
                if self.rate_limit:
                    await asyncio.sleep(self.rate_limit)
                return key, "succeeded", None

        results = await asyncio.gather(*(run_one(*t) for t in targets))
        for key, outcome, reason in results:
            if outcome == "succeeded":
                report.succeeded.append(key)
            elif outcome == "skipped":
                report.skipped.append(key)
            else:
                report.failed[key] = reason or "unknown error"

        logger.info(f"Bulk fetch finished: {report.summary()}")
        return report

    # ========================================================================
    # Releases
    # ========================================================================

    async def _store_release(self, info: ReleaseAsset) -> bool:
        """Persist the file and metadata of ``info``. Returns True if the file was downloaded."""
        downloaded = False
        if not self.store.has_release(info.channel, info.version, info.filename):
            data = await self.upstream.fetch_release_file(info.url)
            if not data:
                raise UpstreamUnavailable(f"Upstream returned an empty file for {info.url}")
            await self.store.write_release(info.channel, info.version, info.filename, data)
            downloaded = True
        self.store.save_release_asset(info)
        return downloaded

    async def fetch_release_asset(
        self,
        channel: str,
        os: str,
        arch: str,
        asset: str,
        version: Optional[str] = None,
    ) -> ReleaseAsset:
        """
        Mirror upstream's latest release for the tuple. Upstream only
        advertises its latest release, so a pinned ``version`` that is not
        the latest cannot be fetched.
        """
        info = await self.upstream.fetch_release_info(channel, os, arch, asset)
        if version is not None and compare_versions(version, info.version) != 0:
            raise UpstreamNotFound(
                f"Release {asset} {version} for {os}/{arch} is not available upstream "
                f"(latest {channel} is {info.version})"
            )
        await self._store_release(info)
        return info

    async def fetch_release_file(self, channel: str, version: str, filename: str) -> bytes:
        url = self.upstream.release_file_url(channel, version, filename)
        data = await self.upstream.fetch_release_file(url)
        if not data:
            raise UpstreamUnavailable(f"Upstream returned an empty file for {url}")
        await self.store.write_release(channel, version, filename, data)
        return data

    async def fetch_releases(
        self,
        channel: str = "stable",
        platforms: Optional[Sequence[Tuple[str, str, str]]] = None,
    ) -> FetchReport:
        report = FetchReport()
        for asset, os_name, arch in platforms or DEFAULT_RELEASE_PLATFORMS:
            key = f"{asset}-{os_name}-{arch}"
            try:
                info = await self.upstream.fetch_release_info(channel, os_name, arch, asset)
                downloaded = await self._store_release(info)
            except MirrorError as e:
                logger.error(f"Failed to fetch {channel} release {key}: {e}")
                report.failed[key] = str(e)
                continue
            if downloaded:
                report.succeeded.append(key)
                if self.rate_limit:
                    await asyncio.sleep(self.rate_limit)
            else:
                report.skipped.append(key)
        logger.info(f"Release fetch finished: {report.summary()}")
        return report
