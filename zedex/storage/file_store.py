import contextlib
import json
import logging
import os
import uuid
from pathlib import Path
from typing import List, Optional, Tuple

import aiofiles
import aiofiles.os

from zedex.core.errors import ArchiveConflict, CorruptIndex, NotFound, StoreIoError
from zedex.domain.models import ExtensionIndex, ExtensionRecord, ReleaseAsset
from zedex.domain.versions import sort_versions
from zedex.storage.artifact_store import ArtifactStore

logger = logging.getLogger(__name__)

INDEX_FILE = "extensions.json"
VERSIONS_FILE = "versions.json"
EXTENSIONS_DIR = "extensions"
RELEASES_DIR = "releases"


def _safe(component: str) -> str:
    """Reject path components that could escape the cache root."""
    if (
        not component
        or component in (".", "..")
        or "/" in component
        or "\\" in component
        or "\x00" in component
    ):
        raise NotFound(f"Invalid path component: {component!r}")
    return component


def _tmp_path(path: Path) -> Path:
    return path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")


def _discard(path: Path) -> None:
    with contextlib.suppress(OSError):
        path.unlink()


class FileArtifactStore(ArtifactStore):
    """
    Filesystem-backed store. Layout under the root:

        extensions.json
        extensions/<id>/versions.json
        extensions/<id>/<id>-<version>.tgz
        releases/<channel>/<version>/<filename>
        releases/<channel>/<version>/<asset>-<os>-<arch>.json

    Every write goes to a temporary file in the target directory and is then
    moved into place, so readers see either the old or the new file. Metadata
    is renamed over the previous version; archives and release files are
    hard-linked, which fails if the name already exists.
    """

    def __init__(self, root: Path):
        self._root = Path(root)
        try:
            self._root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreIoError(self._root, str(e)) from e

    @property
    def root(self) -> Path:
        return self._root

    # ========================================================================
    # Paths
    # ========================================================================

    @property
    def index_path(self) -> Path:
        return self._root / INDEX_FILE

    def _extension_dir(self, extension_id: str) -> Path:
        return self._root / EXTENSIONS_DIR / _safe(extension_id)

    def _versions_path(self, extension_id: str) -> Path:
        return self._extension_dir(extension_id) / VERSIONS_FILE

    def _archive_path(self, extension_id: str, version: str) -> Path:
        return self._extension_dir(extension_id) / f"{_safe(extension_id)}-{_safe(version)}.tgz"

    def _release_dir(self, channel: str, version: str) -> Path:
        return self._root / RELEASES_DIR / _safe(channel) / _safe(version)

    def _release_path(self, channel: str, version: str, filename: str) -> Path:
        return self._release_dir(channel, version) / _safe(filename)

    def _release_meta_path(self, channel: str, asset: str, os_name: str, arch: str, version: str) -> Path:
        name = f"{_safe(asset)}-{_safe(os_name)}-{_safe(arch)}.json"
        return self._release_dir(channel, version) / name

    # ========================================================================
    # Low-level I/O
    # ========================================================================

    def _write_text_atomic(self, path: Path, text: str) -> None:
        tmp = _tmp_path(path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(text, encoding="utf-8")
            os.replace(tmp, path)
        except OSError as e:
            _discard(tmp)
            raise StoreIoError(path, str(e)) from e

    def _read_json_bytes(self, path: Path, missing: str) -> bytes:
        # Raw bytes: bad UTF-8 then fails JSON validation instead of decoding.
        try:
            return path.read_bytes()
        except FileNotFoundError:
            raise NotFound(missing) from None
        except OSError as e:
            raise StoreIoError(path, str(e)) from e

    async def _read_bytes(self, path: Path, missing: str) -> bytes:
        try:
            async with aiofiles.open(path, "rb") as f:
                return await f.read()
        except FileNotFoundError:
            raise NotFound(missing) from None
        except OSError as e:
            raise StoreIoError(path, str(e)) from e

    async def _check_existing(self, path: Path, data: bytes, key: str) -> bool:
        existing = await self._read_bytes(path, f"{key} vanished while being compared")
        if existing == data:
            logger.debug(f"{key} already cached with identical content, skipping write")
            return False
        logger.error(f"Rejected write of {key}: cached content differs ({len(existing)} vs {len(data)} bytes)")
        raise ArchiveConflict(key, path)

    async def _write_bytes_once(self, path: Path, data: bytes, key: str) -> bool:
        if path.is_file():
            return await self._check_existing(path, data, key)

        # os.link refuses to replace an existing name, so of two concurrent
        # writers exactly one publishes and the other compares.
        tmp = _tmp_path(path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(tmp, "wb") as f:
                await f.write(data)
            try:
                await aiofiles.os.link(tmp, path)
                published = True
            except FileExistsError:
                published = False
        except OSError as e:
            raise StoreIoError(path, str(e)) from e
        finally:
            _discard(tmp)

        if not published:
            return await self._check_existing(path, data, key)
        logger.info(f"Cached {key} ({len(data)} bytes) at {path}")
        return True

    # ========================================================================
    # Extension index
    # ========================================================================

    def load_index(self) -> ExtensionIndex:
        raw = self._read_json_bytes(self.index_path, "Extension index has not been fetched yet")
        try:
            return ExtensionIndex.model_validate_json(raw)
        except ValueError as e:
            logger.error(f"Failed to parse {self.index_path}: {e}")
            raise CorruptIndex(self.index_path, str(e)) from e

    def replace_index(self, index: ExtensionIndex) -> None:
        self._write_text_atomic(self.index_path, index.to_json())
        logger.info(f"Saved extension index with {len(index.data)} records to {self.index_path}")

    def index_stamp(self) -> Optional[Tuple[int, int]]:
        try:
            st = self.index_path.stat()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StoreIoError(self.index_path, str(e)) from e
        return (st.st_mtime_ns, st.st_size)

    def load_versions(self, extension_id: str) -> List[ExtensionRecord]:
        path = self._versions_path(extension_id)
        raw = self._read_json_bytes(path, f"No version listing cached for {extension_id}")
        try:
            return list(ExtensionIndex.model_validate_json(raw).data)
        except ValueError as e:
            logger.error(f"Failed to parse {path}: {e}")
            raise CorruptIndex(path, str(e)) from e

    def replace_versions(self, extension_id: str, records: List[ExtensionRecord]) -> None:
        path = self._versions_path(extension_id)
        self._write_text_atomic(path, ExtensionIndex(data=records).to_json())
        logger.debug(f"Saved {len(records)} versions of {extension_id} to {path}")

    # ========================================================================
    # Extension archives
    # ========================================================================

    def has_archive(self, extension_id: str, version: str) -> bool:
        return self._archive_path(extension_id, version).is_file()

    def list_archive_versions(self, extension_id: str) -> List[str]:
        ext_dir = self._extension_dir(extension_id)
        prefix = f"{extension_id}-"
        try:
            names = [p.name for p in ext_dir.iterdir() if p.is_file()]
        except FileNotFoundError:
            return []
        except OSError as e:
            raise StoreIoError(ext_dir, str(e)) from e
        return [
            name[len(prefix):-len(".tgz")]
            for name in names
            if name.startswith(prefix) and name.endswith(".tgz") and len(name) > len(prefix) + len(".tgz")
        ]

    async def read_archive(self, extension_id: str, version: str) -> bytes:
        return await self._read_bytes(
            self._archive_path(extension_id, version),
            f"Extension archive not cached: {extension_id} {version}",
        )

    async def write_archive(self, extension_id: str, version: str, data: bytes) -> bool:
        return await self._write_bytes_once(
            self._archive_path(extension_id, version),
            data,
            f"extension {extension_id} {version}",
        )

    # ========================================================================
    # Releases
    # ========================================================================

    def has_release(self, channel: str, version: str, filename: str) -> bool:
        return self._release_path(channel, version, filename).is_file()

    async def read_release(self, channel: str, version: str, filename: str) -> bytes:
        return await self._read_bytes(
            self._release_path(channel, version, filename),
            f"Release file not cached: {channel} {version} {filename}",
        )

    async def write_release(self, channel: str, version: str, filename: str, data: bytes) -> bool:
        return await self._write_bytes_once(
            self._release_path(channel, version, filename),
            data,
            f"release {channel} {version} {filename}",
        )

    def save_release_asset(self, asset: ReleaseAsset) -> None:
        path = self._release_meta_path(asset.channel, asset.asset, asset.os, asset.arch, asset.version)
        self._write_text_atomic(path, asset.model_dump_json(indent=2, exclude_none=True))
        logger.debug(f"Saved release metadata to {path}")

    def _read_release_asset(self, path: Path) -> ReleaseAsset:
        raw = self._read_json_bytes(path, f"Release metadata not cached: {path.name}")
        try:
            return ReleaseAsset.model_validate_json(raw)
        except ValueError as e:
            logger.error(f"Failed to parse release metadata {path}: {e}")
            raise CorruptIndex(path, str(e)) from e

    def get_release_asset(self, channel: str, asset: str, os: str, arch: str, version: str) -> ReleaseAsset:
        return self._read_release_asset(self._release_meta_path(channel, asset, os, arch, version))

    def _channel_versions(self, channel: str) -> List[str]:
        channel_dir = self._root / RELEASES_DIR / _safe(channel)
        try:
            return [p.name for p in channel_dir.iterdir() if p.is_dir()]
        except FileNotFoundError:
            return []
        except OSError as e:
            raise StoreIoError(channel_dir, str(e)) from e

    def list_release_versions(self, channel: str, asset: str, os: str, arch: str) -> List[str]:
        meta_name = f"{_safe(asset)}-{_safe(os)}-{_safe(arch)}.json"
        versions = [
            v for v in self._channel_versions(channel)
            if (self._release_dir(channel, v) / meta_name).is_file()
        ]
        return sort_versions(versions)

    def find_release_by_filename(self, channel: str, asset: str, filename: str) -> Optional[ReleaseAsset]:
        _safe(filename)
        for version in sort_versions(self._channel_versions(channel), newest_first=True):
            release_dir = self._release_dir(channel, version)
            if not (release_dir / filename).is_file():
                continue
            for meta_path in sorted(release_dir.glob("*.json")):
                try:
                    record = self._read_release_asset(meta_path)
                except CorruptIndex:
                    continue
                if record.asset == asset and record.filename == filename:
                    return record
        return None

    def describe(self) -> dict:
        """Summary used by the startup banner and the health endpoint."""
        index_records = 0
        if self.index_path.is_file():
            try:
                index_records = len(json.loads(self.index_path.read_text(encoding="utf-8")).get("data", []))
            except (OSError, ValueError, AttributeError):
                index_records = 0
        releases_dir = self._root / RELEASES_DIR
        channels = sorted(p.name for p in releases_dir.iterdir() if p.is_dir()) if releases_dir.is_dir() else []
        return {
            "root": str(self._root),
            "index_records": index_records,
            "release_channels": channels,
        }
