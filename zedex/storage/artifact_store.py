from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional, Tuple

from zedex.domain.models import ExtensionIndex, ExtensionRecord, ReleaseAsset


class ArtifactStore(ABC):
    """
    Abstract base class for the mirror's persistent storage.

    Implementations own every cached artifact. Index and listing writes replace
    whole files; archives and release files are written once per key.
    """

    @property
    @abstractmethod
    def root(self) -> Path:
        """Cache root directory."""
        pass

    # Extension index

    @abstractmethod
    def load_index(self) -> ExtensionIndex:
        """Read the cached index. Raises NotFound if never fetched, CorruptIndex if unparseable."""
        pass

    @abstractmethod
    def replace_index(self, index: ExtensionIndex) -> None:
        """Atomically replace the cached index."""
        pass

    @abstractmethod
    def index_stamp(self) -> Optional[Tuple[int, int]]:
        """Cheap change marker for the cached index, or None if there is none."""
        pass

    @abstractmethod
    def load_versions(self, extension_id: str) -> List[ExtensionRecord]:
        """Read the cached per-id version listing. Raises NotFound if absent."""
        pass

    @abstractmethod
    def replace_versions(self, extension_id: str, records: List[ExtensionRecord]) -> None:
        """Atomically replace the per-id version listing."""
        pass

    # Extension archives

    @abstractmethod
    def has_archive(self, extension_id: str, version: str) -> bool:
        pass

    @abstractmethod
    def list_archive_versions(self, extension_id: str) -> List[str]:
        """Versions of ``extension_id`` whose archive is cached, in no particular order."""
        pass

    @abstractmethod
    async def read_archive(self, extension_id: str, version: str) -> bytes:
        """Raises NotFound if the archive is not cached."""
        pass

    @abstractmethod
    async def write_archive(self, extension_id: str, version: str, data: bytes) -> bool:
        """
        Store archive bytes once. Returns False when identical bytes were already
        cached; raises ArchiveConflict when different bytes were.
        """
        pass

    # Release files

    @abstractmethod
    def has_release(self, channel: str, version: str, filename: str) -> bool:
        pass

    @abstractmethod
    async def read_release(self, channel: str, version: str, filename: str) -> bytes:
        """Raises NotFound if the release file is not cached."""
        pass

    @abstractmethod
    async def write_release(self, channel: str, version: str, filename: str, data: bytes) -> bool:
        """Same write-once contract as ``write_archive``."""
        pass

    @abstractmethod
    def save_release_asset(self, asset: ReleaseAsset) -> None:
        """Record release metadata for (channel, asset, os, arch, version)."""
        pass

    @abstractmethod
    def get_release_asset(self, channel: str, asset: str, os: str, arch: str, version: str) -> ReleaseAsset:
        """Raises NotFound if no metadata is recorded for these coordinates."""
        pass

    @abstractmethod
    def list_release_versions(self, channel: str, asset: str, os: str, arch: str) -> List[str]:
        """Known versions for the tuple, oldest first."""
        pass

    @abstractmethod
    def find_release_by_filename(self, channel: str, asset: str, filename: str) -> Optional[ReleaseAsset]:
        """Newest recorded release of ``asset`` whose file is ``filename``."""
        pass

    @abstractmethod
    def describe(self) -> dict:
        """Summary of what is cached: ``root``, ``index_records`` and ``release_channels``."""
        pass
