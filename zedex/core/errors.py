"""
Error taxonomy shared by the store, the fetch coordinator and the resolver.

The HTTP layer maps these to status codes in one place (see ``zedex.main``):

* ``NotFound`` / ``UpstreamNotFound`` -> 404
* ``UpstreamUnavailable`` -> 502
* everything else derived from ``MirrorError`` -> 500
"""
from __future__ import annotations

from pathlib import Path
from typing import Optional, Union


class MirrorError(Exception):
    """Base class for every failure the mirror reports to its callers."""


class NotFound(MirrorError):
    """The requested id/version/channel/asset/filename does not exist."""


class UpstreamNotFound(NotFound):
    """Upstream answered, but has no such extension, version or release."""


class UpstreamUnavailable(MirrorError):
    """Upstream could not be reached, timed out, or sent something unusable."""


class CorruptIndex(MirrorError):
    """The cached index exists but does not parse."""

    def __init__(self, path: Union[Path, str], reason: str):
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"Cached index at {self.path} is corrupt: {reason}")


class StoreIoError(MirrorError):
    """A filesystem operation inside the cache root failed."""

    def __init__(self, path: Union[Path, str], reason: str):
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"Storage error at {self.path}: {reason}")


class ArchiveConflict(MirrorError):
    """Different bytes were offered for an artifact that is already cached."""

    def __init__(self, key: str, path: Optional[Path] = None):
        self.key = key
        self.path = path
        super().__init__(f"Refusing to overwrite cached artifact {key} with different content")
