"""Persistent storage for the mirror."""

from zedex.storage.artifact_store import ArtifactStore
from zedex.storage.file_store import FileArtifactStore

__all__ = ["ArtifactStore", "FileArtifactStore"]
