"""
Pydantic models for the extension mirror.

This module defines:
- Extension records and the extension index (the upstream wire format)
- Release assets and resolved "latest version" answers
- Per-endpoint query parameter models
- Results of fetch operations
"""

from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Extension Models
# ---------------------------------------------------------------------------


class ExtensionRecord(BaseModel):
    """
    One published version of one extension.

    Several records share an ``id`` (one per version); ``(id, version)`` is the
    unique key. Fields that upstream adds later are kept as extras so a
    mirrored index round-trips without losing information.
    """

    model_config = ConfigDict(frozen=True, extra="allow")

    id: str = Field(description="Stable extension identifier.")
    name: str = Field(description="Display name.")
    version: str = Field(description="Published version string.")
    schema_version: int = Field(
        default=0,
        description="Extension-loading protocol version the host application must support.",
    )
    wasm_api_version: Optional[str] = Field(
        default=None,
        description="WASM extension API version, if the extension ships WASM.",
    )
    description: str = Field(default="", description="Short description.")
    repository: Optional[str] = Field(default=None, description="Source repository URL.")
    authors: List[str] = Field(default_factory=list, description="Extension authors.")
    published_at: Optional[str] = Field(default=None, description="Upstream publication timestamp.")
    download_count: int = Field(default=0, description="Upstream download counter.")
    provides: List[str] = Field(
        default_factory=list,
        description="Capability tags, e.g. 'languages', 'language-servers', 'themes'.",
    )

    @property
    def key(self) -> tuple[str, str]:
        return (self.id, self.version)

    def provides_capability(self, capability: str) -> bool:
        return capability in self.provides


class ExtensionIndex(BaseModel):
    """
    The full collection of extension records, wrapped the way upstream does.

    Persisted at: <ROOT_DIR>/extensions.json
    """

    model_config = ConfigDict(frozen=True)

    data: List[ExtensionRecord] = Field(default_factory=list)

    def ids(self) -> List[str]:
        """Distinct ids in ascending order."""
        return sorted({r.id for r in self.data})

    def records_for(self, extension_id: str) -> List[ExtensionRecord]:
        return [r for r in self.data if r.id == extension_id]

    def capabilities(self) -> List[str]:
        caps = set()
        for record in self.data:
            caps.update(record.provides)
        return sorted(caps)

    def to_json(self) -> str:
        return self.model_dump_json(indent=2, exclude_none=True)


def merge_records(*groups: List[ExtensionRecord]) -> List[ExtensionRecord]:
    """
    Concatenate record lists, dropping later duplicates of the same (id, version).
    """
    seen = set()
    merged: List[ExtensionRecord] = []
    for group in groups:
        for record in group:
            if record.key in seen:
                continue
            seen.add(record.key)
            merged.append(record)
    return merged


class ArchiveFetch(BaseModel):
    """Bytes of one extension archive together with the version they belong to."""

    id: str
    version: str
    data: bytes


# ---------------------------------------------------------------------------
# Release Models
# ---------------------------------------------------------------------------


class ReleaseAsset(BaseModel):
    """
    One downloadable build of the host application (or a companion binary).

    Persisted in: <ROOT_DIR>/releases/<channel>/<version>/<asset>-<os>-<arch>.json
    The file itself lives next to it as <ROOT_DIR>/releases/<channel>/<version>/<filename>.
    """

    channel: str = Field(description="Release track, e.g. 'stable' or 'preview'.")
    asset: str = Field(description="Artifact family, e.g. 'zed' or 'zed-remote-server'.")
    os: str = Field(description="Target operating system, e.g. 'linux' or 'macos'.")
    arch: str = Field(description="Target architecture, e.g. 'x86_64' or 'aarch64'.")
    version: str = Field(description="Release version.")
    filename: str = Field(description="File name of the downloadable artifact.")
    url: str = Field(description="Canonical upstream download URL.")
    notes: Optional[str] = Field(default=None, description="Release notes, when upstream provides them.")


class VersionInfo(BaseModel):
    """
    Answer to a "latest version" query, in the shape the host application expects.
    Computed on demand; never persisted on its own.
    """

    version: str
    url: str = Field(description="Canonical upstream download location.")
    api_url: Optional[str] = Field(
        default=None,
        description="Download location on this mirror, when the mirror can serve the file.",
    )
    notes: Optional[str] = None


# ---------------------------------------------------------------------------
# Query Parameter Models
# ---------------------------------------------------------------------------


class ExtensionListParams(BaseModel):
    """Query parameters of GET /extensions."""

    filter: Optional[str] = Field(
        default=None,
        description="Case-insensitive substring matched against name and description.",
    )
    max_schema_version: Optional[int] = Field(
        default=None,
        description="Only consider versions with schema_version <= this value.",
    )
    provides: Optional[str] = Field(
        default=None,
        description="Only return extensions providing this capability tag.",
    )


class ExtensionUpdatesParams(BaseModel):
    """Query parameters of GET /extensions/updates."""

    min_schema_version: Optional[int] = None
    max_schema_version: Optional[int] = None
    min_wasm_api_version: Optional[str] = None
    max_wasm_api_version: Optional[str] = None
    ids: Optional[str] = Field(
        default=None,
        description="Comma-separated extension ids. Omitted means every id; empty means none.",
    )

    def id_list(self) -> Optional[List[str]]:
        if self.ids is None:
            return None
        return [part.strip() for part in self.ids.split(",") if part.strip()]


class ReleaseParams(BaseModel):
    """Query parameters of the latest-release endpoints; defaults match the host application."""

    os: str = Field(default="macos")
    arch: str = Field(default="x86_64")
    asset: str = Field(default="zed")


# ---------------------------------------------------------------------------
# Fetch Results
# ---------------------------------------------------------------------------


class FetchReport(BaseModel):
    """Per-item outcome of a bulk fetch."""

    succeeded: List[str] = Field(default_factory=list)
    skipped: List[str] = Field(default_factory=list)
    failed: Dict[str, str] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed

    def summary(self) -> str:
        return f"{len(self.succeeded)} fetched, {len(self.skipped)} already cached, {len(self.failed)} failed"
