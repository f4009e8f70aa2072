from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Response

from zedex.core.dependencies import get_resolver
from zedex.domain.models import ExtensionIndex, ExtensionListParams, ExtensionUpdatesParams
from zedex.services.resolver import MirrorResolver

logger = logging.getLogger(__name__)
router = APIRouter()

ARCHIVE_MEDIA_TYPE = "application/gzip"


def _archive_response(extension_id: str, version: str, data: bytes) -> Response:
    return Response(
        content=data,
        media_type=ARCHIVE_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{extension_id}-{version}.tgz"'},
    )


# ---------------------------------------------------------------------------
# 1. GET /extensions
# ---------------------------------------------------------------------------

@router.get("/extensions", response_model=ExtensionIndex, response_model_exclude_none=True)
async def list_extensions(
    params: Annotated[ExtensionListParams, Query()],
    resolver: MirrorResolver = Depends(get_resolver),
) -> ExtensionIndex:
    """
    Latest version of every extension, optionally narrowed by text,
    schema version and capability.
    """
    return ExtensionIndex(data=await resolver.list_extensions(params))


# ---------------------------------------------------------------------------
# 2. GET /extensions/updates
# ---------------------------------------------------------------------------

@router.get("/extensions/updates", response_model=ExtensionIndex, response_model_exclude_none=True)
async def extension_updates(
    params: Annotated[ExtensionUpdatesParams, Query()],
    resolver: MirrorResolver = Depends(get_resolver),
) -> ExtensionIndex:
    """
    Update check: for each requested id, the newest version compatible with
    the caller's schema and WASM API ranges.
    """
    return ExtensionIndex(data=await resolver.check_updates(params))


# ---------------------------------------------------------------------------
# 3. GET /extensions/{id}
# ---------------------------------------------------------------------------

@router.get("/extensions/{extension_id}", response_model=ExtensionIndex, response_model_exclude_none=True)
async def extension_versions(
    extension_id: str,
    resolver: MirrorResolver = Depends(get_resolver),
) -> ExtensionIndex:
    return ExtensionIndex(data=await resolver.list_versions(extension_id))


# ---------------------------------------------------------------------------
# 4. Archive downloads
# ---------------------------------------------------------------------------

@router.get("/extensions/{extension_id}/download")
async def download_latest(
    extension_id: str,
    resolver: MirrorResolver = Depends(get_resolver),
) -> Response:
    archive = await resolver.download_archive(extension_id)
    logger.debug(f"Serving {extension_id} {archive.version} ({len(archive.data)} bytes)")
    return _archive_response(extension_id, archive.version, archive.data)


@router.get("/extensions/{extension_id}/{version}/download")
async def download_version(
    extension_id: str,
    version: str,
    resolver: MirrorResolver = Depends(get_resolver),
) -> Response:
    archive = await resolver.download_archive(extension_id, version)
    return _archive_response(extension_id, archive.version, archive.data)
