from __future__ import annotations

import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query, Request, Response

from zedex.core.dependencies import get_resolver
from zedex.domain.models import ReleaseParams, VersionInfo
from zedex.services.resolver import MirrorResolver

logger = logging.getLogger(__name__)
router = APIRouter()

RELEASE_MEDIA_TYPE = "application/octet-stream"


def _release_response(filename: str, data: bytes) -> Response:
    return Response(
        content=data,
        media_type=RELEASE_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


async def _latest(resolver: MirrorResolver, channel: Optional[str], params: ReleaseParams, request: Request) -> VersionInfo:
    info = await resolver.resolve_latest_release(channel, params, str(request.base_url))
    logger.debug(f"Latest {channel or resolver.default_channel} {params.asset} for {params.os}/{params.arch}: {info.version}")
    return info


# ---------------------------------------------------------------------------
# 1. Latest version
# ---------------------------------------------------------------------------

@router.get("/api/releases/latest", response_model=VersionInfo, response_model_exclude_none=True)
async def latest_release(
    request: Request,
    params: Annotated[ReleaseParams, Query()],
    resolver: MirrorResolver = Depends(get_resolver),
) -> VersionInfo:
    """
    Self-update check against the default channel.
    """
    return await _latest(resolver, None, params, request)


@router.get("/api/releases/{channel}/latest", response_model=VersionInfo, response_model_exclude_none=True)
async def latest_channel_release(
    channel: str,
    request: Request,
    params: Annotated[ReleaseParams, Query()],
    resolver: MirrorResolver = Depends(get_resolver),
) -> VersionInfo:
    return await _latest(resolver, channel, params, request)


# ---------------------------------------------------------------------------
# 2. Release files
# ---------------------------------------------------------------------------

@router.get("/api/releases/{channel}/{version}/{filename}")
async def release_file(
    channel: str,
    version: str,
    filename: str,
    update: Optional[str] = None,
    resolver: MirrorResolver = Depends(get_resolver),
) -> Response:
    """
    Release download. ``update`` is sent by the host application's updater
    and carries no meaning for the mirror.
    """
    data = await resolver.read_release_file(channel, version, filename)
    return _release_response(filename, data)


@router.get("/releases/{asset}/{filename}")
async def legacy_release_file(
    asset: str,
    filename: str,
    resolver: MirrorResolver = Depends(get_resolver),
) -> Response:
    data = await resolver.read_legacy_release(asset, filename)
    return _release_response(filename, data)
