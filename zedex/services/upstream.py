"""
Upstream origin client for the extension registry and the release API.

The core only talks to ``UpstreamOrigin``; ``HttpUpstreamClient`` is the
production implementation on top of httpx. Tests inject a fake.
"""
from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional
from urllib.parse import urlsplit

import httpx
from pydantic import ValidationError

from zedex import __version__
from zedex.core.errors import UpstreamNotFound, UpstreamUnavailable
from zedex.domain.models import ExtensionIndex, ExtensionRecord, ReleaseAsset

logger = logging.getLogger(__name__)

USER_AGENT = f"zedex/{__version__}"


class UpstreamOrigin(ABC):
    """Everything the mirror needs from the origin."""

    @abstractmethod
    async def fetch_index(self, provides: Optional[str] = None) -> ExtensionIndex:
        pass

    @abstractmethod
    async def fetch_extension_versions(self, extension_id: str) -> List[ExtensionRecord]:
        """All published versions of one extension. Raises UpstreamNotFound for unknown ids."""
        pass

    @abstractmethod
    async def fetch_archive(self, extension_id: str, version: str) -> bytes:
        pass

    @abstractmethod
    async def fetch_release_info(self, channel: str, os: str, arch: str, asset: str) -> ReleaseAsset:
        """Upstream's current latest release for the tuple."""
        pass

    @abstractmethod
    async def fetch_release_file(self, url: str) -> bytes:
        pass

    @abstractmethod
    def release_file_url(self, channel: str, version: str, filename: str) -> str:
        """Canonical upstream location of a release file."""
        pass


def _filename_from_url(url: str) -> str:
    path = urlsplit(url).path
    return path.rsplit("/", 1)[-1]


class HttpUpstreamClient(UpstreamOrigin):
    """
    httpx-backed origin client.

    Each call opens its own ``AsyncClient`` so the client is safe to share
    across event loops. Transport errors and 5xx responses are retried with
    linear back-off; 404 maps to ``UpstreamNotFound`` and every other failure
    to ``UpstreamUnavailable``.
    """

    def __init__(
        self,
        extensions_api_url: str = "https://api.zed.dev",
        releases_api_url: str = "https://zed.dev",
        timeout: float = 60.0,
        retries: int = 3,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        backoff: float = 1.0,
    ):
        self.extensions_api_url = extensions_api_url.rstrip("/")
        self.releases_api_url = releases_api_url.rstrip("/")
        self.timeout = timeout
        self.retries = max(1, retries)
        self.backoff = backoff
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            follow_redirects=True,
            timeout=self.timeout,
            headers={"User-Agent": USER_AGENT},
            transport=self._transport,
        )

    async def _get(self, url: str, params: Optional[Dict[str, Any]] = None) -> httpx.Response:
        last_error: Optional[str] = None
        for attempt in range(1, self.retries + 1):
            try:
                async with self._client() as client:
                    response = await client.get(url, params=params)
                    await response.aread()
            except httpx.HTTPError as e:
                last_error = f"{type(e).__name__}: {e}"
            else:
                if response.status_code == 404:
                    logger.info(f"Upstream has no {url} (404)")
                    raise UpstreamNotFound(f"Not found upstream: {url}")
                if response.status_code < 400:
                    return response
                if response.status_code < 500:
                    logger.error(f"Upstream rejected {url}: HTTP {response.status_code}")
                    raise UpstreamUnavailable(f"Upstream returned HTTP {response.status_code} for {url}")
                last_error = f"HTTP {response.status_code}"

            if attempt < self.retries:
                logger.warning(f"GET {url} failed (attempt {attempt}/{self.retries}): {last_error}. Retrying...")
                await asyncio.sleep(self.backoff * attempt)

        logger.error(f"GET {url} failed after {self.retries} attempts: {last_error}")
        raise UpstreamUnavailable(f"Upstream unavailable for {url}: {last_error}")

    async def _get_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Any:
        response = await self._get(url, params)
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamUnavailable(f"Upstream sent invalid JSON for {url}: {e}") from e

    # ========================================================================
    # Extensions
    # ========================================================================

    async def fetch_index(self, provides: Optional[str] = None) -> ExtensionIndex:
        url = f"{self.extensions_api_url}/extensions"
        params = {"provides": provides} if provides else None
        logger.info(f"Fetching extension index from {url}" + (f" (provides={provides})" if provides else ""))
        payload = await self._get_json(url, params)
        try:
            index = ExtensionIndex.model_validate(payload)
        except ValidationError as e:
            raise UpstreamUnavailable(f"Upstream index from {url} does not parse: {e}") from e
        logger.info(f"Fetched {len(index.data)} extension records from upstream")
        return index

    async def fetch_extension_versions(self, extension_id: str) -> List[ExtensionRecord]:
        url = f"{self.extensions_api_url}/extensions/{extension_id}"
        payload = await self._get_json(url)
        try:
            records = ExtensionIndex.model_validate(payload).data
        except ValidationError as e:
            raise UpstreamUnavailable(f"Upstream version listing from {url} does not parse: {e}") from e
        if not records:
            raise UpstreamNotFound(f"Extension {extension_id} has no published versions upstream")
        return list(records)

    async def fetch_archive(self, extension_id: str, version: str) -> bytes:
        url = f"{self.extensions_api_url}/extensions/{extension_id}/{version}/download"
        logger.info(f"Downloading extension {extension_id} {version} from {url}")
        response = await self._get(url)
        return response.content

    # ========================================================================
    # Releases
    # ========================================================================

    def _latest_url(self, channel: str) -> str:
        if channel == "stable":
            return f"{self.releases_api_url}/api/releases/latest"
        return f"{self.releases_api_url}/api/releases/{channel}/latest"

    async def fetch_release_info(self, channel: str, os: str, arch: str, asset: str) -> ReleaseAsset:
        url = self._latest_url(channel)
        payload = await self._get_json(url, {"asset": asset, "os": os, "arch": arch})
        if not isinstance(payload, dict) or not payload.get("version") or not payload.get("url"):
            raise UpstreamUnavailable(f"Unexpected release payload from {url}: {payload!r}")

        download_url = str(payload["url"])
        filename = _filename_from_url(download_url)
        if not filename:
            raise UpstreamUnavailable(f"Release URL without a file name: {download_url}")

        logger.info(f"Upstream latest {channel} {asset} for {os}/{arch} is {payload['version']}")
        return ReleaseAsset(
            channel=channel,
            asset=asset,
            os=os,
            arch=arch,
            version=str(payload["version"]),
            filename=filename,
            url=download_url,
            notes=payload.get("notes"),
        )

    async def fetch_release_file(self, url: str) -> bytes:
        logger.info(f"Downloading release file {url}")
        response = await self._get(url)
        return response.content

    def release_file_url(self, channel: str, version: str, filename: str) -> str:
        return f"{self.releases_api_url}/api/releases/{channel}/{version}/{filename}?update=1"
