"""Tests for the httpx upstream client against a mock transport."""

from typing import Callable, List

import httpx
import pytest

from zedex.core.errors import UpstreamNotFound, UpstreamUnavailable
from zedex.services.upstream import HttpUpstreamClient


def make_client(handler: Callable[[httpx.Request], httpx.Response], retries: int = 3) -> HttpUpstreamClient:
    return HttpUpstreamClient(
        extensions_api_url="https://api.zed.test/",
        releases_api_url="https://zed.test",
        timeout=5,
        retries=retries,
        transport=httpx.MockTransport(handler),
        backoff=0,
    )


INDEX_PAYLOAD = {
    "data": [
        {
            "id": "rust",
            "name": "Rust",
            "version": "0.1.0",
            "schema_version": 1,
            "wasm_api_version": "0.0.6",
            "description": "Rust support",
            "repository": "https://github.com/zed-extensions/rust",
            "authors": ["Zed"],
            "download_count": 42,
            "provides": ["languages", "language-servers"],
            "published_at": "2024-01-01T00:00:00Z",
        }
    ]
}


async def test_fetch_index_with_capability() -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=INDEX_PAYLOAD)

    index = await make_client(handler).fetch_index(provides="languages")

    assert index.data[0].id == "rust"
    assert index.data[0].provides == ["languages", "language-servers"]
    assert str(seen[0].url) == "https://api.zed.test/extensions?provides=languages"
    assert seen[0].headers["user-agent"].startswith("zedex/")


async def test_not_found_is_not_retried() -> None:
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        return httpx.Response(404, text="no such extension")

    with pytest.raises(UpstreamNotFound):
        await make_client(handler).fetch_archive("missing", "1.0.0")
    assert len(attempts) == 1
    assert attempts[0].url.path == "/extensions/missing/1.0.0/download"


async def test_server_errors_are_retried_then_unavailable() -> None:
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        return httpx.Response(503)

    with pytest.raises(UpstreamUnavailable):
        await make_client(handler, retries=3).fetch_index()
    assert len(attempts) == 3


async def test_transport_error_then_success() -> None:
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        if len(attempts) == 1:
            raise httpx.ConnectTimeout("timed out", request=request)
        return httpx.Response(200, content=b"\x1f\x8barchive")

    data = await make_client(handler).fetch_archive("rust", "0.1.0")
    assert data == b"\x1f\x8barchive"
    assert len(attempts) == 2


async def test_client_errors_are_unavailable() -> None:
    with pytest.raises(UpstreamUnavailable):
        await make_client(lambda request: httpx.Response(403)).fetch_index()


async def test_invalid_payloads_are_unavailable() -> None:
    with pytest.raises(UpstreamUnavailable):
        await make_client(lambda request: httpx.Response(200, text="<html>")).fetch_index()
    with pytest.raises(UpstreamUnavailable):
        await make_client(lambda request: httpx.Response(200, json={"data": [{"id": 1}]})).fetch_index()


async def test_extension_versions_empty_is_not_found() -> None:
    with pytest.raises(UpstreamNotFound):
        await make_client(lambda request: httpx.Response(200, json={"data": []})).fetch_extension_versions("rust")


async def test_release_info() -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={
                "version": "0.187.8",
                "url": "https://zed.dev/api/releases/stable/0.187.8/zed-linux-x86_64.tar.gz?update=1",
            },
        )

    client = make_client(handler)
    info = await client.fetch_release_info("stable", "linux", "x86_64", "zed")

    assert info.version == "0.187.8"
    assert info.filename == "zed-linux-x86_64.tar.gz"
    assert (info.channel, info.asset, info.os, info.arch) == ("stable", "zed", "linux", "x86_64")
    assert seen[0].url.path == "/api/releases/latest"
    assert dict(seen[0].url.params) == {"asset": "zed", "os": "linux", "arch": "x86_64"}

    await client.fetch_release_info("preview", "macos", "aarch64", "zed")
    assert seen[1].url.path == "/api/releases/preview/latest"


async def test_release_info_missing_fields() -> None:
    with pytest.raises(UpstreamUnavailable):
        await make_client(lambda request: httpx.Response(200, json={"version": "1"})).fetch_release_info(
            "stable", "linux", "x86_64", "zed"
        )


def test_release_file_url() -> None:
    client = make_client(lambda request: httpx.Response(200))
    assert (
        client.release_file_url("stable", "0.187.8", "zed-linux-x86_64.tar.gz")
        == "https://zed.test/api/releases/stable/0.187.8/zed-linux-x86_64.tar.gz?update=1"
    )
