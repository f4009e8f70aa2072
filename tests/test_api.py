"""HTTP surface tests through FastAPI's TestClient."""

from zedex.core.errors import ArchiveConflict, UpstreamUnavailable
from zedex.domain.models import ExtensionIndex

from tests.fakes import record, release


def seed_index(store, *records):
    store.replace_index(ExtensionIndex(data=list(records)))


class TestExtensionsEndpoints:
    def test_index_not_fetched_is_404(self, make_client) -> None:
        with make_client("local") as client:
            response = client.get("/extensions")
        assert response.status_code == 404
        assert "not been fetched" in response.text

    def test_list_with_filters(self, make_client, store) -> None:
        seed_index(
            store,
            record("rust", "0.1.0", schema_version=1, provides=["languages"]),
            record("rust", "0.2.0", schema_version=3, provides=["languages"]),
            record("one-dark", "1.0.0", provides=["themes"], name="One Dark"),
        )
        with make_client() as client:
            everything = client.get("/extensions").json()
            compatible = client.get("/extensions", params={"max_schema_version": 2}).json()
            themes = client.get("/extensions", params={"provides": "themes"}).json()
            searched = client.get("/extensions", params={"filter": "dark"}).json()

        assert [(r["id"], r["version"]) for r in everything["data"]] == [("one-dark", "1.0.0"), ("rust", "0.2.0")]
        assert [(r["id"], r["version"]) for r in compatible["data"]] == [("one-dark", "1.0.0"), ("rust", "0.1.0")]
        assert [r["id"] for r in themes["data"]] == ["one-dark"]
        assert [r["id"] for r in searched["data"]] == ["one-dark"]
        assert "wasm_api_version" not in everything["data"][0]

    def test_updates_route_is_not_an_extension_id(self, make_client, store) -> None:
        seed_index(
            store,
            record("a", "1", schema_version=0),
            record("a", "2", schema_version=1),
            record("b", "1", schema_version=0),
        )
        with make_client() as client:
            response = client.get("/extensions/updates", params={"ids": "a,b", "min_schema_version": 1})
        assert response.status_code == 200
        assert [(r["id"], r["version"]) for r in response.json()["data"]] == [("a", "2")]

    def test_versions_of_extension(self, make_client, store) -> None:
        seed_index(store, record("rust", "0.1.0"), record("rust", "0.10.0"), record("rust", "0.9.0"))
        with make_client() as client:
            ok = client.get("/extensions/rust")
            missing = client.get("/extensions/python")
        assert [r["version"] for r in ok.json()["data"]] == ["0.10.0", "0.9.0", "0.1.0"]
        assert missing.status_code == 404

    def test_archive_downloads(self, make_client, store, seed) -> None:
        seed_index(store, record("rust", "0.1.0"), record("rust", "0.2.0"))
        seed.archive("rust", "0.1.0", b"one")
        seed.archive("rust", "0.2.0", b"two")
        with make_client() as client:
            latest = client.get("/extensions/rust/download")
            pinned = client.get("/extensions/rust/0.1.0/download")
            missing = client.get("/extensions/rust/0.3.0/download")

        assert latest.status_code == 200
        assert latest.headers["content-type"] == "application/gzip"
        assert latest.content == b"two"
        assert pinned.content == b"one"
        assert missing.status_code == 404

    def test_local_mode_never_calls_upstream(self, make_client, upstream) -> None:
        upstream.publish(record("rust", "0.1.0"))
        with make_client("local") as client:
            assert client.get("/extensions/rust/0.1.0/download").status_code == 404
            assert client.get("/extensions/rust/download").status_code == 404
        assert upstream.calls == []

    def test_proxy_mode_fetches_and_caches(self, make_client, upstream, store) -> None:
        upstream.publish(record("rust", "0.1.0", provides=["languages"]), data=b"tgz")
        with make_client("proxy") as client:
            listed = client.get("/extensions")
            first = client.get("/extensions/rust/0.1.0/download")
            second = client.get("/extensions/rust/0.1.0/download")

        assert [r["id"] for r in listed.json()["data"]] == ["rust"]
        assert first.content == second.content == b"tgz"
        assert len(upstream.calls_to("archive")) == 1
        assert store.has_archive("rust", "0.1.0")


class TestErrorMapping:
    def test_upstream_unavailable_is_502(self, make_client, upstream) -> None:
        upstream.publish(record("rust", "0.1.0"))
        upstream.failures["archive"] = UpstreamUnavailable("origin timed out")
        with make_client("proxy") as client:
            response = client.get("/extensions/rust/0.1.0/download")
        assert response.status_code == 502
        assert "origin timed out" in response.text

    def test_unknown_upstream_version_is_404(self, make_client, upstream) -> None:
        upstream.publish(record("rust", "0.1.0"))
        with make_client("proxy") as client:
            assert client.get("/extensions/rust/9.9.9/download").status_code == 404

    def test_corrupt_index_is_500(self, make_client, store) -> None:
        (store.root / "extensions.json").write_text("{broken")
        with make_client() as client:
            response = client.get("/extensions")
        assert response.status_code == 500
        assert "corrupt" in response.text

    def test_other_mirror_errors_are_500(self, make_client, upstream) -> None:
        upstream.publish(record("rust", "0.1.0"))
        upstream.failures["archive"] = ArchiveConflict("extension rust 0.1.0")
        with make_client("proxy") as client:
            response = client.get("/extensions/rust/0.1.0/download")
        assert response.status_code == 500
        assert "Refusing to overwrite" in response.text

    def test_non_utf8_index_keeps_server_up(self, make_client, store, seed) -> None:
        seed.archive("rust", "0.1.0", b"tgz")
        (store.root / "extensions.json").write_bytes(b'{"data": [\xff\xfe]}')
        with make_client() as client:
            listed = client.get("/extensions")
            health = client.get("/health")
            archive = client.get("/extensions/rust/0.1.0/download")
        assert listed.status_code == 500
        assert "corrupt" in listed.text
        assert health.status_code == 200
        assert archive.content == b"tgz"

    def test_storage_failure_is_500_and_other_keys_still_served(self, make_client, upstream, store, seed) -> None:
        upstream.publish(record("rust", "0.1.0"), record("zig", "0.1.0"))
        seed.archive("zig", "0.1.0", b"zig")
        (store.root / "extensions" / "rust").write_bytes(b"not a directory")
        with make_client("proxy") as client:
            broken = client.get("/extensions/rust/0.1.0/download")
            ok = client.get("/extensions/zig/0.1.0/download")
        assert broken.status_code == 500
        assert "Storage error" in broken.text
        assert ok.content == b"zig"


class TestReleaseEndpoints:
    def test_latest_for_channel_points_at_mirror(self, make_client, seed) -> None:
        seed.release(release("0.100.0"), data=b"old")
        seed.release(release("0.101.0"), data=b"new")
        with make_client() as client:
            response = client.get(
                "/api/releases/stable/latest", params={"os": "linux", "arch": "x86_64", "asset": "zed"}
            )
        body = response.json()
        assert response.status_code == 200
        assert body["version"] == "0.101.0"
        assert body["url"] == release("0.101.0").url
        assert body["api_url"] == "http://testserver/api/releases/stable/0.101.0/zed-linux-x86_64.tar.gz?update=1"
        assert "notes" not in body

    def test_default_channel_and_query_defaults(self, make_client, seed) -> None:
        seed.release(release("0.101.0", os="macos", arch="x86_64"))
        with make_client() as client:
            body = client.get("/api/releases/latest").json()
            missing = client.get("/api/releases/latest", params={"os": "linux"})
        assert body["version"] == "0.101.0"
        assert missing.status_code == 404

    def test_public_url_in_rewritten_url(self, make_client, seed) -> None:
        seed.release(release("0.101.0"))
        with make_client(public_url="http://mirror.lan:2654/") as client:
            body = client.get("/api/releases/latest", params={"os": "linux"}).json()
        assert body["api_url"].startswith("http://mirror.lan:2654/api/releases/stable/0.101.0/")

    def test_release_file_download(self, make_client, seed) -> None:
        asset = release("0.101.0")
        seed.release(asset, data=b"tarball")
        with make_client() as client:
            response = client.get(f"/api/releases/stable/0.101.0/{asset.filename}", params={"update": "1"})
            missing = client.get("/api/releases/stable/0.101.0/zed-macos-x86_64.tar.gz")
        assert response.status_code == 200
        assert response.headers["content-type"] == "application/octet-stream"
        assert response.content == b"tarball"
        assert missing.status_code == 404

    def test_legacy_release_path(self, make_client, seed) -> None:
        seed.release(release("0.101.0"), data=b"tarball")
        with make_client() as client:
            ok = client.get("/releases/zed/zed-linux-x86_64.tar.gz")
            missing = client.get("/releases/zed/zed-linux-aarch64.tar.gz")
        assert ok.content == b"tarball"
        assert missing.status_code == 404

    def test_proxy_release_fetch(self, make_client, upstream, store) -> None:
        upstream.publish_release(release("0.187.8"), data=b"zed")
        with make_client("proxy") as client:
            body = client.get("/api/releases/latest", params={"os": "linux"}).json()
            file_response = client.get(body["api_url"])
        assert body["version"] == "0.187.8"
        assert file_response.content == b"zed"
        assert len(upstream.calls_to("release_file")) == 1


def test_health(make_client, store) -> None:
    seed_index(store, record("a", "1"), record("b", "1"), record("b", "2"))
    with make_client("proxy") as client:
        body = client.get("/health").json()
    assert body["status"] == "ok"
    assert body["mode"] == "proxy"
    assert body["extensions_loaded"] == 2
    assert isinstance(body["uptime_seconds"], int)
