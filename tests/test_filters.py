"""Tests for list / update-check / version queries over an index snapshot."""

import pytest

from zedex.domain.filters import extension_updates, extension_versions, list_extensions
from zedex.domain.models import ExtensionIndex

from tests.fakes import record


@pytest.fixture
def index() -> ExtensionIndex:
    return ExtensionIndex(
        data=[
            record("rust", "0.1.0", schema_version=1, provides=["languages"], description="Rust language support"),
            record("rust", "0.3.0", schema_version=3, provides=["languages", "language-servers"]),
            record("rust", "0.2.0", schema_version=2, provides=["languages"]),
            record("catppuccin", "1.0.0", schema_version=0, provides=["themes"], name="Catppuccin"),
            record("catppuccin", "1.10.0", schema_version=1, provides=["themes"], name="Catppuccin"),
            record("html", "0.1.0", schema_version=2, provides=["languages"], description="HTML and templates"),
        ]
    )


class TestList:
    def test_one_newest_record_per_id(self, index: ExtensionIndex) -> None:
        result = list_extensions(index)
        assert [(r.id, r.version) for r in result] == [
            ("catppuccin", "1.10.0"),
            ("html", "0.1.0"),
            ("rust", "0.3.0"),
        ]

    def test_max_schema_version(self, index: ExtensionIndex) -> None:
        result = list_extensions(index, max_schema_version=2)
        assert all(r.schema_version <= 2 for r in result)
        assert {r.id: r.version for r in result}["rust"] == "0.2.0"

    def test_max_schema_version_drops_ids_without_compatible_version(self, index: ExtensionIndex) -> None:
        result = list_extensions(index, max_schema_version=0)
        assert [(r.id, r.version) for r in result] == [("catppuccin", "1.0.0")]

    def test_filter_text_is_case_insensitive_on_name_and_description(self, index: ExtensionIndex) -> None:
        assert [r.id for r in list_extensions(index, filter_text="CATP")] == ["catppuccin"]
        assert [r.id for r in list_extensions(index, filter_text="templates")] == ["html"]

    def test_filter_applies_to_latest_version_only(self, index: ExtensionIndex) -> None:
        # only rust@0.1.0 mentions "Rust language" in its description
        assert list_extensions(index, filter_text="rust language") == []

    def test_provides(self, index: ExtensionIndex) -> None:
        assert [r.id for r in list_extensions(index, provides="language-servers")] == ["rust"]
        assert [r.id for r in list_extensions(index, provides="languages", max_schema_version=2)] == ["html", "rust"]
        assert list_extensions(index, provides="snippets") == []


class TestUpdates:
    def test_example_from_min_schema_bound(self) -> None:
        index = ExtensionIndex(
            data=[
                record("a", "1", schema_version=0),
                record("a", "2", schema_version=1),
                record("b", "1", schema_version=0),
            ]
        )
        result = extension_updates(index, min_schema_version=1, ids=["a", "b"])
        assert [(r.id, r.version) for r in result] == [("a", "2")]

    def test_all_ids_when_none_given(self, index: ExtensionIndex) -> None:
        result = extension_updates(index, max_schema_version=2)
        assert [(r.id, r.version) for r in result] == [
            ("catppuccin", "1.10.0"),
            ("html", "0.1.0"),
            ("rust", "0.2.0"),
        ]

    def test_empty_id_list_yields_nothing(self, index: ExtensionIndex) -> None:
        assert extension_updates(index, ids=[]) == []

    def test_unknown_ids_are_omitted(self, index: ExtensionIndex) -> None:
        assert [r.id for r in extension_updates(index, ids=["rust", "nope"])] == ["rust"]

    def test_wasm_bounds(self) -> None:
        index = ExtensionIndex(
            data=[
                record("x", "1.0.0", wasm_api_version="0.0.4"),
                record("x", "1.1.0", wasm_api_version="0.0.6"),
                record("x", "1.2.0", wasm_api_version="0.2.0"),
                record("y", "1.0.0"),
            ]
        )
        result = extension_updates(index, min_wasm_api_version="0.0.4", max_wasm_api_version="0.0.6")
        assert [(r.id, r.version) for r in result] == [("x", "1.1.0")]

    def test_missing_wasm_version_fails_any_wasm_bound(self) -> None:
        index = ExtensionIndex(data=[record("y", "1.0.0"), record("y", "0.9.0", wasm_api_version="0.1.0")])
        assert [r.version for r in extension_updates(index, max_wasm_api_version="1.0.0")] == ["0.9.0"]
        assert [r.version for r in extension_updates(index)] == ["1.0.0"]


class TestVersions:
    def test_newest_first(self, index: ExtensionIndex) -> None:
        assert [r.version for r in extension_versions(index, "rust")] == ["0.3.0", "0.2.0", "0.1.0"]
        assert [r.version for r in extension_versions(index, "catppuccin")] == ["1.10.0", "1.0.0"]

    def test_unknown_id_is_empty(self, index: ExtensionIndex) -> None:
        assert extension_versions(index, "missing") == []
