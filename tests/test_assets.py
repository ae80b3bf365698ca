"""Tests for cemetery.registry.assets."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from cemetery.models import Asset
from cemetery.registry.assets import AssetRegistry
from cemetery.store import StorageError


@pytest.fixture
def registry(tmp_path: Path) -> AssetRegistry:
    return AssetRegistry(tmp_path / "asset-index.json")


def _asset(aid: str, alive: bool = True) -> Asset:
    return Asset(id=aid, name=aid, type="repository", location=f"https://x/{aid}", alive=alive)


class TestLoad:
    def test_missing_file_is_empty(self, registry: AssetRegistry) -> None:
        assert registry.load() == []
        assert registry.last_modified() is None

    def test_corrupt_file_is_empty(self, registry: AssetRegistry) -> None:
        registry.path.write_text("[oops")
        assert registry.load() == []

    def test_invalid_entries_skipped(self, registry: AssetRegistry) -> None:
        registry.path.write_text(json.dumps([_asset("a").to_dict(), {"name": "no id"}]))
        assert [a.id for a in registry.load()] == ["a"]


class TestMerge:
    def test_replaces_by_id_and_appends(self, registry: AssetRegistry) -> None:
        registry.merge([_asset("a"), _asset("b")])
        registry.merge([_asset("b", alive=False), _asset("c")])
        stored = registry.load()
        assert [a.id for a in stored] == ["a", "b", "c"]
        assert registry.get("b").alive is False
        assert registry.last_modified() is not None

    def test_tags_persisted_sorted(self, registry: AssetRegistry) -> None:
        asset = _asset("a")
        asset.tags = {"rust", "github"}
        registry.merge([asset])
        assert json.loads(registry.path.read_text())[0]["tags"] == ["github", "rust"]
        assert registry.get("a").tags == {"github", "rust"}


    def test_invalid_asset_rejected_before_write(self, registry: AssetRegistry) -> None:
        registry.merge([_asset("a")])
        before = registry.path.read_text()
        bad = _asset("b")
        bad.line_count = -4
        with pytest.raises(ValueError, match="line_count"):
            registry.merge([_asset("c"), bad])
        assert registry.path.read_text() == before

    def test_corrupt_index_is_not_overwritten(self, registry: AssetRegistry) -> None:
        registry.path.write_text("[oops")
        with pytest.raises(StorageError):
            registry.merge([_asset("a")])
        assert registry.path.read_text() == "[oops"


class TestSetAlive:
    def test_flips_flag(self, registry: AssetRegistry) -> None:
        registry.merge([_asset("a", alive=False)])
        assert registry.set_alive("a", True) is True
        assert registry.get("a").alive is True

    def test_unknown_id(self, registry: AssetRegistry) -> None:
        registry.merge([_asset("a")])
        assert registry.set_alive("missing", False) is False

    def test_corrupt_index_is_noop(self, registry: AssetRegistry) -> None:
        registry.path.write_text("[oops")
        assert registry.set_alive("a", True) is False
        assert registry.path.read_text() == "[oops"
