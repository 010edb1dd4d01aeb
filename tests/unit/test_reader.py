"""Tests for token file readers."""

from __future__ import annotations

import json

import pytest

from tokenweave.core.errors import TokenFileError
from tokenweave.core.reader import InlineReader, MemoryReader, TokenFileReader


class TestTokenFileReader:
    def test_reads_json_and_yaml(self, tmp_path):
        (tmp_path / "a.json").write_text(json.dumps({"x": {"$value": 1}}))
        (tmp_path / "b.yaml").write_text("y:\n  $value: 2\n")
        (tmp_path / "c.yml").write_text("z:\n  $value: 3\n")
        reader = TokenFileReader(tmp_path)

        assert reader.read("a.json") == {"x": {"$value": 1}}
        assert reader.read("b.yaml") == {"y": {"$value": 2}}
        assert reader.read("./c.yml") == {"z": {"$value": 3}}

    def test_yaml_keys_become_strings(self, tmp_path):
        (tmp_path / "scale.yaml").write_text("blue:\n  100:\n    $value: [1, {2: two}]\n")

        document = TokenFileReader(tmp_path).read("scale.yaml")

        assert document == {"blue": {"100": {"$value": [1, {"2": "two"}]}}}

    def test_nested_and_absolute_paths(self, tmp_path):
        (tmp_path / "themes").mkdir()
        target = tmp_path / "themes" / "dark.json"
        target.write_text("{}")
        reader = TokenFileReader(tmp_path)

        assert reader.read("themes/dark.json") == {}
        assert reader.read(str(target)) == {}

    def test_cache_returns_copies(self, tmp_path):
        path = tmp_path / "a.json"
        path.write_text(json.dumps({"x": {"$value": 1}}))
        reader = TokenFileReader(tmp_path)

        first = reader.read("a.json")
        first["x"]["$value"] = 99
        path.write_text(json.dumps({"x": {"$value": 2}}))

        assert reader.read("a.json") == {"x": {"$value": 1}}
        reader.clear_cache()
        assert reader.read("a.json") == {"x": {"$value": 2}}

    def test_cache_disabled(self, tmp_path):
        path = tmp_path / "a.json"
        path.write_text(json.dumps({"v": 1}))
        reader = TokenFileReader(tmp_path, cache=False)
        reader.read("a.json")
        path.write_text(json.dumps({"v": 2}))

        assert reader.read("a.json") == {"v": 2}

    def test_missing_file(self, tmp_path):
        with pytest.raises(TokenFileError, match="not found") as exc_info:
            TokenFileReader(tmp_path).read("gone.json")

        assert exc_info.value.context.file == "gone.json"

    def test_invalid_json(self, tmp_path):
        (tmp_path / "bad.json").write_text("{")

        with pytest.raises(TokenFileError, match="Invalid syntax"):
            TokenFileReader(tmp_path).read("bad.json")

    def test_invalid_yaml(self, tmp_path):
        (tmp_path / "bad.yaml").write_text("a: [1, 2\n")

        with pytest.raises(TokenFileError, match="Invalid syntax"):
            TokenFileReader(tmp_path).read("bad.yaml")

    def test_non_object_document(self, tmp_path):
        (tmp_path / "list.json").write_text("[1, 2]")

        with pytest.raises(TokenFileError, match="must contain an object"):
            TokenFileReader(tmp_path).read("list.json")

    def test_unsupported_suffix(self, tmp_path):
        (tmp_path / "tokens.txt").write_text("{}")

        with pytest.raises(TokenFileError, match="Unsupported"):
            TokenFileReader(tmp_path).read("tokens.txt")


class TestMemoryReader:
    def test_reads_copies_and_records(self):
        reader = MemoryReader({"./a.json": {"x": {"$value": 1}}})

        document = reader.read("a.json")
        document["x"]["$value"] = 2

        assert reader.read("a.json") == {"x": {"$value": 1}}
        assert reader.reads == ["a.json", "a.json"]

    def test_missing(self):
        with pytest.raises(TokenFileError):
            MemoryReader({}).read("a.json")


class TestInlineReader:
    def test_inline_documents_shadow_the_fallback(self):
        fallback = MemoryReader({"a.json": {"x": {"$value": 1}}})
        reader = InlineReader({"set-0.virtual.json": {"y": {"$value": 2}}}, fallback)

        assert reader.read("set-0.virtual.json") == {"y": {"$value": 2}}
        assert reader.read("a.json") == {"x": {"$value": 1}}
        assert fallback.reads == ["a.json"]

    def test_missing_paths_fail_in_the_fallback(self):
        reader = InlineReader({}, MemoryReader({}))

        with pytest.raises(TokenFileError):
            reader.read("gone.json")
