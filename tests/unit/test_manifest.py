"""Tests for manifest parsing and selection validation."""

from __future__ import annotations

import json

import pytest
import yaml
from pydantic import ValidationError

from tokenweave.core.errors import ManifestError, TokenFileError
from tokenweave.core.manifest import (
    AnyOfModifier,
    OneOfModifier,
    load_manifest,
    normalize_selection,
    parse_manifest,
    validate_input,
)


class TestParseManifest:
    def test_valid_manifest(self, manifest_data):
        manifest = parse_manifest(manifest_data)

        assert manifest.name == "demo"
        assert manifest.sets[0].name == "core"
        assert manifest.sets[0].files == ["base.json"]
        assert list(manifest.modifiers) == ["theme", "features"]
        assert isinstance(manifest.modifiers["theme"], OneOfModifier)
        assert isinstance(manifest.modifiers["features"], AnyOfModifier)
        assert manifest.generate is None
        assert manifest.options.resolve_references is False
        assert manifest.options.max_depth == 10

    def test_models_are_frozen(self, manifest_data):
        manifest = parse_manifest(manifest_data)

        with pytest.raises(ValidationError):
            manifest.name = "other"  # type: ignore[misc]

    def test_one_of_default_is_first_option(self, manifest_data):
        theme = parse_manifest(manifest_data).modifiers["theme"]

        assert theme.default_selection() == "light"
        assert theme.files_for(None) == ["light.json"]

    def test_declared_default(self, manifest_data):
        manifest_data["modifiers"]["theme"]["default"] = "dark"

        theme = parse_manifest(manifest_data).modifiers["theme"]

        assert theme.default_selection() == "dark"

    def test_any_of_default_is_empty(self, manifest_data):
        features = parse_manifest(manifest_data).modifiers["features"]

        assert features.default_selection() == []
        assert features.files_for(["rounded", "compact"]) == ["rounded.json", "compact.json"]

    def test_options(self, manifest_data):
        manifest_data["options"] = {"resolveReferences": True, "maxDepth": 4}

        options = parse_manifest(manifest_data).options

        assert options.resolve_references is True
        assert options.max_depth == 4

    def test_set_with_files_key(self):
        manifest = parse_manifest({"sets": [{"files": ["a.json"]}], "modifiers": {}})

        assert manifest.sets[0].files == ["a.json"]
        assert manifest.sets[0].name is None

    def test_generate_entries(self, manifest_data):
        manifest_data["generate"] = [
            {
                "theme": "dark",
                "features": "*",
                "output": "dark.json",
                "includeSets": ["core"],
                "excludeModifiers": ["features:rounded"],
            }
        ]

        spec = parse_manifest(manifest_data).generate[0]

        assert spec.selections == {"theme": "dark", "features": "*"}
        assert spec.output == "dark.json"
        assert spec.include_sets == ["core"]
        assert spec.exclude_sets is None
        assert spec.exclude_modifiers == ["features:rounded"]
        assert spec.has_set_filter

    def test_missing_sets_and_modifiers(self):
        with pytest.raises(ManifestError) as exc_info:
            parse_manifest({})

        assert exc_info.value.errors == ["missing required 'sets'", "missing required 'modifiers'"]

    def test_collects_every_violation(self):
        data = {
            "sets": [{"name": "x"}, "nope"],
            "modifiers": {
                "both": {"oneOf": ["a"], "anyOf": ["b"]},
                "neither": {"values": {}},
                "empty": {"oneOf": []},
                "stray": {"anyOf": ["a"], "values": {"b": ["b.json"]}},
                "bad_default": {"oneOf": ["a"], "default": "z"},
            },
            "generate": [{"ghost": "x"}, {"includeSets": "core"}],
        }

        with pytest.raises(ManifestError) as exc_info:
            parse_manifest(data)

        errors = exc_info.value.errors
        assert len(errors) == 9
        assert "sets[0]: missing 'values' file list" in errors
        assert "sets[1]: must be an object" in errors
        assert "modifiers.both: must declare exactly one of 'oneOf' or 'anyOf'" in errors
        assert "modifiers.neither: must declare exactly one of 'oneOf' or 'anyOf'" in errors
        assert "modifiers.empty.oneOf: must declare at least one option" in errors
        assert "modifiers.stray.values: 'b' is not a declared option" in errors
        assert "modifiers.bad_default.default: 'z' is not one of ['a']" in errors
        assert "generate[0]: unknown modifier 'ghost'" in errors
        assert "generate[1].includeSets: must be a list of strings" in errors

    def test_error_message_lists_violations(self):
        with pytest.raises(ManifestError) as exc_info:
            parse_manifest({"sets": [], "modifiers": []})

        message = str(exc_info.value)
        assert "  - 'sets' must declare at least one set" in message
        assert "  - 'modifiers' must be an object" in message

    def test_schema_errors_become_manifest_errors(self, manifest_data):
        manifest_data["options"] = {"maxDepth": 0}

        with pytest.raises(ManifestError):
            parse_manifest(manifest_data)

    def test_non_object_manifest(self):
        with pytest.raises(ManifestError, match="manifest must be an object"):
            parse_manifest(["sets"])


class TestLoadManifest:
    def test_json(self, tmp_path, manifest_data):
        path = tmp_path / "manifest.json"
        path.write_text(json.dumps(manifest_data))

        manifest = load_manifest(path)

        assert manifest.source == str(path)
        assert list(manifest.modifiers) == ["theme", "features"]

    def test_yaml(self, tmp_path, manifest_data):
        path = tmp_path / "manifest.yaml"
        path.write_text(yaml.safe_dump(manifest_data, sort_keys=False))

        assert list(load_manifest(path).modifiers) == ["theme", "features"]

    def test_missing_file(self, tmp_path):
        with pytest.raises(TokenFileError):
            load_manifest(tmp_path / "nope.json")

    def test_invalid_syntax(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json")

        with pytest.raises(TokenFileError, match="Invalid manifest syntax"):
            load_manifest(path)

    def test_error_names_file(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text(json.dumps({"modifiers": {}}))

        with pytest.raises(ManifestError) as exc_info:
            load_manifest(path)

        assert exc_info.value.context.file == str(path)
        assert str(exc_info.value).startswith(str(path))


class TestValidateInput:
    def test_valid_selection(self, manifest_data):
        manifest = parse_manifest(manifest_data)

        assert validate_input(manifest, {"theme": "dark", "features": ["compact"]}) == []
        assert validate_input(manifest, {}) == []
        assert validate_input(manifest, {"theme": None, "features": None}) == []
        assert validate_input(manifest, {"features": [], "output": "x.json"}) == []

    def test_collects_every_problem(self, manifest_data):
        manifest = parse_manifest(manifest_data)

        errors = validate_input(
            manifest, {"theme": ["dark"], "features": ["compact", "huge"], "size": "xl"}
        )

        assert [e.modifier for e in errors] == ["theme", "features", "size"]
        assert errors[0].message == "oneOf modifier takes a single value"
        assert errors[1].message == "unknown option 'huge'"
        assert errors[2].message == "unknown modifier"

    def test_unknown_one_of_option(self, manifest_data):
        manifest = parse_manifest(manifest_data)

        errors = validate_input(manifest, {"theme": "sepia"})

        assert len(errors) == 1
        assert "received 'sepia'" in str(errors[0])

    def test_any_of_requires_list(self, manifest_data):
        manifest = parse_manifest(manifest_data)

        errors = validate_input(manifest, {"features": "compact"})

        assert errors[0].message == "anyOf modifier takes a list"

    def test_normalize_selection(self, manifest_data):
        manifest = parse_manifest(manifest_data)

        assert normalize_selection(manifest, {"features": ["rounded"]}) == {
            "theme": "light",
            "features": ["rounded"],
        }
