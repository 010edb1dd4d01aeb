"""Tests for permutation collection, merging and enumeration."""

from __future__ import annotations

import logging
import threading
import time

import pytest

from tokenweave.core.config import ResolverConfig
from tokenweave.core.errors import ManifestError, ResolutionFailedError, TokenMergeError
from tokenweave.core.manifest import GenerateSpec, parse_manifest
from tokenweave.core.permutations import (
    collect_files,
    count_permutations,
    expand_generate_spec,
    expand_spec_with_filtering,
    generate_all,
    generate_all_permutations,
    generate_id,
    load_and_merge,
    power_set,
    resolve_permutation,
)
from tokenweave.core.reader import MemoryReader


@pytest.fixture
def manifest(manifest_data):
    return parse_manifest(manifest_data)


@pytest.fixture
def theme_only(manifest_data):
    del manifest_data["modifiers"]["features"]
    return parse_manifest(manifest_data)


# =============================================================================
# Identification
# =============================================================================


class TestGenerateId:
    def test_one_of_and_any_of(self):
        assert generate_id({"theme": "dark", "features": ["a", "b"]}) == "theme-dark_features-a+b"

    def test_input_order_is_kept(self):
        assert generate_id({"features": ["a"], "theme": "dark"}) == "features-a_theme-dark"

    def test_empty_contributions(self):
        assert generate_id({}) == "default"
        assert generate_id({"features": [], "theme": None}) == "default"

    def test_output_key_is_ignored(self):
        assert generate_id({"theme": "light", "output": "x.json"}) == "theme-light"


# =============================================================================
# Collection
# =============================================================================


class TestCollectFiles:
    def test_base_sets_then_modifiers_in_declaration_order(self, manifest):
        files = collect_files(manifest, {"features": ["rounded", "compact"], "theme": "dark"})

        assert files == ["base.json", "dark.json", "rounded.json", "compact.json"]

    def test_one_of_defaults_to_first_option(self, manifest):
        assert collect_files(manifest, {}) == ["base.json", "light.json"]

    def test_set_filters(self, manifest_data):
        manifest_data["sets"] = [
            {"name": "core", "values": ["core.json"]},
            {"name": "brand", "values": ["brand.json"]},
            {"values": ["unnamed.json"]},
        ]
        manifest = parse_manifest(manifest_data)

        def files(**filters):
            return collect_files(manifest, {"theme": "light"}, GenerateSpec(**filters))[:-1]

        assert files() == ["core.json", "brand.json", "unnamed.json"]
        assert files(include_sets=["brand"]) == ["brand.json"]
        assert files(exclude_sets=["brand"]) == ["core.json"]
        assert files(include_sets=["*"]) == ["core.json", "brand.json"]
        assert files(include_sets=["core", "brand"], exclude_sets=["core"]) == ["brand.json"]
        assert files(exclude_sets=["*"]) == []

    def test_modifier_filters(self, manifest):
        selection = {"theme": "dark", "features": ["compact"]}

        def files(**filters):
            return collect_files(manifest, selection, GenerateSpec(**filters))

        assert files(include_modifiers=["theme"]) == ["base.json", "dark.json"]
        assert files(include_modifiers=["theme:light"]) == ["base.json", "dark.json"]
        assert files(exclude_modifiers=["theme"]) == ["base.json", "compact.json"]
        assert files(include_modifiers=["*"], exclude_modifiers=["features"]) == [
            "base.json",
            "dark.json",
        ]
        assert files(exclude_modifiers=["*"]) == ["base.json"]


# =============================================================================
# Merging
# =============================================================================


class _SlowReader(MemoryReader):
    """Earlier files take longer, so reads complete in reverse order."""

    def __init__(self, documents, delays):
        super().__init__(documents)
        self.delays = delays
        self.threads: set[str] = set()

    def read(self, path):
        time.sleep(self.delays[path])
        self.threads.add(threading.current_thread().name)
        return super().read(path)


class TestLoadAndMerge:
    def test_merge_order_ignores_read_completion_order(self):
        documents = {f"f{i}.json": {"x": {"$value": i}} for i in range(4)}
        reader = _SlowReader(documents, {f"f{i}.json": 0.04 * (3 - i) for i in range(4)})

        result = load_and_merge([f"f{i}.json" for i in range(4)], reader, max_workers=4)

        assert result == {"x": {"$value": 3}}

    def test_sequential_reads(self, memory_reader):
        result = load_and_merge(["light.json", "dark.json"], memory_reader, max_workers=1)

        assert result["color"]["background"]["$value"] == "#000000"
        assert memory_reader.reads == ["light.json", "dark.json"]

    def test_no_files(self, memory_reader):
        assert load_and_merge([], memory_reader) == {}

    def test_duplicates_are_merged_with_warning(self, memory_reader, caplog):
        with caplog.at_level(logging.WARNING, logger="tokenweave.core.permutations"):
            result = load_and_merge(["light.json", "light.json"], memory_reader)

        assert result == memory_reader.documents["light.json"]
        assert "light.json" in caplog.text

    def test_conflicting_files(self):
        reader = MemoryReader({"a.json": {"s": {"$value": 1}}, "b.json": {"s": {"n": {"$value": 1}}}})

        with pytest.raises(TokenMergeError):
            load_and_merge(["a.json", "b.json"], reader)


# =============================================================================
# Resolution
# =============================================================================


class TestResolvePermutation:
    def test_merged_tokens(self, manifest, memory_reader):
        result = resolve_permutation(manifest, {"theme": "dark"}, memory_reader)

        assert result.id == "theme-dark"
        assert result.files == ["base.json", "dark.json"]
        assert result.tokens["color"]["primary"]["$value"] == "#3388ff"
        assert result.tokens["color"]["text"]["$value"] == "{color.primary}"
        assert result.resolved_tokens is None
        assert result.document is result.tokens

    def test_dereferenced_tokens(self, manifest_data, memory_reader):
        manifest_data["options"] = {"resolveReferences": True}
        manifest = parse_manifest(manifest_data)

        result = resolve_permutation(manifest, {"theme": "dark"}, memory_reader)

        assert result.resolved_tokens["color"]["text"]["$value"] == "#3388ff"
        assert result.tokens["color"]["text"]["$value"] == "{color.primary}"

    def test_config_overrides_manifest_option(self, manifest, memory_reader):
        config = ResolverConfig(resolve_references=True, max_workers=1)

        result = resolve_permutation(manifest, {}, memory_reader, config=config)

        assert result.resolved_tokens["color"]["text"]["$value"] == "#0055ff"

    def test_unresolved_reference_aborts(self, manifest, token_documents):
        token_documents["light.json"]["color"]["link"] = {"$value": "{color.missing}"}
        reader = MemoryReader(token_documents)

        with pytest.raises(ResolutionFailedError) as exc_info:
            resolve_permutation(manifest, {}, reader, config=ResolverConfig(resolve_references=True))

        assert exc_info.value.errors[0].path == "color.link"
        assert exc_info.value.context.permutation == "default"

    def test_invalid_input_fails_before_reading(self, manifest, memory_reader):
        with pytest.raises(ManifestError) as exc_info:
            resolve_permutation(manifest, {"theme": "sepia", "size": "xl"}, memory_reader)

        assert len(exc_info.value.errors) == 2
        assert memory_reader.reads == []

    def test_output_is_carried(self, manifest, memory_reader):
        result = resolve_permutation(manifest, {"output": "custom.json"}, memory_reader)

        assert result.output == "custom.json"
        assert result.id == "default"

    def test_inline_tokens_from_dtcg_resolver(self, memory_reader):
        manifest = parse_manifest(
            {
                "version": "2025-draft",
                "sets": [{"source": "base.json"}, {"tokens": {"size": {"$value": "4px"}}}],
                "modifiers": [
                    {
                        "name": "theme",
                        "type": "enumerated",
                        "values": ["light", "dark"],
                        "sets": {"light": [{"source": "light.json"}], "dark": [{"source": "dark.json"}]},
                    }
                ],
            }
        )

        result = resolve_permutation(manifest, {"theme": "dark"}, memory_reader)

        assert result.files == ["base.json", "set-1.virtual.json", "dark.json"]
        assert result.tokens["size"]["$value"] == "4px"
        assert result.tokens["color"]["primary"]["$value"] == "#3388ff"
        assert "set-1.virtual.json" not in memory_reader.reads


# =============================================================================
# Enumeration
# =============================================================================


class TestEnumeration:
    def test_power_set(self):
        assert power_set(["a", "b"]) == [[], ["a"], ["b"], ["a", "b"]]

    def test_any_of_has_two_to_the_n_selections(self, manifest_data):
        manifest_data["modifiers"] = {"f": {"anyOf": ["a", "b", "c"]}}
        manifest = parse_manifest(manifest_data)

        selections = generate_all_permutations(manifest)

        assert len(selections) == 8
        assert {"f": []} in selections
        assert len({tuple(s["f"]) for s in selections}) == 8

    def test_cartesian_product(self, manifest):
        selections = generate_all_permutations(manifest)

        assert len(selections) == 8 == count_permutations(manifest)
        assert selections[0] == {"theme": "light", "features": []}
        assert selections[-1] == {"theme": "dark", "features": ["compact", "rounded"]}

    def test_no_modifiers(self, manifest_data):
        manifest_data["modifiers"] = {}
        manifest = parse_manifest(manifest_data)

        assert generate_all_permutations(manifest) == [{}]
        assert count_permutations(manifest) == 1

    def test_theme_scenario(self, theme_only):
        reader = MemoryReader({"a.json": {}, "l.json": {}, "d.json": {}})
        manifest = theme_only.model_copy(
            update={
                "sets": [theme_only.sets[0].model_copy(update={"files": ["a.json"]})],
                "modifiers": {
                    "theme": theme_only.modifiers["theme"].model_copy(
                        update={"values": {"light": ["l.json"], "dark": ["d.json"]}}
                    )
                },
            }
        )

        results = generate_all(manifest, reader)

        assert [r.id for r in results] == ["theme-light", "theme-dark"]
        assert [r.files for r in results] == [["a.json", "l.json"], ["a.json", "d.json"]]


class TestGenerateSpecs:
    def test_wildcard_any_of(self, manifest):
        spec = GenerateSpec(selections={"features": "*", "theme": "dark"})

        assert expand_generate_spec(manifest, spec) == {
            "features": ["compact", "rounded"],
            "theme": "dark",
        }

    def test_pinned_include_modifier(self, manifest):
        spec = GenerateSpec(selections={"theme": "light"}, include_modifiers=["theme:dark"])

        assert expand_generate_spec(manifest, spec) == {"theme": "dark"}

    def test_unknown_selection_is_dropped(self, manifest):
        spec = GenerateSpec(selections={"ghost": "x"})

        assert expand_generate_spec(manifest, spec) == {}

    def test_fan_out_over_one_of(self, manifest):
        spec = GenerateSpec(output="dist/tokens.json", include_modifiers=["theme", "features"])

        expanded = expand_spec_with_filtering(manifest, spec)

        assert [output for _, output in expanded] == [
            "dist/tokens-light.json",
            "dist/tokens-dark.json",
        ]
        assert [s.selections for s, _ in expanded] == [{"theme": "light"}, {"theme": "dark"}]

    def test_no_fan_out_when_pinned(self, manifest):
        for spec in (
            GenerateSpec(selections={"theme": "dark"}, include_modifiers=["theme"]),
            GenerateSpec(include_modifiers=["theme:dark"]),
        ):
            expanded = expand_spec_with_filtering(manifest, spec)
            assert [output for _, output in expanded] == ["output.json"]

    def test_generate_all_with_entries(self, manifest_data, memory_reader):
        manifest_data["generate"] = [
            {"theme": "dark", "features": "*", "output": "dark-all.json"},
            {"includeModifiers": ["theme"], "output": "themes"},
        ]
        manifest = parse_manifest(manifest_data)

        results = generate_all(manifest, memory_reader)

        assert [(r.id, r.output) for r in results] == [
            ("theme-dark_features-compact+rounded", "dark-all.json"),
            ("theme-light", "themes-light.json"),
            ("theme-dark", "themes-dark.json"),
        ]
        assert results[1].files == ["base.json", "light.json"]
        assert results[0].tokens["radius"]["$value"] == "8px"
