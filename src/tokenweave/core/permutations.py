"""
Permutation resolution.

A permutation is one concrete modifier selection. Resolving it collects the
files the selection implies, merges them in order and optionally
dereferences the result.

Enumeration is exponential in the number of ``anyOf`` options (every subset
is a permutation); ``count_permutations`` gives the size up front.
"""

from __future__ import annotations

import itertools
import logging
import re
from collections.abc import Iterator, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from math import prod
from typing import Any

from pydantic import BaseModel, Field

from .ast.builder import build_ast
from .ast.query import ast_to_document
from .config import ResolverConfig
from .errors import make_manifest_error, make_resolution_error
from .manifest import (
    OUTPUT_KEY,
    WILDCARD,
    AnyOfModifier,
    GenerateSpec,
    Manifest,
    OneOfModifier,
    Selection,
    TokenSet,
    validate_input,
)
from .merge import merge
from .reader import FileReader, InlineReader
from .references import ReferenceResolver

logger = logging.getLogger(__name__)

DEFAULT_OUTPUT = "output"


class ResolvedPermutation(BaseModel):
    """The merged (and optionally dereferenced) tokens of one selection."""

    id: str
    input: dict[str, Any] = Field(default_factory=dict)
    files: list[str] = Field(default_factory=list)
    tokens: dict[str, Any] = Field(default_factory=dict)
    resolved_tokens: dict[str, Any] | None = None
    output: str | None = None

    @property
    def document(self) -> dict[str, Any]:
        """Resolved tokens when available, else the merged tokens."""
        return self.resolved_tokens if self.resolved_tokens is not None else self.tokens


# =============================================================================
# Filtering
# =============================================================================


def should_include_set(token_set: TokenSet, spec: GenerateSpec | None) -> bool:
    if spec is None or not spec.has_set_filter:
        return True
    if token_set.name is None:
        return False
    name = token_set.name
    exclude = spec.exclude_sets or []
    if name in exclude or WILDCARD in exclude:
        return False
    if spec.include_sets is not None:
        return name in spec.include_sets or WILDCARD in spec.include_sets
    return True


def _rule_matches(rule: str, modifier_name: str) -> bool:
    return rule == WILDCARD or rule.split(":", 1)[0] == modifier_name


def should_include_modifier(modifier_name: str, spec: GenerateSpec | None) -> bool:
    """Exclusion rules win; with an include list the modifier must be named in it."""
    if spec is None:
        return True
    if any(_rule_matches(rule, modifier_name) for rule in spec.exclude_modifiers or []):
        return False
    if spec.include_modifiers is not None:
        return any(_rule_matches(rule, modifier_name) for rule in spec.include_modifiers)
    return True


# =============================================================================
# Files
# =============================================================================


def collect_files(
    manifest: Manifest,
    selection: Mapping[str, Any],
    spec: GenerateSpec | None = None,
) -> list[str]:
    """Files to merge for ``selection``: base sets first, then modifiers in declaration order."""
    files: list[str] = []
    for token_set in manifest.sets:
        if should_include_set(token_set, spec):
            files.extend(token_set.files)

    for name, modifier in manifest.modifiers.items():
        if not should_include_modifier(name, spec):
            logger.debug(f"Modifier {name} filtered out")
            continue
        files.extend(modifier.files_for(selection.get(name)))
    return files


def load_and_merge(
    files: Sequence[str],
    reader: FileReader,
    max_workers: int = 4,
) -> dict[str, Any]:
    """
    Read ``files`` and merge them left to right.

    Reads may overlap; the merge order is always the order of ``files``.
    """
    if not files:
        return {}

    duplicates = {f for f in files if files.count(f) > 1}
    if duplicates:
        logger.warning(f"Files listed more than once will be merged again: {sorted(duplicates)}")

    if max_workers > 1 and len(files) > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            documents = list(pool.map(reader.read, files))
    else:
        documents = [reader.read(f) for f in files]

    tokens = documents[0]
    for file_path, document in zip(files[1:], documents[1:], strict=True):
        logger.debug(f"Merging {file_path}")
        tokens = merge(tokens, document)
    return tokens


# =============================================================================
# Resolution
# =============================================================================


def generate_id(selection: Mapping[str, Any]) -> str:
    """
    Build a permutation id from a selection, in the selection's own order.

    ``{"theme": "dark", "features": ["a", "b"]}`` -> ``theme-dark_features-a+b``
    """
    parts: list[str] = []
    for name, value in selection.items():
        if name == OUTPUT_KEY:
            continue
        if isinstance(value, list):
            if value:
                parts.append(f"{name}-{'+'.join(value)}")
        elif value:
            parts.append(f"{name}-{value}")
    return "_".join(parts) or "default"


def _dereference(tokens: dict[str, Any], max_depth: int, permutation_id: str) -> dict[str, Any]:
    root = build_ast(tokens)
    errors = ReferenceResolver(root, max_depth).run()
    if errors:
        raise make_resolution_error("Reference resolution failed", errors, permutation_id)
    return ast_to_document(root, resolved=True)


def resolve_permutation(
    manifest: Manifest,
    selection: Mapping[str, Any],
    reader: FileReader,
    spec: GenerateSpec | None = None,
    config: ResolverConfig | None = None,
) -> ResolvedPermutation:
    """
    Resolve one selection.

    Raises:
        ManifestError: If the selection does not fit the manifest
        TokenMergeError: If two of the files conflict
        ResolutionFailedError: If dereferencing was requested and failed
    """
    max_depth = config.max_depth if config else manifest.options.max_depth
    config = config or ResolverConfig()
    input_errors = validate_input(manifest, selection)
    if input_errors:
        raise make_manifest_error("Invalid input", [str(e) for e in input_errors], manifest.source)

    permutation_id = generate_id(selection)
    files = collect_files(manifest, selection, spec)
    logger.info(f"Resolving permutation {permutation_id} from {len(files)} files")

    if manifest.inline_tokens:
        reader = InlineReader(manifest.inline_tokens, reader)
    tokens = load_and_merge(files, reader, config.max_workers)

    resolve = config.resolve_references
    if resolve is None:
        resolve = manifest.options.resolve_references
    resolved_tokens = None
    if resolve:
        resolved_tokens = _dereference(tokens, max_depth, permutation_id)

    output = selection.get(OUTPUT_KEY)
    return ResolvedPermutation(
        id=permutation_id,
        input=dict(selection),
        files=files,
        tokens=tokens,
        resolved_tokens=resolved_tokens,
        output=output if isinstance(output, str) else None,
    )


# =============================================================================
# Enumeration
# =============================================================================


def power_set(options: Sequence[str]) -> list[list[str]]:
    """Every subset of ``options``, starting with the empty one, items kept in option order."""
    subsets: list[list[str]] = [[]]
    for option in options:
        subsets.extend([*subset, option] for subset in list(subsets))
    return subsets


def generate_all_permutations(manifest: Manifest) -> list[Selection]:
    """Cartesian product of every modifier's choices, first modifier varying slowest."""
    names: list[str] = []
    choices: list[list[Any]] = []
    for name, modifier in manifest.modifiers.items():
        names.append(name)
        if isinstance(modifier, OneOfModifier):
            choices.append(list(modifier.one_of))
        else:
            choices.append(power_set(modifier.any_of))
    return [dict(zip(names, combo, strict=True)) for combo in itertools.product(*choices)]


def count_permutations(manifest: Manifest) -> int:
    """Number of selections ``generate_all_permutations`` would produce."""
    return prod(
        len(m.one_of) if isinstance(m, OneOfModifier) else 2 ** len(m.any_of)
        for m in manifest.modifiers.values()
    )


def expand_generate_spec(manifest: Manifest, spec: GenerateSpec) -> Selection:
    """Turn a generate entry into a concrete selection."""
    selection: Selection = {}
    for name, value in spec.selections.items():
        modifier = manifest.modifiers.get(name)
        if modifier is None:
            continue
        if value == WILDCARD and isinstance(modifier, AnyOfModifier):
            selection[name] = list(modifier.any_of)
        else:
            selection[name] = value

    for rule in spec.include_modifiers or []:
        name, _, value = rule.partition(":")
        if name and value:
            selection[name] = value
    return selection


def _expanding_modifiers(manifest: Manifest, spec: GenerateSpec) -> list[str]:
    expanding: list[str] = []
    for rule in spec.include_modifiers or []:
        if ":" in rule:
            continue
        if isinstance(spec.selections.get(rule), str):
            continue
        if isinstance(manifest.modifiers.get(rule), OneOfModifier):
            expanding.append(rule)
    return expanding


def output_name(spec: GenerateSpec, combination: Mapping[str, str]) -> str:
    base = re.sub(r"\.[^/.]+$", "", spec.output or DEFAULT_OUTPUT)
    if not combination:
        return f"{base}.json"
    return f"{base}-{'-'.join(combination.values())}.json"


def expand_spec_with_filtering(manifest: Manifest, spec: GenerateSpec) -> list[tuple[GenerateSpec, str]]:
    """
    Fan a generate entry out over ``oneOf`` modifiers it includes without a value.

    Returns:
        ``(spec, output file name)`` pairs, one per combination
    """
    expanding = _expanding_modifiers(manifest, spec)
    if not expanding:
        return [(spec, output_name(spec, {}))]

    options = [manifest.modifiers[name].one_of for name in expanding]
    expanded: list[tuple[GenerateSpec, str]] = []
    for combo in itertools.product(*options):
        combination = dict(zip(expanding, combo, strict=True))
        selections = {**spec.selections, **combination}
        expanded.append(
            (spec.model_copy(update={"selections": selections}), output_name(spec, combination))
        )
    return expanded


def iter_generate(manifest: Manifest) -> Iterator[tuple[Selection, GenerateSpec | None, str | None]]:
    """Selections to resolve, with the filtering spec and output name of each."""
    if manifest.generate is None:
        for selection in generate_all_permutations(manifest):
            yield selection, None, None
        return
    for entry in manifest.generate:
        for spec, output in expand_spec_with_filtering(manifest, entry):
            yield expand_generate_spec(manifest, spec), spec, output


def generate_all(
    manifest: Manifest,
    reader: FileReader,
    config: ResolverConfig | None = None,
) -> list[ResolvedPermutation]:
    """Resolve the declared ``generate`` entries, or every permutation when none are declared."""
    if manifest.generate is None:
        logger.info(f"Generating all {count_permutations(manifest)} permutations")

    results: list[ResolvedPermutation] = []
    for selection, spec, output in iter_generate(manifest):
        result = resolve_permutation(manifest, selection, reader, spec, config)
        if output:
            result.output = output
        results.append(result)
    return results
