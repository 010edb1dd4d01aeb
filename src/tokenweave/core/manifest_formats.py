"""
Manifest formats.

Every format normalizes to the same ``Manifest`` model:

- ``upft``: a ``sets`` list and a ``modifiers`` object of ``oneOf``/``anyOf`` entries
- ``dtcg``: the DTCG resolver draft. A ``version``, a ``sets`` list of
  ``source`` or inline ``tokens`` entries, and a ``modifiers`` list of
  ``enumerated`` or ``include`` modifiers
- ``dtcg-manifest``: named ``sources`` with include patterns, and ``themes``
  whose ``conditions`` become ``oneOf`` modifiers

Detection tries formats in registration order; the first match parses.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .errors import make_manifest_error
from .manifest import (
    UPFT_FORMAT,
    AnyOfModifier,
    Manifest,
    Modifier,
    OneOfModifier,
    TokenSet,
    _is_string_list,
    build_manifest,
    parse_upft_manifest,
)

logger = logging.getLogger(__name__)

DTCG_RESOLVER_FORMAT = "dtcg"
DTCG_MANIFEST_FORMAT = "dtcg-manifest"

# The single option of a modifier built from a DTCG ``include`` modifier.
INCLUDE_OPTION = "include"
VIRTUAL_SUFFIX = ".virtual.json"
GLOB_CHARS = frozenset("*?[")


@dataclass(frozen=True)
class ManifestFormat:
    """A manifest shape: how to recognize it and how to parse it."""

    name: str
    detect: Callable[[Any], bool]
    parse: Callable[[Mapping[str, Any], str | None], Manifest]


_formats: dict[str, ManifestFormat] = {}


def register_manifest_format(manifest_format: ManifestFormat) -> None:
    """Register a format. A name that is already taken keeps its first definition."""
    if manifest_format.name in _formats:
        logger.debug(f"Manifest format {manifest_format.name} already registered")
        return
    _formats[manifest_format.name] = manifest_format


def registered_formats() -> list[str]:
    return list(_formats)


def get_manifest_format(name: str) -> ManifestFormat:
    """
    Raises:
        ManifestError: If no format of that name is registered
    """
    found = _formats.get(name)
    if found is None:
        raise make_manifest_error(
            "Unknown manifest format", [f"'{name}' is not one of {registered_formats()}"]
        )
    return found


def detect_manifest_format(data: Any) -> str | None:
    """Name of the first registered format that recognizes ``data``."""
    for manifest_format in _formats.values():
        if manifest_format.detect(data):
            return manifest_format.name
    return None


# =============================================================================
# upft
# =============================================================================


def is_upft_manifest(data: Any) -> bool:
    return isinstance(data, Mapping) and isinstance(data.get("modifiers"), Mapping)


# =============================================================================
# DTCG resolver
# =============================================================================


def is_dtcg_resolver_manifest(data: Any) -> bool:
    """Structural check only; detailed problems are reported by the parser."""
    if not isinstance(data, Mapping) or not isinstance(data.get("version"), str):
        return False
    sets = data.get("sets")
    if not isinstance(sets, list) or not sets:
        return False
    if not all(isinstance(s, Mapping) for s in sets):
        return False
    modifiers = data.get("modifiers")
    if modifiers:
        if not isinstance(modifiers, list):
            return False
        return all(
            isinstance(m, Mapping) and m.get("type") in ("enumerated", "include") for m in modifiers
        )
    return True


def _set_files(
    raw: Any,
    virtual_name: str,
    where: str,
    inline: dict[str, dict[str, Any]],
    errors: list[str],
) -> list[str]:
    """Files of one DTCG token set; inline tokens get a virtual path."""
    if not isinstance(raw, Mapping):
        errors.append(f"{where}: must be an object")
        return []
    source, tokens = raw.get("source"), raw.get("tokens")
    if source is not None and not isinstance(source, str):
        errors.append(f"{where}.source: must be a string")
        return []
    if tokens is not None and not isinstance(tokens, Mapping):
        errors.append(f"{where}.tokens: must be an object")
        return []
    if source and tokens is not None:
        logger.warning(f"{where}: has both 'source' and 'tokens'; 'source' takes precedence")
    if raw.get("namespace") is not None:
        logger.warning(f"{where}: namespace {raw['namespace']!r} is not applied to its tokens")

    if source:
        return [source]
    if tokens is not None:
        path = f"{virtual_name}{VIRTUAL_SUFFIX}"
        inline[path] = copy.deepcopy(dict(tokens))
        return [path]
    errors.append(f"{where}: token set must have either 'source' or 'tokens'")
    return []


def _sets_files(
    raw_sets: Any,
    virtual_prefix: str,
    where: str,
    inline: dict[str, dict[str, Any]],
    errors: list[str],
) -> list[str]:
    if not isinstance(raw_sets, list):
        errors.append(f"{where}: must be a list of token sets")
        return []
    files: list[str] = []
    for index, raw in enumerate(raw_sets):
        files.extend(
            _set_files(raw, f"{virtual_prefix}-{index}", f"{where}[{index}]", inline, errors)
        )
    return files


def _enumerated_modifier(
    name: str,
    raw: Mapping[str, Any],
    where: str,
    inline: dict[str, dict[str, Any]],
    errors: list[str],
) -> Modifier | None:
    values = raw.get("values")
    if not _is_string_list(values) or not values:
        errors.append(f"{where}.values: enumerated modifier must have values")
        return None

    raw_sets = raw.get("sets", {})
    if not isinstance(raw_sets, Mapping):
        errors.append(f"{where}.sets: must be an object")
        return None

    files: dict[str, list[str]] = {}
    for value, value_sets in raw_sets.items():
        if value not in values:
            errors.append(f"{where}.sets: '{value}' is not a declared value")
            continue
        files[value] = _sets_files(
            value_sets, f"{name}-{value}", f"{where}.sets.{value}", inline, errors
        )
    return OneOfModifier(one_of=list(values), values=files)


def _include_modifier(
    name: str,
    raw: Mapping[str, Any],
    where: str,
    inline: dict[str, dict[str, Any]],
    errors: list[str],
) -> Modifier:
    files = _sets_files(
        raw.get("include", []), f"{name}-{INCLUDE_OPTION}", f"{where}.include", inline, errors
    )
    return AnyOfModifier(any_of=[INCLUDE_OPTION], values={INCLUDE_OPTION: files})


def parse_dtcg_resolver_manifest(data: Mapping[str, Any], source: str | None = None) -> Manifest:
    """
    Parse a DTCG resolver manifest.

    ``enumerated`` modifiers become ``oneOf`` modifiers defaulting to their
    first value. An ``include`` modifier becomes an ``anyOf`` modifier with the
    single option ``include``, contributing all of its sets when selected.

    Raises:
        ManifestError: Listing every structural violation found
    """
    errors: list[str] = []
    inline: dict[str, dict[str, Any]] = {}

    if not isinstance(data.get("version"), str):
        errors.append("missing required 'version'")

    raw_sets = data.get("sets")
    sets: list[TokenSet] = []
    if not isinstance(raw_sets, list) or not raw_sets:
        errors.append("'sets' must be a non-empty list")
    else:
        for index, raw in enumerate(raw_sets):
            files = _set_files(raw, f"set-{index}", f"sets[{index}]", inline, errors)
            sets.append(TokenSet(name=f"set-{index}", files=files))

    raw_modifiers = data.get("modifiers") or []
    modifiers: dict[str, Modifier] = {}
    if not isinstance(raw_modifiers, list):
        errors.append("'modifiers' must be a list")
        raw_modifiers = []
    for index, raw in enumerate(raw_modifiers):
        where = f"modifiers[{index}]"
        if not isinstance(raw, Mapping):
            errors.append(f"{where}: must be an object")
            continue
        name = raw.get("name")
        if not isinstance(name, str) or not name:
            errors.append(f"{where}.name: modifier must have a name")
            continue
        if name in modifiers:
            errors.append(f"{where}.name: duplicate modifier '{name}'")
            continue

        kind = raw.get("type")
        if kind == "enumerated":
            modifier = _enumerated_modifier(name, raw, where, inline, errors)
        elif kind == "include":
            modifier = _include_modifier(name, raw, where, inline, errors)
        else:
            errors.append(f"{where}.type: must be 'enumerated' or 'include'")
            continue
        if modifier is not None:
            modifiers[name] = modifier

    if errors:
        raise make_manifest_error("Invalid DTCG resolver manifest", errors, source)

    return build_manifest(
        source,
        name=data.get("name"),
        description=data.get("description"),
        version=data["version"],
        sets=sets,
        modifiers=modifiers,
        format=DTCG_RESOLVER_FORMAT,
        inline_tokens=inline,
    )


# =============================================================================
# DTCG manifest
# =============================================================================


def is_dtcg_manifest(data: Any) -> bool:
    """Structural check only; detailed problems are reported by the parser."""
    if not isinstance(data, Mapping):
        return False
    sources = data.get("sources")
    if not isinstance(sources, list) or not sources:
        return False
    for source in sources:
        if not isinstance(source, Mapping):
            return False
        if not isinstance(source.get("name"), str) or not isinstance(source.get("include"), list):
            return False

    themes = data.get("themes")
    if themes:
        if not isinstance(themes, list):
            return False
        for theme in themes:
            if not isinstance(theme, Mapping):
                return False
            if not (
                isinstance(theme.get("id"), str)
                and isinstance(theme.get("name"), str)
                and isinstance(theme.get("conditions"), Mapping)
                and isinstance(theme.get("sources"), list)
            ):
                return False
    return True


def expand_patterns(patterns: list[str], base_dir: Path | None) -> list[str]:
    """
    Expand glob patterns relative to ``base_dir``.

    Plain paths, absolute patterns and patterns matching nothing are kept
    as written, so a missing file is reported when it is read.
    """
    files: list[str] = []
    for pattern in patterns:
        matches: list[str] = []
        if (
            base_dir is not None
            and GLOB_CHARS.intersection(pattern)
            and not Path(pattern).is_absolute()
        ):
            matches = sorted(
                p.relative_to(base_dir).as_posix() for p in base_dir.glob(pattern) if p.is_file()
            )
        files.extend(matches or [pattern])
    return files


def _check_theme(index: int, theme: Mapping[str, Any], sources: Mapping[str, Any], errors: list[str]) -> None:
    where = f"themes[{index}]"
    if not theme["id"]:
        errors.append(f"{where}.id: theme must have an id")
    if not theme["name"]:
        errors.append(f"{where}.name: theme must have a name")
    conditions = theme["conditions"]
    if not conditions:
        errors.append(f"{where}.conditions: theme must have conditions")
    for key, value in conditions.items():
        if not isinstance(value, str):
            errors.append(f"{where}.conditions.{key}: must be a string")
    if not theme["sources"]:
        errors.append(f"{where}.sources: theme must have a non-empty sources list")
    for name in theme["sources"]:
        if not isinstance(name, str) or name not in sources:
            errors.append(f"{where}.sources: unknown source '{name}'")


def _condition_modifiers(
    themes: list[Mapping[str, Any]], sources: Mapping[str, list[str]]
) -> dict[str, Modifier]:
    keys: list[str] = []
    for theme in themes:
        for key in theme["conditions"]:
            if key not in keys:
                keys.append(key)

    modifiers: dict[str, Modifier] = {}
    for key in keys:
        values: list[str] = []
        source_names: dict[str, list[str]] = {}
        for theme in themes:
            value = theme["conditions"].get(key)
            if value is None:
                continue
            if value not in values:
                values.append(value)
                source_names[value] = []
            for name in theme["sources"]:
                if name not in source_names[value]:
                    source_names[value].append(name)
        files = {
            value: [f for name in names for f in sources[name]] for value, names in source_names.items()
        }
        modifiers[key] = OneOfModifier(one_of=values, values=files)
    return modifiers


def parse_dtcg_manifest(data: Mapping[str, Any], source: str | None = None) -> Manifest:
    """
    Parse a DTCG manifest of ``sources`` and ``themes``.

    Each condition key used by the themes becomes a ``oneOf`` modifier whose
    options are the key's values, in first-seen order. Selecting a value
    contributes the sources of every theme with that condition. Sources no
    theme names are base sets. ``outputs`` describe formatter output and are
    only checked, not used.

    Raises:
        ManifestError: Listing every structural violation found
    """
    errors: list[str] = []
    base_dir = Path(source).parent if source else None

    sources: dict[str, list[str]] = {}
    for index, raw in enumerate(data["sources"]):
        where = f"sources[{index}]"
        name, include = raw["name"], raw["include"]
        if not name:
            errors.append(f"{where}.name: source must have a name")
        elif name in sources:
            errors.append(f"{where}.name: duplicate source '{name}'")
        if not include:
            errors.append(f"{where}.include: source must have a non-empty include list")
        elif not _is_string_list(include):
            errors.append(f"{where}.include: must be a list of file patterns")
            continue
        sources[name] = expand_patterns(include, base_dir)

    themes = data.get("themes") or []
    for index, theme in enumerate(themes):
        _check_theme(index, theme, sources, errors)

    outputs = data.get("outputs") or []
    if not isinstance(outputs, list):
        errors.append("'outputs' must be a list")
        outputs = []
    for index, output in enumerate(outputs):
        if not isinstance(output, Mapping):
            errors.append(f"outputs[{index}]: must be an object")
            continue
        if not output.get("format"):
            errors.append(f"outputs[{index}].format: output must have a format")
        if not output.get("destination"):
            errors.append(f"outputs[{index}].destination: output must have a destination")

    if errors:
        raise make_manifest_error("Invalid DTCG manifest", errors, source)

    themed = {name for theme in themes for name in theme["sources"]}
    sets = [TokenSet(name=name, files=files) for name, files in sources.items() if name not in themed]
    if outputs:
        logger.debug(f"Skipping {len(outputs)} output declaration(s)")

    return build_manifest(
        source,
        name=data.get("name"),
        description=data.get("description"),
        version=data.get("version"),
        sets=sets,
        modifiers=_condition_modifiers(themes, sources),
        format=DTCG_MANIFEST_FORMAT,
    )


register_manifest_format(ManifestFormat(UPFT_FORMAT, is_upft_manifest, parse_upft_manifest))
register_manifest_format(
    ManifestFormat(DTCG_RESOLVER_FORMAT, is_dtcg_resolver_manifest, parse_dtcg_resolver_manifest)
)
register_manifest_format(ManifestFormat(DTCG_MANIFEST_FORMAT, is_dtcg_manifest, parse_dtcg_manifest))
