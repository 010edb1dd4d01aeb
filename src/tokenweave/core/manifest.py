"""
Modifier manifest: base token sets plus named modifiers.

A manifest declares base ``sets`` (always merged first) and ``modifiers``.
A ``oneOf`` modifier selects exactly one option, an ``anyOf`` modifier any
subset. Each option maps to the token files it contributes.

Manifests are validated up front: ``parse_manifest`` reports every structural
problem at once instead of stopping at the first.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import TokenFileError, make_manifest_error
from .references import DEFAULT_MAX_DEPTH

logger = logging.getLogger(__name__)

# Keys of a generate entry that are not modifier selections.
GENERATE_KEYS = {
    "output": "output",
    "includeSets": "include_sets",
    "excludeSets": "exclude_sets",
    "includeModifiers": "include_modifiers",
    "excludeModifiers": "exclude_modifiers",
}

OUTPUT_KEY = "output"
WILDCARD = "*"
UPFT_FORMAT = "upft"

Selection = dict[str, str | list[str] | None]


# =============================================================================
# Models
# =============================================================================


class TokenSet(BaseModel):
    """Base token files, always merged before any modifier."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str | None = Field(default=None, description="Optional name used by set filters")
    files: list[str] = Field(alias="values", description="Token files in merge order")


class OneOfModifier(BaseModel):
    """Exactly one option is selected."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    one_of: list[str] = Field(alias="oneOf")
    values: dict[str, list[str]] = Field(default_factory=dict)
    default: str | None = None

    @property
    def options(self) -> list[str]:
        return self.one_of

    def default_selection(self) -> str:
        return self.default if self.default is not None else self.one_of[0]

    def files_for(self, selected: str | None) -> list[str]:
        return list(self.values.get(selected or self.default_selection(), []))


class AnyOfModifier(BaseModel):
    """Any subset of options is selected, including none."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    any_of: list[str] = Field(alias="anyOf")
    values: dict[str, list[str]] = Field(default_factory=dict)

    @property
    def options(self) -> list[str]:
        return self.any_of

    def default_selection(self) -> list[str]:
        return []

    def files_for(self, selected: list[str] | None) -> list[str]:
        files: list[str] = []
        for option in selected or []:
            files.extend(self.values.get(option, []))
        return files


Modifier = OneOfModifier | AnyOfModifier


class GenerateSpec(BaseModel):
    """One entry of a manifest's ``generate`` list."""

    model_config = ConfigDict(frozen=True)

    selections: dict[str, str | list[str]] = Field(default_factory=dict)
    output: str | None = None
    include_sets: list[str] | None = None
    exclude_sets: list[str] | None = None
    include_modifiers: list[str] | None = None
    exclude_modifiers: list[str] | None = None

    @property
    def has_set_filter(self) -> bool:
        return self.include_sets is not None or self.exclude_sets is not None


class ManifestOptions(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    resolve_references: bool = Field(default=False, alias="resolveReferences")
    max_depth: int = Field(default=DEFAULT_MAX_DEPTH, alias="maxDepth", ge=1)


class Manifest(BaseModel):
    """A parsed modifier manifest. ``modifiers`` keeps declaration order."""

    model_config = ConfigDict(frozen=True)

    name: str | None = None
    description: str | None = None
    sets: list[TokenSet]
    modifiers: dict[str, Modifier] = Field(default_factory=dict)
    generate: list[GenerateSpec] | None = None
    options: ManifestOptions = Field(default_factory=ManifestOptions)
    source: str | None = Field(default=None, description="File the manifest was loaded from")
    format: str = Field(default=UPFT_FORMAT, description="Format the manifest was written in")
    version: str | None = None
    inline_tokens: dict[str, dict[str, Any]] = Field(
        default_factory=dict, description="Token documents declared in the manifest, by virtual path"
    )


# =============================================================================
# Parsing
# =============================================================================


def _is_string_list(value: Any) -> bool:
    return isinstance(value, list) and all(isinstance(v, str) for v in value)


def _check_set(index: int, raw: Any, errors: list[str]) -> None:
    where = f"sets[{index}]"
    if not isinstance(raw, Mapping):
        errors.append(f"{where}: must be an object")
        return
    files = raw.get("values", raw.get("files"))
    if files is None:
        errors.append(f"{where}: missing 'values' file list")
    elif not _is_string_list(files):
        errors.append(f"{where}: 'values' must be a list of file paths")
    name = raw.get("name")
    if name is not None and not isinstance(name, str):
        errors.append(f"{where}: 'name' must be a string")


def _check_modifier(name: str, raw: Any, errors: list[str]) -> None:
    where = f"modifiers.{name}"
    if not isinstance(raw, Mapping):
        errors.append(f"{where}: must be an object")
        return

    has_one, has_any = "oneOf" in raw, "anyOf" in raw
    if has_one == has_any:
        errors.append(f"{where}: must declare exactly one of 'oneOf' or 'anyOf'")
        return

    key = "oneOf" if has_one else "anyOf"
    options = raw[key]
    if not _is_string_list(options):
        errors.append(f"{where}.{key}: must be a list of strings")
        return
    if not options:
        errors.append(f"{where}.{key}: must declare at least one option")

    values = raw.get("values", {})
    if not isinstance(values, Mapping):
        errors.append(f"{where}.values: must be an object")
    else:
        for option, files in values.items():
            if option not in options:
                errors.append(f"{where}.values: '{option}' is not a declared option")
            if not _is_string_list(files):
                errors.append(f"{where}.values.{option}: must be a list of file paths")

    if has_one and "default" in raw:
        default = raw["default"]
        if default not in options:
            errors.append(f"{where}.default: '{default}' is not one of {options}")
    elif has_any and "default" in raw:
        errors.append(f"{where}: 'default' is only allowed on oneOf modifiers")


def _check_generate(index: int, raw: Any, modifiers: Mapping[str, Any], errors: list[str]) -> None:
    where = f"generate[{index}]"
    if not isinstance(raw, Mapping):
        errors.append(f"{where}: must be an object")
        return
    for key, value in raw.items():
        if key == OUTPUT_KEY:
            if not isinstance(value, str):
                errors.append(f"{where}.output: must be a string")
        elif key in GENERATE_KEYS:
            if not _is_string_list(value):
                errors.append(f"{where}.{key}: must be a list of strings")
        elif key not in modifiers:
            errors.append(f"{where}: unknown modifier '{key}'")
        elif not (isinstance(value, str) or _is_string_list(value)):
            errors.append(f"{where}.{key}: must be a string or a list of strings")


def _build_modifier(raw: Mapping[str, Any]) -> Modifier:
    if "oneOf" in raw:
        return OneOfModifier.model_validate(raw)
    return AnyOfModifier.model_validate(raw)


def _build_generate(raw: Mapping[str, Any]) -> GenerateSpec:
    fields: dict[str, Any] = {"selections": {}}
    for key, value in raw.items():
        if key in GENERATE_KEYS:
            fields[GENERATE_KEYS[key]] = value
        else:
            fields["selections"][key] = value
    return GenerateSpec(**fields)


def _schema_messages(error: ValidationError) -> list[str]:
    return [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in error.errors()]


def build_manifest(source: str | None = None, **fields: Any) -> Manifest:
    """Construct a Manifest, reporting schema violations as a ManifestError."""
    try:
        manifest = Manifest(source=source, **fields)
    except ValidationError as e:
        raise make_manifest_error("Invalid manifest", _schema_messages(e), source) from e
    logger.debug(
        f"Parsed {manifest.format} manifest {manifest.name or source or '<inline>'}: "
        f"{len(manifest.sets)} sets, {len(manifest.modifiers)} modifiers"
    )
    return manifest


def parse_upft_manifest(data: Mapping[str, Any], source: str | None = None) -> Manifest:
    """
    Validate and parse a manifest with a ``sets`` list and a ``modifiers`` object.

    Raises:
        ManifestError: Listing every structural violation found
    """
    errors: list[str] = []

    sets = data.get("sets")
    if sets is None:
        errors.append("missing required 'sets'")
    elif not isinstance(sets, list):
        errors.append("'sets' must be a list")
    elif not sets:
        errors.append("'sets' must declare at least one set")
    else:
        for index, raw_set in enumerate(sets):
            _check_set(index, raw_set, errors)

    modifiers = data.get("modifiers")
    if modifiers is None:
        errors.append("missing required 'modifiers'")
        modifiers = {}
    elif not isinstance(modifiers, Mapping):
        errors.append("'modifiers' must be an object")
        modifiers = {}
    for name, raw_modifier in modifiers.items():
        _check_modifier(name, raw_modifier, errors)

    generate = data.get("generate")
    if generate is not None:
        if not isinstance(generate, list):
            errors.append("'generate' must be a list")
        else:
            for index, entry in enumerate(generate):
                _check_generate(index, entry, modifiers, errors)

    options = data.get("options", {})
    if not isinstance(options, Mapping):
        errors.append("'options' must be an object")

    if errors:
        raise make_manifest_error("Invalid manifest", errors, source)

    try:
        fields: dict[str, Any] = {
            "sets": [TokenSet.model_validate(dict(s)) for s in sets],
            "modifiers": {name: _build_modifier(raw) for name, raw in modifiers.items()},
            "generate": [_build_generate(entry) for entry in generate] if generate is not None else None,
            "options": ManifestOptions.model_validate(dict(options)),
        }
    except ValidationError as e:
        raise make_manifest_error("Invalid manifest", _schema_messages(e), source) from e
    return build_manifest(
        source,
        name=data.get("name"),
        description=data.get("description"),
        version=data.get("version"),
        **fields,
    )


def parse_manifest(data: Any, source: str | None = None, format: str | None = None) -> Manifest:
    """
    Validate and parse a raw manifest mapping in any registered format.

    Args:
        data: Decoded JSON or YAML
        source: Optional file path, used in error context and to expand
            relative source patterns
        format: Format name; detected from the data when omitted. Data that
            no format recognizes is parsed as ``upft`` so its problems are reported.

    Returns:
        Parsed Manifest

    Raises:
        ManifestError: Listing every structural violation found
    """
    if not isinstance(data, Mapping):
        raise make_manifest_error("Invalid manifest", ["manifest must be an object"], source)

    from .manifest_formats import detect_manifest_format, get_manifest_format

    if format is None:
        return get_manifest_format(detect_manifest_format(data) or UPFT_FORMAT).parse(data, source)

    manifest_format = get_manifest_format(format)
    if format != UPFT_FORMAT and not manifest_format.detect(data):
        raise make_manifest_error(
            "Invalid manifest", [f"data does not have the shape of a '{format}' manifest"], source
        )
    return manifest_format.parse(data, source)


def load_manifest(path: str | Path, format: str | None = None) -> Manifest:
    """
    Load a manifest from a JSON or YAML file.

    Raises:
        TokenFileError: If the file cannot be read or decoded
        ManifestError: If the manifest is structurally invalid
    """
    manifest_path = Path(path)
    try:
        content = manifest_path.read_text(encoding="utf-8")
    except OSError as e:
        raise TokenFileError(f"Cannot read manifest {manifest_path}: {e}") from e

    try:
        if manifest_path.suffix.lower() in (".yaml", ".yml"):
            data = yaml.safe_load(content)
        else:
            data = json.loads(content)
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise TokenFileError(f"Invalid manifest syntax in {manifest_path}: {e}") from e

    return parse_manifest(data, source=str(manifest_path), format=format)


# =============================================================================
# Input validation
# =============================================================================


@dataclass
class InputError:
    """A rejected entry of a modifier selection."""

    modifier: str
    message: str
    received: Any
    expected: str

    def __str__(self) -> str:
        return f"{self.modifier}: {self.message} (received {self.received!r}, expected {self.expected})"


def validate_input(manifest: Manifest, selection: Mapping[str, Any]) -> list[InputError]:
    """Check a selection against the manifest; every problem is reported."""
    errors: list[InputError] = []

    for name, modifier in manifest.modifiers.items():
        value = selection.get(name)
        if value is None:
            continue
        options = modifier.options
        if isinstance(modifier, OneOfModifier):
            expected = f"one of {options}"
            if not isinstance(value, str):
                errors.append(InputError(name, "oneOf modifier takes a single value", value, expected))
            elif value not in options:
                errors.append(InputError(name, f"unknown option '{value}'", value, expected))
        else:
            expected = f"a list drawn from {options}"
            if not isinstance(value, list):
                errors.append(InputError(name, "anyOf modifier takes a list", value, expected))
                continue
            for item in value:
                if not isinstance(item, str) or item not in options:
                    errors.append(InputError(name, f"unknown option {item!r}", value, expected))

    for name, value in selection.items():
        if name != OUTPUT_KEY and name not in manifest.modifiers:
            errors.append(
                InputError(name, "unknown modifier", value, f"one of {list(manifest.modifiers)}")
            )
    return errors


def normalize_selection(manifest: Manifest, selection: Mapping[str, Any]) -> Selection:
    """Fill in defaults for modifiers missing from ``selection``."""
    resolved: Selection = {}
    for name, modifier in manifest.modifiers.items():
        value = selection.get(name)
        resolved[name] = modifier.default_selection() if value is None else value
    return resolved
