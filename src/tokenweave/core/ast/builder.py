"""
Build the token AST from raw DTCG documents.

The builder is permissive: a document that is not a mapping becomes an empty
group, and a non-mapping child is kept verbatim in its group's ``extras``.
Later passes can still report problems against a partial tree.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from .nodes import FileAST, GroupNode, ProjectAST, TokenNode, normalize_file_path
from .query import iter_tokens

logger = logging.getLogger(__name__)

# Any {...} run inside a string. Validity is checked separately so that
# malformed aliases are reported instead of silently ignored.
ALIAS_PATTERN = re.compile(r"\{([^{}]*)\}")
VALID_ALIAS = re.compile(r"^[^\s.{}$][^\s.{}]*(?:\.[^\s.{}$][^\s.{}]*)*$")


@dataclass
class ReferenceScan:
    """References found while scanning a ``$value``."""

    aliases: list[str] = field(default_factory=list)
    pointers: list[str] = field(default_factory=list)
    invalid: list[str] = field(default_factory=list)

    def add_alias(self, alias: str) -> None:
        if alias not in self.aliases:
            self.aliases.append(alias)


def normalize_reference(raw: str) -> str:
    """Convert ``{a.b}``, ``#/a/b`` or ``a/b`` forms into the dot path ``a.b``."""
    ref = raw.strip()
    if ref.startswith("{") and ref.endswith("}"):
        ref = ref[1:-1]
    if ref.startswith("#/"):
        ref = ref[2:]
    ref = ref.replace("/", ".")
    if ref.endswith(".$value"):
        ref = ref[: -len(".$value")]
    return ref


def scan_references(value: Any) -> ReferenceScan:
    """Collect aliases, ``$ref`` pointers and malformed aliases from a value."""
    scan = ReferenceScan()
    _scan_value(value, scan)
    return scan


def _scan_value(value: Any, scan: ReferenceScan) -> None:
    if isinstance(value, str):
        _scan_string(value, scan)
    elif isinstance(value, list):
        for item in value:
            _scan_value(item, scan)
    elif isinstance(value, Mapping):
        ref = value.get("$ref")
        if isinstance(ref, str):
            if ref not in scan.pointers:
                scan.pointers.append(ref)
        for key, item in value.items():
            if key != "$ref":
                _scan_value(item, scan)


def _scan_string(text: str, scan: ReferenceScan) -> None:
    if "{" not in text and "}" not in text:
        return
    for match in ALIAS_PATTERN.finditer(text):
        alias = normalize_reference(match.group(0))
        if VALID_ALIAS.match(alias):
            scan.add_alias(alias)
        else:
            scan.invalid.append(match.group(0))
    leftover = ALIAS_PATTERN.sub("", text)
    if "{" in leftover or "}" in leftover:
        # unbalanced or nested braces
        scan.invalid.append(text)


def _join(parent_path: str, key: str) -> str:
    return f"{parent_path}.{key}" if parent_path else key


def build_ast(
    document: Any,
    path: str = "",
    parent_path: str | None = None,
    inherited_type: str | None = None,
    *,
    _group: GroupNode | None = None,
) -> GroupNode:
    """
    Build a group tree from a raw token document.

    Args:
        document: Raw nested mapping
        path: Dot path of this group ("" for the root)
        parent_path: Path of the enclosing group, None for the root
        inherited_type: Nearest ancestor ``$type``

    Returns:
        GroupNode whose children mirror the document's non-``$`` keys
    """
    name = path.rsplit(".", 1)[-1] if path else "root"
    group = _group if _group is not None else GroupNode(name=name, path=path, parent_path=parent_path)

    if not isinstance(document, Mapping):
        logger.debug(f"Non-object document at '{path or 'root'}', using empty group")
        return group

    own_type = document.get("$type")
    if isinstance(own_type, str):
        group.own_type = own_type
    effective_type = group.own_type or inherited_type

    for raw_key, value in document.items():
        key = str(raw_key)
        if key.startswith("$"):
            if key != "$type":
                group.metadata[key[1:]] = value
            continue

        child_path = _join(path, key)
        if not isinstance(value, Mapping):
            logger.debug(f"Keeping non-object entry at '{child_path}' as-is")
            group.extras[key] = value
            continue

        if "$value" in value:
            group.children[key] = build_token(key, child_path, value, path, effective_type)
        else:
            group.children[key] = build_ast(value, child_path, path, effective_type)

    return group


def build_token(
    name: str,
    path: str,
    raw: Mapping[str, Any],
    parent_path: str | None,
    inherited_type: str | None = None,
) -> TokenNode:
    """Create a token node, extracting references and metadata."""
    value = raw.get("$value")
    scan = scan_references(value)

    own_type = raw.get("$type")
    token = TokenNode(
        name=name,
        path=path,
        value=value,
        token_type=own_type if isinstance(own_type, str) else inherited_type,
        references=scan.aliases,
        pointers=scan.pointers,
        invalid_references=scan.invalid,
        parent_path=parent_path,
    )

    for raw_key, meta in raw.items():
        key = str(raw_key)
        if key.startswith("$") and key not in ("$value", "$type"):
            token.metadata[key[1:]] = meta

    if not token.has_references:
        token.resolved = True
        token.resolved_value = value
    return token


def build_file_ast(document: Any, file_path: str) -> FileAST:
    """Build the AST of one file and record its cross-file ``$ref`` strings."""
    file_ast = FileAST(name="root", path="", file_path=normalize_file_path(file_path))
    build_ast(document, _group=file_ast)

    for token in iter_tokens(file_ast):
        for pointer in token.pointers:
            head = pointer.split("#", 1)[0]
            if head:
                file_ast.cross_file_references.add(pointer)
    return file_ast


def build_project_ast(documents: Mapping[str, Any], base_path: str = "") -> ProjectAST:
    """Build a project from ``{file path: raw document}``."""
    project = ProjectAST(base_path=base_path)
    for file_path, document in documents.items():
        project.add_file(build_file_ast(document, file_path))
    logger.debug(f"Built project AST with {len(project.files)} files")
    return project
