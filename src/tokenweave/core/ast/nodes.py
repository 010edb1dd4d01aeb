"""
AST node types for DTCG token documents.

A document is classified once, at build time, into a tree of ``TokenNode``
and ``GroupNode`` values. Every later pass dispatches on ``node.kind``.

Ownership is strictly top-down: a group owns its children, and a child only
records the path of its parent (``parent_path``). Use
``tokenweave.core.ast.query.get_parent`` to look the parent up through the root.
"""

from __future__ import annotations

import posixpath
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class NodeKind(StrEnum):
    """Tag of the token/group union."""

    TOKEN = "token"
    GROUP = "group"


class ReferenceErrorKind(StrEnum):
    """Kinds of reference problems collected during assembly and resolution."""

    MISSING = "missing"
    CIRCULAR = "circular"
    DEPTH = "depth"
    INVALID = "invalid"


@dataclass
class ResolutionError:
    """A single reference problem, reported against the token that holds it."""

    kind: ReferenceErrorKind
    path: str
    message: str
    reference: str | None = None
    file_path: str | None = None

    def __str__(self) -> str:
        location = f"{self.file_path}#{self.path}" if self.file_path else self.path
        return f"{location}: {self.message}"


@dataclass
class TokenNode:
    """A leaf carrying ``$value``."""

    name: str
    path: str
    value: Any = None
    token_type: str | None = None
    references: list[str] = field(default_factory=list)
    pointers: list[str] = field(default_factory=list)
    invalid_references: list[str] = field(default_factory=list)
    resolved: bool = False
    resolved_value: Any = None
    metadata: dict[str, Any] = field(default_factory=dict)
    parent_path: str | None = None

    kind: NodeKind = field(default=NodeKind.TOKEN, init=False)

    @property
    def has_references(self) -> bool:
        return bool(self.references or self.pointers or self.invalid_references)

    def add_references(self, references: list[str]) -> None:
        """Append aliases not already tracked, keeping discovery order."""
        for ref in references:
            if ref not in self.references:
                self.references.append(ref)


@dataclass
class GroupNode:
    """A named container of tokens and groups."""

    name: str
    path: str
    children: dict[str, TokenNode | GroupNode] = field(default_factory=dict)
    own_type: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    # plain entries that are neither tokens nor groups, kept verbatim
    extras: dict[str, Any] = field(default_factory=dict)
    parent_path: str | None = None

    kind: NodeKind = field(default=NodeKind.GROUP, init=False)

    def get(self, name: str) -> TokenNode | GroupNode | None:
        return self.children.get(name)

    def tokens(self) -> dict[str, TokenNode]:
        return {k: v for k, v in self.children.items() if v.kind is NodeKind.TOKEN}

    def groups(self) -> dict[str, GroupNode]:
        return {k: v for k, v in self.children.items() if v.kind is NodeKind.GROUP}

    @property
    def is_root(self) -> bool:
        return self.parent_path is None


Node = TokenNode | GroupNode


@dataclass
class FileAST(GroupNode):
    """Root group of a single token file."""

    file_path: str = ""
    cross_file_references: set[str] = field(default_factory=set)


def normalize_file_path(path: str, relative_to: str | None = None) -> str:
    """
    Normalize a token file path for lookups.

    Relative paths are joined onto the directory of ``relative_to`` (the
    referencing file) when given. Backslashes are treated as separators.
    """
    path = path.replace("\\", "/")
    if relative_to and not posixpath.isabs(path) and "://" not in path:
        base_dir = posixpath.dirname(relative_to.replace("\\", "/"))
        path = posixpath.join(base_dir, path)
    normalized = posixpath.normpath(path)
    return "" if normalized == "." else normalized


@dataclass
class ProjectAST:
    """All files of a project, keyed by normalized path."""

    base_path: str = ""
    files: dict[str, FileAST] = field(default_factory=dict)

    def add_file(self, file_ast: FileAST) -> None:
        key = normalize_file_path(file_ast.file_path)
        file_ast.file_path = key
        self.files[key] = file_ast

    def get_file(self, path: str, relative_to: str | None = None) -> FileAST | None:
        direct = self.files.get(normalize_file_path(path))
        if direct is not None or relative_to is None:
            return direct
        return self.files.get(normalize_file_path(path, relative_to))

    def dependency_graph(self) -> dict[str, list[str]]:
        """Map each file to the files its ``$ref`` pointers name."""
        from ..references import parse_pointer

        graph: dict[str, list[str]] = {}
        for file_path, file_ast in self.files.items():
            targets: list[str] = []
            for ref in sorted(file_ast.cross_file_references):
                try:
                    pointer = parse_pointer(ref)
                except ValueError:
                    continue
                if not pointer.file:
                    continue
                target = self.get_file(pointer.file, relative_to=file_path)
                name = target.file_path if target else normalize_file_path(pointer.file, file_path)
                if name not in targets:
                    targets.append(name)
            graph[file_path] = targets
        return graph


@dataclass
class ASTStatistics:
    """Summary counts for a token tree."""

    total_tokens: int = 0
    total_groups: int = 0
    tokens_by_type: dict[str, int] = field(default_factory=dict)
    max_depth: int = 0
    tokens_with_references: int = 0
    unresolved_tokens: int = 0

    @property
    def total_nodes(self) -> int:
        return self.total_tokens + self.total_groups
