"""
Reference resolution for token trees.

Two reference kinds, two policies:

- ``$ref`` pointers (``#/a/b`` or ``file.json#/a/b``) are resolved eagerly by
  content inclusion during *assembly*: the target's ``$value`` is deep-copied
  into the referencing location.
- ``{a.b}`` aliases are only tracked at build time and are substituted by an
  explicit resolution pass that follows the cycle detector's topological order.

Both passes collect ``ResolutionError`` values instead of raising, so a single
run reports every broken reference in a document.
"""

from __future__ import annotations

import copy
import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from .ast.builder import ALIAS_PATTERN, VALID_ALIAS, build_ast, normalize_reference, scan_references
from .ast.nodes import (
    FileAST,
    GroupNode,
    Node,
    NodeKind,
    ProjectAST,
    ReferenceErrorKind,
    ResolutionError,
    TokenNode,
)
from .ast.query import ast_to_document, find_node, find_token, iter_tokens
from .cycles import CycleDetectionResult, build_reference_graph, detect_cycles, find_cycles

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 10

WHOLE_ALIAS = re.compile(r"^\{([^{}]*)\}$")


class InvalidReference(ValueError):
    """A pointer or alias whose syntax cannot be parsed."""


class _UnresolvedPointer(Exception):
    def __init__(self, kind: ReferenceErrorKind, message: str):
        self.kind = kind
        self.message = message
        super().__init__(message)


# =============================================================================
# Syntax
# =============================================================================


@dataclass(frozen=True)
class Pointer:
    """A parsed ``$ref`` string."""

    raw: str
    file: str | None
    segments: tuple[str, ...]


def _unescape(segment: str) -> str:
    return segment.replace("~1", "/").replace("~0", "~")


def parse_pointer(ref: str) -> Pointer:
    """
    Parse a JSON-pointer style reference.

    Accepted forms: ``#/a/b``, ``#/a/b/$value``, ``#/a/b/$value/x`` and the same
    fragments prefixed with a file path (``colors.json#/a/b``).

    Raises:
        InvalidReference: If the string is not a pointer
    """
    if not isinstance(ref, str) or "#" not in ref:
        raise InvalidReference(f"Invalid $ref format: {ref!r}")
    file_part, fragment = ref.split("#", 1)
    if not fragment.startswith("/") or fragment == "/":
        raise InvalidReference(f"Invalid $ref fragment: {ref!r}")
    segments = tuple(_unescape(s) for s in fragment[1:].split("/"))
    if any(s == "" for s in segments):
        raise InvalidReference(f"Empty segment in $ref: {ref!r}")
    return Pointer(raw=ref, file=file_part or None, segments=segments)


def normalize_alias(text: str) -> str:
    """Strip alias braces: ``{color.primary}`` -> ``color.primary``."""
    return normalize_reference(text)


def is_alias(value: Any) -> bool:
    """True for a string that is exactly one alias."""
    if not isinstance(value, str):
        return False
    match = WHOLE_ALIAS.match(value)
    return bool(match and VALID_ALIAS.match(normalize_reference(value)))


# =============================================================================
# Assembly ($ref content inclusion)
# =============================================================================


class _Assembler:
    """Resolves ``$ref`` pointers for one or more files, sharing guards."""

    def __init__(self, project: ProjectAST | None, max_depth: int):
        self.project = project
        self.max_depth = max_depth
        self.errors: list[ResolutionError] = []
        self._in_progress: set[tuple[str, str]] = set()
        self._failed: dict[tuple[str, str], ReferenceErrorKind] = {}
        self._done: set[tuple[str, str]] = set()

    def assemble_file(self, file_ast: GroupNode) -> None:
        for token in list(iter_tokens(file_ast)):
            if token.pointers:
                self.assemble_token(file_ast, token, depth=0)

    def assemble_token(self, file_ast: GroupNode, token: TokenNode, depth: int) -> bool:
        key = (_file_key(file_ast), token.path)
        if key in self._done:
            return key not in self._failed
        if key in self._in_progress:
            self._failed[key] = ReferenceErrorKind.CIRCULAR
            return False
        if depth > self.max_depth:
            self._failed[key] = ReferenceErrorKind.DEPTH
            self._record(
                ReferenceErrorKind.DEPTH,
                token,
                file_ast,
                f"Maximum reference depth ({self.max_depth}) exceeded",
            )
            return False

        self._in_progress.add(key)
        try:
            token.value = self._include(file_ast, token, token.value, depth)
        finally:
            self._in_progress.discard(key)
            self._done.add(key)

        scan = scan_references(token.value)
        token.add_references(scan.aliases)
        token.pointers = scan.pointers
        for bad in scan.invalid:
            if bad not in token.invalid_references:
                token.invalid_references.append(bad)
        token.resolved = not token.has_references
        token.resolved_value = token.value if token.resolved else None

        if token.pointers:
            self._failed.setdefault(key, ReferenceErrorKind.MISSING)
            return False
        return True

    def _include(self, file_ast: GroupNode, token: TokenNode, value: Any, depth: int) -> Any:
        if isinstance(value, list):
            return [self._include(file_ast, token, item, depth) for item in value]
        if not isinstance(value, Mapping):
            return value

        ref = value.get("$ref")
        if not isinstance(ref, str):
            return {k: self._include(file_ast, token, v, depth) for k, v in value.items()}

        try:
            return self._follow(file_ast, ref, depth)
        except InvalidReference as e:
            self._record(ReferenceErrorKind.INVALID, token, file_ast, str(e), ref)
        except _UnresolvedPointer as e:
            self._record(e.kind, token, file_ast, e.message, ref)
        return value

    def _follow(self, file_ast: GroupNode, ref: str, depth: int) -> Any:
        pointer = parse_pointer(ref)
        target_file = file_ast
        if pointer.file:
            target_file = self._lookup_file(pointer.file, file_ast)

        target, rest = walk_pointer(target_file, pointer)
        if target.pointers and not self.assemble_token(target_file, target, depth + 1):
            kind = self._failed.get((_file_key(target_file), target.path), ReferenceErrorKind.MISSING)
            if kind is ReferenceErrorKind.CIRCULAR:
                raise _UnresolvedPointer(kind, f"Circular $ref through {target.path}")
            raise _UnresolvedPointer(kind, f"Target {target.path} has unresolved $ref")

        return copy.deepcopy(_descend(target.value, rest, ref))

    def _lookup_file(self, name: str, file_ast: GroupNode) -> FileAST:
        if self.project is None:
            raise _UnresolvedPointer(
                ReferenceErrorKind.MISSING, f"Cannot follow cross-file $ref without a project: {name}"
            )
        found = self.project.get_file(name, relative_to=_file_key(file_ast) or None)
        if found is None:
            raise _UnresolvedPointer(ReferenceErrorKind.MISSING, f"Referenced file not loaded: {name}")
        return found

    def _record(
        self,
        kind: ReferenceErrorKind,
        token: TokenNode,
        file_ast: GroupNode,
        message: str,
        reference: str | None = None,
    ) -> None:
        self._failed.setdefault((_file_key(file_ast), token.path), kind)
        self.errors.append(
            ResolutionError(
                kind=kind,
                path=token.path,
                message=message,
                reference=reference,
                file_path=_file_key(file_ast) or None,
            )
        )


def _file_key(node: GroupNode) -> str:
    return node.file_path if isinstance(node, FileAST) else ""


def walk_pointer(root: GroupNode, pointer: Pointer) -> tuple[TokenNode, tuple[str, ...]]:
    """
    Walk a pointer through the tree until it reaches a token.

    Returns:
        The target token and the segments left after ``$value``

    Raises:
        _UnresolvedPointer: When the walk ends on a group, hits a missing
            child, or continues past a token with anything other than ``$value``
    """
    node: Node = root
    segments = pointer.segments
    for i, segment in enumerate(segments):
        if node.kind is NodeKind.TOKEN:
            if segment != "$value":
                raise _UnresolvedPointer(
                    ReferenceErrorKind.MISSING,
                    f"Reference to non-existent token: {pointer.raw} ({segment!r} follows a token)",
                )
            return node, segments[i + 1 :]
        child = node.children.get(segment)
        if child is None:
            raise _UnresolvedPointer(
                ReferenceErrorKind.MISSING, f"Reference to non-existent token: {pointer.raw}"
            )
        node = child

    if node.kind is NodeKind.GROUP:
        raise _UnresolvedPointer(
            ReferenceErrorKind.MISSING, f"Reference points at a group, not a token: {pointer.raw}"
        )
    return node, ()


def _descend(value: Any, rest: tuple[str, ...], ref: str) -> Any:
    for segment in rest:
        if isinstance(value, Mapping) and segment in value:
            value = value[segment]
        elif isinstance(value, list) and segment.isdigit() and int(segment) < len(value):
            value = value[int(segment)]
        else:
            raise _UnresolvedPointer(
                ReferenceErrorKind.MISSING, f"Reference to non-existent value: {ref}"
            )
    return value


def assemble_file(
    file_ast: GroupNode,
    project: ProjectAST | None = None,
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> list[ResolutionError]:
    """
    Resolve every ``$ref`` in one tree by content inclusion, in place.

    Args:
        file_ast: Tree to assemble (a FileAST when cross-file pointers are used)
        project: Project used to look up cross-file targets
        max_depth: Maximum chain of nested ``$ref`` hops

    Returns:
        Collected errors; tokens with failed pointers keep their ``$ref`` objects
    """
    assembler = _Assembler(project, max_depth)
    assembler.assemble_file(file_ast)
    return assembler.errors


def file_dependency_order(project: ProjectAST) -> CycleDetectionResult:
    """Run the cycle detector over which file references which."""
    return find_cycles(project.dependency_graph())


def assemble_project(project: ProjectAST, max_depth: int = DEFAULT_MAX_DEPTH) -> list[ResolutionError]:
    """Assemble all files of a project, dependencies first where possible."""
    result = file_dependency_order(project)
    if result.topological_order is not None:
        order = [f for f in result.topological_order if f in project.files]
    else:
        for cycle in result.cycles:
            logger.warning(f"Files reference each other: {' -> '.join(cycle + cycle[:1])}")
        order = list(project.files)

    assembler = _Assembler(project, max_depth)
    for file_path in order:
        assembler.assemble_file(project.files[file_path])
    return assembler.errors


# =============================================================================
# Alias resolution
# =============================================================================


class _Interpolation(Exception):
    pass


def _format_scalar(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (str, int, float)):
        return str(value)
    raise _Interpolation(f"cannot interpolate {type(value).__name__} value into a string")


class ReferenceResolver:
    """
    Resolves references for one token tree.

    ``assemble()`` runs the ``$ref`` inclusion phase; ``resolve()`` runs the
    alias pass. ``run()`` does both. Resolved tokens are memoized and never
    recomputed by later calls.
    """

    def __init__(
        self,
        root: GroupNode,
        max_depth: int = DEFAULT_MAX_DEPTH,
        project: ProjectAST | None = None,
    ):
        self.root = root
        self.max_depth = max_depth
        self.project = project
        self.cycles: CycleDetectionResult | None = None
        self._outcome: dict[str, ReferenceErrorKind | None] = {}
        self._depth: dict[str, int] = {}

    def run(self) -> list[ResolutionError]:
        errors = self.assemble()
        reported = {(e.path, e.reference) for e in errors}
        errors.extend(e for e in self.resolve() if (e.path, e.reference) not in reported)
        return errors

    def assemble(self) -> list[ResolutionError]:
        return assemble_file(self.root, self.project, self.max_depth)

    def resolve(self) -> list[ResolutionError]:
        """Substitute aliases in dependency order."""
        errors: list[ResolutionError] = []
        self.cycles = detect_cycles(self.root)
        cyclic = self.cycles.cyclic_tokens

        for cycle in self.cycles.cycles:
            loop = " -> ".join(cycle + cycle[:1])
            for member in cycle:
                if find_token(self.root, member) is not None:
                    self._outcome[member] = ReferenceErrorKind.CIRCULAR
                    errors.append(
                        ResolutionError(
                            kind=ReferenceErrorKind.CIRCULAR,
                            path=member,
                            message=f"Circular reference detected: {loop}",
                            reference=f"{{{member}}}",
                        )
                    )

        order = self.cycles.topological_order
        if order is None:
            # Order the acyclic remainder; cyclic members are already failed.
            graph = build_reference_graph(self.root)
            remainder = {k: v for k, v in graph.items() if k not in cyclic}
            order = find_cycles(remainder).topological_order or []

        for path in order:
            if path in self._outcome:
                continue
            token = find_token(self.root, path)
            if token is not None:
                self._resolve_token(token, errors)

        # Tokens outside the graph have no aliases; they may still hold bad syntax or pointers.
        for token in iter_tokens(self.root):
            if token.path not in self._outcome:
                self._resolve_token(token, errors)

        return errors

    def _resolve_token(self, token: TokenNode, errors: list[ResolutionError]) -> None:
        path = token.path
        if token.resolved and not token.references:
            self._outcome[path] = None
            self._depth[path] = 0
            return

        failure: ReferenceErrorKind | None = None
        for bad in token.invalid_references:
            errors.append(
                ResolutionError(
                    ReferenceErrorKind.INVALID, path, f"Malformed reference syntax: {bad}", bad
                )
            )
            failure = ReferenceErrorKind.INVALID
        for pointer in token.pointers:
            errors.append(
                ResolutionError(
                    ReferenceErrorKind.MISSING, path, f"Unresolved $ref: {pointer}", pointer
                )
            )
            failure = failure or ReferenceErrorKind.MISSING

        depth = 0
        for alias in token.references:
            raw = f"{{{alias}}}"
            target = find_node(self.root, alias)
            if target is None or target.kind is NodeKind.GROUP:
                what = "a group" if target is not None else "non-existent token"
                errors.append(
                    ResolutionError(
                        ReferenceErrorKind.MISSING, path, f"Reference to {what}: {raw}", raw
                    )
                )
                failure = failure or ReferenceErrorKind.MISSING
                continue

            target_outcome = self._outcome.get(alias, ReferenceErrorKind.MISSING)
            if alias not in self._outcome and target.resolved:
                target_outcome = None
                self._depth.setdefault(alias, 0)
            if target_outcome is not None:
                errors.append(
                    ResolutionError(
                        target_outcome, path, f"Depends on unresolved token {alias}", raw
                    )
                )
                failure = failure or target_outcome
                continue
            depth = max(depth, self._depth.get(alias, 0) + 1)

        if failure is None and depth > self.max_depth:
            errors.append(
                ResolutionError(
                    ReferenceErrorKind.DEPTH,
                    path,
                    f"Maximum reference depth ({self.max_depth}) exceeded",
                )
            )
            failure = ReferenceErrorKind.DEPTH

        if failure is None:
            try:
                token.resolved_value = self._substitute(token.value)
            except _Interpolation as e:
                errors.append(ResolutionError(ReferenceErrorKind.INVALID, path, str(e)))
                failure = ReferenceErrorKind.INVALID

        self._outcome[path] = failure
        self._depth[path] = depth
        token.resolved = failure is None
        if failure is None:
            logger.debug(f"Resolved {path}")

    def _lookup(self, alias: str) -> Any:
        target = find_token(self.root, alias)
        if target is None:
            raise _Interpolation(f"reference {{{alias}}} vanished during resolution")
        return target.resolved_value

    def _substitute(self, value: Any) -> Any:
        if isinstance(value, str):
            whole = WHOLE_ALIAS.match(value)
            if whole:
                return copy.deepcopy(self._lookup(normalize_reference(value)))
            return ALIAS_PATTERN.sub(
                lambda m: _format_scalar(self._lookup(normalize_reference(m.group(0)))), value
            )
        if isinstance(value, list):
            return [self._substitute(item) for item in value]
        if isinstance(value, Mapping):
            return {k: self._substitute(v) for k, v in value.items()}
        return value

    def resolved_values(self) -> dict[str, Any]:
        """Resolved value of every resolved token, keyed by path."""
        return {t.path: t.resolved_value for t in iter_tokens(self.root) if t.resolved}

    def resolution_chain(self, path: str) -> list[str]:
        """The token itself followed by every token it transitively aliases."""
        chain = [path]
        index = 0
        while index < len(chain):
            token = find_token(self.root, chain[index])
            index += 1
            if token is None:
                continue
            for ref in token.references:
                if ref not in chain:
                    chain.append(ref)
        return chain


def resolve_aliases(root: GroupNode, max_depth: int = DEFAULT_MAX_DEPTH) -> list[ResolutionError]:
    """Run the alias pass over ``root`` in place and return collected errors."""
    return ReferenceResolver(root, max_depth).resolve()


def resolve_references(
    root: GroupNode,
    max_depth: int = DEFAULT_MAX_DEPTH,
    project: ProjectAST | None = None,
) -> list[ResolutionError]:
    """Assemble ``$ref`` pointers, then resolve aliases."""
    return ReferenceResolver(root, max_depth, project).run()


def resolve_document(
    document: Mapping[str, Any], max_depth: int = DEFAULT_MAX_DEPTH
) -> tuple[dict[str, Any], list[ResolutionError]]:
    """
    Build, assemble and resolve a raw document.

    Returns:
        The resolved document (unresolved tokens keep their raw value) and
        the collected errors
    """
    root = build_ast(document)
    errors = resolve_references(root, max_depth)
    return ast_to_document(root, resolved=True), errors


def validate_references(root: GroupNode, project: ProjectAST | None = None) -> list[ResolutionError]:
    """Report broken references without changing the tree."""
    errors: list[ResolutionError] = []
    file_path = _file_key(root) or None

    for token in iter_tokens(root):
        for bad in token.invalid_references:
            errors.append(
                ResolutionError(
                    ReferenceErrorKind.INVALID,
                    token.path,
                    f"Malformed reference syntax: {bad}",
                    bad,
                    file_path,
                )
            )
        for alias in token.references:
            target = find_node(root, alias)
            if target is None or target.kind is NodeKind.GROUP:
                errors.append(
                    ResolutionError(
                        ReferenceErrorKind.MISSING,
                        token.path,
                        f"Reference to non-existent token: {{{alias}}}",
                        f"{{{alias}}}",
                        file_path,
                    )
                )
        for ref in token.pointers:
            try:
                pointer = parse_pointer(ref)
                target_root: GroupNode = root
                if pointer.file:
                    found = project.get_file(pointer.file, file_path) if project else None
                    if found is None:
                        raise _UnresolvedPointer(
                            ReferenceErrorKind.MISSING, f"Referenced file not loaded: {pointer.file}"
                        )
                    target_root = found
                target, rest = walk_pointer(target_root, pointer)
                if not target.pointers:
                    _descend(target.value, rest, ref)
            except InvalidReference as e:
                errors.append(
                    ResolutionError(ReferenceErrorKind.INVALID, token.path, str(e), ref, file_path)
                )
            except _UnresolvedPointer as e:
                errors.append(ResolutionError(e.kind, token.path, e.message, ref, file_path))

    for cycle in detect_cycles(root).cycles:
        loop = " -> ".join(cycle + cycle[:1])
        for member in cycle:
            if find_token(root, member) is not None:
                errors.append(
                    ResolutionError(
                        ReferenceErrorKind.CIRCULAR,
                        member,
                        f"Circular reference detected: {loop}",
                        f"{{{member}}}",
                        file_path,
                    )
                )
    return errors
