"""
Traversal, lookup and serialization helpers for the token AST.
"""

from __future__ import annotations

import copy
from collections.abc import Iterator
from typing import Any

from .nodes import ASTStatistics, GroupNode, Node, NodeKind, TokenNode


def iter_nodes(root: GroupNode) -> Iterator[Node]:
    """Yield every node below ``root`` depth-first, in document order."""
    stack: list[Iterator[Node]] = [iter(root.children.values())]
    while stack:
        node = next(stack[-1], None)
        if node is None:
            stack.pop()
            continue
        yield node
        if node.kind is NodeKind.GROUP:
            stack.append(iter(node.children.values()))


def iter_tokens(root: GroupNode) -> Iterator[TokenNode]:
    """Yield every token below ``root`` in document order."""
    for node in iter_nodes(root):
        if node.kind is NodeKind.TOKEN:
            yield node


def find_node(root: GroupNode, path: str) -> Node | None:
    """Look up a node by dot path. The empty path is the root itself."""
    if path == "" or path == root.path:
        return root
    if root.path and path.startswith(root.path + "."):
        path = path[len(root.path) + 1 :]

    current: Node = root
    for segment in path.split("."):
        if current.kind is not NodeKind.GROUP:
            return None
        child = current.children.get(segment)
        if child is None:
            return None
        current = child
    return current


def find_token(root: GroupNode, path: str) -> TokenNode | None:
    node = find_node(root, path)
    if node is not None and node.kind is NodeKind.TOKEN:
        return node
    return None


def get_parent(root: GroupNode, node: Node) -> GroupNode | None:
    """Resolve a node's parent through the root."""
    if node.parent_path is None:
        return None
    parent = find_node(root, node.parent_path)
    if parent is not None and parent.kind is NodeKind.GROUP:
        return parent
    return None


def collect_statistics(root: GroupNode) -> ASTStatistics:
    stats = ASTStatistics()
    base_depth = root.path.count(".") + 1 if root.path else 0
    for node in iter_nodes(root):
        depth = node.path.count(".") + 1 - base_depth
        stats.max_depth = max(stats.max_depth, depth)
        if node.kind is NodeKind.GROUP:
            stats.total_groups += 1
            continue
        stats.total_tokens += 1
        type_name = node.token_type or "untyped"
        stats.tokens_by_type[type_name] = stats.tokens_by_type.get(type_name, 0) + 1
        if node.has_references:
            stats.tokens_with_references += 1
        if not node.resolved:
            stats.unresolved_tokens += 1
    return stats


def ast_to_document(root: GroupNode, *, resolved: bool = True) -> dict[str, Any]:
    """
    Serialize a tree back into a raw token document.

    Args:
        root: Group to serialize
        resolved: Emit ``resolved_value`` for resolved tokens instead of the raw value

    Returns:
        A fresh document; mutating it does not touch the tree.
    """
    return _group_to_dict(root, resolved, inherited_type=None)


def _group_to_dict(group: GroupNode, resolved: bool, inherited_type: str | None) -> dict[str, Any]:
    result: dict[str, Any] = {}
    if group.own_type:
        result["$type"] = group.own_type
    _write_metadata(result, group.metadata)
    for key, value in group.extras.items():
        result[key] = copy.deepcopy(value)
    effective_type = group.own_type or inherited_type

    for key, child in group.children.items():
        if child.kind is NodeKind.GROUP:
            result[key] = _group_to_dict(child, resolved, effective_type)
        else:
            result[key] = _token_to_dict(child, resolved, effective_type)
    return result


def _token_to_dict(token: TokenNode, resolved: bool, inherited_type: str | None) -> dict[str, Any]:
    value = token.resolved_value if resolved and token.resolved else token.value
    out: dict[str, Any] = {"$value": copy.deepcopy(value)}
    # inherited types stay on the group
    if token.token_type and token.token_type != inherited_type:
        out["$type"] = token.token_type
    _write_metadata(out, token.metadata)
    return out


def _write_metadata(target: dict[str, Any], metadata: dict[str, Any]) -> None:
    for key, value in metadata.items():
        target[f"${key}"] = copy.deepcopy(value)
