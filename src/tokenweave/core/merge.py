"""
Two-phase merge of token documents.

Phase one walks both documents in lock-step and collects every structural
conflict. Phase two performs the merge and only runs when phase one found
nothing, so a failed merge never yields a partially merged document.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from .errors import TokenMergeError, describe_value

logger = logging.getLogger(__name__)

COMPOSITE_TYPES = frozenset(
    {"shadow", "typography", "border", "transition", "gradient", "strokeStyle", "stroke-style"}
)

# Summarized after the first conflict in an error message.
MAX_SUMMARIZED_CONFLICTS = 3


class ConflictKind(StrEnum):
    TYPE_MISMATCH = "type-mismatch"
    GROUP_TOKEN_CONFLICT = "group-token-conflict"


@dataclass
class MergeConflict:
    """A path where two documents cannot be merged."""

    path: str
    kind: ConflictKind
    left: Any
    right: Any
    message: str

    def describe(self) -> str:
        return (
            f"{self.message} at {self.path} ({self.kind})\n"
            f"    left:  {describe_value(self.left)}\n"
            f"    right: {describe_value(self.right)}"
        )


def is_token(node: Any) -> bool:
    return isinstance(node, Mapping) and "$value" in node


def is_group(node: Any) -> bool:
    return isinstance(node, Mapping) and "$value" not in node


def _join(path: str, key: str) -> str:
    return f"{path}.{key}" if path else key


def _display(path: str) -> str:
    return path or "root"


def _str_keys(node: Mapping[Any, Any]) -> dict[str, Any]:
    # YAML scales such as `100:` load with int keys
    return {str(key): value for key, value in node.items()}


# =============================================================================
# Phase 1: conflict detection
# =============================================================================


def detect_conflicts(a: Mapping[str, Any], b: Mapping[str, Any]) -> list[MergeConflict]:
    """
    Collect every conflict between two documents without merging them.

    Returns:
        Conflicts in document order of ``a``; empty when the merge is safe
    """
    conflicts: list[MergeConflict] = []
    _walk(a, b, "", None, conflicts)
    return conflicts


def _walk(
    a: Any,
    b: Any,
    path: str,
    inherited_type: str | None,
    conflicts: list[MergeConflict],
) -> None:
    a_token, b_token = is_token(a), is_token(b)

    if a_token != b_token and is_group(a if b_token else b):
        token_side = "left" if a_token else "right"
        conflicts.append(
            MergeConflict(
                path=_display(path),
                kind=ConflictKind.GROUP_TOKEN_CONFLICT,
                left=a,
                right=b,
                message=f"Token ({token_side}) and group cannot be merged",
            )
        )
        return

    if a_token and b_token:
        a_type = a.get("$type") or inherited_type
        b_type = b.get("$type") or inherited_type
        if a_type and b_type and a_type != b_type:
            conflicts.append(
                MergeConflict(
                    path=_display(path),
                    kind=ConflictKind.TYPE_MISMATCH,
                    left=a,
                    right=b,
                    message=f"Type mismatch: {a_type} vs {b_type}",
                )
            )
        return

    if not (is_group(a) and is_group(b)):
        # non-object entries are overwritten, never conflicting
        return

    group_type = b.get("$type") or a.get("$type") or inherited_type
    b_children = _str_keys(b)
    for key, a_child in _str_keys(a).items():
        if key.startswith("$") or key not in b_children:
            continue
        _walk(a_child, b_children[key], _join(path, key), group_type, conflicts)


# =============================================================================
# Phase 2: merge
# =============================================================================


def deep_merge(a: Any, b: Any) -> Any:
    """Merge mappings recursively; lists and scalars from ``b`` replace ``a``."""
    if isinstance(a, Mapping) and isinstance(b, Mapping):
        result = copy.deepcopy(dict(a))
        for key, value in b.items():
            result[key] = deep_merge(a[key], value) if key in a else copy.deepcopy(value)
        return result
    return copy.deepcopy(b)


def merge_values(a: Any, b: Any, token_type: str | None = None) -> Any:
    """
    Merge two ``$value`` payloads.

    Composite values (and any two object-shaped values) merge field by field,
    ``b`` winning per field. Everything else is replaced by ``b``.
    """
    if isinstance(a, Mapping) and isinstance(b, Mapping):
        if token_type not in COMPOSITE_TYPES:
            logger.debug(f"Field-merging object values of non-composite type {token_type}")
        merged = copy.deepcopy(dict(a))
        merged.update(copy.deepcopy(dict(b)))
        return merged
    return copy.deepcopy(b)


def _merge_token(a: Mapping[str, Any], b: Mapping[str, Any], inherited_type: str | None) -> dict[str, Any]:
    token_type = b.get("$type") or a.get("$type") or inherited_type
    result: dict[str, Any] = copy.deepcopy(dict(a))

    for key, value in b.items():
        if key == "$value":
            result["$value"] = merge_values(a.get("$value"), value, token_type)
        elif key == "$extensions":
            result[key] = deep_merge(a.get(key, {}), value)
        else:
            result[key] = copy.deepcopy(value)
    return result


def _merge_group(a: Mapping[str, Any], b: Mapping[str, Any], inherited_type: str | None) -> dict[str, Any]:
    a, b = _str_keys(a), _str_keys(b)
    group_type = b.get("$type") or a.get("$type") or inherited_type
    result: dict[str, Any] = copy.deepcopy(a)

    for key, b_child in b.items():
        if key == "$type":
            result[key] = b_child or a.get(key)
            continue
        if key.startswith("$"):
            result[key] = deep_merge(a[key], b_child) if key in a else copy.deepcopy(b_child)
            continue
        if key not in a:
            result[key] = copy.deepcopy(b_child)
            continue
        a_child = a[key]
        if is_token(a_child) and is_token(b_child):
            result[key] = _merge_token(a_child, b_child, group_type)
        elif is_group(a_child) and is_group(b_child):
            result[key] = _merge_group(a_child, b_child, group_type)
        else:
            result[key] = copy.deepcopy(b_child)
    return result


def merge_documents(a: Mapping[str, Any], b: Mapping[str, Any]) -> dict[str, Any]:
    """
    Merge ``b`` over ``a`` without checking for conflicts.

    Neither input is mutated. Call ``merge`` unless conflicts were already ruled out.
    """
    return _merge_group(a, b, None)


def _conflict_message(conflicts: list[MergeConflict]) -> str:
    first, rest = conflicts[0], conflicts[1:]
    lines = [f"Cannot merge token documents: {first.describe()}"]
    if rest:
        lines.append("Additional conflicts:")
        for conflict in rest[:MAX_SUMMARIZED_CONFLICTS]:
            lines.append(f"  - {conflict.path}: {conflict.message}")
        hidden = len(rest) - MAX_SUMMARIZED_CONFLICTS
        if hidden > 0:
            lines.append(f"  ... and {hidden} more")
    return "\n".join(lines)


def merge(a: Mapping[str, Any], b: Mapping[str, Any]) -> dict[str, Any]:
    """
    Merge ``b`` over ``a``.

    Raises:
        TokenMergeError: If any conflict exists; the merge is not attempted
    """
    conflicts = detect_conflicts(a, b)
    if conflicts:
        logger.debug(f"Merge rejected with {len(conflicts)} conflict(s)")
        raise TokenMergeError(_conflict_message(conflicts), conflicts[0].path, conflicts)
    return merge_documents(a, b)


def merge_all(documents: Iterable[Mapping[str, Any]]) -> dict[str, Any]:
    """Fold ``merge`` over documents left to right; no documents yields ``{}``."""
    result: dict[str, Any] | None = None
    for document in documents:
        result = copy.deepcopy(dict(document)) if result is None else merge(result, document)
    return result if result is not None else {}
