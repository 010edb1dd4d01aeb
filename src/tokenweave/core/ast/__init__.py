"""
Token AST: typed token/group tree built from raw DTCG documents.

All types and builders are re-exported from this package.
"""

from .builder import (
    ReferenceScan,
    build_ast,
    build_file_ast,
    build_project_ast,
    build_token,
    normalize_reference,
    scan_references,
)
from .nodes import (
    ASTStatistics,
    FileAST,
    GroupNode,
    Node,
    NodeKind,
    ProjectAST,
    ReferenceErrorKind,
    ResolutionError,
    TokenNode,
    normalize_file_path,
)
from .query import (
    ast_to_document,
    collect_statistics,
    find_node,
    find_token,
    get_parent,
    iter_nodes,
    iter_tokens,
)

__all__ = [
    # Nodes
    "ASTStatistics",
    "FileAST",
    "GroupNode",
    "Node",
    "NodeKind",
    "ProjectAST",
    "ReferenceErrorKind",
    "ResolutionError",
    "TokenNode",
    "normalize_file_path",
    # Builder
    "ReferenceScan",
    "build_ast",
    "build_file_ast",
    "build_project_ast",
    "build_token",
    "normalize_reference",
    "scan_references",
    # Query
    "ast_to_document",
    "collect_statistics",
    "find_node",
    "find_token",
    "get_parent",
    "iter_nodes",
    "iter_tokens",
]
