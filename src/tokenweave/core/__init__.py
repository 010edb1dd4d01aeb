"""
Core engine: token AST, reference resolution, cycle detection, merging and
manifest permutations.
"""

from .config import ResolverConfig, find_config, load_config
from .cycles import CycleDetectionResult, build_reference_graph, detect_cycles, find_cycles
from .errors import (
    ConfigError,
    ErrorContext,
    ManifestError,
    ResolutionFailedError,
    TokenFileError,
    TokenMergeError,
    TokenweaveError,
)
from .manifest import (
    AnyOfModifier,
    GenerateSpec,
    InputError,
    Manifest,
    ManifestOptions,
    OneOfModifier,
    TokenSet,
    load_manifest,
    parse_manifest,
    parse_upft_manifest,
    validate_input,
)
from .manifest_formats import (
    ManifestFormat,
    detect_manifest_format,
    get_manifest_format,
    parse_dtcg_manifest,
    parse_dtcg_resolver_manifest,
    register_manifest_format,
    registered_formats,
)
from .merge import ConflictKind, MergeConflict, detect_conflicts, merge, merge_all, merge_documents
from .permutations import (
    ResolvedPermutation,
    collect_files,
    count_permutations,
    expand_generate_spec,
    expand_spec_with_filtering,
    generate_all,
    generate_all_permutations,
    generate_id,
    load_and_merge,
    resolve_permutation,
)
from .reader import FileReader, InlineReader, MemoryReader, TokenFileReader
from .references import (
    ReferenceResolver,
    assemble_file,
    assemble_project,
    parse_pointer,
    resolve_aliases,
    resolve_document,
    resolve_references,
    validate_references,
)

__all__ = [
    # Config
    "ResolverConfig",
    "find_config",
    "load_config",
    # Cycles
    "CycleDetectionResult",
    "build_reference_graph",
    "detect_cycles",
    "find_cycles",
    # Errors
    "ConfigError",
    "ErrorContext",
    "ManifestError",
    "ResolutionFailedError",
    "TokenFileError",
    "TokenMergeError",
    "TokenweaveError",
    # Manifest
    "AnyOfModifier",
    "GenerateSpec",
    "InputError",
    "Manifest",
    "ManifestOptions",
    "OneOfModifier",
    "TokenSet",
    "load_manifest",
    "parse_manifest",
    "parse_upft_manifest",
    "validate_input",
    # Manifest formats
    "ManifestFormat",
    "detect_manifest_format",
    "get_manifest_format",
    "parse_dtcg_manifest",
    "parse_dtcg_resolver_manifest",
    "register_manifest_format",
    "registered_formats",
    # Merge
    "ConflictKind",
    "MergeConflict",
    "detect_conflicts",
    "merge",
    "merge_all",
    "merge_documents",
    # Permutations
    "ResolvedPermutation",
    "collect_files",
    "count_permutations",
    "expand_generate_spec",
    "expand_spec_with_filtering",
    "generate_all",
    "generate_all_permutations",
    "generate_id",
    "load_and_merge",
    "resolve_permutation",
    # Readers
    "FileReader",
    "InlineReader",
    "MemoryReader",
    "TokenFileReader",
    # References
    "ReferenceResolver",
    "assemble_file",
    "assemble_project",
    "parse_pointer",
    "resolve_aliases",
    "resolve_document",
    "resolve_references",
    "validate_references",
]
