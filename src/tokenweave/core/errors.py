"""
Error types for tokenweave manifest validation, merging, and reference resolution.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .ast.nodes import ResolutionError
    from .merge import MergeConflict


class TokenweaveError(Exception):
    """Base exception for all tokenweave errors."""

    def __init__(self, message: str, context: ErrorContext | None = None):
        self.message = message
        self.context = context
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format error message with context if available."""
        if self.context:
            return f"{self.context.format()}\n{self.message}"
        return self.message


class ManifestError(TokenweaveError):
    """
    Raised when a manifest or a modifier selection is rejected.

    Examples:
    - Missing or empty ``sets``
    - ``modifiers`` that is not an object
    - A modifier declaring both ``oneOf`` and ``anyOf``
    - Unknown modifier names in a selection
    - A ``oneOf`` value that is not one of the declared options
    """

    def __init__(
        self,
        message: str,
        errors: list[str] | None = None,
        context: ErrorContext | None = None,
    ):
        self.errors = list(errors or [])
        if self.errors:
            message = message + "\n" + "\n".join(f"  - {e}" for e in self.errors)
        super().__init__(message, context)


class TokenMergeError(TokenweaveError):
    """
    Raised when two token documents cannot be merged.

    Examples:
    - A token and a group at the same path
    - Two tokens at the same path with different effective types
    """

    def __init__(
        self,
        message: str,
        path: str,
        conflicts: list[MergeConflict] | None = None,
        context: ErrorContext | None = None,
    ):
        self.path = path
        self.conflicts = list(conflicts or [])
        super().__init__(message, context)


class ResolutionFailedError(TokenweaveError):
    """
    Raised when full dereferencing was requested and references remain unresolved.

    Examples:
    - An alias pointing at a token that does not exist
    - Two tokens aliasing each other
    - A ``$ref`` pointer into a file that was never loaded
    """

    def __init__(
        self,
        message: str,
        errors: list[ResolutionError] | None = None,
        context: ErrorContext | None = None,
    ):
        self.errors = list(errors or [])
        if self.errors:
            message = message + "\n" + "\n".join(f"  - {e}" for e in self.errors)
        super().__init__(message, context)


class TokenFileError(TokenweaveError):
    """
    Raised when a token or manifest file cannot be read.

    Examples:
    - File does not exist
    - Invalid JSON or YAML
    - Top-level value is not an object
    """

    pass


class ConfigError(TokenweaveError):
    """Raised when tokenweave.toml holds values of the wrong type."""

    pass


@dataclass
class ErrorContext:
    """
    Context information for an error.

    Attributes:
        file: Source file the error relates to
        path: Optional dot-joined token path
        permutation: Optional permutation id being resolved
    """

    file: str | None = None
    path: str | None = None
    permutation: str | None = None

    def format(self) -> str:
        """
        Format error context as a human-readable string.

        Returns:
            Formatted string like: "tokens/base.json at color.primary (permutation theme-dark)"
        """
        parts: list[str] = []
        if self.file:
            parts.append(self.file)
        if self.path:
            parts.append(f"at {self.path}")
        if self.permutation:
            parts.append(f"(permutation {self.permutation})")
        return " ".join(parts)


def make_manifest_error(
    message: str,
    errors: list[str] | None = None,
    file: str | None = None,
) -> ManifestError:
    """
    Helper to create a ManifestError with optional context.

    Args:
        message: Error description
        errors: Individual violations, rendered one per line
        file: Optional manifest path

    Returns:
        ManifestError with context if a file was provided
    """
    if file:
        return ManifestError(message, errors, ErrorContext(file=file))
    return ManifestError(message, errors)


def make_resolution_error(
    message: str,
    errors: list[ResolutionError],
    permutation: str | None = None,
) -> ResolutionFailedError:
    """
    Helper to create a ResolutionFailedError with optional context.

    Args:
        message: Error description
        errors: Unresolved references collected by the resolver
        permutation: Optional permutation id

    Returns:
        ResolutionFailedError with context if a permutation id was provided
    """
    if permutation:
        return ResolutionFailedError(message, errors, ErrorContext(permutation=permutation))
    return ResolutionFailedError(message, errors)


def describe_value(value: Any, limit: int = 80) -> str:
    """Render a value for an error message, truncated to ``limit`` characters."""
    text = repr(value)
    if len(text) > limit:
        return text[: limit - 3] + "..."
    return text
