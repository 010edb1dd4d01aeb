"""
Token file readers.

Resolution only needs ``read(path) -> dict``; anything satisfying the
``FileReader`` protocol can be passed in.
"""

from __future__ import annotations

import copy
import json
import logging
import threading
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Protocol

import yaml

from .ast.nodes import normalize_file_path
from .errors import ErrorContext, TokenFileError

logger = logging.getLogger(__name__)

SUPPORTED_SUFFIXES = (".json", ".yaml", ".yml")


class FileReader(Protocol):
    def read(self, path: str) -> dict[str, Any]: ...


class TokenFileReader:
    """
    Reads token documents from disk relative to ``base_path``.

    Parsed documents are cached per normalized path. Callers always receive a
    deep copy, so a cached document is never shared.
    """

    def __init__(self, base_path: str | Path = ".", cache: bool = True):
        self.base_path = Path(base_path)
        self.cache = cache
        self._cache: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()

    def resolve_path(self, path: str) -> Path:
        candidate = Path(normalize_file_path(path))
        return candidate if candidate.is_absolute() else self.base_path / candidate

    def read(self, path: str) -> dict[str, Any]:
        key = normalize_file_path(path)
        with self._lock:
            cached = self._cache.get(key)
        if cached is not None:
            return copy.deepcopy(cached)

        document = self._load(self.resolve_path(path), path)
        if self.cache:
            with self._lock:
                self._cache[key] = document
        return copy.deepcopy(document)

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()

    def _load(self, file_path: Path, original: str) -> dict[str, Any]:
        context = ErrorContext(file=original)
        suffix = file_path.suffix.lower()
        if suffix not in SUPPORTED_SUFFIXES:
            raise TokenFileError(f"Unsupported token file type: {suffix or '<none>'}", context)

        try:
            content = file_path.read_text(encoding="utf-8")
        except FileNotFoundError as e:
            raise TokenFileError(f"Token file not found: {file_path}", context) from e
        except OSError as e:
            raise TokenFileError(f"Cannot read token file {file_path}: {e}", context) from e

        try:
            data = json.loads(content) if suffix == ".json" else _string_keys(yaml.safe_load(content))
        except (json.JSONDecodeError, yaml.YAMLError) as e:
            raise TokenFileError(f"Invalid syntax in {file_path}: {e}", context) from e

        if not isinstance(data, dict):
            raise TokenFileError(
                f"Token file must contain an object, got {type(data).__name__}", context
            )
        logger.debug(f"Loaded token file {file_path}")
        return data


def _string_keys(data: Any) -> Any:
    """YAML turns keys such as ``100`` or ``true`` into non-strings; token paths need strings."""
    if isinstance(data, dict):
        return {str(key): _string_keys(value) for key, value in data.items()}
    if isinstance(data, list):
        return [_string_keys(item) for item in data]
    return data


class MemoryReader:
    """Serves documents from a mapping of path to document."""

    def __init__(self, documents: Mapping[str, Mapping[str, Any]]):
        self.documents = {normalize_file_path(k): dict(v) for k, v in documents.items()}
        self.reads: list[str] = []

    def read(self, path: str) -> dict[str, Any]:
        self.reads.append(path)
        document = self.documents.get(normalize_file_path(path))
        if document is None:
            raise TokenFileError(f"Token file not found: {path}", ErrorContext(file=path))
        return copy.deepcopy(document)


class InlineReader(MemoryReader):
    """Serves manifest-declared documents by path and delegates every other read."""

    def __init__(self, documents: Mapping[str, Mapping[str, Any]], fallback: FileReader):
        super().__init__(documents)
        self.fallback = fallback

    def read(self, path: str) -> dict[str, Any]:
        if normalize_file_path(path) in self.documents:
            return super().read(path)
        return self.fallback.read(path)
