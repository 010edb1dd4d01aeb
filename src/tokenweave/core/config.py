"""
Resolver configuration loaded from ``tokenweave.toml``.

Example::

    [resolver]
    base_path = "tokens"
    max_depth = 12
    max_workers = 4
    resolve_references = true
    cache = true
"""

from __future__ import annotations

import logging
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .errors import ConfigError, ErrorContext
from .references import DEFAULT_MAX_DEPTH

logger = logging.getLogger(__name__)

CONFIG_FILE = "tokenweave.toml"


@dataclass
class ResolverConfig:
    """Settings for reading and resolving permutations."""

    base_path: str = "."
    max_depth: int = DEFAULT_MAX_DEPTH
    max_workers: int = 4
    resolve_references: bool | None = None  # None defers to the manifest option
    cache: bool = True


def _expect(data: dict[str, Any], key: str, kind: type | tuple[type, ...], file: str) -> Any:
    value = data[key]
    # bool is an int subclass; reject it where a number is expected
    if not isinstance(value, kind) or (kind is int and isinstance(value, bool)):
        expected = kind.__name__ if isinstance(kind, type) else " or ".join(k.__name__ for k in kind)
        raise ConfigError(
            f"'{key}' must be {expected}, got {type(value).__name__}",
            ErrorContext(file=file, path=f"resolver.{key}"),
        )
    return value


def load_config(path: Path) -> ResolverConfig:
    """
    Load ``[resolver]`` settings from a TOML file.

    Unknown keys are ignored. Relative ``base_path`` values are taken relative
    to the config file's directory.

    Raises:
        ConfigError: If the file is not valid TOML or a value has the wrong type
    """
    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigError(f"Cannot load config: {e}", ErrorContext(file=str(path))) from e

    section = data.get("resolver", {})
    if not isinstance(section, dict):
        raise ConfigError("[resolver] must be a table", ErrorContext(file=str(path)))

    config = ResolverConfig()
    file = str(path)
    if "base_path" in section:
        base = Path(_expect(section, "base_path", str, file))
        config.base_path = str(base if base.is_absolute() else path.parent / base)
    else:
        config.base_path = str(path.parent)
    if "max_depth" in section:
        config.max_depth = _expect(section, "max_depth", int, file)
        if config.max_depth < 1:
            raise ConfigError(
                "'max_depth' must be at least 1", ErrorContext(file=file, path="resolver.max_depth")
            )
    if "max_workers" in section:
        config.max_workers = _expect(section, "max_workers", int, file)
        if config.max_workers < 1:
            raise ConfigError(
                "'max_workers' must be at least 1", ErrorContext(file=file, path="resolver.max_workers")
            )
    if "resolve_references" in section:
        config.resolve_references = _expect(section, "resolve_references", bool, file)
    if "cache" in section:
        config.cache = _expect(section, "cache", bool, file)

    logger.debug(f"Loaded config from {path}: {config}")
    return config


def find_config(start: Path | None = None) -> Path | None:
    """Walk up from ``start`` (default: cwd) looking for ``tokenweave.toml``."""
    current = (start or Path.cwd()).resolve()
    for directory in (current, *current.parents):
        candidate = directory / CONFIG_FILE
        if candidate.is_file():
            return candidate
    return None
