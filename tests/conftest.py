"""Shared pytest fixtures for tokenweave tests."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

from tokenweave.core.reader import MemoryReader


@pytest.fixture
def base_tokens() -> dict[str, Any]:
    """Base token document with a typed color group and a spacing scale."""
    return {
        "color": {
            "$type": "color",
            "primary": {"$value": "#0055ff", "$description": "Brand primary"},
            "text": {"$value": "{color.primary}"},
        },
        "spacing": {
            "$type": "dimension",
            "small": {"$value": "4px"},
            "medium": {"$value": "8px"},
        },
    }


@pytest.fixture
def token_documents(base_tokens: dict[str, Any]) -> dict[str, dict[str, Any]]:
    """In-memory token files referenced by ``manifest_data``."""
    return {
        "base.json": base_tokens,
        "light.json": {"color": {"background": {"$value": "#ffffff", "$type": "color"}}},
        "dark.json": {
            "color": {
                "primary": {"$value": "#3388ff"},
                "background": {"$value": "#000000", "$type": "color"},
            }
        },
        "compact.json": {"spacing": {"medium": {"$value": "6px"}}},
        "rounded.json": {"radius": {"$value": "8px", "$type": "dimension"}},
    }


@pytest.fixture
def manifest_data() -> dict[str, Any]:
    """Manifest with one oneOf and one anyOf modifier."""
    return {
        "name": "demo",
        "sets": [{"name": "core", "values": ["base.json"]}],
        "modifiers": {
            "theme": {
                "oneOf": ["light", "dark"],
                "values": {"light": ["light.json"], "dark": ["dark.json"]},
            },
            "features": {
                "anyOf": ["compact", "rounded"],
                "values": {"compact": ["compact.json"], "rounded": ["rounded.json"]},
            },
        },
    }


@pytest.fixture
def memory_reader(token_documents: dict[str, dict[str, Any]]) -> MemoryReader:
    return MemoryReader(token_documents)


@pytest.fixture
def token_project(
    tmp_path: Path,
    token_documents: dict[str, dict[str, Any]],
    manifest_data: dict[str, Any],
) -> Path:
    """Token files, manifest.json and tokenweave.toml on disk; returns the manifest path."""
    for name, document in token_documents.items():
        (tmp_path / name).write_text(json.dumps(document), encoding="utf-8")
    manifest_path = tmp_path / "manifest.json"
    manifest_path.write_text(json.dumps(manifest_data), encoding="utf-8")
    (tmp_path / "tokenweave.toml").write_text("[resolver]\nmax_workers = 2\n", encoding="utf-8")
    return manifest_path
