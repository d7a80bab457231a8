"""Shared fixtures: scan settings with an isolated cache, package writers."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

from zift.config import ScanSettings
from zift.parser import parse


def write_file(root: Path, rel: str, text: str) -> Path:
    path = root / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


def write_manifest(root: Path, scripts: dict[str, str] | None = None, **extra: Any) -> Path:
    data = {"name": "fixture-pkg", "version": "1.0.0", **extra}
    if scripts is not None:
        data["scripts"] = scripts
    return write_file(root, "package.json", json.dumps(data, indent=2))


def expression(source: str):
    """Syntax node of a single expression statement."""
    tree = parse(source.rstrip(";") + ";")
    stmt = tree.root_node.named_children[0]
    return stmt.named_children[0]


@pytest.fixture
def settings(tmp_path: Path) -> ScanSettings:
    return ScanSettings(max_workers=2, cache_enabled=False, cache_dir=str(tmp_path / "cache"))


@pytest.fixture
def cached_settings(tmp_path: Path) -> ScanSettings:
    return ScanSettings(max_workers=2, cache_enabled=True, cache_dir=str(tmp_path / "cache"))


@pytest.fixture
def pkg(tmp_path: Path) -> Path:
    root = tmp_path / "pkg"
    root.mkdir()
    return root
