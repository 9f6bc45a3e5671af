"""Shared fixtures for layerwise tests."""

import os
from pathlib import Path
from typing import Callable, Dict, Union

import pytest

from layerwise.config import reset_config


@pytest.fixture(autouse=True)
def clean_settings(monkeypatch):
    """Isolate tests from LAYERWISE_* variables and the cached config."""
    for name in list(os.environ):
        if name.startswith("LAYERWISE_"):
            monkeypatch.delenv(name, raising=False)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def make_context(tmp_path) -> Callable[[Dict[str, Union[str, bytes]]], Path]:
    """Write a build context from a {relative path: content} mapping."""

    def _make(files: Dict[str, Union[str, bytes]]) -> Path:
        root = tmp_path / "ctx"
        root.mkdir(exist_ok=True)
        for rel, content in files.items():
            path = root / rel
            path.parent.mkdir(parents=True, exist_ok=True)
            if isinstance(content, bytes):
                path.write_bytes(content)
            else:
                path.write_text(content, encoding="utf-8")
        return root

    return _make
