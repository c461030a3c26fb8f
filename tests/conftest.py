"""Shared fixtures: a template tree under tmp_path and a Blade bound to it."""

from pathlib import Path

import pytest

from bladekit import Blade


def write(root: Path, relative: str, text: str) -> Path:
    """Write a template file, creating parent directories."""
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


@pytest.fixture
def views(tmp_path):
    root = tmp_path / "views"
    root.mkdir()
    return root


@pytest.fixture
def cache_dir(tmp_path):
    return tmp_path / "cache"


@pytest.fixture
def blade(views, cache_dir):
    return Blade(views, cache_dir)
