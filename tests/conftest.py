"""Shared test fixtures."""

from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from preservation_disko.models import MountEntry, PreserveAt, PreservedFile


@pytest.fixture
def sops_mount() -> dict[str, MountEntry]:
    """A bind mount from persistent storage, as clan vars would declare it."""
    return {
        "/var/lib/sops-nix": MountEntry(
            name="/var/lib/sops-nix",
            device="/persist/var/lib/sops-nix",
            fs_type="none",
            options=("bind",),
        ),
    }


@pytest.fixture
def machine_id_symlink() -> dict[str, PreserveAt]:
    return {"/persist": PreserveAt(files=(PreservedFile(file="/etc/machine-id"),))}


@pytest.fixture
def write_config(tmp_path: Path) -> Callable[..., Path]:
    """Write a declaration file and return its path."""

    def _write(payload: dict[str, Any], name: str = "host.json") -> Path:
        path = tmp_path / name
        path.write_text(json.dumps(payload), encoding="utf-8")
        return path

    return _write
