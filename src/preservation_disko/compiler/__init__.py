"""Compiler interfaces for emitting install-time and boot-time artifacts."""

from .emit_host import (
    base_declaration,
    bind_mount_file_systems,
    machine_id_tmpfiles,
    machine_id_unit_overrides,
    render_fstab,
    render_preserve_at,
    render_tmpfiles,
    render_unit_dropins,
)
from .emit_script import SCRIPT_MARKER, synthesize
from .emit_tree import TreeEmission, emit_tree, render_artifacts

__all__ = [
    "SCRIPT_MARKER",
    "TreeEmission",
    "base_declaration",
    "bind_mount_file_systems",
    "emit_tree",
    "machine_id_tmpfiles",
    "machine_id_unit_overrides",
    "render_artifacts",
    "render_fstab",
    "render_preserve_at",
    "render_tmpfiles",
    "render_unit_dropins",
    "synthesize",
]
