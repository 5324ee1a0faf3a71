"""Install-time setup script synthesis.

Renders the derived directory set into the shell commands a disk provisioner
runs right after mounting the target partitions. Command order matters:
directories on the persistent partition, then mount points on the ephemeral
root, then bind mounts. A bind mount fails unless both sides already exist.
"""

from __future__ import annotations

import shlex
from collections.abc import Sequence

from preservation_disko.models import validate_path

SCRIPT_MARKER = "preservation-disko"


def synthesize(
    derived_paths: Sequence[str],
    bind_mount_dirs: Sequence[str],
    *,
    install_mount_point: str,
    persistent_storage_path: str,
    enabled: bool = True,
) -> str:
    """Render the setup commands; returns an empty string when disabled."""
    if not enabled:
        return ""
    for path in (*derived_paths, *bind_mount_dirs):
        validate_path(path, option="setup path")

    persist_root = f"{install_mount_point}{persistent_storage_path}"
    lines = [
        "# === Preservation Setup Commands ===",
        f"# Auto-generated by {SCRIPT_MARKER}",
        "# These commands ensure all preservation targets exist during installation",
        f"# Persistent storage path: {persistent_storage_path}",
        "",
    ]

    if derived_paths:
        lines.append("# Create persistent directories")
        lines.extend(_mkdir(f"{persist_root}{path}") for path in derived_paths)
        lines.append("")
        lines.append("# Create ephemeral mount points (on tmpfs root)")
        lines.extend(_mkdir(f"{install_mount_point}{path}") for path in derived_paths)
        lines.append("")

    if bind_mount_dirs:
        lines.append("# Create bind mounts for boot-critical directories")
        lines.extend(
            _bind_mount(f"{persist_root}{path}", f"{install_mount_point}{path}")
            for path in bind_mount_dirs
        )
        lines.append("")

    marker = f"{SCRIPT_MARKER}: setup complete ({persistent_storage_path})"
    lines.append(f"echo {shlex.quote(marker)}")
    return "\n".join(lines) + "\n"


def _mkdir(path: str) -> str:
    return f"mkdir -p {shlex.quote(path)}"


def _bind_mount(source: str, target: str) -> str:
    return f"mount --bind {shlex.quote(source)} {shlex.quote(target)}"


__all__ = ["SCRIPT_MARKER", "synthesize"]
