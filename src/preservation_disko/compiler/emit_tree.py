"""Deterministic emission of every evaluated artifact into a directory tree.

Layout::

    disko-setup.sh                          postMountHook commands
    fstab.d/preservation.fstab              file system entries
    tmpfiles.d/preservation.conf            initrd tmpfiles rules (bindmount mode)
    systemd/<unit>.d/preservation.conf      unit drop-ins (bindmount mode)
    preserve-at.json                        merged persistence declarations
    report.json                             digests and evaluation log
"""

from __future__ import annotations

import json
import shutil
from dataclasses import dataclass, field
from pathlib import Path

from preservation_disko.compiler.emit_host import (
    DROPIN_NAME,
    render_fstab,
    render_preserve_at,
    render_tmpfiles,
    render_unit_dropins,
)
from preservation_disko.digest import OutputDigests
from preservation_disko.errors import EmissionError
from preservation_disko.models import EvaluatedConfig
from preservation_disko.observability import StructuredLogger

SETUP_SCRIPT = "disko-setup.sh"
FSTAB_FRAGMENT = "fstab.d/preservation.fstab"
TMPFILES_FRAGMENT = "tmpfiles.d/preservation.conf"
PRESERVE_AT_FILE = "preserve-at.json"
REPORT_FILE = "report.json"

EXECUTABLE = frozenset({SETUP_SCRIPT})


@dataclass(frozen=True, slots=True)
class TreeEmission:
    root: Path
    files: dict[str, Path] = field(default_factory=dict)
    digests: OutputDigests = field(default_factory=OutputDigests)
    report_path: Path | None = None


def render_artifacts(evaluated: EvaluatedConfig) -> dict[str, str]:
    """Artifact contents keyed by path relative to the tree root."""
    artifacts = {
        SETUP_SCRIPT: evaluated.setup_commands,
        FSTAB_FRAGMENT: render_fstab(evaluated.file_systems),
        PRESERVE_AT_FILE: render_preserve_at(evaluated.preserve_at),
    }
    tmpfiles = render_tmpfiles(evaluated.tmpfiles)
    if tmpfiles:
        artifacts[TMPFILES_FRAGMENT] = tmpfiles
    for unit, content in render_unit_dropins(evaluated.unit_overrides).items():
        artifacts[f"systemd/{unit}.d/{DROPIN_NAME}"] = content
    return {name: artifacts[name] for name in sorted(artifacts)}


def emit_tree(
    evaluated: EvaluatedConfig,
    destination: Path,
    *,
    logger: StructuredLogger | None = None,
    force: bool = False,
) -> TreeEmission:
    log = logger if logger is not None else StructuredLogger()
    if destination.exists():
        if not destination.is_dir():
            raise EmissionError(
                "Emission destination is not a directory.",
                context={"path": str(destination)},
            )
        if any(destination.iterdir()):
            if not force:
                raise EmissionError(
                    "Emission destination is not empty.",
                    hint="Pass force=True (or --force) to replace the existing tree.",
                    context={"path": str(destination)},
                )
            shutil.rmtree(destination)
    destination.mkdir(parents=True, exist_ok=True)

    artifacts = render_artifacts(evaluated)
    files: dict[str, Path] = {}
    for name, content in artifacts.items():
        path = destination / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        if name in EXECUTABLE:
            path.chmod(0o755)
        files[name] = path

    digests = OutputDigests.from_contents(artifacts)
    log.log(
        operation="emit_tree",
        component="emit_tree",
        message="Wrote emission tree.",
        extra={"root": str(destination), "files": sorted(files)},
    )

    report_path = destination / REPORT_FILE
    report_payload = {
        "persistent_storage_path": evaluated.options.persistent_storage_path,
        "install_mount_point": evaluated.options.install_mount_point,
        "enabled": evaluated.options.enable,
        "initrd_systemd": evaluated.initrd_systemd,
        "directories": list(evaluated.persist_directories),
        "bind_mounts": list(evaluated.bind_mount_dirs),
        "digests": dict(digests.values),
        "logs": log.records,
    }
    report_path.write_text(
        json.dumps(report_payload, indent=2, sort_keys=True) + "\n",
        encoding="utf-8",
    )

    return TreeEmission(
        root=destination,
        files=files,
        digests=digests,
        report_path=report_path,
    )


__all__ = [
    "FSTAB_FRAGMENT",
    "PRESERVE_AT_FILE",
    "REPORT_FILE",
    "SETUP_SCRIPT",
    "TMPFILES_FRAGMENT",
    "TreeEmission",
    "emit_tree",
    "render_artifacts",
]
