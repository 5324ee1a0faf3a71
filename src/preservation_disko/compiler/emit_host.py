"""Boot-time host configuration fragments.

Everything here is consumed after installation: fstab entries for the extra
bind mounts, initrd tmpfiles rules and a systemd drop-in for bind-mounted
machine-id, and the built-in persistence declarations layered beneath user
declarations.
"""

from __future__ import annotations

import json
from collections.abc import Mapping

from preservation_disko.clan import ClanIntegration
from preservation_disko.models import (
    BIND_MOUNT_OPTIONS,
    DEFAULT_PRESERVED_DIRECTORIES,
    MACHINE_ID_FILE,
    NIXOS_STATE_DIRECTORY,
    SOPS_NIX_DIRECTORY,
    BindMountSpec,
    Declaration,
    MountEntry,
    PreservationOptions,
    PreserveAt,
    PreservedFile,
    TmpfilesRule,
    UnitOverride,
)

INITRD_SYSROOT = "/sysroot"
MACHINE_ID_PLACEHOLDER = "uninitialized"
MACHINE_ID_COMMIT_UNIT = "systemd-machine-id-commit.service"
DROPIN_NAME = "preservation.conf"


def base_declaration(options: PreservationOptions, clan: ClanIntegration) -> Declaration:
    """Built-in bind mounts and persistence declarations for the resolved options."""
    # uid/gid maps are lost on first boot unless the installer writes them to disk
    extra_bind_mounts = {NIXOS_STATE_DIRECTORY: BindMountSpec(path=NIXOS_STATE_DIRECTORY)}
    if clan.wants_sops_nix:
        extra_bind_mounts[SOPS_NIX_DIRECTORY] = BindMountSpec(
            path=SOPS_NIX_DIRECTORY,
            needed_for_boot=True,
        )

    directories = list(DEFAULT_PRESERVED_DIRECTORIES)
    if clan.facts_secret_dir is not None:
        directories.append(clan.facts_secret_dir)
    if clan.wants_sops_nix:
        directories.append(SOPS_NIX_DIRECTORY)

    machine_id = PreservedFile(
        file=MACHINE_ID_FILE,
        how=options.machine_id_mode,
        in_initrd=True,
        create_link_target=options.machine_id_mode == "symlink",
    )
    return Declaration(
        extra_bind_mounts=extra_bind_mounts,
        preserve_at={
            options.persistent_storage_path: PreserveAt(
                directories=tuple(directories),
                files=(machine_id,),
            ),
        },
        source="built-in",
    )


def bind_mount_file_systems(
    extra_bind_mounts: Mapping[str, BindMountSpec],
    *,
    persistent_storage_path: str,
) -> dict[str, MountEntry]:
    """One bind-mount file system entry per extra bind mount."""
    return {
        path: MountEntry(
            name=path,
            device=f"{persistent_storage_path}{path}",
            fs_type="none",
            options=BIND_MOUNT_OPTIONS,
            needed_for_boot=spec.needed_for_boot,
        )
        for path, spec in sorted(extra_bind_mounts.items())
    }


def machine_id_tmpfiles(options: PreservationOptions) -> tuple[TmpfilesRule, ...]:
    """Initrd rules that seed the persistent machine-id in bind-mount mode.

    Symlink mode needs nothing here: the link target is created by the
    persistence subsystem itself.
    """
    if options.machine_id_mode != "bindmount":
        return ()
    persist_etc = f"{INITRD_SYSROOT}{options.persistent_storage_path}/etc"
    return (
        TmpfilesRule(path=persist_etc, type="d", mode="0755"),
        TmpfilesRule(
            path=f"{persist_etc}/machine-id",
            type="f",
            mode="0644",
            argument=MACHINE_ID_PLACEHOLDER,
        ),
    )


def machine_id_unit_overrides(options: PreservationOptions) -> tuple[UnitOverride, ...]:
    # A bind-mounted machine-id is always a mount point, so commit would run every boot.
    if options.machine_id_mode != "bindmount":
        return ()
    return (
        UnitOverride(
            unit=MACHINE_ID_COMMIT_UNIT,
            section="Unit",
            key="ConditionFirstBoot",
            value="true",
        ),
    )


def render_fstab(file_systems: Mapping[str, MountEntry]) -> str:
    lines = ["# Generated by preservation-disko"]
    for name in sorted(file_systems):
        entry = file_systems[name]
        options = ",".join(entry.options) or "defaults"
        lines.append(
            f"{_fstab_escape(entry.device)} {_fstab_escape(entry.name)} "
            f"{entry.fs_type} {options} 0 0"
        )
    return "\n".join(lines) + "\n"


def render_tmpfiles(rules: tuple[TmpfilesRule, ...]) -> str:
    lines = []
    for rule in rules:
        argument = rule.argument if rule.argument is not None else "-"
        lines.append(
            f"{rule.type} {rule.path} {rule.mode} {rule.user} {rule.group} {rule.age} {argument}"
        )
    return "\n".join(lines) + "\n" if lines else ""


def render_unit_dropins(overrides: tuple[UnitOverride, ...]) -> dict[str, str]:
    """Drop-in file contents keyed by unit name."""
    grouped: dict[str, dict[str, list[str]]] = {}
    for override in overrides:
        sections = grouped.setdefault(override.unit, {})
        sections.setdefault(override.section, []).append(f"{override.key}={override.value}")

    dropins: dict[str, str] = {}
    for unit in sorted(grouped):
        lines: list[str] = []
        for section, entries in grouped[unit].items():
            if lines:
                lines.append("")
            lines.append(f"[{section}]")
            lines.extend(entries)
        dropins[unit] = "\n".join(lines) + "\n"
    return dropins


def render_preserve_at(preserve_at: Mapping[str, PreserveAt]) -> str:
    payload = {
        root: {
            "directories": list(declared.directories),
            "files": [_file_payload(record) for record in declared.files],
        }
        for root, declared in sorted(preserve_at.items())
    }
    return json.dumps(payload, indent=2, sort_keys=True) + "\n"


def _file_payload(record: PreservedFile) -> dict[str, object]:
    payload: dict[str, object] = {
        "file": record.file,
        "how": record.how,
        "inInitrd": record.in_initrd,
    }
    if record.create_link_target:
        payload["createLinkTarget"] = True
    if record.mode is not None:
        payload["mode"] = record.mode
    return payload


def _fstab_escape(value: str) -> str:
    return value.replace("\\", "\\134").replace(" ", "\\040").replace("\t", "\\011")


__all__ = [
    "DROPIN_NAME",
    "INITRD_SYSROOT",
    "MACHINE_ID_COMMIT_UNIT",
    "MACHINE_ID_PLACEHOLDER",
    "base_declaration",
    "bind_mount_file_systems",
    "machine_id_tmpfiles",
    "machine_id_unit_overrides",
    "render_fstab",
    "render_preserve_at",
    "render_tmpfiles",
    "render_unit_dropins",
]
