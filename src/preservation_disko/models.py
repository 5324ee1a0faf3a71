"""Core typed dataclasses for persistence declarations and evaluated outputs."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Literal

from preservation_disko.errors import ValidationError

PreserveHow = Literal["symlink", "bindmount"]
MachineIdMode = Literal["symlink", "bindmount"]
TmpfilesType = Literal["d", "f"]

PRESERVE_HOW_VALUES: tuple[PreserveHow, ...] = ("symlink", "bindmount")
MACHINE_ID_MODES: tuple[MachineIdMode, ...] = ("symlink", "bindmount")

DEFAULT_PERSISTENT_STORAGE_PATH = "/persist"
DEFAULT_INSTALL_MOUNT_POINT = "/mnt"
DEFAULT_MACHINE_ID_MODE: MachineIdMode = "symlink"

BIND_MOUNT_OPTIONS = ("bind", "X-fstrim.notrim")

# State that must survive the first reboot on a tmpfs root
DEFAULT_PRESERVED_DIRECTORIES = (
    "/var/lib/nixos",
    "/var/lib/systemd",
    "/var/log",
)

MACHINE_ID_FILE = "/etc/machine-id"
SOPS_NIX_DIRECTORY = "/var/lib/sops-nix"
NIXOS_STATE_DIRECTORY = "/var/lib/nixos"


def validate_path(path: str, *, option: str) -> str:
    """Reject paths that cannot be interpolated into fstab or shell lines."""
    if not path.startswith("/"):
        raise ValidationError(
            "Path must be absolute.",
            hint="Declare paths starting with '/'.",
            context={"option": option, "path": path},
        )
    if "\n" in path or "\0" in path:
        raise ValidationError(
            "Path contains a newline or NUL byte.",
            context={"option": option, "path": repr(path)},
        )
    return path


@dataclass(frozen=True, slots=True)
class MountEntry:
    name: str
    device: str
    fs_type: str
    options: tuple[str, ...] = ()
    needed_for_boot: bool = False

    def is_persistent_bind(self, persistent_storage_path: str) -> bool:
        """True for bind mounts whose source lives on the persistent partition."""
        return (
            self.fs_type == "none"
            and self.device.startswith(persistent_storage_path)
            and "bind" in self.options
        )


@dataclass(frozen=True, slots=True)
class PreservedFile:
    file: str
    how: PreserveHow = "symlink"
    in_initrd: bool = False
    create_link_target: bool = False
    mode: str | None = None

    @property
    def parent(self) -> str:
        head, _, _ = self.file.rpartition("/")
        return head or "/"


@dataclass(frozen=True, slots=True)
class PreserveAt:
    directories: tuple[str, ...] = ()
    files: tuple[PreservedFile, ...] = ()


@dataclass(frozen=True, slots=True)
class BindMountSpec:
    path: str
    needed_for_boot: bool = False


@dataclass(frozen=True, slots=True)
class ClanConfig:
    """State of the optional secret-management integration, when it is present."""

    facts_enable: bool = False
    secret_upload_directory: str | None = None
    vars_generators: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class PreservationOptions:
    enable: bool = True
    persistent_storage_path: str = DEFAULT_PERSISTENT_STORAGE_PATH
    install_mount_point: str = DEFAULT_INSTALL_MOUNT_POINT
    machine_id_mode: MachineIdMode = DEFAULT_MACHINE_ID_MODE


@dataclass(frozen=True, slots=True)
class Declaration:
    """One configuration fragment; unset scalars are ``None``."""

    enable: bool | None = None
    persistent_storage_path: str | None = None
    install_mount_point: str | None = None
    machine_id_mode: MachineIdMode | None = None
    extra_bind_mounts: Mapping[str, BindMountSpec] = field(default_factory=dict)
    preserve_at: Mapping[str, PreserveAt] = field(default_factory=dict)
    # Filed under the merged persistent_storage_path once scalars are resolved.
    preserve_at_storage: PreserveAt | None = None
    file_systems: Mapping[str, MountEntry] = field(default_factory=dict)
    clan: ClanConfig | None = None
    source: str | None = None


@dataclass(frozen=True, slots=True)
class ResolvedConfig:
    options: PreservationOptions
    extra_bind_mounts: Mapping[str, BindMountSpec] = field(default_factory=dict)
    preserve_at: Mapping[str, PreserveAt] = field(default_factory=dict)
    file_systems: Mapping[str, MountEntry] = field(default_factory=dict)
    clan: ClanConfig | None = None


@dataclass(frozen=True, slots=True)
class TmpfilesRule:
    path: str
    type: TmpfilesType
    mode: str = "-"
    user: str = "-"
    group: str = "-"
    age: str = "-"
    argument: str | None = None


@dataclass(frozen=True, slots=True)
class UnitOverride:
    unit: str
    section: str
    key: str
    value: str


@dataclass(frozen=True, slots=True)
class EvaluatedConfig:
    options: PreservationOptions
    persist_directories: tuple[str, ...]
    bind_mount_dirs: tuple[str, ...]
    setup_commands: str
    file_systems: Mapping[str, MountEntry]
    extra_bind_mounts: Mapping[str, BindMountSpec]
    preserve_at: Mapping[str, PreserveAt]
    tmpfiles: tuple[TmpfilesRule, ...] = ()
    unit_overrides: tuple[UnitOverride, ...] = ()
    initrd_systemd: bool = True


__all__ = [
    "BIND_MOUNT_OPTIONS",
    "BindMountSpec",
    "ClanConfig",
    "DEFAULT_INSTALL_MOUNT_POINT",
    "DEFAULT_MACHINE_ID_MODE",
    "DEFAULT_PERSISTENT_STORAGE_PATH",
    "DEFAULT_PRESERVED_DIRECTORIES",
    "Declaration",
    "EvaluatedConfig",
    "MACHINE_ID_FILE",
    "MACHINE_ID_MODES",
    "MachineIdMode",
    "MountEntry",
    "NIXOS_STATE_DIRECTORY",
    "PRESERVE_HOW_VALUES",
    "PreserveAt",
    "PreserveHow",
    "PreservationOptions",
    "PreservedFile",
    "ResolvedConfig",
    "SOPS_NIX_DIRECTORY",
    "TmpfilesRule",
    "TmpfilesType",
    "UnitOverride",
    "validate_path",
]
