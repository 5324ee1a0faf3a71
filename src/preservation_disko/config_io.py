"""Declaration file parser.

Declaration files are JSON objects using the option names of the NixOS
module they mirror::

    {
      "persistentStoragePath": "/persist",
      "machineIdMode": "symlink",
      "extraBindMounts": {"/var/lib/sops-nix": {"neededForBoot": true}},
      "preserveAt": {
        "/persist": {
          "directories": ["/var/lib/myapp"],
          "files": ["/etc/adjtime", {"file": "/etc/machine-id", "how": "bindmount"}]
        }
      },
      "fileSystems": {
        "/var/lib/data": {"device": "/persist/var/lib/data", "fsType": "none", "options": ["bind"]}
      },
      "clan": {"facts": {"enable": true, "secretUploadDirectory": "/var/lib/clan"}}
    }
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from preservation_disko.errors import ConfigError, ValidationError
from preservation_disko.models import (
    MACHINE_ID_MODES,
    PRESERVE_HOW_VALUES,
    BindMountSpec,
    ClanConfig,
    Declaration,
    MountEntry,
    PreserveAt,
    PreservedFile,
    validate_path,
)

TOP_LEVEL_KEYS = frozenset(
    {
        "enable",
        "persistentStoragePath",
        "installMountPoint",
        "machineIdMode",
        "extraBindMounts",
        "preserveAt",
        "fileSystems",
        "clan",
    }
)
FILE_KEYS = frozenset({"file", "how", "inInitrd", "createLinkTarget", "mode"})
FILE_SYSTEM_KEYS = frozenset({"device", "fsType", "options", "neededForBoot"})


def parse_declaration(raw: str, *, source: str | None = None) -> Declaration:
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigError(
            "Invalid declaration JSON.",
            hint=str(exc),
            context={"source": source or ""},
        ) from exc
    if not isinstance(payload, dict):
        raise ConfigError("Declaration must be a JSON object.", context={"source": source or ""})
    return declaration_from_dict(payload, source=source)


def declaration_from_dict(payload: dict[str, Any], *, source: str | None = None) -> Declaration:
    _reject_unknown(payload, TOP_LEVEL_KEYS, where="declaration", source=source)

    machine_id_mode = _optional_str(payload, "machineIdMode")
    if machine_id_mode is not None and machine_id_mode not in MACHINE_ID_MODES:
        raise ValidationError(
            "Unsupported machineIdMode value.",
            hint=f"Use one of: {', '.join(MACHINE_ID_MODES)}.",
            context={"value": machine_id_mode, "source": source or ""},
        )

    persistent_storage_path = _optional_str(payload, "persistentStoragePath")
    if persistent_storage_path is not None:
        validate_path(persistent_storage_path, option="persistentStoragePath")
    install_mount_point = _optional_str(payload, "installMountPoint")
    if install_mount_point is not None:
        validate_path(install_mount_point, option="installMountPoint")

    return Declaration(
        enable=_optional_bool(payload, "enable"),
        persistent_storage_path=persistent_storage_path,
        install_mount_point=install_mount_point,
        machine_id_mode=machine_id_mode,  # type: ignore[arg-type]
        extra_bind_mounts=_parse_extra_bind_mounts(payload.get("extraBindMounts", {})),
        preserve_at=_parse_preserve_at(payload.get("preserveAt", {}), source=source),
        file_systems=_parse_file_systems(payload.get("fileSystems", {}), source=source),
        clan=_parse_clan(payload.get("clan")),
        source=source,
    )


def read_declaration(path: str | Path) -> Declaration:
    config_path = Path(path)
    try:
        raw = config_path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise ConfigError(
            "Declaration file does not exist.",
            context={"path": str(config_path)},
        ) from exc
    return parse_declaration(raw, source=str(config_path))


def read_declarations(paths: Sequence[str | Path]) -> tuple[Declaration, ...]:
    return tuple(read_declaration(path) for path in paths)


def _parse_extra_bind_mounts(value: Any) -> dict[str, BindMountSpec]:
    mounts = _mapping(value, "extraBindMounts")
    parsed: dict[str, BindMountSpec] = {}
    for path, options in mounts.items():
        validate_path(path, option="extraBindMounts")
        entry = _mapping(options, f"extraBindMounts.{path}")
        _reject_unknown(entry, frozenset({"neededForBoot"}), where=f"extraBindMounts.{path}")
        needed = _optional_bool(entry, "neededForBoot")
        parsed[path] = BindMountSpec(path=path, needed_for_boot=bool(needed))
    return parsed


def _parse_preserve_at(value: Any, *, source: str | None) -> dict[str, PreserveAt]:
    roots = _mapping(value, "preserveAt")
    parsed: dict[str, PreserveAt] = {}
    for root, declared in roots.items():
        validate_path(root, option="preserveAt")
        where = f"preserveAt.{root}"
        entry = _mapping(declared, where)
        _reject_unknown(entry, frozenset({"directories", "files"}), where=where, source=source)
        directories = _string_list(entry.get("directories", []), f"{where}.directories")
        for directory in directories:
            validate_path(directory, option=f"{where}.directories")
        files_raw = entry.get("files", [])
        if not isinstance(files_raw, list):
            raise ConfigError(f"Invalid `{where}.files` value; expected a list.")
        parsed[root] = PreserveAt(
            directories=tuple(directories),
            files=tuple(_parse_preserved_file(item, where=f"{where}.files") for item in files_raw),
        )
    return parsed


def _parse_preserved_file(item: Any, *, where: str) -> PreservedFile:
    if isinstance(item, str):
        return PreservedFile(file=validate_path(item, option=where))
    if not isinstance(item, dict):
        raise ConfigError(f"Invalid entry in `{where}`; expected a path or an object.")
    _reject_unknown(item, FILE_KEYS, where=where)
    file = _required_str(item, "file", where=where)
    validate_path(file, option=where)
    how = _optional_str(item, "how") or "symlink"
    if how not in PRESERVE_HOW_VALUES:
        raise ValidationError(
            "Unsupported persistence strategy.",
            hint=f"Use one of: {', '.join(PRESERVE_HOW_VALUES)}.",
            context={"file": file, "how": how},
        )
    return PreservedFile(
        file=file,
        how=how,  # type: ignore[arg-type]
        in_initrd=bool(_optional_bool(item, "inInitrd")),
        create_link_target=bool(_optional_bool(item, "createLinkTarget")),
        mode=_optional_str(item, "mode"),
    )


def _parse_file_systems(value: Any, *, source: str | None) -> dict[str, MountEntry]:
    mounts = _mapping(value, "fileSystems")
    parsed: dict[str, MountEntry] = {}
    for name, declared in mounts.items():
        validate_path(name, option="fileSystems")
        where = f"fileSystems.{name}"
        entry = _mapping(declared, where)
        _reject_unknown(entry, FILE_SYSTEM_KEYS, where=where, source=source)
        parsed[name] = MountEntry(
            name=name,
            device=_optional_str(entry, "device") or "",
            fs_type=_optional_str(entry, "fsType") or "auto",
            options=tuple(_string_list(entry.get("options", []), f"{where}.options")),
            needed_for_boot=bool(_optional_bool(entry, "neededForBoot")),
        )
    return parsed


def _parse_clan(value: Any) -> ClanConfig | None:
    if value is None:
        return None
    clan = _mapping(value, "clan")
    _reject_unknown(clan, frozenset({"facts", "vars"}), where="clan")
    facts = _mapping(clan.get("facts", {}), "clan.facts")
    _reject_unknown(facts, frozenset({"enable", "secretUploadDirectory"}), where="clan.facts")
    variables = _mapping(clan.get("vars", {}), "clan.vars")
    _reject_unknown(variables, frozenset({"generators"}), where="clan.vars")
    generators = variables.get("generators", [])
    if isinstance(generators, dict):
        generators = sorted(generators)
    return ClanConfig(
        facts_enable=bool(_optional_bool(facts, "enable")),
        secret_upload_directory=_optional_str(facts, "secretUploadDirectory"),
        vars_generators=tuple(_string_list(generators, "clan.vars.generators")),
    )


def _reject_unknown(
    payload: dict[str, Any],
    allowed: frozenset[str],
    *,
    where: str,
    source: str | None = None,
) -> None:
    unknown = sorted(set(payload) - allowed)
    if unknown:
        raise ConfigError(
            f"Unknown keys in `{where}`: {', '.join(unknown)}.",
            hint=f"Allowed keys: {', '.join(sorted(allowed))}.",
            context={"source": source or ""},
        )


def _mapping(value: Any, where: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise ConfigError(f"Invalid `{where}` value; expected an object.")
    return value


def _string_list(value: Any, where: str) -> list[str]:
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ConfigError(f"Invalid `{where}` value; expected a list of strings.")
    return list(value)


def _required_str(payload: dict[str, Any], key: str, *, where: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value:
        raise ConfigError(f"Missing or invalid `{key}` in `{where}`.")
    return value


def _optional_str(payload: dict[str, Any], key: str) -> str | None:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ConfigError(f"Invalid `{key}` value; expected a string.")
    return value


def _optional_bool(payload: dict[str, Any], key: str) -> bool | None:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, bool):
        raise ConfigError(f"Invalid `{key}` value; expected a boolean.")
    return value


__all__ = ["declaration_from_dict", "parse_declaration", "read_declaration", "read_declarations"]
