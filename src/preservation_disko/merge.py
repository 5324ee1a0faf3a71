"""Order-independent merging of configuration declarations.

Several declarations (one per configuration file or module) contribute to the
same options. Merging follows these rules:

- scalar options must agree across every declaration that sets them, and
  fall back to their default when nobody does;
- list options concatenate, then dedupe and sort, so declaration order never
  changes the result;
- mapping options merge key by key, and entries under the same key merge
  with the same rules recursively;
- records declared against the persistent storage path without naming it
  are filed under the merged path, whichever declaration sets it.

Built-in defaults are applied afterwards with :func:`apply_defaults` and sit
below user declarations: a user entry for the same key replaces the default.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import fields
from typing import Any, TypeVar

from preservation_disko.errors import ConflictError
from preservation_disko.models import (
    BindMountSpec,
    ClanConfig,
    Declaration,
    MountEntry,
    PreservationOptions,
    PreserveAt,
    PreservedFile,
    ResolvedConfig,
)

T = TypeVar("T")

SCALAR_OPTIONS = (
    "enable",
    "persistent_storage_path",
    "install_mount_point",
    "machine_id_mode",
)


def merge_declarations(*declarations: Declaration) -> ResolvedConfig:
    """Merge declarations into one resolved configuration."""
    defaults = PreservationOptions()
    scalars: dict[str, Any] = {}
    for name in SCALAR_OPTIONS:
        defined = [
            (_source(decl, index), getattr(decl, name))
            for index, decl in enumerate(declarations)
            if getattr(decl, name) is not None
        ]
        scalars[name] = _merge_scalar(name, defined, default=getattr(defaults, name))

    extra_bind_mounts: dict[str, BindMountSpec] = {}
    preserve_at: dict[str, PreserveAt] = {}
    file_systems: dict[str, MountEntry] = {}
    clan_defined: list[tuple[str, ClanConfig]] = []

    for index, decl in enumerate(declarations):
        source = _source(decl, index)
        for path, spec in decl.extra_bind_mounts.items():
            existing = extra_bind_mounts.get(path)
            extra_bind_mounts[path] = (
                spec
                if existing is None
                else _merge_equal(f"extraBindMounts.{path}", existing, spec, source)
            )
        roots = dict(decl.preserve_at)
        if decl.preserve_at_storage is not None:
            storage = scalars["persistent_storage_path"]
            existing_storage = roots.get(storage)
            roots[storage] = (
                decl.preserve_at_storage
                if existing_storage is None
                else merge_preserve_at(storage, existing_storage, decl.preserve_at_storage)
            )
        for root, declared in roots.items():
            existing_at = preserve_at.get(root)
            preserve_at[root] = (
                declared if existing_at is None else merge_preserve_at(root, existing_at, declared)
            )
        for name, entry in decl.file_systems.items():
            existing_entry = file_systems.get(name)
            file_systems[name] = (
                entry if existing_entry is None else merge_mount_entry(existing_entry, entry)
            )
        if decl.clan is not None:
            clan_defined.append((source, decl.clan))

    clan = _merge_scalar("clan", clan_defined, default=None)

    return ResolvedConfig(
        options=PreservationOptions(
            enable=scalars["enable"],
            persistent_storage_path=scalars["persistent_storage_path"],
            install_mount_point=scalars["install_mount_point"],
            machine_id_mode=scalars["machine_id_mode"],
        ),
        extra_bind_mounts=_sorted_mapping(extra_bind_mounts),
        preserve_at=_normalize_roots(preserve_at),
        file_systems=_sorted_mapping(file_systems),
        clan=clan,
    )


def apply_defaults(resolved: ResolvedConfig, defaults: Declaration) -> ResolvedConfig:
    """Layer built-in declarations beneath an already resolved configuration."""
    extra_bind_mounts = dict(defaults.extra_bind_mounts)
    extra_bind_mounts.update(resolved.extra_bind_mounts)

    preserve_at: dict[str, PreserveAt] = dict(resolved.preserve_at)
    for root, base in defaults.preserve_at.items():
        declared = preserve_at.get(root)
        if declared is None:
            preserve_at[root] = base
            continue
        overridden = {record.file for record in declared.files}
        preserve_at[root] = PreserveAt(
            directories=(*base.directories, *declared.directories),
            files=(
                *(record for record in base.files if record.file not in overridden),
                *declared.files,
            ),
        )

    file_systems = dict(defaults.file_systems)
    file_systems.update(resolved.file_systems)

    return ResolvedConfig(
        options=resolved.options,
        extra_bind_mounts=_sorted_mapping(extra_bind_mounts),
        preserve_at=_normalize_roots(preserve_at),
        file_systems=_sorted_mapping(file_systems),
        clan=resolved.clan,
    )


def merge_preserve_at(root: str, left: PreserveAt, right: PreserveAt) -> PreserveAt:
    files: dict[str, PreservedFile] = {record.file: record for record in left.files}
    for record in right.files:
        existing = files.get(record.file)
        files[record.file] = (
            record
            if existing is None
            else _merge_equal(f"preserveAt.{root}.files.{record.file}", existing, record, None)
        )
    return PreserveAt(
        directories=(*left.directories, *right.directories),
        files=tuple(files.values()),
    )


def merge_mount_entry(left: MountEntry, right: MountEntry) -> MountEntry:
    """Merge two definitions of the same mount; options union, everything else must agree."""
    for item in fields(MountEntry):
        if item.name == "options":
            continue
        left_value = getattr(left, item.name)
        right_value = getattr(right, item.name)
        if left_value != right_value:
            raise ConflictError(
                "Conflicting definitions for a file system entry.",
                hint="Declare each mount attribute once, or make the definitions agree.",
                context={
                    "option": f"fileSystems.{left.name}.{item.name}",
                    "values": f"{left_value!r} vs {right_value!r}",
                },
            )
    return MountEntry(
        name=left.name,
        device=left.device,
        fs_type=left.fs_type,
        options=(
            left.options
            if left.options == right.options
            else tuple(sorted(set(left.options) | set(right.options)))
        ),
        needed_for_boot=left.needed_for_boot,
    )


def _merge_scalar(name: str, defined: Sequence[tuple[str, T]], *, default: T) -> T:
    if not defined:
        return default
    distinct = {value for _, value in defined}
    if len(distinct) > 1:
        raise ConflictError(
            "The option has conflicting definition values.",
            hint="Set the option in a single declaration, or use the same value everywhere.",
            context={
                "option": name,
                "definitions": ", ".join(f"{source}={value!r}" for source, value in defined),
            },
        )
    return defined[0][1]


def _merge_equal(option: str, existing: T, incoming: T, source: str | None) -> T:
    if existing != incoming:
        context = {"option": option, "values": f"{existing!r} vs {incoming!r}"}
        if source is not None:
            context["source"] = source
        raise ConflictError("Conflicting definitions for the same key.", context=context)
    return existing


def _normalize_roots(preserve_at: Mapping[str, PreserveAt]) -> dict[str, PreserveAt]:
    return {root: _normalize_preserve_at(preserve_at[root]) for root in sorted(preserve_at)}


def _normalize_preserve_at(value: PreserveAt) -> PreserveAt:
    return PreserveAt(
        directories=tuple(sorted(set(value.directories))),
        files=tuple(sorted(value.files, key=lambda record: record.file)),
    )


def _sorted_mapping(mapping: Mapping[str, T]) -> dict[str, T]:
    return {key: mapping[key] for key in sorted(mapping)}


def _source(decl: Declaration, index: int) -> str:
    return decl.source or f"declaration[{index}]"


__all__ = [
    "SCALAR_OPTIONS",
    "apply_defaults",
    "merge_declarations",
    "merge_mount_entry",
    "merge_preserve_at",
]
