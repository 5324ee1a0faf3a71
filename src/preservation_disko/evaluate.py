"""Evaluation of persistence declarations into install and boot artifacts."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Self

from preservation_disko.clan import ClanIntegration
from preservation_disko.compiler.emit_host import (
    base_declaration,
    bind_mount_file_systems,
    machine_id_tmpfiles,
    machine_id_unit_overrides,
)
from preservation_disko.compiler.emit_script import synthesize
from preservation_disko.compiler.emit_tree import TreeEmission, emit_tree
from preservation_disko.derive import bind_mount_dirs, derive
from preservation_disko.errors import ValidationError
from preservation_disko.merge import apply_defaults, merge_declarations, merge_mount_entry
from preservation_disko.models import (
    BindMountSpec,
    Declaration,
    EvaluatedConfig,
    MountEntry,
    PreserveAt,
    PreservedFile,
    PreserveHow,
    ResolvedConfig,
    validate_path,
)
from preservation_disko.observability import StructuredLogger


@dataclass(slots=True)
class Preservation:
    """Collects declarations and evaluates them on demand.

    Evaluation is a pure function of the declarations: calling
    :meth:`evaluate` twice on the same declarations yields equal results.
    Directories and files declared without a root follow whatever
    ``persistent_storage_path`` the declarations resolve to, regardless of
    the order in which they were added. The logger holds the records of the
    latest evaluation only.
    """

    declarations: list[Declaration] = field(default_factory=list)
    logger: StructuredLogger = field(default_factory=StructuredLogger)

    def declare(self, declaration: Declaration) -> Self:
        self.declarations.append(declaration)
        return self

    def preserve_directories(self, *directories: str, root: str | None = None) -> Self:
        if not directories:
            raise ValidationError("preserve_directories() requires at least one directory.")
        return self.declare(
            _at_root(PreserveAt(directories=directories), root, source="preserve_directories")
        )

    def preserve_file(
        self,
        file: str,
        *,
        how: PreserveHow = "symlink",
        root: str | None = None,
    ) -> Self:
        if how not in ("symlink", "bindmount"):
            raise ValidationError(
                "Unsupported persistence strategy.",
                hint="Use 'symlink' or 'bindmount'.",
                context={"file": file, "how": how},
            )
        record = PreservedFile(file=file, how=how)
        return self.declare(_at_root(PreserveAt(files=(record,)), root, source="preserve_file"))

    def bind_mount(self, path: str, *, needed_for_boot: bool = False) -> Self:
        return self.declare(
            Declaration(
                extra_bind_mounts={
                    path: BindMountSpec(path=path, needed_for_boot=needed_for_boot),
                },
                source="bind_mount",
            )
        )

    def resolve(self) -> ResolvedConfig:
        return merge_declarations(*self.declarations)

    def evaluate(self) -> EvaluatedConfig:
        self.logger.clear()
        return evaluate(*self.declarations, logger=self.logger)

    def setup_commands(self) -> str:
        return self.evaluate().setup_commands

    def emit(self, path: str | Path, *, force: bool = False) -> TreeEmission:
        evaluated = self.evaluate()
        return emit_tree(evaluated, Path(path), logger=self.logger, force=force)


def evaluate(
    *declarations: Declaration,
    logger: StructuredLogger | None = None,
) -> EvaluatedConfig:
    """Merge declarations, layer built-in defaults, and derive every output."""
    log = logger if logger is not None else StructuredLogger()

    resolved = merge_declarations(*declarations)
    options = resolved.options
    persist = options.persistent_storage_path
    log.log(
        operation="merge",
        component="merge",
        message="Merged declarations.",
        extra={"declarations": len(declarations), "persistent_storage_path": persist},
    )

    clan = ClanIntegration.detect(resolved.clan)
    log.log(
        operation="detect_integrations",
        component="clan",
        message="Detected optional integrations." if clan.present else "No clan integration.",
        extra={
            "facts_enabled": clan.facts_enabled,
            "vars_enabled": clan.vars_enabled,
        },
    )

    config = apply_defaults(resolved, base_declaration(options, clan))
    _validate_config(config)

    file_systems: dict[str, MountEntry] = dict(config.file_systems)
    generated = bind_mount_file_systems(config.extra_bind_mounts, persistent_storage_path=persist)
    for name, entry in generated.items():
        declared = file_systems.get(name)
        file_systems[name] = entry if declared is None else merge_mount_entry(entry, declared)
    file_systems = {name: file_systems[name] for name in sorted(file_systems)}

    persist_directories = derive(
        file_systems,
        config.preserve_at,
        persistent_storage_path=persist,
        enabled=options.enable,
    )
    binds = bind_mount_dirs(file_systems, persistent_storage_path=persist, enabled=options.enable)
    log.log(
        operation="derive",
        component="derive",
        message="Derived install-time directories.",
        extra={"directories": list(persist_directories), "bind_mounts": list(binds)},
    )
    if not options.enable:
        log.log(
            operation="derive",
            component="derive",
            message="Preservation is disabled; no setup commands generated.",
            level="warning",
        )

    setup_commands = synthesize(
        persist_directories,
        binds,
        install_mount_point=options.install_mount_point,
        persistent_storage_path=persist,
        enabled=options.enable,
    )
    log.log(
        operation="synthesize",
        component="emit_script",
        message="Rendered setup commands.",
        extra={"lines": len(setup_commands.splitlines())},
    )

    return EvaluatedConfig(
        options=options,
        persist_directories=persist_directories,
        bind_mount_dirs=binds,
        setup_commands=setup_commands,
        file_systems=file_systems,
        extra_bind_mounts=config.extra_bind_mounts,
        preserve_at=config.preserve_at,
        tmpfiles=machine_id_tmpfiles(options),
        unit_overrides=machine_id_unit_overrides(options),
    )


def _at_root(entry: PreserveAt, root: str | None, *, source: str) -> Declaration:
    if root is None:
        return Declaration(preserve_at_storage=entry, source=source)
    return Declaration(preserve_at={root: entry}, source=source)


def _validate_config(config: ResolvedConfig) -> None:
    options = config.options
    validate_path(options.persistent_storage_path, option="persistentStoragePath")
    validate_path(options.install_mount_point, option="installMountPoint")
    for path in config.extra_bind_mounts:
        validate_path(path, option="extraBindMounts")
    for root, declared in config.preserve_at.items():
        validate_path(root, option="preserveAt")
        for directory in declared.directories:
            validate_path(directory, option=f"preserveAt.{root}.directories")
        for record in declared.files:
            validate_path(record.file, option=f"preserveAt.{root}.files")
    for name in config.file_systems:
        validate_path(name, option="fileSystems")


__all__ = ["Preservation", "evaluate"]
