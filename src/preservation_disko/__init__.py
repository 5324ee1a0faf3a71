"""Public package entrypoint for preservation-disko."""

from .clan import ClanIntegration
from .compiler import TreeEmission, emit_tree, synthesize
from .config_io import parse_declaration, read_declaration, read_declarations
from .derive import bind_mount_dirs, derive, symlink_parent_dirs
from .digest import OutputDigests
from .errors import (
    ConfigError,
    ConflictError,
    EmissionError,
    ErrorCode,
    PreservationError,
    ReproducibilityError,
    ValidationError,
)
from .evaluate import Preservation, evaluate
from .merge import apply_defaults, merge_declarations
from .models import (
    BindMountSpec,
    ClanConfig,
    Declaration,
    EvaluatedConfig,
    MountEntry,
    PreservationOptions,
    PreserveAt,
    PreservedFile,
    ResolvedConfig,
    TmpfilesRule,
    UnitOverride,
)
from .observability import StructuredLogger

__all__ = [
    "BindMountSpec",
    "ClanConfig",
    "ClanIntegration",
    "ConfigError",
    "ConflictError",
    "Declaration",
    "EmissionError",
    "ErrorCode",
    "EvaluatedConfig",
    "MountEntry",
    "OutputDigests",
    "PreservationError",
    "Preservation",
    "PreservationOptions",
    "PreserveAt",
    "PreservedFile",
    "ReproducibilityError",
    "ResolvedConfig",
    "StructuredLogger",
    "TmpfilesRule",
    "TreeEmission",
    "UnitOverride",
    "ValidationError",
    "apply_defaults",
    "bind_mount_dirs",
    "derive",
    "emit_tree",
    "evaluate",
    "merge_declarations",
    "parse_declaration",
    "read_declaration",
    "read_declarations",
    "symlink_parent_dirs",
    "synthesize",
]
