"""Errors raised while merging, evaluating, and emitting persistence declarations.

Every error carries a stable ``E_*`` code that the CLI prints as
``error[CODE]: message`` so wrappers can match failures without parsing text.
The optional ``context`` names the offending option, path, or source file.
"""

from __future__ import annotations

from collections.abc import Mapping
from enum import StrEnum
from typing import ClassVar


class ErrorCode(StrEnum):
    VALIDATION = "E_VALIDATION"
    CONFLICT = "E_CONFLICT"
    CONFIG = "E_CONFIG"
    EMISSION = "E_EMISSION"
    REPRODUCIBILITY = "E_REPRODUCIBILITY"


class PreservationError(Exception):
    """Base class; subclasses pick their code through ``error_code``."""

    error_code: ClassVar[ErrorCode]

    code: str
    hint: str | None
    context: dict[str, str]

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = self.error_code.value
        self.hint = hint
        self.context = dict(context or {})

    def __str__(self) -> str:
        lines = [super().__str__()]
        if self.hint:
            lines.append(f"Hint: {self.hint}")
        # Empty values are placeholders such as an unnamed source.
        lines.extend(f"  {key}: {value}" for key, value in self.context.items() if value)
        return "\n".join(lines)

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "code": self.code,
            "message": str(self),
            "context": dict(self.context),
        }
        if self.hint is not None:
            payload["hint"] = self.hint
        return payload


class ValidationError(PreservationError):
    """A declared value is malformed: relative path, unknown strategy, bad mode."""

    error_code = ErrorCode.VALIDATION


class ConflictError(PreservationError):
    """Two declarations set the same option to different values."""

    error_code = ErrorCode.CONFLICT


class ConfigError(PreservationError):
    """A declaration file is missing, unreadable, or has the wrong shape."""

    error_code = ErrorCode.CONFIG


class EmissionError(PreservationError):
    error_code = ErrorCode.EMISSION


class ReproducibilityError(PreservationError):
    """Recorded artifact digests cannot be read or compared."""

    error_code = ErrorCode.REPRODUCIBILITY


__all__ = [
    "ConfigError",
    "ConflictError",
    "EmissionError",
    "ErrorCode",
    "PreservationError",
    "ReproducibilityError",
    "ValidationError",
]
