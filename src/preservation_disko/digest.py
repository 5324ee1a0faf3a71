"""Content digests of emitted artifacts.

A digest set maps artifact names (paths relative to the emission root) to
hex-encoded sha256 digests of their contents. It is stored either as JSON,
for review diffs, or as canonical CBOR, whose bytes are identical for equal
digest sets. :meth:`OutputDigests.load` reads both, chosen by file suffix.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

import cbor2

from preservation_disko.errors import ReproducibilityError

DIGEST_ALGORITHM = "sha256"
SCHEMA_VERSION = 1
CBOR_SUFFIX = ".cbor"

MismatchReason = Literal["missing_actual", "unexpected_actual", "value_mismatch"]

MISMATCH_HINTS: dict[MismatchReason, str] = {
    "missing_actual": "The current configuration no longer emits this artifact.",
    "unexpected_actual": "The recorded digests predate this artifact; re-record them.",
    "value_mismatch": "Diff the artifact against the recorded tree to see what changed.",
}


@dataclass(frozen=True, slots=True)
class DigestMismatch:
    key: str
    reason: MismatchReason
    expected: str | None
    actual: str | None

    @property
    def hint(self) -> str:
        return MISMATCH_HINTS[self.reason]


@dataclass(frozen=True, slots=True)
class VerificationResult:
    mismatches: tuple[DigestMismatch, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.mismatches


@dataclass(frozen=True, slots=True)
class OutputDigests:
    values: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_contents(cls, contents: Mapping[str, str]) -> OutputDigests:
        """Digest rendered artifact texts, keyed by relative path."""
        values = {}
        for name in sorted(contents):
            values[name] = hashlib.new(
                DIGEST_ALGORITHM, contents[name].encode("utf-8")
            ).hexdigest()
        return cls(values=values)

    @classmethod
    def from_json(cls, raw: str) -> OutputDigests:
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ReproducibilityError("Invalid digest JSON.", hint=str(exc)) from exc
        return cls._from_payload(payload)

    @classmethod
    def from_cbor(cls, raw: bytes) -> OutputDigests:
        try:
            payload = cbor2.loads(raw)
        except cbor2.CBORDecodeError as exc:
            raise ReproducibilityError("Invalid digest CBOR.", hint=str(exc)) from exc
        return cls._from_payload(payload)

    @classmethod
    def load(cls, path: str | Path) -> OutputDigests:
        digest_path = Path(path)
        try:
            if digest_path.suffix == CBOR_SUFFIX:
                return cls.from_cbor(digest_path.read_bytes())
            return cls.from_json(digest_path.read_text(encoding="utf-8"))
        except FileNotFoundError as exc:
            raise ReproducibilityError(
                "Expected digests file does not exist.",
                hint="Record digests first with `emit --digests`.",
                context={"path": str(digest_path)},
            ) from exc

    @classmethod
    def _from_payload(cls, payload: Any) -> OutputDigests:
        if not isinstance(payload, dict):
            raise ReproducibilityError("Digest document must be a mapping.")
        if payload.get("algorithm") != DIGEST_ALGORITHM:
            raise ReproducibilityError(
                "Unsupported digest algorithm.",
                context={"algorithm": str(payload.get("algorithm"))},
            )
        if payload.get("schema_version") != SCHEMA_VERSION:
            raise ReproducibilityError(
                "Unsupported digest schema version.",
                context={"schema_version": str(payload.get("schema_version"))},
            )
        values = payload.get("values")
        if not isinstance(values, dict) or not all(
            isinstance(key, str) and isinstance(value, str) for key, value in values.items()
        ):
            raise ReproducibilityError("Invalid digest `values` mapping.")
        return cls(values=dict(values))

    def document(self) -> dict[str, Any]:
        return {
            "algorithm": DIGEST_ALGORITHM,
            "schema_version": SCHEMA_VERSION,
            "values": {key: self.values[key] for key in sorted(self.values)},
        }

    def to_json(self, path: str | Path | None = None) -> str:
        encoded = json.dumps(self.document(), indent=2, sort_keys=True) + "\n"
        if path is not None:
            Path(path).write_text(encoded, encoding="utf-8")
        return encoded

    def to_cbor(self, path: str | Path | None = None) -> bytes:
        encoded = cbor2.dumps(self.document(), canonical=True)
        if path is not None:
            Path(path).write_bytes(encoded)
        return encoded

    def write(self, path: str | Path) -> Path:
        """Write to ``path`` as CBOR or JSON, chosen by suffix."""
        output_path = Path(path)
        if output_path.suffix == CBOR_SUFFIX:
            self.to_cbor(output_path)
        else:
            self.to_json(output_path)
        return output_path

    def verify(self, expected: Mapping[str, str]) -> VerificationResult:
        """Compare against recorded digests; mismatches come back in key order."""
        mismatches = []
        for key in sorted(set(expected) | set(self.values)):
            recorded = expected.get(key)
            current = self.values.get(key)
            if recorded == current:
                continue
            if current is None:
                reason: MismatchReason = "missing_actual"
            elif recorded is None:
                reason = "unexpected_actual"
            else:
                reason = "value_mismatch"
            mismatches.append(
                DigestMismatch(key=key, reason=reason, expected=recorded, actual=current)
            )
        return VerificationResult(mismatches=tuple(mismatches))


__all__ = [
    "CBOR_SUFFIX",
    "DigestMismatch",
    "MismatchReason",
    "OutputDigests",
    "VerificationResult",
]
