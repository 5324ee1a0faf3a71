"""Command-line interface.

Usage:
    preservation-disko commands host.json [extra.json ...]
    preservation-disko dirs host.json
    preservation-disko emit host.json --output out/ [--force] [--digests digests.cbor]
    preservation-disko verify host.json --expected digests.cbor
"""

from __future__ import annotations

import argparse
import sys
from collections.abc import Sequence
from pathlib import Path

from preservation_disko.compiler.emit_tree import render_artifacts
from preservation_disko.config_io import read_declarations
from preservation_disko.digest import OutputDigests
from preservation_disko.errors import PreservationError
from preservation_disko.evaluate import Preservation
from preservation_disko.models import EvaluatedConfig


def cmd_commands(args: argparse.Namespace, preservation: Preservation) -> int:
    sys.stdout.write(preservation.setup_commands())
    return 0


def cmd_dirs(args: argparse.Namespace, preservation: Preservation) -> int:
    for directory in preservation.evaluate().persist_directories:
        print(directory)
    return 0


def cmd_emit(args: argparse.Namespace, preservation: Preservation) -> int:
    emission = preservation.emit(args.output, force=args.force)
    if args.digests is not None:
        emission.digests.write(args.digests)
    print(f"Emitted {len(emission.files)} files to {emission.root}")
    return 0


def cmd_verify(args: argparse.Namespace, preservation: Preservation) -> int:
    expected = OutputDigests.load(args.expected)
    actual = _digests(preservation.evaluate())
    result = actual.verify(expected.values)
    if result.ok:
        print("All artifact digests match.")
        return 0
    for mismatch in result.mismatches:
        print(f"{mismatch.key}: {mismatch.reason} ({mismatch.hint})", file=sys.stderr)
    return 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="preservation-disko",
        description="Generate disko postMountHook commands and boot fragments for preservation.",
    )
    parser.add_argument(
        "--log-json",
        type=Path,
        default=None,
        help="Write structured evaluation logs as JSON lines to this path",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    commands_p = sub.add_parser("commands", help="Print the postMountHook setup commands")
    commands_p.add_argument("configs", nargs="+", type=Path, help="Declaration files")

    dirs_p = sub.add_parser("dirs", help="Print the directories created during installation")
    dirs_p.add_argument("configs", nargs="+", type=Path, help="Declaration files")

    emit_p = sub.add_parser("emit", help="Write every generated artifact to a directory")
    emit_p.add_argument("configs", nargs="+", type=Path, help="Declaration files")
    emit_p.add_argument("--output", "-o", type=Path, required=True, help="Output directory")
    emit_p.add_argument("--force", action="store_true", help="Replace a non-empty output directory")
    emit_p.add_argument(
        "--digests",
        type=Path,
        default=None,
        help="Also write digests here (canonical CBOR for a .cbor suffix, else JSON)",
    )

    verify_p = sub.add_parser("verify", help="Compare artifact digests against a recorded set")
    verify_p.add_argument("configs", nargs="+", type=Path, help="Declaration files")
    verify_p.add_argument(
        "--expected", type=Path, required=True, help="Recorded digests (.json or .cbor)"
    )

    return parser


HANDLERS = {
    "commands": cmd_commands,
    "dirs": cmd_dirs,
    "emit": cmd_emit,
    "verify": cmd_verify,
}


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    preservation = Preservation()
    try:
        for declaration in read_declarations(args.configs):
            preservation.declare(declaration)
        return HANDLERS[args.command](args, preservation)
    except PreservationError as exc:
        print(f"error[{exc.code}]: {exc}", file=sys.stderr)
        return 2
    finally:
        if args.log_json is not None:
            preservation.logger.to_json_lines(args.log_json)


def _digests(evaluated: EvaluatedConfig) -> OutputDigests:
    return OutputDigests.from_contents(render_artifacts(evaluated))


if __name__ == "__main__":
    raise SystemExit(main())
