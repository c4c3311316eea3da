"""Command-line interface router for circuitforge-repair."""

from __future__ import annotations

import argparse
import asyncio
import json
import shlex
import sys
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final

import yaml

from circuitforge_repair.config import (
    ConfigLoadError,
    ConfigValidationError,
    effective_config,
    load_config,
)
from circuitforge_repair.control_plane import ConvergenceLoop, LoopSettings, rebuild_traces
from circuitforge_repair.domain.diagnostics import ValidationDiagnostic
from circuitforge_repair.domain.events import ProgressEvent
from circuitforge_repair.domain.ids import generate_session_id
from circuitforge_repair.domain.models import StopReason, export_allowed
from circuitforge_repair.integration_plane import (
    CommandCompiler,
    CommandPreview,
    InMemorySessionStore,
    SessionRecord,
)
from circuitforge_repair.main import ExitCode
from circuitforge_repair.observability import (
    ProgressEmitter,
    configure_structlog,
    setup_logging,
    shutdown_logging,
)
from circuitforge_repair.ui.render import CLIRenderer, create_renderer
from circuitforge_repair.verification_plane import (
    ClassificationPolicy,
    classify,
    collect_preflight_diagnostics,
)

STDIN_MARKER: Final[str] = "-"


@dataclass(frozen=True, slots=True)
class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code."""

    message: str
    exit_code: int = ExitCode.UNRESOLVED

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse command router for all supported CLI workflows."""

    parser = argparse.ArgumentParser(
        prog="circuitforge",
        description=(
            "circuitforge-repair — validation and repair convergence engine.\n\n"
            "Common workflows:\n"
            "  circuitforge preflight board.tsx        Check trace endpoints before compiling\n"
            "  circuitforge rebuild-traces board.tsx   Regenerate traces from net intent\n"
            "  circuitforge classify findings.yaml     Bucket diagnostics by handling\n"
            "  circuitforge run board.tsx              Drive a design to convergence\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to circuitforge TOML config (default: ./circuitforge.toml if present).",
    )
    common.add_argument("--profile", default=None, help="Optional config profile overlay name.")
    common.add_argument(
        "--verbose", "-v", action="store_true", default=False, help="Show detailed output."
    )
    common.add_argument(
        "--no-color",
        action="store_true",
        default=False,
        help="Disable colored output (also respects NO_COLOR env var).",
    )
    common.add_argument("--json", action="store_true", help="Emit deterministic JSON output")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # preflight -----------------------------------------------------------
    preflight_parser = subparsers.add_parser(
        "preflight",
        parents=[common],
        help="Check trace endpoints in design source without compiling",
    )
    preflight_parser.add_argument("source", help="Design source path, or - for stdin")
    preflight_parser.set_defaults(handler=_cmd_preflight)

    # rebuild-traces ------------------------------------------------------
    rebuild_parser = subparsers.add_parser(
        "rebuild-traces",
        parents=[common],
        help="Regenerate trace declarations from component net intent",
    )
    rebuild_parser.add_argument("source", help="Design source path, or - for stdin")
    rebuild_parser.add_argument(
        "--anchor-nets",
        action="store_true",
        default=None,
        help="Also tie every rebuilt net's anchor to the net itself",
    )
    rebuild_parser.set_defaults(handler=_cmd_rebuild_traces)

    # classify ------------------------------------------------------------
    classify_parser = subparsers.add_parser(
        "classify",
        parents=[common],
        help="Classify a list of diagnostics (JSON or YAML) into handling buckets",
    )
    classify_parser.add_argument("diagnostics", help="Diagnostics file path, or - for stdin")
    classify_parser.set_defaults(handler=_cmd_classify)

    # run -----------------------------------------------------------------
    run_parser = subparsers.add_parser(
        "run",
        parents=[common],
        help="Run the validation and repair loop against a design",
        description=(
            "Compile, validate, classify and repair a design until it converges or\n"
            "the attempt budget runs out. Progress events stream to stdout.\n\n"
            "Examples:\n"
            "  circuitforge run board.tsx --compiler-cmd 'tscircuit-compile --stdin'\n"
            "  circuitforge run board.tsx --profile strict --output fixed.tsx\n"
            "  circuitforge run board.tsx --previous last.tsx --config preview.toml\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    run_parser.add_argument("source", help="Design source path, or - for stdin")
    run_parser.add_argument(
        "--compiler-cmd",
        default=None,
        help="Compiler command line (default: [compiler].command from config)",
    )
    run_parser.add_argument("--session-id", default=None, help="Reuse an explicit session id")
    run_parser.add_argument("--output", default=None, help="Write the final source to this path")
    run_parser.add_argument(
        "--previous",
        default=None,
        help="Previously converged design for this session; previewed when [preview] is enabled",
    )
    run_parser.set_defaults(handler=_cmd_run)

    # config --------------------------------------------------------------
    config_parser = subparsers.add_parser(
        "config",
        parents=[common],
        help="Show the effective (redacted) configuration",
    )
    config_parser.set_defaults(handler=_cmd_config)

    return parser


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return ExitCode.CONFIG_ERROR

    try:
        result = handler(namespace)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    return int(result)


def main(argv: Sequence[str] | None = None) -> int:
    return run_cli(argv)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_preflight(args: argparse.Namespace) -> int:
    source = _read_input(args.source)
    diagnostics = collect_preflight_diagnostics(source)

    if _flag(args, "json"):
        _emit_json(
            {
                "command": "preflight",
                "diagnostics": [item.to_dict() for item in diagnostics],
                "ok": not diagnostics,
            }
        )
    else:
        renderer = _get_renderer(args)
        if diagnostics:
            renderer.diagnostics(diagnostics, title="Preflight diagnostics:")
        else:
            renderer.ok("all trace endpoints resolve")
    return ExitCode.UNRESOLVED if diagnostics else ExitCode.SUCCESS


def _cmd_rebuild_traces(args: argparse.Namespace) -> int:
    source = _read_input(args.source)
    anchor_nets = args.anchor_nets
    if anchor_nets is None:
        config = _load_effective_config(args)
        anchor_nets = bool(config["repair"]["anchor_rebuilt_nets"])
    result = rebuild_traces(source, anchor_nets=anchor_nets)

    if _flag(args, "json"):
        _emit_json(
            {
                "command": "rebuild-traces",
                "reason": result.reason,
                "rebuilt": result.rebuilt,
                "traces": list(result.traces),
            }
        )
    else:
        renderer = _get_renderer(args)
        if result.rebuilt:
            for trace in result.traces:
                renderer.text(trace)
        else:
            renderer.fail(f"no traces rebuilt: {result.reason}")
    return ExitCode.SUCCESS if result.rebuilt else ExitCode.UNRESOLVED


def _cmd_classify(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    policy = ClassificationPolicy(
        demote_after_attempts=int(config["loop"]["demote_after_attempts"]),
        demote_max_severity=int(config["loop"]["demote_max_severity"]),
    )
    diagnostics = _load_diagnostics(_read_input(args.diagnostics))
    result = classify(diagnostics, policy=policy)

    buckets = {
        "auto_fixable": [family.value for family in result.auto_fixable_families],
        "must_repair": [family.value for family in result.must_repair_families],
        "should_demote": [family.value for family in result.should_demote_families],
    }
    if _flag(args, "json"):
        _emit_json(
            {
                "buckets": buckets,
                "command": "classify",
                "diagnostics": [item.to_dict() for item in result.diagnostics],
            }
        )
    else:
        renderer = _get_renderer(args)
        renderer.heading("Families by handling:")
        for handling, families in buckets.items():
            renderer.handling(handling, ", ".join(families) or "-")
        if renderer.verbose:
            renderer.diagnostics(result.diagnostics, title="Diagnostics:")
    return ExitCode.UNRESOLVED if result.must_repair_families else ExitCode.SUCCESS


def _cmd_run(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    source = _read_input(args.source)
    argv = _compiler_argv(args, config)
    preview = _preview_collaborator(config)
    settings = LoopSettings.from_config(config)
    session_id = _optional_str(getattr(args, "session_id", None)) or generate_session_id()
    as_json = _flag(args, "json")
    renderer = _get_renderer(args)

    store = InMemorySessionStore(
        ttl_seconds=float(config["session"]["ttl_seconds"]),
        max_entries=int(config["session"]["max_entries"]),
    )
    previous = _optional_str(getattr(args, "previous", None))
    if previous is not None:
        store.put(session_id, SessionRecord(last_converged_source=_read_input(previous)))

    handle_logger = setup_logging(config["observability"], session_id=session_id)
    configure_structlog()
    try:
        emitter = ProgressEmitter(session_id)
        if as_json:
            emitter.subscribe(_print_event_json)
        else:
            emitter.subscribe(renderer.event)

        loop = ConvergenceLoop(
            CommandCompiler(argv, timeout_seconds=settings.attempt_timeout_seconds),
            preview=preview,
            session_store=store,
            settings=settings,
        )
        result = asyncio.run(loop.run(source, emitter=emitter))
    finally:
        handle_logger.debug("cli run finished")
        shutdown_logging()

    output = _optional_str(getattr(args, "output", None))
    if output is not None:
        Path(output).expanduser().write_text(result.final_source, encoding="utf-8")

    summary = result.summary
    min_score = int(config["scoring"]["export_min_readiness"])
    if not as_json:
        renderer.section("Summary:")
        renderer.kv("Outcome", summary.outcome.value)
        renderer.kv("Stop reason", summary.stop_reason.value)
        renderer.kv("Attempts", f"{summary.attempts_used}/{summary.attempt_budget}")
        renderer.kv("Readiness", summary.readiness_score)
        allowed = export_allowed(summary, min_score=min_score)
        renderer.kv("Export allowed", "yes" if allowed else "no")
        if summary.unresolved_blockers:
            renderer.items(list(summary.unresolved_blockers))
    return _exit_code_for(summary.converged, summary.stop_reason)


def _cmd_config(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    profile = _optional_str(getattr(args, "profile", None))
    redacted = effective_config(config)

    if _flag(args, "json"):
        _emit_json({"active_profile": profile, "command": "config", "config": redacted})
        return ExitCode.SUCCESS

    renderer = _get_renderer(args)
    renderer.kv("Active profile", profile or "(default)")
    renderer.text(json.dumps(redacted, indent=2, sort_keys=True, ensure_ascii=False))
    return ExitCode.SUCCESS


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _emit_json(payload: Mapping[str, object]) -> None:
    """Emit a JSON payload to stdout with deterministic formatting."""

    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


def _print_event_json(event: ProgressEvent) -> None:
    print(event.to_json(), flush=True)


def _get_renderer(args: argparse.Namespace) -> CLIRenderer:
    return create_renderer(no_color=_flag(args, "no_color"), verbose=_flag(args, "verbose"))


def _load_effective_config(args: argparse.Namespace) -> dict[str, Any]:
    config_path = _optional_str(getattr(args, "config_path", None))
    profile = _optional_str(getattr(args, "profile", None))
    try:
        return load_config(config_path, profile=profile)
    except (ConfigLoadError, ConfigValidationError) as exc:
        raise CLIError(str(exc), exit_code=ExitCode.CONFIG_ERROR) from exc


def _compiler_argv(args: argparse.Namespace, config: Mapping[str, Any]) -> list[str]:
    raw = _optional_str(getattr(args, "compiler_cmd", None))
    if raw is not None:
        try:
            argv = shlex.split(raw)
        except ValueError as exc:
            raise CLIError(
                f"invalid --compiler-cmd: {exc}", exit_code=ExitCode.CONFIG_ERROR
            ) from exc
    else:
        argv = list(config["compiler"]["command"])
    if not argv:
        raise CLIError(
            "no compiler configured; pass --compiler-cmd or set [compiler].command",
            exit_code=ExitCode.CONFIG_ERROR,
        )
    return argv


def _preview_collaborator(config: Mapping[str, Any]) -> CommandPreview | None:
    section = config["preview"]
    if not section["enabled"]:
        return None
    argv = list(section["command"])
    if not argv:
        raise CLIError(
            "preview is enabled but [preview].command is empty",
            exit_code=ExitCode.CONFIG_ERROR,
        )
    return CommandPreview(argv)


def _read_input(path_arg: str) -> str:
    if path_arg == STDIN_MARKER:
        return sys.stdin.read()
    path = Path(path_arg).expanduser()
    if not path.is_file():
        raise CLIError(f"input file not found: {path}", exit_code=ExitCode.CONFIG_ERROR)
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise CLIError(f"unable to read {path}: {exc}", exit_code=ExitCode.CONFIG_ERROR) from exc


def _load_diagnostics(text: str) -> list[ValidationDiagnostic]:
    """Parse a JSON or YAML list of diagnostics (or ``{"diagnostics": [...]}``)."""

    try:
        payload = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise CLIError(
            f"diagnostics input is not valid JSON/YAML: {exc}", exit_code=ExitCode.CONFIG_ERROR
        ) from exc
    if isinstance(payload, Mapping):
        payload = payload.get("diagnostics")
    if payload is None:
        return []
    if not isinstance(payload, list):
        raise CLIError("diagnostics input must be a list", exit_code=ExitCode.CONFIG_ERROR)

    diagnostics: list[ValidationDiagnostic] = []
    for index, item in enumerate(payload):
        try:
            diagnostics.append(ValidationDiagnostic.from_mapping(item))
        except ValueError as exc:
            raise CLIError(
                f"diagnostics[{index}]: {exc}", exit_code=ExitCode.CONFIG_ERROR
            ) from exc
    return diagnostics


def _exit_code_for(converged: bool, stop_reason: StopReason) -> int:
    if converged:
        return ExitCode.SUCCESS
    if stop_reason is StopReason.COLLABORATOR_UNAVAILABLE:
        return ExitCode.COLLABORATOR_ERROR
    if stop_reason is StopReason.INTERNAL_ERROR:
        return ExitCode.INTERNAL_ERROR
    return ExitCode.UNRESOLVED


def _optional_str(value: object) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise CLIError("invalid optional string argument", exit_code=ExitCode.CONFIG_ERROR)
    cleaned = value.strip()
    return cleaned or None


def _flag(args: argparse.Namespace, name: str) -> bool:
    return bool(getattr(args, name, False))


__all__ = [
    "CLIError",
    "build_parser",
    "main",
    "run_cli",
]
