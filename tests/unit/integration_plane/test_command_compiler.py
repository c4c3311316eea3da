"""Unit tests for the subprocess design compiler and preview renderer."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

from circuitforge_repair.integration_plane.collaborators import (
    CollaboratorUnavailableError,
    CompileContext,
    CompiledCircuit,
    CompileFailure,
)
from circuitforge_repair.integration_plane.command_compiler import (
    FAILURE_MESSAGE_LIMIT,
    CommandCompiler,
    CommandPreview,
    PreviewCommandError,
    parse_compile_output,
    parse_preview_output,
)

_CONTEXT = CompileContext(session_id="ses-compile", attempt=0)


def _script(tmp_path: Path, body: str) -> list[str]:
    path = tmp_path / "compile_stub.py"
    path.write_text(body, encoding="utf-8")
    return [sys.executable, str(path)]


# ---------------------------------------------------------------------------
# Output parsing
# ---------------------------------------------------------------------------


def test_parse_accepts_wrapped_and_bare_record_lists() -> None:
    wrapped = parse_compile_output('{"circuit_json": [{"type": "source_port"}, 3]}', "", 0)
    bare = parse_compile_output('[{"type": "pcb_trace"}]', "", 0)

    assert wrapped == CompiledCircuit(records=({"type": "source_port"},))
    assert isinstance(bare, CompiledCircuit)
    assert bare.records == ({"type": "pcb_trace"},)


def test_parse_prefers_details_then_error_then_message() -> None:
    details = parse_compile_output('{"details": "bad net", "error": "x"}', "", 1)
    error = parse_compile_output('{"error": "bad pin", "message": "y"}', "", 1)
    message = parse_compile_output('{"message": "bad trace"}', "", 1)

    assert details == CompileFailure(message="bad net", status=1)
    assert isinstance(error, CompileFailure) and error.message == "bad pin"
    assert isinstance(message, CompileFailure) and message.message == "bad trace"


def test_parse_falls_back_to_raw_output_and_status() -> None:
    raw = parse_compile_output("not json", "  Traceback: boom  ", 2)
    empty = parse_compile_output("", "", 3)
    long = parse_compile_output("", "x" * (FAILURE_MESSAGE_LIMIT + 50), 1)

    assert raw == CompileFailure(message="Traceback: boom", status=2)
    assert isinstance(empty, CompileFailure)
    assert empty.message == "Compile failed with status 3"
    assert isinstance(long, CompileFailure)
    assert len(long.message) == FAILURE_MESSAGE_LIMIT


def test_parse_zero_exit_without_records_is_a_failure() -> None:
    outcome = parse_compile_output('{"ok": true}', "", 0)

    assert isinstance(outcome, CompileFailure)
    assert outcome.status == 0


# ---------------------------------------------------------------------------
# Subprocess execution
# ---------------------------------------------------------------------------


async def test_compile_pipes_source_on_stdin(tmp_path: Path) -> None:
    argv = _script(
        tmp_path,
        "import json, sys\n"
        "source = sys.stdin.read()\n"
        "print(json.dumps({'circuit_json': [{'type': 'echo', 'chars': len(source)}]}))\n",
    )
    compiler = CommandCompiler(argv, timeout_seconds=30.0)

    outcome = await compiler.compile("<board />", context=_CONTEXT)

    assert outcome == CompiledCircuit(records=({"type": "echo", "chars": 9},))


async def test_compile_non_zero_exit_becomes_failure(tmp_path: Path) -> None:
    argv = _script(
        tmp_path,
        "import sys\nsys.stdin.read()\nsys.stderr.write('syntax error at 1:1')\nsys.exit(4)\n",
    )

    outcome = await CommandCompiler(argv, timeout_seconds=30.0).compile("x", context=_CONTEXT)

    assert outcome == CompileFailure(message="syntax error at 1:1", status=4)
    assert isinstance(outcome, CompileFailure) and not outcome.transient


async def test_compile_timeout_becomes_failure(tmp_path: Path) -> None:
    argv = _script(tmp_path, "import time\ntime.sleep(30)\n")

    outcome = await CommandCompiler(argv, timeout_seconds=0.5).compile("x", context=_CONTEXT)

    assert isinstance(outcome, CompileFailure)
    assert "timed out" in outcome.message
    assert outcome.transient


async def test_missing_executable_raises_collaborator_unavailable(tmp_path: Path) -> None:
    compiler = CommandCompiler([str(tmp_path / "no-such-compiler")])

    with pytest.raises(CollaboratorUnavailableError, match="compiler unavailable") as excinfo:
        await compiler.compile("x", context=_CONTEXT)

    assert excinfo.value.collaborator == "compiler"


def test_constructor_validation() -> None:
    with pytest.raises(ValueError, match="argv: must be a non-empty list"):
        CommandCompiler([])
    with pytest.raises(ValueError, match="timeout_seconds: must be > 0"):
        CommandCompiler(["tsc"], timeout_seconds=0)
    assert CommandCompiler(["tsc", "--check"]).argv == ("tsc", "--check")


# ---------------------------------------------------------------------------
# Manufacturing preview command
# ---------------------------------------------------------------------------


async def test_preview_returns_the_artifact_object(tmp_path: Path) -> None:
    argv = _script(
        tmp_path,
        "import json, sys\n"
        "source = sys.stdin.read()\n"
        "print(json.dumps({'pcb_svg': '<svg/>', 'chars': len(source)}))\n",
    )

    artifacts = await CommandPreview(argv).render("<board />")

    assert artifacts == {"pcb_svg": "<svg/>", "chars": 9}


async def test_preview_failures_raise(tmp_path: Path) -> None:
    failing = _script(
        tmp_path,
        "import sys\nsys.stdin.read()\nsys.stderr.write('renderer crashed')\nsys.exit(2)\n",
    )
    with pytest.raises(PreviewCommandError, match="renderer crashed"):
        await CommandPreview(failing).render("<board />")

    listing = _script(tmp_path, "import sys\nsys.stdin.read()\nprint('[1, 2]')\n")
    with pytest.raises(PreviewCommandError, match="did not print a JSON object"):
        await CommandPreview(listing).render("<board />")


def test_parse_preview_output_reports_bare_status() -> None:
    with pytest.raises(PreviewCommandError, match="Preview failed with status 5"):
        parse_preview_output("", "", 5)
    assert parse_preview_output('{"gerbers": []}', "", 0) == {"gerbers": []}


async def test_preview_missing_executable_is_unavailable(tmp_path: Path) -> None:
    preview = CommandPreview([str(tmp_path / "no-such-renderer")])

    with pytest.raises(CollaboratorUnavailableError) as excinfo:
        await preview.render("<board />")

    assert excinfo.value.collaborator == "preview"
    with pytest.raises(ValueError, match="argv: must be a non-empty list"):
        CommandPreview([""])
