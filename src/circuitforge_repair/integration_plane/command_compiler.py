"""
circuitforge-repair — subprocess design compiler and preview

File: src/circuitforge_repair/integration_plane/command_compiler.py
Last updated: 2026-10-19

Purpose
- Provide a ``DesignCompiler`` that pipes design source to an external command and
  reads the compiled circuit records from its stdout.
- Provide a ``ManufacturingPreview`` that pipes a converged design to a renderer
  command and reads a JSON object of artifacts.

Functional requirements
- Accepts ``{"circuit_json": [...]}`` or a bare JSON array on stdout.
- Non-zero exit codes, timeouts and unparseable output become ``CompileFailure``
  with the most specific message available (``details``, ``error``, ``message``,
  then raw output).
- A command that cannot be started raises ``CollaboratorUnavailableError``.
- A preview command that exits non-zero or prints anything but a JSON object raises
  ``PreviewCommandError``.

Non-functional requirements
- Never blocks the event loop; a timed-out process is killed and reaped.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Mapping, Sequence
from contextlib import suppress
from typing import Any, Final

import structlog

from circuitforge_repair.integration_plane.collaborators import (
    CollaboratorUnavailableError,
    CompileContext,
    CompiledCircuit,
    CompileFailure,
    CompileOutcome,
)

FAILURE_MESSAGE_LIMIT: Final[int] = 1500


class _CommandTimeoutError(Exception):
    def __init__(self, *, stdout: bytes, stderr: bytes) -> None:
        super().__init__("command timed out")
        self.stdout = stdout
        self.stderr = stderr


class CommandCompiler:
    """Compile design source by running ``argv`` with the source on stdin."""

    def __init__(
        self,
        argv: Sequence[str],
        *,
        timeout_seconds: float | None = None,
        cwd: str | None = None,
        logger: Any | None = None,
    ) -> None:
        if not argv or not all(isinstance(item, str) and item for item in argv):
            raise ValueError("CommandCompiler.argv: must be a non-empty list of strings")
        if timeout_seconds is not None and timeout_seconds <= 0:
            raise ValueError("CommandCompiler.timeout_seconds: must be > 0")
        self._argv = tuple(argv)
        self._timeout_seconds = timeout_seconds
        self._cwd = cwd
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def argv(self) -> tuple[str, ...]:
        return self._argv

    async def compile(self, source: str, *, context: CompileContext) -> CompileOutcome:
        try:
            process = await asyncio.create_subprocess_exec(
                *self._argv,
                cwd=self._cwd,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise CollaboratorUnavailableError("compiler", f"{self._argv[0]}: {exc}") from exc

        try:
            stdout_bytes, stderr_bytes = await _communicate_with_timeout(
                process=process,
                stdin_bytes=source.encode("utf-8"),
                timeout_seconds=self._timeout_seconds,
            )
        except _CommandTimeoutError:
            self._logger.warning(
                "compile_command_timed_out",
                session_id=context.session_id,
                attempt=context.attempt,
                timeout_seconds=self._timeout_seconds,
            )
            return CompileFailure(
                message=f"compile command timed out after {self._timeout_seconds:.3f}s",
                transient=True,
            )

        stdout_text = _normalize_output_text(stdout_bytes)
        stderr_text = _normalize_output_text(stderr_bytes)
        exit_code = process.returncode
        self._logger.debug(
            "compile_command_finished",
            session_id=context.session_id,
            attempt=context.attempt,
            exit_code=exit_code,
            stdout_chars=len(stdout_text),
        )
        return parse_compile_output(stdout_text, stderr_text, exit_code)


class PreviewCommandError(RuntimeError):
    """The preview command ran but did not produce an artifact object."""


class CommandPreview:
    """Render a manufacturing preview by running ``argv`` with the source on stdin.

    The loop owns the preview deadline; cancelling ``render`` kills the process.
    """

    def __init__(
        self,
        argv: Sequence[str],
        *,
        cwd: str | None = None,
        logger: Any | None = None,
    ) -> None:
        if not argv or not all(isinstance(item, str) and item for item in argv):
            raise ValueError("CommandPreview.argv: must be a non-empty list of strings")
        self._argv = tuple(argv)
        self._cwd = cwd
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def argv(self) -> tuple[str, ...]:
        return self._argv

    async def render(self, source: str) -> Mapping[str, object]:
        try:
            process = await asyncio.create_subprocess_exec(
                *self._argv,
                cwd=self._cwd,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise CollaboratorUnavailableError("preview", f"{self._argv[0]}: {exc}") from exc

        stdout_bytes, stderr_bytes = await _communicate_with_timeout(
            process=process,
            stdin_bytes=source.encode("utf-8"),
            timeout_seconds=None,
        )
        stdout_text = _normalize_output_text(stdout_bytes)
        exit_code = process.returncode
        self._logger.debug("preview_command_finished", exit_code=exit_code)
        return parse_preview_output(stdout_text, _normalize_output_text(stderr_bytes), exit_code)


def parse_preview_output(stdout: str, stderr: str, exit_code: int | None) -> Mapping[str, object]:
    payload: object = None
    with suppress(json.JSONDecodeError):
        payload = json.loads(stdout) if stdout.strip() else None
    if exit_code != 0:
        status = exit_code if exit_code is not None else -1
        raise PreviewCommandError(
            _failure_message(payload, stderr or stdout, status, action="Preview")
        )
    if not isinstance(payload, Mapping):
        raise PreviewCommandError("preview command did not print a JSON object")
    return dict(payload)


def parse_compile_output(stdout: str, stderr: str, exit_code: int | None) -> CompileOutcome:
    """Interpret compiler output the way the hosted compile endpoint is interpreted."""

    payload: object = None
    with suppress(json.JSONDecodeError):
        payload = json.loads(stdout) if stdout.strip() else None

    if exit_code == 0:
        records: object = None
        if isinstance(payload, Mapping):
            records = payload.get("circuit_json")
        elif isinstance(payload, list):
            records = payload
        if isinstance(records, list):
            return CompiledCircuit(
                records=tuple(item for item in records if isinstance(item, Mapping))
            )

    status = exit_code if exit_code is not None else -1
    return CompileFailure(
        message=_failure_message(payload, stderr or stdout, status),
        status=exit_code,
    )


def _failure_message(
    payload: object, fallback_text: str, status: int, *, action: str = "Compile"
) -> str:
    if isinstance(payload, Mapping):
        for key in ("details", "error", "message"):
            value = payload.get(key)
            if isinstance(value, str) and value.strip():
                return value
    trimmed = fallback_text.strip()
    if not trimmed:
        return f"{action} failed with status {status}"
    return trimmed[:FAILURE_MESSAGE_LIMIT]


async def _communicate_with_timeout(
    *,
    process: asyncio.subprocess.Process,
    stdin_bytes: bytes | None,
    timeout_seconds: float | None,
) -> tuple[bytes, bytes]:
    try:
        if timeout_seconds is None:
            return await process.communicate(stdin_bytes)
        return await asyncio.wait_for(process.communicate(stdin_bytes), timeout=timeout_seconds)
    except TimeoutError as exc:
        with suppress(ProcessLookupError):
            process.kill()
        stdout_bytes, stderr_bytes = await process.communicate()
        raise _CommandTimeoutError(stdout=stdout_bytes, stderr=stderr_bytes) from exc
    except asyncio.CancelledError:
        with suppress(ProcessLookupError):
            process.kill()
        await process.communicate()
        raise


def _normalize_output_text(raw: bytes) -> str:
    text = raw.decode("utf-8", errors="replace")
    return text.replace("\r\n", "\n").replace("\r", "\n")


__all__ = [
    "CommandCompiler",
    "CommandPreview",
    "PreviewCommandError",
    "parse_compile_output",
    "parse_preview_output",
]
