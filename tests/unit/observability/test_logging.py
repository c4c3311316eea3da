"""
circuitforge-repair — unit tests for observability logging

File: tests/unit/observability/test_logging.py
Last updated: 2026-10-19

Purpose
- Validate structured JSON logging with redaction, correlation metadata, and queue-backed reliability.

What this test file should cover
- JSON line validity and redaction guarantees.
- Correlation field propagation, including structlog bound fields.
- Multi-threaded logging stability and queue drain on shutdown.
"""

from __future__ import annotations

import json
import logging
import logging.handlers
import threading
from typing import TYPE_CHECKING
from uuid import uuid4

import pytest
import structlog

from circuitforge_repair.observability.logging import (
    LoggingConfig,
    correlation_scope,
    default_log_redactor,
    get_active_logging_handle,
    get_correlation_context,
    setup_logging,
    setup_structured_logging,
    shutdown_logging,
)

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path


@pytest.fixture(autouse=True)
def _cleanup_logging() -> Iterator[None]:
    yield
    shutdown_logging()


def _logger_name() -> str:
    return f"circuitforge_repair.tests.logging.{uuid4().hex}"


def _read_json_lines(path: Path) -> list[dict[str, object]]:
    lines = path.read_text(encoding="utf-8").splitlines()
    return [json.loads(line) for line in lines]


def test_json_logging_redacts_secrets_and_preserves_correlation_fields(tmp_path: Path) -> None:
    logger_name = _logger_name()
    handle = setup_structured_logging(
        LoggingConfig(
            session_id="ses-logging-redaction",
            base_log_dir=tmp_path,
            logger_name=logger_name,
        )
    )
    logger = logging.getLogger(logger_name)

    with correlation_scope(attempt=2, strategy="rebuild_traces"):
        logger.info(
            "compiler said token=tok-FAKE and api_key=sk-FAKE123456789012345",
            extra={"nested": {"password": "hunter2", "safe": "ok"}},
        )

    shutdown_logging(handle)

    assert handle.log_path is not None
    assert handle.log_path.name == "convergence.jsonl"
    assert handle.log_path.parent.name == "ses-logging-redaction"
    parsed = _read_json_lines(handle.log_path)
    assert len(parsed) == 1
    first = parsed[0]
    assert first["session_id"] == "ses-logging-redaction"
    assert first["attempt"] == "2"
    assert first["strategy"] == "rebuild_traces"
    assert first["fields"] == {"nested": {"password": "***REDACTED***", "safe": "ok"}}

    line = handle.log_path.read_text(encoding="utf-8")
    assert "tok-FAKE" not in line
    assert "sk-FAKE" not in line
    assert "hunter2" not in line


def test_correlation_scope_restores_previous_context() -> None:
    assert get_correlation_context() == {}

    with correlation_scope(session_id="ses-outer"):
        with correlation_scope(attempt=1, session_id=None):
            assert get_correlation_context() == {"attempt": "1"}
        assert get_correlation_context() == {"session_id": "ses-outer"}

    assert get_correlation_context() == {}


def test_setup_logging_wrapper_uses_observability_config(tmp_path: Path) -> None:
    logger_name = _logger_name()
    logger = setup_logging(
        {
            "log_level": "INFO",
            "log_format": "json",
            "log_dir": str(tmp_path),
            "redact_secrets": True,
        },
        session_id="ses-wrapper",
        logger_name=logger_name,
    )

    logger.debug("filtered out")
    logger.info("hello", extra={"token": "t-123"})
    shutdown_logging()

    files = list((tmp_path / "ses-wrapper").glob("*.jsonl"))
    assert files
    content = files[0].read_text(encoding="utf-8")
    assert "t-123" not in content
    assert "filtered out" not in content


def test_empty_log_dir_disables_file_sink(tmp_path: Path) -> None:
    setup_logging(
        {"log_dir": ""},
        session_id="ses-no-file",
        logger_name=_logger_name(),
    )

    handle = get_active_logging_handle()
    assert handle is not None
    assert handle.log_path is None
    assert not list(tmp_path.iterdir())


def test_structlog_decision_logs_reach_the_session_file(tmp_path: Path) -> None:
    logger_name = _logger_name()
    handle = setup_structured_logging(
        LoggingConfig(
            session_id="ses-structlog",
            base_log_dir=tmp_path,
            logger_name=logger_name,
        )
    )

    log = structlog.get_logger(f"{logger_name}.controller")
    log.info("strategy_selected", attempt=3, strategy="normal", reason="first attempt")

    shutdown_logging(handle)

    assert handle.log_path is not None
    parsed = _read_json_lines(handle.log_path)
    assert len(parsed) == 1
    entry = parsed[0]
    assert entry["message"] == "strategy_selected"
    assert entry["attempt"] == "3"
    assert entry["strategy"] == "normal"
    assert entry["fields"] == {"reason": "first attempt"}


def test_multithreaded_logging_produces_valid_json_lines(tmp_path: Path) -> None:
    logger_name = _logger_name()
    handle = setup_structured_logging(
        LoggingConfig(
            session_id="ses-threaded",
            base_log_dir=tmp_path,
            logger_name=logger_name,
            queue_size=4096,
        )
    )
    logger = logging.getLogger(logger_name)

    total_threads = 8
    per_thread = 40

    def worker(thread_idx: int) -> None:
        for i in range(per_thread):
            logger.info(
                f"thread={thread_idx} index={i} token=tok-secret-{thread_idx}-{i}",
                extra={"api_key": f"sk-FAKE-{thread_idx}-{i}"},
            )

    threads = [threading.Thread(target=worker, args=(idx,)) for idx in range(total_threads)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    shutdown_logging(handle)

    assert handle.log_path is not None
    lines = handle.log_path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == total_threads * per_thread
    for line in lines:
        parsed = json.loads(line)
        assert "message" in parsed
        assert "tok-secret" not in line
        assert "sk-FAKE" not in line


def test_queue_handler_non_blocking_and_shutdown_flushes(tmp_path: Path) -> None:
    logger_name = _logger_name()
    handle = setup_structured_logging(
        LoggingConfig(
            session_id="ses-flush",
            base_log_dir=tmp_path,
            logger_name=logger_name,
            queue_size=10_000,
        )
    )
    logger = logging.getLogger(logger_name)

    queue_handlers = [h for h in logger.handlers if isinstance(h, logging.handlers.QueueHandler)]
    assert queue_handlers, "expected queue-backed non-blocking logging"

    expected = 300
    for i in range(expected):
        logger.info("message %s", i)

    shutdown_logging(handle)

    assert handle.log_path is not None
    lines = handle.log_path.read_text(encoding="utf-8").splitlines()
    assert handle.dropped_records == 0
    assert len(lines) == expected
    assert handle.is_shutdown


def test_setup_rejects_invalid_configuration(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="session_id must not be empty"):
        setup_structured_logging(LoggingConfig(session_id=" ", base_log_dir=tmp_path))
    with pytest.raises(ValueError, match="unsupported log_format"):
        setup_structured_logging(
            LoggingConfig(session_id="ses-x", base_log_dir=tmp_path, log_format="xml")
        )
    with pytest.raises(ValueError, match="unsupported logging level"):
        setup_structured_logging(
            LoggingConfig(session_id="ses-x", base_log_dir=tmp_path, level="LOUD")
        )


def test_default_redactor_handles_nested_values_and_bearer_tokens() -> None:
    redacted = default_log_redactor(
        {
            "headers": {"Authorization": "Bearer abc.def"},
            "notes": ["Bearer xyz123", "plain"],
            "count": 3,
        }
    )

    assert redacted == {
        "headers": {"Authorization": "***REDACTED***"},
        "notes": ["Bearer ***REDACTED***", "plain"],
        "count": 3,
    }
