"""Stable constants shared across engine planes."""

from __future__ import annotations

from typing import Final

# Schema versions for persisted or streamed contracts.
CONFIG_SCHEMA_VERSION: Final[int] = 1
TAXONOMY_VERSION: Final[int] = 1
EVENT_SCHEMA_VERSION: Final[int] = 1

# Diagnostic severity ordinal bounds (higher is worse).
SEVERITY_MIN: Final[int] = 0
SEVERITY_MAX: Final[int] = 10
PREFLIGHT_SEVERITY: Final[int] = 9
COMPILE_FAILURE_SEVERITY: Final[int] = 10

# Loop defaults.
DEFAULT_ATTEMPT_BUDGET: Final[int] = 3
DEFAULT_ATTEMPT_TIMEOUT_SECONDS: Final[float] = 60.0

# Readiness scoring.
READINESS_MIN: Final[int] = 0
READINESS_MAX: Final[int] = 100
DEFAULT_EXPORT_MIN_READINESS: Final[int] = 70

# Score penalties used to rank attempts against each other.
DIAGNOSTIC_SCORE_WEIGHT: Final[int] = 100
COMPILE_FAILURE_SCORE_PENALTY: Final[int] = 5000

CLEAN_SET_SIGNATURE: Final[str] = "clean"
COMPILE_MESSAGE_SIGNATURE_LIMIT: Final[int] = 300
REVIEW_MESSAGE_SIGNATURE_LIMIT: Final[int] = 160

__all__ = [
    "CLEAN_SET_SIGNATURE",
    "COMPILE_FAILURE_SCORE_PENALTY",
    "COMPILE_FAILURE_SEVERITY",
    "COMPILE_MESSAGE_SIGNATURE_LIMIT",
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_ATTEMPT_BUDGET",
    "DEFAULT_ATTEMPT_TIMEOUT_SECONDS",
    "DEFAULT_EXPORT_MIN_READINESS",
    "DIAGNOSTIC_SCORE_WEIGHT",
    "EVENT_SCHEMA_VERSION",
    "PREFLIGHT_SEVERITY",
    "READINESS_MAX",
    "READINESS_MIN",
    "REVIEW_MESSAGE_SIGNATURE_LIMIT",
    "SEVERITY_MAX",
    "SEVERITY_MIN",
    "TAXONOMY_VERSION",
]
