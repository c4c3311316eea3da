"""Turn compiled circuit records, reviewer findings and compile failures into diagnostics."""

from __future__ import annotations

import math
import re
from collections.abc import Iterable, Mapping
from typing import Final

from circuitforge_repair.constants import (
    COMPILE_FAILURE_SEVERITY,
    COMPILE_MESSAGE_SIGNATURE_LIMIT,
    REVIEW_MESSAGE_SIGNATURE_LIMIT,
    SEVERITY_MAX,
    SEVERITY_MIN,
)
from circuitforge_repair.domain.diagnostics import (
    DiagnosticSource,
    ValidationDiagnostic,
    dedupe_diagnostics,
)
from circuitforge_repair.domain.taxonomy import DiagnosticCategory, resolve_category

DEFAULT_COMPILE_FAILURE_MESSAGE: Final[str] = "Compilation failed with unknown error"
REVIEW_FALLBACK_CATEGORY: Final[str] = "kicad_finding"

_ERC_LEVEL_SEVERITY: Final[dict[str, int]] = {"error": 9, "warning": 7, "info": 4}
_ERC_DEFAULT_SEVERITY: Final[int] = 6
_POWER_NET_RE: Final[re.Pattern[str]] = re.compile(r"\b(gnd|vcc|vdd|vss|3v3|5v)\b", re.IGNORECASE)
_POWER_DUPLICATE_CAP: Final[int] = 4
_DUPLICATE_CAP: Final[int] = 6


def extract_circuit_diagnostics(records: Iterable[object]) -> list[ValidationDiagnostic]:
    """Collect error records from a compiled circuit representation.

    A record counts when its ``error_type`` (or ``type``) contains ``error``.
    """

    diagnostics: list[ValidationDiagnostic] = []
    for record in records:
        if not isinstance(record, Mapping):
            continue
        raw_category = record.get("error_type") or record.get("type")
        if not isinstance(raw_category, str) or "error" not in raw_category.lower():
            continue
        category = raw_category.strip().lower()
        message = record.get("message")
        if not isinstance(message, str) or not message.strip():
            message = f"Validation error: {category}"
        diagnostics.append(
            ValidationDiagnostic(
                category=category,
                message=message,
                signature=_record_signature(category, record),
                severity=compiler_severity(category),
                source=DiagnosticSource.COMPILER,
            )
        )
    return dedupe_diagnostics(diagnostics)


def compiler_severity(category: str) -> int:
    """Severity for a compiler-reported category."""

    lowered = category.lower()
    if "short" in lowered:
        severity = 7
    elif any(keyword in lowered for keyword in ("trace", "via", "clearance")):
        severity = 6
    else:
        severity = 5
    if "kicad" in lowered:
        severity += 1
    return severity


def normalize_review_findings(findings: Iterable[object]) -> list[ValidationDiagnostic]:
    """Normalize reviewer findings; duplicates keep the highest severity."""

    diagnostics: list[ValidationDiagnostic] = []
    for finding in findings:
        diagnostic = _review_finding(finding)
        if diagnostic is not None:
            diagnostics.append(diagnostic)
    return dedupe_diagnostics(diagnostics, prefer_higher_severity=True)


def compile_failure_diagnostic(message: str | None) -> ValidationDiagnostic:
    text = (message or "").strip() or DEFAULT_COMPILE_FAILURE_MESSAGE
    return ValidationDiagnostic(
        category=DiagnosticCategory.COMPILE_ERROR.value,
        message=text,
        signature=f"compile_error|{text[:COMPILE_MESSAGE_SIGNATURE_LIMIT]}",
        severity=COMPILE_FAILURE_SEVERITY,
        source=DiagnosticSource.LOOP,
    )


def attempt_timeout_diagnostic(timeout_seconds: float) -> ValidationDiagnostic:
    return ValidationDiagnostic(
        category=DiagnosticCategory.ATTEMPT_TIMEOUT.value,
        message=f"Attempt exceeded its time budget of {timeout_seconds:g} seconds.",
        signature="attempt_timeout",
        severity=COMPILE_FAILURE_SEVERITY,
        source=DiagnosticSource.LOOP,
    )


def _record_signature(category: str, record: Mapping[object, object]) -> str:
    ids: list[str] = []
    for key, value in record.items():
        if not isinstance(key, str):
            continue
        if key.endswith("_id") and isinstance(value, str) and value:
            ids.append(value)
        elif key.endswith("_ids") and isinstance(value, list):
            ids.extend(item for item in value if isinstance(item, str) and item)
    parts = [category, *sorted(ids)]
    center = record.get("center") or record.get("pcb_center")
    if isinstance(center, Mapping):
        x, y = center.get("x"), center.get("y")
        if _is_number(x) and _is_number(y):
            parts.append(f"{float(x):.2f},{float(y):.2f}")  # type: ignore[arg-type]
    return "|".join(parts)


def _review_finding(finding: object) -> ValidationDiagnostic | None:
    if isinstance(finding, str):
        text = finding.strip()
        if not text:
            return None
        return _review_diagnostic(REVIEW_FALLBACK_CATEGORY, text, _ERC_DEFAULT_SEVERITY)
    if not isinstance(finding, Mapping):
        return None

    category = _first_str(finding, "category", "type", "code") or REVIEW_FALLBACK_CATEGORY
    message = _first_str(finding, "message", "detail") or category
    level = _first_str(finding, "level", "severity")
    raw_severity = finding.get("severity")
    if level is not None:
        severity = _ERC_LEVEL_SEVERITY.get(level.lower(), _ERC_DEFAULT_SEVERITY)
    elif _is_number(raw_severity):
        severity = int(raw_severity)  # type: ignore[call-overload]
    else:
        severity = _keyword_severity(category)
    return _review_diagnostic(category, message, severity)


def _review_diagnostic(category: str, message: str, severity: int) -> ValidationDiagnostic:
    severity = max(SEVERITY_MIN, min(SEVERITY_MAX, severity))
    if resolve_category(category, message) is DiagnosticCategory.DUPLICATE_REFERENCE:
        cap = _POWER_DUPLICATE_CAP if _POWER_NET_RE.search(message) else _DUPLICATE_CAP
        severity = min(severity, cap)
    normalized = category.strip().lower()
    return ValidationDiagnostic(
        category=normalized,
        message=message,
        signature=f"{normalized}|{message[:REVIEW_MESSAGE_SIGNATURE_LIMIT]}",
        severity=severity,
        source=DiagnosticSource.REVIEWER,
    )


def _keyword_severity(category: str) -> int:
    lowered = category.lower()
    if any(keyword in lowered for keyword in ("short", "collision", "error")):
        return 9
    if any(keyword in lowered for keyword in ("clearance", "overlap", "spacing")):
        return 7
    if any(keyword in lowered for keyword in ("warning", "dfm", "manufactur")):
        return 6
    return 5


def _first_str(mapping: Mapping[object, object], *keys: str) -> str | None:
    for key in keys:
        value = mapping.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _is_number(value: object) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(float(value))
    )


__all__ = [
    "DEFAULT_COMPILE_FAILURE_MESSAGE",
    "attempt_timeout_diagnostic",
    "compile_failure_diagnostic",
    "compiler_severity",
    "extract_circuit_diagnostics",
    "normalize_review_findings",
]
