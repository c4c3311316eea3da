"""
circuitforge-repair — diagnostic value objects

File: src/circuitforge_repair/domain/diagnostics.py
Last updated: 2026-10-19

Purpose
- Canonical immutable representation of one validation finding plus the set-level
  helpers the loop uses to compare attempts.

Functional requirements
- ``family`` and ``handling`` are unset before classification and set together after.
- Severity is an ordinal in ``[SEVERITY_MIN, SEVERITY_MAX]``; higher is worse.
- Set signatures and scores are deterministic for a given multiset of diagnostics.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, replace
from enum import StrEnum
from typing import TYPE_CHECKING

from circuitforge_repair.constants import (
    CLEAN_SET_SIGNATURE,
    COMPILE_FAILURE_SCORE_PENALTY,
    DIAGNOSTIC_SCORE_WEIGHT,
    SEVERITY_MAX,
    SEVERITY_MIN,
)
from circuitforge_repair.domain.taxonomy import (
    DiagnosticCategory,
    DiagnosticFamily,
    Handling,
    normalize_category,
    resolve_category,
)

if TYPE_CHECKING:
    from typing import Any


class DiagnosticSource(StrEnum):
    """Where a diagnostic was produced."""

    DESIGN_SOURCE = "design_source"
    COMPILER = "compiler"
    REVIEWER = "reviewer"
    LOOP = "loop"


@dataclass(frozen=True, slots=True)
class ValidationDiagnostic:
    """One detected defect in a circuit design."""

    category: str
    message: str
    signature: str
    severity: int
    source: DiagnosticSource
    family: DiagnosticFamily | None = None
    handling: Handling | None = None

    def __post_init__(self) -> None:
        category = normalize_category(_as_str(self.category, "ValidationDiagnostic.category"))
        if not category:
            raise ValueError("ValidationDiagnostic.category: must be a non-empty string")
        object.__setattr__(self, "category", category)
        _as_str(self.message, "ValidationDiagnostic.message")
        if not _as_str(self.signature, "ValidationDiagnostic.signature").strip():
            raise ValueError("ValidationDiagnostic.signature: must be a non-empty string")
        if isinstance(self.severity, bool) or not isinstance(self.severity, int):
            raise ValueError("ValidationDiagnostic.severity: expected integer")
        if not SEVERITY_MIN <= self.severity <= SEVERITY_MAX:
            raise ValueError(
                f"ValidationDiagnostic.severity: must be between {SEVERITY_MIN} and {SEVERITY_MAX}"
            )
        object.__setattr__(self, "source", DiagnosticSource(self.source))
        if (self.family is None) != (self.handling is None):
            raise ValueError("ValidationDiagnostic: family and handling must be assigned together")
        if self.family is not None:
            object.__setattr__(self, "family", DiagnosticFamily(self.family))
        if self.handling is not None:
            object.__setattr__(self, "handling", Handling(self.handling))

    @property
    def is_classified(self) -> bool:
        return self.handling is not None

    @property
    def is_blocking(self) -> bool:
        return self.handling is Handling.MUST_REPAIR

    def resolved_category(self) -> DiagnosticCategory:
        return resolve_category(self.category, self.message)

    def classified(self, family: DiagnosticFamily, handling: Handling) -> ValidationDiagnostic:
        """Return a copy annotated with ``family`` and ``handling``."""

        return replace(self, family=family, handling=handling)

    def to_dict(self) -> dict[str, object]:
        return {
            "category": self.category,
            "family": None if self.family is None else self.family.value,
            "handling": None if self.handling is None else self.handling.value,
            "message": self.message,
            "severity": self.severity,
            "signature": self.signature,
            "source": self.source.value,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"), ensure_ascii=False)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> ValidationDiagnostic:
        """Build a diagnostic from serialized or loosely-shaped input."""

        if not isinstance(data, Mapping):
            raise ValueError(f"diagnostic must be an object, got {type(data).__name__}")
        category = _as_str(data.get("category"), "diagnostic.category")
        message = _as_str(data.get("message", ""), "diagnostic.message")
        signature = data.get("signature")
        if signature is None:
            signature = f"{normalize_category(category)}|{message}"
        severity = data.get("severity", 5)
        source = data.get("source", DiagnosticSource.COMPILER.value)
        family = data.get("family")
        handling = data.get("handling")
        return cls(
            category=category,
            message=message,
            signature=_as_str(signature, "diagnostic.signature"),
            severity=severity,
            source=DiagnosticSource(source),
            family=None if family is None else DiagnosticFamily(family),
            handling=None if handling is None else Handling(handling),
        )


def dedupe_diagnostics(
    diagnostics: Iterable[ValidationDiagnostic],
    *,
    prefer_higher_severity: bool = False,
) -> list[ValidationDiagnostic]:
    """Drop repeated signatures, keeping first-seen order.

    With ``prefer_higher_severity`` a later duplicate replaces the kept entry when its
    severity is strictly higher.
    """

    kept: dict[str, ValidationDiagnostic] = {}
    for diagnostic in diagnostics:
        existing = kept.get(diagnostic.signature)
        if existing is None:
            kept[diagnostic.signature] = diagnostic
        elif prefer_higher_severity and diagnostic.severity > existing.severity:
            kept[diagnostic.signature] = diagnostic
    return list(kept.values())


def diagnostics_set_signature(diagnostics: Iterable[ValidationDiagnostic]) -> str:
    """Order-independent fingerprint of a diagnostic set."""

    signatures = sorted(diagnostic.signature for diagnostic in diagnostics)
    if not signatures:
        return CLEAN_SET_SIGNATURE
    return "||".join(signatures)


def diagnostics_score(
    diagnostics: Iterable[ValidationDiagnostic],
    *,
    compile_failed: bool = False,
) -> int:
    """Badness score used to rank attempts; lower is better."""

    score = sum(diagnostic.severity * DIAGNOSTIC_SCORE_WEIGHT for diagnostic in diagnostics)
    if compile_failed:
        score += COMPILE_FAILURE_SCORE_PENALTY
    return score


def _as_str(value: object, path: str) -> str:
    if not isinstance(value, str):
        raise ValueError(f"{path}: expected string")
    return value


__all__ = [
    "DiagnosticSource",
    "ValidationDiagnostic",
    "dedupe_diagnostics",
    "diagnostics_score",
    "diagnostics_set_signature",
]
