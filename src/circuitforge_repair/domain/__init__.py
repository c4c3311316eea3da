"""
circuitforge-repair — domain layer

File: src/circuitforge_repair/domain/__init__.py
Last updated: 2026-10-19

Purpose
- Value types shared across planes: diagnostics, taxonomy, loop records, events.

What should be included in this file
- Re-export of core domain entities for convenience.
- Keep domain layer free of IO side effects.
"""

from circuitforge_repair.domain.diagnostics import (
    DiagnosticSource,
    ValidationDiagnostic,
    dedupe_diagnostics,
    diagnostics_score,
    diagnostics_set_signature,
)
from circuitforge_repair.domain.events import ProgressEvent, ProgressEventType
from circuitforge_repair.domain.models import (
    AttemptStatus,
    ComponentValueChange,
    CongestionScope,
    FinalSummary,
    IterationDiff,
    LoopOutcome,
    RepairPlan,
    RepairResult,
    RepairStrategy,
    StopReason,
    export_allowed,
)
from circuitforge_repair.domain.taxonomy import (
    DiagnosticCategory,
    DiagnosticFamily,
    Handling,
    resolve_category,
)

__all__ = [
    "AttemptStatus",
    "ComponentValueChange",
    "CongestionScope",
    "DiagnosticCategory",
    "DiagnosticFamily",
    "DiagnosticSource",
    "FinalSummary",
    "Handling",
    "IterationDiff",
    "LoopOutcome",
    "ProgressEvent",
    "ProgressEventType",
    "RepairPlan",
    "RepairResult",
    "RepairStrategy",
    "StopReason",
    "ValidationDiagnostic",
    "dedupe_diagnostics",
    "diagnostics_score",
    "diagnostics_set_signature",
    "export_allowed",
    "resolve_category",
]
