"""Frozen loop records with strict validation and canonical serialization."""

from __future__ import annotations

import json
import math
from collections.abc import Mapping
from dataclasses import dataclass, fields, is_dataclass
from enum import Enum, StrEnum
from typing import NoReturn, TypeVar, cast

from circuitforge_repair.constants import READINESS_MAX, READINESS_MIN
from circuitforge_repair.domain.taxonomy import DiagnosticFamily

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

TModel = TypeVar("TModel", bound="CanonicalModel")


class RepairStrategy(StrEnum):
    NORMAL = "normal"
    STRUCTURAL_TRACE_REBUILD = "structural_trace_rebuild"
    STRUCTURAL_LAYOUT_SPREAD = "structural_layout_spread"
    TARGETED_CONGESTION_RELIEF = "targeted_congestion_relief"


class CongestionScope(StrEnum):
    NONE = "none"
    LOCALIZED = "localized"
    GLOBAL = "global"


class LoopOutcome(StrEnum):
    """Terminal outcome of one convergence run."""

    CONVERGED = "converged"
    EXHAUSTED = "exhausted"
    CANCELLED = "cancelled"
    ERROR = "error"


class StopReason(StrEnum):
    CLEAN = "clean"
    MAX_ATTEMPTS = "max_attempts"
    STAGNANT_SIGNATURE = "stagnant_signature"
    CANCELLED = "cancelled"
    COLLABORATOR_UNAVAILABLE = "collaborator_unavailable"
    INTERNAL_ERROR = "internal_error"


class AttemptStatus(StrEnum):
    CLEAN = "clean"
    RETRYING = "retrying"
    FAILED = "failed"


class CanonicalModel:
    """Mixin for canonical dict/json serialization."""

    def to_dict(self) -> dict[str, JSONValue]:
        serialized = _serialize_value(self, self.__class__.__name__)
        if not isinstance(serialized, dict):
            _fail(self.__class__.__name__, "serialized model must be an object")
        return serialized

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"), ensure_ascii=False)


@dataclass(frozen=True, slots=True)
class RepairPlan(CanonicalModel):
    """Decision made for one attempt; never mutated after selection."""

    attempt: int
    auto_fixable_families: tuple[DiagnosticFamily, ...]
    should_demote_families: tuple[DiagnosticFamily, ...]
    must_repair_families: tuple[DiagnosticFamily, ...]
    strategy: RepairStrategy
    escalated_from: RepairStrategy | None = None
    congestion_scope: CongestionScope = CongestionScope.NONE

    def __post_init__(self) -> None:
        _as_int(self.attempt, "RepairPlan.attempt", minimum=0)
        buckets = (
            self.auto_fixable_families,
            self.should_demote_families,
            self.must_repair_families,
        )
        seen: set[DiagnosticFamily] = set()
        for bucket in buckets:
            overlap = seen.intersection(bucket)
            if overlap:
                _fail("RepairPlan", f"family assigned to more than one bucket: {sorted(overlap)}")
            seen.update(bucket)
        object.__setattr__(self, "strategy", RepairStrategy(self.strategy))


@dataclass(frozen=True, slots=True)
class RepairResult(CanonicalModel):
    """Outcome of applying one plan."""

    attempt: int
    blocking_before: int
    blocking_after: int
    demoted_count: int
    auto_fixed_count: int
    revalidated: bool
    applied_actions: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        _as_int(self.attempt, "RepairResult.attempt", minimum=0)
        _as_int(self.blocking_before, "RepairResult.blocking_before", minimum=0)
        _as_int(self.blocking_after, "RepairResult.blocking_after", minimum=0)
        _as_int(self.demoted_count, "RepairResult.demoted_count", minimum=0)
        _as_int(self.auto_fixed_count, "RepairResult.auto_fixed_count", minimum=0)

    @property
    def improved(self) -> bool:
        return self.blocking_after < self.blocking_before


@dataclass(frozen=True, slots=True)
class ComponentValueChange(CanonicalModel):
    name: str
    before: str
    after: str


@dataclass(frozen=True, slots=True)
class IterationDiff(CanonicalModel):
    """Structural delta between the design before and after one attempt."""

    attempt: int
    added_components: tuple[str, ...]
    removed_components: tuple[str, ...]
    changed_component_values: tuple[ComponentValueChange, ...]
    trace_count_delta: int
    summary: str

    @property
    def is_empty(self) -> bool:
        return not (
            self.added_components
            or self.removed_components
            or self.changed_component_values
            or self.trace_count_delta
        )


@dataclass(frozen=True, slots=True)
class FinalSummary(CanonicalModel):
    """Terminal state of one loop run, produced exactly once."""

    outcome: LoopOutcome
    stop_reason: StopReason
    readiness_score: int
    diagnostics_count: int
    blocking_diagnostics_count: int
    warning_diagnostics_count: int
    unresolved_blockers: tuple[str, ...]
    unresolved_families: tuple[DiagnosticFamily, ...]
    attempts_used: int
    attempt_budget: int

    def __post_init__(self) -> None:
        object.__setattr__(self, "outcome", LoopOutcome(self.outcome))
        object.__setattr__(self, "stop_reason", StopReason(self.stop_reason))
        score = _as_int(self.readiness_score, "FinalSummary.readiness_score", minimum=READINESS_MIN)
        if score > READINESS_MAX:
            _fail("FinalSummary.readiness_score", f"must be <= {READINESS_MAX}")
        budget = _as_int(self.attempt_budget, "FinalSummary.attempt_budget", minimum=1)
        used = _as_int(self.attempts_used, "FinalSummary.attempts_used", minimum=0)
        if used > budget:
            _fail("FinalSummary.attempts_used", f"must be <= attempt_budget ({budget})")
        _as_int(self.diagnostics_count, "FinalSummary.diagnostics_count", minimum=0)
        _as_int(
            self.blocking_diagnostics_count, "FinalSummary.blocking_diagnostics_count", minimum=0
        )
        _as_int(self.warning_diagnostics_count, "FinalSummary.warning_diagnostics_count", minimum=0)

    @property
    def converged(self) -> bool:
        return self.outcome is LoopOutcome.CONVERGED


def export_allowed(summary: FinalSummary, *, min_score: int) -> bool:
    """Gate for manufacturing export: no unresolved blockers and a passing score."""

    return summary.blocking_diagnostics_count == 0 and summary.readiness_score >= min_score


def _fail(path: str, message: str) -> NoReturn:
    raise ValueError(f"{path}: {message}")


def _as_int(value: object, path: str, *, minimum: int | None = None) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        _fail(path, f"expected integer, got {type(value).__name__}")
    if minimum is not None and value < minimum:
        _fail(path, f"must be >= {minimum}")
    return value


def _serialize_value(value: object, path: str) -> JSONValue:
    if value is None or isinstance(value, bool):
        return cast("JSONValue", value)
    if isinstance(value, Enum):
        return cast("JSONValue", value.value)
    if isinstance(value, (int, str)):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            _fail(path, "float values must be finite")
        return value
    if isinstance(value, (tuple, list)):
        return [_serialize_value(item, f"{path}[]") for item in value]
    if isinstance(value, Mapping):
        out: dict[str, JSONValue] = {}
        for key, item in value.items():
            if not isinstance(key, str):
                _fail(path, "dict keys must be strings")
            out[key] = _serialize_value(item, f"{path}.{key}")
        return out
    if is_dataclass(value):
        out_obj: dict[str, JSONValue] = {}
        for dataclass_field in fields(value):
            out_obj[dataclass_field.name] = _serialize_value(
                getattr(value, dataclass_field.name),
                f"{path}.{dataclass_field.name}",
            )
        return out_obj

    _fail(path, f"cannot serialize value of type {type(value).__name__}")


__all__ = [
    "AttemptStatus",
    "CanonicalModel",
    "ComponentValueChange",
    "CongestionScope",
    "FinalSummary",
    "IterationDiff",
    "JSONScalar",
    "JSONValue",
    "LoopOutcome",
    "RepairPlan",
    "RepairResult",
    "RepairStrategy",
    "StopReason",
    "export_allowed",
]
