"""Unit tests for loop records: validation, serialization and the export gate."""

from __future__ import annotations

import json

import pytest

from circuitforge_repair.domain.models import (
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
from circuitforge_repair.domain.taxonomy import DiagnosticFamily


def _summary(**overrides: object) -> FinalSummary:
    values: dict[str, object] = {
        "outcome": LoopOutcome.CONVERGED,
        "stop_reason": StopReason.CLEAN,
        "readiness_score": 100,
        "diagnostics_count": 0,
        "blocking_diagnostics_count": 0,
        "warning_diagnostics_count": 0,
        "unresolved_blockers": (),
        "unresolved_families": (),
        "attempts_used": 1,
        "attempt_budget": 3,
    }
    values.update(overrides)
    return FinalSummary(**values)  # type: ignore[arg-type]


def test_repair_plan_rejects_family_in_two_buckets() -> None:
    with pytest.raises(ValueError, match="family assigned to more than one bucket"):
        RepairPlan(
            attempt=0,
            auto_fixable_families=(DiagnosticFamily.OFF_GRID,),
            should_demote_families=(DiagnosticFamily.OFF_GRID,),
            must_repair_families=(),
            strategy=RepairStrategy.NORMAL,
        )


def test_repair_plan_coerces_strategy_and_serializes_canonically() -> None:
    plan = RepairPlan(
        attempt=1,
        auto_fixable_families=(),
        should_demote_families=(),
        must_repair_families=(DiagnosticFamily.SHORT,),
        strategy="structural_trace_rebuild",  # type: ignore[arg-type]
        escalated_from=RepairStrategy.NORMAL,
    )

    assert plan.strategy is RepairStrategy.STRUCTURAL_TRACE_REBUILD
    payload = json.loads(plan.to_json())
    assert payload["strategy"] == "structural_trace_rebuild"
    assert payload["escalated_from"] == "normal"
    assert payload["congestion_scope"] == CongestionScope.NONE.value
    assert payload["must_repair_families"] == ["short"]


def test_repair_plan_rejects_negative_attempt() -> None:
    with pytest.raises(ValueError, match="RepairPlan.attempt: must be >= 0"):
        RepairPlan(
            attempt=-1,
            auto_fixable_families=(),
            should_demote_families=(),
            must_repair_families=(),
            strategy=RepairStrategy.NORMAL,
        )


def test_repair_result_improved() -> None:
    improved = RepairResult(
        attempt=0,
        blocking_before=3,
        blocking_after=1,
        demoted_count=0,
        auto_fixed_count=0,
        revalidated=True,
    )
    flat = RepairResult(
        attempt=0,
        blocking_before=1,
        blocking_after=1,
        demoted_count=0,
        auto_fixed_count=0,
        revalidated=True,
    )
    assert improved.improved
    assert not flat.improved


def test_iteration_diff_is_empty() -> None:
    empty = IterationDiff(
        attempt=0,
        added_components=(),
        removed_components=(),
        changed_component_values=(),
        trace_count_delta=0,
        summary="no structural changes",
    )
    changed = IterationDiff(
        attempt=0,
        added_components=(),
        removed_components=(),
        changed_component_values=(ComponentValueChange(name="R1", before="1k", after="10k"),),
        trace_count_delta=0,
        summary="changed R1",
    )
    assert empty.is_empty
    assert not changed.is_empty
    assert changed.to_dict()["changed_component_values"] == [
        {"after": "10k", "before": "1k", "name": "R1"}
    ]


def test_final_summary_bounds() -> None:
    with pytest.raises(ValueError, match="readiness_score: must be <= 100"):
        _summary(readiness_score=101)
    with pytest.raises(ValueError, match="attempts_used: must be <= attempt_budget"):
        _summary(attempts_used=4)
    with pytest.raises(ValueError, match="attempt_budget: must be >= 1"):
        _summary(attempt_budget=0, attempts_used=0)


def test_final_summary_converged_flag_and_serialization() -> None:
    summary = _summary(
        outcome="exhausted",
        stop_reason="max_attempts",
        readiness_score=80,
        diagnostics_count=1,
        blocking_diagnostics_count=1,
        unresolved_blockers=("short: VCC shorted to GND",),
        unresolved_families=(DiagnosticFamily.SHORT,),
    )
    assert summary.outcome is LoopOutcome.EXHAUSTED
    assert not summary.converged
    assert summary.to_dict()["unresolved_families"] == ["short"]


def test_export_gate_requires_no_blockers_and_passing_score() -> None:
    assert export_allowed(_summary(readiness_score=70), min_score=70)
    assert not export_allowed(_summary(readiness_score=69), min_score=70)
    assert not export_allowed(
        _summary(readiness_score=90, blocking_diagnostics_count=1),
        min_score=70,
    )
