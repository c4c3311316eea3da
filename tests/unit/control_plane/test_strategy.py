"""Unit tests for repair strategy selection and congestion assessment."""

from __future__ import annotations

import pytest

from circuitforge_repair.control_plane.strategy import (
    assess_congestion,
    mentioned_components,
    select_strategy,
    strategy_candidates,
)
from circuitforge_repair.domain.diagnostics import DiagnosticSource, ValidationDiagnostic
from circuitforge_repair.domain.models import CongestionScope, RepairStrategy
from circuitforge_repair.domain.taxonomy import DiagnosticFamily
from circuitforge_repair.verification_plane.source_parser import parse_design

try:
    from hypothesis import given, settings
    from hypothesis import strategies as st
except ModuleNotFoundError:
    HYPOTHESIS_AVAILABLE = False
else:
    HYPOTHESIS_AVAILABLE = True

FOUR_PARTS = """\
<board>
  <chip name="U1" pcbX={0} />
  <chip name="U2" pcbX={2} />
  <chip name="U10" pcbX={4} />
  <resistor name="R1" pcbX={6} />
</board>
"""


def _overlap(message: str) -> ValidationDiagnostic:
    return ValidationDiagnostic(
        category="pcb_footprint_overlap_error",
        message=message,
        signature=f"pcb_footprint_overlap_error|{message}",
        severity=5,
        source=DiagnosticSource.COMPILER,
    )


def test_connectivity_uses_normal_repair_on_first_attempt() -> None:
    decision = select_strategy([DiagnosticFamily.SHORT], 0)

    assert decision.strategy is RepairStrategy.NORMAL
    assert decision.escalated_from is None


def test_connectivity_rebuilds_traces_from_second_attempt() -> None:
    decision = select_strategy([DiagnosticFamily.FLOATING_PIN, DiagnosticFamily.PLACEMENT_OVERLAP], 1)

    assert decision.strategy is RepairStrategy.STRUCTURAL_TRACE_REBUILD
    assert decision.candidates[:2] == (
        RepairStrategy.STRUCTURAL_TRACE_REBUILD,
        RepairStrategy.STRUCTURAL_LAYOUT_SPREAD,
    )


def test_layout_strategy_depends_on_congestion_scope() -> None:
    families = [DiagnosticFamily.PLACEMENT_OVERLAP]

    assert strategy_candidates(families, 0, congestion_scope=CongestionScope.GLOBAL) == (
        RepairStrategy.STRUCTURAL_LAYOUT_SPREAD,
        RepairStrategy.TARGETED_CONGESTION_RELIEF,
        RepairStrategy.NORMAL,
    )
    assert strategy_candidates(families, 0, congestion_scope=CongestionScope.LOCALIZED) == (
        RepairStrategy.TARGETED_CONGESTION_RELIEF,
        RepairStrategy.STRUCTURAL_LAYOUT_SPREAD,
        RepairStrategy.NORMAL,
    )


def test_strategy_that_did_not_help_is_not_reselected() -> None:
    decision = select_strategy(
        [DiagnosticFamily.SHORT],
        2,
        previous=RepairStrategy.STRUCTURAL_TRACE_REBUILD,
    )

    assert decision.strategy is RepairStrategy.NORMAL
    assert decision.escalated_from is RepairStrategy.STRUCTURAL_TRACE_REBUILD
    assert RepairStrategy.STRUCTURAL_TRACE_REBUILD not in decision.candidates


def test_no_blockers_selects_normal() -> None:
    assert select_strategy([], 3).strategy is RepairStrategy.NORMAL


def test_negative_attempt_is_rejected() -> None:
    with pytest.raises(ValueError, match="attempt: must be >= 0"):
        select_strategy([], -1)


def test_mentioned_components_match_whole_words() -> None:
    diagnostics = [_overlap("U1 overlaps R1"), _overlap("U10 too close to edge")]

    assert mentioned_components(["U1", "U2", "U10", "R1"], diagnostics[:1]) == ("U1", "R1")
    assert mentioned_components(["U1", "U2", "U10", "R1"], diagnostics[1:]) == ("U10",)


def test_assess_congestion_scopes() -> None:
    model = parse_design(FOUR_PARTS)

    assert assess_congestion(model, []) == (CongestionScope.NONE, ())
    assert assess_congestion(model, [_overlap("U1 overlaps its neighbour")]) == (
        CongestionScope.LOCALIZED,
        ("U1",),
    )
    assert assess_congestion(model, [_overlap("U1, U2 and R1 overlap")]) == (
        CongestionScope.GLOBAL,
        ("U1", "U2", "R1"),
    )
    assert assess_congestion(model, [_overlap("board is crowded")]) == (CongestionScope.GLOBAL, ())


def test_non_layout_diagnostics_do_not_count_as_congestion() -> None:
    model = parse_design(FOUR_PARTS)
    short = ValidationDiagnostic(
        category="short_circuit",
        message="U1 shorts VCC",
        signature="short|U1",
        severity=7,
        source=DiagnosticSource.COMPILER,
    )

    assert assess_congestion(model, [short]) == (CongestionScope.NONE, ())


if HYPOTHESIS_AVAILABLE:

    @settings(max_examples=20, deadline=None)
    @given(
        families=st.sets(st.sampled_from(list(DiagnosticFamily))),
        attempt=st.integers(min_value=0, max_value=6),
        previous=st.none() | st.sampled_from(list(RepairStrategy)),
        scope=st.sampled_from(list(CongestionScope)),
    )
    def test_previous_strategy_is_never_reselected(
        families: set[DiagnosticFamily],
        attempt: int,
        previous: RepairStrategy | None,
        scope: CongestionScope,
    ) -> None:
        decision = select_strategy(families, attempt, previous=previous, congestion_scope=scope)

        assert decision.strategy is not previous
        assert decision.strategy in decision.candidates
        assert decision.escalated_from is previous
