"""Unit tests for diagnostic classification and family downgrades."""

from __future__ import annotations

import pytest

from circuitforge_repair.domain.diagnostics import DiagnosticSource, ValidationDiagnostic
from circuitforge_repair.domain.taxonomy import DiagnosticCategory, DiagnosticFamily, Handling
from circuitforge_repair.verification_plane.classifier import (
    ClassificationPolicy,
    advance_survivals,
    classify,
)

try:
    from hypothesis import given, settings
    from hypothesis import strategies as st
except ModuleNotFoundError:
    HYPOTHESIS_AVAILABLE = False
else:
    HYPOTHESIS_AVAILABLE = True


def _diag(category: str, signature: str, *, severity: int = 5, message: str = "") -> ValidationDiagnostic:
    return ValidationDiagnostic(
        category=category,
        message=message or f"{category} at {signature}",
        signature=signature,
        severity=severity,
        source=DiagnosticSource.COMPILER,
    )


def test_default_handling_buckets() -> None:
    result = classify(
        [
            _diag("short_circuit", "s1", severity=7),
            _diag("off_grid", "g1", severity=2),
            _diag("pin_conflict_warning", "p1", severity=3),
        ]
    )

    assert result.must_repair_families == (DiagnosticFamily.SHORT,)
    assert result.auto_fixable_families == (DiagnosticFamily.OFF_GRID,)
    assert result.should_demote_families == (DiagnosticFamily.PIN_CONFLICT,)
    assert [item.handling for item in result.diagnostics] == [
        Handling.MUST_REPAIR,
        Handling.AUTO_FIXABLE,
        Handling.SHOULD_DEMOTE,
    ]
    assert len(result.blocking) == 1
    assert len(result.warnings) == 2
    assert result.demoted_count == 1
    assert not result.is_clean
    assert result.downgraded_count == 0


def test_empty_input_is_clean() -> None:
    result = classify([])

    assert result.is_clean
    assert result.families() == ()


def test_unknown_category_falls_back_by_error_keyword() -> None:
    result = classify([_diag("mystery_error", "m1"), _diag("mystery_note", "m2")])

    assert result.must_repair_families == (DiagnosticFamily.VALIDATION,)
    assert result.should_demote_families == (DiagnosticFamily.ADVISORY,)


def test_repeatedly_surviving_low_severity_blocker_is_downgraded() -> None:
    policy = ClassificationPolicy(demote_after_attempts=2, demote_max_severity=4)
    low = _diag("pcb_trace_error", "t1", severity=4)
    high = _diag("short_circuit", "s1", severity=7)

    first = classify([low, high], survivals={"t1": 1, "s1": 1}, policy=policy)
    later = classify([low, high], survivals={"t1": 2, "s1": 2}, policy=policy)

    assert first.must_repair_families == (DiagnosticFamily.SHORT, DiagnosticFamily.TRACE_COLLISION)
    assert later.must_repair_families == (DiagnosticFamily.SHORT,)
    assert later.should_demote_families == (DiagnosticFamily.TRACE_COLLISION,)
    assert later.downgraded_count == 1


def test_auto_fix_that_does_not_take_is_demoted() -> None:
    policy = ClassificationPolicy(demote_after_attempts=2, demote_max_severity=0)
    result = classify([_diag("off_grid", "g1", severity=2)], survivals={"g1": 2}, policy=policy)

    assert result.auto_fixable_families == ()
    assert result.should_demote_families == (DiagnosticFamily.OFF_GRID,)


def test_zero_threshold_disables_downgrades() -> None:
    policy = ClassificationPolicy(demote_after_attempts=0, demote_max_severity=10)
    result = classify([_diag("pcb_trace_error", "t1", severity=1)], survivals={"t1": 50}, policy=policy)

    assert result.must_repair_families == (DiagnosticFamily.TRACE_COLLISION,)


def test_strongest_handling_wins_within_a_family() -> None:
    policy = ClassificationPolicy(demote_after_attempts=1, demote_max_severity=4)
    result = classify(
        [_diag("pcb_trace_error", "t1", severity=3), _diag("pcb_trace_error", "t2", severity=6)],
        survivals={"t1": 1, "t2": 1},
        policy=policy,
    )

    assert result.must_repair_families == (DiagnosticFamily.TRACE_COLLISION,)
    assert result.should_demote_families == ()
    assert result.demoted_count == 1


def test_policy_rejects_negative_thresholds() -> None:
    with pytest.raises(ValueError, match="demote_after_attempts: must be >= 0"):
        ClassificationPolicy(demote_after_attempts=-1)
    with pytest.raises(ValueError, match="demote_max_severity: must be >= 0"):
        ClassificationPolicy(demote_max_severity=-1)


def test_advance_survivals_counts_consecutive_sightings() -> None:
    first = advance_survivals({}, [_diag("short_circuit", "a"), _diag("short_circuit", "b")])
    second = advance_survivals(first, [_diag("short_circuit", "a")])
    third = advance_survivals(second, [_diag("short_circuit", "a"), _diag("short_circuit", "b")])

    assert first == {"a": 1, "b": 1}
    assert second == {"a": 2}
    assert third == {"a": 3, "b": 1}


if HYPOTHESIS_AVAILABLE:
    _CATEGORIES = [item.value for item in DiagnosticCategory]

    _diagnostic_lists = st.lists(
        st.builds(
            _diag,
            category=st.sampled_from(_CATEGORIES),
            signature=st.text(alphabet="abcdef", min_size=1, max_size=3),
            severity=st.integers(min_value=0, max_value=10),
        ),
        max_size=12,
    )

    @settings(max_examples=20, deadline=None)
    @given(
        diagnostics=_diagnostic_lists,
        survived=st.integers(min_value=0, max_value=4),
        after=st.integers(min_value=0, max_value=3),
        max_severity=st.integers(min_value=0, max_value=10),
    )
    def test_buckets_partition_the_observed_families(
        diagnostics: list[ValidationDiagnostic],
        survived: int,
        after: int,
        max_severity: int,
    ) -> None:
        policy = ClassificationPolicy(demote_after_attempts=after, demote_max_severity=max_severity)
        survivals = {item.signature: survived for item in diagnostics}
        result = classify(diagnostics, survivals=survivals, policy=policy)

        buckets = [
            set(result.auto_fixable_families),
            set(result.should_demote_families),
            set(result.must_repair_families),
        ]
        assert sum(len(bucket) for bucket in buckets) == len(set().union(*buckets))
        assert set().union(*buckets) == {item.family for item in result.diagnostics}
        assert len(result.blocking) + len(result.warnings) == len(diagnostics)
        assert all(item.is_classified for item in result.diagnostics)
        assert result.is_clean == (not result.blocking)
