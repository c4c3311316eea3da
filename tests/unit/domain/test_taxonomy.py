"""Unit tests for the closed diagnostic taxonomy."""

from __future__ import annotations

import pytest

from circuitforge_repair.domain.taxonomy import (
    CATEGORY_FAMILY,
    CONNECTIVITY_FAMILIES,
    FAMILY_DEFAULT_HANDLING,
    LAYOUT_FAMILIES,
    DiagnosticCategory,
    DiagnosticFamily,
    Handling,
    default_handling,
    family_for,
    normalize_category,
    resolve_category,
)


def test_every_category_has_a_family_and_every_family_a_handling() -> None:
    assert set(CATEGORY_FAMILY) == set(DiagnosticCategory)
    assert set(FAMILY_DEFAULT_HANDLING) == set(DiagnosticFamily)
    assert set(CATEGORY_FAMILY.values()) == set(DiagnosticFamily)


def test_connectivity_and_layout_families_do_not_overlap() -> None:
    assert CONNECTIVITY_FAMILIES.isdisjoint(LAYOUT_FAMILIES)
    for family in CONNECTIVITY_FAMILIES | LAYOUT_FAMILIES:
        assert default_handling(family) is Handling.MUST_REPAIR


@pytest.mark.parametrize(
    ("family", "expected"),
    [
        (DiagnosticFamily.MISSING_DECOUPLING, Handling.AUTO_FIXABLE),
        (DiagnosticFamily.OFF_GRID, Handling.AUTO_FIXABLE),
        (DiagnosticFamily.BOM_PROPERTY, Handling.AUTO_FIXABLE),
        (DiagnosticFamily.PIN_CONFLICT, Handling.SHOULD_DEMOTE),
        (DiagnosticFamily.DUPLICATE_REFERENCE, Handling.SHOULD_DEMOTE),
        (DiagnosticFamily.ADVISORY, Handling.SHOULD_DEMOTE),
        (DiagnosticFamily.SHORT, Handling.MUST_REPAIR),
        (DiagnosticFamily.COMPILE_FAILURE, Handling.MUST_REPAIR),
    ],
)
def test_default_handling_per_family(family: DiagnosticFamily, expected: Handling) -> None:
    assert default_handling(family) is expected


def test_normalize_category_lowercases_and_replaces_separators() -> None:
    assert normalize_category("  PCB-Trace Error ") == "pcb_trace_error"


@pytest.mark.parametrize(
    ("raw", "message", "expected"),
    [
        ("pcb_trace_error", "", DiagnosticCategory.PCB_TRACE_ERROR),
        ("SHORT_CIRCUIT", "", DiagnosticCategory.SHORT_CIRCUIT),
        ("off_grid_warning", "", DiagnosticCategory.OFF_GRID),
        ("source_trace_short_error", "", DiagnosticCategory.SHORT_CIRCUIT),
        ("timeout", "", DiagnosticCategory.ATTEMPT_TIMEOUT),
        ("schematic_warning", "Pin 3 of U1 is an unconnected pin", DiagnosticCategory.KICAD_UNCONNECTED_PIN),
        ("erc_warning", "R1 missing required BOM properties", DiagnosticCategory.KICAD_BOM_PROPERTY),
        ("pcb_via_spacing_error", "", DiagnosticCategory.PCB_VIA_CLEARANCE),
        ("pcb_part_outside_board_error", "", DiagnosticCategory.PCB_COMPONENT_OUTSIDE_BOARD),
        ("pcb_pad_overlap_error", "", DiagnosticCategory.PCB_FOOTPRINT_OVERLAP),
        ("pcb_autorouter_error", "", DiagnosticCategory.PCB_AUTOROUTING_ERROR),
        ("something_error", "", DiagnosticCategory.VALIDATION_ERROR),
        ("something_odd", "", DiagnosticCategory.VALIDATION_WARNING),
    ],
)
def test_resolve_category(raw: str, message: str, expected: DiagnosticCategory) -> None:
    assert resolve_category(raw, message) is expected


def test_unknown_error_category_is_blocking_and_unknown_warning_is_advisory() -> None:
    error_family = family_for(resolve_category("mystery_error"))
    warning_family = family_for(resolve_category("mystery"))

    assert default_handling(error_family) is Handling.MUST_REPAIR
    assert default_handling(warning_family) is Handling.SHOULD_DEMOTE
