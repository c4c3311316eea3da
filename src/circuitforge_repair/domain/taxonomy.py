"""
circuitforge-repair — diagnostic taxonomy

File: src/circuitforge_repair/domain/taxonomy.py
Last updated: 2026-10-19

Purpose
- Closed, versioned enumeration of diagnostic categories, the defect family each
  category belongs to, and the default handling policy of every family.

What should be included in this file
- ``DiagnosticCategory``, ``DiagnosticFamily`` and ``Handling`` enumerations.
- Total mappings category -> family and family -> default handling.
- ``resolve_category`` to map raw compiler/reviewer strings onto the closed set.

Functional requirements
- Every category maps to exactly one family; every family has a default handling.
- Completeness of both mappings is checked when the module is imported.
- Unknown raw strings never raise: they resolve to a generic validation category.

Non-functional requirements
- Pure data and pure functions; no IO.
- Bump ``TAXONOMY_VERSION`` whenever a member is added, renamed or remapped.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Final

from circuitforge_repair.constants import TAXONOMY_VERSION


class Handling(StrEnum):
    """Classifier verdict for one diagnostic occurrence."""

    AUTO_FIXABLE = "auto_fixable"
    SHOULD_DEMOTE = "should_demote"
    MUST_REPAIR = "must_repair"


# Higher rank wins when a family has occurrences with different handling.
HANDLING_RANK: Final[dict[Handling, int]] = {
    Handling.SHOULD_DEMOTE: 0,
    Handling.AUTO_FIXABLE: 1,
    Handling.MUST_REPAIR: 2,
}


class DiagnosticFamily(StrEnum):
    """Coarse defect families used for classification and strategy selection."""

    MISSING_ENDPOINT = "missing_endpoint"
    UNRESOLVED_SELECTOR = "unresolved_selector"
    FLOATING_PIN = "floating_pin"
    FLOATING_LABEL = "floating_label"
    SHORT = "short"
    MISSING_DECOUPLING = "missing_decoupling"
    OFF_GRID = "off_grid"
    BOM_PROPERTY = "bom_property"
    PIN_CONFLICT = "pin_conflict"
    DUPLICATE_REFERENCE = "duplicate_reference"
    PLACEMENT_OVERLAP = "placement_overlap"
    OUT_OF_BOUNDS = "out_of_bounds"
    VIA_CLEARANCE = "via_clearance"
    TRACE_COLLISION = "trace_collision"
    AUTOROUTING = "autorouting"
    COMPILE_FAILURE = "compile_failure"
    VALIDATION = "validation"
    ADVISORY = "advisory"


class DiagnosticCategory(StrEnum):
    """Machine-readable diagnostic categories recognized by the engine."""

    # Static source checks.
    SOURCE_TRACE_MISSING_ENDPOINT = "source_trace_missing_endpoint"
    SOURCE_TRACE_INVALID_SELECTOR = "source_trace_invalid_selector"
    SOURCE_TRACE_UNKNOWN_COMPONENT = "source_trace_unknown_component"
    SOURCE_TRACE_UNKNOWN_PIN = "source_trace_unknown_pin"

    # Compiler-reported circuit errors.
    SOURCE_TRACE_NOT_CONNECTED = "source_trace_not_connected_error"
    SHORT_CIRCUIT = "short_circuit"
    MISSING_DECOUPLING = "missing_decoupling"
    PCB_FOOTPRINT_OVERLAP = "pcb_footprint_overlap_error"
    PCB_COMPONENT_OUTSIDE_BOARD = "pcb_component_outside_board_error"
    PCB_VIA_CLEARANCE = "pcb_via_clearance_error"
    PCB_TRACE_ERROR = "pcb_trace_error"
    PCB_AUTOROUTING_ERROR = "pcb_autorouting_error"

    # Schematic reviewer findings.
    KICAD_UNCONNECTED_PIN = "kicad_unconnected_pin"
    FLOATING_LABEL = "floating_label"
    OFF_GRID = "off_grid"
    KICAD_BOM_PROPERTY = "kicad_bom_property"
    PIN_CONFLICT_WARNING = "pin_conflict_warning"
    PIN_CONFLICT_LOW_SIGNAL = "pin_conflict_low_signal"
    DUPLICATE_REFERENCE = "duplicate_reference"

    # Synthetic loop diagnostics.
    COMPILE_ERROR = "compile_error"
    ATTEMPT_TIMEOUT = "attempt_timeout"

    # Fallbacks for strings outside the closed set.
    VALIDATION_ERROR = "validation_error"
    VALIDATION_WARNING = "validation_warning"


CATEGORY_FAMILY: Final[dict[DiagnosticCategory, DiagnosticFamily]] = {
    DiagnosticCategory.SOURCE_TRACE_MISSING_ENDPOINT: DiagnosticFamily.MISSING_ENDPOINT,
    DiagnosticCategory.SOURCE_TRACE_INVALID_SELECTOR: DiagnosticFamily.UNRESOLVED_SELECTOR,
    DiagnosticCategory.SOURCE_TRACE_UNKNOWN_COMPONENT: DiagnosticFamily.UNRESOLVED_SELECTOR,
    DiagnosticCategory.SOURCE_TRACE_UNKNOWN_PIN: DiagnosticFamily.UNRESOLVED_SELECTOR,
    DiagnosticCategory.SOURCE_TRACE_NOT_CONNECTED: DiagnosticFamily.FLOATING_PIN,
    DiagnosticCategory.SHORT_CIRCUIT: DiagnosticFamily.SHORT,
    DiagnosticCategory.MISSING_DECOUPLING: DiagnosticFamily.MISSING_DECOUPLING,
    DiagnosticCategory.PCB_FOOTPRINT_OVERLAP: DiagnosticFamily.PLACEMENT_OVERLAP,
    DiagnosticCategory.PCB_COMPONENT_OUTSIDE_BOARD: DiagnosticFamily.OUT_OF_BOUNDS,
    DiagnosticCategory.PCB_VIA_CLEARANCE: DiagnosticFamily.VIA_CLEARANCE,
    DiagnosticCategory.PCB_TRACE_ERROR: DiagnosticFamily.TRACE_COLLISION,
    DiagnosticCategory.PCB_AUTOROUTING_ERROR: DiagnosticFamily.AUTOROUTING,
    DiagnosticCategory.KICAD_UNCONNECTED_PIN: DiagnosticFamily.FLOATING_PIN,
    DiagnosticCategory.FLOATING_LABEL: DiagnosticFamily.FLOATING_LABEL,
    DiagnosticCategory.OFF_GRID: DiagnosticFamily.OFF_GRID,
    DiagnosticCategory.KICAD_BOM_PROPERTY: DiagnosticFamily.BOM_PROPERTY,
    DiagnosticCategory.PIN_CONFLICT_WARNING: DiagnosticFamily.PIN_CONFLICT,
    DiagnosticCategory.PIN_CONFLICT_LOW_SIGNAL: DiagnosticFamily.PIN_CONFLICT,
    DiagnosticCategory.DUPLICATE_REFERENCE: DiagnosticFamily.DUPLICATE_REFERENCE,
    DiagnosticCategory.COMPILE_ERROR: DiagnosticFamily.COMPILE_FAILURE,
    DiagnosticCategory.ATTEMPT_TIMEOUT: DiagnosticFamily.COMPILE_FAILURE,
    DiagnosticCategory.VALIDATION_ERROR: DiagnosticFamily.VALIDATION,
    DiagnosticCategory.VALIDATION_WARNING: DiagnosticFamily.ADVISORY,
}

FAMILY_DEFAULT_HANDLING: Final[dict[DiagnosticFamily, Handling]] = {
    DiagnosticFamily.MISSING_ENDPOINT: Handling.MUST_REPAIR,
    DiagnosticFamily.UNRESOLVED_SELECTOR: Handling.MUST_REPAIR,
    DiagnosticFamily.FLOATING_PIN: Handling.MUST_REPAIR,
    DiagnosticFamily.FLOATING_LABEL: Handling.MUST_REPAIR,
    DiagnosticFamily.SHORT: Handling.MUST_REPAIR,
    DiagnosticFamily.MISSING_DECOUPLING: Handling.AUTO_FIXABLE,
    DiagnosticFamily.OFF_GRID: Handling.AUTO_FIXABLE,
    DiagnosticFamily.BOM_PROPERTY: Handling.AUTO_FIXABLE,
    DiagnosticFamily.PIN_CONFLICT: Handling.SHOULD_DEMOTE,
    DiagnosticFamily.DUPLICATE_REFERENCE: Handling.SHOULD_DEMOTE,
    DiagnosticFamily.PLACEMENT_OVERLAP: Handling.MUST_REPAIR,
    DiagnosticFamily.OUT_OF_BOUNDS: Handling.MUST_REPAIR,
    DiagnosticFamily.VIA_CLEARANCE: Handling.MUST_REPAIR,
    DiagnosticFamily.TRACE_COLLISION: Handling.MUST_REPAIR,
    DiagnosticFamily.AUTOROUTING: Handling.MUST_REPAIR,
    DiagnosticFamily.COMPILE_FAILURE: Handling.MUST_REPAIR,
    DiagnosticFamily.VALIDATION: Handling.MUST_REPAIR,
    DiagnosticFamily.ADVISORY: Handling.SHOULD_DEMOTE,
}

# Families repaired by regenerating trace topology.
CONNECTIVITY_FAMILIES: Final[frozenset[DiagnosticFamily]] = frozenset(
    {
        DiagnosticFamily.MISSING_ENDPOINT,
        DiagnosticFamily.UNRESOLVED_SELECTOR,
        DiagnosticFamily.FLOATING_PIN,
        DiagnosticFamily.FLOATING_LABEL,
        DiagnosticFamily.SHORT,
    }
)

# Families repaired by moving components.
LAYOUT_FAMILIES: Final[frozenset[DiagnosticFamily]] = frozenset(
    {
        DiagnosticFamily.PLACEMENT_OVERLAP,
        DiagnosticFamily.OUT_OF_BOUNDS,
        DiagnosticFamily.VIA_CLEARANCE,
        DiagnosticFamily.TRACE_COLLISION,
        DiagnosticFamily.AUTOROUTING,
    }
)

_CATEGORY_ALIASES: Final[dict[str, DiagnosticCategory]] = {
    "off_grid_warning": DiagnosticCategory.OFF_GRID,
    "kicad_off_grid": DiagnosticCategory.OFF_GRID,
    "bom_property": DiagnosticCategory.KICAD_BOM_PROPERTY,
    "pin_conflict": DiagnosticCategory.PIN_CONFLICT_WARNING,
    "duplicate_reference_warning": DiagnosticCategory.DUPLICATE_REFERENCE,
    "unconnected_pin": DiagnosticCategory.KICAD_UNCONNECTED_PIN,
    "short": DiagnosticCategory.SHORT_CIRCUIT,
    "source_trace_short_error": DiagnosticCategory.SHORT_CIRCUIT,
    "pcb_trace_collision": DiagnosticCategory.PCB_TRACE_ERROR,
    "pcb_component_out_of_bounds_error": DiagnosticCategory.PCB_COMPONENT_OUTSIDE_BOARD,
    "pcb_placement_error": DiagnosticCategory.PCB_FOOTPRINT_OVERLAP,
    "timeout": DiagnosticCategory.ATTEMPT_TIMEOUT,
}

# Ordered (keywords, category) rules applied to "<category> <message>".
_TEXT_RULES: Final[tuple[tuple[tuple[str, ...], DiagnosticCategory], ...]] = (
    (("kicad_unconnected_pin", "unconnected pin"), DiagnosticCategory.KICAD_UNCONNECTED_PIN),
    (("floating_label", "floating label"), DiagnosticCategory.FLOATING_LABEL),
    (("off_grid", "off-grid", "off grid"), DiagnosticCategory.OFF_GRID),
    (("kicad_bom_property", "bom"), DiagnosticCategory.KICAD_BOM_PROPERTY),
    (("pin_conflict", "pin conflict"), DiagnosticCategory.PIN_CONFLICT_WARNING),
    (("duplicate_reference",), DiagnosticCategory.DUPLICATE_REFERENCE),
    (("decoupling",), DiagnosticCategory.MISSING_DECOUPLING),
    (("compile",), DiagnosticCategory.COMPILE_ERROR),
)

# Ordered (keywords, category) rules applied to the category string only.
_CATEGORY_RULES: Final[tuple[tuple[tuple[str, ...], DiagnosticCategory], ...]] = (
    (("short",), DiagnosticCategory.SHORT_CIRCUIT),
    (("via",), DiagnosticCategory.PCB_VIA_CLEARANCE),
    (("out_of_bounds", "outside_board"), DiagnosticCategory.PCB_COMPONENT_OUTSIDE_BOARD),
    (("overlap",), DiagnosticCategory.PCB_FOOTPRINT_OVERLAP),
    (("autorout",), DiagnosticCategory.PCB_AUTOROUTING_ERROR),
    (("clearance", "collision", "pcb_trace"), DiagnosticCategory.PCB_TRACE_ERROR),
    (("not_connected",), DiagnosticCategory.SOURCE_TRACE_NOT_CONNECTED),
)


def normalize_category(raw: str) -> str:
    """Return the canonical lower-case spelling of a raw category string."""

    return raw.strip().lower().replace("-", "_").replace(" ", "_")


def resolve_category(raw: str, message: str = "") -> DiagnosticCategory:
    """Map a raw category string (and its message) onto the closed category set."""

    normalized = normalize_category(raw)
    try:
        return DiagnosticCategory(normalized)
    except ValueError:
        pass
    alias = _CATEGORY_ALIASES.get(normalized)
    if alias is not None:
        return alias

    text = f"{normalized} {message.lower()}"
    for keywords, category in _TEXT_RULES:
        if any(keyword in text for keyword in keywords):
            return category
    for keywords, category in _CATEGORY_RULES:
        if any(keyword in normalized for keyword in keywords):
            return category
    if "error" in normalized:
        return DiagnosticCategory.VALIDATION_ERROR
    return DiagnosticCategory.VALIDATION_WARNING


def family_for(category: DiagnosticCategory) -> DiagnosticFamily:
    return CATEGORY_FAMILY[category]


def default_handling(family: DiagnosticFamily) -> Handling:
    return FAMILY_DEFAULT_HANDLING[family]


def _assert_complete() -> None:
    missing_categories = [item.value for item in DiagnosticCategory if item not in CATEGORY_FAMILY]
    missing_families = [
        item.value for item in DiagnosticFamily if item not in FAMILY_DEFAULT_HANDLING
    ]
    unused_families = sorted(
        {item.value for item in DiagnosticFamily}
        - {item.value for item in CATEGORY_FAMILY.values()}
    )
    problems: list[str] = []
    if missing_categories:
        problems.append(f"categories without family: {', '.join(missing_categories)}")
    if missing_families:
        problems.append(f"families without handling: {', '.join(missing_families)}")
    if unused_families:
        problems.append(f"families without categories: {', '.join(unused_families)}")
    if problems:
        raise RuntimeError(
            f"diagnostic taxonomy v{TAXONOMY_VERSION} is incomplete: " + "; ".join(problems)
        )


_assert_complete()


__all__ = [
    "CATEGORY_FAMILY",
    "CONNECTIVITY_FAMILIES",
    "FAMILY_DEFAULT_HANDLING",
    "HANDLING_RANK",
    "LAYOUT_FAMILIES",
    "TAXONOMY_VERSION",
    "DiagnosticCategory",
    "DiagnosticFamily",
    "Handling",
    "default_handling",
    "family_for",
    "normalize_category",
    "resolve_category",
]
