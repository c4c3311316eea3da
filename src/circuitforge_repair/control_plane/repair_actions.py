"""
circuitforge-repair — repair actions on design source

File: src/circuitforge_repair/control_plane/repair_actions.py
Last updated: 2026-10-19

Purpose
- Apply deterministic, text-level corrections to design source: auto-fixes for
  auto-fixable families and the structural strategies chosen by the selector.

What should be included in this file
- ``RepairSettings`` tunables and the ``AppliedRepair`` result.
- ``apply_auto_fixes`` for off-grid placement, missing BOM properties and missing
  decoupling capacitors.
- ``apply_strategy`` for trace rebuild, layout spread and targeted congestion relief.

Functional requirements
- Edits are computed against one parse of the source and applied back to front so
  recorded offsets stay valid.
- Every change is reported as an action string ``<kind>:<detail>``.
- A repair that cannot be applied leaves the source untouched.

Non-functional requirements
- Pure functions; identical input yields identical output.
"""

from __future__ import annotations

import math
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Final

from circuitforge_repair.control_plane.strategy import mentioned_components
from circuitforge_repair.control_plane.trace_rebuild import net_intent, rebuild_traces
from circuitforge_repair.domain.diagnostics import ValidationDiagnostic
from circuitforge_repair.domain.models import RepairStrategy
from circuitforge_repair.domain.taxonomy import DiagnosticFamily
from circuitforge_repair.verification_plane.source_parser import (
    Attribute,
    AttributeKind,
    ComponentDecl,
    DesignModel,
    ElementDecl,
    parse_design,
)

BOARD_TAG: Final[str] = "board"
BOM_PLACEHOLDER: Final[str] = "unspecified"
# BOM property names as reported by the reviewer, mapped to component attributes.
BOM_PROPERTY_ATTRIBUTES: Final[dict[str, str]] = {
    "partnumber": "manufacturerPartNumber",
    "manufacturer": "manufacturer",
}
DECOUPLING_NAME_PREFIX: Final[str] = "C_DEC"

_NUMBER_RE: Final[re.Pattern[str]] = re.compile(r"^\s*(-?\d+(?:\.\d+)?)\s*(mm)?\s*$")
_BOM_MISSING_RE: Final[re.Pattern[str]] = re.compile(
    r"^\s*(?P<reference>\S+)\s+missing required BOM properties:\s*(?P<props>.+)$",
    re.IGNORECASE,
)
_POWER_NET_RE: Final[re.Pattern[str]] = re.compile(
    r"^(VCC|VDD|V3_?3|3V3|5V|V5|VBUS|VIN|VBAT)", re.IGNORECASE
)
_GROUND_NET_RE: Final[re.Pattern[str]] = re.compile(r"^(GND|VSS|AGND|DGND)", re.IGNORECASE)


@dataclass(frozen=True, slots=True)
class RepairSettings:
    schematic_grid: float = 0.1
    layout_spread_factor: float = 1.25
    relief_step_mm: float = 1.0
    decoupling_capacitance: str = "100nF"
    anchor_rebuilt_nets: bool = False

    def __post_init__(self) -> None:
        if self.schematic_grid <= 0:
            raise ValueError("RepairSettings.schematic_grid: must be > 0")
        if self.layout_spread_factor <= 1.0:
            raise ValueError("RepairSettings.layout_spread_factor: must be > 1.0")
        if self.relief_step_mm <= 0:
            raise ValueError("RepairSettings.relief_step_mm: must be > 0")
        if not self.decoupling_capacitance.strip():
            raise ValueError("RepairSettings.decoupling_capacitance: must be non-empty")


DEFAULT_REPAIR_SETTINGS = RepairSettings()


@dataclass(frozen=True, slots=True)
class AppliedRepair:
    source: str
    actions: tuple[str, ...] = ()
    auto_fixed_count: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.actions)


@dataclass(slots=True)
class _EditSet:
    source: str
    edits: list[tuple[int, int, str]] = field(default_factory=list)
    actions: list[str] = field(default_factory=list)

    def replace(self, start: int, end: int, text: str) -> None:
        self.edits.append((start, end, text))

    def insert(self, offset: int, text: str) -> None:
        self.edits.append((offset, offset, text))

    def apply(self) -> str:
        # Back to front; inserts sharing an offset keep their recorded order.
        result = self.source
        ordered = sorted(
            enumerate(self.edits),
            key=lambda item: (item[1][0], item[1][1], item[0]),
            reverse=True,
        )
        for _, (start, end, text) in ordered:
            result = result[:start] + text + result[end:]
        return result


# ---------------------------------------------------------------------------
# Auto-fixes
# ---------------------------------------------------------------------------


def apply_auto_fixes(
    source: str,
    families: Iterable[DiagnosticFamily],
    diagnostics: Sequence[ValidationDiagnostic],
    *,
    settings: RepairSettings = DEFAULT_REPAIR_SETTINGS,
) -> AppliedRepair:
    """Apply the deterministic correction for every auto-fixable family given."""

    wanted = set(families)
    if not wanted or not source.strip():
        return AppliedRepair(source=source)

    model = parse_design(source)
    edits = _EditSet(source)
    if DiagnosticFamily.OFF_GRID in wanted:
        _snap_off_grid(model, _of_family(diagnostics, DiagnosticFamily.OFF_GRID), settings, edits)
    if DiagnosticFamily.BOM_PROPERTY in wanted:
        _fill_bom_properties(model, _of_family(diagnostics, DiagnosticFamily.BOM_PROPERTY), edits)
    if DiagnosticFamily.MISSING_DECOUPLING in wanted:
        _add_decoupling_capacitor(model, settings, edits)

    if not edits.actions:
        return AppliedRepair(source=source)
    return AppliedRepair(
        source=edits.apply(),
        actions=tuple(edits.actions),
        auto_fixed_count=len(edits.actions),
    )


def _snap_off_grid(
    model: DesignModel,
    diagnostics: Sequence[ValidationDiagnostic],
    settings: RepairSettings,
    edits: _EditSet,
) -> None:
    targets = _targeted_components(model, diagnostics)
    for component in targets:
        snapped = False
        for name in ("schX", "schY"):
            attribute = component.element.attribute(name)
            parsed = _numeric_value(attribute)
            if attribute is None or parsed is None:
                continue
            value, unit = parsed
            aligned = round(value / settings.schematic_grid) * settings.schematic_grid
            if math.isclose(aligned, value, abs_tol=1e-9):
                continue
            edits.replace(
                attribute.value_start,
                attribute.value_end,
                _render_numeric(attribute, aligned, unit),
            )
            snapped = True
        if snapped:
            edits.actions.append(f"autofix:off_grid:{component.name}")


def _fill_bom_properties(
    model: DesignModel,
    diagnostics: Sequence[ValidationDiagnostic],
    edits: _EditSet,
) -> None:
    missing_by_reference: dict[str, list[str]] = {}
    for diagnostic in diagnostics:
        match = _BOM_MISSING_RE.match(diagnostic.message)
        if match is None:
            continue
        props = missing_by_reference.setdefault(match.group("reference"), [])
        for prop in match.group("props").split(","):
            attribute_name = BOM_PROPERTY_ATTRIBUTES.get(prop.strip().lower().replace(" ", ""))
            if attribute_name is not None and attribute_name not in props:
                props.append(attribute_name)

    for reference, attribute_names in missing_by_reference.items():
        component = model.component(reference)
        if component is None:
            continue
        added = [name for name in attribute_names if component.element.attribute(name) is None]
        if not added:
            continue
        offset = _attribute_insert_offset(model.source, component.element)
        if offset is None:
            continue
        edits.insert(offset, "".join(f' {name}="{BOM_PLACEHOLDER}"' for name in added))
        edits.actions.append(f"autofix:bom_property:{component.name}")


def _add_decoupling_capacitor(
    model: DesignModel, settings: RepairSettings, edits: _EditSet
) -> None:
    closing = model.closing_offset(BOARD_TAG)
    if closing is None:
        return
    taken = set(model.component_names())
    index = 1
    while f"{DECOUPLING_NAME_PREFIX}{index}" in taken:
        index += 1
    name = f"{DECOUPLING_NAME_PREFIX}{index}"

    nets = list(net_intent(model))
    power = next((net for net in nets if _POWER_NET_RE.match(net)), "VCC")
    ground = next((net for net in nets if _GROUND_NET_RE.match(net)), "GND")
    element = (
        f'<capacitor name="{name}" capacitance="{settings.decoupling_capacitance}" '
        f'footprint="0402" connections={{{{ pin1: "net.{power}", pin2: "net.{ground}" }}}} />'
    )
    _insert_before_closing(model.source, closing, [element], edits)
    edits.actions.append(f"autofix:missing_decoupling:{name}")


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


def apply_strategy(
    source: str,
    strategy: RepairStrategy,
    *,
    diagnostics: Sequence[ValidationDiagnostic] = (),
    affected_components: Sequence[str] = (),
    settings: RepairSettings = DEFAULT_REPAIR_SETTINGS,
) -> AppliedRepair:
    """Apply one structural strategy. ``normal`` is a no-op at this level."""

    if strategy is RepairStrategy.NORMAL or not source.strip():
        return AppliedRepair(source=source)
    model = parse_design(source)
    edits = _EditSet(source)
    if strategy is RepairStrategy.STRUCTURAL_TRACE_REBUILD:
        _rebuild_traces(model, settings, edits)
    elif strategy is RepairStrategy.STRUCTURAL_LAYOUT_SPREAD:
        _spread_layout(model, settings, edits)
    elif strategy is RepairStrategy.TARGETED_CONGESTION_RELIEF:
        targets = tuple(affected_components) or mentioned_components(
            model.component_names(), diagnostics
        )
        _relieve_congestion(model, targets, settings, edits)
    if not edits.actions:
        return AppliedRepair(source=source)
    return AppliedRepair(source=edits.apply(), actions=tuple(edits.actions))


def _rebuild_traces(model: DesignModel, settings: RepairSettings, edits: _EditSet) -> None:
    result = rebuild_traces(model, anchor_nets=settings.anchor_rebuilt_nets)
    if not result.rebuilt:
        return

    for trace in model.traces:
        start, end = _line_span(model.source, trace.element.start, trace.element.outer_end)
        edits.replace(start, end, "")

    closing = model.closing_offset(BOARD_TAG)
    if closing is not None:
        _insert_before_closing(model.source, closing, list(result.traces), edits)
    elif model.traces:
        first = model.traces[0].element
        edits.insert(first.start, "\n".join(result.traces) + "\n")
    else:
        return
    edits.actions.append(
        f"rebuild:traces:removed={len(model.traces)},added={len(result.traces)}"
    )


def _spread_layout(model: DesignModel, settings: RepairSettings, edits: _EditSet) -> None:
    for component in model.components:
        moved = False
        for name in ("pcbX", "pcbY"):
            attribute = component.element.attribute(name)
            parsed = _numeric_value(attribute)
            if attribute is None or parsed is None or parsed[0] == 0:
                continue
            value, unit = parsed
            edits.replace(
                attribute.value_start,
                attribute.value_end,
                _render_numeric(attribute, value * settings.layout_spread_factor, unit),
            )
            moved = True
        if moved:
            edits.actions.append(f"spread:{component.name}")


def _relieve_congestion(
    model: DesignModel,
    targets: Sequence[str],
    settings: RepairSettings,
    edits: _EditSet,
) -> None:
    placed: dict[str, tuple[ComponentDecl, float, float]] = {}
    for component in model.components:
        x = _numeric_value(component.element.attribute("pcbX"))
        y = _numeric_value(component.element.attribute("pcbY"))
        placed[component.name] = (component, x[0] if x else 0.0, y[0] if y else 0.0)
    if not placed:
        return
    center_x = sum(item[1] for item in placed.values()) / len(placed)
    center_y = sum(item[2] for item in placed.values()) / len(placed)

    for name in targets:
        if name not in placed:
            continue
        component, x, y = placed[name]
        dx, dy = x - center_x, y - center_y
        distance = math.hypot(dx, dy)
        if distance < 1e-9:
            dx, dy, distance = 1.0, 0.0, 1.0
        new_x = x + settings.relief_step_mm * dx / distance
        new_y = y + settings.relief_step_mm * dy / distance
        if not _set_coordinate(model.source, component, "pcbX", new_x, edits):
            continue
        _set_coordinate(model.source, component, "pcbY", new_y, edits)
        edits.actions.append(f"relief:{component.name}")


def _set_coordinate(
    source: str, component: ComponentDecl, name: str, value: float, edits: _EditSet
) -> bool:
    attribute = component.element.attribute(name)
    parsed = _numeric_value(attribute)
    if attribute is not None and parsed is not None:
        rendered = _render_numeric(attribute, value, parsed[1])
        edits.replace(attribute.value_start, attribute.value_end, rendered)
        return True
    if attribute is not None:
        return False
    offset = _attribute_insert_offset(source, component.element)
    if offset is None:
        return False
    edits.insert(offset, f" {name}={{{format_number(value)}}}")
    return True


# ---------------------------------------------------------------------------
# Text helpers
# ---------------------------------------------------------------------------


def format_number(value: float) -> str:
    text = f"{value:.4f}".rstrip("0").rstrip(".")
    return "0" if text in ("-0", "") else text


def _of_family(
    diagnostics: Sequence[ValidationDiagnostic], family: DiagnosticFamily
) -> list[ValidationDiagnostic]:
    return [item for item in diagnostics if item.family is family]


def _targeted_components(
    model: DesignModel, diagnostics: Sequence[ValidationDiagnostic]
) -> list[ComponentDecl]:
    named = set(mentioned_components(model.component_names(), diagnostics))
    if not named:
        return list(model.components)
    return [component for component in model.components if component.name in named]


def _numeric_value(attribute: Attribute | None) -> tuple[float, str] | None:
    if attribute is None or attribute.kind not in (AttributeKind.STRING, AttributeKind.EXPRESSION):
        return None
    match = _NUMBER_RE.match(attribute.text)
    if match is None:
        return None
    return float(match.group(1)), match.group(2) or ""


def _render_numeric(attribute: Attribute, value: float, unit: str) -> str:
    number = format_number(value)
    if attribute.kind is AttributeKind.STRING:
        return f'"{number}{unit}"'
    return f"{{{number}}}"


def _attribute_insert_offset(source: str, element: ElementDecl) -> int | None:
    if source[element.end - 2 : element.end] == "/>":
        offset = element.end - 2
    elif source[element.end - 1 : element.end] == ">":
        offset = element.end - 1
    else:
        return None
    while offset > element.start and source[offset - 1].isspace():
        offset -= 1
    return offset


def _line_span(source: str, start: int, end: int) -> tuple[int, int]:
    """Widen ``[start, end)`` to whole lines when nothing else shares them."""

    line_start = source.rfind("\n", 0, start) + 1
    line_end = source.find("\n", end)
    line_end = len(source) if line_end < 0 else line_end + 1
    if source[line_start:start].strip() or source[end:line_end].strip():
        return start, end
    return line_start, line_end


def _insert_before_closing(source: str, closing: int, lines: list[str], edits: _EditSet) -> None:
    line_start = source.rfind("\n", 0, closing) + 1
    prefix = source[line_start:closing]
    if prefix.strip():
        edits.insert(closing, "".join(f"{line}\n" for line in lines))
        return
    indent = prefix + "  "
    edits.insert(line_start, "".join(f"{indent}{line}\n" for line in lines))


__all__ = [
    "BOM_PROPERTY_ATTRIBUTES",
    "DEFAULT_REPAIR_SETTINGS",
    "AppliedRepair",
    "RepairSettings",
    "apply_auto_fixes",
    "apply_strategy",
    "format_number",
]
