"""
circuitforge-repair — connectivity preflight analyzer

File: src/circuitforge_repair/verification_plane/preflight.py
Last updated: 2026-10-19

Purpose
- Statically check trace endpoints in raw design source before any compilation so
  obviously broken designs are caught cheaply.

What should be included in this file
- Endpoint grammar: ``net.<ident>`` or ``.<component> > .<pin>``.
- Per-tag default pins and implicit alias pins.
- ``collect_preflight_diagnostics`` returning deduplicated diagnostics.

Functional requirements
- Exactly one missing-endpoint diagnostic per trace lacking ``from`` or ``to``;
  endpoint checks are skipped for such a trace.
- Invalid selector syntax is reported for the malformed endpoint only.
- Alias pins never produce an unknown-pin diagnostic; pin matching ignores case.
- Net endpoints are always valid and never checked against a component.

Non-functional requirements
- Pure function of the source text; deterministic output order.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Final

from circuitforge_repair.constants import PREFLIGHT_SEVERITY
from circuitforge_repair.domain.diagnostics import (
    DiagnosticSource,
    ValidationDiagnostic,
    dedupe_diagnostics,
)
from circuitforge_repair.domain.taxonomy import DiagnosticCategory
from circuitforge_repair.verification_plane.source_parser import (
    ComponentDecl,
    DesignModel,
    TraceDecl,
    parse_design,
)

IDENTIFIER_RE: Final[re.Pattern[str]] = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_SELECTOR_RE: Final[re.Pattern[str]] = re.compile(
    r"^\.([A-Za-z_][A-Za-z0-9_]*)\s*>\s*\.([A-Za-z_][A-Za-z0-9_]*)$"
)
NET_PREFIX: Final[str] = "net."

_TWO_TERMINAL: Final[tuple[str, ...]] = ("pin1", "pin2")
_POLARIZED_ALIASES: Final[tuple[str, ...]] = ("anode", "cathode", "pos", "neg")
_BATTERY_ALIASES: Final[tuple[str, ...]] = (*_POLARIZED_ALIASES, "positive", "negative")

# ``None`` means the tag's pins are unknown and are not checked.
DEFAULT_PINS_BY_TAG: Final[dict[str, tuple[str, ...] | None]] = {
    "resistor": _TWO_TERMINAL,
    "capacitor": _TWO_TERMINAL,
    "inductor": _TWO_TERMINAL,
    "fuse": _TWO_TERMINAL,
    "crystal": _TWO_TERMINAL,
    "switch": _TWO_TERMINAL,
    "diode": _TWO_TERMINAL,
    "led": _TWO_TERMINAL,
    "battery": _TWO_TERMINAL,
    "pushbutton": ("pin1", "pin2", "pin3", "pin4"),
    "transistor": ("pin1", "pin2", "pin3"),
    "mosfet": ("pin1", "pin2", "pin3"),
    "pinheader": (),
    "chip": None,
}

# Valid on these tags regardless of declared pin labels.
ALIAS_PINS_BY_TAG: Final[dict[str, tuple[str, ...]]] = {
    "diode": _POLARIZED_ALIASES,
    "led": _POLARIZED_ALIASES,
    "battery": _BATTERY_ALIASES,
}


@dataclass(frozen=True, slots=True)
class NetEndpoint:
    net: str


@dataclass(frozen=True, slots=True)
class SelectorEndpoint:
    component: str
    pin: str

    def render(self) -> str:
        return f".{self.component} > .{self.pin}"


Endpoint = NetEndpoint | SelectorEndpoint | None


def parse_endpoint(raw: str) -> Endpoint:
    """Parse an endpoint reference; ``None`` means invalid syntax."""

    if raw.startswith(NET_PREFIX):
        net = raw[len(NET_PREFIX) :].strip()
        return NetEndpoint(net) if IDENTIFIER_RE.match(net) else None
    match = _SELECTOR_RE.match(raw.strip())
    if match is None:
        return None
    return SelectorEndpoint(component=match.group(1), pin=match.group(2))


def component_pins(component: ComponentDecl) -> frozenset[str] | None:
    """Lower-cased valid pin names, or ``None`` when pins cannot be known."""

    aliases = ALIAS_PINS_BY_TAG.get(component.tag, ())
    if component.pin_labels:
        labels = {name for pair in component.pin_labels for name in pair if name}
        return frozenset(pin.lower() for pin in (*labels, *aliases))
    if component.tag not in DEFAULT_PINS_BY_TAG:
        return None
    defaults = DEFAULT_PINS_BY_TAG[component.tag]
    if defaults is None:
        return None
    return frozenset(pin.lower() for pin in (*defaults, *aliases))


def collect_preflight_diagnostics(source: str | DesignModel) -> list[ValidationDiagnostic]:
    """Check every trace endpoint in ``source`` and return structural defects."""

    if isinstance(source, DesignModel):
        model = source
    else:
        if not source.strip():
            return []
        model = parse_design(source)

    pins_by_component: dict[str, frozenset[str] | None] = {
        component.name: component_pins(component) for component in model.components
    }
    diagnostics: list[ValidationDiagnostic] = []
    for trace in model.traces:
        diagnostics.extend(_check_trace(trace, pins_by_component))
    return dedupe_diagnostics(diagnostics)


def _check_trace(
    trace: TraceDecl,
    pins_by_component: dict[str, frozenset[str] | None],
) -> list[ValidationDiagnostic]:
    label = trace.label
    if trace.missing_endpoint:
        return [
            _diagnostic(
                DiagnosticCategory.SOURCE_TRACE_MISSING_ENDPOINT,
                "Trace is missing from/to endpoint.",
                label,
            )
        ]

    found: list[ValidationDiagnostic] = []
    selectors: list[SelectorEndpoint] = []
    for side, raw in (("from", trace.from_ref), ("to", trace.to_ref)):
        if raw is None:
            continue
        parsed = parse_endpoint(raw)
        if parsed is None:
            found.append(
                _diagnostic(
                    DiagnosticCategory.SOURCE_TRACE_INVALID_SELECTOR,
                    f'Trace endpoint "{raw}" has invalid selector syntax.',
                    label,
                    side,
                )
            )
        elif isinstance(parsed, SelectorEndpoint):
            selectors.append(parsed)

    for selector in selectors:
        if selector.component not in pins_by_component:
            found.append(
                _diagnostic(
                    DiagnosticCategory.SOURCE_TRACE_UNKNOWN_COMPONENT,
                    f'Trace references unknown component "{selector.component}".',
                    label,
                    selector.component,
                )
            )
            continue
        pins = pins_by_component[selector.component]
        if pins is not None and selector.pin.lower() not in pins:
            found.append(
                _diagnostic(
                    DiagnosticCategory.SOURCE_TRACE_UNKNOWN_PIN,
                    f'Trace references unknown pin "{selector.pin}" '
                    f'on component "{selector.component}".',
                    label,
                    selector.component,
                    selector.pin,
                )
            )
    return found


def _diagnostic(category: DiagnosticCategory, message: str, *parts: str) -> ValidationDiagnostic:
    return ValidationDiagnostic(
        category=category.value,
        message=message,
        signature="|".join(("connectivity", category.value, *parts)),
        severity=PREFLIGHT_SEVERITY,
        source=DiagnosticSource.DESIGN_SOURCE,
    )


__all__ = [
    "ALIAS_PINS_BY_TAG",
    "DEFAULT_PINS_BY_TAG",
    "IDENTIFIER_RE",
    "NET_PREFIX",
    "NetEndpoint",
    "SelectorEndpoint",
    "collect_preflight_diagnostics",
    "component_pins",
    "parse_endpoint",
]
