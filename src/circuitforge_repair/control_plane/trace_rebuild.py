"""
circuitforge-repair — trace-intent rebuilder

File: src/circuitforge_repair/control_plane/trace_rebuild.py
Last updated: 2026-10-19

Purpose
- Synthesize a canonical set of ``<trace>`` statements from the net intent that
  components declare in their ``connections`` maps, for use when the existing traces
  are structurally broken.

Functional requirements
- Nets are visited in first-seen order; endpoints keep component declaration order
  then pin declaration order, duplicates dropped.
- The first endpoint of a net anchors one trace to every other endpoint.
- Nets with fewer than two endpoints or with non-identifier names are ignored.
- ``reason`` is ``empty_code`` for blank source and ``insufficient_net_intent`` when
  nothing could be synthesized.

Non-functional requirements
- Deterministic: identical input yields byte-identical output.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final

from circuitforge_repair.verification_plane.preflight import IDENTIFIER_RE, NET_PREFIX
from circuitforge_repair.verification_plane.source_parser import DesignModel, parse_design

REASON_EMPTY_CODE: Final[str] = "empty_code"
REASON_INSUFFICIENT_NET_INTENT: Final[str] = "insufficient_net_intent"


@dataclass(frozen=True, slots=True)
class TraceRebuildResult:
    traces: tuple[str, ...]
    reason: str | None

    @property
    def rebuilt(self) -> bool:
        return bool(self.traces)


def net_intent(model: DesignModel) -> dict[str, list[str]]:
    """Map net name to ordered selector endpoints declared through ``connections``."""

    endpoints_by_net: dict[str, list[str]] = {}
    for component in model.components:
        if not IDENTIFIER_RE.match(component.name):
            continue
        for pin, value in component.connections:
            if not IDENTIFIER_RE.match(pin) or not value.startswith(NET_PREFIX):
                continue
            net = value[len(NET_PREFIX) :].strip()
            if not IDENTIFIER_RE.match(net):
                continue
            endpoint = f".{component.name} > .{pin}"
            endpoints = endpoints_by_net.setdefault(net, [])
            if endpoint not in endpoints:
                endpoints.append(endpoint)
    return endpoints_by_net


def rebuild_traces(source: str | DesignModel, *, anchor_nets: bool = False) -> TraceRebuildResult:
    """Build one trace per non-anchor endpoint of every declared net.

    With ``anchor_nets`` an extra trace from the anchor to ``net.<name>`` is emitted
    for every rebuilt net.
    """

    if isinstance(source, DesignModel):
        model = source
    else:
        if not source.strip():
            return TraceRebuildResult(traces=(), reason=REASON_EMPTY_CODE)
        model = parse_design(source)
    if not model.source.strip():
        return TraceRebuildResult(traces=(), reason=REASON_EMPTY_CODE)

    traces: list[str] = []
    for net, endpoints in net_intent(model).items():
        if len(endpoints) < 2:
            continue
        anchor = endpoints[0]
        traces.extend(render_trace(anchor, endpoint) for endpoint in endpoints[1:])
        if anchor_nets:
            traces.append(render_trace(anchor, f"{NET_PREFIX}{net}"))

    if not traces:
        return TraceRebuildResult(traces=(), reason=REASON_INSUFFICIENT_NET_INTENT)
    return TraceRebuildResult(traces=tuple(traces), reason=None)


def render_trace(from_ref: str, to_ref: str) -> str:
    return f'<trace from="{from_ref}" to="{to_ref}" />'


__all__ = [
    "REASON_EMPTY_CODE",
    "REASON_INSUFFICIENT_NET_INTENT",
    "TraceRebuildResult",
    "net_intent",
    "rebuild_traces",
    "render_trace",
]
