"""Structural diff between two revisions of a design, for progress reporting."""

from __future__ import annotations

from typing import Final

from circuitforge_repair.domain.models import ComponentValueChange, IterationDiff
from circuitforge_repair.verification_plane.source_parser import ComponentDecl, parse_design

VALUE_ATTRIBUTES: Final[tuple[str, ...]] = (
    "resistance",
    "capacitance",
    "inductance",
    "value",
    "frequency",
    "voltage",
)


def component_value(component: ComponentDecl) -> str | None:
    """First electrical value attribute declared on ``component``."""

    for name in VALUE_ATTRIBUTES:
        attribute = component.element.attribute(name)
        if attribute is not None:
            return attribute.text.strip()
    return None


def diff_designs(before: str, after: str, *, attempt: int) -> IterationDiff:
    previous = parse_design(before)
    current = parse_design(after)
    old = {component.name: component for component in previous.components}
    new = {component.name: component for component in current.components}

    added = tuple(name for name in current.component_names() if name not in old)
    removed = tuple(name for name in previous.component_names() if name not in new)
    changed: list[ComponentValueChange] = []
    for name in current.component_names():
        if name not in old:
            continue
        before_value = component_value(old[name])
        after_value = component_value(new[name])
        if before_value != after_value:
            changed.append(
                ComponentValueChange(name=name, before=before_value or "", after=after_value or "")
            )
    trace_delta = len(current.traces) - len(previous.traces)

    parts: list[str] = []
    if added:
        parts.append(f"added {', '.join(added)}")
    if removed:
        parts.append(f"removed {', '.join(removed)}")
    if changed:
        parts.append(
            "changed "
            + ", ".join(
                f"{item.name} {item.before or '?'} -> {item.after or '?'}" for item in changed
            )
        )
    if trace_delta:
        parts.append(f"traces {trace_delta:+d}")

    return IterationDiff(
        attempt=attempt,
        added_components=added,
        removed_components=removed,
        changed_component_values=tuple(changed),
        trace_count_delta=trace_delta,
        summary="; ".join(parts) if parts else "no structural changes",
    )


__all__ = ["VALUE_ATTRIBUTES", "component_value", "diff_designs"]
