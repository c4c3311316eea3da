"""
circuitforge-repair — repair strategy selector

File: src/circuitforge_repair/control_plane/strategy.py
Last updated: 2026-10-19

Purpose
- Pick the repair strategy for an attempt from the must-repair families present,
  escalating away from a strategy whose last application did not help.

Functional requirements
- Connectivity families take priority over layout families (from attempt 1 on).
- Layout families choose congestion relief when congestion is localized and a full
  spread when it is global; the other layout strategy is the next candidate.
- A strategy that did not reduce the blocking count is excluded from the next
  selection.

Non-functional requirements
- Pure and deterministic.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from circuitforge_repair.domain.diagnostics import ValidationDiagnostic
from circuitforge_repair.domain.models import CongestionScope, RepairStrategy
from circuitforge_repair.domain.taxonomy import (
    CATEGORY_FAMILY,
    CONNECTIVITY_FAMILIES,
    LAYOUT_FAMILIES,
    DiagnosticFamily,
)
from circuitforge_repair.verification_plane.source_parser import DesignModel


@dataclass(frozen=True, slots=True)
class StrategyDecision:
    strategy: RepairStrategy
    escalated_from: RepairStrategy | None
    candidates: tuple[RepairStrategy, ...]


def strategy_candidates(
    must_repair_families: Iterable[DiagnosticFamily],
    attempt: int,
    *,
    congestion_scope: CongestionScope = CongestionScope.NONE,
) -> tuple[RepairStrategy, ...]:
    """Strategies in priority order, escalation tail included."""

    families = set(must_repair_families)
    ordered: list[RepairStrategy] = []
    if attempt >= 1 and families & CONNECTIVITY_FAMILIES:
        ordered.append(RepairStrategy.STRUCTURAL_TRACE_REBUILD)
    if families & LAYOUT_FAMILIES:
        if congestion_scope is CongestionScope.LOCALIZED:
            ordered.extend(
                (RepairStrategy.TARGETED_CONGESTION_RELIEF, RepairStrategy.STRUCTURAL_LAYOUT_SPREAD)
            )
        else:
            ordered.extend(
                (RepairStrategy.STRUCTURAL_LAYOUT_SPREAD, RepairStrategy.TARGETED_CONGESTION_RELIEF)
            )

    ordered.append(RepairStrategy.NORMAL)
    if attempt >= 1:
        ordered.append(RepairStrategy.STRUCTURAL_TRACE_REBUILD)
    ordered.append(RepairStrategy.STRUCTURAL_LAYOUT_SPREAD)
    return tuple(dict.fromkeys(ordered))


def select_strategy(
    must_repair_families: Iterable[DiagnosticFamily],
    attempt: int,
    *,
    previous: RepairStrategy | None = None,
    congestion_scope: CongestionScope = CongestionScope.NONE,
) -> StrategyDecision:
    """Choose the first candidate, skipping ``previous``.

    ``previous`` is the strategy applied in the preceding attempt when that
    application did not reduce the blocking count; pass ``None`` otherwise.
    """

    if attempt < 0:
        raise ValueError("select_strategy.attempt: must be >= 0")
    candidates = strategy_candidates(
        must_repair_families, attempt, congestion_scope=congestion_scope
    )
    if previous is not None:
        remaining = tuple(item for item in candidates if item is not previous)
        if remaining:
            return StrategyDecision(
                strategy=remaining[0], escalated_from=previous, candidates=remaining
            )
    return StrategyDecision(strategy=candidates[0], escalated_from=None, candidates=candidates)


def assess_congestion(
    model: DesignModel,
    diagnostics: Sequence[ValidationDiagnostic],
    *,
    localized_ratio: float = 0.5,
) -> tuple[CongestionScope, tuple[str, ...]]:
    """Decide whether layout trouble is confined to a few components.

    Returns the scope and the names of components mentioned by layout diagnostics.
    """

    layout = [item for item in diagnostics if _family(item) in LAYOUT_FAMILIES]
    if not layout:
        return CongestionScope.NONE, ()

    names = model.component_names()
    affected = mentioned_components(names, layout)
    if affected and len(affected) < localized_ratio * len(names):
        return CongestionScope.LOCALIZED, affected
    return CongestionScope.GLOBAL, affected


def _family(diagnostic: ValidationDiagnostic) -> DiagnosticFamily:
    if diagnostic.family is not None:
        return diagnostic.family
    return CATEGORY_FAMILY[diagnostic.resolved_category()]


def mentioned_components(
    names: Iterable[str],
    diagnostics: Iterable[ValidationDiagnostic],
) -> tuple[str, ...]:
    """Component names that appear as whole words in diagnostic messages or signatures."""

    texts = [f"{item.message}\n{item.signature}" for item in diagnostics]
    return tuple(name for name in names if any(_mentions(text, name) for text in texts))


def _mentions(text: str, name: str) -> bool:
    return re.search(rf"(?<![A-Za-z0-9_]){re.escape(name)}(?![A-Za-z0-9_])", text) is not None


__all__ = [
    "StrategyDecision",
    "assess_congestion",
    "mentioned_components",
    "select_strategy",
    "strategy_candidates",
]
