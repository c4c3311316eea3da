"""Repair planning and the convergence loop that drives validation and repair."""

from circuitforge_repair.control_plane.controller import (
    ConvergenceLoop,
    LoopRunResult,
    LoopSettings,
)
from circuitforge_repair.control_plane.diffing import diff_designs
from circuitforge_repair.control_plane.readiness import ReadinessWeights, readiness_score
from circuitforge_repair.control_plane.repair_actions import (
    AppliedRepair,
    RepairSettings,
    apply_auto_fixes,
    apply_strategy,
)
from circuitforge_repair.control_plane.strategy import (
    StrategyDecision,
    assess_congestion,
    select_strategy,
)
from circuitforge_repair.control_plane.trace_rebuild import TraceRebuildResult, rebuild_traces

__all__ = [
    "AppliedRepair",
    "ConvergenceLoop",
    "LoopRunResult",
    "LoopSettings",
    "ReadinessWeights",
    "RepairSettings",
    "StrategyDecision",
    "TraceRebuildResult",
    "apply_auto_fixes",
    "apply_strategy",
    "assess_congestion",
    "diff_designs",
    "readiness_score",
    "rebuild_traces",
    "select_strategy",
]
