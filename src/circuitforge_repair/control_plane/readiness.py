"""Readiness scoring for a validated design."""

from __future__ import annotations

from dataclasses import dataclass

from circuitforge_repair.constants import READINESS_MAX, READINESS_MIN


@dataclass(frozen=True, slots=True)
class ReadinessWeights:
    blocking_penalty: int = 20
    warning_penalty: int = 5

    def __post_init__(self) -> None:
        if self.blocking_penalty < 0:
            raise ValueError("ReadinessWeights.blocking_penalty: must be >= 0")
        if self.warning_penalty < 0:
            raise ValueError("ReadinessWeights.warning_penalty: must be >= 0")


DEFAULT_WEIGHTS = ReadinessWeights()


def readiness_score(
    blocking: int,
    warnings: int,
    *,
    weights: ReadinessWeights = DEFAULT_WEIGHTS,
    validated: bool = True,
) -> int:
    """Score in ``[0, 100]``; never increases as either count grows.

    A design that never completed validation scores 0.
    """

    if blocking < 0 or warnings < 0:
        raise ValueError("readiness_score: counts must be >= 0")
    if not validated:
        return READINESS_MIN
    raw = READINESS_MAX - weights.blocking_penalty * blocking - weights.warning_penalty * warnings
    return max(READINESS_MIN, min(READINESS_MAX, raw))


__all__ = ["DEFAULT_WEIGHTS", "ReadinessWeights", "readiness_score"]
