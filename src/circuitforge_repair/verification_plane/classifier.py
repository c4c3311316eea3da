"""
circuitforge-repair — diagnostic classifier

File: src/circuitforge_repair/verification_plane/classifier.py
Last updated: 2026-10-19

Purpose
- Annotate diagnostics with family and handling and partition the families present
  into auto-fixable, should-demote and must-repair buckets.

Functional requirements
- Classification is keyed on category via the closed taxonomy.
- An occurrence may be downgraded, never upgraded, based on how many consecutive
  attempts its signature has survived.
- A family sits in the bucket of its strongest occurrence; the three family lists
  are pairwise disjoint and their union is every family present.

Non-functional requirements
- Pure function; survival history is owned and passed in by the caller.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from circuitforge_repair.domain.diagnostics import ValidationDiagnostic
from circuitforge_repair.domain.taxonomy import (
    CATEGORY_FAMILY,
    FAMILY_DEFAULT_HANDLING,
    HANDLING_RANK,
    DiagnosticFamily,
    Handling,
)


@dataclass(frozen=True, slots=True)
class ClassificationPolicy:
    """Downgrade thresholds; ``demote_after_attempts == 0`` disables downgrades."""

    demote_after_attempts: int = 2
    demote_max_severity: int = 4

    def __post_init__(self) -> None:
        if self.demote_after_attempts < 0:
            raise ValueError("ClassificationPolicy.demote_after_attempts: must be >= 0")
        if self.demote_max_severity < 0:
            raise ValueError("ClassificationPolicy.demote_max_severity: must be >= 0")


DEFAULT_POLICY = ClassificationPolicy()


@dataclass(frozen=True, slots=True)
class ClassificationResult:
    diagnostics: tuple[ValidationDiagnostic, ...]
    auto_fixable_families: tuple[DiagnosticFamily, ...]
    should_demote_families: tuple[DiagnosticFamily, ...]
    must_repair_families: tuple[DiagnosticFamily, ...]
    downgraded_count: int = 0

    def with_handling(self, handling: Handling) -> tuple[ValidationDiagnostic, ...]:
        return tuple(item for item in self.diagnostics if item.handling is handling)

    @property
    def blocking(self) -> tuple[ValidationDiagnostic, ...]:
        return self.with_handling(Handling.MUST_REPAIR)

    @property
    def warnings(self) -> tuple[ValidationDiagnostic, ...]:
        return tuple(item for item in self.diagnostics if item.handling is not Handling.MUST_REPAIR)

    @property
    def demoted_count(self) -> int:
        return len(self.with_handling(Handling.SHOULD_DEMOTE))

    @property
    def is_clean(self) -> bool:
        return not self.must_repair_families

    def families(self) -> tuple[DiagnosticFamily, ...]:
        return tuple(
            sorted(
                (
                    *self.auto_fixable_families,
                    *self.should_demote_families,
                    *self.must_repair_families,
                ),
                key=lambda family: family.value,
            )
        )


def classify(
    diagnostics: Iterable[ValidationDiagnostic],
    *,
    survivals: Mapping[str, int] | None = None,
    policy: ClassificationPolicy = DEFAULT_POLICY,
) -> ClassificationResult:
    """Assign family and handling to every diagnostic and derive the family buckets."""

    history = survivals or {}
    classified: list[ValidationDiagnostic] = []
    strongest: dict[DiagnosticFamily, Handling] = {}
    downgraded = 0

    for diagnostic in diagnostics:
        family = CATEGORY_FAMILY[diagnostic.resolved_category()]
        default = FAMILY_DEFAULT_HANDLING[family]
        handling = _downgrade(default, diagnostic, history.get(diagnostic.signature, 0), policy)
        if handling is not default:
            downgraded += 1
        classified.append(diagnostic.classified(family, handling))
        current = strongest.get(family)
        if current is None or HANDLING_RANK[handling] > HANDLING_RANK[current]:
            strongest[family] = handling

    def bucket(handling: Handling) -> tuple[DiagnosticFamily, ...]:
        return tuple(
            sorted(
                (family for family, value in strongest.items() if value is handling),
                key=lambda family: family.value,
            )
        )

    return ClassificationResult(
        diagnostics=tuple(classified),
        auto_fixable_families=bucket(Handling.AUTO_FIXABLE),
        should_demote_families=bucket(Handling.SHOULD_DEMOTE),
        must_repair_families=bucket(Handling.MUST_REPAIR),
        downgraded_count=downgraded,
    )


def advance_survivals(
    previous: Mapping[str, int],
    diagnostics: Iterable[ValidationDiagnostic],
) -> dict[str, int]:
    """Count consecutive attempts each signature has been observed.

    Signatures absent from ``diagnostics`` are dropped, so a defect that disappears
    and comes back starts over.
    """

    signatures = {diagnostic.signature for diagnostic in diagnostics}
    return {signature: previous.get(signature, 0) + 1 for signature in sorted(signatures)}


def _downgrade(
    default: Handling,
    diagnostic: ValidationDiagnostic,
    survived: int,
    policy: ClassificationPolicy,
) -> Handling:
    if policy.demote_after_attempts == 0 or survived < policy.demote_after_attempts:
        return default
    if default is Handling.MUST_REPAIR and diagnostic.severity <= policy.demote_max_severity:
        return Handling.SHOULD_DEMOTE
    if default is Handling.AUTO_FIXABLE:
        # The fix is not taking; stop re-applying it.
        return Handling.SHOULD_DEMOTE
    return default


__all__ = [
    "DEFAULT_POLICY",
    "ClassificationPolicy",
    "ClassificationResult",
    "advance_survivals",
    "classify",
]
