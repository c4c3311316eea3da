"""
circuitforge-repair — collaborator contracts

File: src/circuitforge_repair/integration_plane/collaborators.py
Last updated: 2026-10-19

Purpose
- Define the seams between the convergence loop and the systems it drives: the
  circuit compiler, the design reviewer, the design reviser, the manufacturing
  preview and the session store.

What should be included in this file
- Protocols for each collaborator and the value types they exchange.
- ``CollaboratorUnavailableError`` for collaborators that cannot be reached at all.

Functional requirements
- A compile either yields circuit records or a typed failure; only unavailability
  raises.
- Reviewer output is raw; normalization into diagnostics happens in the
  verification plane.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from circuitforge_repair.domain.diagnostics import ValidationDiagnostic
    from circuitforge_repair.domain.models import FinalSummary, RepairPlan


class CollaboratorUnavailableError(RuntimeError):
    """A required collaborator could not be reached or started."""

    def __init__(self, collaborator: str, message: str) -> None:
        super().__init__(f"{collaborator} unavailable: {message}")
        self.collaborator = collaborator
        self.detail = message


@dataclass(frozen=True, slots=True)
class CompileContext:
    session_id: str
    attempt: int


@dataclass(frozen=True, slots=True)
class CompiledCircuit:
    """Structured circuit representation: a list of JSON records."""

    records: tuple[Mapping[str, object], ...]


@dataclass(frozen=True, slots=True)
class CompileFailure:
    """A compile that produced no circuit. ``transient`` failures are not memoized."""

    message: str
    status: int | None = None
    transient: bool = False


CompileOutcome = CompiledCircuit | CompileFailure


@dataclass(frozen=True, slots=True)
class ReviewReport:
    schematic_text: str = ""
    findings: tuple[object, ...] = ()
    connectivity: Mapping[str, object] | None = None
    traceability: Mapping[str, object] | None = None


@dataclass(frozen=True, slots=True)
class SessionRecord:
    """What the store remembers between runs of one session."""

    last_converged_source: str | None = None
    last_summary: FinalSummary | None = None
    metadata: Mapping[str, object] = field(default_factory=dict)


@runtime_checkable
class DesignCompiler(Protocol):
    async def compile(self, source: str, *, context: CompileContext) -> CompileOutcome: ...


@runtime_checkable
class DesignReviewer(Protocol):
    async def review(self, circuit: CompiledCircuit) -> ReviewReport: ...


@runtime_checkable
class DesignReviser(Protocol):
    """Produces a revised source addressing blocking diagnostics, or ``None``."""

    async def revise(
        self,
        source: str,
        diagnostics: Sequence[ValidationDiagnostic],
        plan: RepairPlan,
    ) -> str | None: ...


@runtime_checkable
class ManufacturingPreview(Protocol):
    """Read-only preview of a design; must not mutate anything the loop uses."""

    async def render(self, source: str) -> Mapping[str, object]: ...


@runtime_checkable
class SessionStore(Protocol):
    def get(self, session_id: str) -> SessionRecord | None: ...

    def put(self, session_id: str, record: SessionRecord) -> None: ...


__all__ = [
    "CollaboratorUnavailableError",
    "CompileContext",
    "CompileFailure",
    "CompileOutcome",
    "CompiledCircuit",
    "DesignCompiler",
    "DesignReviewer",
    "DesignReviser",
    "ManufacturingPreview",
    "ReviewReport",
    "SessionRecord",
    "SessionStore",
]
