"""
circuitforge-repair — convergence loop controller

File: src/circuitforge_repair/control_plane/controller.py
Last updated: 2026-10-19

Purpose
- Drive a design through compile, preflight, validation, classification and repair
  until it has no blocking diagnostics or the attempt budget runs out.

What should be included in this file
- ``LoopSettings`` and ``LoopRunResult``.
- ``ConvergenceLoop.run`` owning the attempt counter, the survival history and the
  current diagnostic set for one session.

Functional requirements
- Preflight blockers skip compilation for that validation.
- Compiler exceptions and attempt timeouts become one synthetic blocking diagnostic,
  consume the attempt and skip re-validation.
- Collaborator unavailability ends the run with an ``error`` terminal event.
- Cancellation is honored at the start of each attempt.
- Every transition is emitted before the loop acts on it; exactly one terminal event.
- ``run`` never raises; unexpected failures are logged and reported as ``error``.

Non-functional requirements
- Attempts are strictly sequential; validations are memoized by source hash.
- The optional manufacturing preview runs concurrently and never affects decisions.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, TypeVar

import structlog

from circuitforge_repair.constants import DEFAULT_ATTEMPT_BUDGET, DEFAULT_ATTEMPT_TIMEOUT_SECONDS
from circuitforge_repair.control_plane.diffing import diff_designs
from circuitforge_repair.control_plane.readiness import (
    DEFAULT_WEIGHTS,
    ReadinessWeights,
    readiness_score,
)
from circuitforge_repair.control_plane.repair_actions import (
    DEFAULT_REPAIR_SETTINGS,
    RepairSettings,
    apply_auto_fixes,
    apply_strategy,
)
from circuitforge_repair.control_plane.strategy import assess_congestion, select_strategy
from circuitforge_repair.domain.diagnostics import (
    ValidationDiagnostic,
    dedupe_diagnostics,
    diagnostics_score,
    diagnostics_set_signature,
)
from circuitforge_repair.domain.events import ProgressEventType
from circuitforge_repair.domain.ids import generate_session_id
from circuitforge_repair.domain.models import (
    AttemptStatus,
    CongestionScope,
    FinalSummary,
    LoopOutcome,
    RepairPlan,
    RepairResult,
    RepairStrategy,
    StopReason,
)
from circuitforge_repair.domain.taxonomy import LAYOUT_FAMILIES, TAXONOMY_VERSION
from circuitforge_repair.integration_plane.collaborators import (
    CollaboratorUnavailableError,
    CompileContext,
    CompileFailure,
    DesignCompiler,
    DesignReviewer,
    DesignReviser,
    ManufacturingPreview,
    SessionRecord,
    SessionStore,
)
from circuitforge_repair.observability.events import ProgressEmitter
from circuitforge_repair.observability.logging import correlation_scope
from circuitforge_repair.utils.concurrency import CancellationToken, run_with_timeout
from circuitforge_repair.utils.hashing import sha256_text
from circuitforge_repair.verification_plane.circuit_findings import (
    attempt_timeout_diagnostic,
    compile_failure_diagnostic,
    extract_circuit_diagnostics,
    normalize_review_findings,
)
from circuitforge_repair.verification_plane.classifier import (
    DEFAULT_POLICY,
    ClassificationPolicy,
    ClassificationResult,
    advance_survivals,
    classify,
)
from circuitforge_repair.verification_plane.preflight import collect_preflight_diagnostics
from circuitforge_repair.verification_plane.source_parser import parse_design

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class LoopSettings:
    attempt_budget: int = DEFAULT_ATTEMPT_BUDGET
    attempt_timeout_seconds: float | None = DEFAULT_ATTEMPT_TIMEOUT_SECONDS
    stagnation_limit: int = 0
    localized_congestion_ratio: float = 0.5
    preview_timeout_seconds: float = 10.0
    classification: ClassificationPolicy = DEFAULT_POLICY
    repair: RepairSettings = DEFAULT_REPAIR_SETTINGS
    readiness: ReadinessWeights = DEFAULT_WEIGHTS

    def __post_init__(self) -> None:
        if self.attempt_budget < 1:
            raise ValueError("LoopSettings.attempt_budget: must be >= 1")
        if self.attempt_timeout_seconds is not None and self.attempt_timeout_seconds <= 0:
            raise ValueError("LoopSettings.attempt_timeout_seconds: must be > 0")
        if self.stagnation_limit < 0:
            raise ValueError("LoopSettings.stagnation_limit: must be >= 0")
        if not 0 < self.localized_congestion_ratio <= 1:
            raise ValueError("LoopSettings.localized_congestion_ratio: must be in (0, 1]")
        if self.preview_timeout_seconds <= 0:
            raise ValueError("LoopSettings.preview_timeout_seconds: must be > 0")

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> LoopSettings:
        """Build settings from a validated effective config mapping."""

        loop = config["loop"]
        repair = config["repair"]
        scoring = config["scoring"]
        return cls(
            attempt_budget=int(loop["attempt_budget"]),
            attempt_timeout_seconds=float(loop["attempt_timeout_seconds"]),
            stagnation_limit=int(loop["stagnation_limit"]),
            localized_congestion_ratio=float(loop["localized_congestion_ratio"]),
            preview_timeout_seconds=float(config["preview"]["timeout_seconds"]),
            classification=ClassificationPolicy(
                demote_after_attempts=int(loop["demote_after_attempts"]),
                demote_max_severity=int(loop["demote_max_severity"]),
            ),
            repair=RepairSettings(
                schematic_grid=float(repair["schematic_grid"]),
                layout_spread_factor=float(repair["layout_spread_factor"]),
                relief_step_mm=float(repair["relief_step_mm"]),
                decoupling_capacitance=str(repair["decoupling_capacitance"]),
                anchor_rebuilt_nets=bool(repair["anchor_rebuilt_nets"]),
            ),
            readiness=ReadinessWeights(
                blocking_penalty=int(scoring["blocking_penalty"]),
                warning_penalty=int(scoring["warning_penalty"]),
            ),
        )


@dataclass(frozen=True, slots=True)
class LoopRunResult:
    session_id: str
    summary: FinalSummary
    final_source: str
    diagnostics: tuple[ValidationDiagnostic, ...]
    plans: tuple[RepairPlan, ...] = ()
    results: tuple[RepairResult, ...] = ()

    @property
    def converged(self) -> bool:
        return self.summary.converged


@dataclass(frozen=True, slots=True)
class _Validation:
    preflight: tuple[ValidationDiagnostic, ...]
    post_compile: tuple[ValidationDiagnostic, ...]
    compile_skipped: bool = False
    compile_failed: bool = False
    aborted: bool = False

    @property
    def diagnostics(self) -> tuple[ValidationDiagnostic, ...]:
        return tuple(dedupe_diagnostics((*self.preflight, *self.post_compile)))


@dataclass(frozen=True, slots=True)
class _Snapshot:
    """A validated source and its classification."""

    source: str
    classification: ClassificationResult
    score: int


@dataclass(slots=True)
class _RunState:
    session_id: str
    emitter: ProgressEmitter
    source: str
    attempts_used: int = 0
    validated: bool = False
    best: _Snapshot | None = None
    latest: _Snapshot | None = None
    survivals: dict[str, int] = field(default_factory=dict)
    memo: dict[str, _Validation] = field(default_factory=dict)
    plans: list[RepairPlan] = field(default_factory=list)
    results: list[RepairResult] = field(default_factory=list)
    preview_task: asyncio.Task[Mapping[str, object]] | None = None
    previous_record: SessionRecord | None = None

    def observe(self, snapshot: _Snapshot) -> None:
        self.latest = snapshot
        if self.best is None or snapshot.score < self.best.score:
            self.best = snapshot


class _AttemptTimeout(Exception):
    pass


class ConvergenceLoop:
    """Validation and repair loop for one design per ``run`` call."""

    def __init__(
        self,
        compiler: DesignCompiler,
        *,
        reviewer: DesignReviewer | None = None,
        reviser: DesignReviser | None = None,
        preview: ManufacturingPreview | None = None,
        session_store: SessionStore | None = None,
        settings: LoopSettings | None = None,
        logger: Any | None = None,
    ) -> None:
        self._compiler = compiler
        self._reviewer = reviewer
        self._reviser = reviser
        self._preview = preview
        self._session_store = session_store
        self._settings = settings if settings is not None else LoopSettings()
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def settings(self) -> LoopSettings:
        return self._settings

    async def run(
        self,
        source: str,
        *,
        session_id: str | None = None,
        emitter: ProgressEmitter | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> LoopRunResult:
        """Run the loop to a terminal outcome. Never raises for loop failures.

        An explicit ``emitter`` owns the session id; a differing ``session_id`` is logged.
        """

        if emitter is None:
            emitter = ProgressEmitter(session_id or generate_session_id())
        elif session_id is not None and session_id != emitter.session_id:
            self._logger.warning(
                "session_id_mismatch",
                session_id=emitter.session_id,
                requested_session_id=session_id,
            )
        state = _RunState(session_id=emitter.session_id, emitter=emitter, source=source)

        with correlation_scope(session_id=state.session_id):
            try:
                return await self._run(state, cancel_token)
            except CollaboratorUnavailableError as exc:
                self._logger.error(
                    "collaborator_unavailable",
                    session_id=state.session_id,
                    collaborator=exc.collaborator,
                    error=str(exc),
                )
                return await self._finish(
                    state,
                    LoopOutcome.ERROR,
                    StopReason.COLLABORATOR_UNAVAILABLE,
                    detail={"error": str(exc), "collaborator": exc.collaborator},
                )
            except Exception as exc:  # noqa: BLE001
                self._logger.exception(
                    "convergence_loop_failed",
                    session_id=state.session_id,
                    error_type=type(exc).__name__,
                )
                return await self._finish(
                    state,
                    LoopOutcome.ERROR,
                    StopReason.INTERNAL_ERROR,
                    detail={"error": str(exc), "error_type": type(exc).__name__},
                )

    # ------------------------------------------------------------------
    # Attempt loop
    # ------------------------------------------------------------------

    async def _run(self, state: _RunState, cancel_token: CancellationToken | None) -> LoopRunResult:
        settings = self._settings
        await self._emit(
            state,
            ProgressEventType.SESSION_STARTED,
            {
                "attempt_budget": settings.attempt_budget,
                "source_sha256": sha256_text(state.source),
                "taxonomy_version": TAXONOMY_VERSION,
            },
        )
        self._start_preview(state)

        previous_signature: str | None = None
        stagnant_attempts = 0
        failed_strategy: RepairStrategy | None = None

        for attempt in range(settings.attempt_budget):
            if cancel_token is not None and cancel_token.is_cancelled:
                return await self._finish(
                    state,
                    LoopOutcome.CANCELLED,
                    StopReason.CANCELLED,
                    detail={"reason": cancel_token.reason or "cancelled"},
                )

            state.attempts_used = attempt + 1
            with correlation_scope(session_id=state.session_id, attempt=attempt):
                self._logger.info("attempt_started", session_id=state.session_id, attempt=attempt)
                await self._emit(
                    state,
                    ProgressEventType.ATTEMPT_STARTED,
                    {"attempt": attempt, "source_sha256": sha256_text(state.source)},
                )
                deadline = self._deadline()

                validation = await self._validate_attempt(state, state.source, attempt, deadline)
                await self._emit_validation(state, attempt, validation)

                attempt_survivals = dict(state.survivals)
                classification = classify(
                    validation.diagnostics,
                    survivals=attempt_survivals,
                    policy=settings.classification,
                )
                state.survivals = advance_survivals(state.survivals, validation.diagnostics)
                if not validation.aborted:
                    state.validated = True
                state.observe(self._snapshot(state.source, classification, validation))

                if classification.is_clean:
                    return await self._converge_clean(state, attempt, classification)

                signature = diagnostics_set_signature(classification.diagnostics)
                stagnant_attempts = stagnant_attempts + 1 if signature == previous_signature else 0
                previous_signature = signature
                if settings.stagnation_limit and stagnant_attempts >= settings.stagnation_limit:
                    self._logger.warning(
                        "loop_stagnant",
                        session_id=state.session_id,
                        attempt=attempt,
                        stagnant_attempts=stagnant_attempts,
                    )
                    await self._emit_attempt_result(
                        state, attempt, AttemptStatus.FAILED, classification
                    )
                    return await self._finish(
                        state, LoopOutcome.EXHAUSTED, StopReason.STAGNANT_SIGNATURE
                    )

                plan = self._plan(state.source, attempt, classification, failed_strategy)
                state.plans.append(plan)
                await self._emit(state, ProgressEventType.REPAIR_PLAN, plan.to_dict())
                self._logger.info(
                    "repair_plan_selected",
                    session_id=state.session_id,
                    attempt=attempt,
                    strategy=plan.strategy.value,
                    escalated_from=(
                        None if plan.escalated_from is None else plan.escalated_from.value
                    ),
                    must_repair=[family.value for family in plan.must_repair_families],
                )

                result, repaired, revalidated = await self._repair(
                    state, attempt, plan, classification, validation, attempt_survivals, deadline
                )
                state.results.append(result)
                await self._emit(state, ProgressEventType.REPAIR_RESULT, result.to_dict())
                diff = diff_designs(state.source, repaired, attempt=attempt)
                await self._emit(state, ProgressEventType.ITERATION_DIFF, diff.to_dict())

                failed_strategy = None if result.improved else plan.strategy
                state.source = repaired
                outcome_classification = revalidated if revalidated is not None else classification

                if revalidated is not None and revalidated.is_clean:
                    await self._emit_attempt_result(
                        state, attempt, AttemptStatus.CLEAN, revalidated
                    )
                    return await self._finish(
                        state,
                        LoopOutcome.CONVERGED,
                        StopReason.CLEAN,
                        final=_Snapshot(repaired, revalidated, 0),
                    )
                if state.attempts_used < settings.attempt_budget:
                    await self._emit_attempt_result(
                        state, attempt, AttemptStatus.RETRYING, outcome_classification
                    )
                    continue
                await self._emit_attempt_result(
                    state, attempt, AttemptStatus.FAILED, outcome_classification
                )

        return await self._finish(state, LoopOutcome.EXHAUSTED, StopReason.MAX_ATTEMPTS)

    async def _converge_clean(
        self,
        state: _RunState,
        attempt: int,
        classification: ClassificationResult,
    ) -> LoopRunResult:
        source = state.source
        if classification.auto_fixable_families:
            plan = self._build_plan(attempt, classification, RepairStrategy.NORMAL)
            state.plans.append(plan)
            await self._emit(state, ProgressEventType.REPAIR_PLAN, plan.to_dict())
            fixed = apply_auto_fixes(
                source,
                plan.auto_fixable_families,
                classification.diagnostics,
                settings=self._settings.repair,
            )
            result = RepairResult(
                attempt=attempt,
                blocking_before=0,
                blocking_after=0,
                demoted_count=classification.demoted_count,
                auto_fixed_count=fixed.auto_fixed_count,
                revalidated=False,
                applied_actions=fixed.actions,
            )
            state.results.append(result)
            await self._emit(state, ProgressEventType.REPAIR_RESULT, result.to_dict())
            diff = diff_designs(source, fixed.source, attempt=attempt)
            await self._emit(state, ProgressEventType.ITERATION_DIFF, diff.to_dict())
            source = fixed.source
            state.source = source

        await self._emit_attempt_result(state, attempt, AttemptStatus.CLEAN, classification)
        return await self._finish(
            state,
            LoopOutcome.CONVERGED,
            StopReason.CLEAN,
            final=_Snapshot(source, classification, 0),
        )

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    async def _validate_attempt(
        self,
        state: _RunState,
        source: str,
        attempt: int,
        deadline: float | None,
    ) -> _Validation:
        """Validate ``source``; compiler crashes and timeouts become synthetic blockers."""

        preflight = tuple(collect_preflight_diagnostics(source))
        try:
            return await self._within_deadline(
                self._validate(state, source, attempt, preflight), deadline
            )
        except CollaboratorUnavailableError:
            raise
        except _AttemptTimeout:
            timeout = self._settings.attempt_timeout_seconds or 0.0
            self._logger.warning(
                "attempt_timed_out",
                session_id=state.session_id,
                attempt=attempt,
                timeout_seconds=timeout,
            )
            return _Validation(
                preflight=preflight,
                post_compile=(attempt_timeout_diagnostic(timeout),),
                compile_failed=True,
                aborted=True,
            )
        except Exception as exc:  # noqa: BLE001
            self._logger.warning(
                "compiler_raised",
                session_id=state.session_id,
                attempt=attempt,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return _Validation(
                preflight=preflight,
                post_compile=(compile_failure_diagnostic(str(exc)),),
                compile_failed=True,
                aborted=True,
            )

    async def _validate(
        self,
        state: _RunState,
        source: str,
        attempt: int,
        preflight: tuple[ValidationDiagnostic, ...],
    ) -> _Validation:
        key = sha256_text(source)
        cached = state.memo.get(key)
        if cached is not None:
            return cached

        if classify(preflight, policy=self._settings.classification).must_repair_families:
            validation = _Validation(preflight=preflight, post_compile=(), compile_skipped=True)
            state.memo[key] = validation
            return validation

        outcome = await self._compiler.compile(
            source, context=CompileContext(session_id=state.session_id, attempt=attempt)
        )
        if isinstance(outcome, CompileFailure):
            validation = _Validation(
                preflight=preflight,
                post_compile=(compile_failure_diagnostic(outcome.message),),
                compile_failed=True,
            )
        else:
            post_compile = list(extract_circuit_diagnostics(outcome.records))
            if self._reviewer is not None:
                report = await self._reviewer.review(outcome)
                post_compile.extend(normalize_review_findings(report.findings))
            validation = _Validation(
                preflight=preflight,
                post_compile=tuple(dedupe_diagnostics(post_compile)),
            )
        if not (isinstance(outcome, CompileFailure) and outcome.transient):
            state.memo[key] = validation
        return validation

    async def _within_deadline(self, awaitable: Awaitable[T], deadline: float | None) -> T:
        if deadline is None:
            return await awaitable
        remaining = deadline - asyncio.get_running_loop().time()
        if remaining <= 0:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise _AttemptTimeout()
        try:
            return await run_with_timeout(awaitable, remaining)
        except TimeoutError as exc:
            raise _AttemptTimeout() from exc

    def _deadline(self) -> float | None:
        timeout = self._settings.attempt_timeout_seconds
        if timeout is None:
            return None
        return asyncio.get_running_loop().time() + timeout

    def _snapshot(
        self,
        source: str,
        classification: ClassificationResult,
        validation: _Validation,
    ) -> _Snapshot:
        score = diagnostics_score(
            classification.diagnostics,
            compile_failed=validation.compile_failed,
        )
        return _Snapshot(source=source, classification=classification, score=score)

    # ------------------------------------------------------------------
    # Planning and repair
    # ------------------------------------------------------------------

    def _plan(
        self,
        source: str,
        attempt: int,
        classification: ClassificationResult,
        failed_strategy: RepairStrategy | None,
    ) -> RepairPlan:
        scope = CongestionScope.NONE
        if LAYOUT_FAMILIES.intersection(classification.must_repair_families):
            scope, _ = assess_congestion(
                parse_design(source),
                classification.blocking,
                localized_ratio=self._settings.localized_congestion_ratio,
            )
        decision = select_strategy(
            classification.must_repair_families,
            attempt,
            previous=failed_strategy,
            congestion_scope=scope,
        )
        return self._build_plan(
            attempt,
            classification,
            decision.strategy,
            escalated_from=decision.escalated_from,
            congestion_scope=scope,
        )

    def _build_plan(
        self,
        attempt: int,
        classification: ClassificationResult,
        strategy: RepairStrategy,
        *,
        escalated_from: RepairStrategy | None = None,
        congestion_scope: CongestionScope = CongestionScope.NONE,
    ) -> RepairPlan:
        return RepairPlan(
            attempt=attempt,
            auto_fixable_families=classification.auto_fixable_families,
            should_demote_families=classification.should_demote_families,
            must_repair_families=classification.must_repair_families,
            strategy=strategy,
            escalated_from=escalated_from,
            congestion_scope=congestion_scope,
        )

    async def _repair(
        self,
        state: _RunState,
        attempt: int,
        plan: RepairPlan,
        classification: ClassificationResult,
        validation: _Validation,
        survivals: Mapping[str, int],
        deadline: float | None,
    ) -> tuple[RepairResult, str, ClassificationResult | None]:
        settings = self._settings
        fixed = apply_auto_fixes(
            state.source,
            plan.auto_fixable_families,
            classification.diagnostics,
            settings=settings.repair,
        )
        repaired = fixed.source
        actions = list(fixed.actions)

        if plan.strategy is RepairStrategy.NORMAL:
            revised = await self._revise(state, attempt, repaired, classification.blocking, plan)
            if revised is not None and revised != repaired:
                repaired = revised
                actions.append("revise:normal")
        else:
            _, affected = (
                assess_congestion(
                    parse_design(repaired),
                    classification.blocking,
                    localized_ratio=settings.localized_congestion_ratio,
                )
                if plan.strategy is RepairStrategy.TARGETED_CONGESTION_RELIEF
                else (CongestionScope.NONE, ())
            )
            applied = apply_strategy(
                repaired,
                plan.strategy,
                diagnostics=classification.blocking,
                affected_components=affected,
                settings=settings.repair,
            )
            repaired = applied.source
            actions.extend(applied.actions)

        blocking_before = len(classification.blocking)
        revalidated: ClassificationResult | None = None
        if not validation.aborted:
            revalidation = await self._validate_attempt(state, repaired, attempt, deadline)
            if not revalidation.aborted:
                revalidated = classify(
                    revalidation.diagnostics,
                    survivals=survivals,
                    policy=settings.classification,
                )
                state.observe(self._snapshot(repaired, revalidated, revalidation))

        result = RepairResult(
            attempt=attempt,
            blocking_before=blocking_before,
            blocking_after=blocking_before if revalidated is None else len(revalidated.blocking),
            demoted_count=classification.demoted_count,
            auto_fixed_count=fixed.auto_fixed_count,
            revalidated=revalidated is not None,
            applied_actions=tuple(actions),
        )
        self._logger.info(
            "repair_applied",
            session_id=state.session_id,
            attempt=attempt,
            strategy=plan.strategy.value,
            blocking_before=result.blocking_before,
            blocking_after=result.blocking_after,
            revalidated=result.revalidated,
        )
        return result, repaired, revalidated

    async def _revise(
        self,
        state: _RunState,
        attempt: int,
        source: str,
        blocking: Sequence[ValidationDiagnostic],
        plan: RepairPlan,
    ) -> str | None:
        if self._reviser is None:
            return None
        try:
            return await self._reviser.revise(source, blocking, plan)
        except CollaboratorUnavailableError:
            raise
        except Exception as exc:  # noqa: BLE001
            self._logger.warning(
                "reviser_failed",
                session_id=state.session_id,
                attempt=attempt,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return None

    # ------------------------------------------------------------------
    # Events and termination
    # ------------------------------------------------------------------

    async def _emit(
        self,
        state: _RunState,
        event_type: ProgressEventType,
        payload: Mapping[str, object],
    ) -> None:
        event = await state.emitter.emit(event_type, payload)
        self._logger.debug(
            "progress_event",
            session_id=state.session_id,
            event_sequence=event.sequence,
            event_type=event.event_type.value,
        )

    async def _emit_validation(
        self, state: _RunState, attempt: int, validation: _Validation
    ) -> None:
        await self._emit(
            state,
            ProgressEventType.PREFLIGHT_DIAGNOSTICS,
            {
                "attempt": attempt,
                "count": len(validation.preflight),
                "compile_skipped": validation.compile_skipped,
                "diagnostics": [item.to_dict() for item in validation.preflight],
            },
        )
        await self._emit(
            state,
            ProgressEventType.VALIDATION_DIAGNOSTICS,
            {
                "attempt": attempt,
                "count": len(validation.post_compile),
                "compile_failed": validation.compile_failed,
                "diagnostics": [item.to_dict() for item in validation.post_compile],
            },
        )

    async def _emit_attempt_result(
        self,
        state: _RunState,
        attempt: int,
        status: AttemptStatus,
        classification: ClassificationResult,
    ) -> None:
        await self._emit(
            state,
            ProgressEventType.ATTEMPT_RESULT,
            {
                "attempt": attempt,
                "status": status.value,
                "blocking": len(classification.blocking),
                "warnings": len(classification.warnings),
                "signature": diagnostics_set_signature(classification.diagnostics),
            },
        )

    def _start_preview(self, state: _RunState) -> None:
        if self._session_store is None:
            return
        state.previous_record = self._session_store.get(state.session_id)
        if self._preview is None or state.previous_record is None:
            return
        previous_source = state.previous_record.last_converged_source
        if not previous_source:
            return
        state.preview_task = asyncio.create_task(
            run_with_timeout(
                self._preview.render(previous_source),
                self._settings.preview_timeout_seconds,
            )
        )

    async def _collect_preview(self, state: _RunState) -> None:
        task = state.preview_task
        if task is None:
            return
        state.preview_task = None
        try:
            artifact = await task
        except Exception as exc:  # noqa: BLE001
            self._logger.warning(
                "preview_failed",
                session_id=state.session_id,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            await self._emit(
                state,
                ProgressEventType.PREVIEW_FAILED,
                {"error": str(exc) or type(exc).__name__, "error_type": type(exc).__name__},
            )
            return
        await self._emit(
            state,
            ProgressEventType.PREVIEW_READY,
            {"artifacts": sorted(str(key) for key in artifact)},
        )

    async def _finish(
        self,
        state: _RunState,
        outcome: LoopOutcome,
        stop_reason: StopReason,
        *,
        final: _Snapshot | None = None,
        detail: Mapping[str, object] | None = None,
    ) -> LoopRunResult:
        snapshot = final if final is not None else state.best
        summary = self._summarize(state, outcome, stop_reason, snapshot)
        final_source = snapshot.source if snapshot is not None else state.source
        diagnostics = snapshot.classification.diagnostics if snapshot is not None else ()

        if not state.emitter.is_closed:
            if state.preview_task is not None:
                await self._collect_preview(state)
            await self._emit(state, ProgressEventType.FINAL_SUMMARY, summary.to_dict())
            terminal_payload: dict[str, object] = {
                "attempts_used": summary.attempts_used,
                "readiness_score": summary.readiness_score,
                "stop_reason": summary.stop_reason.value,
            }
            terminal_payload.update(detail or {})
            await self._emit(state, _TERMINAL_EVENTS[outcome], terminal_payload)
        elif state.preview_task is not None:
            state.preview_task.cancel()
            state.preview_task = None

        self._logger.info(
            "convergence_loop_finished",
            session_id=state.session_id,
            outcome=outcome.value,
            stop_reason=stop_reason.value,
            attempts_used=summary.attempts_used,
            readiness_score=summary.readiness_score,
        )
        self._remember(state, summary, final_source)
        return LoopRunResult(
            session_id=state.session_id,
            summary=summary,
            final_source=final_source,
            diagnostics=diagnostics,
            plans=tuple(state.plans),
            results=tuple(state.results),
        )

    def _summarize(
        self,
        state: _RunState,
        outcome: LoopOutcome,
        stop_reason: StopReason,
        snapshot: _Snapshot | None,
    ) -> FinalSummary:
        budget = self._settings.attempt_budget
        if snapshot is None:
            return FinalSummary(
                outcome=outcome,
                stop_reason=stop_reason,
                readiness_score=0,
                diagnostics_count=0,
                blocking_diagnostics_count=0,
                warning_diagnostics_count=0,
                unresolved_blockers=(),
                unresolved_families=(),
                attempts_used=min(state.attempts_used, budget),
                attempt_budget=budget,
            )
        classification = snapshot.classification
        blocking = classification.blocking
        warnings = classification.warnings
        return FinalSummary(
            outcome=outcome,
            stop_reason=stop_reason,
            readiness_score=readiness_score(
                len(blocking),
                len(warnings),
                weights=self._settings.readiness,
                validated=state.validated,
            ),
            diagnostics_count=len(classification.diagnostics),
            blocking_diagnostics_count=len(blocking),
            warning_diagnostics_count=len(warnings),
            unresolved_blockers=tuple(
                f"{item.family.value if item.family else 'unknown'}: {item.message}"
                for item in blocking
            ),
            unresolved_families=classification.must_repair_families,
            attempts_used=min(state.attempts_used, budget),
            attempt_budget=budget,
        )

    def _remember(self, state: _RunState, summary: FinalSummary, final_source: str) -> None:
        if self._session_store is None:
            return
        previous = state.previous_record
        converged_source = (
            final_source
            if summary.converged
            else (previous.last_converged_source if previous is not None else None)
        )
        try:
            self._session_store.put(
                state.session_id,
                SessionRecord(last_converged_source=converged_source, last_summary=summary),
            )
        except Exception as exc:  # noqa: BLE001
            self._logger.warning(
                "session_store_put_failed",
                session_id=state.session_id,
                error_type=type(exc).__name__,
                error=str(exc),
            )


_TERMINAL_EVENTS: dict[LoopOutcome, ProgressEventType] = {
    LoopOutcome.CONVERGED: ProgressEventType.CONVERGED,
    LoopOutcome.EXHAUSTED: ProgressEventType.EXHAUSTED,
    LoopOutcome.CANCELLED: ProgressEventType.CANCELLED,
    LoopOutcome.ERROR: ProgressEventType.ERROR,
}


__all__ = [
    "ConvergenceLoop",
    "LoopRunResult",
    "LoopSettings",
]
