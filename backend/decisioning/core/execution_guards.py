"""Execution Guards: per-step safety checks run against freshly re-read state.

Invariants:
    - All functions are PURE: live state is passed in, never read
    - Return a StepVerdict on violation, None when the step may proceed
    - Guard order inside the executor: evidence -> target -> preconditions ->
      confidence -> FSM legality; the first failing guard decides the outcome
    - FSM legality is always asked of the aggregate's own guard methods, never
      re-derived here

Design Decisions:
    - Verdicts (not exceptions): execution-time invalidity is an expected outcome
      that is recorded in the audit trail, not an error path
      (ADR: uniform step outcome shape)
"""

from dataclasses import dataclass, field

from decisioning.core.domain_types import (
    EvidencePolicy, PipelineStage, PlanAction, Risk, RoundResult, RoundStage, StepOutcome,
)
from decisioning.core.evidence import step_is_grounded, ungrounded_citations
from decisioning.core.preconditions import PreconditionState, first_failing
from decisioning.core.repository_protocols import ApplicationLike, RoundLike
from decisioning.core.round_selectors import NO_ROUND, Resolution

# Actions that operate on an existing round; selector none means "round from prior step"
ROUND_ACTIONS = frozenset({
    PlanAction.MARK_LATEST_ROUND_FAILED,
    PlanAction.RUN_ROUND_FEEDBACK_PROCESSOR,
    PlanAction.SYNC_APPLICATION_FROM_ROUND_RESULT,
    PlanAction.SYNC_PIPELINE_FROM_ROUND_STAGE,
})

_STATUS_FOR_CHANGE = {
    "rejection": "rejected",
    "on_hold": "on_hold",
    "withdrawal": "withdrawn",
}


@dataclass(frozen=True)
class StepVerdict:
    outcome: StepOutcome
    reason: str
    detail: dict = field(default_factory=dict)


def _skip(reason: str, **detail) -> StepVerdict:
    return StepVerdict(StepOutcome.SKIPPED, reason, detail)


def _review(reason: str, **detail) -> StepVerdict:
    return StepVerdict(StepOutcome.NEEDS_REVIEW, reason, detail)


@dataclass(frozen=True)
class Transition:
    """One aggregate transition a step would perform."""
    kind: str      # "status" | "stage"
    target: str


# ─── Evidence ────────────────────────────────────────────────────

def check_evidence(citations: list[str], body: str, policy: EvidencePolicy) -> StepVerdict | None:
    if step_is_grounded(citations, body):
        return None
    missing = ungrounded_citations(citations, body) if citations else []
    if policy == EvidencePolicy.LENIENT:
        return _review("evidence_not_in_body", ungrounded=missing)
    return _skip("evidence_not_in_body", ungrounded=missing)


# ─── Target ──────────────────────────────────────────────────────

def check_target(action: PlanAction, resolution: Resolution) -> StepVerdict | None:
    if resolution.resolved:
        return None
    if resolution.status == NO_ROUND:
        if action in ROUND_ACTIONS:
            return _skip("no_round_from_prior_step")
        return None
    return _review(f"target_{resolution.status}", candidates=resolution.candidates)


# ─── Preconditions ───────────────────────────────────────────────

def check_preconditions(preconditions: list[str], state: PreconditionState) -> StepVerdict | None:
    failing = first_failing(preconditions, state)
    if failing is None:
        return None
    return _skip("precondition_failed", precondition=failing)


# ─── Confidence ──────────────────────────────────────────────────

def check_confidence(risk: Risk, confidence: float, threshold: float) -> StepVerdict | None:
    if risk == Risk.HIGH and confidence < threshold:
        return _review("confidence_below_threshold", confidence=confidence, threshold=threshold)
    return None


# ─── FSM legality ────────────────────────────────────────────────

def stage_for_round(round_: RoundLike) -> str:
    if round_.stage == RoundStage.SCREENING.value:
        return PipelineStage.SCREENING.value
    return PipelineStage.INTERVIEWING.value


def planned_transition(action: PlanAction, params: dict, round_: RoundLike | None) -> Transition | None:
    """Aggregate transition implied by a step, or None for round-only steps."""
    if action == PlanAction.SET_PIPELINE_STAGE:
        return Transition("stage", params["stage"])
    if action == PlanAction.RUN_STATUS_PROCESSOR:
        change = params["status_change"]
        if change == "offer":
            return Transition("stage", PipelineStage.OFFER.value)
        return Transition("status", _STATUS_FOR_CHANGE[change])
    if action == PlanAction.SYNC_APPLICATION_FROM_ROUND_RESULT and round_ is not None:
        if round_.result == RoundResult.FAILED.value:
            return Transition("status", "rejected")
        if round_.result in (RoundResult.PASSED.value, RoundResult.WAITLISTED.value):
            return Transition("stage", PipelineStage.INTERVIEWING.value)
        return None
    if action == PlanAction.SYNC_PIPELINE_FROM_ROUND_STAGE and round_ is not None:
        return Transition("stage", stage_for_round(round_))
    return None


def check_transition(
    action: PlanAction, params: dict, app: ApplicationLike, round_: RoundLike | None,
) -> StepVerdict | None:
    if action == PlanAction.SYNC_APPLICATION_FROM_ROUND_RESULT and round_ is not None:
        if round_.result == RoundResult.PENDING.value:
            return _skip("round_result_pending", round_id=round_.id)
    if action in (PlanAction.MARK_LATEST_ROUND_FAILED, PlanAction.RUN_ROUND_FEEDBACK_PROCESSOR):
        if round_ is not None and round_.result != RoundResult.PENDING.value:
            return _skip("round_not_pending", round_id=round_.id, result=round_.result)

    transition = planned_transition(action, params, round_)
    if transition is None:
        if action == PlanAction.SYNC_APPLICATION_FROM_ROUND_RESULT:
            return _skip("no_transition_for_result")
        return None
    current = app.status if transition.kind == "status" else app.pipeline_stage
    if current == transition.target:
        return _skip("already_in_state", kind=transition.kind, state=current)
    allowed = (
        app.may_transition_status(transition.target)
        if transition.kind == "status"
        else app.may_move_to_stage(transition.target)
    )
    if not allowed:
        return _skip(
            "illegal_transition",
            kind=transition.kind, current=current, target=transition.target,
        )
    return None
