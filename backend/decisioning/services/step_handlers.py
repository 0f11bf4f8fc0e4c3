"""Step Handlers: the only code that mutates the application aggregate.

Invariants:
    - Called by GuardedExecutor ONLY after every guard passed for the step
    - Idempotent per email: rounds and feedback carry source_email_id; a replay
      reports already_exists instead of writing a duplicate
    - A new booking within the reschedule window of a live round updates that
      round instead of adding a second one (invite then reminder)
    - Rejections and offers leave one CompanyFeedback row per (application, email)
    - Secondary effects (closing the pipeline on rejection/withdrawal) are applied
      only when the aggregate's own FSM guard allows them
    - Handlers flush, never commit: the executor owns the transaction

Design Decisions:
    - One small async function per vocabulary action, dispatched through HANDLERS
      (ADR: explicit dispatch table, no reflection on action names)
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from decisioning.core.domain_types import (
    ApplicationStatus, PipelineStage, PlanAction, RoundResult, RoundStage,
)
from decisioning.core.execution_guards import planned_transition
from decisioning.core.round_selectors import naive_utc, scheduled_window
from decisioning.core.rules import RESCHEDULE_WINDOW_MINUTES
from decisioning.models.company_feedback import CompanyFeedback
from decisioning.models.interview_application import InterviewApplication
from decisioning.models.interview_round import InterviewRound
from decisioning.models.round_feedback import RoundFeedback

logger = logging.getLogger(__name__)

APPLIED = "applied"
ALREADY_EXISTS = "already_exists"
ALREADY_SET = "already_set"

COMPANY_FEEDBACK_TYPES = ("rejection", "offer")


@dataclass(frozen=True)
class StepCall:
    """Everything a handler may read: guarded live state plus step params."""
    db: AsyncSession
    application: InterviewApplication
    round: InterviewRound | None
    params: dict
    email_id: int
    email_date: datetime | None


@dataclass(frozen=True)
class HandlerResult:
    status: str
    round_id: int | None = None
    changes: dict = field(default_factory=dict)


def _effective_time(call: StepCall) -> datetime:
    return call.email_date or datetime.now(timezone.utc)


def _close_pipeline_if_legal(app: InterviewApplication, changes: dict) -> None:
    closed = PipelineStage.CLOSED.value
    if app.pipeline_stage != closed and app.may_move_to_stage(closed):
        changes["pipeline_stage"] = [app.pipeline_stage, closed]
        app.pipeline_stage = closed


def _apply_transition(app: InterviewApplication, action: PlanAction, call: StepCall) -> dict:
    transition = planned_transition(action, call.params, call.round)
    changes: dict = {}
    if transition is None:
        return changes
    if transition.kind == "status":
        changes["status"] = [app.status, transition.target]
        app.status = transition.target
        if transition.target in (ApplicationStatus.REJECTED.value, ApplicationStatus.WITHDRAWN.value):
            _close_pipeline_if_legal(app, changes)
    else:
        changes["pipeline_stage"] = [app.pipeline_stage, transition.target]
        app.pipeline_stage = transition.target
    app.touch()
    return changes


# ─── Application-level handlers ──────────────────────────────────

async def set_pipeline_stage(call: StepCall) -> HandlerResult:
    changes = _apply_transition(call.application, PlanAction.SET_PIPELINE_STAGE, call)
    await call.db.flush()
    return HandlerResult(APPLIED, changes=changes)


async def run_status_processor(call: StepCall) -> HandlerResult:
    changes = _apply_transition(call.application, PlanAction.RUN_STATUS_PROCESSOR, call)
    if call.params.get("status_change") in COMPANY_FEEDBACK_TYPES:
        feedback_id = await _record_company_feedback(call)
        if feedback_id is not None:
            changes["company_feedback_id"] = feedback_id
    await call.db.flush()
    return HandlerResult(APPLIED, changes=changes)


async def _record_company_feedback(call: StepCall) -> int | None:
    """One CompanyFeedback row per (application, email); None when it already exists."""
    app = call.application
    existing = (await call.db.execute(
        select(CompanyFeedback.id).where(
            CompanyFeedback.interview_application_id == app.id,
            CompanyFeedback.source_email_id == call.email_id,
        )
    )).scalar_one_or_none()
    if existing is not None:
        return None

    params = call.params
    feedback = CompanyFeedback(
        interview_application_id=app.id,
        source_email_id=call.email_id,
        feedback_type=params["status_change"],
        feedback_text=params.get("feedback_text"),
        rejection_reason=params.get("rejection_reason"),
        next_steps=params.get("next_steps"),
        received_at=_effective_time(call),
    )
    call.db.add(feedback)
    await call.db.flush()
    return feedback.id


async def sync_application_from_round_result(call: StepCall) -> HandlerResult:
    changes = _apply_transition(
        call.application, PlanAction.SYNC_APPLICATION_FROM_ROUND_RESULT, call,
    )
    await call.db.flush()
    return HandlerResult(APPLIED, round_id=call.round.id, changes=changes)


async def sync_pipeline_from_round_stage(call: StepCall) -> HandlerResult:
    changes = _apply_transition(
        call.application, PlanAction.SYNC_PIPELINE_FROM_ROUND_STAGE, call,
    )
    await call.db.flush()
    return HandlerResult(APPLIED, round_id=call.round.id, changes=changes)


# ─── Round-level handlers ────────────────────────────────────────

async def mark_latest_round_failed(call: StepCall) -> HandlerResult:
    round_ = call.round
    if round_.result == RoundResult.FAILED.value:
        return HandlerResult(ALREADY_SET, round_id=round_.id)
    changes = {"result": [round_.result, RoundResult.FAILED.value]}
    round_.result = RoundResult.FAILED.value
    round_.completed_at = round_.completed_at or _effective_time(call)
    await call.db.flush()
    return HandlerResult(APPLIED, round_id=round_.id, changes=changes)


async def run_round_feedback_processor(call: StepCall) -> HandlerResult:
    round_ = call.round
    params = call.params
    existing = (await call.db.execute(
        select(RoundFeedback).where(
            RoundFeedback.interview_round_id == round_.id,
            RoundFeedback.source_email_id == call.email_id,
        )
    )).scalar_one_or_none()
    if existing is not None:
        return HandlerResult(ALREADY_EXISTS, round_id=round_.id)

    changes = {"result": [round_.result, params["result"]]}
    round_.result = params["result"]
    round_.completed_at = round_.completed_at or _effective_time(call)
    feedback = RoundFeedback(
        interview_round_id=round_.id,
        source_email_id=call.email_id,
        result=params["result"],
        summary=params.get("summary"),
        went_well=params.get("went_well"),
        to_improve=params.get("to_improve"),
        full_feedback_text=params.get("full_feedback_text"),
        recommended_action=params.get("recommended_action"),
    )
    round_.feedbacks.append(feedback)
    await call.db.flush()
    changes["feedback_id"] = feedback.id
    return HandlerResult(APPLIED, round_id=round_.id, changes=changes)


async def run_interview_round_processor(call: StepCall) -> HandlerResult:
    if call.round is None:
        return await _create_round(call)
    return await _update_round(call)


async def _create_round(call: StepCall) -> HandlerResult:
    app = call.application
    params = call.params
    for existing in app.rounds:
        if existing.source_email_id == call.email_id:
            return HandlerResult(ALREADY_EXISTS, round_id=existing.id)

    same_slot = _round_in_window(app.rounds, params.get("scheduled_at"))
    if same_slot is not None:
        return await _update_round(replace(call, round=same_slot))

    position = max((r.position or 0 for r in app.rounds), default=0) + 1
    round_ = InterviewRound(
        position=position,
        stage=params.get("stage") or RoundStage.SCREENING.value,
        stage_name=params.get("stage_name"),
        scheduled_at=params.get("scheduled_at"),
        duration_minutes=params.get("duration_minutes"),
        interviewer_name=params.get("interviewer_name"),
        video_link=params.get("video_link"),
        result=RoundResult.PENDING.value,
        source_email_id=call.email_id,
        feedbacks=[],
    )
    app.rounds.append(round_)
    app.touch()
    await call.db.flush()
    logger.info(
        "Round %s created at position %d", round_.id, position,
        extra={"email_id": call.email_id, "application_id": app.id},
    )
    return HandlerResult(APPLIED, round_id=round_.id, changes={"created_round": round_.id})


def _round_in_window(rounds, scheduled_at: datetime | None) -> InterviewRound | None:
    """The live round already booked within the reschedule window, if exactly one."""
    if scheduled_at is None:
        return None
    live = [r for r in rounds if r.result != RoundResult.CANCELLED.value]
    match = scheduled_window(live, scheduled_at, RESCHEDULE_WINDOW_MINUTES)
    return match.round if match.resolved else None


async def _update_round(call: StepCall) -> HandlerResult:
    round_ = call.round
    params = call.params
    changes: dict = {}
    if params.get("is_cancelled"):
        if round_.result == RoundResult.CANCELLED.value:
            return HandlerResult(ALREADY_SET, round_id=round_.id)
        changes["result"] = [round_.result, RoundResult.CANCELLED.value]
        round_.result = RoundResult.CANCELLED.value
    else:
        new_time = params.get("scheduled_at")
        if new_time is not None and naive_utc(new_time) != naive_utc(round_.scheduled_at):
            changes["scheduled_at"] = [
                round_.scheduled_at.isoformat() if round_.scheduled_at else None,
                new_time.isoformat(),
            ]
            round_.scheduled_at = new_time
        for attr in ("duration_minutes", "interviewer_name", "video_link", "stage_name"):
            value = params.get(attr)
            if value is not None and value != getattr(round_, attr):
                changes[attr] = [getattr(round_, attr), value]
                setattr(round_, attr, value)
        if not changes:
            return HandlerResult(ALREADY_SET, round_id=round_.id)
    await call.db.flush()
    return HandlerResult(APPLIED, round_id=round_.id, changes=changes)


HANDLERS = {
    PlanAction.SET_PIPELINE_STAGE: set_pipeline_stage,
    PlanAction.RUN_STATUS_PROCESSOR: run_status_processor,
    PlanAction.MARK_LATEST_ROUND_FAILED: mark_latest_round_failed,
    PlanAction.RUN_ROUND_FEEDBACK_PROCESSOR: run_round_feedback_processor,
    PlanAction.SYNC_APPLICATION_FROM_ROUND_RESULT: sync_application_from_round_result,
    PlanAction.RUN_INTERVIEW_ROUND_PROCESSOR: run_interview_round_processor,
    PlanAction.SYNC_PIPELINE_FROM_ROUND_STAGE: sync_pipeline_from_round_stage,
}
