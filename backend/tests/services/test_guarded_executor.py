"""Guarded Executor: tests for exactly-once, guard-checked plan application.

Tests cover:
    - rejection plan applies status, closes the pipeline, fails the pending round
    - exactly-once: replay and lost insert race both yield already_applied, zero steps
    - ungrounded evidence -> skipped (strict) or needs_review (lenient)
    - precondition, confidence and FSM guards; partial application
    - needs_review and noop plans are recorded, never applied
    - scheduling creates a round and syncs the pipeline from it
    - feedback writes RoundFeedback and advances the application
    - handler exception rolls back everything, claim included, and is retryable
    - dry_run writes nothing
"""

import pytest
from sqlalchemy import func, select

from decisioning.core.domain_types import (
    Decision, EvidencePolicy, ExecutionStatus, PlanAction, StepOutcome,
)
from decisioning.core.errors import ContractViolationError
from decisioning.core.planner import plan_decision
from decisioning.models import (
    DecisionAuditEntry, DecisionExecution, InterviewRound, RoundFeedback,
)
from decisioning.services.decision_input_builder import DecisionInputBuilder
from decisioning.services.guarded_executor import GuardedExecutor
from decisioning.services.step_handlers import HANDLERS
from tests.decision_fixtures import (
    feedback_facts, make_facts, offer_facts, rejection_facts, scheduling_facts,
)
from tests.services.seed_data import seed_application, seed_email


async def _prepare(db, email, facts):
    decision_input = await DecisionInputBuilder(db).build(email, facts)
    return plan_decision(decision_input).plan, decision_input


async def _count(db, model) -> int:
    return (await db.execute(select(func.count()).select_from(model))).scalar_one()


async def _audit(db) -> list[DecisionAuditEntry]:
    return list((await db.execute(
        select(DecisionAuditEntry).order_by(DecisionAuditEntry.step_index)
    )).scalars())


# ─── Happy path and exactly-once ─────────────────────────────────

async def test_rejection_plan_applies(test_db, seeded):
    application, email = seeded
    plan, di = await _prepare(test_db, email, rejection_facts())

    report = await GuardedExecutor(test_db).execute(plan, di)

    assert report.status == ExecutionStatus.APPLIED
    assert [s.action for s in report.applied_steps] == [
        "run_status_processor", "mark_latest_round_failed",
    ]
    assert report.steps[0].detail["status"] == ["active", "rejected"]
    assert application.status == "rejected"
    assert application.pipeline_stage == "closed"
    assert application.rounds[0].result == "failed"

    execution = (await test_db.execute(select(DecisionExecution))).scalar_one()
    assert execution.synced_email_id == email.id
    assert execution.status == "applied"
    assert execution.applied_count == 2
    assert [e.outcome for e in await _audit(test_db)] == ["applied", "applied"]


async def test_replay_is_already_applied(test_db, seeded):
    application, email = seeded
    plan, di = await _prepare(test_db, email, rejection_facts())
    executor = GuardedExecutor(test_db)
    await executor.execute(plan, di)

    again = await executor.execute(plan, di)

    assert again.status == ExecutionStatus.ALREADY_APPLIED
    assert again.applied_steps == []
    assert await _count(test_db, DecisionExecution) == 1
    assert await _count(test_db, DecisionAuditEntry) == 2
    assert application.status == "rejected"


async def test_lost_claim_race_is_already_applied(test_db, seeded, monkeypatch):
    _, email = seeded
    plan, di = await _prepare(test_db, email, rejection_facts())
    await GuardedExecutor(test_db).execute(plan, di)

    async def never_claimed(self, email_id):
        return False

    monkeypatch.setattr(GuardedExecutor, "_already_claimed", never_claimed)
    report = await GuardedExecutor(test_db).execute(plan, di)

    assert report.status == ExecutionStatus.ALREADY_APPLIED
    assert await _count(test_db, DecisionExecution) == 1


async def test_plan_for_another_email_is_rejected(test_db, seeded):
    _, email = seeded
    plan, di = await _prepare(test_db, email, rejection_facts())
    with pytest.raises(ContractViolationError):
        await GuardedExecutor(test_db).execute(plan.model_copy(update={"email_id": 999}), di)
    assert await _count(test_db, DecisionExecution) == 0


# ─── Guards ──────────────────────────────────────────────────────

async def test_ungrounded_evidence_is_skipped(test_db, seeded):
    application, email = seeded
    plan, di = await _prepare(test_db, email, rejection_facts(span="We regret to inform you"))

    report = await GuardedExecutor(test_db).execute(plan, di)

    assert report.status == ExecutionStatus.SKIPPED
    assert {s.reason for s in report.steps} == {"evidence_not_in_body"}
    assert report.steps[0].detail["ungrounded"] == ["We regret to inform you"]
    assert application.status == "active"
    assert application.rounds[0].result == "pending"


async def test_lenient_policy_parks_ungrounded_steps(test_db, seeded):
    _, email = seeded
    plan, di = await _prepare(test_db, email, rejection_facts(span="We regret to inform you"))

    report = await GuardedExecutor(
        test_db, evidence_policy=EvidencePolicy.LENIENT,
    ).execute(plan, di)

    assert report.status == ExecutionStatus.NEEDS_REVIEW
    assert all(s.outcome == StepOutcome.NEEDS_REVIEW for s in report.steps)


async def test_low_confidence_parks_destructive_steps(test_db, seeded):
    application, email = seeded
    plan, di = await _prepare(test_db, email, rejection_facts(confidence=0.6))

    report = await GuardedExecutor(test_db, min_destructive_confidence=0.7).execute(plan, di)

    assert report.status == ExecutionStatus.NEEDS_REVIEW
    assert {s.reason for s in report.steps} == {"confidence_below_threshold"}
    assert application.status == "active"


async def test_failed_precondition_gives_partial_application(test_db):
    application = await seed_application(test_db, status="on_hold")
    email = await seed_email(test_db, application)
    plan, di = await _prepare(test_db, email, rejection_facts())

    report = await GuardedExecutor(test_db).execute(plan, di)

    assert report.status == ExecutionStatus.PARTIALLY_APPLIED
    assert report.steps[0].reason == "precondition_failed"
    assert report.steps[1].outcome == StepOutcome.APPLIED
    assert application.status == "on_hold"
    assert application.rounds[0].result == "failed"


async def test_illegal_transition_is_skipped(test_db):
    application = await seed_application(test_db, stage="applied", rounds=[])
    email = await seed_email(test_db, application)
    plan, di = await _prepare(test_db, email, offer_facts())

    report = await GuardedExecutor(test_db).execute(plan, di)

    assert report.status == ExecutionStatus.SKIPPED
    assert report.steps[0].reason == "illegal_transition"
    assert report.steps[0].detail == {"kind": "stage", "current": "applied", "target": "offer"}
    assert application.pipeline_stage == "applied"
    audit = await _audit(test_db)
    assert audit[0].reason == "illegal_transition"


# ─── Plans that never apply ──────────────────────────────────────

async def test_needs_review_plan_is_recorded_not_applied(test_db):
    email = await seed_email(test_db, None)
    plan, di = await _prepare(test_db, email, rejection_facts())
    assert plan.decision == Decision.NEEDS_REVIEW

    report = await GuardedExecutor(test_db).execute(plan, di)

    assert report.status == ExecutionStatus.NEEDS_REVIEW
    execution = (await test_db.execute(select(DecisionExecution))).scalar_one()
    assert execution.status == "needs_review"
    assert execution.interview_application_id is None


async def test_noop_plan_is_recorded(test_db, seeded):
    _, email = seeded
    plan, di = await _prepare(test_db, email, make_facts("other", ["thank you for your time"]))

    report = await GuardedExecutor(test_db).execute(plan, di)

    assert report.status == ExecutionStatus.NOOP
    assert (await test_db.execute(select(DecisionExecution.status))).scalar_one() == "noop"
    assert await _count(test_db, DecisionAuditEntry) == 0


# ─── Round creation and feedback ─────────────────────────────────

async def test_scheduling_creates_round_and_syncs_pipeline(test_db):
    application = await seed_application(test_db, stage="screening", rounds=[])
    email = await seed_email(test_db, application)
    plan, di = await _prepare(test_db, email, scheduling_facts())

    report = await GuardedExecutor(test_db).execute(plan, di)

    assert report.status == ExecutionStatus.APPLIED
    rounds = list((await test_db.execute(select(InterviewRound))).scalars())
    assert len(rounds) == 1
    assert rounds[0].source_email_id == email.id
    assert rounds[0].stage == "technical"
    assert rounds[0].duration_minutes == 60
    assert application.pipeline_stage == "interviewing"


async def test_reminder_for_booked_slot_reuses_round(test_db):
    application = await seed_application(test_db, stage="screening", rounds=[])
    invite = await seed_email(test_db, application)
    reminder = await seed_email(test_db, application)
    rejection = await seed_email(test_db, application)
    reminder_facts = scheduling_facts(interviewer_name="Jordan Lee")
    reminder_facts["classification"]["kind"] = "interview_reminder"

    await GuardedExecutor(test_db).execute(*await _prepare(test_db, invite, scheduling_facts()))
    report = await GuardedExecutor(test_db).execute(*await _prepare(test_db, reminder, reminder_facts))

    rounds = list((await test_db.execute(select(InterviewRound))).scalars())
    assert len(rounds) == 1
    assert rounds[0].source_email_id == invite.id
    assert rounds[0].interviewer_name == "Jordan Lee"
    assert report.steps[0].outcome == StepOutcome.APPLIED
    assert report.steps[0].detail == {"interviewer_name": ["Jordan", "Jordan Lee"]}

    report = await GuardedExecutor(test_db).execute(*await _prepare(test_db, rejection, rejection_facts()))

    assert report.status == ExecutionStatus.APPLIED
    assert rounds[0].result == "failed"


async def test_feedback_records_and_advances(test_db):
    application = await seed_application(test_db, stage="screening")
    email = await seed_email(test_db, application)
    plan, di = await _prepare(test_db, email, feedback_facts("passed"))

    report = await GuardedExecutor(test_db).execute(plan, di)

    assert report.status == ExecutionStatus.APPLIED
    feedback = (await test_db.execute(select(RoundFeedback))).scalar_one()
    assert feedback.source_email_id == email.id
    assert feedback.result == "passed"
    assert feedback.went_well == "- clear communication"
    assert feedback.recommended_action == "Prepare for onsite"
    assert application.rounds[0].result == "passed"
    assert application.pipeline_stage == "interviewing"


# ─── Failure handling ────────────────────────────────────────────

async def test_handler_exception_rolls_back_and_is_retryable(test_db, seeded, monkeypatch):
    application, email = seeded
    plan, di = await _prepare(test_db, email, rejection_facts())

    async def boom(call):
        raise RuntimeError("disk full")

    monkeypatch.setitem(HANDLERS, PlanAction.MARK_LATEST_ROUND_FAILED, boom)
    report = await GuardedExecutor(test_db).execute(plan, di)

    assert report.status == ExecutionStatus.FAILED
    assert report.errors[0]["message"] == "disk full"
    assert await _count(test_db, DecisionExecution) == 0
    await test_db.refresh(application)
    assert application.status == "active"

    monkeypatch.undo()
    retry = await GuardedExecutor(test_db).execute(plan, di)
    assert retry.status == ExecutionStatus.APPLIED


# ─── Dry run ─────────────────────────────────────────────────────

async def test_dry_run_writes_nothing(test_db, seeded):
    application, email = seeded
    plan, di = await _prepare(test_db, email, rejection_facts())

    report = await GuardedExecutor(test_db).dry_run(plan, di)

    assert report.status == ExecutionStatus.APPLIED
    assert {s.reason for s in report.steps} == {"would_apply"}
    assert await _count(test_db, DecisionExecution) == 0
    assert application.status == "active"
    assert application.rounds[0].result == "pending"


async def test_dry_run_follows_a_round_created_earlier_in_the_plan(test_db):
    application = await seed_application(test_db, stage="screening", rounds=[])
    email = await seed_email(test_db, application)
    plan, di = await _prepare(test_db, email, scheduling_facts())

    report = await GuardedExecutor(test_db).dry_run(plan, di)

    assert [s.reason for s in report.steps] == ["would_apply", "depends_on_new_round"]
    assert await _count(test_db, InterviewRound) == 0
