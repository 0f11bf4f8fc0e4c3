"""Step Handlers: tests for per-email idempotent mutations of the aggregate.

Tests cover:
    - round creation is keyed by source_email_id (replay -> already_exists)
    - feedback is written once per (round, email)
    - round updates: reschedule, cancel, nothing-to-change
    - a new booking within the reschedule window of a live round updates it
    - rejection closes the pipeline only when the stage FSM allows it
    - rejection and offer leave one company feedback row per email
"""

from datetime import datetime, timedelta, timezone

from sqlalchemy import func, select

from decisioning.models import CompanyFeedback, InterviewApplication
from decisioning.services.step_handlers import (
    ALREADY_EXISTS, ALREADY_SET, APPLIED, StepCall,
    run_interview_round_processor, run_round_feedback_processor, run_status_processor,
)
from tests.services.seed_data import seed_application, seed_email

MARCH_3 = datetime(2026, 3, 3, 10, tzinfo=timezone.utc)


def _call(db, application, round_=None, params=None, email_id=1) -> StepCall:
    return StepCall(
        db=db, application=application, round=round_, params=params or {},
        email_id=email_id, email_date=datetime(2026, 2, 21, 9, tzinfo=timezone.utc),
    )


async def test_round_creation_is_idempotent_per_email(test_db):
    application = await seed_application(test_db)
    email = await seed_email(test_db, application)
    params = {"scheduled_at": MARCH_3, "stage": "hiring_manager", "duration_minutes": 90}

    first = await run_interview_round_processor(_call(test_db, application, params=params, email_id=email.id))
    second = await run_interview_round_processor(_call(test_db, application, params=params, email_id=email.id))

    assert first.status == APPLIED
    assert second.status == ALREADY_EXISTS
    assert second.round_id == first.round_id
    assert [r.position for r in application.rounds] == [1, 2]
    assert application.rounds[1].stage == "hiring_manager"


async def test_new_booking_in_same_slot_updates_existing_round(test_db):
    application = await seed_application(test_db, rounds=[])
    invite = await seed_email(test_db, application)
    reminder = await seed_email(test_db, application)
    params = {"scheduled_at": MARCH_3, "stage": "technical", "duration_minutes": 60}

    created = await run_interview_round_processor(_call(test_db, application, params=params, email_id=invite.id))
    reminded = await run_interview_round_processor(_call(
        test_db, application,
        params={**params, "scheduled_at": MARCH_3 + timedelta(minutes=30), "video_link": "https://meet.example/abc"},
        email_id=reminder.id,
    ))

    assert reminded.status == APPLIED
    assert reminded.round_id == created.round_id
    assert len(application.rounds) == 1
    assert application.rounds[0].video_link == "https://meet.example/abc"
    assert application.rounds[0].source_email_id == invite.id


async def test_booking_outside_window_or_over_cancelled_round_creates_new(test_db):
    application = await seed_application(test_db, rounds=[])
    emails = [await seed_email(test_db, application) for _ in range(3)]
    params = {"scheduled_at": MARCH_3, "stage": "technical"}

    await run_interview_round_processor(_call(test_db, application, params=params, email_id=emails[0].id))
    application.rounds[0].result = "cancelled"
    await run_interview_round_processor(_call(test_db, application, params=params, email_id=emails[1].id))
    await run_interview_round_processor(_call(
        test_db, application,
        params={**params, "scheduled_at": MARCH_3 + timedelta(hours=3)},
        email_id=emails[2].id,
    ))

    assert [r.position for r in application.rounds] == [1, 2, 3]


async def test_feedback_written_once_per_email(test_db):
    application = await seed_application(test_db)
    email = await seed_email(test_db, application)
    round_ = application.rounds[0]
    params = {"result": "passed", "summary": "Solid"}

    first = await run_round_feedback_processor(_call(test_db, application, round_, params, email.id))
    second = await run_round_feedback_processor(_call(test_db, application, round_, params, email.id))

    assert first.status == APPLIED
    assert first.changes["result"] == ["pending", "passed"]
    assert second.status == ALREADY_EXISTS
    assert len(round_.feedbacks) == 1
    assert round_.completed_at is not None


async def test_reschedule_updates_time(test_db):
    application = await seed_application(test_db)
    round_ = application.rounds[0]

    result = await run_interview_round_processor(
        _call(test_db, application, round_, {"scheduled_at": MARCH_3, "is_rescheduled": True}),
    )

    assert result.status == APPLIED
    assert "scheduled_at" in result.changes
    assert round_.scheduled_at == MARCH_3


async def test_cancel_then_cancel_again(test_db):
    application = await seed_application(test_db)
    round_ = application.rounds[0]
    params = {"is_cancelled": True}

    first = await run_interview_round_processor(_call(test_db, application, round_, params))
    second = await run_interview_round_processor(_call(test_db, application, round_, params))

    assert first.changes == {"result": ["pending", "cancelled"]}
    assert second.status == ALREADY_SET


async def test_update_without_changes_is_already_set(test_db):
    application = await seed_application(test_db)
    round_ = application.rounds[0]

    result = await run_interview_round_processor(
        _call(test_db, application, round_, {"stage_name": None}),
    )

    assert result.status == ALREADY_SET


async def test_rejection_closes_pipeline_when_legal(test_db):
    application = await seed_application(test_db, stage="offer")
    email = await seed_email(test_db, application)

    result = await run_status_processor(
        _call(test_db, application, params={"status_change": "rejection"}, email_id=email.id),
    )

    assert result.changes["status"] == ["active", "rejected"]
    assert result.changes["pipeline_stage"] == ["offer", "closed"]
    assert application.updated_at is not None


async def test_rejection_records_company_feedback_once(test_db):
    application = await seed_application(test_db)
    email = await seed_email(test_db, application)
    params = {
        "status_change": "rejection",
        "rejection_reason": "Role filled internally",
        "next_steps": "Keep in touch",
    }

    first = await run_status_processor(_call(test_db, application, params=params, email_id=email.id))
    second = await run_status_processor(_call(test_db, application, params=params, email_id=email.id))

    feedback = (await test_db.execute(select(CompanyFeedback))).scalar_one()
    assert first.changes["company_feedback_id"] == feedback.id
    assert "company_feedback_id" not in second.changes
    assert feedback.interview_application_id == application.id
    assert feedback.source_email_id == email.id
    assert feedback.feedback_type == "rejection"
    assert feedback.rejection_reason == "Role filled internally"
    assert feedback.next_steps == "Keep in touch"
    assert feedback.received_at == datetime(2026, 2, 21, 9, tzinfo=timezone.utc)


async def test_offer_records_company_feedback(test_db):
    application = await seed_application(test_db)
    email = await seed_email(test_db, application)

    result = await run_status_processor(_call(
        test_db, application,
        params={"status_change": "offer", "feedback_text": "Base 150k, respond by Friday"},
        email_id=email.id,
    ))

    assert result.changes["pipeline_stage"] == ["interviewing", "offer"]
    feedback = (await test_db.execute(select(CompanyFeedback))).scalar_one()
    assert feedback.feedback_type == "offer"
    assert feedback.feedback_text == "Base 150k, respond by Friday"


async def test_hold_writes_no_company_feedback(test_db):
    application = await seed_application(test_db)
    email = await seed_email(test_db, application)

    result = await run_status_processor(
        _call(test_db, application, params={"status_change": "on_hold"}, email_id=email.id),
    )

    assert result.changes == {"status": ["active", "on_hold"]}
    rows = (await test_db.execute(select(func.count()).select_from(CompanyFeedback))).scalar_one()
    assert rows == 0


async def test_withdrawal_leaves_closed_pipeline_alone():
    application = InterviewApplication(id=1, status="active", pipeline_stage="closed", rounds=[])

    class _Db:
        async def flush(self):
            pass

    result = await run_status_processor(_call(_Db(), application, params={"status_change": "withdrawal"}))

    assert result.changes == {"status": ["active", "withdrawn"]}
    assert application.pipeline_stage == "closed"
