"""Seed helpers: application aggregate and synced emails for service tests."""

from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from decisioning.models import InterviewApplication, InterviewRound, SyncedEmail
from tests.decision_fixtures import DEFAULT_BODY


async def seed_application(
    db: AsyncSession,
    status: str = "active",
    stage: str = "interviewing",
    rounds: list[dict] | None = None,
) -> InterviewApplication:
    """Insert an application with rounds; default is one pending technical round."""
    app_row = InterviewApplication(
        company_name="Acme", job_title="Backend Engineer",
        status=status, pipeline_stage=stage,
    )
    specs = rounds if rounds is not None else [{"stage": "technical", "result": "pending"}]
    app_row.rounds = [
        InterviewRound(
            position=i + 1,
            stage=spec.get("stage", "technical"),
            result=spec.get("result", "pending"),
            scheduled_at=spec.get("scheduled_at", datetime(2026, 2, 20, 10, tzinfo=timezone.utc)),
            feedbacks=[],
        )
        for i, spec in enumerate(specs)
    ]
    db.add(app_row)
    await db.commit()
    await db.refresh(app_row)
    return app_row


async def seed_email(
    db: AsyncSession,
    application: InterviewApplication | None = None,
    body: str = DEFAULT_BODY,
    email_type: str | None = None,
    extracted_data: dict | None = None,
) -> SyncedEmail:
    email = SyncedEmail(
        thread_id="thread-1",
        email_type=email_type,
        email_date=datetime(2026, 2, 21, 9, tzinfo=timezone.utc),
        from_email="talent@acme.example",
        from_name="Acme Talent",
        subject="Your application at Acme",
        body_preview=body,
        interview_application_id=application.id if application else None,
        match_strategy="thread" if application else None,
        extracted_data=extracted_data or {},
    )
    db.add(email)
    await db.commit()
    await db.refresh(email)
    return email
