"""DecisionInput Builder: composes event + match + application snapshot + facts.

Invariants:
    - Read-only: never writes to the database
    - match.matched is True iff the email links to an existing application;
      application is None otherwise
    - rounds_recent holds the last <= rounds_limit rounds, ordered by
      position then creation order
    - Without extracted facts, deterministic fallback facts are derived from the
      legacy email_type, so build() always yields a schema-valid DecisionInput
      (or raises ContractViolationError for caller-supplied invalid facts)

Design Decisions:
    - build_base() is split out: the facts extractor needs event + snapshot before
      facts exist, and the same base must feed both prompt and DecisionInput
"""

import logging

from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from decisioning.core.canonical_event import build_email_event
from decisioning.core.domain_types import (
    DECISION_INPUT_VERSION, MAX_RECENT_ROUNDS, RoundStage,
)
from decisioning.core.errors import ErrorContext
from decisioning.core.fallback_facts import build_fallback_facts
from decisioning.models.interview_application import InterviewApplication
from decisioning.models.synced_email import SyncedEmail
from decisioning.schemas.decision_input import DecisionInput
from decisioning.schemas.validation import contract_dump, parse_decision_input

logger = logging.getLogger(__name__)

_ROUND_STAGES = {s.value for s in RoundStage}


async def fetch_application(db: AsyncSession, application_id: int) -> InterviewApplication | None:
    """Load the aggregate with its rounds, overwriting any stale identity-map copy."""
    stmt = (
        select(InterviewApplication)
        .where(InterviewApplication.id == application_id)
        .execution_options(populate_existing=True)
    )
    return (await db.execute(stmt)).scalar_one_or_none()


def snapshot_rounds(rounds, limit: int) -> list[dict]:
    ordered = sorted(rounds, key=lambda r: (r.position or 0, r.id))
    recent = ordered[-limit:] if limit > 0 else []
    return [
        {
            "id": r.id,
            "position": r.position,
            "stage": r.stage if r.stage in _ROUND_STAGES else RoundStage.OTHER.value,
            "stage_name": r.stage_name,
            "scheduled_at": r.scheduled_at.isoformat() if r.scheduled_at else None,
            "result": r.result,
            "interviewer_name": r.interviewer_name,
            "source_email_id": r.source_email_id,
        }
        for r in recent
    ]


def snapshot_application(app: InterviewApplication, rounds_limit: int) -> dict:
    return {
        "id": app.id,
        "status": app.status,
        "pipeline_stage": app.pipeline_stage,
        "company": {"id": None, "name": app.company_name, "website": app.company_website},
        "job_role": {"id": None, "title": app.job_title},
        "rounds_recent": snapshot_rounds(app.rounds, rounds_limit),
    }


class DecisionInputBuilder:
    """Builds the read-only planner context for one synced email."""

    def __init__(self, db: AsyncSession, rounds_limit: int = MAX_RECENT_ROUNDS):
        self.db = db
        self.rounds_limit = min(rounds_limit, MAX_RECENT_ROUNDS)

    async def load_application(self, email: SyncedEmail) -> InterviewApplication | None:
        if email.interview_application_id is None:
            return None
        return await fetch_application(self.db, email.interview_application_id)

    async def build_base(self, email: SyncedEmail) -> dict:
        """DecisionInput payload without facts."""
        app = await self.load_application(email)
        if email.interview_application_id is not None and app is None:
            logger.warning(
                "Email links to missing application %s", email.interview_application_id,
                extra={"email_id": email.id},
            )
        matched = app is not None
        return {
            "version": DECISION_INPUT_VERSION,
            "event": build_email_event(email),
            "match": {
                "matched": matched,
                "interview_application_id": app.id if matched else None,
                "match_strategy": email.match_strategy if matched else None,
                "confidence": 1.0 if matched else 0.0,
            },
            "application": snapshot_application(app, self.rounds_limit) if matched else None,
        }

    async def build(
        self, email: SyncedEmail, facts: dict | BaseModel | None = None,
    ) -> DecisionInput:
        base = await self.build_base(email)
        return self.compose(email, base, facts)

    @staticmethod
    def compose(
        email: SyncedEmail, base: dict, facts: dict | BaseModel | None = None,
    ) -> DecisionInput:
        """Attach facts (or fallback facts) to a prepared base payload."""
        if facts is None:
            facts_payload = build_fallback_facts(email, base.get("application"))
        elif isinstance(facts, BaseModel):
            facts_payload = contract_dump(facts)
        else:
            facts_payload = facts
        return parse_decision_input(
            {**base, "facts": facts_payload},
            ErrorContext(
                email_id=email.id,
                application_id=base["match"]["interview_application_id"],
            ),
        )
