"""Decision fixtures: builders for EmailFacts and DecisionInput payloads.

Invariants:
    - Every builder returns a payload that validates against its contract unless
      a test overrides fields to break it
    - Default body text contains every default evidence span verbatim
"""

from decisioning.core.domain_types import DECISION_INPUT_VERSION
from decisioning.schemas.validation import parse_decision_input

REJECTION_SPAN = "Unfortunately we have decided not to move forward"
OFFER_SPAN = "we are delighted to extend you an offer"
SCHEDULING_SPAN = "Your technical interview is scheduled for March 3 at 10:00"
FEEDBACK_SPAN = "you passed the technical round"
CONFIRMATION_SPAN = "We have received your application"

DEFAULT_BODY = (
    "Hi Sam, thank you for your time with Acme. "
    f"{REJECTION_SPAN} with your application. "
    f"{OFFER_SPAN}. {SCHEDULING_SPAN}. Great news, {FEEDBACK_SPAN}. "
    f"{CONFIRMATION_SPAN}."
)


def make_facts(kind: str = "other", evidence: list[str] | None = None, confidence: float = 0.9, **sections) -> dict:
    facts = {
        "extraction": {"provider": "scripted", "model": "test", "confidence": confidence, "warnings": []},
        "classification": {
            "kind": kind,
            "confidence": confidence,
            "evidence": evidence if evidence is not None else [],
        },
        "entities": {"company": {"name": "Acme"}},
    }
    facts.update(sections)
    return facts


def rejection_facts(confidence: float = 0.9, span: str = REJECTION_SPAN) -> dict:
    return make_facts(
        "status_update", [span], confidence,
        status_change={
            "has_status_change": True, "type": "rejection",
            "is_final": True, "evidence": [span],
        },
    )


def offer_facts(confidence: float = 0.9) -> dict:
    return make_facts(
        "status_update", [OFFER_SPAN], confidence,
        status_change={"has_status_change": True, "type": "offer", "evidence": [OFFER_SPAN]},
    )


def scheduling_facts(confidence: float = 0.9, **overrides) -> dict:
    scheduling = {
        "is_scheduling_related": True,
        "scheduled_at": "2026-03-03T10:00:00+00:00",
        "duration_minutes": 60,
        "stage": "technical",
        "stage_name": "Technical interview",
        "interviewer_name": "Jordan",
        "evidence": [SCHEDULING_SPAN],
    }
    scheduling.update(overrides)
    return make_facts("interview_invite", [SCHEDULING_SPAN], confidence, scheduling=scheduling)


def feedback_facts(result: str = "passed", confidence: float = 0.9) -> dict:
    return make_facts(
        "round_feedback", [FEEDBACK_SPAN], confidence,
        round_feedback={
            "has_round_feedback": True,
            "result": result,
            "feedback": {
                "has_detailed_feedback": True,
                "summary": "Strong problem solving",
                "strengths": ["clear communication"],
                "improvements": ["system design depth"],
            },
            "next_steps": {"has_next_round": True, "next_round_type": "onsite"},
            "evidence": [FEEDBACK_SPAN],
        },
    )


def make_round(round_id: int = 10, position: int = 1, result: str = "pending",
               stage: str = "technical", scheduled_at: str | None = "2026-02-20T10:00:00") -> dict:
    return {
        "id": round_id, "position": position, "stage": stage,
        "scheduled_at": scheduled_at, "result": result,
    }


def make_input_payload(
    facts: dict | None = None,
    matched: bool = True,
    status: str = "active",
    stage: str = "interviewing",
    rounds: list[dict] | None = None,
    body: str = DEFAULT_BODY,
    email_id: int = 1,
    email_type: str | None = None,
) -> dict:
    return {
        "version": DECISION_INPUT_VERSION,
        "event": {
            "event_type": "email",
            "synced_email_id": email_id,
            "email_type": email_type,
            "from": {"email": "talent@acme.example", "name": "Acme Talent"},
            "subject": "Your application at Acme",
            "body": {"text": body, "source": "body_preview"},
        },
        "match": {
            "matched": matched,
            "interview_application_id": 7 if matched else None,
            "match_strategy": "thread" if matched else None,
            "confidence": 1.0 if matched else 0.0,
        },
        "application": {
            "id": 7,
            "status": status,
            "pipeline_stage": stage,
            "company": {"name": "Acme"},
            "job_role": {"title": "Backend Engineer"},
            "rounds_recent": rounds if rounds is not None else [make_round()],
        } if matched else None,
        "facts": facts if facts is not None else make_facts(),
    }


def make_decision_input(**kwargs):
    return parse_decision_input(make_input_payload(**kwargs))
