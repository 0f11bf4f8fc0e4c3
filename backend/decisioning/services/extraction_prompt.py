"""Facts Extraction Prompt: canonical system + user prompt for EmailFacts extraction.

Invariants:
    - The body embedded in the prompt is the canonical event body, so quoted
      evidence spans are checkable against event.body.text
    - Pure string assembly: no IO
"""

import json

SYSTEM_PROMPT = """\
You extract structured facts for an email-driven interview workflow.
Be conservative. Do not infer hidden state. Do not guess.
Return only valid JSON."""

USER_PROMPT_TEMPLATE = """\
You are extracting workflow facts from a recruiting/interview email.
You MUST NOT guess. If information is not explicitly present, use null/false/empty.

FROM: {from_name} <{from_email}>
SUBJECT: {subject}
LEGACY_EMAIL_TYPE_HINT: {email_type}

APPLICATION SNAPSHOT (may be null):
{application_snapshot}

EMAIL BODY (canonicalized):
{body}

Return ONLY valid JSON matching this shape:

{{
  "extraction": {{ "provider": null, "model": null, "confidence": 0.0, "warnings": [] }},
  "classification": {{ "kind": "scheduling|interview_invite|interview_reminder|round_feedback|status_update|application_confirmation|recruiter_outreach|interview_assessment|other|unknown", "confidence": 0.0, "evidence": ["..."] }},
  "entities": {{
    "company": {{ "name": null, "website": null }},
    "recruiter": {{ "name": null, "email": null, "title": null }},
    "job": {{ "title": null, "department": null, "location": null, "url": null }}
  }},
  "action_links": [{{ "url": "...", "action_label": "...", "priority": 1 }}],
  "key_insights": [],
  "is_forwarded": false,
  "scheduling": null | {{
    "is_scheduling_related": true,
    "scheduled_at": "ISO-8601 or null",
    "timezone_hint": null,
    "duration_minutes": 0,
    "stage": "screening|technical|hiring_manager|culture_fit|other|null",
    "round_type": null,
    "stage_name": null,
    "interviewer_name": null,
    "interviewer_role": null,
    "video_link": null,
    "phone_number": null,
    "location": null,
    "is_rescheduled": false,
    "is_cancelled": false,
    "original_scheduled_at": null,
    "evidence": []
  }},
  "round_feedback": null | {{
    "has_round_feedback": true,
    "result": "passed|failed|waitlisted|cancelled|null",
    "round_type": null,
    "stage_mentioned": null,
    "feedback": {{ "has_detailed_feedback": false, "summary": null, "strengths": [], "improvements": [], "full_feedback_text": null }},
    "next_steps": {{ "has_next_round": false, "next_round_type": null, "next_round_hint": null, "timeline_hint": null }},
    "evidence": []
  }},
  "status_change": null | {{
    "has_status_change": true,
    "type": "rejection|offer|on_hold|withdrawal|no_change",
    "is_final": null,
    "effective_date": null,
    "rejection_reason": null,
    "feedback_text": null,
    "next_steps": null,
    "evidence": []
  }}
}}

Rules:
- Output ONLY JSON, no markdown, no commentary.
- Every evidence string MUST be copied verbatim from the EMAIL BODY above.
- Use null for scheduling, round_feedback and status_change when the email has none.
- Include only up to 20 action_links. Prioritize schedule/join/apply links."""


def build_user_prompt(decision_input_base: dict) -> str:
    """Fill the user prompt from a DecisionInput base payload (event + application)."""
    event = decision_input_base.get("event") or {}
    sender = event.get("from") or {}
    application = decision_input_base.get("application")
    return USER_PROMPT_TEMPLATE.format(
        from_name=sender.get("name") or "",
        from_email=sender.get("email") or "",
        subject=event.get("subject") or "",
        email_type=event.get("email_type") or "",
        application_snapshot=(
            json.dumps(application, indent=2, default=str) if application else "null"
        ),
        body=(event.get("body") or {}).get("text") or "",
    )
