"""Fallback Facts: deterministic EmailFacts derived from the legacy email_type label.

Invariants:
    - PURE: same email + snapshot in, same facts dict out
    - Output always validates against the EmailFacts contract
    - classification.evidence is never empty (subject, else snippet, else "classified")
    - status_change present only for rejection/offer labels; other sub-facts absent

Design Decisions:
    - Used when extraction is disabled or failed: the pipeline still produces a
      schema-valid DecisionInput, and the low classification confidence (0.5) keeps
      high-risk steps behind the confidence gate
"""

from decisioning.core.domain_types import EmailKind, StatusChangeType
from decisioning.core.repository_protocols import EmailLike

FALLBACK_CONFIDENCE = 0.5

EMAIL_TYPE_TO_KIND: dict[str, EmailKind] = {
    "scheduling": EmailKind.SCHEDULING,
    "interview_reminder": EmailKind.SCHEDULING,
    "interview_invite": EmailKind.INTERVIEW_INVITE,
    "round_feedback": EmailKind.ROUND_FEEDBACK,
    "rejection": EmailKind.STATUS_UPDATE,
    "offer": EmailKind.STATUS_UPDATE,
    "application_confirmation": EmailKind.APPLICATION_CONFIRMATION,
    "recruiter_outreach": EmailKind.RECRUITER_OUTREACH,
    "assessment": EmailKind.INTERVIEW_ASSESSMENT,
}

_STATUS_LABELS = {
    "rejection": StatusChangeType.REJECTION,
    "offer": StatusChangeType.OFFER,
}


def map_kind(email_type: str | None) -> EmailKind:
    """Legacy label -> EmailKind. Empty label is unknown, unrecognized is other."""
    if not email_type:
        return EmailKind.UNKNOWN
    return EMAIL_TYPE_TO_KIND.get(email_type, EmailKind.OTHER)


def classification_evidence(email: EmailLike) -> list[str]:
    for candidate in (email.subject, email.snippet):
        if candidate and candidate.strip():
            return [candidate.strip()]
    return ["classified"]


def build_fallback_facts(email: EmailLike, application: dict | None) -> dict:
    """EmailFacts payload derived from email.email_type and the application snapshot."""
    email_type = email.email_type or ""
    kind = map_kind(email_type)
    evidence = classification_evidence(email)
    application = application or {}
    company = application.get("company") or {}
    job_role = application.get("job_role") or {}

    facts = {
        "extraction": {
            "provider": None,
            "model": None,
            "confidence": float(email.extraction_confidence or 0.0),
            "warnings": ["fallback_facts"],
        },
        "classification": {
            "kind": kind.value,
            "confidence": 0.0 if kind == EmailKind.UNKNOWN else FALLBACK_CONFIDENCE,
            "evidence": evidence,
        },
        "entities": {
            "company": {"name": company.get("name"), "website": company.get("website")},
            "recruiter": {"name": email.from_name, "email": email.from_email, "title": None},
            "job": {"title": job_role.get("title"), "department": None,
                    "location": None, "url": None},
        },
        "action_links": [],
        "key_insights": [],
        "is_forwarded": False,
        "scheduling": None,
        "round_feedback": None,
        "status_change": None,
    }

    change = _STATUS_LABELS.get(email_type)
    if change is not None:
        facts["status_change"] = {
            "has_status_change": True,
            "type": change.value,
            "is_final": True if change == StatusChangeType.REJECTION else None,
            "effective_date": email.email_date.isoformat() if email.email_date else None,
            "evidence": list(evidence),
        }
    return facts
