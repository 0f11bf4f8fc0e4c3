"""Fallback Facts: tests for deterministic facts derived from email_type.

Tests cover:
    - email_type -> kind mapping (known, unknown label, empty label)
    - rejection/offer produce a status_change with subject evidence
    - evidence fallback chain subject -> snippet -> "classified"
    - output validates against the EmailFacts contract
"""

from types import SimpleNamespace

import pytest

from decisioning.core.domain_types import EmailKind
from decisioning.core.fallback_facts import (
    FALLBACK_CONFIDENCE,
    build_fallback_facts,
    classification_evidence,
    map_kind,
)
from decisioning.schemas.validation import validate_email_facts


def _make_email(email_type="rejection", subject="Your application", snippet="snip", **kw):
    fields = {
        "email_type": email_type, "subject": subject, "snippet": snippet,
        "from_name": "Acme Talent", "from_email": "talent@acme.example",
        "email_date": None, "extraction_confidence": None,
    }
    fields.update(kw)
    return SimpleNamespace(**fields)


@pytest.mark.parametrize("label,kind", [
    ("rejection", EmailKind.STATUS_UPDATE),
    ("offer", EmailKind.STATUS_UPDATE),
    ("interview_reminder", EmailKind.SCHEDULING),
    ("interview_invite", EmailKind.INTERVIEW_INVITE),
    ("application_confirmation", EmailKind.APPLICATION_CONFIRMATION),
    ("newsletter", EmailKind.OTHER),
    (None, EmailKind.UNKNOWN),
    ("", EmailKind.UNKNOWN),
])
def test_map_kind(label, kind):
    assert map_kind(label) == kind


def test_rejection_has_status_change_with_subject_evidence():
    facts = build_fallback_facts(_make_email(), None)
    assert facts["classification"]["kind"] == "status_update"
    assert facts["classification"]["confidence"] == FALLBACK_CONFIDENCE
    assert facts["status_change"]["type"] == "rejection"
    assert facts["status_change"]["is_final"] is True
    assert facts["status_change"]["evidence"] == ["Your application"]
    assert facts["extraction"]["warnings"] == ["fallback_facts"]


def test_offer_status_change_not_final():
    facts = build_fallback_facts(_make_email(email_type="offer"), None)
    assert facts["status_change"]["type"] == "offer"
    assert facts["status_change"]["is_final"] is None


def test_non_status_labels_have_no_status_change():
    facts = build_fallback_facts(_make_email(email_type="scheduling"), None)
    assert facts["status_change"] is None
    assert facts["scheduling"] is None


def test_unknown_kind_has_zero_confidence():
    facts = build_fallback_facts(_make_email(email_type=None), None)
    assert facts["classification"]["confidence"] == 0.0


def test_evidence_fallback_chain():
    assert classification_evidence(_make_email(subject="  Hello ")) == ["Hello"]
    assert classification_evidence(_make_email(subject=None)) == ["snip"]
    assert classification_evidence(_make_email(subject="", snippet=None)) == ["classified"]


def test_entities_taken_from_snapshot():
    snapshot = {"company": {"name": "Acme", "website": "acme.example"}, "job_role": {"title": "SRE"}}
    facts = build_fallback_facts(_make_email(), snapshot)
    assert facts["entities"]["company"]["name"] == "Acme"
    assert facts["entities"]["job"]["title"] == "SRE"


@pytest.mark.parametrize("label", ["rejection", "offer", "scheduling", None, "weird"])
def test_fallback_facts_are_schema_valid(label):
    assert validate_email_facts(build_fallback_facts(_make_email(email_type=label), None)) == []
