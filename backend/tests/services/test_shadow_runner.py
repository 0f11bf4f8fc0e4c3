"""Shadow Runner: tests for plan-only runs persisted into the side channel.

Tests cover:
    - disabled flag -> nothing written
    - success stores decision_input_v1, decision_plan_v1, meta and dry run,
      keeps foreign keys, and never mutates the aggregate or the ledger
    - extraction failure or no extractor -> fallback facts, recorded in meta
    - invalid plan or unexpected exception -> payload keys nulled, failure in meta
"""

from sqlalchemy import func, select

from decisioning.core.domain_types import (
    DECISION_INPUT_KEY, DECISION_META_KEY, DECISION_PLAN_KEY, DRY_RUN_KEY,
)
from decisioning.models import DecisionExecution
from decisioning.schemas.validation import ContractError
from decisioning.services.facts_extractor import EmailFactsExtractor
from decisioning.services.shadow_runner import EXCEPTION, OK, PLAN_INVALID, ShadowRunner
from tests.decision_fixtures import rejection_facts
from tests.services.mock_extraction import ScriptedProvider


def _runner(db, settings, provider=None):
    extractor = EmailFactsExtractor(db, provider) if provider is not None else None
    return ShadowRunner(db, extractor, settings)


async def test_disabled_flag_is_noop(test_db, seeded, settings):
    _, email = seeded
    provider = ScriptedProvider().push_json(rejection_facts())
    off = settings.model_copy(update={"shadow_decisioning_enabled": False})

    await _runner(test_db, off, provider).run_shadow(email)

    assert email.extracted_data == {"signal_company_name": "Acme"}
    assert provider.calls == []


async def test_success_stores_plan_without_applying(test_db, seeded, settings):
    application, email = seeded
    provider = ScriptedProvider().push_json(rejection_facts())

    await _runner(test_db, settings, provider).run_shadow(email)

    data = email.extracted_data
    assert data["signal_company_name"] == "Acme"
    assert data[DECISION_INPUT_KEY]["event"]["synced_email_id"] == email.id
    assert data[DECISION_PLAN_KEY]["decision"] == "apply"
    meta = data[DECISION_META_KEY]
    assert meta["status"] == OK
    assert meta["facts_source"] == "extracted"
    assert meta["provider"] == "scripted"
    assert meta["input_valid"] and meta["plan_valid"]
    assert meta["step_count"] == 2
    assert meta["planner_faults"] == []
    assert set(meta["timings_ms"]) >= {"facts", "build", "plan", "dry_run", "total"}
    assert data[DRY_RUN_KEY]["status"] == "applied"
    assert data[DRY_RUN_KEY]["applied"] == 2

    assert application.status == "active"
    assert application.rounds[0].result == "pending"
    count = (await test_db.execute(select(func.count()).select_from(DecisionExecution))).scalar_one()
    assert count == 0


async def test_dry_run_disabled_omits_key(test_db, seeded, settings):
    _, email = seeded
    no_dry = settings.model_copy(update={"shadow_dry_run_enabled": False})

    await _runner(test_db, no_dry, ScriptedProvider().push_json(rejection_facts())).run_shadow(email)

    assert DRY_RUN_KEY not in email.extracted_data
    assert email.extracted_data[DECISION_META_KEY]["status"] == OK


async def test_extraction_failure_falls_back(test_db, seeded, settings):
    _, email = seeded

    await _runner(test_db, settings, ScriptedProvider("no json here")).run_shadow(email)

    meta = email.extracted_data[DECISION_META_KEY]
    assert meta["status"] == OK
    assert meta["facts_source"] == "fallback"
    assert meta["extraction_error_kind"] == "provider_failure"
    assert email.extracted_data[DECISION_INPUT_KEY]["facts"]["classification"]["confidence"] == 0.5
    assert email.extracted_data[DECISION_PLAN_KEY]["decision"] == "noop"


async def test_without_extractor_uses_fallback(test_db, seeded, settings):
    _, email = seeded

    await _runner(test_db, settings).run_shadow(email)

    meta = email.extracted_data[DECISION_META_KEY]
    assert meta["facts_source"] == "fallback"
    assert meta["provider"] is None


async def test_invalid_plan_nulls_payloads(test_db, seeded, settings, monkeypatch):
    _, email = seeded
    monkeypatch.setattr(
        "decisioning.services.shadow_runner.validate_decision_plan",
        lambda payload: [ContractError(path="plan", message="bad step")],
    )

    await _runner(test_db, settings, ScriptedProvider().push_json(rejection_facts())).run_shadow(email)

    data = email.extracted_data
    assert data[DECISION_INPUT_KEY] is None
    assert data[DECISION_PLAN_KEY] is None
    meta = data[DECISION_META_KEY]
    assert meta["status"] == PLAN_INVALID
    assert meta["errors"] == [{"path": "plan", "message": "bad step"}]
    assert meta["input_valid"] is True
    assert meta["plan_valid"] is False
    assert data["signal_company_name"] == "Acme"


async def test_exception_replaces_earlier_payloads(test_db, seeded, settings, monkeypatch):
    _, email = seeded
    provider = ScriptedProvider().push_json(rejection_facts()).push_json(rejection_facts())
    await _runner(test_db, settings, provider).run_shadow(email)
    assert email.extracted_data[DECISION_PLAN_KEY] is not None

    def broken_planner(decision_input):
        raise RuntimeError("planner crashed")

    monkeypatch.setattr("decisioning.services.shadow_runner.plan_decision", broken_planner)
    await _runner(test_db, settings, provider).run_shadow(email)

    data = email.extracted_data
    assert data[DECISION_PLAN_KEY] is None
    assert data[DECISION_INPUT_KEY] is None
    assert data[DECISION_META_KEY]["status"] == EXCEPTION
    assert data[DECISION_META_KEY]["errors"][0]["code"] == "RuntimeError"
