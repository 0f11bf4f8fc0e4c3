"""Shadow Runner: builds and persists DecisionInput + DecisionPlan without applying anything.

Invariants:
    - No-op unless shadow_decisioning_enabled
    - Never enters the executor's mutating path; the optional dry run only
      evaluates guards (no ledger row, no handler call)
    - Writes are additive merges into SyncedEmail.extracted_data: keys written by
      other producers (e.g. signal_company_name) survive every outcome
    - Invalid contracts or an unexpected exception leave decision_input_v1 and
      decision_plan_v1 set to null with the failure recorded in decisioning_meta_v1
    - run_shadow never raises for pipeline failures

Design Decisions:
    - Fallback facts when extraction is disabled or fails: a shadow plan is still
      produced, and meta.facts_source says which facts it was built from
    - Timings per stage in meta: shadow data exists to compare the pipeline
      against legacy behaviour before execution is enabled
"""

import logging
import time
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from decisioning.config import Settings
from decisioning.core.domain_types import (
    DECISION_INPUT_KEY, DECISION_META_KEY, DECISION_PLAN_KEY, DRY_RUN_KEY,
)
from decisioning.core.errors import ContractViolationError, ErrorContext
from decisioning.core.planner import plan_decision
from decisioning.infrastructure.observability import report_error
from decisioning.models.synced_email import SyncedEmail
from decisioning.schemas.validation import (
    contract_dump, validate_decision_input, validate_decision_plan,
)
from decisioning.services.decision_input_builder import DecisionInputBuilder
from decisioning.services.facts_extractor import EmailFactsExtractor, obtain_facts
from decisioning.services.guarded_executor import GuardedExecutor

logger = logging.getLogger(__name__)

OK = "ok"
INPUT_INVALID = "decision_input_invalid"
PLAN_INVALID = "decision_plan_invalid"
EXCEPTION = "exception"


def _ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


class ShadowRunner:
    """Runs the pipeline up to DecisionPlan and stores it next to the email."""

    def __init__(
        self,
        db: AsyncSession,
        extractor: EmailFactsExtractor | None,
        settings: Settings,
    ):
        self.db = db
        self.extractor = extractor
        self.settings = settings

    async def run_shadow(self, email: SyncedEmail) -> None:
        if not self.settings.shadow_decisioning_enabled:
            logger.debug("Shadow decisioning disabled", extra={"email_id": email.id})
            return

        context = ErrorContext(
            email_id=email.id, application_id=email.interview_application_id,
        )
        meta: dict = {"timings_ms": {}, "input_valid": False, "plan_valid": False}
        try:
            await self._run(email, meta)
            return
        except ContractViolationError as e:
            report_error(e, context)
            status, errors = INPUT_INVALID, e.errors
        except Exception as e:
            status, errors = EXCEPTION, [report_error(e, context)]

        try:
            await self._persist_failure(email, meta, status, errors)
        except Exception as e:
            report_error(e, context, stage="persist_failure")

    async def _run(self, email: SyncedEmail, meta: dict) -> None:
        timings = meta["timings_ms"]
        builder = DecisionInputBuilder(self.db, self.settings.rounds_snapshot_limit)

        stage = time.monotonic()
        base = await builder.build_base(email)
        facts = await obtain_facts(
            self.extractor, email, base,
            enabled=self.settings.email_facts_extraction_enabled,
        )
        timings["facts"] = _ms(stage)
        meta["facts_source"] = facts.source
        meta["provider"] = facts.provider
        if facts.error_kind:
            meta["extraction_error_kind"] = facts.error_kind

        stage = time.monotonic()
        decision_input = builder.compose(email, base, facts.facts)
        input_payload = contract_dump(decision_input)
        timings["build"] = _ms(stage)
        input_errors = validate_decision_input(input_payload)
        if input_errors:
            await self._persist_failure(
                email, meta, INPUT_INVALID, [e.to_dict() for e in input_errors],
            )
            return
        meta["input_valid"] = True

        stage = time.monotonic()
        result = plan_decision(decision_input)
        plan_payload = contract_dump(result.plan)
        timings["plan"] = _ms(stage)
        meta["planner_faults"] = [f.to_dict() for f in result.faults]
        plan_errors = validate_decision_plan(plan_payload)
        if plan_errors:
            await self._persist_failure(
                email, meta, PLAN_INVALID, [e.to_dict() for e in plan_errors],
            )
            return
        meta["plan_valid"] = True

        updates = {
            DECISION_INPUT_KEY: input_payload,
            DECISION_PLAN_KEY: plan_payload,
        }
        if self.settings.shadow_dry_run_enabled:
            stage = time.monotonic()
            updates[DRY_RUN_KEY] = await self._dry_run(result.plan, decision_input)
            timings["dry_run"] = _ms(stage)

        timings["total"] = sum(timings.values())
        meta.update({
            "status": OK,
            "errors": [],
            "decision": result.plan.decision.value,
            "step_count": len(result.plan.plan),
            "generated_at": datetime.now(timezone.utc).isoformat(),
        })
        updates[DECISION_META_KEY] = meta
        email.merge_extracted_data(updates)
        await self.db.commit()
        logger.info(
            "Shadow plan stored: %s with %d step(s)",
            result.plan.decision.value, len(result.plan.plan),
            extra={"email_id": email.id, "outcome": result.plan.decision.value},
        )

    async def _dry_run(self, plan, decision_input) -> dict:
        executor = GuardedExecutor(self.db, self.settings)
        try:
            report = await executor.dry_run(plan, decision_input)
        except Exception as e:
            record = report_error(e, ErrorContext(email_id=decision_input.email_id))
            return {"status": EXCEPTION, "errors": [record]}
        return report.to_dict()

    async def _persist_failure(
        self, email: SyncedEmail, meta: dict, status: str, errors: list[dict],
    ) -> None:
        await self.db.rollback()
        await self.db.refresh(email)
        timings = meta["timings_ms"]
        timings["total"] = sum(v for k, v in timings.items() if k != "total")
        meta.update({
            "status": status,
            "errors": errors,
            "generated_at": datetime.now(timezone.utc).isoformat(),
        })
        email.merge_extracted_data({
            DECISION_INPUT_KEY: None,
            DECISION_PLAN_KEY: None,
            DECISION_META_KEY: meta,
        })
        await self.db.commit()
        logger.warning(
            "Shadow run failed: %s", status,
            extra={"email_id": email.id, "error_code": status.upper()},
        )
