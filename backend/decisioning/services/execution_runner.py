"""Execution Runner: extract -> build -> plan -> guarded execute, behind a flag.

Invariants:
    - Returns False without touching anything unless decision_execution_enabled
    - Facts source order: persisted schema-valid facts, then provider extraction,
      then fallback facts when extraction is disabled or unavailable
    - decision_execution_v1 is an additive merge; it records the executor's
      status, errors and applied count for every attempted run
    - An attempted extraction that failed ends the run before the executor: no
      ledger claim, no handler call, so a later retry can still apply the plan
    - Returns True only when the executor applied or had already applied the plan
"""

import logging
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from decisioning.config import Settings
from decisioning.core.domain_types import EXECUTION_META_KEY, ExecutionStatus
from decisioning.core.errors import ContractViolationError, ErrorContext
from decisioning.core.planner import plan_decision
from decisioning.infrastructure.observability import report_error
from decisioning.models.synced_email import SyncedEmail
from decisioning.schemas.validation import contract_dump, validate_decision_plan
from decisioning.services.decision_input_builder import DecisionInputBuilder
from decisioning.services.facts_extractor import (
    EmailFactsExtractor, FactsOutcome, obtain_facts,
)
from decisioning.services.guarded_executor import ExecutionReport, GuardedExecutor

logger = logging.getLogger(__name__)

EXTRACTION_FAILED = "extraction_failed"

SUCCESS_STATUSES = frozenset({
    ExecutionStatus.APPLIED,
    ExecutionStatus.PARTIALLY_APPLIED,
    ExecutionStatus.ALREADY_APPLIED,
})


class ExecutionRunner:
    def __init__(
        self,
        db: AsyncSession,
        extractor: EmailFactsExtractor | None,
        settings: Settings,
    ):
        self.db = db
        self.extractor = extractor
        self.settings = settings

    async def run(self, email: SyncedEmail) -> bool:
        if not self.settings.decision_execution_enabled:
            logger.debug("Decision execution disabled", extra={"email_id": email.id})
            return False

        context = ErrorContext(
            email_id=email.id, application_id=email.interview_application_id,
        )
        try:
            report, facts = await self._execute(email)
        except ContractViolationError as e:
            report_error(e, context)
            await self._persist(email, {
                "status": "contract_violation",
                "errors": e.errors,
                "applied": 0,
            })
            return False
        except Exception as e:
            record = report_error(e, context)
            await self._persist(email, {"status": "exception", "errors": [record], "applied": 0})
            return False

        if report is None:
            await self._persist(email, {
                "status": EXTRACTION_FAILED,
                "errors": facts.errors,
                "applied": 0,
                "facts_source": facts.source,
                "extraction_error_kind": facts.error_kind,
            })
            return False

        await self._persist(email, {
            "status": report.status.value,
            "errors": report.errors,
            "applied": len(report.applied_steps),
            "decision": report.decision.value if report.decision else None,
            "facts_source": facts.source,
        })
        return report.status in SUCCESS_STATUSES

    async def _execute(self, email: SyncedEmail) -> tuple[ExecutionReport | None, FactsOutcome]:
        builder = DecisionInputBuilder(self.db, self.settings.rounds_snapshot_limit)
        base = await builder.build_base(email)
        facts = await obtain_facts(
            self.extractor, email, base,
            enabled=self.settings.email_facts_extraction_enabled,
            prefer_persisted=True,
        )
        if facts.error_kind:
            logger.warning(
                "Extraction failed (%s); execution deferred", facts.error_kind,
                extra={"email_id": email.id, "error_code": EXTRACTION_FAILED.upper()},
            )
            return None, facts
        decision_input = builder.compose(email, base, facts.facts)

        plan = plan_decision(decision_input).plan
        plan_errors = validate_decision_plan(contract_dump(plan))
        if plan_errors:
            raise ContractViolationError(
                "DecisionPlan", [e.to_dict() for e in plan_errors],
                ErrorContext(email_id=email.id),
            )

        executor = GuardedExecutor(self.db, self.settings)
        report = await executor.execute(plan, decision_input)
        return report, facts

    async def _persist(self, email: SyncedEmail, payload: dict) -> None:
        # executor failures roll back the session, which expires the email
        await self.db.rollback()
        await self.db.refresh(email)
        payload["executed_at"] = datetime.now(timezone.utc).isoformat()
        email.merge_extracted_data({EXECUTION_META_KEY: payload})
        await self.db.commit()
        logger.info(
            "Execution recorded: %s (%d applied)", payload["status"], payload["applied"],
            extra={"email_id": email.id, "outcome": payload["status"]},
        )
