"""Guarded Executor: applies the legal subset of a DecisionPlan, exactly once per email.

Invariants:
    - Idempotency: a DecisionExecution row (unique synced_email_id) is claimed
      BEFORE any mutation and committed in the same transaction as the mutations;
      an existing row or a lost insert race yields already_applied, zero steps
    - Every step is re-checked immediately before mutation against state re-read
      from the database, in order: evidence -> target -> preconditions ->
      confidence -> FSM legality (first failing guard decides)
    - Execution-time invalidity skips or parks the step; it never aborts the run
    - Every step outcome is written as a DecisionAuditEntry
    - An unexpected handler exception rolls back the whole run, ledger claim
      included, so the email can be retried

Design Decisions:
    - Guards are pure (core/execution_guards.py); this module only re-reads state,
      sequences guards and handlers, and owns the transaction
    - needs_review plans are recorded but never applied
    - dry_run evaluates the same guards with no ledger and no handler calls
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from decisioning.core.domain_types import (
    Decision, EvidencePolicy, ExecutionStatus, PlanAction, RoundSelector, StepOutcome,
)
from decisioning.core.errors import ContractViolationError, ErrorContext
from decisioning.core.execution_guards import (
    ROUND_ACTIONS, StepVerdict, check_confidence, check_evidence,
    check_preconditions, check_target, check_transition,
)
from decisioning.core.preconditions import PreconditionState
from decisioning.core.round_selectors import resolve_round
from decisioning.infrastructure.observability import report_error
from decisioning.models.decision_execution import DecisionAuditEntry, DecisionExecution
from decisioning.models.interview_application import InterviewApplication
from decisioning.schemas.decision_input import DecisionInput
from decisioning.schemas.decision_plan import DecisionPlan
from decisioning.schemas.validation import parse_decision_plan
from decisioning.services.decision_input_builder import fetch_application
from decisioning.services.step_handlers import APPLIED, HANDLERS, StepCall

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StepReport:
    index: int
    step_id: str
    action: str
    outcome: StepOutcome
    reason: str | None = None
    detail: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "step_id": self.step_id,
            "action": self.action,
            "outcome": self.outcome.value,
            "reason": self.reason,
            "detail": self.detail,
        }


@dataclass
class ExecutionReport:
    email_id: int
    status: ExecutionStatus
    decision: Decision | None = None
    steps: list[StepReport] = field(default_factory=list)
    errors: list[dict] = field(default_factory=list)

    def _with(self, outcome: StepOutcome) -> list[StepReport]:
        return [s for s in self.steps if s.outcome == outcome]

    @property
    def applied_steps(self) -> list[StepReport]:
        return self._with(StepOutcome.APPLIED)

    @property
    def skipped_steps(self) -> list[StepReport]:
        return self._with(StepOutcome.SKIPPED)

    @property
    def review_steps(self) -> list[StepReport]:
        return self._with(StepOutcome.NEEDS_REVIEW)

    def to_dict(self) -> dict:
        return {
            "email_id": self.email_id,
            "status": self.status.value,
            "decision": self.decision.value if self.decision else None,
            "applied": len(self.applied_steps),
            "skipped": len(self.skipped_steps),
            "needs_review": len(self.review_steps),
            "steps": [s.to_dict() for s in self.steps],
            "errors": self.errors,
        }


def overall_status(decision: Decision, steps: list[StepReport]) -> ExecutionStatus:
    if decision == Decision.NOOP:
        return ExecutionStatus.NOOP
    if decision == Decision.NEEDS_REVIEW:
        return ExecutionStatus.NEEDS_REVIEW
    applied = sum(1 for s in steps if s.outcome == StepOutcome.APPLIED)
    if steps and applied == len(steps):
        return ExecutionStatus.APPLIED
    if applied:
        return ExecutionStatus.PARTIALLY_APPLIED
    if any(s.outcome == StepOutcome.NEEDS_REVIEW for s in steps):
        return ExecutionStatus.NEEDS_REVIEW
    return ExecutionStatus.SKIPPED


def step_params(step) -> dict:
    """Python-mode params with enum members flattened to their values."""
    return {
        k: (v.value if isinstance(v, Enum) else v)
        for k, v in step.params.model_dump().items()
    }


class GuardedExecutor:
    """Re-validates a plan against live state and applies the legal subset."""

    def __init__(
        self,
        db: AsyncSession,
        settings=None,
        *,
        min_destructive_confidence: float | None = None,
        evidence_policy: EvidencePolicy | None = None,
    ):
        self.db = db
        self.min_destructive_confidence = (
            min_destructive_confidence if min_destructive_confidence is not None
            else getattr(settings, "min_destructive_confidence", 0.7)
        )
        self.evidence_policy = EvidencePolicy(
            evidence_policy
            or getattr(settings, "evidence_policy", None)
            or EvidencePolicy.STRICT
        )

    # ─── Public API ──────────────────────────────────────────────

    async def execute(
        self, plan: DecisionPlan | dict, decision_input: DecisionInput,
    ) -> ExecutionReport:
        plan = self._checked_plan(plan, decision_input)
        email_id = decision_input.email_id

        if await self._already_claimed(email_id):
            return self._already_applied(email_id, plan)

        execution = DecisionExecution(
            synced_email_id=email_id,
            interview_application_id=decision_input.match.interview_application_id,
            decision=plan.decision.value,
            plan_version=plan.version,
            confidence=plan.confidence,
            status="claimed",
        )
        self.db.add(execution)
        try:
            await self.db.flush()
        except IntegrityError:
            await self.db.rollback()
            return self._already_applied(email_id, plan)

        report = ExecutionReport(email_id=email_id, status=ExecutionStatus.NOOP, decision=plan.decision)
        try:
            if plan.decision == Decision.APPLY:
                report.steps = await self._apply_steps(plan, decision_input, dry_run=False)
            elif plan.decision == Decision.NEEDS_REVIEW:
                report.steps = [
                    self._report(i, step, StepOutcome.NEEDS_REVIEW, "plan_needs_review")
                    for i, step in enumerate(plan.plan)
                ]
        except Exception as e:
            await self.db.rollback()
            ctx = ErrorContext(
                email_id=email_id,
                application_id=decision_input.match.interview_application_id,
            )
            report.errors.append(report_error(e, ctx))
            report.status = ExecutionStatus.FAILED
            return report

        report.status = overall_status(plan.decision, report.steps)
        for s in report.steps:
            self.db.add(DecisionAuditEntry(
                decision_execution_id=execution.id,
                synced_email_id=email_id,
                step_index=s.index,
                step_id=s.step_id,
                action=s.action,
                outcome=s.outcome.value,
                reason=s.reason,
                detail=s.detail or None,
            ))
        execution.status = report.status.value
        execution.applied_count = len(report.applied_steps)
        execution.report = report.to_dict()
        execution.completed_at = datetime.now(timezone.utc)
        await self.db.commit()

        logger.info(
            "Plan executed: %s (%d applied, %d skipped, %d review)",
            report.status.value, len(report.applied_steps),
            len(report.skipped_steps), len(report.review_steps),
            extra={"email_id": email_id, "outcome": report.status.value},
        )
        return report

    async def dry_run(
        self, plan: DecisionPlan | dict, decision_input: DecisionInput,
    ) -> ExecutionReport:
        """Evaluate every guard without claiming the ledger or mutating anything."""
        plan = self._checked_plan(plan, decision_input)
        email_id = decision_input.email_id
        if await self._already_claimed(email_id):
            return self._already_applied(email_id, plan)
        report = ExecutionReport(email_id=email_id, status=ExecutionStatus.NOOP, decision=plan.decision)
        if plan.decision == Decision.APPLY:
            report.steps = await self._apply_steps(plan, decision_input, dry_run=True)
        elif plan.decision == Decision.NEEDS_REVIEW:
            report.steps = [
                self._report(i, step, StepOutcome.NEEDS_REVIEW, "plan_needs_review")
                for i, step in enumerate(plan.plan)
            ]
        report.status = overall_status(plan.decision, report.steps)
        return report

    # ─── Step loop ───────────────────────────────────────────────

    async def _apply_steps(
        self, plan: DecisionPlan, decision_input: DecisionInput, dry_run: bool,
    ) -> list[StepReport]:
        app_id = decision_input.match.interview_application_id
        body = decision_input.body_text
        reports: list[StepReport] = []
        prior_round_id: int | None = None
        prior_round_pending_create = False

        for index, step in enumerate(plan.plan):
            action = PlanAction(step.action)
            params = step_params(step)
            app = await fetch_application(self.db, app_id) if app_id is not None else None
            if app is None:
                reports.append(self._report(index, step, StepOutcome.SKIPPED, "application_not_found"))
                continue

            consumes_prior = action in ROUND_ACTIONS and step.target.selector == RoundSelector.NONE
            if dry_run and consumes_prior and prior_round_pending_create:
                reports.append(self._report(
                    index, step, StepOutcome.APPLIED, "depends_on_new_round",
                ))
                continue

            resolution = resolve_round(
                step.target, list(app.rounds),
                prior_round_id if consumes_prior else None,
            )
            verdict = self._guard(step, action, params, app, resolution, plan, decision_input, body)
            round_ = resolution.round

            is_round_step = action in ROUND_ACTIONS or action == PlanAction.RUN_INTERVIEW_ROUND_PROCESSOR
            if verdict is not None:
                reports.append(self._report(index, step, verdict.outcome, verdict.reason, verdict.detail))
                if is_round_step:
                    prior_round_id, prior_round_pending_create = None, False
                continue

            if dry_run:
                reports.append(self._report(index, step, StepOutcome.APPLIED, "would_apply"))
                if is_round_step:
                    prior_round_id = round_.id if round_ is not None else None
                    prior_round_pending_create = round_ is None
                continue

            result = await HANDLERS[action](StepCall(
                db=self.db,
                application=app,
                round=round_,
                params=params,
                email_id=decision_input.email_id,
                email_date=decision_input.event.email_date,
            ))
            if is_round_step:
                prior_round_id = result.round_id
            if result.status == APPLIED:
                reports.append(self._report(
                    index, step, StepOutcome.APPLIED, None, result.changes,
                ))
            else:
                reports.append(self._report(
                    index, step, StepOutcome.SKIPPED, result.status,
                    {"round_id": result.round_id},
                ))
        return reports

    def _guard(
        self, step, action: PlanAction, params: dict, app: InterviewApplication,
        resolution, plan: DecisionPlan, decision_input: DecisionInput, body: str,
    ) -> StepVerdict | None:
        verdict = check_evidence(list(step.evidence), body, self.evidence_policy)
        if verdict is not None:
            return verdict
        verdict = check_target(action, resolution)
        if verdict is not None:
            return verdict
        round_ = resolution.round
        state = PreconditionState(
            matched=decision_input.match.matched,
            status=app.status,
            pipeline_stage=app.pipeline_stage,
            round_results=tuple(r.result for r in app.rounds),
            round_has_feedback=bool(round_.feedbacks) if round_ is not None else None,
        )
        verdict = check_preconditions(list(step.preconditions), state)
        if verdict is not None:
            return verdict
        verdict = check_confidence(step.risk, plan.confidence, self.min_destructive_confidence)
        if verdict is not None:
            return verdict
        return check_transition(action, params, app, round_)

    # ─── Helpers ─────────────────────────────────────────────────

    def _checked_plan(self, plan: DecisionPlan | dict, decision_input: DecisionInput) -> DecisionPlan:
        ctx = ErrorContext(email_id=decision_input.email_id)
        if not isinstance(plan, DecisionPlan):
            plan = parse_decision_plan(plan.model_dump() if isinstance(plan, BaseModel) else plan, ctx)
        if plan.email_id is not None and plan.email_id != decision_input.email_id:
            raise ContractViolationError(
                "DecisionPlan",
                [{"path": "email_id", "message": "plan email_id does not match DecisionInput"}],
                ctx,
            )
        return plan

    async def _already_claimed(self, email_id: int) -> bool:
        existing = (await self.db.execute(
            select(DecisionExecution.id).where(DecisionExecution.synced_email_id == email_id)
        )).scalar_one_or_none()
        return existing is not None

    @staticmethod
    def _already_applied(email_id: int, plan: DecisionPlan) -> ExecutionReport:
        logger.info(
            "Plan already applied for email", extra={"email_id": email_id, "outcome": "already_applied"},
        )
        return ExecutionReport(
            email_id=email_id, status=ExecutionStatus.ALREADY_APPLIED, decision=plan.decision,
        )

    @staticmethod
    def _report(
        index: int, step, outcome: StepOutcome, reason: str | None, detail: dict | None = None,
    ) -> StepReport:
        return StepReport(
            index=index, step_id=step.step_id, action=step.action,
            outcome=outcome, reason=reason, detail=detail or {},
        )
