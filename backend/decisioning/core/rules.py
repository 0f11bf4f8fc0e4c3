"""Rule Engine: stateless, priority-ordered rules that propose abstract actions.

Invariants:
    - Rules are PURE: they read a RuleContext and return data, never mutate or do IO
    - A rule proposes actions only for a matched application; unmatched emails are
      the planner's concern (noop or needs_review)
    - Every proposed action carries evidence (specific facts first, classification
      evidence as fallback)
    - GuardedRule isolates faults: applies() raising -> False, actions() raising -> []

Design Decisions:
    - Capability interface (Protocol) over an inheritance tree: any object with
      name/priority/applies/actions is a rule, tests plug in throwaway rules
    - Rule outcomes are abstract Action values; translation into the closed step
      vocabulary happens once, in step_factory
    - No cross-rule de-duplication: two rules proposing the same action yield two steps
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Protocol

from decisioning.core import preconditions as pre
from decisioning.core.domain_types import (
    SCHEDULING_KINDS, EmailKind, PipelineStage, PlanAction, Risk, RoundSelector,
    StatusChangeType,
)
from decisioning.core.rule_context import RuleContext

logger = logging.getLogger(__name__)

RESCHEDULE_WINDOW_MINUTES = 60


@dataclass(frozen=True)
class Action:
    """Abstract rule outcome, translated to a plan step by the step factory."""
    type: PlanAction
    params: dict = field(default_factory=dict)
    evidence: tuple[str, ...] = ()
    preconditions: tuple[str, ...] = ()
    target: dict = field(default_factory=dict)
    risk: Risk | None = None
    rule: str | None = None


class Rule(Protocol):
    name: str
    priority: int

    def applies(self, ctx: RuleContext) -> bool: ...
    def actions(self, ctx: RuleContext) -> list[Action]: ...


@dataclass(frozen=True)
class RuleFault:
    """One isolated rule failure."""
    rule: str
    phase: str           # "applies" | "actions"
    error_type: str
    message: str

    def to_dict(self) -> dict:
        return {
            "rule": self.rule,
            "phase": self.phase,
            "error_type": self.error_type,
            "message": self.message,
        }


FaultSink = Callable[[RuleFault], None]


class GuardedRule:
    """Uniform fault boundary around any rule."""

    def __init__(self, rule: Rule, on_fault: FaultSink | None = None):
        self.rule = rule
        self.name = getattr(rule, "name", type(rule).__name__)
        self.priority = getattr(rule, "priority", 0)
        self._on_fault = on_fault

    def applies(self, ctx: RuleContext) -> bool:
        try:
            return bool(self.rule.applies(ctx))
        except Exception as e:
            self._fault("applies", e)
            return False

    def actions(self, ctx: RuleContext) -> list[Action]:
        try:
            proposed = list(self.rule.actions(ctx) or [])
        except Exception as e:
            self._fault("actions", e)
            return []
        return [
            a if a.rule else Action(
                type=a.type, params=a.params, evidence=a.evidence,
                preconditions=a.preconditions, target=a.target, risk=a.risk,
                rule=self.name,
            )
            for a in proposed
        ]

    def _fault(self, phase: str, exc: Exception) -> None:
        fault = RuleFault(
            rule=self.name, phase=phase,
            error_type=type(exc).__name__, message=str(exc),
        )
        logger.warning(
            "Rule %s raised in %s: %s", self.name, phase, exc,
            extra={"rule": self.name, "error_code": "RULE_FAULT"},
        )
        if self._on_fault is not None:
            self._on_fault(fault)


# ─── Status change rules ─────────────────────────────────────────

def _status_params(ctx: RuleContext) -> dict:
    """status_change plus whatever company feedback the email carried."""
    change = ctx.status_change
    params = {"status_change": change.type.value}
    for key in ("rejection_reason", "feedback_text", "next_steps"):
        value = getattr(change, key)
        if value and value.strip():
            params[key] = value.strip()
    return params


class RejectionRule:
    name = "rejection"
    priority = 100

    def applies(self, ctx: RuleContext) -> bool:
        return (
            ctx.matched
            and ctx.kind == EmailKind.STATUS_UPDATE
            and ctx.status_change_type == StatusChangeType.REJECTION
        )

    def actions(self, ctx: RuleContext) -> list[Action]:
        evidence = tuple(ctx.evidence_for(ctx.status_change.evidence))
        return [
            Action(
                type=PlanAction.RUN_STATUS_PROCESSOR,
                params=_status_params(ctx),
                evidence=evidence,
                preconditions=(pre.MATCHED, pre.APPLICATION_ACTIVE),
            ),
            Action(
                type=PlanAction.MARK_LATEST_ROUND_FAILED,
                evidence=evidence[:1],
                preconditions=(pre.HAS_PENDING_ROUND,),
                target={"selector": RoundSelector.LATEST_PENDING},
            ),
        ]


class StatusHoldWithdrawalRule:
    name = "status_hold_withdrawal"
    priority = 90

    _HANDLED = (StatusChangeType.ON_HOLD, StatusChangeType.WITHDRAWAL)

    def applies(self, ctx: RuleContext) -> bool:
        return (
            ctx.matched
            and ctx.kind == EmailKind.STATUS_UPDATE
            and ctx.status_change_type in self._HANDLED
        )

    def actions(self, ctx: RuleContext) -> list[Action]:
        return [
            Action(
                type=PlanAction.RUN_STATUS_PROCESSOR,
                params={"status_change": ctx.status_change_type.value},
                evidence=tuple(ctx.evidence_for(ctx.status_change.evidence)),
                preconditions=(pre.MATCHED, pre.APPLICATION_ACTIVE),
            ),
        ]


class OfferRule:
    name = "offer"
    priority = 80

    def applies(self, ctx: RuleContext) -> bool:
        return (
            ctx.matched
            and ctx.kind == EmailKind.STATUS_UPDATE
            and ctx.status_change_type == StatusChangeType.OFFER
        )

    def actions(self, ctx: RuleContext) -> list[Action]:
        return [
            Action(
                type=PlanAction.RUN_STATUS_PROCESSOR,
                params=_status_params(ctx),
                evidence=tuple(ctx.evidence_for(ctx.status_change.evidence)),
                preconditions=(pre.MATCHED, pre.stage_is_not(PipelineStage.OFFER.value)),
            ),
        ]


# ─── Round rules ─────────────────────────────────────────────────

def _bullets(items: list[str]) -> str | None:
    lines = [f"- {s.strip()}" for s in items if s and s.strip()]
    return "\n".join(lines) or None


def recommended_action(result: str, has_next_round: bool, next_round_type: str | None) -> str | None:
    if result == "passed":
        if has_next_round:
            return f"Prepare for {next_round_type or 'next round'}"
        return "Follow up on next steps"
    if result == "failed":
        return "Review feedback and apply learnings to future interviews"
    if result == "waitlisted":
        return "Follow up in 1-2 weeks if no update"
    return None


class RoundFeedbackRule:
    name = "round_feedback"
    priority = 70

    def applies(self, ctx: RuleContext) -> bool:
        rf = ctx.round_feedback
        return (
            ctx.matched
            and ctx.kind == EmailKind.ROUND_FEEDBACK
            and rf is not None
            and rf.result is not None
        )

    def actions(self, ctx: RuleContext) -> list[Action]:
        rf = ctx.round_feedback
        evidence = tuple(ctx.evidence_for(rf.evidence))
        fb = rf.feedback
        params = {
            "result": rf.result,
            "summary": fb.summary,
            "went_well": _bullets(fb.strengths),
            "to_improve": _bullets(fb.improvements),
            "full_feedback_text": fb.full_feedback_text,
            "recommended_action": recommended_action(
                rf.result, rf.next_steps.has_next_round, rf.next_steps.next_round_type,
            ),
        }
        return [
            Action(
                type=PlanAction.RUN_ROUND_FEEDBACK_PROCESSOR,
                params=params,
                evidence=evidence,
                preconditions=(pre.HAS_PENDING_ROUND,),
                target={"selector": RoundSelector.LATEST_PENDING},
            ),
            # Selector none: the round touched by the preceding step
            Action(
                type=PlanAction.SYNC_APPLICATION_FROM_ROUND_RESULT,
                evidence=evidence[:1],
                preconditions=(pre.MATCHED,),
            ),
        ]


class SchedulingRule:
    name = "scheduling"
    priority = 40

    def applies(self, ctx: RuleContext) -> bool:
        sched = ctx.scheduling
        return (
            ctx.matched
            and ctx.kind in SCHEDULING_KINDS
            and sched is not None
            and (sched.is_scheduling_related or sched.scheduled_at is not None)
        )

    def actions(self, ctx: RuleContext) -> list[Action]:
        sched = ctx.scheduling
        evidence = tuple(ctx.evidence_for(sched.evidence))
        params = {
            "scheduled_at": sched.scheduled_at,
            "duration_minutes": sched.duration_minutes or None,
            "stage": sched.stage,
            "stage_name": sched.stage_name or sched.round_type,
            "interviewer_name": sched.interviewer_name,
            "video_link": sched.video_link,
            "is_rescheduled": sched.is_rescheduled,
            "is_cancelled": sched.is_cancelled,
        }
        actions = [
            Action(
                type=PlanAction.RUN_INTERVIEW_ROUND_PROCESSOR,
                params={k: v for k, v in params.items() if v is not None},
                evidence=evidence,
                preconditions=(pre.MATCHED, pre.APPLICATION_ACTIVE),
                target=self._round_target(ctx),
            ),
        ]
        if not sched.is_cancelled:
            actions.append(Action(
                type=PlanAction.SYNC_PIPELINE_FROM_ROUND_STAGE,
                evidence=evidence[:1],
                preconditions=(pre.MATCHED, pre.stage_is_not(PipelineStage.CLOSED.value)),
            ))
        return actions

    @staticmethod
    def _round_target(ctx: RuleContext) -> dict:
        sched = ctx.scheduling
        if not (sched.is_rescheduled or sched.is_cancelled):
            return {"selector": RoundSelector.NONE}
        if sched.original_scheduled_at is not None:
            return {
                "selector": RoundSelector.SCHEDULED_WINDOW,
                "scheduled_at": sched.original_scheduled_at,
                "window_minutes": RESCHEDULE_WINDOW_MINUTES,
            }
        return {"selector": RoundSelector.LATEST_PENDING}


# ─── Application rules ───────────────────────────────────────────

class ApplicationConfirmationRule:
    name = "application_confirmation"
    priority = 20

    def applies(self, ctx: RuleContext) -> bool:
        return ctx.matched and ctx.kind == EmailKind.APPLICATION_CONFIRMATION

    def actions(self, ctx: RuleContext) -> list[Action]:
        return [
            Action(
                type=PlanAction.SET_PIPELINE_STAGE,
                params={"stage": PipelineStage.APPLIED.value},
                evidence=tuple(ctx.evidence_for(None)),
                preconditions=(pre.MATCHED, pre.APPLICATION_ACTIVE),
            ),
        ]


DEFAULT_RULES: tuple[Rule, ...] = (
    RejectionRule(),
    StatusHoldWithdrawalRule(),
    OfferRule(),
    RoundFeedbackRule(),
    SchedulingRule(),
    ApplicationConfirmationRule(),
)
