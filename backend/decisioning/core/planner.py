"""State Transition Planner: DecisionInput -> closed DecisionPlan, never raises.

Invariants:
    - Every rule is wrapped in GuardedRule; one faulty rule never blocks the others
    - Applicable rules are ordered by descending priority, ties by registration
      order (stable sort), and their actions are concatenated in that order
    - decision == apply iff at least one step survives; otherwise noop, or
      needs_review for an unmatched email whose kind would drive a transition
    - Steps without evidence are dropped before the plan is assembled
    - Any whole-pass failure, including self-validation, degrades to a noop plan
      with reasons ["planner_fault"]

Design Decisions:
    - Returns PlanningResult (plan + faults) instead of raising: callers persist
      faults next to the plan for observability (ADR: planner failures degrade to
      "do nothing")
"""

import logging
from dataclasses import dataclass, field

from decisioning.core.domain_types import TRANSITION_KINDS, Decision
from decisioning.core.rule_context import RuleContext
from decisioning.core.rules import DEFAULT_RULES, FaultSink, GuardedRule, Rule, RuleFault
from decisioning.core.step_factory import build_step
from decisioning.schemas.decision_input import DecisionInput
from decisioning.schemas.decision_plan import DecisionPlan

logger = logging.getLogger(__name__)

PLANNER_FAULT = "planner_fault"


@dataclass(frozen=True)
class PlanningResult:
    plan: DecisionPlan
    faults: list[RuleFault] = field(default_factory=list)

    @property
    def faulted(self) -> bool:
        return PLANNER_FAULT in self.plan.reasons


def _dedupe(items) -> list[str]:
    seen: list[str] = []
    for item in items:
        if item not in seen:
            seen.append(item)
    return seen


def noop_plan(email_id: int | None, reasons: list[str], confidence: float = 0.0) -> DecisionPlan:
    return DecisionPlan(
        email_id=email_id, decision=Decision.NOOP,
        confidence=confidence, reasons=reasons,
    )


def _assemble(decision_input: DecisionInput, rules, faults: list[RuleFault]) -> DecisionPlan:
    ctx = RuleContext(decision_input)
    email_id = decision_input.email_id
    confidence = decision_input.facts.confidence_signal

    guarded = [GuardedRule(rule, faults.append) for rule in rules]
    applicable = [g for g in guarded if g.applies(ctx)]
    applicable.sort(key=lambda g: -g.priority)

    actions = []
    for g in applicable:
        actions.extend(g.actions(ctx))

    kept = [a for a in actions if a.evidence]
    dropped = len(actions) - len(kept)
    steps = [build_step(action, i) for i, action in enumerate(kept)]
    reasons = _dedupe(a.rule for a in kept if a.rule)
    if dropped:
        reasons.append(f"dropped_steps_without_evidence:{dropped}")

    if steps:
        return DecisionPlan(
            email_id=email_id,
            decision=Decision.APPLY,
            confidence=confidence,
            reasons=reasons,
            plan=steps,
            evidence=_dedupe(ev for step in steps for ev in step.evidence),
            preconditions=_dedupe(p for step in steps for p in step.preconditions),
        )

    classification = decision_input.facts.classification
    review_evidence = [e for e in classification.evidence if e.strip()]
    if not ctx.matched and ctx.kind in TRANSITION_KINDS and review_evidence:
        return DecisionPlan(
            email_id=email_id,
            decision=Decision.NEEDS_REVIEW,
            confidence=confidence,
            reasons=["unmatched_transition_email"],
            evidence=_dedupe(review_evidence),
        )

    return noop_plan(email_id, reasons or ["no_rule_applied"], confidence)


def plan_decision(
    decision_input: DecisionInput,
    rules: tuple[Rule, ...] | list[Rule] = DEFAULT_RULES,
    on_fault: FaultSink | None = None,
) -> PlanningResult:
    """Run every rule over the input and produce a validated DecisionPlan."""
    faults: list[RuleFault] = []
    try:
        plan = _assemble(decision_input, rules, faults)
    except Exception as e:
        fault = RuleFault(
            rule="planner", phase="plan",
            error_type=type(e).__name__, message=str(e),
        )
        faults.append(fault)
        logger.error(
            "Planner fault: %s", e,
            extra={"email_id": decision_input.email_id, "error_code": "PLANNER_FAULT"},
        )
        plan = noop_plan(decision_input.email_id, [PLANNER_FAULT])

    if on_fault is not None:
        for fault in faults:
            on_fault(fault)
    return PlanningResult(plan=plan, faults=faults)
