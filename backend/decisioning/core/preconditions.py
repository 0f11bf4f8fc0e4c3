"""Precondition Evaluator: fail-closed checks of plan-step assertions against live state.

Invariants:
    - All functions are PURE: state is passed in, never read
    - Fail closed: an unknown or malformed predicate evaluates to False
    - Round predicates without a resolved round evaluate to False

Design Decisions:
    - Small fixed grammar instead of an expression engine: the planner only emits
      predicates built from the constants below, anything else is treated as hostile
"""

import re
from dataclasses import dataclass, field

# ─── Predicates the planner emits ────────────────────────────────

MATCHED = "match.matched == true"
APPLICATION_ACTIVE = "application.status == active"
HAS_PENDING_ROUND = "application.rounds_recent.any(result==pending) == true"
ROUND_WITHOUT_FEEDBACK = "round.feedback == null"


def stage_is_not(stage: str) -> str:
    return f"application.pipeline_stage != {stage}"


def stage_is(stage: str) -> str:
    return f"application.pipeline_stage == {stage}"


# ─── Grammar ─────────────────────────────────────────────────────

_COMPARISON = re.compile(
    r"^application\.(?P<field>status|pipeline_stage)\s*(?P<op>==|!=)\s*(?P<value>[a-z_]+)$",
)
_MATCHED = re.compile(r"^match\.matched\s*==\s*(?P<value>true|false)$")
_ANY_ROUND = re.compile(
    r"^application\.rounds_recent\.any\(result\s*==\s*(?P<result>[a-z_]+)\)"
    r"\s*==\s*(?P<value>true|false)$",
)
_ROUND_FEEDBACK = re.compile(r"^round\.feedback\s*(?P<op>==|!=)\s*null$")


@dataclass(frozen=True)
class PreconditionState:
    """Snapshot of live aggregate state, re-read immediately before a step."""
    matched: bool
    status: str | None = None
    pipeline_stage: str | None = None
    round_results: tuple[str, ...] = field(default_factory=tuple)
    round_has_feedback: bool | None = None   # None: no round resolved


def evaluate(predicate: str, state: PreconditionState) -> bool:
    text = (predicate or "").strip()

    m = _MATCHED.match(text)
    if m:
        return state.matched is (m["value"] == "true")

    m = _COMPARISON.match(text)
    if m:
        actual = state.status if m["field"] == "status" else state.pipeline_stage
        if actual is None:
            return False
        return (actual == m["value"]) if m["op"] == "==" else (actual != m["value"])

    m = _ANY_ROUND.match(text)
    if m:
        found = m["result"] in state.round_results
        return found is (m["value"] == "true")

    m = _ROUND_FEEDBACK.match(text)
    if m:
        if state.round_has_feedback is None:
            return False
        return (not state.round_has_feedback) if m["op"] == "==" else state.round_has_feedback

    return False


def first_failing(preconditions: list[str], state: PreconditionState) -> str | None:
    """First predicate that does not hold, or None when all hold."""
    for predicate in preconditions:
        if not evaluate(predicate, state):
            return predicate
    return None
