"""Round Selectors: resolve a step target to exactly one live round.

Invariants:
    - All functions are PURE: rounds are passed in, never queried
    - A selector resolves to exactly one round or reports why not
      (not_found / ambiguous); it never guesses between candidates
    - selector none + prior round id -> that round (a sync step following the
      step that touched it); selector none alone -> no round required
    - Datetimes compared as naive UTC (sqlite drops tzinfo, postgres keeps it)
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Sequence

from decisioning.core.domain_types import RoundResult, RoundSelector
from decisioning.core.repository_protocols import RoundLike
from decisioning.schemas.decision_plan import StepTarget

RESOLVED = "resolved"
NO_ROUND = "no_round"
NOT_FOUND = "not_found"
AMBIGUOUS = "ambiguous"


@dataclass(frozen=True)
class Resolution:
    status: str
    round: RoundLike | None = None
    candidates: int = 0

    @property
    def resolved(self) -> bool:
        return self.status == RESOLVED

    @property
    def unresolvable(self) -> bool:
        return self.status in (NOT_FOUND, AMBIGUOUS)


def naive_utc(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _one(candidates: list[RoundLike]) -> Resolution:
    if not candidates:
        return Resolution(NOT_FOUND)
    if len(candidates) > 1:
        return Resolution(AMBIGUOUS, candidates=len(candidates))
    return Resolution(RESOLVED, round=candidates[0], candidates=1)


def _order_key(r: RoundLike):
    return (naive_utc(r.scheduled_at) or datetime.min, r.position or 0, r.id)


def latest(rounds: Sequence[RoundLike]) -> Resolution:
    if not rounds:
        return Resolution(NOT_FOUND)
    return Resolution(RESOLVED, round=max(rounds, key=_order_key), candidates=len(rounds))


def latest_pending(rounds: Sequence[RoundLike]) -> Resolution:
    """Pending round with the latest scheduled time; ties are ambiguous."""
    pending = [r for r in rounds if r.result == RoundResult.PENDING.value]
    if len(pending) <= 1:
        return _one(pending)
    newest = max(naive_utc(r.scheduled_at) or datetime.min for r in pending)
    return _one([r for r in pending if (naive_utc(r.scheduled_at) or datetime.min) == newest])


def scheduled_window(
    rounds: Sequence[RoundLike], at: datetime, window_minutes: int,
) -> Resolution:
    center = naive_utc(at)
    delta = timedelta(minutes=window_minutes)
    return _one([
        r for r in rounds
        if r.scheduled_at is not None
        and abs(naive_utc(r.scheduled_at) - center) <= delta
    ])


def resolve_round(
    target: StepTarget,
    rounds: Sequence[RoundLike],
    prior_round_id: int | None = None,
) -> Resolution:
    selector = target.selector
    if selector == RoundSelector.NONE:
        if prior_round_id is None:
            return Resolution(NO_ROUND)
        return _one([r for r in rounds if r.id == prior_round_id])
    if selector == RoundSelector.BY_ID:
        return _one([r for r in rounds if r.id == target.round_id])
    if selector == RoundSelector.LATEST:
        return latest(rounds)
    if selector == RoundSelector.LATEST_PENDING:
        return latest_pending(rounds)
    if selector == RoundSelector.SCHEDULED_WINDOW:
        return scheduled_window(rounds, target.scheduled_at, target.window_minutes)
    return Resolution(NOT_FOUND)
