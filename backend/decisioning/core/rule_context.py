"""Rule Context: read-only view of a DecisionInput shaped for rule predicates.

Invariants:
    - Never mutates the wrapped DecisionInput (frozen dataclass over a frozen model)
    - Evidence helpers return at most MAX_EVIDENCE_PER_RULE strings, specific facts first
"""

from dataclasses import dataclass

from decisioning.core.domain_types import (
    MAX_EVIDENCE_PER_RULE, EmailKind, StatusChangeType,
)
from decisioning.schemas.decision_input import DecisionInput
from decisioning.schemas.email_facts import (
    EmailFacts, RoundFeedbackFacts, SchedulingFacts, StatusChangeFacts,
)


@dataclass(frozen=True)
class RuleContext:
    decision_input: DecisionInput

    @property
    def facts(self) -> EmailFacts:
        return self.decision_input.facts

    @property
    def kind(self) -> EmailKind:
        return self.facts.classification.kind

    @property
    def matched(self) -> bool:
        return self.decision_input.match.matched

    @property
    def status_change(self) -> StatusChangeFacts | None:
        return self.facts.status_change

    @property
    def status_change_type(self) -> StatusChangeType:
        if self.status_change is None:
            return StatusChangeType.NO_CHANGE
        return self.status_change.type

    @property
    def round_feedback(self) -> RoundFeedbackFacts | None:
        return self.facts.round_feedback

    @property
    def scheduling(self) -> SchedulingFacts | None:
        return self.facts.scheduling

    def evidence_for(self, specific: list[str] | None) -> list[str]:
        """Specific facts' evidence, else classification evidence; capped."""
        source = [e for e in (specific or []) if e.strip()]
        if not source:
            source = [e for e in self.facts.classification.evidence if e.strip()]
        return source[:MAX_EVIDENCE_PER_RULE]
