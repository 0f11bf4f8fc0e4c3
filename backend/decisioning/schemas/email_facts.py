"""EmailFacts Contract: structured interpretation of one email, as returned by the extractor.

Invariants:
    - classification.kind is required and drawn from EmailKind
    - Confidence fields bounded 0.0-1.0; action link priority bounded 1-10
    - Open contract: unknown fields are tolerated (extra="allow") for forward compatibility
    - Evidence strings are NOT grounded here; grounding is the executor's job
      (provider output may omit or fabricate spans)

Design Decisions:
    - Optional sub-facts (scheduling, round_feedback, status_change) are None when absent,
      never half-filled dicts
    - Frozen models: facts flow into DecisionInput, which is immutable after construction
"""

from datetime import datetime
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field

from decisioning.core.domain_types import (
    MAX_ACTION_LINKS, EmailKind, RoundStage, StatusChangeType,
)


EvidenceText = Annotated[str, Field(min_length=1)]
Score = Annotated[float, Field(ge=0.0, le=1.0)]


class OpenContract(BaseModel):
    """Base for additive-by-default contracts."""
    model_config = ConfigDict(extra="allow", frozen=True)


class ExtractionInfo(OpenContract):
    provider: str | None = None
    model: str | None = None
    confidence: Score = 0.0
    warnings: list[str] = Field(default_factory=list)


class Classification(OpenContract):
    kind: EmailKind
    confidence: Score = 0.0
    evidence: list[EvidenceText] = Field(default_factory=list)


class CompanyEntity(OpenContract):
    name: str | None = None
    website: str | None = None


class RecruiterEntity(OpenContract):
    name: str | None = None
    email: str | None = None
    title: str | None = None


class JobEntity(OpenContract):
    title: str | None = None
    department: str | None = None
    location: str | None = None
    url: str | None = None


class Entities(OpenContract):
    company: CompanyEntity = Field(default_factory=CompanyEntity)
    recruiter: RecruiterEntity = Field(default_factory=RecruiterEntity)
    job: JobEntity = Field(default_factory=JobEntity)


class ActionLink(OpenContract):
    url: str = Field(min_length=1)
    action_label: str = Field(min_length=1)
    priority: int = Field(5, ge=1, le=10)


class SchedulingFacts(OpenContract):
    is_scheduling_related: bool = False
    scheduled_at: datetime | None = None
    timezone_hint: str | None = None
    duration_minutes: int = Field(0, ge=0)
    stage: RoundStage | None = None
    round_type: str | None = None
    stage_name: str | None = None
    interviewer_name: str | None = None
    interviewer_role: str | None = None
    video_link: str | None = None
    phone_number: str | None = None
    location: str | None = None
    is_rescheduled: bool = False
    is_cancelled: bool = False
    original_scheduled_at: datetime | None = None
    evidence: list[EvidenceText] = Field(default_factory=list)


class FeedbackDetails(OpenContract):
    has_detailed_feedback: bool = False
    summary: str | None = None
    strengths: list[str] = Field(default_factory=list)
    improvements: list[str] = Field(default_factory=list)
    full_feedback_text: str | None = None


class NextSteps(OpenContract):
    has_next_round: bool = False
    next_round_type: str | None = None
    next_round_hint: str | None = None
    timeline_hint: str | None = None


class RoundFeedbackFacts(OpenContract):
    has_round_feedback: bool = False
    result: Literal["passed", "failed", "waitlisted", "cancelled"] | None = None
    round_type: str | None = None
    stage_mentioned: str | None = None
    interviewer_mentioned: str | None = None
    date_mentioned: str | None = None
    feedback: FeedbackDetails = Field(default_factory=FeedbackDetails)
    next_steps: NextSteps = Field(default_factory=NextSteps)
    evidence: list[EvidenceText] = Field(default_factory=list)


class StatusChangeFacts(OpenContract):
    has_status_change: bool = False
    type: StatusChangeType = StatusChangeType.NO_CHANGE
    is_final: bool | None = None
    effective_date: str | None = None
    rejection_reason: str | None = None
    feedback_text: str | None = None
    next_steps: str | None = None
    evidence: list[EvidenceText] = Field(default_factory=list)


class EmailFacts(OpenContract):
    """Extracted structured interpretation of one email."""
    extraction: ExtractionInfo = Field(default_factory=ExtractionInfo)
    classification: Classification
    entities: Entities = Field(default_factory=Entities)
    action_links: list[ActionLink] = Field(
        default_factory=list, max_length=MAX_ACTION_LINKS,
    )
    key_insights: list[str] = Field(default_factory=list)
    is_forwarded: bool = False
    scheduling: SchedulingFacts | None = None
    round_feedback: RoundFeedbackFacts | None = None
    status_change: StatusChangeFacts | None = None

    @property
    def confidence_signal(self) -> float:
        """Confidence used for gating destructive steps.

        Extraction confidence when the provider reported one, else the
        classification confidence.
        """
        if self.extraction.confidence > 0.0:
            return self.extraction.confidence
        return self.classification.confidence
