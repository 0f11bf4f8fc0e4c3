"""DecisionInput Contract: the read-only context handed to the planner.

Invariants:
    - Built once per email per run; frozen after construction
    - match.matched == False  <=>  application is None
    - application.rounds_recent holds at most MAX_RECENT_ROUNDS entries
    - event.body.text is the canonical body every downstream check uses

Design Decisions:
    - `from` is a Python keyword: field is `sender` with alias "from";
      always dump with by_alias=True (see schemas.validation.contract_dump)
"""

from datetime import datetime
from typing import Literal

from pydantic import ConfigDict, Field, model_validator

from decisioning.core.domain_types import (
    MAX_EVENT_LINKS, MAX_RECENT_ROUNDS,
    ApplicationStatus, PipelineStage, RoundResult, RoundStage,
)
from decisioning.schemas.email_facts import EmailFacts, OpenContract, Score


class EmailAddress(OpenContract):
    email: str | None = None
    name: str | None = None


class BodyNormalization(OpenContract):
    replies_removed: bool = True
    html_stripped: bool = False
    whitespace_collapsed: bool = True


class EmailBody(OpenContract):
    text: str
    source: Literal["body_preview", "body_html", "snippet"]
    truncated: bool = False
    normalization: BodyNormalization = Field(default_factory=BodyNormalization)


class EventLink(OpenContract):
    url: str = Field(min_length=1)
    label_hint: str | None = None


class EmailEvent(OpenContract):
    model_config = ConfigDict(extra="allow", frozen=True, populate_by_name=True)

    event_type: Literal["email"] = "email"
    synced_email_id: int
    thread_id: str | None = None
    email_type: str | None = None
    received_at: datetime | None = None
    email_date: datetime | None = None
    sender: EmailAddress = Field(default_factory=EmailAddress, alias="from")
    to: list[EmailAddress] = Field(default_factory=list)
    subject: str | None = None
    body: EmailBody
    links: list[EventLink] = Field(default_factory=list, max_length=MAX_EVENT_LINKS)


class MatchInfo(OpenContract):
    matched: bool
    interview_application_id: int | None = None
    match_strategy: str | None = None
    confidence: Score = 0.0

    @model_validator(mode="after")
    def matched_requires_application_id(self):
        if self.matched and self.interview_application_id is None:
            raise ValueError("matched=true requires interview_application_id")
        return self


class RoundSnapshot(OpenContract):
    id: int
    position: int | None = None
    stage: RoundStage
    stage_name: str | None = None
    scheduled_at: datetime | None = None
    result: RoundResult
    interviewer_name: str | None = None
    source_email_id: int | None = None


class CompanyRef(OpenContract):
    id: int | None = None
    name: str | None = None
    website: str | None = None


class JobRoleRef(OpenContract):
    id: int | None = None
    title: str | None = None


class ApplicationSnapshot(OpenContract):
    id: int
    status: ApplicationStatus
    pipeline_stage: PipelineStage
    company: CompanyRef = Field(default_factory=CompanyRef)
    job_role: JobRoleRef = Field(default_factory=JobRoleRef)
    rounds_recent: list[RoundSnapshot] = Field(
        default_factory=list, max_length=MAX_RECENT_ROUNDS,
    )


class DecisionInput(OpenContract):
    """Immutable composition of event + match + application snapshot + facts."""
    version: str
    event: EmailEvent
    match: MatchInfo
    application: ApplicationSnapshot | None = None
    facts: EmailFacts

    @model_validator(mode="after")
    def application_follows_match(self):
        if self.match.matched and self.application is None:
            raise ValueError("matched=true requires an application snapshot")
        if not self.match.matched and self.application is not None:
            raise ValueError("application must be null when matched=false")
        return self

    @property
    def email_id(self) -> int:
        return self.event.synced_email_id

    @property
    def body_text(self) -> str:
        return self.event.body.text
