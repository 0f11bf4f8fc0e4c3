"""DecisionPlan Contract: the planner's sole output, and a CLOSED safety boundary.

Invariants:
    - extra="forbid" at every level: unknown top-level fields, unknown step params,
      unknown enum values are rejected (fail closed; unknown is invalid, not ignored)
    - plan steps are a tagged union discriminated on `action`; the tag set is the
      fixed PlanAction vocabulary
    - decision != noop  =>  evidence non-empty
    - decision == apply =>  plan non-empty; decision == noop => plan empty
    - every step's evidence is cited in the plan-level evidence list
    - target selector parameters are complete (by_id needs round_id,
      scheduled_window needs scheduled_at and a positive window)

Design Decisions:
    - One closed params model per action: internally built plans cannot carry an
      unknown step kind, externally supplied ones fail validation
    - String Literal tags (not Enum literals): discriminator matches raw JSON input
"""

from datetime import datetime
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from decisioning.core.domain_types import (
    PLAN_SCHEMA_VERSION, Decision, PipelineStage, Risk, RoundSelector, RoundStage,
)


EvidenceText = Annotated[str, Field(min_length=1)]


class ClosedContract(BaseModel):
    """Base for closed contracts: unknown fields are errors."""
    model_config = ConfigDict(extra="forbid", frozen=True)


# ─── Step targets and params ─────────────────────────────────────

class StepTarget(ClosedContract):
    selector: RoundSelector = RoundSelector.NONE
    round_id: int | None = None
    scheduled_at: datetime | None = None
    window_minutes: int = Field(0, ge=0, le=24 * 60)

    @model_validator(mode="after")
    def selector_parameters_complete(self):
        if self.selector == RoundSelector.BY_ID and self.round_id is None:
            raise ValueError("selector by_id requires round_id")
        if self.selector == RoundSelector.SCHEDULED_WINDOW and (
            self.scheduled_at is None or self.window_minutes <= 0
        ):
            raise ValueError(
                "selector scheduled_window requires scheduled_at and window_minutes > 0",
            )
        return self


class NoParams(ClosedContract):
    pass


class SetPipelineStageParams(ClosedContract):
    stage: PipelineStage


class StatusProcessorParams(ClosedContract):
    status_change: Literal["rejection", "offer", "on_hold", "withdrawal"]
    rejection_reason: str | None = None
    feedback_text: str | None = None
    next_steps: str | None = None


class RoundFeedbackParams(ClosedContract):
    result: Literal["passed", "failed", "waitlisted", "cancelled"]
    summary: str | None = None
    went_well: str | None = None
    to_improve: str | None = None
    full_feedback_text: str | None = None
    recommended_action: str | None = None


class InterviewRoundParams(ClosedContract):
    scheduled_at: datetime | None = None
    duration_minutes: int | None = Field(None, ge=0)
    stage: RoundStage = RoundStage.SCREENING
    stage_name: str | None = None
    interviewer_name: str | None = None
    video_link: str | None = None
    is_rescheduled: bool = False
    is_cancelled: bool = False


# ─── Steps (tagged union on `action`) ────────────────────────────

class _StepBase(ClosedContract):
    step_id: str = Field(min_length=1, max_length=64)
    target: StepTarget = Field(default_factory=StepTarget)
    evidence: list[EvidenceText] = Field(default_factory=list)
    preconditions: list[str] = Field(default_factory=list)
    risk: Risk = Risk.LOW


class SetPipelineStageStep(_StepBase):
    action: Literal["set_pipeline_stage"]
    params: SetPipelineStageParams


class RunStatusProcessorStep(_StepBase):
    action: Literal["run_status_processor"]
    params: StatusProcessorParams


class MarkLatestRoundFailedStep(_StepBase):
    action: Literal["mark_latest_round_failed"]
    params: NoParams = Field(default_factory=NoParams)


class RunRoundFeedbackProcessorStep(_StepBase):
    action: Literal["run_round_feedback_processor"]
    params: RoundFeedbackParams


class SyncApplicationFromRoundResultStep(_StepBase):
    action: Literal["sync_application_from_round_result"]
    params: NoParams = Field(default_factory=NoParams)


class RunInterviewRoundProcessorStep(_StepBase):
    action: Literal["run_interview_round_processor"]
    params: InterviewRoundParams


class SyncPipelineFromRoundStageStep(_StepBase):
    action: Literal["sync_pipeline_from_round_stage"]
    params: NoParams = Field(default_factory=NoParams)


PlanStep = Annotated[
    Union[
        SetPipelineStageStep,
        RunStatusProcessorStep,
        MarkLatestRoundFailedStep,
        RunRoundFeedbackProcessorStep,
        SyncApplicationFromRoundResultStep,
        RunInterviewRoundProcessorStep,
        SyncPipelineFromRoundStageStep,
    ],
    Field(discriminator="action"),
]


# ─── Plan ────────────────────────────────────────────────────────

class DecisionPlan(ClosedContract):
    """Decision verdict plus an ordered, whitelisted sequence of steps."""
    version: Literal["2026-01-27"] = PLAN_SCHEMA_VERSION
    email_id: int | None = None
    decision: Decision
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    reasons: list[str] = Field(default_factory=list)
    plan: list[PlanStep] = Field(default_factory=list)
    evidence: list[EvidenceText] = Field(default_factory=list)
    preconditions: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def decision_consistent_with_plan(self):
        if self.decision != Decision.NOOP and not self.evidence:
            raise ValueError(f"decision '{self.decision.value}' requires non-empty evidence")
        if self.decision == Decision.APPLY and not self.plan:
            raise ValueError("decision 'apply' requires at least one plan step")
        if self.decision == Decision.NOOP and self.plan:
            raise ValueError("decision 'noop' must not carry plan steps")
        cited = set(self.evidence)
        for step in self.plan:
            missing = [ev for ev in step.evidence if ev not in cited]
            if missing:
                raise ValueError(
                    f"step '{step.step_id}' cites evidence absent from plan evidence",
                )
        return self

    @property
    def step_count(self) -> int:
        return len(self.plan)
