"""Step Factory: abstract rule Actions -> closed DecisionPlan steps.

Invariants:
    - The only place that maps PlanAction to a step model; an action outside the
      vocabulary cannot be constructed (KeyError surfaces as a planner fault)
    - Risk is derived here from action + params unless the rule set one explicitly
    - step_id is unique within a plan: "<index>_<action>"

Design Decisions:
    - Terminal or destructive effects are HIGH risk so the executor's confidence
      gate applies to them
"""

from pydantic import BaseModel

from decisioning.core.domain_types import PipelineStage, PlanAction, Risk
from decisioning.core.rules import Action
from decisioning.schemas.decision_plan import (
    MarkLatestRoundFailedStep, RunInterviewRoundProcessorStep,
    RunRoundFeedbackProcessorStep, RunStatusProcessorStep, SetPipelineStageStep,
    StepTarget, SyncApplicationFromRoundResultStep, SyncPipelineFromRoundStageStep,
)

STEP_MODELS: dict[PlanAction, type[BaseModel]] = {
    PlanAction.SET_PIPELINE_STAGE: SetPipelineStageStep,
    PlanAction.RUN_STATUS_PROCESSOR: RunStatusProcessorStep,
    PlanAction.MARK_LATEST_ROUND_FAILED: MarkLatestRoundFailedStep,
    PlanAction.RUN_ROUND_FEEDBACK_PROCESSOR: RunRoundFeedbackProcessorStep,
    PlanAction.SYNC_APPLICATION_FROM_ROUND_RESULT: SyncApplicationFromRoundResultStep,
    PlanAction.RUN_INTERVIEW_ROUND_PROCESSOR: RunInterviewRoundProcessorStep,
    PlanAction.SYNC_PIPELINE_FROM_ROUND_STAGE: SyncPipelineFromRoundStageStep,
}

_ALWAYS_HIGH = frozenset({
    PlanAction.MARK_LATEST_ROUND_FAILED,
    PlanAction.SYNC_APPLICATION_FROM_ROUND_RESULT,
})


def default_risk(action: Action) -> Risk:
    if action.type in _ALWAYS_HIGH:
        return Risk.HIGH
    params = action.params
    if action.type == PlanAction.RUN_STATUS_PROCESSOR:
        if params.get("status_change") in ("rejection", "withdrawal"):
            return Risk.HIGH
        return Risk.MEDIUM
    if action.type == PlanAction.SET_PIPELINE_STAGE:
        if params.get("stage") == PipelineStage.CLOSED.value:
            return Risk.HIGH
        return Risk.LOW
    if action.type == PlanAction.RUN_ROUND_FEEDBACK_PROCESSOR:
        return Risk.HIGH if params.get("result") == "failed" else Risk.LOW
    if action.type == PlanAction.RUN_INTERVIEW_ROUND_PROCESSOR and params.get("is_cancelled"):
        return Risk.MEDIUM
    return Risk.LOW


def build_step(action: Action, index: int) -> BaseModel:
    """One validated step model for the action at plan position `index` (0-based)."""
    model = STEP_MODELS[action.type]
    payload = {
        "step_id": f"{index + 1:02d}_{action.type.value}",
        "action": action.type.value,
        "target": StepTarget(**action.target),
        "evidence": list(action.evidence),
        "preconditions": list(action.preconditions),
        "risk": action.risk or default_risk(action),
    }
    if action.params:
        payload["params"] = action.params
    return model(**payload)
