"""Domain Types: rich types that replace bare primitives across the pipeline.

Invariants:
    - EmailId, ApplicationId, RoundId wrap ints; the email id is the idempotency key
    - Confidence values are bounded 0.0-1.0
    - Every closed value set is a str Enum (no raw string matching in rules or guards)
    - PlanAction is the fixed, versioned step vocabulary; extending it means
      touching schemas, step factory, executor handlers and fixtures together

Design Decisions:
    - NewType over wrappers: zero runtime cost, full type-checker support
    - str Enums: serialize to JSON side-channel payloads without custom encoders
"""

from enum import Enum
from typing import NewType


# ─── Identity Types ──────────────────────────────────────────────

EmailId = NewType("EmailId", int)
ApplicationId = NewType("ApplicationId", int)
RoundId = NewType("RoundId", int)


# ─── Value Types ─────────────────────────────────────────────────

Confidence = NewType("Confidence", float)   # 0.0-1.0

PLAN_SCHEMA_VERSION = "2026-01-27"
DECISION_INPUT_VERSION = "2026-01-27"

MAX_RECENT_ROUNDS = 10
MAX_ACTION_LINKS = 20
MAX_EVENT_LINKS = 50
MAX_EVIDENCE_PER_RULE = 3


# ─── Side-channel keys (SyncedEmail.extracted_data) ──────────────

FACTS_KEY = "email_facts_v1"
FACTS_META_KEY = "email_facts_meta_v1"
DECISION_INPUT_KEY = "decision_input_v1"
DECISION_PLAN_KEY = "decision_plan_v1"
DECISION_META_KEY = "decisioning_meta_v1"
DRY_RUN_KEY = "decision_dry_run_v1"
EXECUTION_META_KEY = "decision_execution_v1"


# ─── Enums ───────────────────────────────────────────────────────

class EmailKind(str, Enum):
    """Coarse intent from EmailFacts.classification.kind."""
    STATUS_UPDATE = "status_update"
    SCHEDULING = "scheduling"
    INTERVIEW_INVITE = "interview_invite"
    INTERVIEW_REMINDER = "interview_reminder"
    ROUND_FEEDBACK = "round_feedback"
    APPLICATION_CONFIRMATION = "application_confirmation"
    RECRUITER_OUTREACH = "recruiter_outreach"
    INTERVIEW_ASSESSMENT = "interview_assessment"
    OTHER = "other"
    UNKNOWN = "unknown"


SCHEDULING_KINDS = frozenset({
    EmailKind.SCHEDULING,
    EmailKind.INTERVIEW_INVITE,
    EmailKind.INTERVIEW_REMINDER,
})

# Kinds that would drive a state transition when matched to an application
TRANSITION_KINDS = frozenset({
    EmailKind.STATUS_UPDATE,
    EmailKind.ROUND_FEEDBACK,
    EmailKind.APPLICATION_CONFIRMATION,
}) | SCHEDULING_KINDS


class StatusChangeType(str, Enum):
    REJECTION = "rejection"
    OFFER = "offer"
    ON_HOLD = "on_hold"
    WITHDRAWAL = "withdrawal"
    NO_CHANGE = "no_change"


class Decision(str, Enum):
    """DecisionPlan verdict: exactly one per plan."""
    APPLY = "apply"
    NOOP = "noop"
    NEEDS_REVIEW = "needs_review"


class PlanAction(str, Enum):
    """Fixed plan-step vocabulary."""
    SET_PIPELINE_STAGE = "set_pipeline_stage"
    RUN_STATUS_PROCESSOR = "run_status_processor"
    MARK_LATEST_ROUND_FAILED = "mark_latest_round_failed"
    RUN_ROUND_FEEDBACK_PROCESSOR = "run_round_feedback_processor"
    SYNC_APPLICATION_FROM_ROUND_RESULT = "sync_application_from_round_result"
    RUN_INTERVIEW_ROUND_PROCESSOR = "run_interview_round_processor"
    SYNC_PIPELINE_FROM_ROUND_STAGE = "sync_pipeline_from_round_stage"


class RoundSelector(str, Enum):
    """Named selectors a step may use to target a round."""
    NONE = "none"
    BY_ID = "by_id"
    LATEST = "latest"
    LATEST_PENDING = "latest_pending"
    SCHEDULED_WINDOW = "scheduled_window"


class Risk(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ApplicationStatus(str, Enum):
    ACTIVE = "active"
    ARCHIVED = "archived"
    REJECTED = "rejected"
    ACCEPTED = "accepted"
    ON_HOLD = "on_hold"
    WITHDRAWN = "withdrawn"


class PipelineStage(str, Enum):
    APPLIED = "applied"
    SCREENING = "screening"
    INTERVIEWING = "interviewing"
    OFFER = "offer"
    CLOSED = "closed"


class RoundStage(str, Enum):
    SCREENING = "screening"
    TECHNICAL = "technical"
    HIRING_MANAGER = "hiring_manager"
    CULTURE_FIT = "culture_fit"
    OTHER = "other"


class RoundResult(str, Enum):
    PENDING = "pending"
    PASSED = "passed"
    FAILED = "failed"
    WAITLISTED = "waitlisted"
    CANCELLED = "cancelled"


class StepOutcome(str, Enum):
    """Per-step result recorded in the audit trail."""
    APPLIED = "applied"
    SKIPPED = "skipped"
    NEEDS_REVIEW = "needs_review"
    ERROR = "error"


class ExecutionStatus(str, Enum):
    """Overall result of one GuardedExecutor.execute call."""
    APPLIED = "applied"
    PARTIALLY_APPLIED = "partially_applied"
    NEEDS_REVIEW = "needs_review"
    SKIPPED = "skipped"
    NOOP = "noop"
    ALREADY_APPLIED = "already_applied"
    FAILED = "failed"          # handler raised; whole run rolled back, retryable


class EvidencePolicy(str, Enum):
    """What the executor does with a step whose evidence is not in the body."""
    STRICT = "strict"      # skip the step
    LENIENT = "lenient"    # downgrade the step to needs_review
