"""InterviewApplication ORM: the job-application aggregate and its FSM guard tables.

Invariants:
    - status in ApplicationStatus, pipeline_stage in PipelineStage
    - Transition legality is decided ONLY by may_transition_status / may_move_to_stage;
      the decisioning executor asks these before every mutation
    - Staying in the current state is not a transition (guards return False)

Design Decisions:
    - FSM tables live with the aggregate, not in decisioning core: the aggregate is
      owned by the tracking side and core consumes it through ApplicationLike
    - rounds loaded with lazy="selectin": async sessions cannot lazy-load on access
"""

from datetime import datetime

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from decisioning.core.domain_types import ApplicationStatus, PipelineStage
from decisioning.db.base import Base, utcnow

_ACTIVE = ApplicationStatus.ACTIVE.value

# target -> allowed sources
STATUS_TRANSITIONS: dict[str, frozenset[str]] = {
    ApplicationStatus.ARCHIVED.value: frozenset({_ACTIVE}),
    ApplicationStatus.REJECTED.value: frozenset({_ACTIVE}),
    ApplicationStatus.ACCEPTED.value: frozenset({_ACTIVE}),
    ApplicationStatus.ON_HOLD.value: frozenset({_ACTIVE}),
    ApplicationStatus.WITHDRAWN.value: frozenset({_ACTIVE}),
    _ACTIVE: frozenset({
        ApplicationStatus.ARCHIVED.value,
        ApplicationStatus.REJECTED.value,
        ApplicationStatus.ACCEPTED.value,
        ApplicationStatus.ON_HOLD.value,
    }),
}

STAGE_TRANSITIONS: dict[str, frozenset[str]] = {
    PipelineStage.SCREENING.value: frozenset({"applied", "interviewing"}),
    PipelineStage.INTERVIEWING.value: frozenset({"applied", "screening", "offer"}),
    PipelineStage.OFFER.value: frozenset({"screening", "interviewing"}),
    PipelineStage.CLOSED.value: frozenset({"applied", "screening", "interviewing", "offer"}),
    PipelineStage.APPLIED.value: frozenset({"screening", "interviewing"}),
}


class InterviewApplication(Base):
    """Application aggregate root: owns rounds."""
    __tablename__ = "interview_applications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    company_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    company_website: Mapped[str | None] = mapped_column(String(500), nullable=True)
    job_title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ApplicationStatus.ACTIVE.value,
    )
    pipeline_stage: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PipelineStage.APPLIED.value,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    rounds: Mapped[list["InterviewRound"]] = relationship(
        "InterviewRound", back_populates="application",
        cascade="all, delete-orphan", lazy="selectin",
        order_by="InterviewRound.position",
    )

    def may_transition_status(self, target: str) -> bool:
        return self.status in STATUS_TRANSITIONS.get(target, frozenset())

    def may_move_to_stage(self, target: str) -> bool:
        return self.pipeline_stage in STAGE_TRANSITIONS.get(target, frozenset())

    def touch(self) -> None:
        self.updated_at = utcnow()
