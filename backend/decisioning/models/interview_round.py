"""InterviewRound ORM: one scheduled or completed interview round of an application.

Invariants:
    - result in RoundResult; new rounds start pending
    - source_email_id records the email that created the round (creation idempotency)
    - position is 1-based and increases per application
"""

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from decisioning.core.domain_types import RoundResult, RoundStage
from decisioning.db.base import Base, utcnow


class InterviewRound(Base):
    __tablename__ = "interview_rounds"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    interview_application_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("interview_applications.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    stage: Mapped[str] = mapped_column(
        String(30), nullable=False, default=RoundStage.SCREENING.value,
    )
    stage_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    scheduled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    duration_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    result: Mapped[str] = mapped_column(
        String(20), nullable=False, default=RoundResult.PENDING.value,
    )
    interviewer_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    video_link: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    source_email_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("synced_emails.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    application: Mapped["InterviewApplication"] = relationship(
        "InterviewApplication", back_populates="rounds",
    )
    feedbacks: Mapped[list["RoundFeedback"]] = relationship(
        "RoundFeedback", back_populates="interview_round",
        cascade="all, delete-orphan", lazy="selectin",
    )
