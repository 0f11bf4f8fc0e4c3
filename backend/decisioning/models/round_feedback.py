"""RoundFeedback ORM: feedback recorded against a round from one email.

Invariants:
    - (interview_round_id, source_email_id) is unique: replaying an email never
      duplicates feedback
"""

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from decisioning.db.base import Base, utcnow


class RoundFeedback(Base):
    __tablename__ = "round_feedbacks"
    __table_args__ = (
        UniqueConstraint(
            "interview_round_id", "source_email_id", name="uq_round_feedback_source",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    interview_round_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("interview_rounds.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    source_email_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("synced_emails.id", ondelete="SET NULL"), nullable=True,
    )
    result: Mapped[str | None] = mapped_column(String(20), nullable=True)
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    went_well: Mapped[str | None] = mapped_column(Text, nullable=True)
    to_improve: Mapped[str | None] = mapped_column(Text, nullable=True)
    full_feedback_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    recommended_action: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    interview_round: Mapped["InterviewRound"] = relationship(
        "InterviewRound", back_populates="feedbacks",
    )
