"""CompanyFeedback ORM: the company's closing word on an application (rejection or offer).

Invariants:
    - (interview_application_id, source_email_id) is unique: replaying an email
      never duplicates feedback
    - Written only by run_status_processor, inside the executor's transaction
"""

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from decisioning.db.base import Base, utcnow


class CompanyFeedback(Base):
    __tablename__ = "company_feedbacks"
    __table_args__ = (
        UniqueConstraint(
            "interview_application_id", "source_email_id",
            name="uq_company_feedback_source",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    interview_application_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("interview_applications.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    source_email_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("synced_emails.id", ondelete="SET NULL"), nullable=True,
    )
    feedback_type: Mapped[str] = mapped_column(String(20), nullable=False)
    feedback_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    next_steps: Mapped[str | None] = mapped_column(Text, nullable=True)
    received_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
