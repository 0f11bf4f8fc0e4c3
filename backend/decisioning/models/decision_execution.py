"""Decision ledger ORM: one execution claim per email plus its per-step audit trail.

Invariants:
    - synced_email_id is UNIQUE on decision_executions: the only concurrency guard
      for plan application; the row is inserted before any mutation and committed
      in the same transaction as the mutations
    - Every step outcome of an execution has exactly one DecisionAuditEntry

Design Decisions:
    - Ledger row over a flag on SyncedEmail: a unique insert is atomic across
      concurrent runs, a read-then-write flag is not
"""

from datetime import datetime

from sqlalchemy import JSON, DateTime, Float, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from decisioning.db.base import Base, utcnow


class DecisionExecution(Base):
    __tablename__ = "decision_executions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    synced_email_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("synced_emails.id", ondelete="CASCADE"),
        nullable=False, unique=True,
    )
    interview_application_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    decision: Mapped[str] = mapped_column(String(20), nullable=False)
    plan_version: Mapped[str] = mapped_column(String(20), nullable=False)
    confidence: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="claimed")
    applied_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    report: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    audit_entries: Mapped[list["DecisionAuditEntry"]] = relationship(
        "DecisionAuditEntry", back_populates="execution",
        cascade="all, delete-orphan", lazy="selectin",
        order_by="DecisionAuditEntry.step_index",
    )


class DecisionAuditEntry(Base):
    """Outcome of one plan step: applied, skipped, needs_review or error."""
    __tablename__ = "decision_audit_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    decision_execution_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("decision_executions.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    synced_email_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    step_index: Mapped[int] = mapped_column(Integer, nullable=False)
    step_id: Mapped[str] = mapped_column(String(64), nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    outcome: Mapped[str] = mapped_column(String(20), nullable=False)
    reason: Mapped[str | None] = mapped_column(String(100), nullable=True)
    detail: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    execution: Mapped["DecisionExecution"] = relationship(
        "DecisionExecution", back_populates="audit_entries",
    )
