"""SyncedEmail ORM: an ingested email plus its side-channel annotation document.

Invariants:
    - extracted_data is a JSON object; decisioning only ever ADDS keys to it
      (see merge_extracted_data), never drops keys written by other producers
    - interview_application_id set <=> the email was matched to an application

Design Decisions:
    - JSON side-channel instead of dedicated columns: shadow payloads are versioned
      by key (email_facts_v1, decision_plan_v1, ...) and evolve without migrations
    - merge_extracted_data assigns a fresh dict: in-place mutation of a JSON column
      is invisible to the unit of work
"""

import copy
from datetime import datetime

from sqlalchemy import JSON, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from decisioning.db.base import Base, utcnow


class SyncedEmail(Base):
    __tablename__ = "synced_emails"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    thread_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    email_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    email_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    from_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    from_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    subject: Mapped[str | None] = mapped_column(Text, nullable=True)
    snippet: Mapped[str | None] = mapped_column(Text, nullable=True)
    body_preview: Mapped[str | None] = mapped_column(Text, nullable=True)
    body_html: Mapped[str | None] = mapped_column(Text, nullable=True)
    extraction_confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    interview_application_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("interview_applications.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    match_strategy: Mapped[str | None] = mapped_column(String(50), nullable=True)
    extracted_data: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    def merge_extracted_data(self, updates: dict) -> dict:
        """Additive merge of side-channel keys; returns the new document."""
        merged = copy.deepcopy(self.extracted_data or {})
        merged.update(copy.deepcopy(updates))
        self.extracted_data = merged
        return merged
