"""Add company_feedbacks table for rejection and offer feedback.

Revision ID: 002_company_feedbacks
Revises: 001_initial
Create Date: 2026-02-04

One row per (application, source email), written by the status processor
when a rejection or offer is applied.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "002_company_feedbacks"
down_revision: Union[str, None] = "001_initial"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "company_feedbacks",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "interview_application_id", sa.Integer,
            sa.ForeignKey("interview_applications.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column(
            "source_email_id", sa.Integer,
            sa.ForeignKey("synced_emails.id", ondelete="SET NULL"), nullable=True,
        ),
        sa.Column("feedback_type", sa.String(20), nullable=False),
        sa.Column("feedback_text", sa.Text, nullable=True),
        sa.Column("rejection_reason", sa.Text, nullable=True),
        sa.Column("next_steps", sa.Text, nullable=True),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint(
            "interview_application_id", "source_email_id", name="uq_company_feedback_source",
        ),
    )
    op.create_index(
        "ix_company_feedbacks_interview_application_id", "company_feedbacks",
        ["interview_application_id"],
    )


def downgrade() -> None:
    op.drop_index("ix_company_feedbacks_interview_application_id", table_name="company_feedbacks")
    op.drop_table("company_feedbacks")
