"""Initial schema: application aggregate, synced emails, decision ledger.

Revision ID: 001_initial
Revises: None
Create Date: 2026-01-27

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "interview_applications",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("company_name", sa.String(255), nullable=True),
        sa.Column("company_website", sa.String(500), nullable=True),
        sa.Column("job_title", sa.String(255), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("pipeline_stage", sa.String(20), nullable=False, server_default="applied"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        "synced_emails",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("thread_id", sa.String(255), nullable=True),
        sa.Column("email_type", sa.String(50), nullable=True),
        sa.Column("email_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("from_email", sa.String(320), nullable=True),
        sa.Column("from_name", sa.String(255), nullable=True),
        sa.Column("subject", sa.Text, nullable=True),
        sa.Column("snippet", sa.Text, nullable=True),
        sa.Column("body_preview", sa.Text, nullable=True),
        sa.Column("body_html", sa.Text, nullable=True),
        sa.Column("extraction_confidence", sa.Float, nullable=True),
        sa.Column(
            "interview_application_id", sa.Integer,
            sa.ForeignKey("interview_applications.id", ondelete="SET NULL"), nullable=True,
        ),
        sa.Column("match_strategy", sa.String(50), nullable=True),
        sa.Column("extracted_data", sa.JSON, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_synced_emails_thread_id", "synced_emails", ["thread_id"])
    op.create_index(
        "ix_synced_emails_interview_application_id", "synced_emails", ["interview_application_id"],
    )

    op.create_table(
        "interview_rounds",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "interview_application_id", sa.Integer,
            sa.ForeignKey("interview_applications.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("position", sa.Integer, nullable=False, server_default="1"),
        sa.Column("stage", sa.String(30), nullable=False, server_default="screening"),
        sa.Column("stage_name", sa.String(255), nullable=True),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_minutes", sa.Integer, nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("result", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("interviewer_name", sa.String(255), nullable=True),
        sa.Column("video_link", sa.Text, nullable=True),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column(
            "source_email_id", sa.Integer,
            sa.ForeignKey("synced_emails.id", ondelete="SET NULL"), nullable=True,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index(
        "ix_interview_rounds_interview_application_id", "interview_rounds",
        ["interview_application_id"],
    )
    op.create_index("ix_interview_rounds_source_email_id", "interview_rounds", ["source_email_id"])

    op.create_table(
        "round_feedbacks",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "interview_round_id", sa.Integer,
            sa.ForeignKey("interview_rounds.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column(
            "source_email_id", sa.Integer,
            sa.ForeignKey("synced_emails.id", ondelete="SET NULL"), nullable=True,
        ),
        sa.Column("result", sa.String(20), nullable=True),
        sa.Column("summary", sa.Text, nullable=True),
        sa.Column("went_well", sa.Text, nullable=True),
        sa.Column("to_improve", sa.Text, nullable=True),
        sa.Column("full_feedback_text", sa.Text, nullable=True),
        sa.Column("recommended_action", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint(
            "interview_round_id", "source_email_id", name="uq_round_feedback_source",
        ),
    )
    op.create_index(
        "ix_round_feedbacks_interview_round_id", "round_feedbacks", ["interview_round_id"],
    )

    op.create_table(
        "decision_executions",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "synced_email_id", sa.Integer,
            sa.ForeignKey("synced_emails.id", ondelete="CASCADE"), nullable=False, unique=True,
        ),
        sa.Column("interview_application_id", sa.Integer, nullable=True),
        sa.Column("decision", sa.String(20), nullable=False),
        sa.Column("plan_version", sa.String(20), nullable=False),
        sa.Column("confidence", sa.Float, nullable=False, server_default="0"),
        sa.Column("status", sa.String(30), nullable=False, server_default="claimed"),
        sa.Column("applied_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("report", sa.JSON, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        "decision_audit_entries",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "decision_execution_id", sa.Integer,
            sa.ForeignKey("decision_executions.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("synced_email_id", sa.Integer, nullable=False),
        sa.Column("step_index", sa.Integer, nullable=False),
        sa.Column("step_id", sa.String(64), nullable=False),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("outcome", sa.String(20), nullable=False),
        sa.Column("reason", sa.String(100), nullable=True),
        sa.Column("detail", sa.JSON, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index(
        "ix_decision_audit_entries_decision_execution_id", "decision_audit_entries",
        ["decision_execution_id"],
    )
    op.create_index(
        "ix_decision_audit_entries_synced_email_id", "decision_audit_entries",
        ["synced_email_id"],
    )


def downgrade() -> None:
    op.drop_table("decision_audit_entries")
    op.drop_table("decision_executions")
    op.drop_table("round_feedbacks")
    op.drop_table("interview_rounds")
    op.drop_table("synced_emails")
    op.drop_table("interview_applications")
