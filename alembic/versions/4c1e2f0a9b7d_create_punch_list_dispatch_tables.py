"""create punch list dispatch tables

Revision ID: 4c1e2f0a9b7d
Revises:
Create Date: 2026-10-18 09:12:40.511203

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '4c1e2f0a9b7d'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "projects",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("homeowner_name", sa.String(length=200), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "contractors",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("business_name", sa.String(length=200), nullable=False),
        sa.Column("phone", sa.String(length=32), nullable=False),
        sa.Column("whatsapp_address", sa.String(length=64), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("specialties", sa.JSON(), nullable=False),
        sa.Column("availability_status", sa.String(length=32), nullable=False, server_default="available"),
        sa.Column("rating", sa.Float(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("phone", name="uq_contractors_phone"),
    )

    op.create_table(
        "work_items",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("project_id", sa.String(length=36), sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("area", sa.String(length=120), nullable=True),
        sa.Column("trade", sa.String(length=20), nullable=False, server_default="general"),
        sa.Column("priority", sa.String(length=10), nullable=False, server_default="medium"),
        sa.Column("estimated_hours", sa.Float(), nullable=True),
        sa.Column("materials_needed", sa.JSON(), nullable=False),
        sa.Column("transcript_ref", sa.String(length=120), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="extracted"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_work_items_project_id", "work_items", ["project_id"])

    op.create_table(
        "assignments",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("work_item_id", sa.String(length=36), sa.ForeignKey("work_items.id", ondelete="CASCADE"), nullable=False),
        sa.Column("contractor_id", sa.String(length=36), sa.ForeignKey("contractors.id", ondelete="CASCADE"), nullable=False),
        sa.Column("project_id", sa.String(length=36), sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False),
        sa.Column("state", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("active_work_item_id", sa.String(length=36), nullable=True),
        sa.Column("urgent", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("assignment_method", sa.String(length=32), nullable=False, server_default="manual"),
        sa.Column("assignment_reason", sa.Text(), nullable=True),
        sa.Column("outbound_message_id", sa.String(length=64), nullable=True),
        sa.Column("delivery_status", sa.String(length=32), nullable=True),
        sa.Column("send_attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_send_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("reminder_sent", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("reminder_sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("contractor_notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("notified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("responded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("archived_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("active_work_item_id", name="uq_assignments_active_work_item"),
    )
    op.create_index("ix_assignments_work_item_id", "assignments", ["work_item_id"])
    op.create_index("ix_assignments_project_id", "assignments", ["project_id"])
    op.create_index(
        "ix_assignments_contractor_state_created",
        "assignments",
        ["contractor_id", "state", "created_at"],
    )
    op.create_index("ix_assignments_outbound_message_id", "assignments", ["outbound_message_id"])

    op.create_table(
        "assignment_events",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("assignment_id", sa.String(length=36), sa.ForeignKey("assignments.id", ondelete="CASCADE"), nullable=False),
        sa.Column("from_state", sa.String(length=20), nullable=True),
        sa.Column("to_state", sa.String(length=20), nullable=False),
        sa.Column("trigger", sa.String(length=40), nullable=False),
        sa.Column("detail", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_assignment_events_assignment_id", "assignment_events", ["assignment_id"])

    op.create_table(
        "processed_messages",
        sa.Column("provider_message_id", sa.String(length=64), primary_key=True),
        sa.Column("from_phone", sa.String(length=32), nullable=True),
        sa.Column("assignment_id", sa.String(length=36), nullable=True),
        sa.Column("outcome", sa.String(length=40), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_processed_messages_processed_at", "processed_messages", ["processed_at"])

    op.create_table(
        "webhook_events",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("message_sid", sa.String(length=64), nullable=True),
        sa.Column("event_type", sa.String(length=40), nullable=False),
        sa.Column("from_phone", sa.String(length=64), nullable=True),
        sa.Column("to_phone", sa.String(length=64), nullable=True),
        sa.Column("body", sa.Text(), nullable=True),
        sa.Column("raw_payload", sa.JSON(), nullable=False),
        sa.Column("processed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_webhook_events_message_sid", "webhook_events", ["message_sid"])

    op.create_table(
        "phone_verifications",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("phone_key", sa.String(length=32), nullable=False),
        sa.Column("code", sa.String(length=6), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_phone_verifications_phone_key", "phone_verifications", ["phone_key"])


def downgrade() -> None:
    op.drop_index("ix_phone_verifications_phone_key", table_name="phone_verifications")
    op.drop_table("phone_verifications")
    op.drop_index("ix_webhook_events_message_sid", table_name="webhook_events")
    op.drop_table("webhook_events")
    op.drop_index("ix_processed_messages_processed_at", table_name="processed_messages")
    op.drop_table("processed_messages")
    op.drop_index("ix_assignment_events_assignment_id", table_name="assignment_events")
    op.drop_table("assignment_events")
    op.drop_index("ix_assignments_outbound_message_id", table_name="assignments")
    op.drop_index("ix_assignments_contractor_state_created", table_name="assignments")
    op.drop_index("ix_assignments_project_id", table_name="assignments")
    op.drop_index("ix_assignments_work_item_id", table_name="assignments")
    op.drop_table("assignments")
    op.drop_index("ix_work_items_project_id", table_name="work_items")
    op.drop_table("work_items")
    op.drop_table("contractors")
    op.drop_table("projects")
