from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.punchlist.db import Base


# -------------------------
# Helpers
# -------------------------

def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def uuid_str() -> str:
    return str(uuid.uuid4())


# -------------------------
# Referenced entities
# -------------------------

class Project(Base):
    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    homeowner_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    work_items = relationship("WorkItem", back_populates="project")


class Contractor(Base):
    """
    Read-only from the dispatch workflow's point of view: routing needs the
    normalized phone key and a business name, nothing here is written back.
    """
    __tablename__ = "contractors"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    business_name: Mapped[str] = mapped_column(String(200), nullable=False)
    phone: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)  # normalized national digits
    whatsapp_address: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    specialties: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    availability_status: Mapped[str] = mapped_column(String(32), default="available", nullable=False)
    rating: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


# -------------------------
# Punch list
# -------------------------

class WorkItem(Base):
    __tablename__ = "work_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    project_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    description: Mapped[str] = mapped_column(Text, nullable=False)
    area: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    trade: Mapped[str] = mapped_column(String(20), default="general", nullable=False)
    priority: Mapped[str] = mapped_column(String(10), default="medium", nullable=False)
    estimated_hours: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    materials_needed: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    transcript_ref: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)

    status: Mapped[str] = mapped_column(String(20), default="extracted", nullable=False)  # extracted/notified/assigned/completed
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    project = relationship("Project", back_populates="work_items")
    assignments = relationship("Assignment", back_populates="work_item", order_by="Assignment.created_at")


class Assignment(Base):
    """
    One offer of a work item to a contractor. Rows are never deleted; terminal
    rows are archived so the history of who was offered what survives.
    """
    __tablename__ = "assignments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    work_item_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("work_items.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    contractor_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("contractors.id", ondelete="CASCADE"),
        nullable=False,
    )
    project_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    state: Mapped[str] = mapped_column(String(20), default="pending", nullable=False)
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    # Mirrors work_item_id while the row is non-terminal, NULL afterwards; the
    # unique constraint is what keeps a work item to one live offer.
    active_work_item_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    urgent: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    assignment_method: Mapped[str] = mapped_column(String(32), default="manual", nullable=False)
    assignment_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    outbound_message_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    delivery_status: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    send_attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_send_attempt_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    reminder_sent: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    reminder_sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    contractor_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    notified_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    responded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    archived_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    work_item = relationship("WorkItem", back_populates="assignments")
    contractor = relationship("Contractor")
    project = relationship("Project")

    __table_args__ = (
        UniqueConstraint("active_work_item_id", name="uq_assignments_active_work_item"),
        Index("ix_assignments_contractor_state_created", "contractor_id", "state", "created_at"),
        Index("ix_assignments_outbound_message_id", "outbound_message_id"),
    )


class AssignmentEvent(Base):
    __tablename__ = "assignment_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    assignment_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("assignments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    from_state: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    to_state: Mapped[str] = mapped_column(String(20), nullable=False)
    trigger: Mapped[str] = mapped_column(String(40), nullable=False)  # inbound/sweep/create/send
    detail: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


# -------------------------
# Messaging bookkeeping
# -------------------------

class ProcessedMessage(Base):
    """Dedupe log keyed by the carrier's message id."""
    __tablename__ = "processed_messages"

    provider_message_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    from_phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    assignment_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    outcome: Mapped[str] = mapped_column(String(40), nullable=False)
    processed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)


class WebhookEvent(Base):
    __tablename__ = "webhook_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    message_sid: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    event_type: Mapped[str] = mapped_column(String(40), nullable=False)
    from_phone: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    to_phone: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    body: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    raw_payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    processed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class PhoneVerification(Base):
    __tablename__ = "phone_verifications"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    phone_key: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    code: Mapped[str] = mapped_column(String(6), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    verified_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
