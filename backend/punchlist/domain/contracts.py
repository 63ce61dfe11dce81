from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


class AssignmentState(str, Enum):
    PENDING = "pending"
    NOTIFIED = "notified"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    EXPIRED = "expired"


TERMINAL_STATES = frozenset({AssignmentState.DECLINED, AssignmentState.COMPLETED, AssignmentState.EXPIRED})
ACTIVE_STATES = frozenset(set(AssignmentState) - TERMINAL_STATES)
AWAITING_RESPONSE_STATES = frozenset({AssignmentState.PENDING, AssignmentState.NOTIFIED})


class Intent(str, Enum):
    ACCEPT = "accept"
    DECLINE = "decline"
    INFO_REQUEST = "info_request"
    STARTED = "started"
    COMPLETED = "completed"
    UNKNOWN = "unknown"
    VERIFICATION_CODE = "verification_code"


# The six intents the assignment state machine reacts to.
ASSIGNMENT_INTENTS = (
    Intent.ACCEPT,
    Intent.DECLINE,
    Intent.INFO_REQUEST,
    Intent.STARTED,
    Intent.COMPLETED,
    Intent.UNKNOWN,
)


class WorkItemStatus(str, Enum):
    EXTRACTED = "extracted"
    NOTIFIED = "notified"
    ASSIGNED = "assigned"
    COMPLETED = "completed"


class Trade(str, Enum):
    PLUMBING = "plumbing"
    ELECTRICAL = "electrical"
    CARPENTRY = "carpentry"
    PAINTING = "painting"
    GENERAL = "general"
    HVAC = "hvac"
    TILE = "tile"
    DRYWALL = "drywall"
    FLOORING = "flooring"


class Priority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ProjectContext(BaseModel):
    project_id: str
    title: str
    homeowner_name: Optional[str] = None


class ExtractedItemContract(BaseModel):
    description: str = Field(min_length=3)
    area: Optional[str] = None
    trade: Trade = Trade.GENERAL
    priority: Priority = Priority.MEDIUM
    estimated_hours: Optional[float] = Field(default=None, ge=0)
    materials_needed: List[str] = Field(default_factory=list)

    @field_validator("trade", mode="before")
    @classmethod
    def _coerce_trade(cls, value: Any) -> Any:
        if value is None:
            return Trade.GENERAL
        key = str(value).strip().lower()
        return key if key in {t.value for t in Trade} else Trade.GENERAL

    @field_validator("priority", mode="before")
    @classmethod
    def _coerce_priority(cls, value: Any) -> Any:
        if value is None:
            return Priority.MEDIUM
        key = str(value).strip().lower()
        if key == "urgent":
            return Priority.HIGH
        return key if key in {p.value for p in Priority} else Priority.MEDIUM


class InboundMessageContract(BaseModel):
    provider_message_id: str
    from_phone: str
    to_phone: Optional[str] = None
    body: Optional[str] = None
    num_media: int = 0
    media_url: Optional[str] = None
    media_content_type: Optional[str] = None
    received_at: Optional[datetime] = None


class DeliveryStatusContract(BaseModel):
    provider_message_id: str
    status: str
    error_code: Optional[str] = None


class AssignmentContract(BaseModel):
    id: str
    work_item_id: str
    contractor_id: str
    project_id: str
    state: AssignmentState
    urgent: bool
    reminder_sent: bool
    outbound_message_id: Optional[str] = None
    delivery_status: Optional[str] = None
    contractor_notes: Optional[str] = None
    created_at: datetime
    notified_at: Optional[datetime] = None
    responded_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class AssignmentStatsContract(BaseModel):
    total_assignments: int
    by_state: Dict[str, int]
    active_assignments: int
    completion_rate: float
