"""Domain contracts and shared types."""

from backend.punchlist.domain.contracts import (  # noqa: F401
    ACTIVE_STATES,
    ASSIGNMENT_INTENTS,
    AWAITING_RESPONSE_STATES,
    TERMINAL_STATES,
    AssignmentContract,
    AssignmentState,
    AssignmentStatsContract,
    DeliveryStatusContract,
    ExtractedItemContract,
    InboundMessageContract,
    Intent,
    Priority,
    ProjectContext,
    Trade,
    WorkItemStatus,
)
