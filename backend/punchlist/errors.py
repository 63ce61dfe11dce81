from __future__ import annotations

from typing import Optional


class DispatchError(Exception):
    """Base class for punch-list dispatch failures."""


class NotFoundError(DispatchError):
    pass


class ConflictError(DispatchError):
    """A work item already has an assignment in a non-terminal state."""

    def __init__(self, work_item_id: str, active_assignment_id: Optional[str] = None):
        self.work_item_id = work_item_id
        self.active_assignment_id = active_assignment_id
        detail = f"work item {work_item_id} already has an active assignment"
        if active_assignment_id:
            detail = f"{detail} ({active_assignment_id})"
        super().__init__(detail)


class UnresolvedContractorError(DispatchError):
    def __init__(self, phone: str):
        self.phone = phone
        super().__init__(f"no contractor registered for phone {phone}")


class TransportError(DispatchError):
    """Outbound send failed; the caller decides whether a later sweep retries."""

    def __init__(self, message: str, *, retryable: bool = True, status_code: Optional[int] = None):
        self.retryable = retryable
        self.status_code = status_code
        super().__init__(message)


class InvalidTransitionError(DispatchError):
    """A compare-and-swap on an assignment row lost to a concurrent writer."""

    def __init__(self, assignment_id: str, expected_state: str):
        self.assignment_id = assignment_id
        self.expected_state = expected_state
        super().__init__(f"assignment {assignment_id} is no longer in state {expected_state}")
