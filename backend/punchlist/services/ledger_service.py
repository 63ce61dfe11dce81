from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backend.punchlist.domain.contracts import ACTIVE_STATES, TERMINAL_STATES, AssignmentState
from backend.punchlist.errors import ConflictError, InvalidTransitionError, NotFoundError
from backend.punchlist.models import (
    Assignment,
    AssignmentEvent,
    Contractor,
    ProcessedMessage,
    WorkItem,
    utcnow,
)


logger = logging.getLogger(__name__)

ACTIVE_STATE_VALUES = tuple(sorted(state.value for state in ACTIVE_STATES))
TERMINAL_STATE_VALUES = frozenset(state.value for state in TERMINAL_STATES)


def _now() -> datetime:
    return utcnow()


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# -------------------------
# Lookups
# -------------------------

def require_assignment(db: Session, assignment_id: str) -> Assignment:
    row = db.get(Assignment, assignment_id)
    if not row:
        raise NotFoundError(f"assignment {assignment_id} not found")
    return row


def require_work_item(db: Session, work_item_id: str) -> WorkItem:
    row = db.get(WorkItem, work_item_id)
    if not row:
        raise NotFoundError(f"work item {work_item_id} not found")
    return row


def require_contractor(db: Session, contractor_id: str) -> Contractor:
    row = db.get(Contractor, contractor_id)
    if not row:
        raise NotFoundError(f"contractor {contractor_id} not found")
    return row


def active_assignment_for_work_item(db: Session, work_item_id: str) -> Optional[Assignment]:
    return (
        db.execute(
            select(Assignment)
            .where(Assignment.work_item_id == work_item_id, Assignment.state.in_(ACTIVE_STATE_VALUES))
            .order_by(Assignment.created_at.desc(), Assignment.id.desc())
        )
        .scalars()
        .first()
    )


def latest_active_assignment_for_contractor(db: Session, contractor_id: str) -> Optional[Assignment]:
    """Most recently created non-terminal assignment; the reply is assumed to be about it."""
    return (
        db.execute(
            select(Assignment)
            .where(Assignment.contractor_id == contractor_id, Assignment.state.in_(ACTIVE_STATE_VALUES))
            .order_by(Assignment.created_at.desc(), Assignment.id.desc())
        )
        .scalars()
        .first()
    )


def find_by_outbound_message_id(db: Session, provider_message_id: str) -> List[Assignment]:
    return (
        db.execute(select(Assignment).where(Assignment.outbound_message_id == provider_message_id))
        .scalars()
        .all()
    )


# -------------------------
# Writes
# -------------------------

def record_event(
    db: Session,
    *,
    assignment_id: str,
    from_state: Optional[str],
    to_state: str,
    trigger: str,
    detail: Optional[Dict[str, Any]] = None,
    now: Optional[datetime] = None,
) -> AssignmentEvent:
    row = AssignmentEvent(
        assignment_id=assignment_id,
        from_state=from_state,
        to_state=to_state,
        trigger=trigger,
        detail=detail,
        created_at=now or _now(),
    )
    db.add(row)
    return row


def insert_assignment(
    db: Session,
    *,
    work_item: WorkItem,
    contractor: Contractor,
    urgent: bool,
    assignment_method: str,
    assignment_reason: Optional[str],
    now: Optional[datetime] = None,
) -> Assignment:
    """
    Insert a pending assignment. Raises ConflictError when the work item already
    has a live assignment; on a unique-constraint race the session is rolled back.
    """
    existing = active_assignment_for_work_item(db, work_item.id)
    if existing is not None:
        raise ConflictError(work_item.id, existing.id)

    current = now or _now()
    row = Assignment(
        work_item_id=work_item.id,
        contractor_id=contractor.id,
        project_id=work_item.project_id,
        state=AssignmentState.PENDING.value,
        version=1,
        active_work_item_id=work_item.id,
        urgent=urgent,
        assignment_method=assignment_method,
        assignment_reason=assignment_reason,
        created_at=current,
        updated_at=current,
    )
    db.add(row)
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError(work_item.id) from exc
    record_event(
        db,
        assignment_id=row.id,
        from_state=None,
        to_state=row.state,
        trigger="create",
        detail={"contractor_id": contractor.id, "method": assignment_method},
        now=current,
    )
    return row


def compare_and_set(
    db: Session,
    assignment: Assignment,
    *,
    expected_state: str,
    new_state: Optional[str] = None,
    trigger: str,
    detail: Optional[Dict[str, Any]] = None,
    now: Optional[datetime] = None,
    **values: Any,
) -> Assignment:
    """
    Conditional update of one assignment row: applies only if the row is still
    in `expected_state` at the version this session read. Raises
    InvalidTransitionError when another writer got there first.
    """
    current = now or _now()
    read_version = assignment.version
    changes: Dict[str, Any] = dict(values)
    changes["version"] = read_version + 1
    changes["updated_at"] = current
    if new_state is not None and new_state != expected_state:
        changes["state"] = new_state
        if new_state in TERMINAL_STATE_VALUES:
            changes["active_work_item_id"] = None
            changes["archived_at"] = current

    result = db.execute(
        update(Assignment)
        .where(
            Assignment.id == assignment.id,
            Assignment.state == expected_state,
            Assignment.version == read_version,
        )
        .values(**changes)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.expire(assignment)
        raise InvalidTransitionError(assignment.id, expected_state)

    db.expire(assignment)
    if new_state is not None and new_state != expected_state:
        record_event(
            db,
            assignment_id=assignment.id,
            from_state=expected_state,
            to_state=new_state,
            trigger=trigger,
            detail=detail,
            now=current,
        )
    return assignment


def set_work_item_status(db: Session, work_item_id: str, status: str, *, now: Optional[datetime] = None) -> None:
    current = now or _now()
    values: Dict[str, Any] = {"status": status, "updated_at": current}
    if status == "completed":
        values["completed_at"] = current
    db.execute(
        update(WorkItem)
        .where(WorkItem.id == work_item_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    item = db.get(WorkItem, work_item_id)
    if item is not None:
        db.expire(item)


def append_note(existing: Optional[str], label: str, body: str, *, now: datetime) -> str:
    entry = f"[{label}: {as_utc(now).strftime('%Y-%m-%d %H:%M UTC')}] {body.strip()}"
    if not existing:
        return entry
    return f"{existing}\n{entry}"


# -------------------------
# Dedupe log
# -------------------------

def claim_message(
    db: Session,
    *,
    provider_message_id: str,
    from_phone: Optional[str],
    window_start: datetime,
    outcome: str = "received",
    now: Optional[datetime] = None,
) -> Optional[ProcessedMessage]:
    """
    Insert the dedupe marker for a provider message id inside the current
    transaction. Returns None when the id was already processed within the
    window. Must be the first write of the transaction: a duplicate-key race
    rolls the session back.
    """
    current = now or _now()
    existing = db.get(ProcessedMessage, provider_message_id)
    if existing is not None:
        if as_utc(existing.processed_at) >= as_utc(window_start):
            return None
        # Stale marker: reclaim it conditionally so concurrent redeliveries
        # still resolve to a single winner.
        result = db.execute(
            update(ProcessedMessage)
            .where(
                ProcessedMessage.provider_message_id == provider_message_id,
                ProcessedMessage.processed_at == existing.processed_at,
            )
            .values(processed_at=current, from_phone=from_phone, outcome=outcome, assignment_id=None)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return None
        db.expire(existing)
        return existing

    marker = ProcessedMessage(
        provider_message_id=provider_message_id,
        from_phone=from_phone,
        outcome=outcome,
        processed_at=current,
    )
    db.add(marker)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        return None
    return marker


def prune_processed_messages(db: Session, *, older_than: datetime) -> int:
    result = db.execute(
        delete(ProcessedMessage)
        .where(ProcessedMessage.processed_at < older_than)
        .execution_options(synchronize_session=False)
    )
    return int(result.rowcount or 0)


# -------------------------
# Reporting
# -------------------------

def list_assignments(
    db: Session,
    *,
    project_id: Optional[str] = None,
    contractor_id: Optional[str] = None,
    work_item_id: Optional[str] = None,
    state: Optional[str] = None,
    limit: int = 200,
) -> List[Assignment]:
    stmt = select(Assignment)
    if project_id:
        stmt = stmt.where(Assignment.project_id == project_id)
    if contractor_id:
        stmt = stmt.where(Assignment.contractor_id == contractor_id)
    if work_item_id:
        stmt = stmt.where(Assignment.work_item_id == work_item_id)
    if state:
        stmt = stmt.where(Assignment.state == state)
    stmt = stmt.order_by(Assignment.created_at.desc(), Assignment.id.desc()).limit(limit)
    return db.execute(stmt).scalars().all()


def assignment_stats(
    db: Session,
    *,
    project_id: Optional[str] = None,
    contractor_id: Optional[str] = None,
) -> Dict[str, Any]:
    stmt = select(Assignment.state, func.count(Assignment.id)).group_by(Assignment.state)
    if project_id:
        stmt = stmt.where(Assignment.project_id == project_id)
    if contractor_id:
        stmt = stmt.where(Assignment.contractor_id == contractor_id)
    by_state = {state: int(count) for state, count in db.execute(stmt).all()}
    total = sum(by_state.values())
    active = sum(count for state, count in by_state.items() if state not in TERMINAL_STATE_VALUES)
    completed = by_state.get(AssignmentState.COMPLETED.value, 0)
    return {
        "total_assignments": total,
        "by_state": by_state,
        "active_assignments": active,
        "completion_rate": (completed / total) if total else 0.0,
    }
