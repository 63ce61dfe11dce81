from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.punchlist.config import DispatchSettings, get_settings
from backend.punchlist.domain.contracts import AssignmentState, WorkItemStatus
from backend.punchlist.errors import InvalidTransitionError, TransportError
from backend.punchlist.integrations.base import MessageTransport
from backend.punchlist.messaging import templates
from backend.punchlist.messaging.templates import TemplateEvent
from backend.punchlist.models import Assignment, utcnow
from backend.punchlist.services import dispatch_service, ledger_service
from backend.punchlist.services.ledger_service import as_utc


logger = logging.getLogger(__name__)

AWAITING_STATE_VALUES = (AssignmentState.PENDING.value, AssignmentState.NOTIFIED.value)


@dataclass(frozen=True)
class SweepError:
    assignment_id: Optional[str]
    message: str


@dataclass(frozen=True)
class SweepResult:
    scanned: int
    sends_retried: int
    notifications_sent: int
    reminders_sent: int
    expired: int
    reassignment_notices_sent: int
    skipped_races: int
    dedupe_pruned: int
    errors: list[dict]
    started_at: str
    finished_at: str


def deadline_anchor(assignment: Assignment) -> datetime:
    return as_utc(assignment.notified_at or assignment.created_at)


def _send_due(assignment: Assignment, now: datetime, retry_after: timedelta) -> bool:
    if assignment.last_send_attempt_at is None:
        return True
    return now - as_utc(assignment.last_send_attempt_at) >= retry_after


def expire_assignment(
    db: Session,
    transport: MessageTransport,
    assignment: Assignment,
    *,
    settings: DispatchSettings,
    now: datetime,
) -> bool:
    """
    Move an unanswered assignment to Expired and free its work item. Returns
    True when the courtesy notice went out; it is only sent to contractors who
    actually received the original offer.
    """
    assignment_id = assignment.id
    work_item_id = assignment.work_item_id
    was_notified = assignment.notified_at is not None
    ctx = dispatch_service.build_context(assignment, settings)
    to = dispatch_service.contractor_address(assignment.contractor, settings)

    ledger_service.compare_and_set(
        db,
        assignment,
        expected_state=assignment.state,
        new_state=AssignmentState.EXPIRED.value,
        trigger="sweep",
        detail={"reason": "no_response"},
        now=now,
    )
    item = ledger_service.require_work_item(db, work_item_id)
    if item.status != WorkItemStatus.COMPLETED.value:
        ledger_service.set_work_item_status(db, work_item_id, WorkItemStatus.EXTRACTED.value, now=now)
    db.commit()
    logger.info("assignment %s expired without a response", assignment_id)

    if not was_notified:
        return False
    reply = dispatch_service.OutboundReply(
        to=to,
        body=templates.render(TemplateEvent.REASSIGNED, ctx),
        event=TemplateEvent.REASSIGNED,
    )
    return dispatch_service.send_reply(transport, reply)


def send_reminder(
    db: Session,
    transport: MessageTransport,
    assignment: Assignment,
    *,
    settings: DispatchSettings,
    now: datetime,
) -> bool:
    """
    Claim the reminder by flipping `reminder_sent` under the row version, commit,
    then send. A failed send hands the flag back so the next sweep tries again.
    """
    assignment_id = assignment.id
    state = assignment.state
    ctx = dispatch_service.build_context(assignment, settings)
    to = dispatch_service.contractor_address(assignment.contractor, settings)

    ledger_service.compare_and_set(
        db,
        assignment,
        expected_state=state,
        trigger="reminder",
        now=now,
        reminder_sent=True,
        reminder_sent_at=now,
    )
    db.commit()

    try:
        transport.send(to, templates.render(TemplateEvent.REMINDER, ctx))
    except TransportError as exc:
        logger.warning("reminder for assignment %s failed: %s", assignment_id, exc)
        claimed = ledger_service.require_assignment(db, assignment_id)
        try:
            ledger_service.compare_and_set(
                db,
                claimed,
                expected_state=state,
                trigger="reminder_failed",
                now=now,
                reminder_sent=False,
                reminder_sent_at=None,
                last_error=str(exc)[:500],
            )
        except InvalidTransitionError:
            db.rollback()
            logger.info("assignment %s moved on before its reminder flag could be reset", assignment_id)
            return False
        db.commit()
        return False

    logger.info("reminder sent for assignment %s", assignment_id)
    return True


def run_escalation_sweep(
    db: Session,
    transport: MessageTransport,
    *,
    settings: Optional[DispatchSettings] = None,
    now: Optional[datetime] = None,
) -> SweepResult:
    """
    One pass over every assignment still waiting on the contractor. Safe to run
    concurrently with itself and with the webhook: every write is a versioned
    compare-and-swap committed before the corresponding message is sent.
    """
    settings = settings or get_settings()
    started_at = as_utc(now or utcnow())
    retry_after = timedelta(seconds=settings.sweep_interval_seconds)

    candidate_ids = (
        db.execute(
            select(Assignment.id)
            .where(Assignment.state.in_(AWAITING_STATE_VALUES))
            .order_by(Assignment.created_at.asc(), Assignment.id.asc())
        )
        .scalars()
        .all()
    )

    errors: list[SweepError] = []
    sends_retried = 0
    notifications_sent = 0
    reminders_sent = 0
    expired = 0
    notices_sent = 0
    skipped = 0

    for assignment_id in candidate_ids:
        try:
            assignment = ledger_service.require_assignment(db, assignment_id)
            if assignment.state not in AWAITING_STATE_VALUES:
                continue
            waited = started_at - deadline_anchor(assignment)

            if waited >= settings.expire_after:
                if expire_assignment(db, transport, assignment, settings=settings, now=started_at):
                    notices_sent += 1
                expired += 1
                continue

            if assignment.state == AssignmentState.PENDING.value:
                if _send_due(assignment, started_at, retry_after):
                    sends_retried += 1
                    if dispatch_service.notify_assignment(
                        db, transport, assignment_id, settings=settings, now=started_at
                    ):
                        notifications_sent += 1
                continue

            if waited >= settings.reminder_after and not assignment.reminder_sent:
                if send_reminder(db, transport, assignment, settings=settings, now=started_at):
                    reminders_sent += 1
        except InvalidTransitionError:
            db.rollback()
            skipped += 1
            logger.info("assignment %s changed during the sweep, skipped", assignment_id)
        except Exception as exc:
            db.rollback()
            logger.exception("escalation failed for assignment %s", assignment_id)
            errors.append(SweepError(assignment_id=assignment_id, message=str(exc)))

    pruned = ledger_service.prune_processed_messages(db, older_than=started_at - settings.dedupe_window)
    db.commit()

    result = SweepResult(
        scanned=len(candidate_ids),
        sends_retried=sends_retried,
        notifications_sent=notifications_sent,
        reminders_sent=reminders_sent,
        expired=expired,
        reassignment_notices_sent=notices_sent,
        skipped_races=skipped,
        dedupe_pruned=pruned,
        errors=[asdict(err) for err in errors],
        started_at=started_at.isoformat(),
        finished_at=as_utc(utcnow()).isoformat(),
    )
    logger.info(
        "escalation sweep: scanned=%s reminders=%s expired=%s retried=%s errors=%s",
        result.scanned,
        result.reminders_sent,
        result.expired,
        result.sends_retried,
        len(result.errors),
    )
    return result
