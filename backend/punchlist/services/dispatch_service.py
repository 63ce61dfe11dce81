from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Dict, Optional, Tuple

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from backend.punchlist.config import DispatchSettings, get_settings
from backend.punchlist.domain.contracts import TERMINAL_STATES, AssignmentState, Intent, WorkItemStatus
from backend.punchlist.errors import ConflictError, InvalidTransitionError, TransportError, UnresolvedContractorError
from backend.punchlist.integrations.base import MessageTransport
from backend.punchlist.messaging import classifier, templates
from backend.punchlist.messaging.classifier import Classification
from backend.punchlist.messaging.phone import NormalizedPhone, normalize_phone
from backend.punchlist.messaging.templates import TemplateContext, TemplateEvent
from backend.punchlist.models import Assignment, Contractor, utcnow
from backend.punchlist.services import ledger_service, verification_service


logger = logging.getLogger(__name__)

MAX_CAS_ATTEMPTS = 3


@dataclass(frozen=True)
class Transition:
    new_state: Optional[AssignmentState]
    reply: TemplateEvent
    work_item_status: Optional[WorkItemStatus] = None
    note_label: Optional[str] = None


# (current state, intent) -> what happens. Pairs missing from the table leave
# the assignment untouched and answer with the help menu.
TRANSITIONS: Dict[Tuple[AssignmentState, Intent], Transition] = {
    (AssignmentState.NOTIFIED, Intent.ACCEPT): Transition(
        AssignmentState.ACCEPTED, TemplateEvent.ACCEPTED, WorkItemStatus.ASSIGNED, "Accepted"
    ),
    (AssignmentState.NOTIFIED, Intent.DECLINE): Transition(
        AssignmentState.DECLINED, TemplateEvent.DECLINED, WorkItemStatus.EXTRACTED, "Declined"
    ),
    (AssignmentState.NOTIFIED, Intent.INFO_REQUEST): Transition(None, TemplateEvent.MATERIALS_INFO),
    (AssignmentState.ACCEPTED, Intent.STARTED): Transition(
        AssignmentState.IN_PROGRESS, TemplateEvent.STARTED, None, "Started"
    ),
    (AssignmentState.IN_PROGRESS, Intent.COMPLETED): Transition(
        AssignmentState.COMPLETED, TemplateEvent.COMPLETED, WorkItemStatus.COMPLETED, "Completed"
    ),
}

HELP_TRANSITION = Transition(None, TemplateEvent.HELP)
NO_PENDING_TRANSITION = Transition(None, TemplateEvent.NO_PENDING_ITEM)

_TIMESTAMP_FOR_STATE = {
    AssignmentState.ACCEPTED: "responded_at",
    AssignmentState.DECLINED: "responded_at",
    AssignmentState.IN_PROGRESS: "started_at",
    AssignmentState.COMPLETED: "completed_at",
}


@dataclass(frozen=True)
class OutboundReply:
    to: str
    body: str
    event: TemplateEvent


@dataclass(frozen=True)
class InboundResult:
    outcome: str
    intent: Optional[Intent]
    assignment_id: Optional[str] = None
    previous_state: Optional[str] = None
    new_state: Optional[str] = None
    reply_event: Optional[TemplateEvent] = None
    reply_sent: bool = False


def decide_transition(state: str, intent: Intent) -> Transition:
    current = AssignmentState(state)
    if current in TERMINAL_STATES:
        return NO_PENDING_TRANSITION
    return TRANSITIONS.get((current, Intent(intent)), HELP_TRANSITION)


# -------------------------
# Context helpers
# -------------------------

def contractor_address(contractor: Contractor, settings: DispatchSettings) -> str:
    if contractor.whatsapp_address:
        return contractor.whatsapp_address
    return normalize_phone(contractor.phone, default_country_code=settings.default_country_code).send_to


def build_context(assignment: Assignment, settings: DispatchSettings) -> TemplateContext:
    item = assignment.work_item
    project = assignment.project
    contractor = assignment.contractor
    grace_hours = (settings.expire_after_minutes - settings.reminder_after_minutes) / 60
    return TemplateContext(
        contractor_name=contractor.business_name if contractor else "",
        project_title=project.title if project else "",
        homeowner_name=(project.homeowner_name or "") if project else "",
        description=item.description,
        priority=item.priority,
        urgent=assignment.urgent,
        area=item.area,
        estimated_hours=item.estimated_hours,
        materials_needed=list(item.materials_needed or []),
        admin_contact=settings.admin_contact,
        reassign_after_hours=grace_hours,
    )


def resolve_contractor(db: Session, phone: NormalizedPhone) -> Contractor:
    row = (
        db.execute(
            select(Contractor)
            .where(
                or_(
                    Contractor.phone == phone.key,
                    Contractor.whatsapp_address.in_([phone.send_to, phone.e164]),
                )
            )
            .order_by(Contractor.created_at.asc(), Contractor.id.asc())
        )
        .scalars()
        .first()
    )
    if row is None:
        raise UnresolvedContractorError(phone.key)
    return row


def send_reply(transport: MessageTransport, reply: Optional[OutboundReply]) -> bool:
    if reply is None:
        return False
    try:
        transport.send(reply.to, reply.body)
    except TransportError as exc:
        logger.warning("reply %s to %s not sent: %s", reply.event.value, reply.to, exc)
        return False
    return True


# -------------------------
# State machine
# -------------------------

def apply_intent(
    db: Session,
    assignment: Assignment,
    intent: Intent,
    *,
    body: str = "",
    trigger: str = "inbound",
    now: Optional[datetime] = None,
) -> Transition:
    """
    Apply one intent to one assignment through a compare-and-swap on its row.
    Does not commit and does not send; raises InvalidTransitionError if the row
    moved underneath us.
    """
    current = now or utcnow()
    transition = decide_transition(assignment.state, intent)
    if transition.new_state is None:
        return transition

    expected_state = assignment.state
    work_item_id = assignment.work_item_id
    values = {}
    if transition.note_label and body.strip():
        values["contractor_notes"] = ledger_service.append_note(
            assignment.contractor_notes, transition.note_label, body, now=current
        )
    timestamp_field = _TIMESTAMP_FOR_STATE.get(transition.new_state)
    if timestamp_field:
        values[timestamp_field] = current

    ledger_service.compare_and_set(
        db,
        assignment,
        expected_state=expected_state,
        new_state=transition.new_state.value,
        trigger=trigger,
        detail={"intent": Intent(intent).value},
        now=current,
        **values,
    )
    if transition.work_item_status is not None:
        ledger_service.set_work_item_status(db, work_item_id, transition.work_item_status.value, now=current)
    logger.info("assignment %s: %s -> %s on %s", assignment.id, expected_state, transition.new_state.value, Intent(intent).value)
    return transition


# -------------------------
# Outbound: new assignments
# -------------------------

def create_assignment(
    db: Session,
    transport: MessageTransport,
    *,
    work_item_id: str,
    contractor_id: str,
    assignment_method: str = "manual",
    assignment_reason: Optional[str] = None,
    settings: Optional[DispatchSettings] = None,
    now: Optional[datetime] = None,
) -> Assignment:
    """
    Offer a work item to a contractor and try to notify them.

    Raises ConflictError if the work item already has a live assignment (or is
    already completed). A failed send is not an error: the assignment stays
    pending and the escalation sweep retries it.
    """
    settings = settings or get_settings()
    current = now or utcnow()
    work_item = ledger_service.require_work_item(db, work_item_id)
    contractor = ledger_service.require_contractor(db, contractor_id)
    if work_item.status == WorkItemStatus.COMPLETED.value:
        raise ConflictError(work_item.id)

    assignment = ledger_service.insert_assignment(
        db,
        work_item=work_item,
        contractor=contractor,
        urgent=work_item.priority == "high",
        assignment_method=assignment_method,
        assignment_reason=assignment_reason,
        now=current,
    )
    assignment_id = assignment.id
    db.commit()
    logger.info("assignment %s created: work item %s -> contractor %s", assignment_id, work_item_id, contractor_id)

    notify_assignment(db, transport, assignment_id, settings=settings, now=current)
    return ledger_service.require_assignment(db, assignment_id)


def notify_assignment(
    db: Session,
    transport: MessageTransport,
    assignment_id: str,
    *,
    settings: Optional[DispatchSettings] = None,
    now: Optional[datetime] = None,
) -> bool:
    """
    Send the first notification for a pending assignment. The send attempt is
    claimed with a versioned update and committed before the carrier is called,
    so two workers never send the same notification.
    """
    settings = settings or get_settings()
    current = now or utcnow()
    assignment = ledger_service.require_assignment(db, assignment_id)
    if assignment.state != AssignmentState.PENDING.value:
        return False

    ctx = build_context(assignment, settings)
    to = contractor_address(assignment.contractor, settings)
    work_item_id = assignment.work_item_id
    try:
        ledger_service.compare_and_set(
            db,
            assignment,
            expected_state=AssignmentState.PENDING.value,
            trigger="send_attempt",
            now=current,
            send_attempts=assignment.send_attempts + 1,
            last_send_attempt_at=current,
        )
    except InvalidTransitionError:
        db.rollback()
        logger.info("assignment %s already claimed by another sender", assignment_id)
        return False
    db.commit()

    try:
        sent = transport.send(to, templates.render_notification(ctx))
    except TransportError as exc:
        logger.warning("notification for assignment %s failed, left pending: %s", assignment_id, exc)
        db.execute(
            update(Assignment)
            .where(Assignment.id == assignment_id, Assignment.state == AssignmentState.PENDING.value)
            .values(last_error=str(exc)[:500])
            .execution_options(synchronize_session=False)
        )
        db.commit()
        return False

    assignment = ledger_service.require_assignment(db, assignment_id)
    try:
        ledger_service.compare_and_set(
            db,
            assignment,
            expected_state=AssignmentState.PENDING.value,
            new_state=AssignmentState.NOTIFIED.value,
            trigger="send",
            detail={"provider_message_id": sent.provider_message_id},
            now=current,
            outbound_message_id=sent.provider_message_id,
            delivery_status="sent",
            notified_at=current,
            last_error=None,
        )
    except InvalidTransitionError:
        db.rollback()
        logger.warning("assignment %s changed state while its notification was in flight", assignment_id)
        return True
    ledger_service.set_work_item_status(db, work_item_id, WorkItemStatus.NOTIFIED.value, now=current)
    db.commit()
    return True


# -------------------------
# Inbound: contractor replies
# -------------------------

def _route_inbound(
    db: Session,
    phone: NormalizedPhone,
    classification: Classification,
    body: str,
    settings: DispatchSettings,
    now: datetime,
) -> Tuple[InboundResult, OutboundReply]:
    intent = classification.intent
    fallback_ctx = TemplateContext(admin_contact=settings.admin_contact)

    if intent == Intent.VERIFICATION_CODE:
        ok = verification_service.verify_code(db, phone_key=phone.key, code=classification.verification_code, now=now)
        event = TemplateEvent.VERIFIED if ok else TemplateEvent.VERIFICATION_FAILED
        contractor = db.execute(select(Contractor).where(Contractor.phone == phone.key)).scalars().first()
        ctx = replace(fallback_ctx, contractor_name=contractor.business_name if contractor else "")
        result = InboundResult(outcome="verified" if ok else "verification_failed", intent=intent, reply_event=event)
        return result, OutboundReply(to=phone.send_to, body=templates.render(event, ctx), event=event)

    try:
        contractor = resolve_contractor(db, phone)
    except UnresolvedContractorError:
        logger.info("message from unknown number %s", phone.key)
        event = TemplateEvent.NO_PENDING_ITEM
        result = InboundResult(outcome="unresolved_contractor", intent=intent, reply_event=event)
        return result, OutboundReply(to=phone.send_to, body=templates.render(event, fallback_ctx), event=event)

    assignment = ledger_service.latest_active_assignment_for_contractor(db, contractor.id)
    if assignment is None:
        event = TemplateEvent.NO_PENDING_ITEM
        ctx = replace(fallback_ctx, contractor_name=contractor.business_name)
        result = InboundResult(outcome="no_active_assignment", intent=intent, reply_event=event)
        return result, OutboundReply(to=phone.send_to, body=templates.render(event, ctx), event=event)

    assignment_id = assignment.id
    previous_state = assignment.state
    ctx = build_context(assignment, settings)
    transition = apply_intent(db, assignment, intent, body=body, trigger="inbound", now=now)
    new_state = transition.new_state.value if transition.new_state else previous_state
    result = InboundResult(
        outcome="transitioned" if transition.new_state else "unchanged",
        intent=intent,
        assignment_id=assignment_id,
        previous_state=previous_state,
        new_state=new_state,
        reply_event=transition.reply,
    )
    return result, OutboundReply(to=phone.send_to, body=templates.render(transition.reply, ctx), event=transition.reply)


def handle_inbound_response(
    db: Session,
    transport: MessageTransport,
    *,
    from_phone: str,
    body: Optional[str],
    provider_message_id: str,
    settings: Optional[DispatchSettings] = None,
    now: Optional[datetime] = None,
) -> InboundResult:
    """
    Process one contractor reply exactly once.

    The dedupe marker, the assignment transition and the work item update are
    committed together; the reply goes out only after that commit, so a
    redelivered webhook neither transitions twice nor sends twice.
    """
    settings = settings or get_settings()
    current = now or utcnow()
    classification = classifier.classify(body)
    try:
        phone = normalize_phone(from_phone, default_country_code=settings.default_country_code)
    except ValueError:
        logger.warning("inbound message %s has unusable sender %r", provider_message_id, from_phone)
        return InboundResult(outcome="invalid_phone", intent=classification.intent)

    last_error: Optional[InvalidTransitionError] = None
    for attempt in range(1, MAX_CAS_ATTEMPTS + 1):
        marker = ledger_service.claim_message(
            db,
            provider_message_id=provider_message_id,
            from_phone=phone.key,
            window_start=current - settings.dedupe_window,
            now=current,
        )
        if marker is None:
            logger.info("duplicate delivery of %s ignored", provider_message_id)
            return InboundResult(outcome="duplicate", intent=classification.intent)
        try:
            result, reply = _route_inbound(db, phone, classification, body or "", settings, current)
        except InvalidTransitionError as exc:
            db.rollback()
            last_error = exc
            logger.info("lost race on %s (attempt %s), retrying", exc.assignment_id, attempt)
            continue
        marker.outcome = result.outcome
        marker.assignment_id = result.assignment_id
        db.commit()
        return replace(result, reply_sent=send_reply(transport, reply))

    raise last_error


# -------------------------
# Delivery status callbacks
# -------------------------

FAILED_DELIVERY_STATUSES = {"failed", "undelivered"}


def record_delivery_status(
    db: Session,
    *,
    provider_message_id: str,
    status: str,
    now: Optional[datetime] = None,
) -> int:
    current = now or utcnow()
    rows = ledger_service.find_by_outbound_message_id(db, provider_message_id)
    for row in rows:
        row.delivery_status = status
        row.updated_at = current
        if status in FAILED_DELIVERY_STATUSES:
            logger.warning("carrier reports %s for assignment %s (%s)", status, row.id, provider_message_id)
    db.flush()
    return len(rows)
