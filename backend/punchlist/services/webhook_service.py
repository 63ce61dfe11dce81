from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from sqlalchemy.orm import Session

from backend.punchlist.config import DispatchSettings, get_settings
from backend.punchlist.domain.contracts import DeliveryStatusContract, InboundMessageContract
from backend.punchlist.integrations.base import MessageTransport
from backend.punchlist.models import WebhookEvent, utcnow
from backend.punchlist.services import dispatch_service


logger = logging.getLogger(__name__)

EVENT_INBOUND = "inbound_message"
EVENT_STATUS = "status_callback"
EVENT_INVALID = "invalid"


def _num_media(params: Mapping[str, str]) -> int:
    try:
        return int(params.get("NumMedia") or 0)
    except ValueError:
        return 0


def classify_payload(params: Mapping[str, str]) -> str:
    if not params.get("MessageSid") and not params.get("SmsSid"):
        return EVENT_INVALID
    status = (params.get("MessageStatus") or params.get("SmsStatus") or "").lower()
    sender = params.get("From")
    # Inbound payloads also carry SmsStatus=received; a photo without a caption has an empty Body.
    if sender and (params.get("Body") or _num_media(params) > 0 or status == "received"):
        return EVENT_INBOUND
    if status:
        return EVENT_STATUS
    if not sender:
        return EVENT_INVALID
    return EVENT_INBOUND


def parse_inbound(params: Mapping[str, str]) -> InboundMessageContract:
    return InboundMessageContract(
        provider_message_id=params.get("MessageSid") or params.get("SmsSid"),
        from_phone=params.get("From", ""),
        to_phone=params.get("To"),
        body=params.get("Body"),
        num_media=_num_media(params),
        media_url=params.get("MediaUrl0"),
        media_content_type=params.get("MediaContentType0"),
    )


def parse_status(params: Mapping[str, str]) -> DeliveryStatusContract:
    return DeliveryStatusContract(
        provider_message_id=params.get("MessageSid") or params.get("SmsSid"),
        status=(params.get("MessageStatus") or params.get("SmsStatus") or "").lower(),
        error_code=params.get("ErrorCode"),
    )


def log_webhook_event(db: Session, params: Mapping[str, str], event_type: str) -> WebhookEvent:
    row = WebhookEvent(
        message_sid=params.get("MessageSid") or params.get("SmsSid"),
        event_type=event_type,
        from_phone=params.get("From"),
        to_phone=params.get("To"),
        body=params.get("Body"),
        raw_payload=dict(params),
        processed=False,
    )
    db.add(row)
    db.flush()
    return row


def _record_event(db: Session, params: Mapping[str, str], event_type: str) -> Optional[str]:
    try:
        event = log_webhook_event(db, params, event_type)
        event_id = event.id
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("could not record twilio webhook %s", params.get("MessageSid"))
        return None
    return event_id


def _finish_event(db: Session, event_id: Optional[str], *, error: Optional[str] = None) -> None:
    if event_id is None:
        return
    try:
        row = db.get(WebhookEvent, event_id)
        if row is None:
            return
        row.processed = error is None
        row.error = error
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("could not update webhook event %s", event_id)


def handle_twilio_webhook(
    db: Session,
    transport: MessageTransport,
    params: Mapping[str, str],
    *,
    settings: Optional[DispatchSettings] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Entry point for everything Twilio posts to us. Never raises: the carrier
    retries on non-2xx and we have already logged what we could not handle.
    """
    settings = settings or get_settings()
    event_type = classify_payload(params)
    event_id = _record_event(db, params, event_type)

    if event_type == EVENT_INVALID:
        logger.warning("ignoring twilio payload without sender or message id")
        _finish_event(db, event_id, error="missing MessageSid or From")
        return {"event_type": event_type, "outcome": "ignored"}

    try:
        if event_type == EVENT_STATUS:
            status = parse_status(params)
            updated = dispatch_service.record_delivery_status(
                db,
                provider_message_id=status.provider_message_id,
                status=status.status,
                now=now,
            )
            db.commit()
            summary: Dict[str, Any] = {"event_type": event_type, "outcome": "status_recorded", "updated": updated}
        else:
            inbound = parse_inbound(params)
            result = dispatch_service.handle_inbound_response(
                db,
                transport,
                from_phone=inbound.from_phone,
                body=inbound.body,
                provider_message_id=inbound.provider_message_id,
                settings=settings,
                now=now or utcnow(),
            )
            summary = {
                "event_type": event_type,
                "outcome": result.outcome,
                "assignment_id": result.assignment_id,
                "state": result.new_state,
            }
    except Exception as exc:
        db.rollback()
        logger.exception("twilio webhook %s failed", params.get("MessageSid"))
        _finish_event(db, event_id, error=str(exc)[:1000])
        return {"event_type": event_type, "outcome": "error"}

    _finish_event(db, event_id)
    return summary
