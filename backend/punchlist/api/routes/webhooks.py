from __future__ import annotations

from urllib.parse import parse_qsl

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from sqlalchemy.orm import Session

from backend.punchlist.api.deps import settings_dep, transport_dep
from backend.punchlist.config import DispatchSettings
from backend.punchlist.db import get_db
from backend.punchlist.integrations.base import MessageTransport
from backend.punchlist.services import webhook_service


router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])

EMPTY_TWIML = '<?xml version="1.0" encoding="UTF-8"?><Response></Response>'


def _twiml() -> Response:
    return Response(content=EMPTY_TWIML, media_type="text/xml")


@router.post("/twilio")
async def twilio_webhook(
    request: Request,
    db: Session = Depends(get_db),
    settings: DispatchSettings = Depends(settings_dep),
    transport: MessageTransport = Depends(transport_dep),
):
    body = await request.body()
    params = dict(parse_qsl(body.decode("utf-8", errors="replace"), keep_blank_values=True))

    if settings.twilio_verify_signatures:
        verification = transport.verify_webhook(
            str(request.url),
            params,
            request.headers.get("X-Twilio-Signature"),
        )
        if not verification.ok:
            raise HTTPException(status_code=403, detail=f"webhook verification failed: {verification.reason}")

    webhook_service.handle_twilio_webhook(db, transport, params, settings=settings)
    return _twiml()


@router.get("/twilio")
def twilio_webhook_health():
    return {"ok": True, "service": "twilio-webhook"}
