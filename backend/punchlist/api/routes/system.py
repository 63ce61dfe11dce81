from __future__ import annotations

from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from backend.punchlist.api.deps import require_cron_secret, settings_dep, transport_dep
from backend.punchlist.config import DispatchSettings
from backend.punchlist.db import get_db
from backend.punchlist.integrations.base import MessageTransport
from backend.punchlist.services import escalation_service, matching_service

router = APIRouter(prefix="/api/system", tags=["system"])


class DispatchRequest(BaseModel):
    project_id: Optional[str] = None
    limit: int = Field(default=50, ge=1, le=500)


@router.post("/escalation-sweep", dependencies=[Depends(require_cron_secret)])
def post_escalation_sweep(
    db: Session = Depends(get_db),
    settings: DispatchSettings = Depends(settings_dep),
    transport: MessageTransport = Depends(transport_dep),
):
    result = escalation_service.run_escalation_sweep(db, transport, settings=settings)
    return asdict(result)


@router.post("/dispatch", dependencies=[Depends(require_cron_secret)])
def post_dispatch(
    req: Optional[DispatchRequest] = None,
    db: Session = Depends(get_db),
    settings: DispatchSettings = Depends(settings_dep),
    transport: MessageTransport = Depends(transport_dep),
):
    req = req or DispatchRequest()
    result = matching_service.dispatch_extracted_items(
        db,
        transport,
        project_id=req.project_id,
        limit=req.limit,
        settings=settings,
    )
    return asdict(result)
