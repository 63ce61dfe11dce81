from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from backend.punchlist.api.deps import settings_dep, transport_dep
from backend.punchlist.config import DispatchSettings
from backend.punchlist.db import get_db
from backend.punchlist.domain.contracts import AssignmentContract, AssignmentStatsContract
from backend.punchlist.errors import ConflictError, NotFoundError
from backend.punchlist.integrations.base import MessageTransport
from backend.punchlist.services import dispatch_service, ledger_service

router = APIRouter(prefix="/api/assignments", tags=["assignments"])


class AssignmentCreate(BaseModel):
    work_item_id: str
    contractor_id: str
    assignment_reason: Optional[str] = None


@router.post("", response_model=AssignmentContract, status_code=201)
def create_assignment(
    req: AssignmentCreate,
    db: Session = Depends(get_db),
    settings: DispatchSettings = Depends(settings_dep),
    transport: MessageTransport = Depends(transport_dep),
):
    try:
        row = dispatch_service.create_assignment(
            db,
            transport,
            work_item_id=req.work_item_id,
            contractor_id=req.contractor_id,
            assignment_method="manual",
            assignment_reason=req.assignment_reason or "Manually assigned by project administrator",
            settings=settings,
        )
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ConflictError as exc:
        db.rollback()
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return row


@router.get("", response_model=List[AssignmentContract])
def list_assignments(
    project_id: Optional[str] = Query(default=None),
    contractor_id: Optional[str] = Query(default=None),
    work_item_id: Optional[str] = Query(default=None),
    state: Optional[str] = Query(default=None),
    limit: int = Query(default=200, ge=1, le=1000),
    db: Session = Depends(get_db),
):
    return ledger_service.list_assignments(
        db,
        project_id=project_id,
        contractor_id=contractor_id,
        work_item_id=work_item_id,
        state=state,
        limit=limit,
    )


@router.get("/stats", response_model=AssignmentStatsContract)
def assignment_stats(
    project_id: Optional[str] = Query(default=None),
    contractor_id: Optional[str] = Query(default=None),
    db: Session = Depends(get_db),
):
    return ledger_service.assignment_stats(db, project_id=project_id, contractor_id=contractor_id)


@router.get("/{assignment_id}", response_model=AssignmentContract)
def get_assignment(assignment_id: str, db: Session = Depends(get_db)):
    try:
        return ledger_service.require_assignment(db, assignment_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
