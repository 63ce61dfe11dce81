from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.punchlist.config import DispatchSettings, get_settings
from backend.punchlist.domain.contracts import AssignmentState, WorkItemStatus
from backend.punchlist.errors import ConflictError
from backend.punchlist.integrations.base import MessageTransport
from backend.punchlist.models import Assignment, Contractor, WorkItem
from backend.punchlist.services import dispatch_service, ledger_service


logger = logging.getLogger(__name__)

TRADE_TO_SPECIALTIES = {
    "electrical": ("electrical", "general"),
    "plumbing": ("plumbing", "general"),
    "painting": ("painting", "general"),
    "flooring": ("flooring", "general"),
    "drywall": ("drywall", "general"),
    "carpentry": ("carpentry", "trim", "general"),
    "tile": ("tile", "flooring", "general"),
    "hvac": ("hvac", "general"),
    "general": ("general",),
}

AVAILABILITY_POINTS = {
    "available": 25,
    "busy_2_weeks": 10,
    "busy_month": 5,
    "unavailable": -50,
}

PRIORITY_MULTIPLIERS = {"high": 1.5, "medium": 1.0, "low": 0.7}
PRIORITY_RANK = {"high": 0, "medium": 1, "low": 2}

# Contractors who already let this item go are not offered it again.
EXCLUDED_PRIOR_STATES = (AssignmentState.DECLINED.value, AssignmentState.EXPIRED.value)
PROJECT_MEMBER_STATES = (
    AssignmentState.ACCEPTED.value,
    AssignmentState.IN_PROGRESS.value,
    AssignmentState.COMPLETED.value,
)


@dataclass(frozen=True)
class ContractorMatch:
    contractor_id: str
    business_name: str
    score: int
    reasons: List[str] = field(default_factory=list)

    @property
    def assignment_method(self) -> str:
        if any(reason.startswith("Specializes") for reason in self.reasons):
            return "auto_specialty"
        return "auto_availability"

    @property
    def assignment_reason(self) -> str:
        return f"Automatically assigned: {', '.join(self.reasons)} (Score: {self.score})"


@dataclass(frozen=True)
class DispatchRunResult:
    considered: int
    assigned: int
    notified: int
    skipped_no_contractor: int
    skipped_conflict: int
    assignment_ids: list[str]


def required_specialties(trade: Optional[str]) -> tuple:
    return TRADE_TO_SPECIALTIES.get((trade or "general").lower(), ("general",))


def score_contractor(
    contractor: Contractor,
    *,
    specialties: tuple,
    priority: str,
    on_project: bool,
) -> ContractorMatch:
    if not contractor.is_active:
        return ContractorMatch(contractor.id, contractor.business_name, 0, ["Contractor inactive"])

    score = 10.0
    reasons: List[str] = []

    own = {str(s).lower() for s in (contractor.specialties or [])}
    matched = [s for s in specialties if s in own]
    if matched:
        score += 20 * len(matched)
        reasons.append(f"Specializes in: {', '.join(matched)}")

    if on_project:
        score += 15
        reasons.append("Already working on this project")

    availability = contractor.availability_status or "available"
    points = AVAILABILITY_POINTS.get(availability, 0)
    score += points
    if points:
        reasons.append(f"Availability: {availability}")

    if contractor.rating:
        score += round(contractor.rating * 5)
        reasons.append(f"{contractor.rating:g} star rating")

    score *= PRIORITY_MULTIPLIERS.get(priority, 1.0)
    return ContractorMatch(contractor.id, contractor.business_name, int(round(score)), reasons)


def rank_contractors(db: Session, work_item: WorkItem) -> List[ContractorMatch]:
    excluded = set(
        db.execute(
            select(Assignment.contractor_id).where(
                Assignment.work_item_id == work_item.id,
                Assignment.state.in_(EXCLUDED_PRIOR_STATES),
            )
        )
        .scalars()
        .all()
    )
    on_project = set(
        db.execute(
            select(Assignment.contractor_id).where(
                Assignment.project_id == work_item.project_id,
                Assignment.state.in_(PROJECT_MEMBER_STATES),
            )
        )
        .scalars()
        .all()
    )
    contractors = (
        db.execute(select(Contractor).where(Contractor.is_active.is_(True)).order_by(Contractor.created_at.asc(), Contractor.id.asc()))
        .scalars()
        .all()
    )

    specialties = required_specialties(work_item.trade)
    matches = [
        score_contractor(
            contractor,
            specialties=specialties,
            priority=work_item.priority,
            on_project=contractor.id in on_project,
        )
        for contractor in contractors
        if contractor.id not in excluded
    ]
    viable = [m for m in matches if m.score > 0]
    # Stable sort keeps registration order among equal scores.
    return sorted(viable, key=lambda m: -m.score)


def find_best_contractor(db: Session, work_item: WorkItem) -> Optional[ContractorMatch]:
    ranked = rank_contractors(db, work_item)
    if not ranked:
        logger.info("no viable contractor for work item %s", work_item.id)
        return None
    return ranked[0]


def dispatch_extracted_items(
    db: Session,
    transport: MessageTransport,
    *,
    project_id: Optional[str] = None,
    limit: int = 50,
    settings: Optional[DispatchSettings] = None,
) -> DispatchRunResult:
    """Auto-assign every extracted work item with no live assignment, most urgent first."""
    settings = settings or get_settings()
    stmt = select(WorkItem).where(WorkItem.status == WorkItemStatus.EXTRACTED.value)
    if project_id:
        stmt = stmt.where(WorkItem.project_id == project_id)
    items = db.execute(stmt.order_by(WorkItem.created_at.asc(), WorkItem.id.asc())).scalars().all()
    items = sorted(items, key=lambda item: PRIORITY_RANK.get(item.priority, 1))[:limit]

    assigned_ids: list[str] = []
    notified = 0
    no_contractor = 0
    conflicts = 0
    for item in items:
        item_id = item.id
        if ledger_service.active_assignment_for_work_item(db, item_id) is not None:
            conflicts += 1
            continue
        match = find_best_contractor(db, item)
        if match is None:
            no_contractor += 1
            continue
        try:
            assignment = dispatch_service.create_assignment(
                db,
                transport,
                work_item_id=item_id,
                contractor_id=match.contractor_id,
                assignment_method=match.assignment_method,
                assignment_reason=match.assignment_reason,
                settings=settings,
            )
        except ConflictError:
            conflicts += 1
            continue
        assigned_ids.append(assignment.id)
        if assignment.state == AssignmentState.NOTIFIED.value:
            notified += 1

    result = DispatchRunResult(
        considered=len(items),
        assigned=len(assigned_ids),
        notified=notified,
        skipped_no_contractor=no_contractor,
        skipped_conflict=conflicts,
        assignment_ids=assigned_ids,
    )
    logger.info("dispatch run: %s", asdict(result))
    return result
