from __future__ import annotations

import logging
from typing import List, Optional

from pydantic import ValidationError
from sqlalchemy.orm import Session

from backend.punchlist.domain.contracts import ExtractedItemContract, ProjectContext, WorkItemStatus
from backend.punchlist.integrations.base import ItemExtractor
from backend.punchlist.models import Project, WorkItem, utcnow


logger = logging.getLogger(__name__)


def ensure_project(db: Session, project: ProjectContext) -> Project:
    row = db.get(Project, project.project_id)
    if row is None:
        row = Project(id=project.project_id, title=project.title, homeowner_name=project.homeowner_name)
        db.add(row)
        db.flush()
    return row


def ingest_transcript(
    db: Session,
    extractor: ItemExtractor,
    transcript: str,
    project: ProjectContext,
    *,
    transcript_ref: Optional[str] = None,
) -> List[WorkItem]:
    """
    Turn a walkthrough transcript into extracted work items. Items the
    extractor returns in a shape we cannot validate are logged and dropped;
    an empty list is a normal outcome. Flushes, does not commit.
    """
    ensure_project(db, project)
    raw_items = extractor.extract(transcript, project) or []

    created: List[WorkItem] = []
    now = utcnow()
    for index, raw in enumerate(raw_items):
        try:
            item = raw if isinstance(raw, ExtractedItemContract) else ExtractedItemContract.model_validate(raw)
        except ValidationError as exc:
            logger.warning("dropping extracted item %s for project %s: %s", index, project.project_id, exc)
            continue
        row = WorkItem(
            project_id=project.project_id,
            description=item.description.strip(),
            area=item.area,
            trade=item.trade.value,
            priority=item.priority.value,
            estimated_hours=item.estimated_hours,
            materials_needed=list(item.materials_needed),
            transcript_ref=transcript_ref,
            status=WorkItemStatus.EXTRACTED.value,
            created_at=now,
            updated_at=now,
        )
        db.add(row)
        created.append(row)

    db.flush()
    logger.info("ingested %s work items for project %s", len(created), project.project_id)
    return created
