from datetime import datetime, timedelta, timezone

from sqlalchemy import select

from backend.punchlist.domain.contracts import ExtractedItemContract, ProjectContext
from backend.punchlist.integrations.base import StaticItemExtractor
from backend.punchlist.models import Assignment, Project, WorkItem
from backend.punchlist.services import dispatch_service, escalation_service, intake_service, matching_service


NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class _RawExtractor:
    def __init__(self, items):
        self.items = items
        self.calls = []

    def extract(self, transcript, project):
        self.calls.append((transcript, project.project_id))
        return self.items


def test_ingest_creates_extracted_work_items(sqlite_session):
    extractor = _RawExtractor(
        [
            {"description": "Touch up paint in hallway", "trade": "painting", "priority": "low"},
            {"description": "Water heater leaking", "trade": "plumbing", "priority": "URGENT", "materials_needed": ["valve"]},
            {"description": "Install towel bar", "trade": "welding"},
        ]
    )
    project = ProjectContext(project_id="proj-1", title="Oak Ave", homeowner_name="Sam Lee")

    items = intake_service.ingest_transcript(sqlite_session, extractor, "walkthrough notes", project)
    sqlite_session.commit()

    assert extractor.calls == [("walkthrough notes", "proj-1")]
    assert [item.priority for item in items] == ["low", "high", "medium"]
    assert [item.trade for item in items] == ["painting", "plumbing", "general"]
    assert all(item.status == "extracted" for item in items)
    assert items[1].materials_needed == ["valve"]
    assert sqlite_session.get(Project, "proj-1").title == "Oak Ave"


def test_ingest_tolerates_zero_items_and_bad_rows(sqlite_session):
    project = ProjectContext(project_id="proj-2", title="Elm Ct")

    assert intake_service.ingest_transcript(sqlite_session, StaticItemExtractor(items=[]), "", project) == []
    kept = intake_service.ingest_transcript(
        sqlite_session,
        _RawExtractor([{"description": ""}, {"description": "Re-caulk tub"}]),
        "notes",
        project,
    )
    assert [item.description for item in kept] == ["Re-caulk tub"]


def test_static_extractor_returns_validated_contracts(sqlite_session):
    extractor = StaticItemExtractor(items=[ExtractedItemContract(description="Replace outlet cover", trade="electrical")])
    project = ProjectContext(project_id="proj-3", title="Birch Rd")
    items = intake_service.ingest_transcript(sqlite_session, extractor, "n/a", project)
    assert items[0].trade == "electrical"


def test_specialist_beats_generalist(sqlite_session, make_project, make_contractor, make_work_item):
    project = make_project()
    make_contractor(business_name="Handy Co", phone="5550000001", specialties=("general",), rating=5.0)
    plumber = make_contractor(
        business_name="Pipe Pros", phone="5550000002", specialties=("plumbing", "general"), rating=4.0
    )
    item = make_work_item(project)

    match = matching_service.find_best_contractor(sqlite_session, item)

    assert match.contractor_id == plumber.id
    assert match.assignment_method == "auto_specialty"
    assert "Score:" in match.assignment_reason


def test_score_components(make_contractor):
    contractor = make_contractor(specialties=("plumbing", "general"), rating=4.0, availability_status="available")
    match = matching_service.score_contractor(
        contractor,
        specialties=("plumbing", "general"),
        priority="high",
        on_project=True,
    )
    # (10 + 2*20 + 15 + 25 + 20) * 1.5
    assert match.score == 165


def test_unavailable_or_inactive_contractors_are_not_viable(sqlite_session, make_project, make_contractor, make_work_item):
    project = make_project()
    make_contractor(business_name="Busy", phone="5550000003", specialties=("general",), availability_status="unavailable", rating=None)
    make_contractor(business_name="Retired", phone="5550000004", specialties=("plumbing",), is_active=False)
    item = make_work_item(project, trade="general")

    assert matching_service.find_best_contractor(sqlite_session, item) is None


def test_contractor_who_declined_is_not_offered_again(
    sqlite_session, transport, settings, make_project, make_contractor, make_work_item
):
    project = make_project()
    first = make_contractor(business_name="Pipe Pros", phone="5551234567", specialties=("plumbing",), rating=5.0)
    second = make_contractor(business_name="Drip Fixers", phone="5559876543", specialties=("plumbing",), rating=3.0)
    item = make_work_item(project)

    run = matching_service.dispatch_extracted_items(sqlite_session, transport, settings=settings)
    assert run.assigned == 1
    assert sqlite_session.get(Assignment, run.assignment_ids[0]).contractor_id == first.id

    dispatch_service.handle_inbound_response(
        sqlite_session,
        transport,
        from_phone="+15551234567",
        body="decline",
        provider_message_id="SMdecl",
        settings=settings,
        now=NOW,
    )

    rerun = matching_service.dispatch_extracted_items(sqlite_session, transport, settings=settings)
    assert rerun.assigned == 1
    assert sqlite_session.get(Assignment, rerun.assignment_ids[0]).contractor_id == second.id
    assert sqlite_session.get(WorkItem, item.id).status == "notified"


def test_expired_item_is_redispatched_to_someone_else(
    sqlite_session, transport, settings, make_project, make_contractor, make_work_item
):
    project = make_project()
    make_contractor(business_name="Pipe Pros", phone="5551234567", specialties=("plumbing",), rating=5.0)
    make_contractor(business_name="Drip Fixers", phone="5559876543", specialties=("plumbing",), rating=3.0)
    item = make_work_item(project)
    dispatch_service.create_assignment(
        sqlite_session,
        transport,
        work_item_id=item.id,
        contractor_id=matching_service.find_best_contractor(sqlite_session, item).contractor_id,
        settings=settings,
        now=NOW,
    )

    escalation_service.run_escalation_sweep(sqlite_session, transport, settings=settings, now=NOW + timedelta(hours=4))
    rerun = matching_service.dispatch_extracted_items(sqlite_session, transport, settings=settings)

    assert rerun.assigned == 1
    states = sqlite_session.execute(
        select(Assignment.state).where(Assignment.work_item_id == item.id).order_by(Assignment.created_at.asc())
    ).scalars().all()
    assert states == ["expired", "notified"]


def test_dispatch_orders_by_priority_and_skips_items_without_match(
    sqlite_session, transport, settings, make_project, make_contractor, make_work_item
):
    project = make_project()
    make_contractor(specialties=("plumbing",))
    low = make_work_item(project, description="Low item", priority="low")
    high = make_work_item(project, description="High item", priority="high")

    run = matching_service.dispatch_extracted_items(sqlite_session, transport, settings=settings, limit=1)

    assert run.considered == 1
    assigned = sqlite_session.get(Assignment, run.assignment_ids[0])
    assert assigned.work_item_id == high.id
    assert "URGENT" in transport.sent[0].body
    assert sqlite_session.get(WorkItem, low.id).status == "extracted"
