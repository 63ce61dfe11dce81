import random
from collections import Counter
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from backend.punchlist.errors import ConflictError
from backend.punchlist.models import Assignment, WorkItem
from backend.punchlist.services import dispatch_service, escalation_service, ledger_service


NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
BODIES = ["accept", "decline", "info", "started", "done", "what?", "hello", "yes", "no"]
TERMINAL = {"declined", "completed", "expired"}


def _check_invariants(db, terminal_seen, versions):
    db.expire_all()
    rows = db.execute(select(Assignment)).scalars().all()

    live = Counter(row.work_item_id for row in rows if row.state not in TERMINAL)
    assert all(count <= 1 for count in live.values()), live

    for row in rows:
        if row.state in TERMINAL:
            assert row.active_work_item_id is None
            assert row.archived_at is not None
        else:
            assert row.active_work_item_id == row.work_item_id
        if row.id in terminal_seen:
            assert row.state == terminal_seen[row.id]
        elif row.state in TERMINAL:
            terminal_seen[row.id] = row.state
        assert row.version >= versions.get(row.id, 0)
        versions[row.id] = row.version

    for item in db.execute(select(WorkItem)).scalars().all():
        completed = [row for row in rows if row.work_item_id == item.id and row.state == "completed"]
        assert len(completed) <= 1
        if item.status == "completed":
            assert len(completed) == 1


@pytest.mark.parametrize("seed", [7, 21, 1337])
def test_random_operation_sequences_keep_ledger_consistent(
    seed, sqlite_session, transport, settings, make_project, make_contractor, make_work_item
):
    rng = random.Random(seed)
    project = make_project()
    contractors = [
        make_contractor(business_name=f"Crew {n}", phone=f"555111000{n}", specialties=("general",))
        for n in range(3)
    ]
    items = [make_work_item(project, description=f"Punch item {n}", trade="general") for n in range(4)]
    contractor_ids = [c.id for c in contractors]
    item_ids = [i.id for i in items]
    phones = [f"+1555111000{n}" for n in range(3)]

    clock = NOW
    terminal_seen = {}
    versions = {}
    for step in range(60):
        clock += timedelta(minutes=rng.randint(0, 40))
        transport.fail_next = 1 if rng.random() < 0.15 else 0
        action = rng.choice(["create", "create", "reply", "reply", "reply", "sweep"])

        if action == "create":
            try:
                dispatch_service.create_assignment(
                    sqlite_session,
                    transport,
                    work_item_id=rng.choice(item_ids),
                    contractor_id=rng.choice(contractor_ids),
                    settings=settings,
                    now=clock,
                )
            except ConflictError:
                sqlite_session.rollback()
        elif action == "reply":
            dispatch_service.handle_inbound_response(
                sqlite_session,
                transport,
                from_phone=rng.choice(phones),
                body=rng.choice(BODIES),
                # Occasionally replay an earlier id to exercise dedupe.
                provider_message_id=f"SM{seed}-{rng.randint(0, step)}",
                settings=settings,
                now=clock,
            )
        else:
            result = escalation_service.run_escalation_sweep(sqlite_session, transport, settings=settings, now=clock)
            assert result.errors == []

        _check_invariants(sqlite_session, terminal_seen, versions)


def test_unique_constraint_backs_up_the_pre_check(
    sqlite_session, transport, settings, make_project, make_contractor, make_work_item
):
    project = make_project()
    contractor = make_contractor()
    item = make_work_item(project)
    first = dispatch_service.create_assignment(
        sqlite_session, transport, work_item_id=item.id, contractor_id=contractor.id, settings=settings, now=NOW
    )

    # Bypass the service-level check, as a racing writer would.
    sqlite_session.add(
        Assignment(
            work_item_id=item.id,
            contractor_id=contractor.id,
            project_id=project.id,
            state="pending",
            active_work_item_id=item.id,
            created_at=NOW,
            updated_at=NOW,
        )
    )
    with pytest.raises(IntegrityError):
        sqlite_session.flush()
    sqlite_session.rollback()

    assert ledger_service.active_assignment_for_work_item(sqlite_session, item.id).id == first.id


def test_lost_compare_and_set_raises(sqlite_session, second_session, transport, settings, make_project, make_contractor, make_work_item):
    from backend.punchlist.errors import InvalidTransitionError

    project = make_project()
    contractor = make_contractor()
    item = make_work_item(project)
    created = dispatch_service.create_assignment(
        sqlite_session, transport, work_item_id=item.id, contractor_id=contractor.id, settings=settings, now=NOW
    )
    stale = second_session.get(Assignment, created.id)
    assert stale.state == "notified"

    dispatch_service.handle_inbound_response(
        sqlite_session,
        transport,
        from_phone="+15551234567",
        body="decline",
        provider_message_id="SMrace",
        settings=settings,
        now=NOW,
    )

    with pytest.raises(InvalidTransitionError):
        ledger_service.compare_and_set(
            second_session,
            stale,
            expected_state="notified",
            new_state="accepted",
            trigger="inbound",
        )
    second_session.rollback()
    sqlite_session.expire_all()
    assert sqlite_session.get(Assignment, created.id).state == "declined"
