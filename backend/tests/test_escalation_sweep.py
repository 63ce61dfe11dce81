from datetime import datetime, timedelta, timezone

import pytest

from backend.punchlist.models import Assignment, ProcessedMessage, WorkItem
from backend.punchlist.services import dispatch_service, escalation_service


NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def _sweep(db, transport, settings, minutes):
    return escalation_service.run_escalation_sweep(
        db, transport, settings=settings, now=NOW + timedelta(minutes=minutes)
    )


def _reminders(transport):
    return [message for message in transport.sent if "Reminder:" in message.body]


@pytest.fixture()
def offered(sqlite_session, transport, settings, make_project, make_contractor, make_work_item):
    project = make_project()
    contractor = make_contractor()
    item = make_work_item(project)
    assignment = dispatch_service.create_assignment(
        sqlite_session, transport, work_item_id=item.id, contractor_id=contractor.id, settings=settings, now=NOW
    )
    return assignment, item


def test_scenario_reminder_then_expiry(sqlite_session, transport, settings, offered):
    assignment, item = offered

    early = _sweep(sqlite_session, transport, settings, 30)
    assert early.reminders_sent == 0
    assert early.scanned == 1

    due = _sweep(sqlite_session, transport, settings, 61)
    assert due.reminders_sent == 1
    row = sqlite_session.get(Assignment, assignment.id)
    assert row.reminder_sent is True
    assert row.state == "notified"
    reminder = _reminders(transport)[0]
    assert reminder.to == "+15551234567"
    assert "within 2 hours" in reminder.body

    later = _sweep(sqlite_session, transport, settings, 120)
    assert later.reminders_sent == 0
    assert len(_reminders(transport)) == 1

    final = _sweep(sqlite_session, transport, settings, 181)
    assert final.expired == 1
    assert final.reassignment_notices_sent == 1
    assert "has been reassigned to another contractor" in transport.sent[-1].body
    row = sqlite_session.get(Assignment, assignment.id)
    assert row.state == "expired"
    assert row.active_work_item_id is None
    assert sqlite_session.get(WorkItem, item.id).status == "extracted"

    assert _sweep(sqlite_session, transport, settings, 240).scanned == 0


def test_overlapping_sweeps_send_one_reminder(sqlite_session, second_session, transport, settings, offered):
    assignment, _ = offered
    # The second worker read the row before the first one claimed the reminder.
    stale = second_session.get(Assignment, assignment.id)
    assert stale.reminder_sent is False

    first = _sweep(sqlite_session, transport, settings, 61)
    second = _sweep(second_session, transport, settings, 61)

    assert first.reminders_sent == 1
    assert second.reminders_sent == 0
    assert second.skipped_races == 1
    assert len(_reminders(transport)) == 1
    sqlite_session.expire_all()
    assert sqlite_session.get(Assignment, assignment.id).reminder_sent is True


def test_sequential_sweeps_in_two_sessions_send_one_reminder(
    sqlite_session, second_session, transport, settings, offered
):
    _sweep(sqlite_session, transport, settings, 65)
    _sweep(second_session, transport, settings, 65)
    assert len(_reminders(transport)) == 1


def test_failed_reminder_is_retried_next_sweep(sqlite_session, transport, settings, offered):
    assignment, _ = offered
    transport.fail_next = 1

    failed = _sweep(sqlite_session, transport, settings, 61)
    assert failed.reminders_sent == 0
    row = sqlite_session.get(Assignment, assignment.id)
    assert row.reminder_sent is False
    assert row.last_error

    retried = _sweep(sqlite_session, transport, settings, 66)
    assert retried.reminders_sent == 1
    assert len(_reminders(transport)) == 1


def test_pending_assignment_send_is_retried_after_interval(
    sqlite_session, transport, settings, make_project, make_contractor, make_work_item
):
    project = make_project()
    contractor = make_contractor()
    item = make_work_item(project)
    transport.fail_next = 1
    assignment = dispatch_service.create_assignment(
        sqlite_session, transport, work_item_id=item.id, contractor_id=contractor.id, settings=settings, now=NOW
    )
    assert assignment.state == "pending"

    too_soon = _sweep(sqlite_session, transport, settings, 1)
    assert too_soon.sends_retried == 0

    retry = _sweep(sqlite_session, transport, settings, 6)
    assert retry.sends_retried == 1
    assert retry.notifications_sent == 1
    row = sqlite_session.get(Assignment, assignment.id)
    assert row.state == "notified"
    assert row.send_attempts == 2
    assert row.last_error is None
    assert len(transport.sent) == 1


def test_never_delivered_assignment_expires_without_notice(
    sqlite_session, transport, settings, make_project, make_contractor, make_work_item
):
    project = make_project()
    contractor = make_contractor()
    item = make_work_item(project)
    transport.fail_next = 1000
    assignment = dispatch_service.create_assignment(
        sqlite_session, transport, work_item_id=item.id, contractor_id=contractor.id, settings=settings, now=NOW
    )

    result = _sweep(sqlite_session, transport, settings, 181)

    assert result.expired == 1
    assert result.reassignment_notices_sent == 0
    assert transport.sent == []
    assert sqlite_session.get(Assignment, assignment.id).state == "expired"


def test_answered_assignments_are_not_escalated(sqlite_session, transport, settings, offered):
    assignment, _ = offered
    dispatch_service.handle_inbound_response(
        sqlite_session,
        transport,
        from_phone="+15551234567",
        body="accept",
        provider_message_id="SMacc",
        settings=settings,
        now=NOW + timedelta(minutes=10),
    )

    result = _sweep(sqlite_session, transport, settings, 600)

    assert result.scanned == 0
    assert sqlite_session.get(Assignment, assignment.id).state == "accepted"


def test_sweep_prunes_old_dedupe_markers(sqlite_session, transport, settings):
    sqlite_session.add(ProcessedMessage(provider_message_id="SMancient", outcome="transitioned", processed_at=NOW - timedelta(days=2)))
    sqlite_session.add(ProcessedMessage(provider_message_id="SMrecent", outcome="transitioned", processed_at=NOW))
    sqlite_session.commit()

    result = _sweep(sqlite_session, transport, settings, 0)

    assert result.dedupe_pruned == 1
    assert sqlite_session.get(ProcessedMessage, "SMancient") is None
    assert sqlite_session.get(ProcessedMessage, "SMrecent") is not None
