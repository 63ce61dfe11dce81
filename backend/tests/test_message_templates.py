from backend.punchlist.messaging import templates
from backend.punchlist.messaging.templates import TemplateContext, TemplateEvent


def _ctx(**overrides):
    values = dict(
        contractor_name="Ace Plumbing",
        project_title="Maple St Remodel",
        homeowner_name="Dana Ortiz",
        description="Fix leaking kitchen faucet",
        priority="medium",
        area="Kitchen",
        estimated_hours=1.5,
        materials_needed=["faucet cartridge", "plumber's tape"],
        admin_contact="(555) 010-9999",
        reassign_after_hours=2,
    )
    values.update(overrides)
    return TemplateContext(**values)


def test_standard_notification_lists_task_and_replies():
    body = templates.render_notification(_ctx())
    assert "NEW PUNCH LIST ITEM" in body
    assert "Fix leaking kitchen faucet" in body
    assert "Location: Kitchen" in body
    assert "Est. Time: 1.5 hours" in body
    assert '"ACCEPT"' in body
    assert "URGENT" not in body


def test_high_priority_uses_urgent_variant_with_admin_contact():
    ctx = _ctx(priority="high")
    assert templates.notification_event(ctx) == TemplateEvent.URGENT_ASSIGNMENT
    body = templates.render_notification(ctx)
    assert "URGENT" in body
    assert "ETA" in body
    assert "Call (555) 010-9999 for emergency contact." in body


def test_urgent_flag_alone_selects_urgent_variant():
    assert templates.notification_event(_ctx(urgent=True)) == TemplateEvent.URGENT_ASSIGNMENT


def test_accepted_confirmation_contains_description():
    body = templates.render(TemplateEvent.ACCEPTED, _ctx())
    assert "Fix leaking kitchen faucet" in body
    assert "STARTED" in body


def test_materials_info_numbers_each_material():
    body = templates.render(TemplateEvent.MATERIALS_INFO, _ctx())
    assert "1. faucet cartridge" in body
    assert "2. plumber's tape" in body


def test_materials_info_without_materials():
    body = templates.render(TemplateEvent.MATERIALS_INFO, _ctx(materials_needed=[]))
    assert "No specific materials listed" in body


def test_reminder_mentions_reassignment_window():
    body = templates.render(TemplateEvent.REMINDER, _ctx())
    assert "Reminder" in body
    assert "within 2 hours" in body


def test_help_menu_includes_current_task_when_known():
    assert "Current task" in templates.render(TemplateEvent.HELP, _ctx())
    assert "Current task" not in templates.render(TemplateEvent.HELP, TemplateContext())


def test_every_event_renders_without_optional_fields():
    for event in TemplateEvent:
        body = templates.render(event, TemplateContext())
        assert body.strip()
        assert len(body) <= templates.MAX_BODY_CHARS


def test_long_bodies_are_truncated():
    body = templates.render(TemplateEvent.NEW_ASSIGNMENT, _ctx(description="x" * 5000))
    assert len(body) == templates.MAX_BODY_CHARS
