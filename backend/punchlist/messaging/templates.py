"""
Outbound message bodies for the punch-list conversation.

Every renderer is a pure function of a TemplateContext. Priority decides the
variant of the first notification: urgent items use a separate template that
asks for an ETA and carries the admin escalation contact, because the
contractor is expected to answer differently.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

MAX_BODY_CHARS = 1600


class TemplateEvent(str, Enum):
    NEW_ASSIGNMENT = "new_assignment"
    URGENT_ASSIGNMENT = "urgent_assignment"
    REMINDER = "reminder"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    MATERIALS_INFO = "materials_info"
    STARTED = "started"
    COMPLETED = "completed"
    REASSIGNED = "reassigned"
    HELP = "help"
    NO_PENDING_ITEM = "no_pending_item"
    VERIFIED = "verified"
    VERIFICATION_FAILED = "verification_failed"


@dataclass(frozen=True)
class TemplateContext:
    contractor_name: str = ""
    project_title: str = ""
    homeowner_name: str = ""
    description: str = ""
    priority: str = "medium"
    urgent: bool = False
    area: Optional[str] = None
    estimated_hours: Optional[float] = None
    materials_needed: List[str] = field(default_factory=list)
    admin_contact: str = "support"
    reassign_after_hours: Optional[float] = None


def _format_hours(hours: float) -> str:
    if float(hours).is_integer():
        value = int(hours)
        return f"{value} hour" if value == 1 else f"{value} hours"
    return f"{hours:g} hours"


def _greeting(ctx: TemplateContext) -> str:
    return f"Hi {ctx.contractor_name}," if ctx.contractor_name else "Hi,"


def new_assignment(ctx: TemplateContext) -> str:
    lines = [
        "NEW PUNCH LIST ITEM",
        "",
        f"Project: {ctx.project_title}",
        f"Homeowner: {ctx.homeowner_name or 'Homeowner'}",
        f"Task: {ctx.description}",
        f"Priority: {ctx.priority.upper()}",
    ]
    if ctx.area:
        lines.append(f"Location: {ctx.area}")
    if ctx.estimated_hours:
        lines.append(f"Est. Time: {_format_hours(ctx.estimated_hours)}")
    lines += [
        "",
        "Respond:",
        '- "ACCEPT" to take this task',
        '- "DECLINE" to pass',
        '- "INFO" for more details',
        "",
        "Reply with questions or ETA if accepting.",
    ]
    return "\n".join(lines)


def urgent_assignment(ctx: TemplateContext) -> str:
    lines = [
        "*** URGENT PUNCH LIST ITEM ***",
        "",
        "IMMEDIATE ATTENTION NEEDED",
        f"Project: {ctx.project_title}",
        f"Homeowner: {ctx.homeowner_name or 'Homeowner'}",
        f"Issue: {ctx.description}",
    ]
    if ctx.area:
        lines.append(f"Location: {ctx.area}")
    lines += [
        "",
        "Please respond ASAP:",
        '- "ACCEPT" + your ETA',
        '- "DECLINE" if unavailable',
        "",
        f"Call {ctx.admin_contact} for emergency contact.",
    ]
    return "\n".join(lines)


def reminder(ctx: TemplateContext) -> str:
    body = (
        f"{_greeting(ctx)}\n\n"
        f'Reminder: you have an unanswered punch list item:\n\n"{ctx.description}"\n\n'
        f"Priority: {ctx.priority.upper()}\n\n"
        "Please respond with ACCEPT or DECLINE."
    )
    if ctx.reassign_after_hours:
        body += f" This item will be reassigned if there is no response within {_format_hours(ctx.reassign_after_hours)}."
    return body


def accepted(ctx: TemplateContext) -> str:
    body = (
        f"Thanks {ctx.contractor_name}! You've accepted: \"{ctx.description}\"\n\n"
        "When starting work, please:\n"
        '1. Text "STARTED" to this number\n'
        "2. Send progress photos if needed\n"
        '3. Text "COMPLETED" when done\n\n'
        "The homeowner will be notified of your acceptance."
    )
    if ctx.urgent:
        body += " This item is urgent: reply with your ETA if you have not already."
    return body


def declined(ctx: TemplateContext) -> str:
    return f'Thanks for letting us know. The task "{ctx.description}" will be assigned to another contractor.'


def materials_info(ctx: TemplateContext) -> str:
    if not ctx.materials_needed:
        return f'No specific materials listed for "{ctx.description}". Reply ACCEPT or DECLINE when ready.'
    lines = ["MATERIALS NEEDED:", ""]
    lines += [f"{index}. {material}" for index, material in enumerate(ctx.materials_needed, start=1)]
    lines += ["", "Confirm material availability when accepting the task."]
    return "\n".join(lines)


def started(ctx: TemplateContext) -> str:
    return f'Great! Work started on "{ctx.description}". The homeowner has been notified. Text "COMPLETED" when finished.'


def completed(ctx: TemplateContext) -> str:
    return (
        f"Great work {ctx.contractor_name}!\n\n"
        f'Task marked complete: "{ctx.description}"\n\n'
        f"Project: {ctx.project_title}\n\n"
        "The homeowner has been notified. Payment will be processed according to your agreement."
    )


def reassigned(ctx: TemplateContext) -> str:
    return (
        f"{_greeting(ctx)}\n\n"
        f'The task "{ctx.description}" has been reassigned to another contractor due to no response.\n\n'
        "No action needed. Thanks for your other work on this project!"
    )


def help_menu(ctx: TemplateContext) -> str:
    body = (
        "I didn't understand your response. Please reply with:\n"
        '- "ACCEPT" - to take the task\n'
        '- "DECLINE" - to pass\n'
        '- "INFO" - for more details\n'
        '- "STARTED" - when beginning work\n'
        '- "COMPLETED" - when finished'
    )
    if ctx.description:
        body += f'\n\nCurrent task: "{ctx.description}"'
    return body


def no_pending_item(ctx: TemplateContext) -> str:
    return f"Hi! You don't have any pending punch list items. If you need help, call {ctx.admin_contact}."


def verified(ctx: TemplateContext) -> str:
    name = f" {ctx.contractor_name}" if ctx.contractor_name else ""
    return f"Verified! Welcome{name}. You'll receive punch list items at this number."


def verification_failed(ctx: TemplateContext) -> str:
    return f"That code was not recognized or has expired. Please request a new code or call {ctx.admin_contact}."


RENDERERS: Dict[TemplateEvent, Callable[[TemplateContext], str]] = {
    TemplateEvent.NEW_ASSIGNMENT: new_assignment,
    TemplateEvent.URGENT_ASSIGNMENT: urgent_assignment,
    TemplateEvent.REMINDER: reminder,
    TemplateEvent.ACCEPTED: accepted,
    TemplateEvent.DECLINED: declined,
    TemplateEvent.MATERIALS_INFO: materials_info,
    TemplateEvent.STARTED: started,
    TemplateEvent.COMPLETED: completed,
    TemplateEvent.REASSIGNED: reassigned,
    TemplateEvent.HELP: help_menu,
    TemplateEvent.NO_PENDING_ITEM: no_pending_item,
    TemplateEvent.VERIFIED: verified,
    TemplateEvent.VERIFICATION_FAILED: verification_failed,
}


def notification_event(ctx: TemplateContext) -> TemplateEvent:
    if ctx.urgent or ctx.priority in {"high", "urgent"}:
        return TemplateEvent.URGENT_ASSIGNMENT
    return TemplateEvent.NEW_ASSIGNMENT


def render(event: TemplateEvent, ctx: TemplateContext) -> str:
    body = RENDERERS[TemplateEvent(event)](ctx)
    return body[:MAX_BODY_CHARS]


def render_notification(ctx: TemplateContext) -> str:
    return render(notification_event(ctx), ctx)
