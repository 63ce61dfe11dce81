"""Pure text handling for the SMS/WhatsApp conversation: phones, intents, templates."""

from backend.punchlist.messaging.classifier import Classification, classify, classify_intent  # noqa: F401
from backend.punchlist.messaging.phone import NormalizedPhone, normalize_phone, phone_key  # noqa: F401
from backend.punchlist.messaging.templates import (  # noqa: F401
    TemplateContext,
    TemplateEvent,
    render,
    render_notification,
)
