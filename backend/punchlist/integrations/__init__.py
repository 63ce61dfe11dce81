from __future__ import annotations

from typing import Optional

from backend.punchlist.config import DispatchSettings, get_settings
from backend.punchlist.integrations.base import (
    ItemExtractor,
    MessageTransport,
    ProviderName,
    SendResult,
    StaticItemExtractor,
    WebhookVerificationResult,
)
from backend.punchlist.integrations.twilio import TwilioTransport
from backend.punchlist.integrations.twilio_stub import StubTransport


TWILIO_TRANSPORT: TwilioTransport | None = None
STUB_TRANSPORT = StubTransport()


def get_transport(settings: Optional[DispatchSettings] = None) -> MessageTransport:
    settings = settings or get_settings()
    if settings.twilio_use_stub or not settings.twilio_configured:
        return STUB_TRANSPORT
    global TWILIO_TRANSPORT
    if TWILIO_TRANSPORT is None:
        TWILIO_TRANSPORT = TwilioTransport(settings)
    return TWILIO_TRANSPORT


__all__ = [
    "ItemExtractor",
    "MessageTransport",
    "ProviderName",
    "STUB_TRANSPORT",
    "SendResult",
    "StaticItemExtractor",
    "StubTransport",
    "TwilioTransport",
    "WebhookVerificationResult",
    "get_transport",
]
