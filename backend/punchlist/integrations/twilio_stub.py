from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import dataclass
from typing import List, Optional

from backend.punchlist.errors import TransportError
from backend.punchlist.integrations.base import SendResult, WebhookVerificationResult


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SentMessage:
    to: str
    body: str
    provider_message_id: str


class StubTransport:
    """
    Dev transport: records every message instead of calling the carrier.
    `fail_next` makes the next N sends raise TransportError. Only the newest
    `max_sent` messages are kept.
    """

    provider = "twilio_stub"

    def __init__(self, *, max_sent: int = 500) -> None:
        self.max_sent = max_sent
        self.sent: List[SentMessage] = []
        self.fail_next = 0
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def send(self, to: str, body: str) -> SendResult:
        with self._lock:
            if self.fail_next > 0:
                self.fail_next -= 1
                raise TransportError("stub transport configured to fail")
            sid = f"SMstub{next(self._ids):08d}"
            self.sent.append(SentMessage(to=to, body=body, provider_message_id=sid))
            if len(self.sent) > self.max_sent:
                del self.sent[: len(self.sent) - self.max_sent]
        logger.info("stub sms to %s (%s chars)", to, len(body))
        return SendResult(provider=self.provider, provider_message_id=sid, to=to)

    def verify_webhook(self, url: str, params: dict[str, str], signature: Optional[str]) -> WebhookVerificationResult:
        # Dev-only stub: accept all payloads but keep a hook for future checks.
        _ = (url, params, signature)
        return WebhookVerificationResult(ok=True, reason="stub_accept_all")

    def messages_to(self, to: str) -> List[SentMessage]:
        return [message for message in self.sent if message.to == to]

    def reset(self) -> None:
        with self._lock:
            self.sent.clear()
            self.fail_next = 0
