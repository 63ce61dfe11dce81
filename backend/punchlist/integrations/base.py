from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence

from backend.punchlist.domain.contracts import ExtractedItemContract, ProjectContext


ProviderName = str


@dataclass(frozen=True)
class SendResult:
    provider: ProviderName
    provider_message_id: str
    to: str


@dataclass(frozen=True)
class WebhookVerificationResult:
    ok: bool
    reason: str


class MessageTransport(Protocol):
    """send() returns a SendResult or raises TransportError."""

    provider: ProviderName

    def send(self, to: str, body: str) -> SendResult:
        ...

    def verify_webhook(self, url: str, params: dict[str, str], signature: Optional[str]) -> WebhookVerificationResult:
        ...


class ItemExtractor(Protocol):
    """Transcript -> structured punch list items. An empty list is a valid answer."""

    def extract(self, transcript: str, project: ProjectContext) -> Sequence[ExtractedItemContract]:
        ...


@dataclass
class StaticItemExtractor:
    """Returns a fixed item list; used for manual entry and in tests."""

    items: List[ExtractedItemContract]

    def extract(self, transcript: str, project: ProjectContext) -> Sequence[ExtractedItemContract]:
        _ = (transcript, project)
        return list(self.items)
