from __future__ import annotations

import base64
import hashlib
import hmac
import logging
from typing import Any, Optional

from backend.punchlist.config import DispatchSettings
from backend.punchlist.errors import TransportError
from backend.punchlist.integrations.base import SendResult, WebhookVerificationResult


logger = logging.getLogger(__name__)

TWILIO_API_BASE = "https://api.twilio.com/2010-04-01"


def _build_httpx_client(timeout: float):
    import httpx  # local import to avoid hard dependency at import time

    return httpx.Client(base_url=TWILIO_API_BASE, timeout=timeout)


def compute_signature(auth_token: str, url: str, params: dict[str, str]) -> str:
    payload = url + "".join(f"{key}{params[key]}" for key in sorted(params))
    digest = hmac.new(auth_token.encode("utf-8"), payload.encode("utf-8"), hashlib.sha1).digest()
    return base64.b64encode(digest).decode("ascii")


class TwilioTransport:
    provider = "twilio"

    def __init__(self, settings: DispatchSettings, *, client: Optional[Any] = None):
        if not settings.twilio_configured:
            raise ValueError("TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN and TWILIO_FROM_NUMBER are required")
        self.account_sid = settings.twilio_account_sid
        self.auth_token = settings.twilio_auth_token
        self.from_number = settings.twilio_from_number
        self.whatsapp_number = settings.twilio_whatsapp_number
        self._client = client or _build_httpx_client(float(settings.transport_timeout_seconds))

    def _from_for(self, to: str) -> str:
        if to.startswith("whatsapp:"):
            number = self.whatsapp_number or self.from_number
            return number if number.startswith("whatsapp:") else f"whatsapp:{number}"
        return self.from_number

    def send(self, to: str, body: str) -> SendResult:
        import httpx

        data = {"To": to, "From": self._from_for(to), "Body": body}
        try:
            response = self._client.post(
                f"/Accounts/{self.account_sid}/Messages.json",
                data=data,
                auth=(self.account_sid, self.auth_token),
            )
        except httpx.HTTPError as exc:
            logger.warning("twilio send to %s failed: %s", to, exc)
            raise TransportError(f"twilio request failed: {exc}") from exc

        if response.status_code >= 400:
            retryable = response.status_code >= 500 or response.status_code == 429
            try:
                detail = response.json().get("message")
            except ValueError:
                detail = response.text
            raise TransportError(
                f"twilio rejected message ({response.status_code}): {detail}",
                retryable=retryable,
                status_code=response.status_code,
            )

        sid = (response.json() or {}).get("sid")
        if not sid:
            raise TransportError("twilio response missing sid", retryable=False)
        return SendResult(provider=self.provider, provider_message_id=str(sid), to=to)

    def verify_webhook(self, url: str, params: dict[str, str], signature: Optional[str]) -> WebhookVerificationResult:
        if not signature:
            return WebhookVerificationResult(ok=False, reason="missing_signature")
        expected = compute_signature(self.auth_token, url, params)
        if not hmac.compare_digest(expected, signature):
            return WebhookVerificationResult(ok=False, reason="signature_mismatch")
        return WebhookVerificationResult(ok=True, reason="verified")
