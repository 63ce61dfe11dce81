# backend/punchlist/api/deps.py
from __future__ import annotations

import hmac
from typing import Optional

from fastapi import Depends, HTTPException, Request

from backend.punchlist.config import DispatchSettings, get_settings
from backend.punchlist.integrations import get_transport
from backend.punchlist.integrations.base import MessageTransport


def settings_dep() -> DispatchSettings:
    return get_settings()


def transport_dep(settings: DispatchSettings = Depends(settings_dep)) -> MessageTransport:
    return get_transport(settings)


def _bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("Authorization") or ""
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def require_cron_secret(
    request: Request,
    settings: DispatchSettings = Depends(settings_dep),
) -> None:
    """
    Guards the cron-triggered endpoints. With no CRON_SECRET_KEY configured the
    endpoints are open, which is what local dev wants.
    """
    expected = settings.cron_secret_key
    if not expected:
        return
    token = _bearer_token(request)
    if token is None or not hmac.compare_digest(token, expected):
        raise HTTPException(status_code=401, detail="invalid cron secret")
