from __future__ import annotations

import re
from dataclasses import dataclass

CHANNEL_SMS = "sms"
CHANNEL_WHATSAPP = "whatsapp"

_CHANNEL_PREFIXES = {
    "whatsapp:": CHANNEL_WHATSAPP,
    "sms:": CHANNEL_SMS,
}
_NON_DIGITS = re.compile(r"\D")
NATIONAL_LENGTH = 10


@dataclass(frozen=True)
class NormalizedPhone:
    """
    key      digits-only lookup key (national number for domestic numbers)
    e164     "+<country><national>" as the carrier expects it
    channel  sms or whatsapp
    """

    key: str
    e164: str
    channel: str
    domestic: bool

    @property
    def send_to(self) -> str:
        if self.channel == CHANNEL_WHATSAPP:
            return f"whatsapp:{self.e164}"
        return self.e164


def _split_channel(raw: str) -> tuple[str, str]:
    value = raw.strip()
    lowered = value.lower()
    for prefix, channel in _CHANNEL_PREFIXES.items():
        if lowered.startswith(prefix):
            return channel, value[len(prefix):]
    return CHANNEL_SMS, value


def normalize_phone(raw: str, *, default_country_code: str = "1") -> NormalizedPhone:
    """
    Canonicalize a phone identifier from any channel.

    Ten-digit numbers, and numbers carrying the default country code, are
    treated as domestic and keyed by their national digits. Numbers with no
    recognizable country code are assumed domestic as well; longer numbers that
    do not start with the default code keep every digit in the key, since the
    country code length cannot be known without a numbering plan.
    """
    if raw is None:
        raise ValueError("phone is required")
    channel, rest = _split_channel(str(raw))
    digits = _NON_DIGITS.sub("", rest)
    if len(digits) < 7:
        raise ValueError(f"not a phone number: {raw!r}")

    cc = default_country_code.lstrip("+")
    explicit_plus = rest.strip().startswith("+")
    if digits.startswith(cc) and len(digits) == len(cc) + NATIONAL_LENGTH:
        national = digits[len(cc):]
        return NormalizedPhone(key=national, e164=f"+{digits}", channel=channel, domestic=True)
    if explicit_plus or len(digits) > NATIONAL_LENGTH:
        return NormalizedPhone(key=digits, e164=f"+{digits}", channel=channel, domestic=False)
    # No country code to recognize: assumed domestic.
    return NormalizedPhone(key=digits, e164=f"+{cc}{digits}", channel=channel, domestic=True)


def phone_key(raw: str, *, default_country_code: str = "1") -> str:
    return normalize_phone(raw, default_country_code=default_country_code).key


def is_valid_phone(raw: str) -> bool:
    try:
        normalized = normalize_phone(raw)
    except ValueError:
        return False
    return 10 <= len(normalized.e164) - 1 <= 15
