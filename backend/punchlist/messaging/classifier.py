from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional, Pattern, Sequence, Tuple

from backend.punchlist.domain.contracts import Intent

VERIFICATION_CODE_RE = re.compile(r"^\d{6}$")


@dataclass(frozen=True)
class IntentRule:
    intent: Intent
    keywords: Tuple[str, ...]
    pattern: Pattern[str]


@dataclass(frozen=True)
class Classification:
    intent: Intent
    keyword: Optional[str] = None
    verification_code: Optional[str] = None


# Short tokens that only count as whole words ("took" is not "ok", "now" is not "no").
WHOLE_WORDS = frozenset({"ok", "okay", "no", "nope", "yes", "yep", "yeah", "pass", "done"})


def _rule(intent: Intent, keywords: Sequence[str]) -> IntentRule:
    # Word-start anchored so "accepted" still matches "accept".
    alternatives = []
    for keyword in keywords:
        escaped = re.escape(keyword)
        if keyword in WHOLE_WORDS:
            alternatives.append(rf"\b{escaped}\b")
        elif keyword[0].isalnum():
            alternatives.append(rf"\b{escaped}")
        else:
            alternatives.append(escaped)
    return IntentRule(intent=intent, keywords=tuple(keywords), pattern=re.compile("|".join(alternatives), re.IGNORECASE))


# Evaluated top to bottom, first match wins. A reply that mentions both an
# accept and a decline keyword is an accept; a question about a finished job is
# an info request.
INTENT_RULES: Tuple[IntentRule, ...] = (
    _rule(Intent.ACCEPT, ("accept", "yes", "yep", "yeah", "ok", "okay")),
    _rule(Intent.DECLINE, ("decline", "no", "nope", "pass", "unavailable")),
    _rule(Intent.INFO_REQUEST, ("info", "details", "detail", "materials", "question", "?")),
    _rule(Intent.STARTED, ("started", "start", "starting", "begin", "began", "beginning")),
    _rule(Intent.COMPLETED, ("completed", "complete", "done", "finished", "finish")),
)


def classify(body: Optional[str]) -> Classification:
    """Map a free-text reply to exactly one intent. Never raises."""
    if body is None:
        return Classification(intent=Intent.UNKNOWN)
    text = str(body).strip()
    if not text:
        return Classification(intent=Intent.UNKNOWN)

    if VERIFICATION_CODE_RE.match(text):
        return Classification(intent=Intent.VERIFICATION_CODE, verification_code=text)

    for rule in INTENT_RULES:
        match = rule.pattern.search(text)
        if match:
            return Classification(intent=rule.intent, keyword=match.group(0).lower())
    return Classification(intent=Intent.UNKNOWN)


def classify_intent(body: Optional[str]) -> Intent:
    return classify(body).intent
