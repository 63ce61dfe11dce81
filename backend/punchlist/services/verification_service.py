from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from backend.punchlist.models import PhoneVerification, utcnow
from backend.punchlist.services.ledger_service import as_utc


logger = logging.getLogger(__name__)

CODE_TTL = timedelta(minutes=15)


def issue_code(db: Session, *, phone_key: str, now: Optional[datetime] = None, ttl: timedelta = CODE_TTL) -> PhoneVerification:
    current = now or utcnow()
    row = PhoneVerification(
        phone_key=phone_key,
        code=f"{secrets.randbelow(1_000_000):06d}",
        expires_at=current + ttl,
        created_at=current,
    )
    db.add(row)
    db.flush()
    return row


def verify_code(db: Session, *, phone_key: str, code: str, now: Optional[datetime] = None) -> bool:
    """Mark the matching unexpired code as verified. Never touches assignments."""
    current = now or utcnow()
    candidates = (
        db.execute(
            select(PhoneVerification)
            .where(
                PhoneVerification.phone_key == phone_key,
                PhoneVerification.code == code,
                PhoneVerification.verified_at.is_(None),
            )
            .order_by(PhoneVerification.created_at.desc())
        )
        .scalars()
        .all()
    )
    for row in candidates:
        if as_utc(row.expires_at) <= as_utc(current):
            continue
        # Conditional so two deliveries of the same code cannot both verify.
        result = db.execute(
            update(PhoneVerification)
            .where(PhoneVerification.id == row.id, PhoneVerification.verified_at.is_(None))
            .values(verified_at=current)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            db.expire(row)
            logger.info("phone %s verified", phone_key)
            return True
    logger.info("verification code rejected for phone %s", phone_key)
    return False
