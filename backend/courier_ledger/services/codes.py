"""
Human-readable sequential codes, e.g. "DISP-18102026-03".

Codes are numbered per store per business day. Two writers may compute the same
next number; the unique constraint on the code column settles it and the loser
retries with a fresh number.
"""
import logging
from datetime import date, datetime
from typing import Callable, Optional
from uuid import UUID
from zoneinfo import ZoneInfo

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from courier_ledger.db.database import settings
from courier_ledger.errors import ConflictError

logger = logging.getLogger(__name__)


def business_date(now: Optional[datetime] = None) -> date:
    """Today's date in the configured business timezone."""
    tz = ZoneInfo(settings.app_timezone)
    if now is None:
        return datetime.now(tz).date()
    if now.tzinfo is None:
        return now.date()
    return now.astimezone(tz).date()


def code_stem(prefix: str, day: date) -> str:
    return f"{prefix}-{day.strftime('%d%m%Y')}-"


def next_sequential_code(db: Session, model, code_attr: str, store_id: UUID, prefix: str, day: date) -> str:
    code_column = getattr(model, code_attr)
    stem = code_stem(prefix, day)
    existing = (
        db.query(code_column)
        .filter(model.store_id == store_id, code_column.like(f"{stem}%"))
        .all()
    )
    highest = 0
    for (code,) in existing:
        suffix = code[len(stem):]
        if suffix.isdigit():
            highest = max(highest, int(suffix))
    return f"{stem}{highest + 1:02d}"


def add_with_code(db: Session, instance, code_attr: str, generate: Callable[[], str]):
    """
    Insert ``instance`` under a fresh code, retrying on unique-constraint
    collisions. Each attempt runs in its own savepoint so a collision does not
    poison the surrounding transaction.
    """
    attempts = max(1, settings.code_generation_retries)
    for attempt in range(1, attempts + 1):
        code = generate()
        setattr(instance, code_attr, code)
        try:
            with db.begin_nested():
                db.add(instance)
                db.flush()
            return instance
        except IntegrityError:
            logger.warning("Code %s collided (attempt %d/%d)", code, attempt, attempts)
    raise ConflictError(f"Could not allocate a unique {code_attr} after {attempts} attempts")
