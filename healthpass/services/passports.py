"""Health passport lifecycle: issue, look up, renew and delete."""
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from sqlalchemy import delete, insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from healthpass.core.config import PASSPORT_TTL_HOURS, PUBLIC_BASE_URL
from healthpass.models.passport import health_passports
from healthpass.services.errors import PassportNotFound, PassportNumberExhausted
from healthpass.services.export import reference_url
from healthpass.services.matrix import generate
from healthpass.services.qr_generator import matrix_to_png
from healthpass.services.record import IdentityRecord, parse_expiry, validate

logger = logging.getLogger(__name__)

MAX_NUMBER_ATTEMPTS = 5
DEMO_IDENTIFIER = "DEMO-12345"


def utcnow() -> datetime:
    """Current time as naive UTC, the form stored in the database."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def generate_passport_number() -> str:
    return f"DC-{secrets.randbelow(100000):05d}"


def format_expiry(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return _as_utc(value).isoformat()


def is_expired(record: IdentityRecord, now: Optional[datetime] = None) -> bool:
    """True when the record carries an expiry that lies before ``now``."""
    if record.expiry is None:
        return False
    now = _as_utc(now or utcnow())
    return _as_utc(parse_expiry(record.expiry)) < now


def build_record(
    passport_number: str,
    holder_name: str,
    blood_type: str,
    status: str,
    user_id: int,
    expiry_date: Optional[datetime],
    base_url: str = PUBLIC_BASE_URL,
) -> IdentityRecord:
    return IdentityRecord(
        identifier=passport_number,
        display_name=holder_name,
        category=blood_type,
        state=status,
        owner_id=user_id,
        reference_url=reference_url(passport_number, base_url),
        expiry=format_expiry(expiry_date),
    )


def record_from_row(row, base_url: str = PUBLIC_BASE_URL) -> IdentityRecord:
    return build_record(
        row.passport_number,
        row.holder_name,
        row.blood_type,
        row.status,
        row.user_id,
        row.expiry_date,
        base_url,
    )


def demo_record(base_url: str = PUBLIC_BASE_URL) -> IdentityRecord:
    """Placeholder record shown to users who have no passport yet."""
    return IdentityRecord(
        identifier=DEMO_IDENTIFIER,
        display_name="Demo User",
        category="A+",
        state="demo",
        owner_id=0,
        reference_url=reference_url("demo", base_url),
    )


def render_code(record: IdentityRecord) -> bytes:
    """PNG of the record's identity matrix, rendered from the current record."""
    return matrix_to_png(generate(record))


def issue_passport(
    db: Session,
    user_id: int,
    holder_name: str,
    blood_type: str,
    now: Optional[datetime] = None,
    number_factory: Optional[Callable[[], str]] = None,
):
    """Give ``user_id`` an active passport; returns (row, created).

    A user holds at most one passport: an existing one is renewed instead of
    issuing a second.
    """
    try:
        existing = get_passport_by_user(db, user_id)
    except PassportNotFound:
        return create_passport(db, user_id, holder_name, blood_type, now, number_factory), True
    return renew_passport(db, existing.id, now), False


def create_passport(
    db: Session,
    user_id: int,
    holder_name: str,
    blood_type: str,
    now: Optional[datetime] = None,
    number_factory: Optional[Callable[[], str]] = None,
):
    """Insert an active passport valid for PASSPORT_TTL_HOURS.

    A fresh passport number is drawn until one is free, at most
    MAX_NUMBER_ATTEMPTS times.
    """
    now = now or utcnow()
    expiry = now + timedelta(hours=PASSPORT_TTL_HOURS)
    number_factory = number_factory or generate_passport_number

    for attempt in range(1, MAX_NUMBER_ATTEMPTS + 1):
        number = number_factory()
        validate(build_record(number, holder_name, blood_type, "active", user_id, expiry))
        try:
            result = db.execute(
                insert(health_passports).values(
                    user_id=user_id,
                    holder_name=holder_name,
                    blood_type=blood_type,
                    passport_number=number,
                    expiry_date=expiry,
                    status="active",
                    updated_at=now,
                )
            )
            db.commit()
        except IntegrityError:
            db.rollback()
            try:
                existing = get_passport_by_user(db, user_id)
            except PassportNotFound:
                logger.warning("Passport number %s already taken (attempt %d)", number, attempt)
                continue
            # Another request issued this user's passport first.
            return renew_passport(db, existing.id, now)

        passport_id = result.inserted_primary_key[0]
        logger.info("Issued health passport %s for user %s", number, user_id)
        return get_passport(db, passport_id)

    raise PassportNumberExhausted(
        f"Could not generate a unique passport number after {MAX_NUMBER_ATTEMPTS} attempts"
    )


def get_passport(db: Session, passport_id: int):
    row = db.execute(select(health_passports).where(health_passports.c.id == passport_id)).first()
    if row is None:
        raise PassportNotFound(passport_id)
    return row


def get_passport_by_number(db: Session, passport_number: str):
    row = db.execute(
        select(health_passports).where(health_passports.c.passport_number == passport_number)
    ).first()
    if row is None:
        raise PassportNotFound(passport_number)
    return row


def get_passport_by_user(db: Session, user_id: int):
    row = db.execute(select(health_passports).where(health_passports.c.user_id == user_id)).first()
    if row is None:
        raise PassportNotFound(f"user {user_id}")
    return row


def list_passports(db: Session) -> List:
    return db.execute(select(health_passports).order_by(health_passports.c.id.asc())).all()


def renew_passport(db: Session, passport_id: int, now: Optional[datetime] = None):
    """Reactivate a passport and push its expiry PASSPORT_TTL_HOURS past ``now``."""
    row = get_passport(db, passport_id)
    now = now or utcnow()
    expiry = now + timedelta(hours=PASSPORT_TTL_HOURS)
    db.execute(
        update(health_passports)
        .where(health_passports.c.id == passport_id)
        .values(status="active", expiry_date=expiry, updated_at=now)
    )
    db.commit()
    logger.info("Renewed health passport %s until %s", row.passport_number, expiry.isoformat())
    return get_passport(db, passport_id)


def delete_passport(db: Session, passport_id: int) -> None:
    row = get_passport(db, passport_id)
    db.execute(delete(health_passports).where(health_passports.c.id == passport_id))
    db.commit()
    logger.info("Deleted health passport %s", row.passport_number)
