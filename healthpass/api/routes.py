import logging

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.orm import Session

from healthpass.core.database import get_db
from healthpass.services.errors import InvalidRecord, PassportNotFound
from healthpass.services.export import export_filename, export_record, share_message
from healthpass.services.matrix import generate
from healthpass.services.passports import (
    demo_record,
    get_passport_by_number,
    get_passport_by_user,
    is_expired,
    record_from_row,
    render_code,
)
from healthpass.services.qr_generator import reference_qr_png
from healthpass.services.record import validate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health-passport", tags=["health-passport"])

DEMO_NUMBER = "demo"


def _checked_record(row):
    record = record_from_row(row)
    try:
        validate(record)
    except InvalidRecord as e:
        logger.error("Stored health passport %s is invalid: %s", row.passport_number, e)
        raise HTTPException(
            status_code=422,
            detail=str(e)
        )
    return record


def _resolve(db: Session, number: str):
    """Return the identity record behind a passport number ('demo' included)."""
    if number == DEMO_NUMBER:
        return demo_record()
    try:
        row = get_passport_by_number(db, number)
    except PassportNotFound:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Health passport '{number}' not found"
        )
    return _checked_record(row)


def _passport_body(record) -> dict:
    return {"passport": record.to_payload_dict(), "expired": is_expired(record)}


@router.get("/user/{user_id}")
async def read_user_passport(user_id: int, db: Session = Depends(get_db)):
    """Passport of a user, or the demo passport when they have none yet"""
    try:
        row = get_passport_by_user(db, user_id)
    except PassportNotFound:
        return {**_passport_body(demo_record()), "demo": True}
    return {**_passport_body(_checked_record(row)), "demo": False}


@router.get("/{number}")
async def read_passport(number: str, db: Session = Depends(get_db)):
    return _passport_body(_resolve(db, number))


@router.get("/{number}/matrix")
async def read_matrix(number: str, db: Session = Depends(get_db)):
    matrix = generate(_resolve(db, number))
    return {"size": matrix.size, "rows": matrix.to_list()}


@router.get("/{number}/code.png")
async def read_code_png(number: str, db: Session = Depends(get_db)):
    return Response(content=render_code(_resolve(db, number)), media_type="image/png")


@router.get("/{number}/export")
async def export_passport(number: str, db: Session = Depends(get_db)):
    record = _resolve(db, number)
    return Response(
        content=export_record(record),
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{export_filename(record)}"'},
    )


@router.get("/{number}/share")
async def share_passport(number: str, db: Session = Depends(get_db)):
    return share_message(_resolve(db, number))


@router.get("/{number}/share.png")
async def share_passport_qr(number: str, db: Session = Depends(get_db)):
    record = _resolve(db, number)
    return Response(content=reference_qr_png(record.reference_url), media_type="image/png")
