import base64
import binascii
import logging
import secrets

from fastapi import APIRouter, Depends, Form, Header, HTTPException, Response, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from healthpass.core import config
from healthpass.core.database import get_db
from healthpass.services.errors import InvalidRecord, PassportNotFound, PassportNumberExhausted
from healthpass.services.passports import (
    delete_passport,
    issue_passport,
    list_passports,
    renew_passport,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


def verify_admin_header(authorization: str = Header(None)):
    """Verify admin from Authorization header sent by browser"""
    if not authorization or not authorization.startswith("Basic "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated"
        )

    try:
        credentials = base64.b64decode(authorization.split(" ", 1)[1], validate=True).decode()
        username, password = credentials.split(":", 1)
    except (binascii.Error, UnicodeDecodeError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials"
        )

    valid_user = secrets.compare_digest(username, config.ADMIN_USERNAME)
    valid_password = secrets.compare_digest(password, config.ADMIN_PASSWORD)
    if not (valid_user and valid_password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials"
        )
    return username


def _summary(row) -> dict:
    return {
        "id": row.id,
        "user_id": row.user_id,
        "name": row.holder_name,
        "blood_type": row.blood_type,
        "passport_number": row.passport_number,
        "expiry_date": row.expiry_date.isoformat() if row.expiry_date else None,
        "status": row.status,
    }


def _not_found(passport_id: int) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"Health passport {passport_id} not found"
    )


def _database_error(db: Session, action: str, e: Exception) -> HTTPException:
    db.rollback()
    logger.error("✗ Error %s: %s", action, e)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Error {action}"
    )


@router.post("/passports", status_code=status.HTTP_201_CREATED)
async def issue(
    response: Response,
    userId: int = Form(...),
    fullName: str = Form(...),
    bloodType: str = Form(...),
    _admin: str = Depends(verify_admin_header),
    db: Session = Depends(get_db),
):
    """Issue a health passport, or renew the one the user already holds"""
    try:
        row, created = issue_passport(db, userId, fullName, bloodType)
    except InvalidRecord as e:
        raise HTTPException(
            status_code=422,
            detail=str(e)
        )
    except PassportNumberExhausted as e:
        logger.error("Passport issue failed for user %s: %s", userId, e)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(e)
        )
    except SQLAlchemyError as e:
        raise _database_error(db, "issuing health passport", e)

    if created:
        message = f"Health passport issued for '{fullName}'"
    else:
        response.status_code = status.HTTP_200_OK
        message = f"Health passport of user {userId} renewed"

    return {
        "success": True,
        "created": created,
        "message": message,
        "passport": _summary(row),
    }


@router.get("/passports")
async def read_passports(
    _admin: str = Depends(verify_admin_header),
    db: Session = Depends(get_db),
):
    try:
        rows = list_passports(db)
    except SQLAlchemyError as e:
        raise _database_error(db, "listing health passports", e)
    return {"passports": [_summary(row) for row in rows]}


@router.patch("/passports/{passport_id}/renew")
async def renew(
    passport_id: int,
    _admin: str = Depends(verify_admin_header),
    db: Session = Depends(get_db),
):
    try:
        row = renew_passport(db, passport_id)
    except PassportNotFound:
        raise _not_found(passport_id)
    except SQLAlchemyError as e:
        raise _database_error(db, "renewing health passport", e)
    return {"success": True, "passport": _summary(row)}


@router.delete("/passports/{passport_id}")
async def remove_passport(
    passport_id: int,
    _admin: str = Depends(verify_admin_header),
    db: Session = Depends(get_db),
):
    try:
        delete_passport(db, passport_id)
    except PassportNotFound:
        raise _not_found(passport_id)
    except SQLAlchemyError as e:
        raise _database_error(db, "deleting health passport", e)
    return {"success": True, "message": f"Health passport {passport_id} deleted"}
