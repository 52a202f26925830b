"""
Sign-out / check-in ledger.
HARD RULE: at most one open sign-out (signed_in_at IS NULL) per equipment item.
The pre-check gives a readable error; the partial unique index on
sign_outs(equipment_id) closes the race between concurrent writers.
"""
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Iterable, List, Optional

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..errors import ConflictError, NotFoundError, ValidationError
from ..models.models import Equipment, SignOut, Usage


logger = structlog.get_logger(__name__)


@dataclass
class SignOutDetails:
    """Optional context recorded with a sign-out."""
    purpose: Optional[str] = None
    site_id: Optional[uuid.UUID] = None
    building: Optional[str] = None
    room_number: Optional[str] = None
    equipment_number_to_test: Optional[str] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    equipment_request_id: Optional[uuid.UUID] = None


def get_active_sign_out(db: Session, equipment_id: uuid.UUID) -> Optional[SignOut]:
    return (
        db.query(SignOut)
        .filter(SignOut.equipment_id == equipment_id, SignOut.signed_in_at.is_(None))
        .order_by(SignOut.signed_out_at.desc())
        .first()
    )


def _label(equipment: Equipment) -> str:
    return equipment.equipment_number or equipment.serial_number


def _clean_text(value: Optional[str]) -> Optional[str]:
    """Trim a free-text field; blank becomes None."""
    if value is None:
        return None
    return value.strip() or None


def _flush_or_conflict(db: Session, detail: str) -> None:
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError(detail) from exc


def _new_sign_out(
    equipment: Equipment,
    signed_out_by: str,
    details: SignOutDetails,
    now: datetime,
    batch_id: Optional[uuid.UUID] = None,
) -> SignOut:
    return SignOut(
        equipment_id=equipment.id,
        signed_out_by=signed_out_by,
        signed_out_at=now,
        purpose=_clean_text(details.purpose),
        site_id=details.site_id,
        # equipment-tested grouping keys: trimmed, blank as NULL
        building=_clean_text(details.building),
        room_number=_clean_text(details.room_number),
        equipment_number_to_test=_clean_text(details.equipment_number_to_test),
        date_from=details.date_from,
        date_to=details.date_to,
        equipment_request_id=details.equipment_request_id,
        batch_id=batch_id,
    )


def sign_out(
    db: Session,
    equipment: Equipment,
    signed_out_by: str,
    details: Optional[SignOutDetails] = None,
) -> SignOut:
    """Open a sign-out for ``equipment``; Conflict if one is already open."""
    signed_out_by = (signed_out_by or "").strip()
    if not signed_out_by:
        raise ValidationError("signed_out_by is required")
    if get_active_sign_out(db, equipment.id) is not None:
        raise ConflictError(f"Equipment {_label(equipment)} is already signed out")

    row = _new_sign_out(equipment, signed_out_by, details or SignOutDetails(), datetime.now(timezone.utc))
    db.add(row)
    _flush_or_conflict(db, f"Equipment {_label(equipment)} is already signed out")
    logger.info("sign_out_created", sign_out_id=str(row.id), equipment_id=str(equipment.id))
    return row


def sign_out_many(
    db: Session,
    equipment_items: Iterable[Equipment],
    signed_out_by: str,
    details: Optional[SignOutDetails] = None,
) -> List[SignOut]:
    """Sign out several items as one unit: all of them, or none."""
    items = list(equipment_items)
    if not items:
        raise ValidationError("At least one equipment item is required")
    ids = [e.id for e in items]
    if len(set(ids)) != len(ids):
        raise ValidationError("Equipment list contains duplicates")
    signed_out_by = (signed_out_by or "").strip()
    if not signed_out_by:
        raise ValidationError("signed_out_by is required")

    busy = (
        db.query(SignOut.equipment_id)
        .filter(SignOut.equipment_id.in_(ids), SignOut.signed_in_at.is_(None))
        .all()
    )
    if busy:
        busy_ids = {row.equipment_id for row in busy}
        labels = ", ".join(_label(e) for e in items if e.id in busy_ids)
        raise ConflictError(f"Already signed out: {labels}")

    details = details or SignOutDetails()
    now = datetime.now(timezone.utc)
    batch_id = uuid.uuid4()
    rows = [_new_sign_out(e, signed_out_by, details, now, batch_id=batch_id) for e in items]
    db.add_all(rows)
    _flush_or_conflict(db, "One or more items were signed out concurrently")
    logger.info("sign_out_batch_created", batch_id=str(batch_id), count=len(rows))
    return rows


def check_in(db: Session, sign_out_row: Optional[SignOut], signed_in_by: str) -> SignOut:
    """Close a sign-out. Checking in an already closed sign-out is a Conflict."""
    if sign_out_row is None:
        raise NotFoundError("Sign-out not found")
    signed_in_by = (signed_in_by or "").strip()
    if not signed_in_by:
        raise ValidationError("signed_in_by is required")
    if sign_out_row.signed_in_at is not None:
        raise ConflictError("Sign-out is already checked in")

    sign_out_row.signed_in_by = signed_in_by
    sign_out_row.signed_in_at = datetime.now(timezone.utc)
    db.flush()
    logger.info("sign_out_checked_in", sign_out_id=str(sign_out_row.id), equipment_id=str(sign_out_row.equipment_id))
    return sign_out_row


def add_usage(db: Session, sign_out_row: SignOut, system_equipment: str, notes: Optional[str] = None) -> Usage:
    system_equipment = (system_equipment or "").strip()
    if not system_equipment:
        raise ValidationError("system_equipment is required")
    usage = Usage(sign_out_id=sign_out_row.id, system_equipment=system_equipment, notes=notes)
    db.add(usage)
    db.flush()
    return usage


def remove_usage(db: Session, usage: Optional[Usage]) -> None:
    if usage is None:
        raise NotFoundError("Usage not found")
    db.delete(usage)
    db.flush()
