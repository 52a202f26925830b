"""
Equipment request workflow: pending -> approved | rejected.
Terminal states never transition again. The review is written with a
compare-and-set on status so two reviewers cannot both win.
"""
import uuid
from datetime import date, datetime, timezone
from typing import Optional

import structlog
from sqlalchemy.orm import Session

from ..errors import ConflictError, NotFoundError, ValidationError
from ..models.models import Equipment, EquipmentRequest, SignOut
from . import ledger


logger = structlog.get_logger(__name__)

PENDING = "pending"
APPROVED = "approved"
REJECTED = "rejected"


def submit(
    db: Session,
    equipment: Equipment,
    *,
    requester_name: str,
    building: str,
    equipment_number_to_test: str,
    date_from: date,
    date_to: date,
    requester_email: Optional[str] = None,
    requester_phone: Optional[str] = None,
    submitted_by_profile_id: Optional[uuid.UUID] = None,
) -> EquipmentRequest:
    """Create a pending request. Availability is deliberately not checked here."""
    if not (requester_name or "").strip():
        raise ValidationError("requester_name is required")
    if not (building or "").strip():
        raise ValidationError("building is required")
    if not (equipment_number_to_test or "").strip():
        raise ValidationError("equipment_number_to_test is required")
    if date_from > date_to:
        raise ValidationError("date_from must be on or before date_to")

    request = EquipmentRequest(
        equipment_id=equipment.id,
        requester_name=requester_name.strip(),
        requester_email=requester_email,
        requester_phone=requester_phone,
        building=building.strip(),
        equipment_number_to_test=equipment_number_to_test.strip(),
        date_from=date_from,
        date_to=date_to,
        status=PENDING,
        submitted_by_profile_id=submitted_by_profile_id,
    )
    db.add(request)
    db.flush()
    logger.info("request_submitted", request_id=str(request.id), equipment_id=str(equipment.id))
    return request


def _review(db: Session, request: EquipmentRequest, new_status: str, reviewer: str, comment: Optional[str]) -> None:
    reviewer = (reviewer or "").strip()
    if not reviewer:
        raise ValidationError("reviewed_by is required")
    if request.status != PENDING:
        raise ConflictError(f"Request is already {request.status}")

    values = {
        EquipmentRequest.status: new_status,
        EquipmentRequest.reviewed_by: reviewer,
        EquipmentRequest.reviewed_at: datetime.now(timezone.utc),
    }
    if new_status == REJECTED:
        values[EquipmentRequest.review_comment] = comment
    updated = (
        db.query(EquipmentRequest)
        .filter(EquipmentRequest.id == request.id, EquipmentRequest.status == PENDING)
        .update(values, synchronize_session=False)
    )
    if updated != 1:
        raise ConflictError("Request was reviewed by someone else")
    db.refresh(request)


def approve(
    db: Session,
    request: Optional[EquipmentRequest],
    reviewer: str,
    *,
    create_sign_out: bool = True,
) -> Optional[SignOut]:
    """Approve a pending request, optionally opening the matching sign-out.

    The sign-out (and its usage note) is written in the same transaction;
    if the equipment is already out, nothing is committed.
    """
    if request is None:
        raise NotFoundError("Request not found")
    _review(db, request, APPROVED, reviewer, None)
    logger.info("request_approved", request_id=str(request.id), reviewed_by=request.reviewed_by)
    if not create_sign_out:
        return None

    details = ledger.SignOutDetails(
        purpose=(
            f"Building: {request.building}, Equipment to test: #{request.equipment_number_to_test}, "
            f"Dates: {request.date_from.isoformat()} to {request.date_to.isoformat()}"
        ),
        building=request.building,
        equipment_number_to_test=request.equipment_number_to_test,
        date_from=request.date_from,
        date_to=request.date_to,
        equipment_request_id=request.id,
    )
    row = ledger.sign_out(db, request.equipment, request.requester_name, details)
    ledger.add_usage(db, row, request.equipment_number_to_test)
    return row


def reject(
    db: Session,
    request: Optional[EquipmentRequest],
    reviewer: str,
    comment: Optional[str] = None,
) -> EquipmentRequest:
    if request is None:
        raise NotFoundError("Request not found")
    comment = (comment or "").strip() or None
    _review(db, request, REJECTED, reviewer, comment)
    logger.info("request_rejected", request_id=str(request.id), reviewed_by=request.reviewed_by)
    return request
