import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..db import get_db
from ..errors import NotFoundError
from ..auth.security import require_active_profile, require_min_role
from ..models.models import EquipmentRequest, Profile
from ..schemas.requests import (
    ApproveRequest,
    ApproveResponse,
    EquipmentRequestCreate,
    EquipmentRequestResponse,
    RejectRequest,
    RequestStatus,
)
from ..services import access, requests as workflow
from .equipment import get_visible_equipment


router = APIRouter(prefix="/api/equipment-requests", tags=["equipment-requests"])


def _reviewer(profile: Profile, explicit: Optional[str]) -> str:
    return (explicit or "").strip() or profile.display_name or profile.email


def _get_request(db: Session, profile: Profile, request_id: uuid.UUID, edit: bool = False) -> EquipmentRequest:
    request = db.query(EquipmentRequest).filter(EquipmentRequest.id == request_id).first()
    if request is None or not access.has_access(profile, request.equipment):
        raise NotFoundError("Request not found")
    if edit:
        access.ensure_access(profile, request.equipment, edit=True, label="Request")
    return request


@router.get("", response_model=List[EquipmentRequestResponse])
def list_requests(
    status: Optional[RequestStatus] = Query(None),
    equipment_id: Optional[uuid.UUID] = Query(None),
    db: Session = Depends(get_db),
    profile: Profile = Depends(require_active_profile),
):
    query = db.query(EquipmentRequest).filter(
        EquipmentRequest.equipment_id.in_(access.visible_equipment_ids(db, profile))
    )
    if status:
        query = query.filter(EquipmentRequest.status == status.value)
    if equipment_id:
        query = query.filter(EquipmentRequest.equipment_id == equipment_id)
    return query.order_by(EquipmentRequest.created_at.desc()).all()


@router.get("/{request_id}", response_model=EquipmentRequestResponse)
def get_request(
    request_id: uuid.UUID,
    db: Session = Depends(get_db),
    profile: Profile = Depends(require_active_profile),
):
    return _get_request(db, profile, request_id)


@router.post("", response_model=EquipmentRequestResponse, status_code=201)
def submit_request(
    payload: EquipmentRequestCreate,
    db: Session = Depends(get_db),
    profile: Profile = Depends(require_active_profile),
):
    equipment = get_visible_equipment(db, profile, payload.equipment_id)
    request = workflow.submit(
        db,
        equipment,
        submitted_by_profile_id=profile.id,
        **payload.model_dump(exclude={"equipment_id"}),
    )
    db.commit()
    db.refresh(request)
    return request


@router.post("/{request_id}/approve", response_model=ApproveResponse)
def approve_request(
    request_id: uuid.UUID,
    payload: ApproveRequest,
    db: Session = Depends(get_db),
    profile: Profile = Depends(require_min_role("equipment_manager")),
):
    """Approve a pending request; by default also signs the equipment out to the requester"""
    request = _get_request(db, profile, request_id, edit=True)
    sign_out_row = workflow.approve(
        db,
        request,
        _reviewer(profile, payload.reviewed_by),
        create_sign_out=payload.create_sign_out,
    )
    db.commit()
    db.refresh(request)
    return ApproveResponse(
        request=EquipmentRequestResponse.model_validate(request),
        sign_out_id=sign_out_row.id if sign_out_row is not None else None,
    )


@router.post("/{request_id}/reject", response_model=EquipmentRequestResponse)
def reject_request(
    request_id: uuid.UUID,
    payload: RejectRequest,
    db: Session = Depends(get_db),
    profile: Profile = Depends(require_min_role("equipment_manager")),
):
    request = _get_request(db, profile, request_id, edit=True)
    workflow.reject(db, request, _reviewer(profile, payload.reviewed_by), payload.review_comment)
    db.commit()
    db.refresh(request)
    return request
