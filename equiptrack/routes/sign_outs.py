import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session, selectinload

from ..db import get_db
from ..errors import NotFoundError, ValidationError
from ..auth.security import require_active_profile
from ..models.models import Profile, SignOut, Site
from ..schemas.sign_outs import CheckInRequest, SignOutBatchCreate, SignOutCreate, SignOutResponse
from ..services import access, ledger
from .equipment import get_visible_equipment


router = APIRouter(prefix="/api/sign-outs", tags=["sign-outs"])


def _visible_sign_outs(db: Session, profile: Profile):
    return (
        db.query(SignOut)
        .options(selectinload(SignOut.usage))
        .filter(SignOut.equipment_id.in_(access.visible_equipment_ids(db, profile)))
    )


def _details(db: Session, company_id: uuid.UUID, payload) -> ledger.SignOutDetails:
    if payload.site_id is not None:
        site = db.query(Site).filter(Site.id == payload.site_id).first()
        if site is None or site.company_id != company_id:
            raise ValidationError("Site is not part of this company")
    return ledger.SignOutDetails(
        purpose=payload.purpose,
        site_id=payload.site_id,
        building=payload.building,
        room_number=payload.room_number,
        equipment_number_to_test=payload.equipment_number_to_test,
        date_from=payload.date_from,
        date_to=payload.date_to,
    )


def get_visible_sign_out(db: Session, profile: Profile, sign_out_id: uuid.UUID) -> SignOut:
    row = db.query(SignOut).filter(SignOut.id == sign_out_id).first()
    if row is None or not access.has_access(profile, row.equipment):
        raise NotFoundError("Sign-out not found")
    return row


@router.get("", response_model=List[SignOutResponse])
def list_sign_outs(
    db: Session = Depends(get_db),
    profile: Profile = Depends(require_active_profile),
):
    return _visible_sign_outs(db, profile).order_by(SignOut.signed_out_at.desc()).all()


@router.get("/active", response_model=List[SignOutResponse])
def list_active_sign_outs(
    db: Session = Depends(get_db),
    profile: Profile = Depends(require_active_profile),
):
    return (
        _visible_sign_outs(db, profile)
        .filter(SignOut.signed_in_at.is_(None))
        .order_by(SignOut.signed_out_at.desc())
        .all()
    )


@router.get("/equipment/{equipment_id}", response_model=List[SignOutResponse])
def list_equipment_sign_outs(
    equipment_id: uuid.UUID,
    db: Session = Depends(get_db),
    profile: Profile = Depends(require_active_profile),
):
    equipment = get_visible_equipment(db, profile, equipment_id)
    return equipment.sign_outs


@router.get("/active/equipment/{equipment_id}", response_model=Optional[SignOutResponse])
def get_active_sign_out(
    equipment_id: uuid.UUID,
    db: Session = Depends(get_db),
    profile: Profile = Depends(require_active_profile),
):
    """The open sign-out for an item, or null when it is available"""
    equipment = get_visible_equipment(db, profile, equipment_id)
    return ledger.get_active_sign_out(db, equipment.id)


@router.post("", response_model=SignOutResponse, status_code=201)
def create_sign_out(
    payload: SignOutCreate,
    db: Session = Depends(get_db),
    profile: Profile = Depends(require_active_profile),
):
    equipment = get_visible_equipment(db, profile, payload.equipment_id)
    row = ledger.sign_out(db, equipment, payload.signed_out_by, _details(db, equipment.company_id, payload))
    db.commit()
    db.refresh(row)
    return row


@router.post("/batch", response_model=List[SignOutResponse], status_code=201)
def create_sign_out_batch(
    payload: SignOutBatchCreate,
    db: Session = Depends(get_db),
    profile: Profile = Depends(require_active_profile),
):
    """Sign out several items at once; nothing is signed out if any item is unavailable"""
    if len(set(payload.equipment_ids)) != len(payload.equipment_ids):
        raise ValidationError("Equipment list contains duplicates")
    items = [get_visible_equipment(db, profile, equipment_id) for equipment_id in payload.equipment_ids]
    company_ids = {e.company_id for e in items}
    if len(company_ids) != 1:
        raise ValidationError("Batch items must belong to one company")
    rows = ledger.sign_out_many(db, items, payload.signed_out_by, _details(db, company_ids.pop(), payload))
    db.commit()
    for row in rows:
        db.refresh(row)
    return rows


@router.post("/{sign_out_id}/check-in", response_model=SignOutResponse)
def check_in(
    sign_out_id: uuid.UUID,
    payload: CheckInRequest,
    db: Session = Depends(get_db),
    profile: Profile = Depends(require_active_profile),
):
    row = get_visible_sign_out(db, profile, sign_out_id)
    ledger.check_in(db, row, payload.signed_in_by)
    db.commit()
    db.refresh(row)
    return row
