import uuid
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..db import get_db
from ..errors import NotFoundError
from ..auth.security import require_active_profile
from ..models.models import Profile, Usage
from ..schemas.sign_outs import UsageCreate, UsageResponse
from ..services import access, ledger
from .sign_outs import get_visible_sign_out


router = APIRouter(prefix="/api/usage", tags=["usage"])


@router.get("/sign-out/{sign_out_id}", response_model=List[UsageResponse])
def list_usage(
    sign_out_id: uuid.UUID,
    db: Session = Depends(get_db),
    profile: Profile = Depends(require_active_profile),
):
    return get_visible_sign_out(db, profile, sign_out_id).usage


@router.post("", response_model=UsageResponse, status_code=201)
def add_usage(
    payload: UsageCreate,
    db: Session = Depends(get_db),
    profile: Profile = Depends(require_active_profile),
):
    sign_out_row = get_visible_sign_out(db, profile, payload.sign_out_id)
    usage = ledger.add_usage(db, sign_out_row, payload.system_equipment, payload.notes)
    db.commit()
    db.refresh(usage)
    return usage


@router.delete("/{usage_id}")
def remove_usage(
    usage_id: uuid.UUID,
    db: Session = Depends(get_db),
    profile: Profile = Depends(require_active_profile),
):
    usage = db.query(Usage).filter(Usage.id == usage_id).first()
    if usage is not None and not access.has_access(profile, usage.sign_out.equipment):
        raise NotFoundError("Usage not found")
    ledger.remove_usage(db, usage)
    db.commit()
    return {"message": "Usage removed successfully"}
