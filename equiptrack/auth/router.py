from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..db import get_db
from ..models.models import Profile
from ..schemas.admin import ProfileDetail, ProfileUpdate
from .security import get_current_profile


router = APIRouter(prefix="/api/me", tags=["me"])


@router.get("", response_model=ProfileDetail)
def me(profile: Profile = Depends(get_current_profile)):
    """The caller's own profile; readable even when the company subscription is inactive"""
    return profile


@router.put("", response_model=ProfileDetail)
def update_me(
    payload: ProfileUpdate,
    db: Session = Depends(get_db),
    profile: Profile = Depends(get_current_profile),
):
    for key, value in payload.model_dump(exclude_unset=True).items():
        setattr(profile, key, value)
    profile.updated_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(profile)
    return profile


@router.post("/onboarding-complete", response_model=ProfileDetail)
def complete_onboarding(
    db: Session = Depends(get_db),
    profile: Profile = Depends(get_current_profile),
):
    profile.onboarding_complete = True
    profile.updated_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(profile)
    return profile
