import uuid
from datetime import datetime, timezone
from typing import List, Optional

import structlog
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..db import get_db
from ..errors import ForbiddenError, NotFoundError
from ..auth.security import require_min_role, require_roles
from ..models.models import Company, Profile
from ..schemas.admin import (
    AccessGrantResponse,
    AccessReplace,
    CompanyCreate,
    CompanyResponse,
    CompanyUpdate,
    ProfileCreate,
    ProfileDetail,
    ProfileResponse,
    ProfileUpdate,
    RoleChange,
)
from ..services import access, profiles, tenancy
from ..storage.provider import StorageProvider, get_storage


logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])

SUBSCRIPTION_FIELDS = {"subscription_level", "subscription_active"}


def _get_company(db: Session, profile: Profile, company_id: uuid.UUID) -> Company:
    company = db.query(Company).filter(Company.id == company_id).first()
    if company is None or not (access.is_super_admin(profile) or company.id == profile.company_id):
        raise NotFoundError("Company not found")
    return company


def _get_managed_profile(db: Session, actor: Profile, profile_id: uuid.UUID) -> Profile:
    target = db.query(Profile).filter(Profile.id == profile_id).first()
    if target is None:
        raise NotFoundError("Profile not found")
    if not access.is_super_admin(actor) and target.company_id != actor.company_id:
        raise NotFoundError("Profile not found")
    return target


def _grant_rows(payload_grants) -> List[access.GrantRow]:
    return [
        access.GrantRow(site_id=g.site_id, department_id=g.department_id, equipment_id=g.equipment_id)
        for g in payload_grants
    ]


# ---------- Companies ----------

@router.get("/companies", response_model=List[CompanyResponse])
def list_companies(
    db: Session = Depends(get_db),
    profile: Profile = Depends(require_min_role("company_admin")),
):
    query = db.query(Company)
    if not access.is_super_admin(profile):
        query = query.filter(Company.id == profile.company_id)
    return query.order_by(Company.name.asc()).all()


@router.post("/companies", response_model=CompanyResponse, status_code=201)
def create_company(
    payload: CompanyCreate,
    db: Session = Depends(get_db),
    profile: Profile = Depends(require_roles("super_admin")),
):
    """Create a tenant, seeded with the default equipment types"""
    company = tenancy.create_company(db, **payload.model_dump())
    db.commit()
    db.refresh(company)
    return company


@router.get("/companies/{company_id}", response_model=CompanyResponse)
def get_company(
    company_id: uuid.UUID,
    db: Session = Depends(get_db),
    profile: Profile = Depends(require_min_role("company_admin")),
):
    return _get_company(db, profile, company_id)


@router.put("/companies/{company_id}", response_model=CompanyResponse)
def update_company(
    company_id: uuid.UUID,
    payload: CompanyUpdate,
    db: Session = Depends(get_db),
    profile: Profile = Depends(require_min_role("company_admin")),
):
    company = _get_company(db, profile, company_id)
    changes = payload.model_dump(exclude_unset=True)
    if SUBSCRIPTION_FIELDS & changes.keys() and not access.is_super_admin(profile):
        raise ForbiddenError("Only a super admin can change the subscription")
    for key, value in changes.items():
        setattr(company, key, value)
    company.updated_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(company)
    logger.info("company_updated", company_id=str(company.id), fields=sorted(changes))
    return company


@router.delete("/companies/{company_id}")
def close_company(
    company_id: uuid.UUID,
    db: Session = Depends(get_db),
    profile: Profile = Depends(require_roles("super_admin")),
    storage: StorageProvider = Depends(get_storage),
):
    """Close a company and delete everything it owns"""
    company = _get_company(db, profile, company_id)
    keys = tenancy.close_company(db, company)
    db.commit()
    for key in keys:
        storage.delete(key)
    return {"message": "Company closed successfully"}


# ---------- Profiles ----------

@router.get("/profiles", response_model=List[ProfileResponse])
def list_profiles(
    company_id: Optional[uuid.UUID] = Query(None),
    role: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    profile: Profile = Depends(require_min_role("company_admin")),
):
    query = db.query(Profile)
    if access.is_super_admin(profile):
        if company_id is not None:
            query = query.filter(Profile.company_id == company_id)
    else:
        query = query.filter(Profile.company_id == access.target_company_id(profile, company_id))
    if role:
        query = query.filter(Profile.role == role)
    return query.order_by(Profile.email.asc()).all()


@router.post("/profiles", response_model=ProfileDetail, status_code=201)
def create_profile(
    payload: ProfileCreate,
    db: Session = Depends(get_db),
    profile: Profile = Depends(require_min_role("company_admin")),
):
    """Pre-provision a profile; it is linked by email on first login"""
    company = _get_company(db, profile, access.target_company_id(profile, payload.company_id))
    created = profiles.provision_profile(
        db,
        profile,
        company,
        payload.email,
        role=payload.role.value,
        display_name=payload.display_name,
        phone=payload.phone,
        grants=_grant_rows(payload.grants),
    )
    db.commit()
    db.refresh(created)
    return created


@router.get("/profiles/{profile_id}", response_model=ProfileDetail)
def get_profile(
    profile_id: uuid.UUID,
    db: Session = Depends(get_db),
    profile: Profile = Depends(require_min_role("company_admin")),
):
    return _get_managed_profile(db, profile, profile_id)


@router.put("/profiles/{profile_id}", response_model=ProfileDetail)
def update_profile(
    profile_id: uuid.UUID,
    payload: ProfileUpdate,
    db: Session = Depends(get_db),
    profile: Profile = Depends(require_min_role("company_admin")),
):
    target = _get_managed_profile(db, profile, profile_id)
    for key, value in payload.model_dump(exclude_unset=True).items():
        setattr(target, key, value)
    target.updated_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(target)
    return target


@router.put("/profiles/{profile_id}/role", response_model=ProfileDetail)
def change_profile_role(
    profile_id: uuid.UUID,
    payload: RoleChange,
    db: Session = Depends(get_db),
    profile: Profile = Depends(require_min_role("company_admin")),
):
    target = _get_managed_profile(db, profile, profile_id)
    if target.company is not None and payload.role.value != target.role:
        tenancy.check_role_limit(db, target.company, payload.role.value, exclude_profile_id=target.id)
    access.change_role(profile, target, payload.role.value)
    target.updated_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(target)
    return target


@router.delete("/profiles/{profile_id}")
def delete_profile(
    profile_id: uuid.UUID,
    db: Session = Depends(get_db),
    profile: Profile = Depends(require_min_role("company_admin")),
):
    target = _get_managed_profile(db, profile, profile_id)
    if target.id == profile.id:
        raise ForbiddenError("You cannot delete your own profile")
    if access.role_rank(profile.role) <= access.role_rank(target.role):
        raise ForbiddenError("Only a higher-privileged role may delete this profile")
    db.delete(target)
    db.commit()
    logger.info("profile_deleted", profile_id=str(profile_id), actor_id=str(profile.id))
    return {"message": "Profile deleted successfully"}


# ---------- Access ----------

@router.get("/profiles/{profile_id}/access", response_model=List[AccessGrantResponse])
def get_profile_access(
    profile_id: uuid.UUID,
    db: Session = Depends(get_db),
    profile: Profile = Depends(require_min_role("company_admin")),
):
    return _get_managed_profile(db, profile, profile_id).access_grants


@router.put("/profiles/{profile_id}/access", response_model=List[AccessGrantResponse])
def replace_profile_access(
    profile_id: uuid.UUID,
    payload: AccessReplace,
    db: Session = Depends(get_db),
    profile: Profile = Depends(require_min_role("company_admin")),
):
    """Replace the profile's grants with the given complete set"""
    target = _get_managed_profile(db, profile, profile_id)
    if target.id != profile.id and access.role_rank(profile.role) <= access.role_rank(target.role):
        raise ForbiddenError("Only a higher-privileged role may change this profile's access")
    grants = access.replace_grants(db, target, _grant_rows(payload.grants))
    db.commit()
    for grant in grants:
        db.refresh(grant)
    return grants
