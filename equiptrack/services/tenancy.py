"""
Company lifecycle and subscription limits.

Subscription levels cap how large a tenant may grow; a company whose
subscription is inactive is locked out of business endpoints.
"""
import uuid
from dataclasses import dataclass
from typing import List, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..errors import ForbiddenError, ValidationError
from ..models.models import (
    AccessGrant,
    CalibrationRecord,
    Company,
    Department,
    Equipment,
    EquipmentRequest,
    EquipmentType,
    Profile,
    SignOut,
    Site,
    Usage,
)


logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class TierLimits:
    sites: int
    departments_per_site: int
    equipment_managers: int
    users: int


TIER_LIMITS = {
    1: TierLimits(sites=1, departments_per_site=2, equipment_managers=2, users=20),
    2: TierLimits(sites=2, departments_per_site=4, equipment_managers=3, users=50),
    3: TierLimits(sites=5, departments_per_site=3, equipment_managers=10, users=200),
    4: TierLimits(sites=10, departments_per_site=5, equipment_managers=20, users=500),
}

# (name, requires_calibration, calibration_frequency_months)
DEFAULT_EQUIPMENT_TYPES = [
    ("Temperature Logger", True, 12),
    ("Temp & Humidity Logger", True, 12),
    ("Laptop", False, None),
    ("Temperature Block", True, 12),
    ("Temperature Standard", True, 12),
]


def limits_for(company: Company) -> TierLimits:
    limits = TIER_LIMITS.get(company.subscription_level)
    if limits is None:
        raise ValidationError(f"Unknown subscription level {company.subscription_level}")
    return limits


def ensure_active(company: Optional[Company]) -> None:
    if company is not None and not company.subscription_active:
        raise ForbiddenError("Company subscription is inactive")


def check_site_limit(db: Session, company: Company) -> None:
    limits = limits_for(company)
    count = db.query(Site).filter(Site.company_id == company.id).count()
    if count >= limits.sites:
        raise ForbiddenError(f"Subscription level {company.subscription_level} allows at most {limits.sites} site(s)")


def check_department_limit(db: Session, company: Company, site: Site) -> None:
    limits = limits_for(company)
    count = db.query(Department).filter(Department.site_id == site.id).count()
    if count >= limits.departments_per_site:
        raise ForbiddenError(
            f"Subscription level {company.subscription_level} allows at most "
            f"{limits.departments_per_site} department(s) per site"
        )


def check_role_limit(
    db: Session,
    company: Company,
    role: str,
    exclude_profile_id: Optional[uuid.UUID] = None,
) -> None:
    """Check that one more profile with ``role`` fits the subscription.

    Every profile counts toward the user cap; equipment managers also count
    toward the manager cap.
    """
    limits = limits_for(company)
    query = db.query(Profile).filter(Profile.company_id == company.id)
    if exclude_profile_id is not None:
        query = query.filter(Profile.id != exclude_profile_id)
        # an existing member changing role does not grow the user count
    elif query.count() >= limits.users:
        raise ForbiddenError(f"Subscription level {company.subscription_level} allows at most {limits.users} users")

    if role == "equipment_manager":
        managers = query.filter(Profile.role == "equipment_manager").count()
        if managers >= limits.equipment_managers:
            raise ForbiddenError(
                f"Subscription level {company.subscription_level} allows at most "
                f"{limits.equipment_managers} equipment managers"
            )


def seed_default_equipment_types(db: Session, company: Company) -> List[EquipmentType]:
    existing = {
        name for (name,) in db.query(EquipmentType.name).filter(EquipmentType.company_id == company.id)
    }
    created = []
    for name, requires, months in DEFAULT_EQUIPMENT_TYPES:
        if name in existing:
            continue
        eq_type = EquipmentType(
            company_id=company.id,
            name=name,
            requires_calibration=requires,
            calibration_frequency_months=months,
        )
        db.add(eq_type)
        created.append(eq_type)
    db.flush()
    return created


def create_company(db: Session, **fields) -> Company:
    name = (fields.get("name") or "").strip()
    if not name:
        raise ValidationError("Company name is required")
    fields["name"] = name
    company = Company(**fields)
    limits_for(company)
    db.add(company)
    db.flush()
    seed_default_equipment_types(db, company)
    logger.info("company_created", company_id=str(company.id), subscription_level=company.subscription_level)
    return company


def close_company(db: Session, company: Company) -> List[str]:
    """Remove a company and everything it owns, children first.

    Returns the storage keys of the deleted certificates; the caller removes
    the files once the transaction has committed.
    """
    company_id = company.id
    equipment_ids = select(Equipment.id).where(Equipment.company_id == company_id)
    sign_out_ids = select(SignOut.id).where(SignOut.equipment_id.in_(equipment_ids))
    site_ids = select(Site.id).where(Site.company_id == company_id)
    profile_ids = select(Profile.id).where(Profile.company_id == company_id)

    storage_keys = [
        key for (key,) in db.query(CalibrationRecord.storage_key).filter(CalibrationRecord.equipment_id.in_(equipment_ids))
    ]

    db.query(AccessGrant).filter(AccessGrant.profile_id.in_(profile_ids)).delete(synchronize_session=False)
    db.query(Usage).filter(Usage.sign_out_id.in_(sign_out_ids)).delete(synchronize_session=False)
    db.query(SignOut).filter(SignOut.equipment_id.in_(equipment_ids)).delete(synchronize_session=False)
    db.query(CalibrationRecord).filter(CalibrationRecord.equipment_id.in_(equipment_ids)).delete(synchronize_session=False)
    db.query(EquipmentRequest).filter(EquipmentRequest.equipment_id.in_(equipment_ids)).delete(synchronize_session=False)
    db.query(Equipment).filter(Equipment.company_id == company_id).delete(synchronize_session=False)
    db.query(EquipmentType).filter(EquipmentType.company_id == company_id).delete(synchronize_session=False)
    db.query(Department).filter(Department.site_id.in_(site_ids)).delete(synchronize_session=False)
    db.query(Site).filter(Site.company_id == company_id).delete(synchronize_session=False)
    db.query(Profile).filter(Profile.company_id == company_id).delete(synchronize_session=False)
    db.query(Company).filter(Company.id == company_id).delete(synchronize_session=False)
    db.flush()

    logger.info("company_closed", company_id=str(company_id), files=len(storage_keys))
    return storage_keys
