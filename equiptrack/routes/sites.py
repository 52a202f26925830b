import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..db import get_db
from ..errors import ConflictError, NotFoundError
from ..auth.security import require_active_profile, require_min_role
from ..models.models import Company, Department, Equipment, Profile, Site
from ..schemas.admin import (
    DepartmentCreate,
    DepartmentResponse,
    DepartmentUpdate,
    SiteCreate,
    SiteResponse,
    SiteUpdate,
)
from ..services import access, tenancy


router = APIRouter(prefix="/api", tags=["sites"])


def _get_site(db: Session, profile: Profile, site_id: uuid.UUID) -> Site:
    site = db.query(Site).filter(Site.id == site_id).first()
    if site is None or not access.has_access(profile, site):
        raise NotFoundError("Site not found")
    return site


def _get_department(db: Session, profile: Profile, department_id: uuid.UUID) -> Department:
    department = db.query(Department).filter(Department.id == department_id).first()
    if department is None or not access.has_access(profile, department):
        raise NotFoundError("Department not found")
    return department


# ---------- Sites ----------

@router.get("/sites", response_model=List[SiteResponse])
def list_sites(
    company_id: Optional[uuid.UUID] = Query(None),
    db: Session = Depends(get_db),
    profile: Profile = Depends(require_active_profile),
):
    sites = access.visible_sites(db, profile)
    if company_id is not None:
        sites = [s for s in sites if s.company_id == company_id]
    return sites


@router.post("/sites", response_model=SiteResponse, status_code=201)
def create_site(
    payload: SiteCreate,
    db: Session = Depends(get_db),
    profile: Profile = Depends(require_min_role("company_admin")),
):
    company_id = access.target_company_id(profile, payload.company_id)
    company = db.query(Company).filter(Company.id == company_id).first()
    if company is None:
        raise NotFoundError("Company not found")
    tenancy.check_site_limit(db, company)
    site = Site(company_id=company.id, name=payload.name.strip())
    db.add(site)
    db.commit()
    db.refresh(site)
    return site


@router.put("/sites/{site_id}", response_model=SiteResponse)
def update_site(
    site_id: uuid.UUID,
    payload: SiteUpdate,
    db: Session = Depends(get_db),
    profile: Profile = Depends(require_min_role("company_admin")),
):
    site = _get_site(db, profile, site_id)
    site.name = payload.name.strip()
    db.commit()
    db.refresh(site)
    return site


@router.delete("/sites/{site_id}")
def delete_site(
    site_id: uuid.UUID,
    db: Session = Depends(get_db),
    profile: Profile = Depends(require_min_role("company_admin")),
):
    site = _get_site(db, profile, site_id)
    if db.query(Department.id).filter(Department.site_id == site.id).first() is not None:
        raise ConflictError("Cannot delete site: it still has departments")
    db.delete(site)
    db.commit()
    return {"message": "Site deleted successfully"}


# ---------- Departments ----------

@router.get("/sites/{site_id}/departments", response_model=List[DepartmentResponse])
def list_departments(
    site_id: uuid.UUID,
    db: Session = Depends(get_db),
    profile: Profile = Depends(require_active_profile),
):
    """Departments of a site that the caller can see"""
    site = db.query(Site).filter(Site.id == site_id).first()
    if site is None:
        raise NotFoundError("Site not found")
    departments = db.query(Department).filter(Department.site_id == site.id).order_by(Department.name.asc()).all()
    visible = [d for d in departments if access.has_access(profile, d)]
    if not visible and not access.has_access(profile, site):
        raise NotFoundError("Site not found")
    return visible


@router.post("/departments", response_model=DepartmentResponse, status_code=201)
def create_department(
    payload: DepartmentCreate,
    db: Session = Depends(get_db),
    profile: Profile = Depends(require_min_role("company_admin")),
):
    site = _get_site(db, profile, payload.site_id)
    tenancy.check_department_limit(db, site.company, site)
    department = Department(site_id=site.id, name=payload.name.strip())
    db.add(department)
    db.commit()
    db.refresh(department)
    return department


@router.put("/departments/{department_id}", response_model=DepartmentResponse)
def update_department(
    department_id: uuid.UUID,
    payload: DepartmentUpdate,
    db: Session = Depends(get_db),
    profile: Profile = Depends(require_min_role("company_admin")),
):
    department = _get_department(db, profile, department_id)
    department.name = payload.name.strip()
    db.commit()
    db.refresh(department)
    return department


@router.delete("/departments/{department_id}")
def delete_department(
    department_id: uuid.UUID,
    db: Session = Depends(get_db),
    profile: Profile = Depends(require_min_role("company_admin")),
):
    department = _get_department(db, profile, department_id)
    if db.query(Equipment.id).filter(Equipment.department_id == department.id).first() is not None:
        raise ConflictError("Cannot delete department: equipment is assigned to it")
    db.delete(department)
    db.commit()
    return {"message": "Department deleted successfully"}
