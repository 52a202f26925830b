"""
Access scope resolution.

A profile's grants are scopes over the site -> department -> equipment
hierarchy. Access is allow-only and inherited downward; it is always
evaluated against the current hierarchy, so items created after a grant
was saved are covered by it.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Iterable, List, Optional, Set, Union

import structlog
from sqlalchemy import false, or_
from sqlalchemy.orm import Session, Query

from ..errors import ForbiddenError, NotFoundError, ValidationError
from ..models.models import AccessGrant, Department, Equipment, Profile, Site


logger = structlog.get_logger(__name__)

ROLE_RANK = {"user": 0, "equipment_manager": 1, "company_admin": 2, "super_admin": 3}
ASSIGNABLE_ROLES = ("user", "equipment_manager", "company_admin")


def role_rank(role: Optional[str]) -> int:
    return ROLE_RANK.get(role or "", -1)


def is_super_admin(profile: Profile) -> bool:
    return profile.role == "super_admin"


def is_company_admin(profile: Profile) -> bool:
    return profile.role in ("company_admin", "super_admin")


def is_editor(profile: Profile) -> bool:
    return role_rank(profile.role) >= ROLE_RANK["equipment_manager"]


# ---------- Scopes ----------

@dataclass(frozen=True)
class SiteScope:
    site_id: uuid.UUID


@dataclass(frozen=True)
class DepartmentScope:
    department_id: uuid.UUID


@dataclass(frozen=True)
class EquipmentScope:
    equipment_id: uuid.UUID


Scope = Union[SiteScope, DepartmentScope, EquipmentScope]


@dataclass(frozen=True)
class Lineage:
    """Where a resource sits in the tenant hierarchy (unknown levels are None)."""
    company_id: Optional[uuid.UUID]
    site_id: Optional[uuid.UUID] = None
    department_id: Optional[uuid.UUID] = None
    equipment_id: Optional[uuid.UUID] = None


def scope_of(grant: AccessGrant) -> Scope:
    if grant.equipment_id is not None:
        return EquipmentScope(grant.equipment_id)
    if grant.department_id is not None:
        return DepartmentScope(grant.department_id)
    return SiteScope(grant.site_id)


def covers(scope: Scope, target: Lineage) -> bool:
    """True when ``scope`` includes the resource described by ``target``.

    A site scope covers the site and everything under it, a department scope
    the department and its equipment, an equipment scope only that item.
    """
    if isinstance(scope, SiteScope):
        return target.site_id is not None and target.site_id == scope.site_id
    if isinstance(scope, DepartmentScope):
        return target.department_id is not None and target.department_id == scope.department_id
    return target.equipment_id is not None and target.equipment_id == scope.equipment_id


# ---------- Lineage lookups ----------

def site_lineage(site: Site) -> Lineage:
    return Lineage(company_id=site.company_id, site_id=site.id)


def department_lineage(department: Department) -> Lineage:
    return Lineage(company_id=department.site.company_id, site_id=department.site_id, department_id=department.id)


def equipment_lineage(equipment: Equipment) -> Lineage:
    department = equipment.department
    return Lineage(
        company_id=equipment.company_id,
        site_id=department.site_id if department is not None else None,
        department_id=equipment.department_id,
        equipment_id=equipment.id,
    )


def lineage_of(resource) -> Lineage:
    if isinstance(resource, Lineage):
        return resource
    if isinstance(resource, Equipment):
        return equipment_lineage(resource)
    if isinstance(resource, Department):
        return department_lineage(resource)
    if isinstance(resource, Site):
        return site_lineage(resource)
    raise TypeError(f"Unsupported resource type: {type(resource).__name__}")


# ---------- Checks ----------

def grant_scopes(profile: Profile) -> List[Scope]:
    return [scope_of(g) for g in profile.access_grants]


def has_access(profile: Profile, resource) -> bool:
    target = lineage_of(resource)
    if is_super_admin(profile):
        return True
    if profile.company_id is None or target.company_id != profile.company_id:
        return False
    if profile.role == "company_admin":
        return True
    return any(covers(scope, target) for scope in grant_scopes(profile))


def can_edit(profile: Profile, resource) -> bool:
    return is_editor(profile) and has_access(profile, resource)


def ensure_access(profile: Profile, resource, *, edit: bool = False, label: str = "Resource") -> None:
    """Raise NotFound for invisible resources, Forbidden for read-only ones."""
    if not has_access(profile, resource):
        raise NotFoundError(f"{label} not found")
    if edit and not is_editor(profile):
        raise ForbiddenError("Insufficient role to modify this resource")


def visible_equipment_query(db: Session, profile: Profile) -> Query:
    query = db.query(Equipment)
    if is_super_admin(profile):
        return query
    if profile.company_id is None:
        return query.filter(false())
    query = query.filter(Equipment.company_id == profile.company_id)
    if profile.role == "company_admin":
        return query

    site_ids: Set[uuid.UUID] = set()
    department_ids: Set[uuid.UUID] = set()
    equipment_ids: Set[uuid.UUID] = set()
    for scope in grant_scopes(profile):
        if isinstance(scope, SiteScope):
            site_ids.add(scope.site_id)
        elif isinstance(scope, DepartmentScope):
            department_ids.add(scope.department_id)
        else:
            equipment_ids.add(scope.equipment_id)
    if not (site_ids or department_ids or equipment_ids):
        return query.filter(false())

    conditions = []
    if site_ids:
        conditions.append(Department.site_id.in_(site_ids))
    if department_ids:
        conditions.append(Equipment.department_id.in_(department_ids))
    if equipment_ids:
        conditions.append(Equipment.id.in_(equipment_ids))
    return query.outerjoin(Department, Equipment.department_id == Department.id).filter(or_(*conditions))


def visible_equipment_ids(db: Session, profile: Profile) -> Set[uuid.UUID]:
    return {row.id for row in visible_equipment_query(db, profile).with_entities(Equipment.id)}


def visible_sites(db: Session, profile: Profile) -> List[Site]:
    """Sites a profile can pick from: all in scope for admins, granted ones otherwise."""
    query = db.query(Site)
    if not is_super_admin(profile):
        if profile.company_id is None:
            return []
        query = query.filter(Site.company_id == profile.company_id)
        if profile.role != "company_admin":
            site_ids = {g.site_id for g in profile.access_grants}
            if not site_ids:
                return []
            query = query.filter(Site.id.in_(site_ids))
    return query.order_by(Site.name.asc()).all()


# ---------- Grant mutation ----------

@dataclass(frozen=True)
class GrantRow:
    site_id: uuid.UUID
    department_id: Optional[uuid.UUID] = None
    equipment_id: Optional[uuid.UUID] = None


def _resolve_row(db: Session, company_id: uuid.UUID, row: GrantRow) -> tuple[Scope, Lineage]:
    site = db.query(Site).filter(Site.id == row.site_id).first()
    if site is None or site.company_id != company_id:
        raise ValidationError(f"Site {row.site_id} is not part of this company")

    if row.equipment_id is not None:
        equipment = db.query(Equipment).filter(Equipment.id == row.equipment_id).first()
        if equipment is None or equipment.company_id != company_id:
            raise ValidationError(f"Equipment {row.equipment_id} is not part of this company")
        if equipment.department_id is None or equipment.department.site_id != site.id:
            raise ValidationError(f"Equipment {row.equipment_id} is not under site {site.id}")
        if row.department_id is not None and row.department_id != equipment.department_id:
            raise ValidationError(f"Equipment {row.equipment_id} is not under department {row.department_id}")
        return EquipmentScope(equipment.id), equipment_lineage(equipment)

    if row.department_id is not None:
        department = db.query(Department).filter(Department.id == row.department_id).first()
        if department is None or department.site_id != site.id:
            raise ValidationError(f"Department {row.department_id} is not under site {site.id}")
        return DepartmentScope(department.id), department_lineage(department)

    return SiteScope(site.id), site_lineage(site)


def normalize_grants(resolved: Iterable[tuple[Scope, Lineage]]) -> List[tuple[Scope, Lineage]]:
    """Drop duplicates and rows already covered by a broader row in the set."""
    unique = list(dict(resolved).items())
    kept = []
    for scope, lineage in unique:
        covered = any(
            other != scope and covers(other, lineage)
            for other, _ in unique
        )
        if not covered:
            kept.append((scope, lineage))
    return kept


def replace_grants(db: Session, profile: Profile, rows: Iterable[GrantRow]) -> List[AccessGrant]:
    """Replace every grant of ``profile`` with the given complete set."""
    if profile.company_id is None:
        raise ValidationError("Profiles without a company cannot hold access grants")
    resolved = normalize_grants(_resolve_row(db, profile.company_id, row) for row in rows)

    db.query(AccessGrant).filter(AccessGrant.profile_id == profile.id).delete(synchronize_session=False)
    created = []
    for _, lineage in resolved:
        grant = AccessGrant(
            profile_id=profile.id,
            site_id=lineage.site_id,
            department_id=lineage.department_id,
            equipment_id=lineage.equipment_id,
        )
        db.add(grant)
        created.append(grant)
    db.flush()
    db.expire(profile, ["access_grants"])
    logger.info("access_grants_replaced", profile_id=str(profile.id), count=len(created))
    return created


# ---------- Role changes ----------

def change_role(actor: Profile, target: Profile, new_role: str) -> None:
    if new_role not in ASSIGNABLE_ROLES:
        raise ValidationError(f"Role must be one of: {', '.join(ASSIGNABLE_ROLES)}")
    if actor.id == target.id:
        raise ForbiddenError("You cannot change your own role")
    actor_rank = role_rank(actor.role)
    if actor_rank <= role_rank(target.role) or actor_rank <= role_rank(new_role):
        raise ForbiddenError("Only a higher-privileged role may change this role")
    old_role = target.role
    target.role = new_role
    logger.info("profile_role_changed", profile_id=str(target.id), old_role=old_role, new_role=new_role, actor_id=str(actor.id))


def target_company_id(profile: Profile, requested: Optional[uuid.UUID] = None) -> uuid.UUID:
    """Company an action applies to: the caller's own, or the one a super admin names."""
    if is_super_admin(profile):
        if requested is None:
            raise ValidationError("company_id is required")
        return requested
    if profile.company_id is None:
        raise ForbiddenError("Profile is not assigned to a company")
    if requested is not None and requested != profile.company_id:
        raise NotFoundError("Company not found")
    return profile.company_id
