import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..db import get_db
from ..errors import NotFoundError
from ..auth.security import require_active_profile, require_min_role
from ..models.models import EquipmentType, Profile
from ..schemas.equipment import EquipmentTypeCreate, EquipmentTypeUpdate, EquipmentTypeResponse
from ..services import access, inventory


router = APIRouter(prefix="/api/equipment-types", tags=["equipment-types"])


def _get_type(db: Session, profile: Profile, type_id: uuid.UUID) -> EquipmentType:
    eq_type = db.query(EquipmentType).filter(EquipmentType.id == type_id).first()
    if eq_type is None:
        raise NotFoundError("Equipment type not found")
    if not access.is_super_admin(profile) and eq_type.company_id != profile.company_id:
        raise NotFoundError("Equipment type not found")
    return eq_type


@router.get("", response_model=List[EquipmentTypeResponse])
def list_equipment_types(
    company_id: Optional[uuid.UUID] = Query(None),
    db: Session = Depends(get_db),
    profile: Profile = Depends(require_active_profile),
):
    query = db.query(EquipmentType)
    if access.is_super_admin(profile):
        if company_id is not None:
            query = query.filter(EquipmentType.company_id == company_id)
    else:
        query = query.filter(EquipmentType.company_id == access.target_company_id(profile, company_id))
    return query.order_by(EquipmentType.name.asc()).all()


@router.get("/{type_id}", response_model=EquipmentTypeResponse)
def get_equipment_type(
    type_id: uuid.UUID,
    db: Session = Depends(get_db),
    profile: Profile = Depends(require_active_profile),
):
    return _get_type(db, profile, type_id)


@router.post("", response_model=EquipmentTypeResponse, status_code=201)
def create_equipment_type(
    payload: EquipmentTypeCreate,
    db: Session = Depends(get_db),
    profile: Profile = Depends(require_min_role("equipment_manager")),
):
    company_id = access.target_company_id(profile, payload.company_id)
    eq_type = inventory.create_type(db, company_id, **payload.model_dump(exclude={"company_id"}))
    db.commit()
    db.refresh(eq_type)
    return eq_type


@router.put("/{type_id}", response_model=EquipmentTypeResponse)
def update_equipment_type(
    type_id: uuid.UUID,
    payload: EquipmentTypeUpdate,
    db: Session = Depends(get_db),
    profile: Profile = Depends(require_min_role("equipment_manager")),
):
    eq_type = _get_type(db, profile, type_id)
    inventory.update_type(db, eq_type, payload.model_dump(exclude_unset=True))
    db.commit()
    db.refresh(eq_type)
    return eq_type


@router.delete("/{type_id}")
def delete_equipment_type(
    type_id: uuid.UUID,
    db: Session = Depends(get_db),
    profile: Profile = Depends(require_min_role("equipment_manager")),
):
    eq_type = _get_type(db, profile, type_id)
    inventory.delete_type(db, eq_type)
    db.commit()
    return {"message": "Equipment type deleted successfully"}
