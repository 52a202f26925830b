import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import or_
from sqlalchemy.orm import Session, joinedload

from ..db import get_db
from ..errors import NotFoundError
from ..auth.security import require_active_profile, require_min_role
from ..models.models import Department, Equipment, Profile
from ..schemas.equipment import (
    CalibrationStatus,
    EquipmentBulkUpdate,
    EquipmentCalibrationStatus,
    EquipmentCreate,
    EquipmentResponse,
    EquipmentUpdate,
)
from ..services import access, calibration, inventory
from ..storage.provider import StorageProvider, get_storage


router = APIRouter(prefix="/api/equipment", tags=["equipment"])


def get_visible_equipment(db: Session, profile: Profile, equipment_id: uuid.UUID) -> Equipment:
    equipment = db.query(Equipment).filter(Equipment.id == equipment_id).first()
    if equipment is None or not access.has_access(profile, equipment):
        raise NotFoundError("Equipment not found")
    return equipment


@router.get("", response_model=List[EquipmentResponse])
def list_equipment(
    department_id: Optional[uuid.UUID] = Query(None),
    site_id: Optional[uuid.UUID] = Query(None),
    equipment_type_id: Optional[uuid.UUID] = Query(None),
    search: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    profile: Profile = Depends(require_active_profile),
):
    """List equipment visible to the caller"""
    query = access.visible_equipment_query(db, profile).options(joinedload(Equipment.equipment_type))
    if department_id:
        query = query.filter(Equipment.department_id == department_id)
    if site_id:
        query = query.filter(Equipment.department_id.in_(
            db.query(Department.id).filter(Department.site_id == site_id)
        ))
    if equipment_type_id:
        query = query.filter(Equipment.equipment_type_id == equipment_type_id)
    if search:
        search_term = f"%{search.strip()}%"
        query = query.filter(
            or_(
                Equipment.make.ilike(search_term),
                Equipment.model.ilike(search_term),
                Equipment.serial_number.ilike(search_term),
                Equipment.equipment_number.ilike(search_term),
            )
        )
    return query.order_by(Equipment.equipment_number.asc(), Equipment.serial_number.asc()).all()


@router.get("/calibration-status", response_model=List[EquipmentCalibrationStatus])
def calibration_status(
    status: Optional[CalibrationStatus] = Query(None),
    db: Session = Depends(get_db),
    profile: Profile = Depends(require_active_profile),
):
    """Every visible item with its calibration status, soonest due first"""
    today = calibration.today_local()
    rows = []
    for equipment in access.visible_equipment_query(db, profile).options(joinedload(Equipment.equipment_type)).all():
        result = calibration.classify(equipment, today)
        if status is not None and result["status"] != status.value:
            continue
        rows.append(EquipmentCalibrationStatus(
            **EquipmentResponse.model_validate(equipment).model_dump(),
            **result,
        ))
    rows.sort(key=lambda r: (r.days_until_due is None, r.days_until_due if r.days_until_due is not None else 0))
    return rows


@router.get("/barcode/{code}", response_model=Optional[EquipmentResponse])
def lookup_barcode(
    code: str,
    db: Session = Depends(get_db),
    profile: Profile = Depends(require_active_profile),
):
    """Match a scanned code against serial or equipment number; null when nothing matches"""
    return inventory.find_by_barcode(db, profile, code)


@router.get("/{equipment_id}", response_model=EquipmentResponse)
def get_equipment(
    equipment_id: uuid.UUID,
    db: Session = Depends(get_db),
    profile: Profile = Depends(require_active_profile),
):
    return get_visible_equipment(db, profile, equipment_id)


@router.post("", response_model=EquipmentResponse, status_code=201)
def create_equipment(
    payload: EquipmentCreate,
    db: Session = Depends(get_db),
    profile: Profile = Depends(require_min_role("equipment_manager")),
):
    company_id = access.target_company_id(profile, payload.company_id)
    equipment = inventory.create_equipment(db, profile, company_id, payload.model_dump(exclude={"company_id"}))
    db.commit()
    db.refresh(equipment)
    return equipment


@router.put("/bulk", response_model=List[EquipmentResponse])
def bulk_update_equipment(
    payload: EquipmentBulkUpdate,
    db: Session = Depends(get_db),
    profile: Profile = Depends(require_min_role("equipment_manager")),
):
    """Apply the same changes to several items (all or nothing)"""
    items = inventory.bulk_update(db, profile, payload.ids, payload.changes.model_dump(exclude_unset=True))
    db.commit()
    for equipment in items:
        db.refresh(equipment)
    return items


@router.put("/{equipment_id}", response_model=EquipmentResponse)
def update_equipment(
    equipment_id: uuid.UUID,
    payload: EquipmentUpdate,
    db: Session = Depends(get_db),
    profile: Profile = Depends(require_min_role("equipment_manager")),
):
    equipment = get_visible_equipment(db, profile, equipment_id)
    inventory.update_equipment(db, profile, equipment, payload.model_dump(exclude_unset=True))
    db.commit()
    db.refresh(equipment)
    return equipment


@router.delete("/{equipment_id}")
def delete_equipment(
    equipment_id: uuid.UUID,
    db: Session = Depends(get_db),
    profile: Profile = Depends(require_min_role("equipment_manager")),
    storage: StorageProvider = Depends(get_storage),
):
    """Delete equipment with its sign-out history and certificates"""
    equipment = get_visible_equipment(db, profile, equipment_id)
    keys = inventory.delete_equipment(db, profile, equipment)
    db.commit()
    for key in keys:
        storage.delete(key)
    return {"message": "Equipment deleted successfully"}
