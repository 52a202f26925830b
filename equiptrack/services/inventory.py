"""
Equipment and equipment type maintenance.
"""
import uuid
from datetime import datetime, timezone
from typing import Iterable, List, Optional

import structlog
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..errors import ConflictError, NotFoundError, ValidationError
from ..models.models import Department, Equipment, EquipmentType, Profile
from . import access, calibration, ledger


logger = structlog.get_logger(__name__)

REQUIRED_FIELDS = ("equipment_type_id", "make", "model", "serial_number")


def _flush_or_conflict(db: Session, detail: str) -> None:
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError(detail) from exc


# ---------- Equipment types ----------

def get_type(db: Session, company_id: uuid.UUID, type_id: uuid.UUID) -> EquipmentType:
    eq_type = db.query(EquipmentType).filter(EquipmentType.id == type_id).first()
    if eq_type is None or eq_type.company_id != company_id:
        raise NotFoundError("Equipment type not found")
    return eq_type


def create_type(db: Session, company_id: uuid.UUID, **fields) -> EquipmentType:
    name = fields["name"].strip()
    if db.query(EquipmentType).filter(EquipmentType.company_id == company_id, EquipmentType.name == name).first():
        raise ConflictError(f"Equipment type '{name}' already exists")
    fields["name"] = name
    eq_type = EquipmentType(company_id=company_id, **fields)
    db.add(eq_type)
    _flush_or_conflict(db, f"Equipment type '{name}' already exists")
    return eq_type


def update_type(db: Session, eq_type: EquipmentType, changes: dict) -> EquipmentType:
    if "name" in changes:
        changes["name"] = changes["name"].strip()
    for key, value in changes.items():
        setattr(eq_type, key, value)
    _flush_or_conflict(db, "An equipment type with this name already exists")
    return eq_type


def delete_type(db: Session, eq_type: EquipmentType) -> None:
    in_use = db.query(Equipment.id).filter(Equipment.equipment_type_id == eq_type.id).first()
    if in_use is not None:
        raise ConflictError("Cannot delete equipment type: equipment exists of this type")
    db.delete(eq_type)
    db.flush()


# ---------- Equipment ----------

def _check_department(db: Session, profile: Profile, company_id: uuid.UUID, department_id: Optional[uuid.UUID]) -> None:
    if department_id is None:
        if not access.is_company_admin(profile):
            raise ValidationError("department_id is required")
        return
    department = db.query(Department).filter(Department.id == department_id).first()
    if department is None or department.site.company_id != company_id:
        raise ValidationError("Department is not part of this company")
    if not access.has_access(profile, department):
        raise NotFoundError("Department not found")


def _check_number(db: Session, company_id: uuid.UUID, number: Optional[str], exclude_id: Optional[uuid.UUID] = None) -> None:
    if not number:
        return
    query = db.query(Equipment.id).filter(Equipment.company_id == company_id, Equipment.equipment_number == number)
    if exclude_id is not None:
        query = query.filter(Equipment.id != exclude_id)
    if query.first() is not None:
        raise ConflictError(f"Equipment number {number} is already in use")


def _clean(changes: dict) -> dict:
    for key in ("make", "model", "serial_number", "equipment_number"):
        if isinstance(changes.get(key), str):
            changes[key] = changes[key].strip()
    if changes.get("equipment_number") == "":
        changes["equipment_number"] = None
    return changes


def create_equipment(db: Session, profile: Profile, company_id: uuid.UUID, fields: dict) -> Equipment:
    fields = _clean(dict(fields))
    eq_type = get_type(db, company_id, fields["equipment_type_id"])
    _check_department(db, profile, company_id, fields.get("department_id"))
    _check_number(db, company_id, fields.get("equipment_number"))

    equipment = Equipment(company_id=company_id, **fields)
    # a blank due date on create still lets the schedule derive one
    supplied = {key: value for key, value in fields.items() if value is not None}
    calibration.apply_calibration_schedule(equipment, eq_type, supplied)
    db.add(equipment)
    _flush_or_conflict(db, "Equipment number is already in use")
    logger.info("equipment_created", equipment_id=str(equipment.id), company_id=str(company_id))
    return equipment


def _apply_changes(db: Session, profile: Profile, equipment: Equipment, changes: dict) -> None:
    for key in REQUIRED_FIELDS:
        if key in changes and changes[key] is None:
            raise ValidationError(f"{key} may not be null")
    if "equipment_type_id" in changes:
        eq_type = get_type(db, equipment.company_id, changes["equipment_type_id"])
    else:
        eq_type = equipment.equipment_type
    if "department_id" in changes:
        _check_department(db, profile, equipment.company_id, changes["department_id"])
    if "equipment_number" in changes:
        _check_number(db, equipment.company_id, changes["equipment_number"], exclude_id=equipment.id)

    for key, value in changes.items():
        setattr(equipment, key, value)
    calibration.apply_calibration_schedule(equipment, eq_type, changes)
    equipment.updated_at = datetime.now(timezone.utc)


def update_equipment(db: Session, profile: Profile, equipment: Equipment, changes: dict) -> Equipment:
    access.ensure_access(profile, equipment, edit=True, label="Equipment")
    _apply_changes(db, profile, equipment, _clean(dict(changes)))
    _flush_or_conflict(db, "Equipment number is already in use")
    return equipment


def bulk_update(db: Session, profile: Profile, ids: Iterable[uuid.UUID], changes: dict) -> List[Equipment]:
    """Apply one patch to several items; any failure leaves all of them untouched."""
    ids = list(dict.fromkeys(ids))
    if not ids:
        raise ValidationError("At least one equipment id is required")
    changes = _clean(dict(changes))
    if len(ids) > 1 and changes.get("equipment_number"):
        raise ValidationError("equipment_number cannot be set on several items at once")

    items = db.query(Equipment).filter(Equipment.id.in_(ids)).all()
    by_id = {e.id: e for e in items}
    for equipment_id in ids:
        equipment = by_id.get(equipment_id)
        if equipment is None:
            raise NotFoundError(f"Equipment {equipment_id} not found")
        access.ensure_access(profile, equipment, edit=True, label=f"Equipment {equipment_id}")

    ordered = [by_id[i] for i in ids]
    for equipment in ordered:
        _apply_changes(db, profile, equipment, changes)
    _flush_or_conflict(db, "Bulk update violates a uniqueness rule")
    logger.info("equipment_bulk_updated", count=len(ordered), fields=sorted(changes))
    return ordered


def delete_equipment(db: Session, profile: Profile, equipment: Equipment) -> List[str]:
    """Delete an item with its history. Returns certificate keys to remove from storage."""
    access.ensure_access(profile, equipment, edit=True, label="Equipment")
    if ledger.get_active_sign_out(db, equipment.id) is not None:
        raise ConflictError("Equipment is currently signed out")
    keys = [record.storage_key for record in equipment.calibration_records]
    db.delete(equipment)
    db.flush()
    logger.info("equipment_deleted", equipment_id=str(equipment.id), files=len(keys))
    return keys


def find_by_barcode(db: Session, profile: Profile, code: str) -> Optional[Equipment]:
    code = (code or "").strip()
    if not code:
        return None
    return (
        access.visible_equipment_query(db, profile)
        .filter(or_(Equipment.serial_number == code, Equipment.equipment_number == code))
        .order_by(Equipment.created_at.asc())
        .first()
    )
