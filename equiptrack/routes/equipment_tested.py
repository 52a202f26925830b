import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload, selectinload

from ..db import get_db
from ..auth.security import require_active_profile
from ..models.models import Profile, SignOut, Site
from ..schemas.sign_outs import EquipmentTestedDetail, EquipmentTestedSummary, UsageResponse
from ..services import access


router = APIRouter(prefix="/api/equipment-tested", tags=["equipment-tested"])


@router.get("", response_model=List[EquipmentTestedSummary])
def list_equipment_tested(
    search: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    profile: Profile = Depends(require_active_profile),
):
    """Tested equipment numbers grouped by location, most recently tested first"""
    query = (
        db.query(
            SignOut.equipment_number_to_test,
            SignOut.site_id,
            Site.name,
            SignOut.building,
            SignOut.room_number,
            func.count(SignOut.id),
            func.max(SignOut.signed_out_at),
        )
        .outerjoin(Site, SignOut.site_id == Site.id)
        .filter(
            SignOut.equipment_number_to_test.isnot(None),
            SignOut.equipment_number_to_test != "",
            SignOut.equipment_id.in_(access.visible_equipment_ids(db, profile)),
        )
    )
    if search:
        query = query.filter(SignOut.equipment_number_to_test.ilike(f"%{search.strip()}%"))
    rows = (
        query.group_by(
            SignOut.equipment_number_to_test,
            SignOut.site_id,
            Site.name,
            SignOut.building,
            SignOut.room_number,
        )
        .order_by(func.max(SignOut.signed_out_at).desc())
        .all()
    )
    return [
        EquipmentTestedSummary(
            equipment_number_to_test=number,
            site_id=site_id,
            site_name=site_name,
            building=building,
            room_number=room_number,
            test_count=count,
            last_tested_at=last_tested_at,
        )
        for number, site_id, site_name, building, room_number, count, last_tested_at in rows
    ]


@router.get("/detail", response_model=List[EquipmentTestedDetail])
def equipment_tested_detail(
    equipment_number_to_test: str = Query(..., min_length=1),
    site_id: Optional[uuid.UUID] = Query(None),
    building: Optional[str] = Query(None),
    room_number: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    profile: Profile = Depends(require_active_profile),
):
    """Every test of one equipment number, with the equipment used and its usage notes"""
    query = (
        db.query(SignOut)
        .options(joinedload(SignOut.equipment), selectinload(SignOut.usage))
        .filter(
            SignOut.equipment_number_to_test == equipment_number_to_test.strip(),
            SignOut.equipment_id.in_(access.visible_equipment_ids(db, profile)),
        )
    )
    # location fields are stored trimmed with blanks as NULL; match them the same way
    building = (building or "").strip()
    room_number = (room_number or "").strip()
    query = query.filter(SignOut.site_id == site_id if site_id else SignOut.site_id.is_(None))
    query = query.filter(SignOut.building == building if building else SignOut.building.is_(None))
    query = query.filter(SignOut.room_number == room_number if room_number else SignOut.room_number.is_(None))

    return [
        EquipmentTestedDetail(
            sign_out_id=row.id,
            equipment_id=row.equipment_id,
            equipment_number=row.equipment.equipment_number,
            serial_number=row.equipment.serial_number,
            make=row.equipment.make,
            model=row.equipment.model,
            signed_out_by=row.signed_out_by,
            signed_out_at=row.signed_out_at,
            signed_in_at=row.signed_in_at,
            site_id=row.site_id,
            building=row.building,
            room_number=row.room_number,
            usage=[UsageResponse.model_validate(u) for u in row.usage],
        )
        for row in query.order_by(SignOut.signed_out_at.desc()).all()
    ]
