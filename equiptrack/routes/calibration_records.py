import io
import os
import time
import uuid
import zipfile
from typing import List

import structlog
from fastapi import APIRouter, Depends, File, UploadFile
from fastapi.responses import RedirectResponse, Response, StreamingResponse
from slugify import slugify
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..errors import NotFoundError, ValidationError
from ..auth.security import require_active_profile, require_min_role
from ..models.models import CalibrationRecord, Profile
from ..schemas.equipment import CalibrationBatchDownload, CalibrationRecordResponse
from ..services import access
from ..storage.provider import StorageProvider, get_storage
from .equipment import get_visible_equipment


logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/calibration-records", tags=["calibration-records"])

PDF_CONTENT_TYPE = "application/pdf"


def _get_record(db: Session, profile: Profile, record_id: uuid.UUID) -> CalibrationRecord:
    record = db.query(CalibrationRecord).filter(CalibrationRecord.id == record_id).first()
    if record is None or not access.has_access(profile, record.equipment):
        raise NotFoundError("Calibration record not found")
    return record


def archive_name(record: CalibrationRecord) -> str:
    """ZIP entry name: ``<equipment_id>_<slugified file name>.pdf``."""
    stem, ext = os.path.splitext(record.file_name)
    safe = slugify(stem) or "certificate"
    return f"{record.equipment_id}_{safe}{ext.lower() or '.pdf'}"


@router.get("", response_model=List[CalibrationRecordResponse])
def list_all_records(
    db: Session = Depends(get_db),
    profile: Profile = Depends(require_active_profile),
):
    """Certificates for every visible equipment item, newest first"""
    return (
        db.query(CalibrationRecord)
        .filter(CalibrationRecord.equipment_id.in_(access.visible_equipment_ids(db, profile)))
        .order_by(CalibrationRecord.uploaded_at.desc())
        .all()
    )


@router.get("/equipment/{equipment_id}", response_model=List[CalibrationRecordResponse])
def list_equipment_records(
    equipment_id: uuid.UUID,
    db: Session = Depends(get_db),
    profile: Profile = Depends(require_active_profile),
):
    return get_visible_equipment(db, profile, equipment_id).calibration_records


@router.post("/equipment/{equipment_id}", response_model=CalibrationRecordResponse, status_code=201)
async def upload_record(
    equipment_id: uuid.UUID,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    profile: Profile = Depends(require_min_role("equipment_manager")),
    storage: StorageProvider = Depends(get_storage),
):
    """Upload a calibration certificate (PDF only)"""
    equipment = get_visible_equipment(db, profile, equipment_id)
    access.ensure_access(profile, equipment, edit=True, label="Equipment")
    if (file.content_type or "").lower() != PDF_CONTENT_TYPE:
        raise ValidationError("Only PDF files are accepted")
    content = await file.read()
    if not content:
        raise ValidationError("File is empty")
    if len(content) > settings.max_upload_bytes:
        raise ValidationError(f"File exceeds the {settings.max_upload_bytes // (1024 * 1024)}MB limit")

    key = f"{equipment.id}/{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}.pdf"
    storage.put(content, key, PDF_CONTENT_TYPE)
    record = CalibrationRecord(
        equipment_id=equipment.id,
        file_name=os.path.basename(file.filename or "certificate.pdf"),
        storage_key=key,
    )
    db.add(record)
    try:
        db.commit()
    except Exception:
        db.rollback()
        storage.delete(key)
        raise
    db.refresh(record)
    logger.info("calibration_record_uploaded", record_id=str(record.id), equipment_id=str(equipment.id), size=len(content))
    return record


@router.get("/{record_id}/download")
def download_record(
    record_id: uuid.UUID,
    db: Session = Depends(get_db),
    profile: Profile = Depends(require_active_profile),
    storage: StorageProvider = Depends(get_storage),
):
    """Redirect to a short-lived URL, or stream the PDF when the store has no URLs"""
    record = _get_record(db, profile, record_id)
    url = storage.get_download_url(record.storage_key, settings.download_url_ttl_seconds)
    if url:
        return RedirectResponse(url=url)
    try:
        content = storage.read(record.storage_key)
    except FileNotFoundError:
        raise NotFoundError("File not found")
    return Response(
        content=content,
        media_type=PDF_CONTENT_TYPE,
        headers={"Content-Disposition": f'inline; filename="{slugify(os.path.splitext(record.file_name)[0]) or "certificate"}.pdf"'},
    )


@router.post("/download-batch")
def download_batch(
    payload: CalibrationBatchDownload,
    db: Session = Depends(get_db),
    profile: Profile = Depends(require_active_profile),
    storage: StorageProvider = Depends(get_storage),
):
    """Bundle several certificates into one ZIP; unreadable files are skipped"""
    records = [_get_record(db, profile, record_id) for record_id in dict.fromkeys(payload.record_ids)]
    buffer = io.BytesIO()
    used_names = set()
    written = 0
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for record in records:
            try:
                content = storage.read(record.storage_key)
            except OSError as e:
                logger.warning("calibration_record_unreadable", record_id=str(record.id), error=str(e))
                continue
            name = archive_name(record)
            if name in used_names:
                stem, ext = os.path.splitext(name)
                name = f"{stem}-{str(record.id)[:8]}{ext}"
            used_names.add(name)
            archive.writestr(name, content)
            written += 1
    if written == 0:
        raise NotFoundError("None of the requested files could be read")
    buffer.seek(0)
    return StreamingResponse(
        buffer,
        media_type="application/zip",
        headers={"Content-Disposition": 'attachment; filename="calibration-certificates.zip"'},
    )


@router.delete("/{record_id}")
def delete_record(
    record_id: uuid.UUID,
    db: Session = Depends(get_db),
    profile: Profile = Depends(require_min_role("equipment_manager")),
    storage: StorageProvider = Depends(get_storage),
):
    record = _get_record(db, profile, record_id)
    key = record.storage_key
    db.delete(record)
    db.commit()
    storage.delete(key)
    logger.info("calibration_record_deleted", record_id=str(record_id))
    return {"message": "Calibration record deleted successfully"}
