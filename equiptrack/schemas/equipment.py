import uuid
from datetime import date, datetime
from typing import List, Optional
from enum import Enum

from pydantic import BaseModel, Field, field_validator


class CalibrationStatus(str, Enum):
    due = "due"
    due_soon = "due_soon"
    ok = "ok"
    na = "n/a"


# Equipment Type Schemas
class EquipmentTypeBase(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    requires_calibration: bool = True
    calibration_frequency_months: Optional[int] = Field(default=None, ge=1)


class EquipmentTypeCreate(EquipmentTypeBase):
    company_id: Optional[uuid.UUID] = None  # super admin only


class EquipmentTypeUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    requires_calibration: Optional[bool] = None
    calibration_frequency_months: Optional[int] = Field(default=None, ge=1)

    @field_validator("name", "requires_calibration")
    @classmethod
    def not_null(cls, v):
        if v is None:
            raise ValueError("may not be null")
        return v


class EquipmentTypeResponse(EquipmentTypeBase):
    id: uuid.UUID
    company_id: uuid.UUID
    created_at: datetime

    class Config:
        from_attributes = True


# Equipment Schemas
class EquipmentBase(BaseModel):
    equipment_type_id: uuid.UUID
    department_id: Optional[uuid.UUID] = None
    make: str = Field(min_length=1, max_length=255)
    model: str = Field(min_length=1, max_length=255)
    serial_number: str = Field(min_length=1, max_length=255)
    equipment_number: Optional[str] = Field(default=None, max_length=100)
    last_calibration_date: Optional[date] = None
    next_calibration_due: Optional[date] = None
    notes: Optional[str] = None


class EquipmentCreate(EquipmentBase):
    company_id: Optional[uuid.UUID] = None  # super admin only; others use their own company


class EquipmentUpdate(BaseModel):
    """Partial update: unset fields are left alone, explicit nulls clear nullable fields."""
    equipment_type_id: Optional[uuid.UUID] = None
    department_id: Optional[uuid.UUID] = None
    make: Optional[str] = Field(default=None, min_length=1, max_length=255)
    model: Optional[str] = Field(default=None, min_length=1, max_length=255)
    serial_number: Optional[str] = Field(default=None, min_length=1, max_length=255)
    equipment_number: Optional[str] = Field(default=None, max_length=100)
    last_calibration_date: Optional[date] = None
    next_calibration_due: Optional[date] = None
    notes: Optional[str] = None

    @field_validator("equipment_type_id", "make", "model", "serial_number")
    @classmethod
    def not_null(cls, v):
        if v is None:
            raise ValueError("may not be null")
        return v


class EquipmentBulkUpdate(BaseModel):
    ids: List[uuid.UUID] = Field(min_length=1)
    changes: EquipmentUpdate


class EquipmentResponse(EquipmentBase):
    id: uuid.UUID
    company_id: uuid.UUID
    created_at: datetime
    updated_at: Optional[datetime] = None
    equipment_type: Optional[EquipmentTypeResponse] = None

    class Config:
        from_attributes = True


class EquipmentCalibrationStatus(EquipmentResponse):
    status: CalibrationStatus
    days_until_due: Optional[int] = None


# Calibration Records
class CalibrationRecordResponse(BaseModel):
    id: uuid.UUID
    equipment_id: uuid.UUID
    file_name: str
    uploaded_at: datetime

    class Config:
        from_attributes = True


class CalibrationBatchDownload(BaseModel):
    record_ids: List[uuid.UUID] = Field(min_length=1)
