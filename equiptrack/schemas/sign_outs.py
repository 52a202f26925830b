import uuid
from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator


class SignOutDetailsBase(BaseModel):
    purpose: Optional[str] = None
    site_id: Optional[uuid.UUID] = None
    building: Optional[str] = Field(default=None, max_length=255)
    room_number: Optional[str] = Field(default=None, max_length=100)
    equipment_number_to_test: Optional[str] = Field(default=None, max_length=100)
    date_from: Optional[date] = None
    date_to: Optional[date] = None

    @model_validator(mode="after")
    def check_dates(self):
        if self.date_from and self.date_to and self.date_from > self.date_to:
            raise ValueError("date_from must be on or before date_to")
        return self


class SignOutCreate(SignOutDetailsBase):
    equipment_id: uuid.UUID
    signed_out_by: str = Field(min_length=1, max_length=255)


class SignOutBatchCreate(SignOutDetailsBase):
    equipment_ids: List[uuid.UUID] = Field(min_length=1)
    signed_out_by: str = Field(min_length=1, max_length=255)


class CheckInRequest(BaseModel):
    signed_in_by: str = Field(min_length=1, max_length=255)


class UsageCreate(BaseModel):
    sign_out_id: uuid.UUID
    system_equipment: str = Field(min_length=1, max_length=255)
    notes: Optional[str] = None


class UsageResponse(BaseModel):
    id: uuid.UUID
    sign_out_id: uuid.UUID
    system_equipment: str
    notes: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class SignOutResponse(SignOutDetailsBase):
    id: uuid.UUID
    equipment_id: uuid.UUID
    signed_out_by: str
    signed_out_at: datetime
    signed_in_by: Optional[str] = None
    signed_in_at: Optional[datetime] = None
    equipment_request_id: Optional[uuid.UUID] = None
    batch_id: Optional[uuid.UUID] = None
    usage: List[UsageResponse] = []

    class Config:
        from_attributes = True


# Equipment tested report
class EquipmentTestedSummary(BaseModel):
    equipment_number_to_test: str
    site_id: Optional[uuid.UUID] = None
    site_name: Optional[str] = None
    building: Optional[str] = None
    room_number: Optional[str] = None
    test_count: int
    last_tested_at: datetime


class EquipmentTestedDetail(BaseModel):
    sign_out_id: uuid.UUID
    equipment_id: uuid.UUID
    equipment_number: Optional[str] = None
    serial_number: str
    make: str
    model: str
    signed_out_by: str
    signed_out_at: datetime
    signed_in_at: Optional[datetime] = None
    site_id: Optional[uuid.UUID] = None
    building: Optional[str] = None
    room_number: Optional[str] = None
    usage: List[UsageResponse] = []
