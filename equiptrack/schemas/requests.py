import uuid
from datetime import date, datetime
from typing import Optional
from enum import Enum

from pydantic import BaseModel, Field, model_validator


class RequestStatus(str, Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


class EquipmentRequestCreate(BaseModel):
    equipment_id: uuid.UUID
    requester_name: str = Field(min_length=1, max_length=255)
    requester_email: Optional[str] = Field(default=None, max_length=255)
    requester_phone: Optional[str] = Field(default=None, max_length=100)
    building: str = Field(min_length=1, max_length=255)
    equipment_number_to_test: str = Field(min_length=1, max_length=100)
    date_from: date
    date_to: date

    @model_validator(mode="after")
    def check_dates(self):
        if self.date_from > self.date_to:
            raise ValueError("date_from must be on or before date_to")
        return self


class ApproveRequest(BaseModel):
    reviewed_by: Optional[str] = Field(default=None, max_length=255)
    create_sign_out: bool = True


class RejectRequest(BaseModel):
    reviewed_by: Optional[str] = Field(default=None, max_length=255)
    review_comment: Optional[str] = None


class EquipmentRequestResponse(BaseModel):
    id: uuid.UUID
    equipment_id: uuid.UUID
    requester_name: str
    requester_email: Optional[str] = None
    requester_phone: Optional[str] = None
    building: str
    equipment_number_to_test: str
    date_from: date
    date_to: date
    status: RequestStatus
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    review_comment: Optional[str] = None
    submitted_by_profile_id: Optional[uuid.UUID] = None
    created_at: datetime

    class Config:
        from_attributes = True


class ApproveResponse(BaseModel):
    request: EquipmentRequestResponse
    sign_out_id: Optional[uuid.UUID] = None
