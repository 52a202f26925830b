import uuid
from datetime import datetime
from typing import List, Optional
from enum import Enum

from pydantic import BaseModel, Field, field_validator


class AssignableRole(str, Enum):
    user = "user"
    equipment_manager = "equipment_manager"
    company_admin = "company_admin"


# Companies
class CompanyBase(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    contact_name: Optional[str] = None
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    address: Optional[str] = None


class CompanyCreate(CompanyBase):
    subscription_level: int = Field(default=1, ge=1, le=4)
    subscription_active: bool = True


class CompanyUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    contact_name: Optional[str] = None
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    address: Optional[str] = None
    # super admin only
    subscription_level: Optional[int] = Field(default=None, ge=1, le=4)
    subscription_active: Optional[bool] = None

    @field_validator("name", "subscription_level", "subscription_active")
    @classmethod
    def not_null(cls, v):
        if v is None:
            raise ValueError("may not be null")
        return v


class CompanyResponse(CompanyBase):
    id: uuid.UUID
    subscription_level: int
    subscription_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


# Sites & departments
class SiteCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    company_id: Optional[uuid.UUID] = None  # super admin only


class SiteUpdate(BaseModel):
    name: str = Field(min_length=1, max_length=255)


class SiteResponse(BaseModel):
    id: uuid.UUID
    company_id: uuid.UUID
    name: str
    created_at: datetime

    class Config:
        from_attributes = True


class DepartmentCreate(BaseModel):
    site_id: uuid.UUID
    name: str = Field(min_length=1, max_length=255)


class DepartmentUpdate(BaseModel):
    name: str = Field(min_length=1, max_length=255)


class DepartmentResponse(BaseModel):
    id: uuid.UUID
    site_id: uuid.UUID
    name: str
    created_at: datetime

    class Config:
        from_attributes = True


# Access
class AccessGrantInput(BaseModel):
    site_id: uuid.UUID
    department_id: Optional[uuid.UUID] = None
    equipment_id: Optional[uuid.UUID] = None


class AccessGrantResponse(AccessGrantInput):
    id: uuid.UUID

    class Config:
        from_attributes = True


class AccessReplace(BaseModel):
    grants: List[AccessGrantInput] = []


# Profiles
class ProfileCreate(BaseModel):
    email: str = Field(min_length=3, max_length=255)
    display_name: Optional[str] = None
    phone: Optional[str] = None
    role: AssignableRole = AssignableRole.user
    company_id: Optional[uuid.UUID] = None  # super admin only
    grants: List[AccessGrantInput] = []


class ProfileUpdate(BaseModel):
    display_name: Optional[str] = None
    phone: Optional[str] = None


class RoleChange(BaseModel):
    role: AssignableRole


class ProfileResponse(BaseModel):
    id: uuid.UUID
    email: str
    display_name: Optional[str] = None
    phone: Optional[str] = None
    role: str
    company_id: Optional[uuid.UUID] = None
    onboarding_complete: bool
    last_login_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class ProfileDetail(ProfileResponse):
    access_grants: List[AccessGrantResponse] = []
