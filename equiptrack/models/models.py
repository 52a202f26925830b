import uuid
from datetime import datetime, date, timezone
from typing import Optional

from sqlalchemy import (
    String,
    DateTime,
    Date,
    Boolean,
    ForeignKey,
    Integer,
    Text,
    UniqueConstraint,
    Index,
    CheckConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship, Mapped, mapped_column

from ..db import Base


def uuid_pk() -> Mapped[uuid.UUID]:
    return mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =====================
# Tenancy
# =====================

class Company(Base):
    """Tenant boundary. Everything except super admin profiles hangs off a company."""
    __tablename__ = "companies"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    contact_name: Mapped[Optional[str]] = mapped_column(String(255))
    contact_email: Mapped[Optional[str]] = mapped_column(String(255))
    contact_phone: Mapped[Optional[str]] = mapped_column(String(100))
    address: Mapped[Optional[str]] = mapped_column(Text)
    subscription_level: Mapped[int] = mapped_column(Integer, default=1, nullable=False)  # 1..4
    subscription_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    sites = relationship("Site", back_populates="company", order_by="Site.name")

    __table_args__ = (
        CheckConstraint("subscription_level BETWEEN 1 AND 4", name="ck_company_subscription_level"),
    )


class Site(Base):
    __tablename__ = "sites"

    id: Mapped[uuid.UUID] = uuid_pk()
    company_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    company = relationship("Company", back_populates="sites")
    departments = relationship("Department", back_populates="site", order_by="Department.name")


class Department(Base):
    __tablename__ = "departments"

    id: Mapped[uuid.UUID] = uuid_pk()
    site_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("sites.id", ondelete="CASCADE"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    site = relationship("Site", back_populates="departments")


# =====================
# Equipment domain
# =====================

class EquipmentType(Base):
    """Category definition; drives calibration requirements"""
    __tablename__ = "equipment_types"

    id: Mapped[uuid.UUID] = uuid_pk()
    company_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    requires_calibration: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    calibration_frequency_months: Mapped[Optional[int]] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        UniqueConstraint("company_id", "name", name="uq_equipment_type_company_name"),
    )


class Equipment(Base):
    """A trackable physical item"""
    __tablename__ = "equipment"

    id: Mapped[uuid.UUID] = uuid_pk()
    company_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    department_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("departments.id", ondelete="SET NULL"), index=True)
    equipment_type_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("equipment_types.id"), nullable=False, index=True)
    make: Mapped[str] = mapped_column(String(255), nullable=False)
    model: Mapped[str] = mapped_column(String(255), nullable=False)
    serial_number: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    equipment_number: Mapped[Optional[str]] = mapped_column(String(100), index=True)  # alternate barcode key
    last_calibration_date: Mapped[Optional[date]] = mapped_column(Date)
    next_calibration_due: Mapped[Optional[date]] = mapped_column(Date, index=True)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Relationships
    equipment_type = relationship("EquipmentType")
    department = relationship("Department")
    sign_outs = relationship("SignOut", back_populates="equipment", cascade="all, delete-orphan", order_by="SignOut.signed_out_at.desc()")
    calibration_records = relationship("CalibrationRecord", back_populates="equipment", cascade="all, delete-orphan", order_by="CalibrationRecord.uploaded_at.desc()")
    requests = relationship("EquipmentRequest", back_populates="equipment", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint("company_id", "equipment_number", name="uq_equipment_company_number"),
    )


class SignOut(Base):
    """Checkout event; open while signed_in_at is null"""
    __tablename__ = "sign_outs"

    id: Mapped[uuid.UUID] = uuid_pk()
    equipment_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("equipment.id", ondelete="CASCADE"), nullable=False, index=True)
    signed_out_by: Mapped[str] = mapped_column(String(255), nullable=False)
    signed_out_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    signed_in_by: Mapped[Optional[str]] = mapped_column(String(255))
    signed_in_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    purpose: Mapped[Optional[str]] = mapped_column(Text)
    site_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("sites.id", ondelete="SET NULL"))
    building: Mapped[Optional[str]] = mapped_column(String(255))
    room_number: Mapped[Optional[str]] = mapped_column(String(100))
    equipment_number_to_test: Mapped[Optional[str]] = mapped_column(String(100), index=True)
    date_from: Mapped[Optional[date]] = mapped_column(Date)
    date_to: Mapped[Optional[date]] = mapped_column(Date)
    equipment_request_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("equipment_requests.id", ondelete="SET NULL"))
    batch_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), index=True)  # shared by rows of one batch checkout
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    # Relationships
    equipment = relationship("Equipment", back_populates="sign_outs")
    site = relationship("Site")
    request = relationship("EquipmentRequest")
    usage = relationship("Usage", back_populates="sign_out", cascade="all, delete-orphan", order_by="Usage.id")

    # At most one open sign-out per equipment
    __table_args__ = (
        Index(
            "uq_sign_outs_open_equipment",
            "equipment_id",
            unique=True,
            sqlite_where=text("signed_in_at IS NULL"),
            postgresql_where=text("signed_in_at IS NULL"),
        ),
    )


class Usage(Base):
    """Free-text annotation of what a signed-out item was used on"""
    __tablename__ = "usage"

    id: Mapped[uuid.UUID] = uuid_pk()
    sign_out_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("sign_outs.id", ondelete="CASCADE"), nullable=False, index=True)
    system_equipment: Mapped[str] = mapped_column(String(255), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    sign_out = relationship("SignOut", back_populates="usage")


class CalibrationRecord(Base):
    """Uploaded calibration certificate (PDF) pointer"""
    __tablename__ = "calibration_records"

    id: Mapped[uuid.UUID] = uuid_pk()
    equipment_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("equipment.id", ondelete="CASCADE"), nullable=False, index=True)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    storage_key: Mapped[str] = mapped_column(String(512), nullable=False)
    uploaded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    equipment = relationship("Equipment", back_populates="calibration_records")


class EquipmentRequest(Base):
    """Request for future use of an item; pending -> approved|rejected"""
    __tablename__ = "equipment_requests"

    id: Mapped[uuid.UUID] = uuid_pk()
    equipment_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("equipment.id", ondelete="CASCADE"), nullable=False, index=True)
    requester_name: Mapped[str] = mapped_column(String(255), nullable=False)
    requester_email: Mapped[Optional[str]] = mapped_column(String(255))
    requester_phone: Mapped[Optional[str]] = mapped_column(String(100))
    building: Mapped[str] = mapped_column(String(255), nullable=False)
    equipment_number_to_test: Mapped[str] = mapped_column(String(100), nullable=False)
    date_from: Mapped[date] = mapped_column(Date, nullable=False)
    date_to: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False, index=True)  # pending|approved|rejected
    reviewed_by: Mapped[Optional[str]] = mapped_column(String(255))
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    review_comment: Mapped[Optional[str]] = mapped_column(Text)
    submitted_by_profile_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("profiles.id", ondelete="SET NULL"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    equipment = relationship("Equipment", back_populates="requests")

    __table_args__ = (
        Index("idx_equipment_request_status_created", "status", "created_at"),
    )


# =====================
# Identity & access
# =====================

class Profile(Base):
    """User identity linked to an external auth subject"""
    __tablename__ = "profiles"

    id: Mapped[uuid.UUID] = uuid_pk()
    auth_user_id: Mapped[Optional[str]] = mapped_column(String(255), unique=True, index=True)  # null until first login
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    display_name: Mapped[Optional[str]] = mapped_column(String(255))
    phone: Mapped[Optional[str]] = mapped_column(String(100))
    role: Mapped[str] = mapped_column(String(50), default="user", nullable=False, index=True)  # user|equipment_manager|company_admin|super_admin
    company_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("companies.id", ondelete="CASCADE"), index=True)
    onboarding_complete: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    last_login_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    company = relationship("Company")
    access_grants = relationship("AccessGrant", back_populates="profile", cascade="all, delete-orphan")


class AccessGrant(Base):
    """Site, department or single-equipment scope granted to a profile"""
    __tablename__ = "access_grants"

    id: Mapped[uuid.UUID] = uuid_pk()
    profile_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True)
    site_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("sites.id", ondelete="CASCADE"), nullable=False, index=True)
    department_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("departments.id", ondelete="CASCADE"), index=True)
    equipment_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("equipment.id", ondelete="CASCADE"), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    profile = relationship("Profile", back_populates="access_grants")

    __table_args__ = (
        # equipment-level rows always carry their department
        CheckConstraint("equipment_id IS NULL OR department_id IS NOT NULL", name="ck_access_grant_level"),
        Index("idx_access_grant_profile_site", "profile_id", "site_id"),
    )
