"""
Profile provisioning: linking identity-provider subjects to profiles.
"""
import uuid
from datetime import datetime, timezone
from typing import Iterable, Optional

import structlog
from sqlalchemy.orm import Session

from ..config import settings
from ..errors import ConflictError, ForbiddenError, ValidationError
from ..models.models import Company, Profile
from . import access, tenancy


logger = structlog.get_logger(__name__)


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def is_configured_super_admin(email: str) -> bool:
    return bool(settings.super_admin_email) and normalize_email(settings.super_admin_email) == email


def upsert_profile(db: Session, subject: str, email: Optional[str], display_name: Optional[str] = None) -> Profile:
    """Resolve the profile for an authenticated subject.

    Looks up by subject first, then links a pre-provisioned profile with the
    same email, and otherwise creates a plain ``user`` without a company.
    """
    email = normalize_email(email)
    profile = db.query(Profile).filter(Profile.auth_user_id == subject).first()
    if profile is None and email:
        profile = db.query(Profile).filter(Profile.email == email).first()
        if profile is not None:
            if profile.auth_user_id and profile.auth_user_id != subject:
                raise ConflictError("Email is already linked to another account")
            profile.auth_user_id = subject
            logger.info("profile_linked", profile_id=str(profile.id))
    if profile is None:
        if not email:
            raise ValidationError("Token carries no email claim")
        profile = Profile(auth_user_id=subject, email=email, display_name=display_name, role="user")
        db.add(profile)
        logger.info("profile_created", email=email)

    if email and is_configured_super_admin(email) and profile.role != "super_admin":
        profile.role = "super_admin"
        profile.company_id = None
    if display_name and not profile.display_name:
        profile.display_name = display_name
    profile.last_login_at = datetime.now(timezone.utc)
    db.flush()
    return profile


def provision_profile(
    db: Session,
    actor: Profile,
    company: Company,
    email: str,
    role: str = "user",
    display_name: Optional[str] = None,
    phone: Optional[str] = None,
    grants: Iterable[access.GrantRow] = (),
) -> Profile:
    """Create a profile ahead of the person's first login."""
    email = normalize_email(email)
    if not email or "@" not in email:
        raise ValidationError("A valid email is required")
    if role not in access.ASSIGNABLE_ROLES:
        raise ValidationError(f"Role must be one of: {', '.join(access.ASSIGNABLE_ROLES)}")
    if access.role_rank(actor.role) <= access.role_rank(role):
        raise ForbiddenError("You can only provision roles below your own")
    if db.query(Profile).filter(Profile.email == email).first() is not None:
        raise ConflictError("A profile with this email already exists")
    tenancy.check_role_limit(db, company, role)

    profile = Profile(
        id=uuid.uuid4(),
        email=email,
        display_name=display_name,
        phone=phone,
        role=role,
        company_id=company.id,
    )
    db.add(profile)
    db.flush()
    access.replace_grants(db, profile, grants)
    logger.info("profile_provisioned", profile_id=str(profile.id), company_id=str(company.id), role=role)
    return profile
