from typing import Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..errors import AuthError, ForbiddenError
from ..models.models import Profile
from ..services import access, tenancy
from ..services.profiles import upsert_profile


http_bearer = HTTPBearer(auto_error=False)


def decode_token(token: str) -> dict:
    """Verify a token issued by the identity provider and return its claims."""
    options = {"require": ["sub", "exp"]}
    if not settings.auth_jwt_audience:
        options["verify_aud"] = False
    try:
        return jwt.decode(
            token,
            settings.auth_jwt_secret,
            algorithms=[settings.auth_jwt_algorithm],
            audience=settings.auth_jwt_audience or None,
            options=options,
        )
    except jwt.ExpiredSignatureError:
        raise AuthError("Token expired")
    except jwt.InvalidTokenError:
        raise AuthError("Invalid or expired token")


def get_current_profile(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
    db: Session = Depends(get_db),
) -> Profile:
    if creds is None:
        raise AuthError("Not authenticated")
    payload = decode_token(creds.credentials)
    subject = str(payload.get("sub") or "")
    if not subject:
        raise AuthError("Invalid subject")
    metadata = payload.get("user_metadata") or {}
    profile = upsert_profile(db, subject, payload.get("email"), metadata.get("full_name") or payload.get("name"))
    db.commit()
    return profile


def require_active_profile(profile: Profile = Depends(get_current_profile)) -> Profile:
    """Gate for business endpoints: the profile's company must be subscribed."""
    tenancy.ensure_active(profile.company)
    return profile


def require_min_role(role: str):
    def _dep(profile: Profile = Depends(require_active_profile)) -> Profile:
        if access.role_rank(profile.role) < access.ROLE_RANK[role]:
            raise ForbiddenError()
        return profile

    return _dep


def require_roles(*roles: str):
    def _dep(profile: Profile = Depends(require_active_profile)) -> Profile:
        if profile.role not in roles:
            raise ForbiddenError()
        return profile

    return _dep
