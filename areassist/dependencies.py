"""
FastAPI dependencies for request authorization.

Citizens and volunteers authenticate with a bearer session token. Admin
endpoints also accept the signed admin cookie session or the
X-Admin-Secret override.
"""

import hmac
import logging
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from . import models
from .auth import decode_access_token
from .config import get_settings
from .database import get_db
from .errors import AuthError, ForbiddenError
from .identity import ensure_volunteer_ready
from .models import Role

logger = logging.getLogger(__name__)

bearer = HTTPBearer(auto_error=False)

ADMIN_SESSION_KEY = "admin_user_id"


def _user_from_token(db: Session, token: str) -> models.User:
    payload = decode_access_token(token)
    try:
        user_id = int(payload["sub"])
    except (TypeError, ValueError):
        raise AuthError("Invalid or expired token")
    user = db.query(models.User).filter(models.User.id == user_id).first()
    if user is None:
        raise AuthError("User no longer exists")
    return user


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    db: Session = Depends(get_db),
) -> models.User:
    if credentials is None or not credentials.credentials:
        raise AuthError("Authorization token missing")
    return _user_from_token(db, credentials.credentials)


def get_bearer_token(credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer)) -> str:
    """Raw bearer value, used where the header carries an identity-provider token."""
    if credentials is None or not credentials.credentials:
        raise AuthError("Authorization token missing")
    return credentials.credentials


def require_volunteer(user: models.User = Depends(get_current_user)) -> models.User:
    ensure_volunteer_ready(user)
    return user


def require_admin(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    db: Session = Depends(get_db),
) -> Optional[models.User]:
    """Returns the admin user, or None when the override secret was used."""
    secret = get_settings().admin_secret
    supplied = request.headers.get("X-Admin-Secret")
    if secret and supplied and hmac.compare_digest(secret, supplied):
        logger.info(f"Admin override secret used for {request.method} {request.url.path}")
        return None

    admin_id = request.session.get(ADMIN_SESSION_KEY)
    if admin_id:
        user = db.query(models.User).filter(models.User.id == admin_id).first()
        if user is not None and user.role == Role.ADMIN.value:
            return user
        request.session.pop(ADMIN_SESSION_KEY, None)

    if credentials is not None and credentials.credentials:
        user = _user_from_token(db, credentials.credentials)
        if user.role != Role.ADMIN.value:
            raise ForbiddenError("Administration rights required")
        return user

    raise AuthError("Admin login required")
