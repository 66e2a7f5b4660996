"""
Identity Provider Adapter
=========================

Turns a Firebase ID token into a local user and session token, and holds
the profile rules that gate volunteer actions.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from google.auth import exceptions as google_exceptions
from google.auth.transport import requests as google_requests
from google.oauth2 import id_token
from sqlalchemy.orm import Session

from . import models
from .auth import create_access_token
from .config import get_settings
from .database import unit_of_work
from .errors import ForbiddenError, UpstreamAuthError, ValidationError
from .models import OtpChannel, Role
from .otp import normalize_destination

logger = logging.getLogger(__name__)

BASE_PROFILE_FIELDS = ["name", "district"]
VOLUNTEER_PROFILE_FIELDS = BASE_PROFILE_FIELDS + ["phone", "skills", "availability", "experience", "transportation"]
SELECTABLE_ROLES = (Role.CITIZEN.value, Role.VOLUNTEER.value)


def verify_identity_token(token: str) -> Dict:
    """
    Validate a Firebase ID token and return its claims.

    Raises UpstreamAuthError(401) when the provider rejects the token and
    UpstreamAuthError(500) when the adapter is not configured.
    """
    project_id = get_settings().firebase_project_id
    if not project_id:
        logger.error("[Identity] FIREBASE_PROJECT_ID is not configured")
        raise UpstreamAuthError("Identity provider is not configured", status_code=500)
    if not token:
        raise UpstreamAuthError("Missing identity token")

    try:
        claims = id_token.verify_firebase_token(token, google_requests.Request(), audience=project_id)
    except ValueError as e:
        logger.warning(f"[Identity] Invalid ID token: {e}")
        raise UpstreamAuthError("Invalid identity token")
    except google_exceptions.GoogleAuthError as e:
        logger.error(f"[Identity] Token verification error: {e}", exc_info=True)
        raise UpstreamAuthError("Identity provider unavailable", status_code=500)

    if not claims or not claims.get("email"):
        raise UpstreamAuthError("Identity token has no email")
    return claims


def find_user(db: Session, uid: Optional[str], email: Optional[str]) -> Optional[models.User]:
    user = None
    if uid:
        user = db.query(models.User).filter(models.User.firebase_uid == uid).first()
    if user is None and email:
        user = db.query(models.User).filter(models.User.email == email.strip().lower()).first()
    return user


def check_role_selection(db: Session, uid: str, email: Optional[str]) -> Tuple[bool, Optional[models.User]]:
    """A first-time federated user must choose citizen or volunteer."""
    user = find_user(db, uid, email)
    return user is None, user


def sync_user(
    db: Session,
    token: str,
    selected_role: Optional[str] = None,
    display_name: Optional[str] = None,
    photo_url: Optional[str] = None,
) -> Tuple[str, models.User, bool]:
    """Returns (session_token, user, created)."""
    claims = verify_identity_token(token)
    uid = claims.get("user_id") or claims.get("sub")
    email = claims["email"].strip().lower()

    if selected_role is not None and selected_role not in SELECTABLE_ROLES:
        raise ValidationError([("selectedRole", "Role must be citizen or volunteer")])

    user = find_user(db, uid, email)
    created = user is None
    with unit_of_work(db):
        if created:
            user = models.User(
                name=claims.get("name") or display_name or email.split("@")[0],
                email=email,
                role=selected_role or Role.CITIZEN.value,
                firebase_uid=uid,
                profile_completed=False,
            )
            db.add(user)
        elif not user.firebase_uid:
            user.firebase_uid = uid
        user.email_verified = bool(claims.get("email_verified")) or bool(user.email_verified)
        user.profile_picture = claims.get("picture") or photo_url or user.profile_picture
        user.last_login = datetime.utcnow()

    if created:
        logger.info(f"[Identity] Created {user.role} user {user.id} for {email}")
    else:
        logger.info(f"[Identity] Synced existing user {user.id}")
    return create_access_token(user.id, user.role), user, created


# ── Profile rules ──

def required_profile_fields(role: str) -> List[str]:
    return VOLUNTEER_PROFILE_FIELDS if role == Role.VOLUNTEER.value else BASE_PROFILE_FIELDS


def profile_completion(user: models.User) -> Dict:
    required = required_profile_fields(user.role)
    missing = [f for f in required if not (getattr(user, f) or "").strip()]
    filled = len(required) - len(missing)
    return {
        "is_complete": not missing,
        "missing_fields": missing,
        "completion_percentage": round(filled * 100 / len(required)),
        "total_fields": len(required),
        "filled_fields": filled,
    }


def complete_volunteer_profile(db: Session, user: models.User, fields: Dict) -> models.User:
    if user.role != Role.VOLUNTEER.value:
        raise ForbiddenError("Only volunteers have a volunteer profile")

    phone = normalize_destination(OtpChannel.PHONE, fields["phone"])
    if not user.phone_verified or user.phone != phone:
        raise ValidationError([("phone", "Verify this phone number with a one-time code first")])

    with unit_of_work(db):
        user.district = " ".join(fields["district"].split())
        user.skills = fields["skills"]
        user.availability = fields["availability"]
        user.experience = fields["experience"]
        user.transportation = fields["transportation"]
        user.emergency_contact = fields.get("emergency_contact")
        user.emergency_phone = fields.get("emergency_phone")
        user.profile_completed = True
    logger.info(f"Volunteer {user.id} completed profile ({user.district})")
    return user


def ensure_volunteer_ready(user: models.User) -> None:
    """Server-side gate for volunteer-only mutations."""
    if user.role == Role.ADMIN.value:
        return
    if user.role != Role.VOLUNTEER.value:
        raise ForbiddenError("Volunteer access required")
    if not user.profile_completed:
        raise ForbiddenError("Complete your volunteer profile before taking on issues")
