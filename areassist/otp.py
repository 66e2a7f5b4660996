"""
One-time codes bound to (user, channel, destination).

A challenge is Issued on request, then either Consumed by a successful
verify or Expired once `expires_at` passes. A new request invalidates the
caller's earlier live codes for the same destination.
"""

import logging
import re
from datetime import datetime
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from . import models
from .auth import generate_otp, is_otp_valid, otp_expiry, send_otp_email, send_otp_sms
from .database import unit_of_work
from .errors import NotFoundError, ValidationError
from .models import OtpChannel

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
PHONE_RE = re.compile(r"^\+?[0-9]{7,15}$")


def normalize_destination(channel: OtpChannel, destination: str) -> str:
    destination = (destination or "").strip()
    if channel == OtpChannel.EMAIL:
        destination = destination.lower()
        if not EMAIL_RE.match(destination):
            raise ValidationError([("destination", "A valid email address is required")])
    else:
        destination = re.sub(r"[\s\-()]", "", destination)
        if not PHONE_RE.match(destination):
            raise ValidationError([("destination", "A valid phone number is required")])
    return destination


def request_challenge(
    db: Session,
    user: models.User,
    channel: OtpChannel,
    destination: str,
) -> Tuple[models.OtpChallenge, bool]:
    """Issue a new code and send it. Returns (challenge, delivered)."""
    channel = OtpChannel(channel)
    destination = normalize_destination(channel, destination)
    if channel == OtpChannel.EMAIL and destination != (user.email or "").lower():
        raise ValidationError([("destination", "Email verification must target the account's own address")])

    challenge = models.OtpChallenge(
        user_id=user.id,
        channel=channel.value,
        destination=destination,
        code=generate_otp(),
        expires_at=otp_expiry(),
        used=False,
    )
    with unit_of_work(db):
        (
            db.query(models.OtpChallenge)
            .filter(
                models.OtpChallenge.user_id == user.id,
                models.OtpChallenge.channel == channel.value,
                models.OtpChallenge.destination == destination,
                models.OtpChallenge.used.is_(False),
            )
            .update({models.OtpChallenge.used: True}, synchronize_session=False)
        )
        db.add(challenge)

    if channel == OtpChannel.EMAIL:
        delivered = send_otp_email(destination, challenge.code)
    else:
        delivered = send_otp_sms(destination, challenge.code)

    logger.info(f"[OTP] {channel.value} challenge #{challenge.id} issued for user {user.id} (delivered={delivered})")
    return challenge, delivered


def verify_challenge(
    db: Session,
    user: models.User,
    channel: OtpChannel,
    destination: str,
    code: str,
    now: Optional[datetime] = None,
) -> models.OtpChallenge:
    channel = OtpChannel(channel)
    destination = normalize_destination(channel, destination)
    now = now or datetime.utcnow()

    challenge = (
        db.query(models.OtpChallenge)
        .filter(
            models.OtpChallenge.user_id == user.id,
            models.OtpChallenge.channel == channel.value,
            models.OtpChallenge.destination == destination,
            models.OtpChallenge.code == (code or "").strip(),
            models.OtpChallenge.used.is_(False),
        )
        .order_by(models.OtpChallenge.created_at.desc(), models.OtpChallenge.id.desc())
        .first()
    )
    if challenge is None or not is_otp_valid(challenge.expires_at, now):
        logger.info(f"[OTP] Rejected {channel.value} code for user {user.id}")
        raise NotFoundError("Invalid or expired OTP")

    with unit_of_work(db):
        challenge.used = True
        if channel == OtpChannel.PHONE:
            user.phone_verified = True
            user.phone = destination
        else:
            user.email_verified = True

    logger.info(f"[OTP] User {user.id} verified {channel.value} {destination}")
    return challenge
