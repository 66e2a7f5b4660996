import logging
import secrets
import smtplib
from datetime import datetime, timedelta
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

import bcrypt
from jose import JWTError, jwt
from twilio.rest import Client as TwilioClient

from .config import get_settings
from .errors import AuthError

logger = logging.getLogger(__name__)

# bcrypt only looks at the first 72 bytes
MAX_PASSWORD_BYTES = 72


# Password hashing (direct bcrypt, no passlib)
def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode('utf-8')[:MAX_PASSWORD_BYTES], bcrypt.gensalt()).decode('utf-8')


def verify_password(plain: str, hashed: Optional[str]) -> bool:
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(plain.encode('utf-8')[:MAX_PASSWORD_BYTES], hashed.encode('utf-8'))
    except ValueError as e:
        logger.warning(f"Password check failed on malformed hash: {e}")
        return False


# Session tokens
def create_access_token(user_id: int, role: str, expires_delta: Optional[timedelta] = None) -> str:
    settings = get_settings()
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=settings.jwt_expire_minutes))
    payload = {"sub": str(user_id), "role": role, "exp": expire}
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> dict:
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        raise AuthError("Invalid or expired token")
    if "sub" not in payload:
        raise AuthError("Invalid or expired token")
    return payload


# OTP
def generate_otp() -> str:
    return ''.join(secrets.choice("0123456789") for _ in range(6))


def otp_expiry() -> datetime:
    return datetime.utcnow() + timedelta(minutes=get_settings().otp_expire_minutes)


def is_otp_valid(expiry: Optional[datetime], now: Optional[datetime] = None) -> bool:
    if expiry is None:
        return False
    return (now or datetime.utcnow()) <= expiry


# Delivery
def send_otp_email(to_email: str, otp: str) -> bool:
    """Send OTP via SMTP. Returns True if sent, False otherwise."""
    settings = get_settings()
    if not settings.smtp_configured():
        logger.info(f"[OTP] Email not configured. OTP for {to_email}: {otp}")
        return False

    try:
        msg = MIMEMultipart()
        msg["From"] = settings.smtp_email
        msg["To"] = to_email
        msg["Subject"] = "AreAssist - Your Verification Code"

        body = f"""
        <html>
        <body style="font-family: Arial, sans-serif; background: #f8fafc; color: #0f172a; padding: 40px;">
            <div style="max-width: 400px; margin: 0 auto; background: #ffffff; border-radius: 16px; padding: 40px; border: 1px solid #e2e8f0;">
                <h2 style="text-align: center; color: #059669;">AreAssist</h2>
                <p style="text-align: center; color: #64748b;">Your verification code is:</p>
                <div style="text-align: center; font-size: 36px; font-weight: 900; letter-spacing: 12px; color: #059669; padding: 20px; background: #ecfdf5; border-radius: 12px; margin: 20px 0;">
                    {otp}
                </div>
                <p style="text-align: center; font-size: 13px; color: #64748b;">This code expires in {settings.otp_expire_minutes} minutes.</p>
            </div>
        </body>
        </html>
        """
        msg.attach(MIMEText(body, "html"))

        with smtplib.SMTP(settings.smtp_host, settings.smtp_port) as server:
            server.starttls()
            server.login(settings.smtp_email, settings.smtp_password)
            server.send_message(msg)
        logger.info(f"[OTP] Email sent to {to_email}")
        return True
    except (smtplib.SMTPException, OSError) as e:
        logger.error(f"[OTP] Email to {to_email} failed: {e}")
        return False


def send_otp_sms(phone_number: str, otp: str) -> bool:
    """Send OTP via Twilio. Returns True if sent, False otherwise."""
    settings = get_settings()
    if not settings.twilio_configured():
        logger.info(f"[OTP] Twilio not configured. OTP for SMS {phone_number}: {otp}")
        return False

    try:
        client = TwilioClient(settings.twilio_account_sid, settings.twilio_auth_token)
        client.messages.create(
            to=phone_number,
            from_=settings.twilio_phone_number,
            body=f"Your AreAssist verification code is {otp}. It expires in {settings.otp_expire_minutes} minutes.",
        )
        logger.info(f"[OTP] SMS sent to {phone_number}")
        return True
    except Exception as e:
        logger.error(f"[OTP] SMS to {phone_number} failed: {e}")
        return False
