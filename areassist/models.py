import enum
from datetime import datetime

from sqlalchemy import Column, Integer, String, Text, TIMESTAMP, Float, Boolean, ForeignKey, JSON

from .database import Base


class Role(str, enum.Enum):
    CITIZEN = "citizen"
    VOLUNTEER = "volunteer"
    ADMIN = "admin"


class IssueStatus(str, enum.Enum):
    PENDING = "Pending"
    IN_PROGRESS = "In Progress"
    RESOLVED = "Resolved"


class OtpChannel(str, enum.Enum):
    PHONE = "phone"
    EMAIL = "email"


class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100))
    email = Column(String(200), unique=True, nullable=False)
    password_hash = Column(Text, nullable=True)
    role = Column(String(20), default=Role.CITIZEN.value, nullable=False)
    district = Column(String(100), nullable=True)
    firebase_uid = Column(String(128), unique=True, nullable=True)
    profile_picture = Column(Text, nullable=True)
    email_verified = Column(Boolean, default=False)
    phone_verified = Column(Boolean, default=False)
    phone = Column(String(32), nullable=True)
    # Volunteer-only profile
    skills = Column(Text, nullable=True)
    availability = Column(String(50), nullable=True)
    experience = Column(Text, nullable=True)
    transportation = Column(String(50), nullable=True)
    emergency_contact = Column(String(100), nullable=True)
    emergency_phone = Column(String(32), nullable=True)
    profile_completed = Column(Boolean, default=False)
    verified = Column(Boolean, default=False)
    last_login = Column(TIMESTAMP, nullable=True)
    created_at = Column(TIMESTAMP, default=datetime.utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "district": self.district,
            "firebase_uid": self.firebase_uid,
            "profile_picture": self.profile_picture,
            "email_verified": bool(self.email_verified),
            "phone_verified": bool(self.phone_verified),
            "phone": self.phone,
            "skills": self.skills,
            "availability": self.availability,
            "experience": self.experience,
            "transportation": self.transportation,
            "emergency_contact": self.emergency_contact,
            "emergency_phone": self.emergency_phone,
            "profile_completed": bool(self.profile_completed),
            "verified": bool(self.verified),
            "last_login": _iso(self.last_login),
            "created_at": _iso(self.created_at),
        }


class Issue(Base):
    __tablename__ = "issues"
    id = Column(Integer, primary_key=True)
    title = Column(String(100), nullable=False)
    description = Column(Text, nullable=False)
    category = Column(String(50), nullable=False)
    location = Column(String(200), nullable=False)
    image_url = Column(Text, nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    status = Column(String(20), default=IssueStatus.PENDING.value, nullable=False)
    assigned_volunteer_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    resolved_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    resolved_image_url = Column(Text, nullable=True)
    volunteer_note = Column(Text, nullable=True)
    image_verification = Column(JSON, nullable=True)
    image_verification_confidence = Column(Float, nullable=True)
    resolution_verification = Column(JSON, nullable=True)
    reopen_count = Column(Integer, default=0, nullable=False)
    reopened_at = Column(TIMESTAMP, nullable=True)
    created_at = Column(TIMESTAMP, default=datetime.utcnow)
    resolved_at = Column(TIMESTAMP, nullable=True)
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "category": self.category,
            "location": self.location,
            "image_url": self.image_url,
            "user_id": self.user_id,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "status": self.status,
            "assigned_volunteer_id": self.assigned_volunteer_id,
            "resolved_by": self.resolved_by,
            "resolved_image_url": self.resolved_image_url,
            "volunteer_note": self.volunteer_note,
            "image_verification": self.image_verification,
            "image_verification_confidence": self.image_verification_confidence,
            "resolution_verification": self.resolution_verification,
            "reopen_count": self.reopen_count or 0,
            "reopened_at": _iso(self.reopened_at),
            "created_at": _iso(self.created_at),
            "resolved_at": _iso(self.resolved_at),
        }


class Notification(Base):
    __tablename__ = "notifications"
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    issue_id = Column(Integer, ForeignKey("issues.id"), nullable=False)
    volunteer_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    title = Column(Text, nullable=False)
    message = Column(Text, nullable=False)
    type = Column(String(30), default="volunteer_update", nullable=False)
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(TIMESTAMP, default=datetime.utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "issue_id": self.issue_id,
            "volunteer_id": self.volunteer_id,
            "title": self.title,
            "message": self.message,
            "type": self.type,
            "is_read": bool(self.is_read),
            "created_at": _iso(self.created_at),
        }


class OtpChallenge(Base):
    __tablename__ = "otps"
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    channel = Column(String(10), nullable=False)
    destination = Column(String(200), nullable=False)
    code = Column(String(6), nullable=False)
    expires_at = Column(TIMESTAMP, nullable=False)
    used = Column(Boolean, default=False, nullable=False)
    created_at = Column(TIMESTAMP, default=datetime.utcnow)


class Feedback(Base):
    __tablename__ = "feedback"
    id = Column(Integer, primary_key=True)
    name = Column(String(100))
    message = Column(Text, nullable=False)
    created_at = Column(TIMESTAMP, default=datetime.utcnow)

    def to_dict(self):
        return {"id": self.id, "name": self.name, "message": self.message, "created_at": _iso(self.created_at)}


def _iso(value):
    return value.isoformat() if value else None
