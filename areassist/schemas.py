"""
Request models for the JSON endpoints.

Multipart endpoints (issue submission and resolution) are validated in
`lifecycle.py` because the image is part of the precondition set.
"""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from .models import OtpChannel


class _Request(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, populate_by_name=True)


class RegisterRequest(_Request):
    name: str = Field(min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(min_length=6, max_length=128)
    role: Literal["citizen", "volunteer"] = "citizen"
    district: Optional[str] = Field(default=None, max_length=100)


class LoginRequest(_Request):
    email: EmailStr
    password: str = Field(min_length=1)


class ProfileUpdate(_Request):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    district: Optional[str] = Field(default=None, max_length=100)
    profile_picture: Optional[str] = None
    skills: Optional[str] = None
    availability: Optional[str] = Field(default=None, max_length=50)
    experience: Optional[str] = None
    transportation: Optional[str] = Field(default=None, max_length=50)
    emergency_contact: Optional[str] = Field(default=None, max_length=100)
    emergency_phone: Optional[str] = Field(default=None, max_length=32)


class VolunteerProfileRequest(_Request):
    district: str = Field(min_length=1, max_length=100)
    phone: str = Field(min_length=1, max_length=32)
    skills: str = Field(min_length=1)
    availability: str = Field(min_length=1, max_length=50)
    experience: str = Field(min_length=1)
    transportation: str = Field(min_length=1, max_length=50)
    emergency_contact: Optional[str] = Field(default=None, max_length=100)
    emergency_phone: Optional[str] = Field(default=None, max_length=32)


class OtpRequest(_Request):
    channel: OtpChannel
    destination: str = Field(min_length=1, max_length=200)


class OtpVerifyRequest(OtpRequest):
    code: str = Field(pattern=r"^\d{6}$")


class StatusUpdate(_Request):
    status: Literal["Pending", "In Progress", "Resolved"]


class NoteRequest(_Request):
    note: str = Field(min_length=1, max_length=1000)
    keep_in_progress: Optional[bool] = Field(default=None, alias="keepInProgress")
    # Older clients send the target status instead of the flag
    status: Optional[Literal["Pending", "In Progress"]] = None

    def keeps_in_progress(self) -> bool:
        if self.keep_in_progress is not None:
            return self.keep_in_progress
        return self.status == "In Progress"


class RoleCheckRequest(_Request):
    uid: str = Field(min_length=1)
    email: Optional[EmailStr] = None


class FederatedSyncRequest(_Request):
    selected_role: Optional[Literal["citizen", "volunteer"]] = Field(default=None, alias="selectedRole")
    display_name: Optional[str] = Field(default=None, alias="displayName")
    photo_url: Optional[str] = Field(default=None, alias="photoURL")


class AdminLoginRequest(_Request):
    email: Optional[EmailStr] = None
    password: Optional[str] = None
    id_token: Optional[str] = Field(default=None, alias="idToken")


class VerifyUserRequest(_Request):
    verified: bool = True


class ReopenRequest(_Request):
    reason: Optional[str] = Field(default=None, max_length=500)


class FeedbackRequest(_Request):
    name: Optional[str] = Field(default=None, max_length=100)
    message: str = Field(min_length=1, max_length=2000)
