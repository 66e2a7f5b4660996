"""
Configuration for the AreAssist backend
=======================================

Environment variables (also read from .env):
- DATABASE_URL: SQLAlchemy URL (default: sqlite:///./areassist.db)
- PORT: port used by `python -m areassist` (default: 5000)
- FRONTEND_URL: allowed CORS origin (default: http://localhost:3000)
- SESSION_SECRET: signs the admin cookie session
- JWT_SECRET_KEY / JWT_EXPIRE_MINUTES: local session tokens
- ADMIN_SECRET: X-Admin-Secret override for admin endpoints
- ADMIN_EMAILS: comma separated emails allowed to sign in as admin via the identity provider
- UPLOAD_DIR / MAX_UPLOAD_BYTES: image uploads
- OTP_EXPIRE_MINUTES / OTP_DEMO_MODE: one-time codes
- SMTP_* / TWILIO_*: OTP delivery
- GEMINI_API_KEY: image verification
- FIREBASE_PROJECT_ID: federated sign-in audience
"""

from functools import lru_cache
from typing import List, Optional

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

# Third-party SDKs (google-auth, twilio) read os.environ directly
load_dotenv()


class Settings(BaseSettings):
    """Application settings from environment variables"""

    database_url: str = "sqlite:///./areassist.db"
    sql_echo: bool = False

    port: int = 5000
    frontend_url: str = "http://localhost:3000"

    session_secret: str = "areassist-session-secret-change-in-prod"
    jwt_secret_key: str = "areassist-jwt-secret-change-in-prod"
    jwt_algorithm: str = "HS256"
    jwt_expire_minutes: int = 24 * 60

    admin_secret: Optional[str] = None
    admin_emails: str = ""

    upload_dir: str = "./uploads"
    max_upload_bytes: int = 10 * 1024 * 1024

    otp_expire_minutes: int = 5
    otp_demo_mode: bool = False

    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 587
    smtp_email: str = ""
    smtp_password: str = ""

    twilio_account_sid: Optional[str] = None
    twilio_auth_token: Optional[str] = None
    twilio_phone_number: Optional[str] = None

    gemini_api_key: str = ""
    gemini_model: str = "gemini-2.0-flash"

    firebase_project_id: Optional[str] = None

    model_config = SettingsConfigDict(
        env_prefix="",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def sqlalchemy_url(self) -> str:
        # Render/Heroku hand out 'postgres://' URLs
        if self.database_url.startswith("postgres://"):
            return self.database_url.replace("postgres://", "postgresql://", 1)
        return self.database_url

    def admin_email_list(self) -> List[str]:
        return [e.strip().lower() for e in self.admin_emails.split(",") if e.strip()]

    def smtp_configured(self) -> bool:
        return bool(self.smtp_email and self.smtp_password)

    def twilio_configured(self) -> bool:
        return bool(self.twilio_account_sid and self.twilio_auth_token and self.twilio_phone_number)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
