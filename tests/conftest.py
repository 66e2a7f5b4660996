"""
Shared fixtures: a fresh SQLite database per test, a temporary upload
directory, and helpers to create users with session tokens.
"""

import io
import os
import tempfile

import pytest

# Must be set before the app module is imported (static mount, CORS, secrets)
os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="areassist-uploads-")
os.environ["DATABASE_URL"] = "sqlite:///" + os.path.join(tempfile.mkdtemp(prefix="areassist-db-"), "boot.db")
os.environ["ADMIN_SECRET"] = "test-admin-secret"
os.environ["ADMIN_EMAILS"] = "chief@areassist.in"
os.environ["FIREBASE_PROJECT_ID"] = "areassist-test"
os.environ["GEMINI_API_KEY"] = ""
os.environ["SMTP_EMAIL"] = ""
os.environ["SMTP_PASSWORD"] = ""
os.environ["TWILIO_ACCOUNT_SID"] = ""
os.environ["OTP_DEMO_MODE"] = "false"

from fastapi.testclient import TestClient  # noqa: E402
from starlette.datastructures import Headers, UploadFile  # noqa: E402

from areassist import database, models  # noqa: E402
from areassist.auth import create_access_token, hash_password  # noqa: E402
from areassist.config import get_settings  # noqa: E402
from areassist.main import app  # noqa: E402

JPEG_BYTES = b"\xff\xd8\xff\xe0\x00\x10JFIF\x00" + b"\x00" * 256 + b"\xff\xd9"

VALID_ISSUE = {
    "title": "Broken streetlight on Oak Ave",
    "description": "The streetlight at the corner of Oak and 5th has been out for a week, creating a safety hazard at night.",
    "category": "Public Lighting",
    "location": "Chennai",
}


@pytest.fixture(autouse=True)
def fresh_database(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'test.db'}")
    get_settings.cache_clear()
    database.reset_engine()
    database.init_db()
    yield
    database.reset_engine()
    get_settings.cache_clear()


@pytest.fixture
def db():
    session = database.SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make(role="citizen", **fields):
        counter["n"] += 1
        defaults = {
            "name": f"{role.title()} {counter['n']}",
            "email": f"{role}{counter['n']}@areassist.in",
            "password_hash": hash_password("secret123"),
            "role": role,
        }
        if role == "volunteer":
            defaults.update({
                "district": "Chennai",
                "phone": "+919876543210",
                "phone_verified": True,
                "skills": "Electrical",
                "availability": "Weekends",
                "experience": "Two years of community repair work",
                "transportation": "Bike",
                "profile_completed": True,
            })
        defaults.update(fields)
        user = models.User(**defaults)
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


def auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token(user.id, user.role)}"}


def jpeg(name="photo.jpg"):
    return {"image": (name, io.BytesIO(JPEG_BYTES), "image/jpeg")}


def upload_file(data=JPEG_BYTES, filename="photo.jpg", content_type="image/jpeg"):
    return UploadFile(file=io.BytesIO(data), filename=filename, headers=Headers({"content-type": content_type}))


@pytest.fixture
def citizen(make_user):
    return make_user("citizen", district="Chennai")


@pytest.fixture
def volunteer(make_user):
    return make_user("volunteer")


@pytest.fixture
def admin(make_user):
    return make_user("admin")


@pytest.fixture
def issue(client, citizen):
    response = client.post("/issues", data=VALID_ISSUE, files=jpeg(), headers=auth_headers(citizen))
    assert response.status_code == 201
    return response.json()["issue"]
