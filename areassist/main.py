import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, UploadFile, Form, Depends, Request, File, Query
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy.orm import Session
from starlette.middleware.sessions import SessionMiddleware

from . import feedback, identity, lifecycle, models, notifications, otp, schemas
from .auth import create_access_token, hash_password, verify_password
from .config import get_settings
from .database import get_db, init_db, unit_of_work
from .dependencies import ADMIN_SESSION_KEY, get_bearer_token, get_current_user, require_admin, require_volunteer
from .errors import AppError, AuthError, ConflictError, NotFoundError, ValidationError
from .models import Role

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

settings = get_settings()
UPLOAD_DIR = Path(settings.upload_dir)
UPLOAD_DIR.mkdir(parents=True, exist_ok=True)

app = FastAPI(title="AreAssist", description="Citizen issue reporting and volunteer coordination API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_url.rstrip("/"), "http://localhost:3001"],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Requested-With", "X-Admin-Secret"],
)
app.add_middleware(SessionMiddleware, secret_key=settings.session_secret, max_age=24 * 60 * 60)
app.mount("/uploads", StaticFiles(directory=UPLOAD_DIR), name="uploads")


@app.on_event("startup")
def startup_event():
    init_db()
    logger.info(f"Database ready, uploads served from {UPLOAD_DIR.resolve()}, frontend {settings.frontend_url}")


# ══════════════════════════════════════
#   ERROR HANDLERS
# ══════════════════════════════════════

@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        field = loc[-1] if loc else "body"
        errors.append((field, f"{field}: {err.get('msg')}"))
    return JSONResponse(status_code=400, content=ValidationError(errors).to_dict())


def _session_payload(user: models.User) -> dict:
    return {
        "token": create_access_token(user.id, user.role),
        "user": user.to_dict(),
        "needsProfileCompletion": user.role == Role.VOLUNTEER.value and not user.profile_completed,
    }


@app.get("/health")
def health():
    return {"status": "ok", "timestamp": datetime.utcnow().isoformat()}


# ══════════════════════════════════════
#   AUTH ROUTES
# ══════════════════════════════════════

@app.post("/auth/register", status_code=201)
def register(data: schemas.RegisterRequest, db: Session = Depends(get_db)):
    email = data.email.lower()
    existing = db.query(models.User).filter(models.User.email == email).first()
    if existing:
        raise ConflictError("Email already registered")

    user = models.User(
        name=data.name,
        email=email,
        password_hash=hash_password(data.password),
        role=data.role,
        district=data.district or None,
        profile_completed=False,
        last_login=datetime.utcnow(),
    )
    with unit_of_work(db):
        db.add(user)
    logger.info(f"Registered {user.role} user {user.id}")
    return _session_payload(user)


@app.post("/auth/login")
def login(data: schemas.LoginRequest, db: Session = Depends(get_db)):
    user = db.query(models.User).filter(models.User.email == data.email.lower()).first()
    if not user or not verify_password(data.password, user.password_hash):
        raise AuthError("Invalid email or password")

    with unit_of_work(db):
        user.last_login = datetime.utcnow()
    return _session_payload(user)


@app.get("/auth/profile")
def get_profile(user: models.User = Depends(get_current_user)):
    return {"user": user.to_dict(), "profile_completion": identity.profile_completion(user)}


@app.put("/auth/profile")
def update_profile(
    data: schemas.ProfileUpdate,
    user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    changes = data.model_dump(exclude_unset=True)
    with unit_of_work(db):
        for field, value in changes.items():
            setattr(user, field, value)
        if user.role == Role.VOLUNTEER.value and not identity.profile_completion(user)["is_complete"]:
            user.profile_completed = False
    return {"user": user.to_dict(), "profile_completion": identity.profile_completion(user)}


@app.get("/auth/profile/stats")
def profile_stats(user: models.User = Depends(get_current_user), db: Session = Depends(get_db)):
    return lifecycle.user_stats(db, user)


@app.post("/firebase-auth/check-role-selection")
def check_role_selection(data: schemas.RoleCheckRequest, db: Session = Depends(get_db)):
    needs_selection, user = identity.check_role_selection(db, data.uid, data.email)
    # Unauthenticated: expose nothing beyond the role
    return {"needsRoleSelection": needs_selection, "role": user.role if user else None}


@app.post("/firebase-auth/firebase-sync")
def firebase_sync(
    data: Optional[schemas.FederatedSyncRequest] = None,
    token: str = Depends(get_bearer_token),
    db: Session = Depends(get_db),
):
    data = data or schemas.FederatedSyncRequest()
    session_token, user, created = identity.sync_user(
        db, token, selected_role=data.selected_role, display_name=data.display_name, photo_url=data.photo_url,
    )
    return {
        "token": session_token,
        "user": user.to_dict(),
        "created": created,
        "needsProfileCompletion": user.role == Role.VOLUNTEER.value and not user.profile_completed,
    }


# ══════════════════════════════════════
#   VOLUNTEER ROUTES
# ══════════════════════════════════════

@app.post("/volunteers/request-otp")
def request_otp(data: schemas.OtpRequest, user: models.User = Depends(get_current_user), db: Session = Depends(get_db)):
    challenge, delivered = otp.request_challenge(db, user, data.channel, data.destination)
    response = {
        "message": f"Verification code sent via {data.channel.value}",
        "delivered": delivered,
        "expires_at": challenge.expires_at.isoformat(),
    }
    # For demo: show OTP if no delivery channel is configured
    if not delivered and get_settings().otp_demo_mode:
        response["demo_otp"] = challenge.code
    return response


@app.post("/volunteers/verify-otp")
def verify_otp(data: schemas.OtpVerifyRequest, user: models.User = Depends(get_current_user), db: Session = Depends(get_db)):
    otp.verify_challenge(db, user, data.channel, data.destination, data.code)
    return {"message": f"{data.channel.value.capitalize()} verified", "user": user.to_dict()}


@app.post("/volunteers/complete-profile")
def complete_profile(
    data: schemas.VolunteerProfileRequest,
    user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    identity.complete_volunteer_profile(db, user, data.model_dump())
    return {"message": "Profile completed", "user": user.to_dict()}


@app.get("/volunteers/available-issues")
def available_issues(user: models.User = Depends(require_volunteer), db: Session = Depends(get_db)):
    issues = lifecycle.available_issues(db, user)
    return {"district": user.district, "issues": [i.to_dict() for i in issues]}


# ══════════════════════════════════════
#   ISSUE ROUTES
# ══════════════════════════════════════

@app.post("/issues", status_code=201)
@app.post("/issues/upload", status_code=201)
def report_issue(
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    category: Optional[str] = Form(None),
    location: Optional[str] = Form(None),
    latitude: Optional[str] = Form(None),
    longitude: Optional[str] = Form(None),
    image: Optional[UploadFile] = File(None),
    user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    issue = lifecycle.submit_issue(
        db, user,
        title=title, description=description, category=category, location=location,
        image=image, latitude=latitude, longitude=longitude,
    )
    return {"message": "Issue reported successfully", "issue": issue.to_dict()}


@app.get("/issues")
def list_issues(
    user_id: Optional[int] = Query(None, alias="userId"),
    status: Optional[models.IssueStatus] = None,
    district: Optional[str] = None,
    db: Session = Depends(get_db),
):
    issues = lifecycle.list_issues(db, user_id=user_id, status=status.value if status else None, district=district)
    return [i.to_dict() for i in issues]


@app.get("/issues/district-stats")
def issue_district_stats(db: Session = Depends(get_db)):
    return lifecycle.district_stats(db)


@app.get("/issues/{issue_id}")
def get_issue(issue_id: int, db: Session = Depends(get_db)):
    return lifecycle.get_issue(db, issue_id).to_dict()


@app.put("/issues/{issue_id}")
def update_issue_status(
    issue_id: int,
    data: schemas.StatusUpdate,
    user: models.User = Depends(require_volunteer),
    db: Session = Depends(get_db),
):
    issue = lifecycle.update_status(db, user, issue_id, data.status)
    return {"message": f"Issue #{issue.id} is now {issue.status}", "issue": issue.to_dict()}


@app.post("/issues/{issue_id}/resolve")
def resolve_issue(
    issue_id: int,
    image: Optional[UploadFile] = File(None),
    user: models.User = Depends(require_volunteer),
    db: Session = Depends(get_db),
):
    issue = lifecycle.resolve_issue(db, user, issue_id, image)
    return {
        "message": "Issue resolved and citizen notified!",
        "resolved_image_url": issue.resolved_image_url,
        "issue": issue.to_dict(),
    }


@app.post("/issues/{issue_id}/note")
def add_note(
    issue_id: int,
    data: schemas.NoteRequest,
    user: models.User = Depends(require_volunteer),
    db: Session = Depends(get_db),
):
    issue = lifecycle.annotate_issue(db, user, issue_id, data.note, data.keeps_in_progress())
    return {"message": "Note sent to reporter.", "issue": issue.to_dict()}


# ══════════════════════════════════════
#   NOTIFICATION ROUTES
# ══════════════════════════════════════

@app.get("/notifications")
def list_notifications(user: models.User = Depends(get_current_user), db: Session = Depends(get_db)):
    return [n.to_dict() for n in notifications.list_for_user(db, user.id)]


@app.get("/notifications/unread-count")
def unread_count(user: models.User = Depends(get_current_user), db: Session = Depends(get_db)):
    return {"count": notifications.unread_count(db, user.id)}


@app.put("/notifications/read-all")
def mark_all_read(user: models.User = Depends(get_current_user), db: Session = Depends(get_db)):
    changed = notifications.mark_all_read(db, user.id)
    return {"updated": changed, "count": notifications.unread_count(db, user.id)}


@app.put("/notifications/{notification_id}/read")
def mark_read(notification_id: int, user: models.User = Depends(get_current_user), db: Session = Depends(get_db)):
    notification = notifications.mark_read(db, user.id, notification_id)
    return {"notification": notification.to_dict(), "count": notifications.unread_count(db, user.id)}


@app.delete("/notifications/{notification_id}")
def delete_notification(notification_id: int, user: models.User = Depends(get_current_user), db: Session = Depends(get_db)):
    was_unread = notifications.delete_notification(db, user.id, notification_id)
    return {
        "message": f"Notification #{notification_id} deleted",
        "was_unread": was_unread,
        "count": notifications.unread_count(db, user.id),
    }


# ══════════════════════════════════════
#   FEEDBACK
# ══════════════════════════════════════

@app.post("/api/feedback", status_code=201)
def post_feedback(data: schemas.FeedbackRequest, db: Session = Depends(get_db)):
    entry = feedback.submit_feedback(db, data.name, data.message)
    return {"message": "Thank you for your feedback!", "feedback": entry.to_dict()}


# ══════════════════════════════════════
#   ADMIN ROUTES
# ══════════════════════════════════════

@app.post("/admin/login")
def admin_login(data: schemas.AdminLoginRequest, request: Request, db: Session = Depends(get_db)):
    if data.id_token:
        claims = identity.verify_identity_token(data.id_token)
        email = claims["email"].strip().lower()
        if email not in get_settings().admin_email_list():
            raise AuthError("This account is not an administrator")
        user = identity.find_user(db, claims.get("user_id") or claims.get("sub"), email)
        with unit_of_work(db):
            if user is None:
                user = models.User(name=claims.get("name") or "Admin", email=email, firebase_uid=claims.get("user_id") or claims.get("sub"))
                db.add(user)
            user.role = Role.ADMIN.value
            user.last_login = datetime.utcnow()
    elif data.email and data.password:
        user = db.query(models.User).filter(models.User.email == data.email.lower()).first()
        if not user or user.role != Role.ADMIN.value or not verify_password(data.password, user.password_hash):
            raise AuthError("Invalid admin credentials")
        with unit_of_work(db):
            user.last_login = datetime.utcnow()
    else:
        raise ValidationError([("credentials", "Provide an idToken or email and password")])

    request.session[ADMIN_SESSION_KEY] = user.id
    logger.info(f"Admin {user.id} logged in")
    return {"message": "Logged in", "user": user.to_dict()}


@app.post("/admin/logout")
def admin_logout(request: Request):
    request.session.clear()
    return {"message": "Logged out"}


@app.get("/admin/verification-dashboard")
def admin_dashboard(admin=Depends(require_admin), db: Session = Depends(get_db)):
    return lifecycle.dashboard_stats(db)


@app.get("/admin/citizens")
def admin_citizens(admin=Depends(require_admin), db: Session = Depends(get_db)):
    users = db.query(models.User).filter(models.User.role == Role.CITIZEN.value).order_by(models.User.id).all()
    return [u.to_dict() for u in users]


@app.get("/admin/volunteers")
def admin_volunteers(admin=Depends(require_admin), db: Session = Depends(get_db)):
    users = db.query(models.User).filter(models.User.role == Role.VOLUNTEER.value).order_by(models.User.id).all()
    return [u.to_dict() for u in users]


@app.get("/admin/issues")
def admin_issues(admin=Depends(require_admin), db: Session = Depends(get_db)):
    return [i.to_dict() for i in lifecycle.list_issues(db)]


@app.get("/admin/feedbacks")
def admin_feedbacks(admin=Depends(require_admin), db: Session = Depends(get_db)):
    return [f.to_dict() for f in feedback.list_feedback(db)]


def _user_or_404(db: Session, user_id: int) -> models.User:
    user = db.query(models.User).filter(models.User.id == user_id).first()
    if user is None:
        raise NotFoundError(f"User #{user_id} not found")
    return user


@app.get("/admin/users/{user_id}")
def admin_user(user_id: int, admin=Depends(require_admin), db: Session = Depends(get_db)):
    user = _user_or_404(db, user_id)
    return {
        "user": user.to_dict(),
        "profile_completion": identity.profile_completion(user),
        "stats": lifecycle.user_stats(db, user),
    }


@app.put("/admin/users/{user_id}/verify")
def admin_verify_user(
    user_id: int,
    data: schemas.VerifyUserRequest,
    admin=Depends(require_admin),
    db: Session = Depends(get_db),
):
    user = _user_or_404(db, user_id)
    with unit_of_work(db):
        user.verified = data.verified
    logger.info(f"User {user.id} verified={data.verified} by admin {admin.id if admin else 'override'}")
    return {"message": "User updated", "user": user.to_dict()}


@app.post("/admin/issues/{issue_id}/reopen")
def admin_reopen_issue(
    issue_id: int,
    data: Optional[schemas.ReopenRequest] = None,
    admin=Depends(require_admin),
    db: Session = Depends(get_db),
):
    issue = lifecycle.reopen_issue(db, admin, issue_id, data.reason if data else None)
    return {"message": f"Issue #{issue.id} reopened", "issue": issue.to_dict()}


@app.delete("/admin/issues/{issue_id}")
def admin_delete_issue(issue_id: int, admin=Depends(require_admin), db: Session = Depends(get_db)):
    lifecycle.delete_issue(db, issue_id)
    return {"message": f"Issue #{issue_id} deleted successfully"}
