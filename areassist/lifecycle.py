"""
Issue Lifecycle
===============

Owns every status change of an Issue and the notifications it causes.

    Pending ──claim──▶ In Progress ──resolve──▶ Resolved
       ▲                    │                      │
       └──annotate(keep=no)─┘                      │
       ▲                                           │
       └──────────────── reopen (admin) ───────────┘

`Resolved` is terminal for volunteers; only an admin reopen leaves it.
Each transition and its notification are committed together.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional

from fastapi import UploadFile
from sqlalchemy.orm import Session

from . import models, notifications, storage, verification
from .database import unit_of_work
from .errors import ConflictError, NotFoundError, ValidationError
from .models import IssueStatus

logger = logging.getLogger(__name__)

TITLE_MIN, TITLE_MAX = 5, 100
DESCRIPTION_MIN, DESCRIPTION_MAX = 20, 1000
NOTE_MAX = 1000


# ══════════════════════════════════════
#   VALIDATION
# ══════════════════════════════════════

def _parse_coordinate(raw, field: str, limit: float, errors: list) -> Optional[float]:
    if raw is None or str(raw).strip() == "":
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        errors.append((field, f"{field.capitalize()} must be a number"))
        return None
    if not -limit <= value <= limit:
        errors.append((field, f"{field.capitalize()} must be between -{limit:g} and {limit:g}"))
        return None
    return value


def validate_submission(title, description, category, location, image, latitude=None, longitude=None) -> dict:
    """Check every submission precondition; raise one ValidationError listing all failures."""
    errors = []
    title = (title or "").strip()
    description = (description or "").strip()
    category = (category or "").strip()
    location = (location or "").strip()

    if not TITLE_MIN <= len(title) <= TITLE_MAX:
        errors.append(("title", f"Title must be between {TITLE_MIN} and {TITLE_MAX} characters"))
    if not DESCRIPTION_MIN <= len(description) <= DESCRIPTION_MAX:
        errors.append(("description", f"Description must be between {DESCRIPTION_MIN} and {DESCRIPTION_MAX} characters"))
    if not category:
        errors.append(("category", "Category is required"))
    if not location:
        errors.append(("location", "Location is required"))

    image_error = storage.image_problem(image)
    if image_error:
        errors.append(("image", image_error))

    lat = _parse_coordinate(latitude, "latitude", 90, errors)
    lon = _parse_coordinate(longitude, "longitude", 180, errors)

    if errors:
        raise ValidationError(errors)

    return {
        "title": title,
        "description": description,
        "category": category,
        "location": location,
        "latitude": lat,
        "longitude": lon,
    }


# ══════════════════════════════════════
#   QUERIES
# ══════════════════════════════════════

def get_issue(db: Session, issue_id: int) -> models.Issue:
    issue = db.query(models.Issue).filter(models.Issue.id == issue_id).first()
    if issue is None:
        raise NotFoundError(f"Issue #{issue_id} not found")
    return issue


def list_issues(
    db: Session,
    user_id: Optional[int] = None,
    status: Optional[str] = None,
    district: Optional[str] = None,
) -> List[models.Issue]:
    query = db.query(models.Issue)
    if user_id is not None:
        query = query.filter(models.Issue.user_id == user_id)
    if status:
        query = query.filter(models.Issue.status == status)
    if district:
        query = query.filter(models.Issue.location.ilike(f"%{district.strip()}%"))
    return query.order_by(models.Issue.created_at.desc(), models.Issue.id.desc()).all()


def available_issues(db: Session, volunteer: models.User) -> List[models.Issue]:
    """Open issues in the volunteer's district (all open issues if no district is set)."""
    query = db.query(models.Issue).filter(models.Issue.status != IssueStatus.RESOLVED.value)
    if volunteer.district:
        query = query.filter(models.Issue.location.ilike(f"%{volunteer.district.strip()}%"))
    return query.order_by(models.Issue.created_at.desc(), models.Issue.id.desc()).all()


def district_stats(db: Session) -> List[Dict]:
    stats: Dict[str, Dict] = {}
    for issue in db.query(models.Issue).all():
        row = stats.setdefault(issue.location, {
            "district": issue.location, "total": 0, "pending": 0, "in_progress": 0, "resolved": 0,
        })
        row["total"] += 1
        if issue.status == IssueStatus.PENDING.value:
            row["pending"] += 1
        elif issue.status == IssueStatus.IN_PROGRESS.value:
            row["in_progress"] += 1
        else:
            row["resolved"] += 1
    return sorted(stats.values(), key=lambda r: r["total"], reverse=True)


def dashboard_stats(db: Session) -> Dict:
    issues = db.query(models.Issue).all()

    category_stats: Dict[str, int] = {}
    verification_stats = {"verified": 0, "flagged": 0, "skipped": 0, "error": 0, "none": 0}
    flagged = []
    for i in issues:
        category_stats[i.category] = category_stats.get(i.category, 0) + 1
        for result in (i.image_verification, i.resolution_verification):
            if not result:
                continue
            status = result.get("status", "none")
            verification_stats[status] = verification_stats.get(status, 0) + 1
        if any(r and r.get("needs_review") for r in (i.image_verification, i.resolution_verification)):
            flagged.append({"id": i.id, "title": i.title, "status": i.status})
        if not i.image_verification:
            verification_stats["none"] += 1

    return {
        "total": len(issues),
        "pending_count": sum(1 for i in issues if i.status == IssueStatus.PENDING.value),
        "in_progress_count": sum(1 for i in issues if i.status == IssueStatus.IN_PROGRESS.value),
        "resolved_count": sum(1 for i in issues if i.status == IssueStatus.RESOLVED.value),
        "district_stats": district_stats(db),
        "category_stats": [{"category": k, "count": v} for k, v in category_stats.items()],
        "verification_stats": verification_stats,
        "flagged_issues": flagged,
    }


def user_stats(db: Session, user: models.User) -> Dict:
    reported = db.query(models.Issue).filter(models.Issue.user_id == user.id).all()
    stats = {
        "reported": len(reported),
        "pending": sum(1 for i in reported if i.status == IssueStatus.PENDING.value),
        "in_progress": sum(1 for i in reported if i.status == IssueStatus.IN_PROGRESS.value),
        "resolved": sum(1 for i in reported if i.status == IssueStatus.RESOLVED.value),
    }
    if user.role == models.Role.VOLUNTEER.value:
        stats["claimed"] = db.query(models.Issue).filter(models.Issue.assigned_volunteer_id == user.id).count()
        stats["resolved_by_me"] = db.query(models.Issue).filter(models.Issue.resolved_by == user.id).count()
    return stats


# ══════════════════════════════════════
#   TRANSITIONS
# ══════════════════════════════════════

def submit_issue(
    db: Session,
    reporter: models.User,
    title: str,
    description: str,
    category: str,
    location: str,
    image: Optional[UploadFile],
    latitude=None,
    longitude=None,
) -> models.Issue:
    fields = validate_submission(title, description, category, location, image, latitude, longitude)

    image_url = storage.save_upload(image)
    try:
        check = verification.verify_issue_image(storage.path_for_url(image_url), fields["category"], fields["description"])
        issue = models.Issue(
            **fields,
            image_url=image_url,
            user_id=reporter.id,
            status=IssueStatus.PENDING.value,
            image_verification=check,
            image_verification_confidence=check.get("confidence"),
            reopen_count=0,
        )
        with unit_of_work(db):
            db.add(issue)
    except Exception:
        storage.remove_upload(image_url)
        raise

    logger.info(f"Issue #{issue.id} submitted by user {reporter.id} ({issue.category}, {issue.location})")
    return issue


def _ensure_open(issue: models.Issue, action: str):
    if issue.status == IssueStatus.RESOLVED.value:
        raise ConflictError(f"Issue #{issue.id} is resolved and cannot be {action}; an admin must reopen it first")


def claim_issue(db: Session, volunteer: models.User, issue_id: int) -> models.Issue:
    issue = get_issue(db, issue_id)
    _ensure_open(issue, "claimed")
    with unit_of_work(db):
        issue.status = IssueStatus.IN_PROGRESS.value
        issue.assigned_volunteer_id = volunteer.id
    logger.info(f"Issue #{issue.id} claimed by volunteer {volunteer.id}")
    return issue


def update_status(db: Session, volunteer: models.User, issue_id: int, status: str) -> models.Issue:
    if status == IssueStatus.RESOLVED.value:
        raise ValidationError([("status", "Resolving an issue requires a photo; use the resolve action")])
    if status == IssueStatus.IN_PROGRESS.value:
        return claim_issue(db, volunteer, issue_id)

    issue = get_issue(db, issue_id)
    _ensure_open(issue, "updated")
    with unit_of_work(db):
        issue.status = IssueStatus.PENDING.value
    logger.info(f"Issue #{issue.id} returned to Pending by volunteer {volunteer.id}")
    return issue


def annotate_issue(
    db: Session,
    volunteer: models.User,
    issue_id: int,
    note: str,
    keep_in_progress: bool,
) -> models.Issue:
    note = (note or "").strip()
    if not note or len(note) > NOTE_MAX:
        raise ValidationError([("note", f"Note must be between 1 and {NOTE_MAX} characters")])

    issue = get_issue(db, issue_id)
    _ensure_open(issue, "annotated")

    with unit_of_work(db):
        issue.volunteer_note = note
        issue.status = IssueStatus.IN_PROGRESS.value if keep_in_progress else IssueStatus.PENDING.value
        notifications.create_notification(
            db,
            recipient_id=issue.user_id,
            issue_id=issue.id,
            volunteer_id=volunteer.id,
            title=f"Update on your issue: {issue.title}",
            message=note,
            type=notifications.TYPE_VOLUNTEER_NOTE,
        )
    logger.info(f"Volunteer {volunteer.id} annotated issue #{issue.id}, status now {issue.status}")
    return issue


def resolve_issue(db: Session, volunteer: models.User, issue_id: int, image: Optional[UploadFile]) -> models.Issue:
    issue = get_issue(db, issue_id)
    image_error = storage.image_problem(image)
    if image_error:
        raise ValidationError([("image", image_error)])
    if issue.status == IssueStatus.RESOLVED.value:
        raise ConflictError(f"Issue #{issue.id} is already resolved")

    resolved_url = storage.save_upload(image)
    try:
        check = verification.verify_resolution_image(
            storage.path_for_url(issue.image_url), storage.path_for_url(resolved_url), issue.category,
        )
        with unit_of_work(db):
            issue.status = IssueStatus.RESOLVED.value
            issue.resolved_image_url = resolved_url
            issue.resolved_at = datetime.utcnow()
            issue.resolved_by = volunteer.id
            issue.resolution_verification = check
            notifications.create_notification(
                db,
                recipient_id=issue.user_id,
                issue_id=issue.id,
                volunteer_id=volunteer.id,
                title=f"Issue resolved: {issue.title}",
                message=f"Good news! A volunteer has resolved your issue \"{issue.title}\". See the photo of the completed work.",
                type=notifications.TYPE_RESOLVED,
            )
    except Exception:
        storage.remove_upload(resolved_url)
        raise

    logger.info(f"Issue #{issue.id} resolved by volunteer {volunteer.id}")
    return issue


def reopen_issue(db: Session, admin: Optional[models.User], issue_id: int, reason: Optional[str] = None) -> models.Issue:
    issue = get_issue(db, issue_id)
    if issue.status != IssueStatus.RESOLVED.value:
        raise ConflictError(f"Issue #{issue.id} is not resolved")

    message = f"Your issue \"{issue.title}\" has been reopened for further work."
    if reason:
        message += f" Reason: {reason}"

    stale_photo = issue.resolved_image_url
    with unit_of_work(db):
        issue.status = IssueStatus.PENDING.value
        issue.resolved_at = None
        issue.resolved_by = None
        issue.resolved_image_url = None
        issue.resolution_verification = None
        issue.assigned_volunteer_id = None
        issue.reopen_count = (issue.reopen_count or 0) + 1
        issue.reopened_at = datetime.utcnow()
        notifications.create_notification(
            db,
            recipient_id=issue.user_id,
            issue_id=issue.id,
            title=f"Issue reopened: {issue.title}",
            message=message,
            type=notifications.TYPE_REOPENED,
        )
    storage.remove_upload(stale_photo)
    logger.info(f"Issue #{issue.id} reopened by admin {admin.id if admin else 'override'}")
    return issue


def delete_issue(db: Session, issue_id: int) -> None:
    issue = get_issue(db, issue_id)
    with unit_of_work(db):
        db.query(models.Notification).filter(models.Notification.issue_id == issue.id).delete(synchronize_session=False)
        db.delete(issue)
    logger.info(f"Issue #{issue_id} deleted")
