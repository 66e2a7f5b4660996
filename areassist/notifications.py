"""
Notification dispatcher.

`create_notification` only adds the row to the session so the lifecycle
manager can commit it together with the issue change. The read/delete
helpers commit on their own.
"""

import logging
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from . import models
from .database import unit_of_work
from .errors import NotFoundError

logger = logging.getLogger(__name__)

TYPE_VOLUNTEER_UPDATE = "volunteer_update"
TYPE_VOLUNTEER_NOTE = "volunteer_note"
TYPE_RESOLVED = "resolved"
TYPE_REOPENED = "reopened"


def create_notification(
    db: Session,
    recipient_id: int,
    issue_id: int,
    title: str,
    message: str,
    type: str = TYPE_VOLUNTEER_UPDATE,
    volunteer_id: Optional[int] = None,
) -> models.Notification:
    notification = models.Notification(
        user_id=recipient_id,
        issue_id=issue_id,
        volunteer_id=volunteer_id,
        title=title,
        message=message,
        type=type,
        is_read=False,
    )
    db.add(notification)
    logger.info(f"Notification '{type}' queued for user {recipient_id} on issue {issue_id}")
    return notification


def list_for_user(db: Session, user_id: int) -> List[models.Notification]:
    return (
        db.query(models.Notification)
        .filter(models.Notification.user_id == user_id)
        .order_by(models.Notification.created_at.desc(), models.Notification.id.desc())
        .all()
    )


def _owned(db: Session, user_id: int, notification_id: int) -> models.Notification:
    notification = (
        db.query(models.Notification)
        .filter(models.Notification.id == notification_id, models.Notification.user_id == user_id)
        .first()
    )
    if notification is None:
        raise NotFoundError(f"Notification #{notification_id} not found")
    return notification


def mark_read(db: Session, user_id: int, notification_id: int) -> models.Notification:
    notification = _owned(db, user_id, notification_id)
    if not notification.is_read:
        with unit_of_work(db):
            notification.is_read = True
    return notification


def mark_all_read(db: Session, user_id: int) -> int:
    with unit_of_work(db):
        changed = (
            db.query(models.Notification)
            .filter(models.Notification.user_id == user_id, models.Notification.is_read.is_(False))
            .update({models.Notification.is_read: True}, synchronize_session=False)
        )
    return changed


def delete_notification(db: Session, user_id: int, notification_id: int) -> bool:
    """Delete one notification; returns True if it was still unread."""
    notification = _owned(db, user_id, notification_id)
    was_unread = not notification.is_read
    with unit_of_work(db):
        db.delete(notification)
    return was_unread


def unread_count(db: Session, user_id: int) -> int:
    return (
        db.query(func.count(models.Notification.id))
        .filter(models.Notification.user_id == user_id, models.Notification.is_read.is_(False))
        .scalar()
    )
