import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from . import models
from .database import unit_of_work

logger = logging.getLogger(__name__)


def submit_feedback(db: Session, name: Optional[str], message: str) -> models.Feedback:
    entry = models.Feedback(name=name or "Anonymous", message=message)
    with unit_of_work(db):
        db.add(entry)
    logger.info(f"Feedback #{entry.id} received")
    return entry


def list_feedback(db: Session) -> List[models.Feedback]:
    return db.query(models.Feedback).order_by(models.Feedback.created_at.desc(), models.Feedback.id.desc()).all()
