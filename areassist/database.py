import logging
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from .config import get_settings
from .errors import ConflictError, StorageError

logger = logging.getLogger(__name__)

Base = declarative_base()

# Bound lazily so tests can point DATABASE_URL somewhere else at runtime
SessionLocal = sessionmaker(autocommit=False, autoflush=False)

_engine = None
_engine_url = None


def _create_engine_for_url(url: str, echo: bool):
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False}, echo=echo)
    return create_engine(url, pool_pre_ping=True, echo=echo)


def get_engine():
    global _engine, _engine_url
    settings = get_settings()
    url = settings.sqlalchemy_url
    if _engine is None or _engine_url != url:
        _engine = _create_engine_for_url(url, settings.sql_echo)
        _engine_url = url
        SessionLocal.configure(bind=_engine)
    return _engine


def reset_engine():
    """Drop the cached engine (tests switch databases between cases)."""
    global _engine, _engine_url
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _engine_url = None
    SessionLocal.configure(bind=None)


def init_db():
    from . import models  # noqa: F401  registers tables on Base

    Base.metadata.create_all(bind=get_engine())


def get_db() -> Generator[Session, None, None]:
    get_engine()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def unit_of_work(db: Session):
    """
    Commit everything added inside the block as one transaction.

    Usage:
        with unit_of_work(db):
            issue.status = ...
            db.add(notification)
    """
    try:
        yield db
        db.commit()
    except StaleDataError as e:
        db.rollback()
        logger.warning(f"Concurrent modification detected: {e}")
        raise ConflictError("The record was changed by someone else, reload and try again") from e
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Storage failure, transaction rolled back: {e}")
        raise StorageError("Database write failed") from e
    except Exception:
        db.rollback()
        raise
