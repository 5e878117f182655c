"""Job bodies behind the Celery tasks, kept importable without a broker."""
import logging

from sqlalchemy.orm import Session
from sqlalchemy.exc import ProgrammingError, OperationalError

from tripc.core.timeutils import utcnow
from tripc.db import session as db_session
from tripc.db.session import commit_or_raise
from tripc.services.email_service import process_pending_emails
from tripc.services.hold_service import expire_stale_holds

logger = logging.getLogger(__name__)


def _run(job_name: str, body) -> dict:
    db: Session = db_session.SessionLocal()
    try:
        return body(db)
    except (ProgrammingError, OperationalError) as e:
        # Tables missing before the first migration
        db.rollback()
        logger.warning("%s skipped: %s", job_name, e.orig)
        return {"skipped": True, "reason": "missing_tables"}
    finally:
        db.close()


def _expire(db: Session) -> dict:
    expired = expire_stale_holds(db, now=utcnow())
    commit_or_raise(db, "hold expiry")
    if expired:
        logger.info("Reaper expired %s holds", expired)
    return {"expired": expired}


def expire_holds() -> dict:
    return _run("expire_holds", _expire)


def process_email_queue(limit: int = 50) -> dict:
    return _run("process_email_queue", lambda db: process_pending_emails(db, limit=limit))
