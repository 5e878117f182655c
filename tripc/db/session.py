import logging

from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from tripc.core.config import settings
from tripc.core.errors import StoreError

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


def make_engine(url: str):
    # SQLite (tests, local) needs the connection shared across FastAPI's threadpool
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, pool_pre_ping=True, connect_args=connect_args)


engine = make_engine(settings.DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def commit_or_raise(db: Session, context: str) -> None:
    """Commit the unit of work; on store failure roll back and raise StoreError."""
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception("Store commit failed during %s", context)
        raise StoreError(f"Could not persist {context}") from e
