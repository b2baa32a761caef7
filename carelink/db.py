import logging
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, declarative_base
from carelink.config import DATABASE_URL
from carelink.errors import Unavailable

logger = logging.getLogger(__name__)

engine = create_engine(DATABASE_URL, connect_args={"check_same_thread": False} if "sqlite" in DATABASE_URL else {},
                       pool_pre_ping=True)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def init_db(bind=None):
    import carelink.models  # noqa: F401
    Base.metadata.create_all(bind=bind or engine)
    logger.info("Database tables created")


def get_db():
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@contextmanager
def store_errors(db):
    """Roll back and surface any database failure as a retryable `Unavailable`."""
    try:
        yield
    except SQLAlchemyError as e:
        logger.error("Relationship store error: %s", e.__class__.__name__)
        db.rollback()
        raise Unavailable() from e
