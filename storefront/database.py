"""
Database connection and session management.
Uses SQLAlchemy for Postgres connections (SQLite is accepted for local runs and tests).
"""

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from storefront.config import get_config
from storefront.logger import get_logger

logger = get_logger("database")

DATABASE_URL = get_config().database_url

# Base class for all our database models (must be defined before engine)
Base = declarative_base()

if DATABASE_URL:
    try:
        engine = create_engine(
            DATABASE_URL,
            pool_pre_ping=True,
            connect_args={"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {},
        )
        SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    except Exception as e:
        logger.warning(f"Failed to create DB engine: {e}; catalog routes will fail")
        engine = None
        SessionLocal = None
else:
    logger.info("DATABASE_URL not set; catalog routes are unavailable until it is configured")
    engine = None
    SessionLocal = None


def get_db():
    """
    Dependency function that provides a database session.
    Raises when DATABASE_URL is not configured.
    """
    if SessionLocal is None:
        raise RuntimeError("DATABASE_URL is not configured")
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
