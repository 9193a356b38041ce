"""Schema creation and the database check used by the health endpoint"""

import logging

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from storefront.db.base import Base

# Registers User, Profile and UserSession on Base.metadata
from storefront.db import models  # noqa: F401

logger = logging.getLogger("storefront.database")


def init_database(engine: Engine) -> None:
    """Create any missing tables. Existing tables are left untouched."""
    try:
        Base.metadata.create_all(bind=engine)
    except SQLAlchemyError as e:
        # The URL may embed credentials, so only the error type is logged
        logger.error(f"Schema creation failed: {type(e).__name__}")
        raise

    logger.info("Database schema ready", extra={
        "tables": [table.name for table in Base.metadata.sorted_tables],
    })


def check_database_health(engine: Engine) -> dict:
    """Run ``SELECT 1``; never raises"""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {type(e).__name__}")
        return {"status": "unhealthy", "connected": False, "last_error": type(e).__name__}
    return {"status": "healthy", "connected": True, "last_error": None}
