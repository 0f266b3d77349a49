# tenantdb/core/database.py
"""
Central (registry) database engine and sessions.

The central database holds the tenant registry only; tenant data lives in the
per-tenant databases reached through `tenantdb.tenancy.binder`.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .config import Settings, get_settings

logger = logging.getLogger(__name__)


def create_database_engine(settings: Optional[Settings] = None) -> Engine:
    """
    Create the central SQLAlchemy engine with connection pooling.

    Returns:
        Configured SQLAlchemy engine
    """
    settings = settings or get_settings()
    url = make_url(settings.database_url)

    logger.info("Creating central database engine with URL: %s", settings.masked_database_url)

    if url.get_backend_name() == "sqlite":
        if url.database and url.database != ":memory:":
            Path(url.database).resolve().parent.mkdir(parents=True, exist_ok=True)
        return create_engine(
            url,
            future=True,
            connect_args={"check_same_thread": False, "timeout": 30},
            echo=settings.debug,
        )

    return create_engine(
        url,
        future=True,
        pool_size=5,
        max_overflow=10,
        pool_timeout=30,
        pool_recycle=1800,
        pool_pre_ping=True,  # Validate connections before use
        echo=settings.debug,
    )


def make_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(
        bind=engine,
        class_=Session,
        autoflush=False,
        expire_on_commit=False,  # Keep objects usable after commit
    )


def check_database_connection(engine: Engine) -> tuple[bool, str]:
    """
    Test database connectivity.

    Returns:
        Tuple of (is_connected, message)
    """
    try:
        with engine.connect() as connection:
            test_value = connection.execute(text("SELECT 1 AS test")).scalar()

            if test_value == 1:
                return True, "Database connection successful"
            return False, f"Unexpected test result: {test_value}"

    except SQLAlchemyError as e:
        logger.error("Database connection failed: %s", e)
        return False, f"Database connection failed: {str(e)}"
