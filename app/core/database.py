"""
Shared Database Engine - Singleton Pattern.

This module provides a SINGLE shared database engine for all repositories.
"""

import logging

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.core.config import settings

logger = logging.getLogger(__name__)

# =============================================================================
# SINGLETON DATABASE ENGINE
# =============================================================================

_shared_engine = None
_shared_session_factory = None


def get_shared_engine():
    """
    Get the shared SQLAlchemy engine (Singleton).

    Connection Pool Settings:
    - pool_size=5: persistent connections
    - max_overflow=5: extra connections under load
    - pool_timeout=30: serverless Postgres may need time to wake up
    - pool_recycle=1800: Recycle connections every 30 minutes
    - pool_pre_ping=True: Check connection health before use

    Returns:
        SQLAlchemy Engine instance
    """
    global _shared_engine

    if _shared_engine is None:
        try:
            _shared_engine = create_engine(
                settings.postgres_url_sync,
                echo=False,
                pool_pre_ping=True,
                pool_size=5,
                max_overflow=5,
                pool_timeout=30,
                pool_recycle=1800
            )
            logger.info(
                "Shared database engine created: "
                "pool_size=5, max_overflow=5, pool_timeout=30s"
            )
        except Exception as e:
            logger.error(f"Failed to create shared database engine: {e}")
            raise

    return _shared_engine


def get_shared_session_factory():
    """
    Get the shared SQLAlchemy session factory (Singleton).

    Returns:
        SQLAlchemy sessionmaker bound to shared engine
    """
    global _shared_session_factory

    if _shared_session_factory is None:
        engine = get_shared_engine()
        _shared_session_factory = sessionmaker(bind=engine, expire_on_commit=False)
        logger.info("Shared session factory created")

    return _shared_session_factory


def close_shared_engine():
    """
    Close the shared engine and release all connections.

    Call this during application shutdown.
    """
    global _shared_engine, _shared_session_factory

    if _shared_engine is not None:
        _shared_engine.dispose()
        _shared_engine = None
        _shared_session_factory = None
        logger.info("Shared database engine closed")
