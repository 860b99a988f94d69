"""
Control-plane database session management with connection pooling.

The control-plane database holds tenants, users and billing records. It is
distinct from the per-tenant data stores, which are reached only through
stockroom.tenancy.router.

The engine and session factory are owned by the application root
(app.state.session_factory) rather than module globals, so tests and
multiple app instances never share state.

Usage:
    from stockroom.database.session import get_db_session

    @router.get("/tenants")
    async def list_tenants(db: Session = Depends(get_db_session)):
        return db.query(Tenant).all()
"""

import logging
from typing import Any, Dict, Generator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import QueuePool
from fastapi import HTTPException, Request, status

logger = logging.getLogger(__name__)


DEFAULT_CONNECT_TIMEOUT_SECONDS = 5
DEFAULT_STATEMENT_TIMEOUT_MS = 5000


def control_plane_connect_args(
    database_url: str,
    connect_timeout: int = DEFAULT_CONNECT_TIMEOUT_SECONDS,
    statement_timeout_ms: int = DEFAULT_STATEMENT_TIMEOUT_MS,
) -> Dict[str, Any]:
    """
    DBAPI connect arguments for the control-plane engine.

    Billing lookups run in worker threads that the resolver abandons on
    timeout, so every connection carries a server-side statement timeout
    that bounds how long an abandoned query can hold it. 0 disables it.
    """
    if database_url.startswith("sqlite"):
        return {"check_same_thread": False, "timeout": connect_timeout}
    connect_args: Dict[str, Any] = {"connect_timeout": connect_timeout}
    if statement_timeout_ms:
        connect_args["options"] = f"-c statement_timeout={statement_timeout_ms}"
    return connect_args


def create_control_plane_engine(
    database_url: str,
    connect_timeout: int = DEFAULT_CONNECT_TIMEOUT_SECONDS,
    statement_timeout_ms: int = DEFAULT_STATEMENT_TIMEOUT_MS,
) -> Engine:
    """
    Create the control-plane database engine.

    Uses connection pooling with sensible defaults for production:
    - pool_size: 5 connections
    - max_overflow: 10 additional connections under load
    - pool_pre_ping: Verify connections before use
    - pool_timeout: give up waiting for a pooled connection after
      connect_timeout seconds
    """
    connect_args = control_plane_connect_args(database_url, connect_timeout, statement_timeout_ms)
    if database_url.startswith("sqlite"):
        # SQLite does not support QueuePool sizing arguments
        engine = create_engine(database_url, connect_args=connect_args)
    else:
        engine = create_engine(
            database_url,
            poolclass=QueuePool,
            pool_size=5,
            max_overflow=10,
            pool_timeout=connect_timeout,
            pool_pre_ping=True,  # Verify connection health
            pool_recycle=1800,   # Recycle connections after 30 minutes
            connect_args=connect_args,
        )
    logger.info("Control-plane database engine created with connection pooling", extra={
        "connect_timeout": connect_timeout,
        "statement_timeout_ms": statement_timeout_ms,
    })
    return engine


def create_session_factory(engine: Engine) -> sessionmaker:
    """Create a session factory bound to engine."""
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def _get_session_factory(request: Request) -> Optional[sessionmaker]:
    return getattr(request.app.state, "session_factory", None)


def get_db_session(request: Request) -> Generator[Session, None, None]:
    """
    FastAPI dependency for control-plane database sessions.

    Creates a new session for each request and ensures proper cleanup.
    Raises HTTP 503 if database is not configured.
    """
    SessionLocal = _get_session_factory(request)
    if SessionLocal is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database not configured"
        )

    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
