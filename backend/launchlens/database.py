"""Engine, session factory and session helpers for launchlens.

WHAT:
    Provides the SQLAlchemy engine and session factory, plus the FastAPI
    session dependency.

WHY:
    - Request handlers run concurrently against the shared relational store;
      cross-row consistency is left to the database's transactions.
    - The launch status scheduler and ARQ jobs call SessionLocal directly
      for their own short-lived sessions.
    - PostgreSQL connections carry a statement timeout so a stuck query
      surfaces as an error instead of hanging a request.

USAGE:
    from launchlens.database import SessionLocal, get_db

    @router.get("/launches")
    def list_launches(db: Session = Depends(get_db)):
        ...

REFERENCES:
    - https://docs.sqlalchemy.org/en/20/orm/session_basics.html
    - launchlens/routers/ (consumers of these sessions)
"""

import os
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker


# =============================================================================
# CONNECTION URL
# =============================================================================

def _get_database_url() -> str:
    """Resolve DATABASE_URL, falling back to a local .env file.

    Raises RuntimeError when neither the environment nor .env provides it.
    """
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        from launchlens.utils.env import load_env_file
        load_env_file()
        database_url = os.getenv("DATABASE_URL")

    if not database_url:
        raise RuntimeError(
            "DATABASE_URL is not set; export it or add it to backend/.env"
        )

    if database_url.startswith("postgres://"):
        # SQLAlchemy only accepts the postgresql:// scheme
        database_url = database_url.replace("postgres://", "postgresql://", 1)

    return database_url


DATABASE_URL = _get_database_url()
STATEMENT_TIMEOUT_MS = int(os.getenv("DB_STATEMENT_TIMEOUT_MS", "15000"))


# =============================================================================
# ENGINE
# =============================================================================

# Connection pool configuration:
# - pool_recycle: drop connections older than an hour
# - pool_pre_ping: Check connection health before use
# - statement_timeout: storage calls fail instead of blocking indefinitely
#
# NOTE: SQLite engines (tests/dev) do not support pool_size/max_overflow.
if DATABASE_URL.startswith("sqlite"):
    engine = create_engine(
        DATABASE_URL,
        connect_args={"check_same_thread": False},
    )
else:
    engine = create_engine(
        DATABASE_URL,
        pool_size=10,
        max_overflow=20,
        pool_recycle=3600,
        pool_pre_ping=True,
        pool_timeout=30,
        connect_args={"options": f"-c statement_timeout={STATEMENT_TIMEOUT_MS}"},
    )

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


# =============================================================================
# REQUEST SESSIONS
# =============================================================================

def get_db() -> Generator[Session, None, None]:
    """Yield a database session for FastAPI dependency injection.

    Yields:
        SQLAlchemy Session instance, closed when the request finishes
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

