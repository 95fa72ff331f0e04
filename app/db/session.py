"""Database engine setup.

For test runs (ENV=test) we use a synchronous in-memory SQLite database when
DATABASE_URL is unset or points at memory. The test suite rebinds
``SessionLocal`` to a ``StaticPool`` engine so every session shares one
connection.
"""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from app.core.config import settings

raw_url = settings.DATABASE_URL or "sqlite:///./storage/dev.db"

if raw_url.startswith("sqlite"):
    if settings.ENV.lower() == "test" and ":memory:" in raw_url:
        # shared cache enables multiple connections to one in-memory database
        raw_url = "sqlite:///file:sso_test_db?mode=memory&cache=shared&uri=true"
    engine = create_engine(raw_url, future=True, connect_args={"check_same_thread": False})
else:
    # Pool recycle avoids stale connections; pre-ping verifies health before use
    engine = create_engine(
        raw_url,
        future=True,
        pool_size=5,
        max_overflow=10,
        pool_recycle=3600,
        pool_pre_ping=True,
    )
SessionLocal = sessionmaker(bind=engine, class_=Session, expire_on_commit=False, autoflush=False)


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
