"""Database engine, session factory and declarative base."""
import os
from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import sessionmaker, declarative_base
from app.config import settings


def _engine_kwargs(database_url: str) -> dict:
    """Build engine arguments for the configured backend.

    SQLite needs ``check_same_thread`` disabled because FastAPI serves
    requests from a thread pool, and a busy timeout so concurrent writers
    wait for the lock instead of failing immediately.
    """
    url = make_url(database_url)
    if url.get_backend_name() != "sqlite":
        return {"pool_pre_ping": True}

    if url.database and url.database != ":memory:":
        directory = os.path.dirname(url.database)
        if directory:
            os.makedirs(directory, exist_ok=True)

    return {"connect_args": {"check_same_thread": False, "timeout": 30}}


engine = create_engine(settings.DATABASE_URL, **_engine_kwargs(settings.DATABASE_URL))
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    """Yield a request-scoped database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
