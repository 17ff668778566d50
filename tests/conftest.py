"""Pytest fixtures for testing."""
from datetime import datetime
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from app.db.database import Base
from app.db import models  # noqa: F401


@pytest.fixture(scope="function")
def test_db():
    """Create a test database for each test."""
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    db = SessionLocal()

    yield db

    db.close()
    engine.dispose()


@pytest.fixture
def file_engine(tmp_path):
    """File-backed SQLite engine; sessions on separate threads see each other's commits."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'mastery.db'}",
        connect_args={"check_same_thread": False, "timeout": 30}
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def file_sessionmaker(file_engine):
    return sessionmaker(bind=file_engine, autoflush=False, autocommit=False)


@pytest.fixture
def now():
    return datetime(2026, 10, 19, 12, 0, 0)

