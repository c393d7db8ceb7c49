# conftest.py - Pytest fixtures for testing
import os
import sys

# Configure before the package reads its settings
os.environ["DEFECTVISION_DB_URL"] = "sqlite://"
os.environ["DEFECTVISION_JWT_SECRET"] = "test-secret"
os.environ["DEFECTVISION_AI_API_KEY"] = "test-key"
os.environ["DEFECTVISION_BATCH_DELAY_SECONDS"] = "0"
os.environ["DEFECTVISION_FEED_POLL_INTERVAL"] = "0.05"

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))  # Add project root to path

import base64
import io
import tempfile
import time
from pathlib import Path

import jwt
import pytest
from PIL import Image
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from defectvision.config import settings
from defectvision.database import Base

# Import all models to ensure they are registered with Base
from defectvision.models.inspection import DBInspection  # noqa: F401

# Use in-memory SQLite for tests to avoid affecting real DB
TEST_DATABASE_URL = "sqlite://"


@pytest.fixture(scope="function")
def engine():
    """Create a fresh test engine per test."""
    test_engine = create_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=test_engine)  # Create tables
    yield test_engine
    Base.metadata.drop_all(bind=test_engine)  # Clean up


@pytest.fixture(scope="function")
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def db_session(session_factory):
    """Provide a test database session."""
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture(scope="function")
def temp_dir():
    """Provide a temporary directory for file operations."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


def make_png(size=(8, 8), color=(200, 30, 30)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def png_bytes():
    return make_png()


@pytest.fixture
def png_data_url(png_bytes):
    return "data:image/png;base64," + base64.b64encode(png_bytes).decode("ascii")


def make_token(sub="user-1", **claims) -> str:
    payload = {"sub": sub, "aud": "authenticated", "exp": int(time.time()) + 3600}
    payload.update(claims)
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


@pytest.fixture
def token():
    return make_token()


@pytest.fixture
def auth_headers(token):
    return {"Authorization": f"Bearer {token}"}
