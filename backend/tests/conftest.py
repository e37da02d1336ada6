import os
import sys

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "0123456789abcdef0123456789abcdef0123456789abcdef0123456789abcdef")
os.environ.setdefault("API_KEY_REQUIRED", "false")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("REDIS_URL", "")

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from authcore import models  # noqa: F401
from authcore.api import deps
from authcore.config import get_settings
from authcore.database import Base
from authcore.main import create_app
from authcore.models.provider_account import OAuthProvider
from authcore.roles import Role
from authcore.services.token_lifecycle import TokenLifecycleManager
from authcore.services.users import ProviderProfile, login_with_provider


@pytest.fixture
def session_factory():
    # StaticPool keeps one in-memory database visible to the test client's threads
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def app(session_factory):
    application = create_app()

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    application.dependency_overrides[deps.get_db] = override_get_db
    return application


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def create_user(db, settings):
    """Factory creating a committed user through the provider login path."""
    counter = {"n": 0}

    def _create(email=None, role=Role.USER, provider=OAuthProvider.GOOGLE, provider_id=None):
        counter["n"] += 1
        email = email or f"user{counter['n']}@example.com"
        profile = ProviderProfile(
            provider=provider,
            provider_id=provider_id or f"{provider.value}-{counter['n']}",
            email=email,
            name=f"User {counter['n']}",
        )
        user = login_with_provider(db, profile, settings)
        user.role = role
        db.commit()
        db.refresh(user)
        return user

    return _create


@pytest.fixture
def token_manager(db, settings):
    return TokenLifecycleManager(db, settings=settings)
