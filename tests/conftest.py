from __future__ import annotations

import os

# Settings are read at import time; keep tests off any real database or Redis.
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DEBUG", "false")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.pop("REDIS_URL", None)

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from flagengine.core.actor import Actor  # noqa: E402
from flagengine.core.database import Base, build_engine, init_db  # noqa: E402
from flagengine.services.engine import FlagEngine  # noqa: E402
from flagengine.services.flag_registry import FlagCreate  # noqa: E402
from flagengine.services.hasher import clear_bucket_cache  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402


@pytest.fixture(scope="function")
def db_engine():
    """In-memory SQLite engine shared by every session of one test (StaticPool)."""
    engine = build_engine("sqlite://")
    init_db(bind=engine)

    yield engine

    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=db_engine)


@pytest.fixture(scope="function")
def flag_engine(session_factory) -> FlagEngine:
    """Engine without background propagation, snapshot loaded."""
    clear_bucket_cache()
    engine = FlagEngine(session_factory=session_factory)
    engine.coordinator.reload(trigger="startup")
    return engine


@pytest.fixture
def admin() -> Actor:
    return Actor(actor_id="alice-admin", role="ADMIN", ip_address="10.0.0.1")


@pytest.fixture
def make_flag(flag_engine, admin):
    """Create a flag through the registry with sensible defaults."""

    def _make(key: str = "dark-mode", **fields):
        fields.setdefault("name", key.replace("-", " ").title())
        return flag_engine.registry.create(FlagCreate(key=key, **fields), admin)

    return _make


@pytest.fixture
def client(flag_engine):
    """TestClient over an application bound to the test engine."""
    from flagengine.main import create_app

    app = create_app(flag_engine)
    with TestClient(app) as test_client:
        yield test_client
