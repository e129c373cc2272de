import itertools
import os
from pathlib import Path
import tempfile

# The app module binds its engine at import time; point it at a throwaway SQLite file.
os.environ.setdefault(
    "DATABASE_URL",
    f"sqlite+pysqlite:///{Path(tempfile.gettempdir()) / 'mentor_allocation_tests.db'}",
)

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from app.api.deps import get_db  # noqa: E402
from app.core.config import Settings  # noqa: E402
from app.db.base import Base  # noqa: E402
from app.main import app  # noqa: E402
from app.models.user import User, UserRole  # noqa: E402
from app.services.allocation import AllocationService  # noqa: E402


@pytest.fixture()
def session_factory():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def make_user(db):
    """Adds a roster user and returns its id."""
    counter = itertools.count(1)

    def _make(role: UserRole, user_id: str | None = None, name: str | None = None, **extra) -> str:
        index = next(counter)
        user = User(
            name=name or f"{role.value.title()} {index:03d}",
            email=f"{role.value}-{index}@example.com",
            role=role,
            **extra,
        )
        if user_id is not None:
            user.id = user_id
        db.add(user)
        db.flush()
        new_id = user.id
        db.commit()
        return new_id

    return _make


@pytest.fixture()
def service_factory(db):
    def _build(**overrides) -> AllocationService:
        return AllocationService(db, Settings(**overrides))

    return _build


@pytest.fixture()
def service(service_factory):
    return service_factory()


@pytest.fixture()
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
