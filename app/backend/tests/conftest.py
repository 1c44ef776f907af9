from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from buildtrack.core.config import get_settings
from buildtrack.db.base import Base
from buildtrack.db.dependencies import get_db_session
import buildtrack.models.entities  # noqa: F401
from buildtrack.main import create_app

API = "/api/v1"


def make_engine() -> Engine:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture(autouse=True)
def _reset_settings_cache() -> Generator[None, None, None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = make_engine()
    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)

    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    app = create_app()

    def override_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db_session] = override_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def auth_headers(
    *,
    user_id: str = "user-1",
    email: str = "owner@test.local",
    display_name: str = "Owner One",
) -> dict[str, str]:
    return {
        "X-User-Id": user_id,
        "X-User-Email": email,
        "X-User-Display-Name": display_name,
    }


def create_project(client: TestClient, headers: dict[str, str], *, name: str = "House renovation") -> str:
    response = client.post(f"{API}/projects", headers=headers, json={"name": name})
    assert response.status_code == 201
    return response.json()["id"]


def create_milestone(
    client: TestClient,
    headers: dict[str, str],
    project_id: str,
    *,
    name: str = "Foundation",
    budget: str = "1000.00",
    has_tax: bool = False,
    tax_rate: str | None = None,
) -> str:
    response = client.post(
        f"{API}/projects/{project_id}/milestones",
        headers=headers,
        json={"name": name, "budget": budget, "has_tax": has_tax, "tax_rate": tax_rate},
    )
    assert response.status_code == 201
    return response.json()["id"]
