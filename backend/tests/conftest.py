import os
from typing import Callable, List, Optional

import pytest

# The app's own engine must never touch a file database during tests
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402
from sqlmodel import Session, SQLModel, create_engine  # noqa: E402

from poolplay.database import get_session  # noqa: E402
from poolplay.main import app  # noqa: E402
from poolplay.models.team import Team  # noqa: E402
from poolplay.models.tournament import Tournament  # noqa: E402

TEST_DATABASE_URL = "sqlite:///:memory:"

# ============================================================================
# Test Database Setup with StaticPool
# ============================================================================
# 1. sqlite:///:memory: with StaticPool so ALL sessions share the same DB
# 2. check_same_thread=False required for TestClient/threaded access
# 3. All models are imported (tests/__init__.py) before create_all()
# 4. App dependency overridden to use test_engine (see client_fixture)
# 5. Tables are dropped after every test so tournament ids start fresh
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


def override_get_session():
    """Override session to use test engine"""
    with Session(test_engine) as session:
        yield session


@pytest.fixture(name="session", scope="function")
def session_fixture():
    """Provide a test database session on freshly created tables"""
    SQLModel.metadata.create_all(test_engine)

    with Session(test_engine) as session:
        yield session

    SQLModel.metadata.drop_all(test_engine)


@pytest.fixture(name="client")
def client_fixture(session: Session):
    """Provide a test client with overridden database session

    Override MUST be set BEFORE TestClient() and stay in place for the
    entire duration so the app never uses its own engine.
    """
    app.dependency_overrides[get_session] = override_get_session

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def make_tournament(session: Session) -> Callable[..., Tournament]:
    """Factory: tournament with `team_count` seeded teams (seed i -> "Team i")."""

    def _make(
        team_count: int,
        active_courts: Optional[List[str]] = None,
        facilities: Optional[list] = None,
        name: str = "Spring Classic",
    ) -> Tournament:
        tournament = Tournament(name=name, active_courts=active_courts, facilities=facilities)
        session.add(tournament)
        session.commit()
        session.refresh(tournament)
        for seed in range(1, team_count + 1):
            session.add(Team(tournament_id=tournament.id, name=f"Team {seed}", short_name=f"T{seed}", seed=seed))
        session.commit()
        return tournament

    return _make


