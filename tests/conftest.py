"""Shared fixtures: in-memory SQLite session, league/team factories, API client."""

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from golfleague import crud, schemas
from golfleague.db import Base, get_db

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def league(db):
    return crud.create_league(db, schemas.LeagueCreate(name="Tuesday Night"))


@pytest.fixture
def teams(db, league):
    """Four teams: Alpha, Bravo, Charlie, Delta (in that order)."""
    return [
        crud.create_team(db, league.id, schemas.TeamCreate(name=name))
        for name in ("Alpha", "Bravo", "Charlie", "Delta")
    ]


@pytest.fixture
def client(db):
    from fastapi.testclient import TestClient

    from golfleague.main import app

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
