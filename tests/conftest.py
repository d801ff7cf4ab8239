import os

# Pinned before the settings module is imported anywhere
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["LOCK_BACKEND"] = "memory"
os.environ["API_KEY"] = ""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from gate_discovery.db import models  # noqa: F401
from gate_discovery.db.database import Base
from gate_discovery.dependencies import get_db
from gate_discovery.services.scheduler_service import scheduler_service


class RecordingDispatcher:
    """Stands in for Celery: remembers what would have been enqueued."""

    def __init__(self) -> None:
        self.calls = []
        self.fail = False

    def __call__(self, task_name, event_id, **kwargs):
        if self.fail:
            raise ConnectionError("broker unavailable")
        self.calls.append((task_name, event_id, kwargs))

    def tasks(self, name):
        return [call for call in self.calls if call[0] == name]


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture()
def db_session(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def dispatcher(monkeypatch):
    recorder = RecordingDispatcher()
    monkeypatch.setattr(scheduler_service, "dispatcher", recorder)
    return recorder


@pytest.fixture()
def client(engine):
    from gate_discovery.main import app

    testing_session = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    def override_get_db():
        db = testing_session()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()
