# tests/conftest.py
"""
Fixtures shared by the suite.

Every test gets its own in-memory SQLite engine, so snapshots never leak
between tests. The identifier generator runs on a fixed clock; anything that
depends on "now" (student codes, pending checkups, today's appointments) is
stable.
"""
from datetime import date, datetime, timezone

import pytest
from fastapi.testclient import TestClient

from app import Services, create_app
from config import Settings
from crud import EntityStore
from database import make_engine, make_session_factory
from identifiers import IdentifierGenerator
from seed import build_seed_data
from storage import PersistenceAdapter, SessionStorage
from validation import StudentRow

NOW = datetime(2025, 6, 15, 9, 30, tzinfo=timezone.utc)
TODAY = NOW.date()


@pytest.fixture
def session_factory():
    engine = make_engine("sqlite://")
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def storage(session_factory):
    return SessionStorage(session_factory)


@pytest.fixture
def persistence(storage):
    return PersistenceAdapter(storage, prefix="test_")


@pytest.fixture
def generator():
    return IdentifierGenerator(clock=lambda: NOW)


@pytest.fixture
def store(persistence, generator):
    return EntityStore(persistence, generator)


@pytest.fixture
def seeded_store(persistence, generator):
    return EntityStore(persistence, generator, seed=build_seed_data(seed=7, now=NOW))


def student_row(**overrides) -> dict:
    row = {
        "firstName": "Asha",
        "lastName": "Rao",
        "dateOfBirth": "2012-03-09",
        "gender": "Female",
        "bloodGroup": "B+",
        "class": "7",
        "section": "B",
        "admissionDate": "2019-06-01",
    }
    row.update(overrides)
    return row


@pytest.fixture
def add_student(store):
    """Create a student in ``store`` from row-style overrides."""

    def _add(**overrides):
        student = store.build_student(StudentRow.model_validate(student_row(**overrides)))
        store.add_student(student)
        return student

    return _add


@pytest.fixture
def services(session_factory):
    settings = Settings(database_url="sqlite://", seed_on_empty=False)
    return Services(settings, session_factory)


@pytest.fixture
def client(services):
    with TestClient(create_app(services)) as c:
        yield c


@pytest.fixture
def today() -> date:
    return TODAY
