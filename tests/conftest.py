import datetime as dt
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, create_engine

from cadence.database import KeyValueStore, get_session, init_db
from cadence.main import app
from cadence.models import BillingModel, BillingSettings, Lesson, LessonStatus, Student


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    return engine


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def store(session):
    return KeyValueStore(session)


@pytest.fixture
def client(engine):
    def override_session():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_session
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def settings():
    return BillingSettings()


@pytest.fixture
def students():
    return [
        Student(id=1, name="Ana Reyes", email="ana@example.org", custom_rate=Decimal("40")),
        Student(id=2, name="Ben Ortiz"),
        Student(
            id=3,
            name="Cara Lind",
            is_minor=True,
            parent_name="Marta Lind",
            parent_email="marta@example.org",
            billing_model=BillingModel.MONTHLY,
            monthly_rate=Decimal("150"),
        ),
        Student(id=4, name="Dev Patel", billing_model=BillingModel.PER_COURSE),
    ]


def _lesson(id, student_id, day, at="15:00", duration=30, rate=None, status=LessonStatus.SCHEDULED, **extra):
    hours, minutes = at.split(":")
    return Lesson(
        id=id,
        student_id=student_id,
        date=day,
        time=dt.time(int(hours), int(minutes)),
        duration=duration,
        rate=Decimal(str(rate)) if rate is not None else None,
        status=status,
        **extra,
    )


@pytest.fixture
def make_lesson():
    return _lesson

