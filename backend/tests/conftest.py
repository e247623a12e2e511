# backend/tests/conftest.py
"""
Pytest configuration for the TutorDesk backend.

The environment is pinned BEFORE any app import: an in-memory SQLite
database and no Redis, so the cache and the scheduling locks run
in-process. Every test gets its own in-memory engine and session.
"""

import os

os.environ["IS_TESTING"] = "true"
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["REDIS_URL"] = ""
os.environ["CELERY_BROKER_URL"] = "memory://"
os.environ["CI"] = "true"  # never read a developer's backend/.env

from typing import Iterator

from fastapi.testclient import TestClient
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.api.dependencies import (
    get_cache_service_dep,
    get_db,
    get_lesson_policy,
    get_meeting_provider,
)
from app.core.actor import Actor
from app.core.enums import RoleName
from app.database import Base
from app.events import LessonEvents
from app.integrations import FakeMeetingClient
import app.models  # noqa: F401  (populate Base.metadata)
from app.services.availability_service import AvailabilityService
from app.services.cache_service import CacheService
from app.services.credit_service import CreditService
from app.services.lesson_policy_service import LessonPolicy, LessonPolicyService

from .factories import NOW, auth_headers, make_course, make_enrollment, make_user


@pytest.fixture
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


@pytest.fixture
def db(engine) -> Iterator[Session]:
    TestingSessionLocal = sessionmaker(
        autocommit=False, autoflush=False, bind=engine, expire_on_commit=False
    )
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def cache() -> CacheService:
    """A private in-memory cache so cached slots never leak between tests."""
    return CacheService(redis_url="")


@pytest.fixture
def captured_events():
    """Collect every event published during the test."""
    received = []
    listener = received.append
    LessonEvents.register(listener)
    yield received
    LessonEvents.unregister(listener)


# Users and enrollments


@pytest.fixture
def tutor(db):
    return make_user(db, RoleName.TUTOR, email="tutor@example.com", full_name="Tara Tutor")


@pytest.fixture
def student(db):
    return make_user(db, RoleName.STUDENT, email="student@example.com", full_name="Sam Student")


@pytest.fixture
def admin(db):
    return make_user(db, RoleName.ADMIN, email="admin@example.com", full_name="Ada Admin")


@pytest.fixture
def course(db, tutor):
    return make_course(db, tutor)


@pytest.fixture
def enrollment(db, student, course):
    return make_enrollment(db, student, course)


@pytest.fixture
def student_actor(student) -> Actor:
    return Actor(user_id=student.id, role=RoleName.STUDENT)


@pytest.fixture
def tutor_actor(tutor) -> Actor:
    return Actor(user_id=tutor.id, role=RoleName.TUTOR)


@pytest.fixture
def admin_actor(admin) -> Actor:
    return Actor(user_id=admin.id, role=RoleName.ADMIN)


# Services


@pytest.fixture
def policy() -> LessonPolicy:
    return LessonPolicy()


@pytest.fixture
def meeting_provider() -> FakeMeetingClient:
    return FakeMeetingClient()


@pytest.fixture
def credit_service(db) -> CreditService:
    return CreditService(db)


@pytest.fixture
def availability_service(db, cache) -> AvailabilityService:
    return AvailabilityService(db, cache)


@pytest.fixture
def lesson_service(db, cache, policy, meeting_provider) -> LessonPolicyService:
    return LessonPolicyService(
        db, cache, policy=policy, meeting_provider=meeting_provider, clock=lambda: NOW
    )


@pytest.fixture
def funded_enrollment(credit_service, student, course, enrollment):
    """Wallet of 10 credits with 5 allocated to the enrolled course."""
    credit_service.purchase_credits(student.id, 10)
    credit_service.allocate_on_enrollment(
        student.id, course.id, 5, enrollment_id=enrollment.id
    )
    return enrollment


# HTTP


@pytest.fixture
def client(db, cache, policy, meeting_provider) -> Iterator[TestClient]:
    from app.main import app

    def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_cache_service_dep] = lambda: cache
    app.dependency_overrides[get_lesson_policy] = lambda: policy
    app.dependency_overrides[get_meeting_provider] = lambda: meeting_provider
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def student_headers(student_actor) -> dict:
    return auth_headers(student_actor)


@pytest.fixture
def tutor_headers(tutor_actor) -> dict:
    return auth_headers(tutor_actor)


@pytest.fixture
def admin_headers(admin_actor) -> dict:
    return auth_headers(admin_actor)
