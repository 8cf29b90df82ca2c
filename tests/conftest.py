import os
import random
from datetime import datetime, timedelta, timezone

# Cheap hashes and a throwaway database before the package reads its settings
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from exam_portal.auth_utils import hash_password
from exam_portal.database import get_session
from exam_portal.identity import Identity
from exam_portal.main import app
from exam_portal.models import (
    ROLE_ADMIN,
    ROLE_LEADER,
    ROLE_USER,
    Exam,
    ExamResult,
    Question,
    User,
)
from exam_portal.services.permissions import RolePermissionCache, seed_permission_catalog

# ============================================================================
# IN-MEMORY DATABASE FOR TESTING
# ============================================================================

# StaticPool keeps every connection on the same in-memory database
test_engine = create_engine(
    "sqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

NOW = datetime(2025, 11, 26, 7, 0, 0, tzinfo=timezone.utc)
PASSWORD = "secret123"


@pytest.fixture(scope="session", autouse=True)
def setup_test_db():
    """Create all tables in the test database once per session."""
    SQLModel.metadata.create_all(test_engine)
    yield
    SQLModel.metadata.drop_all(test_engine)


@pytest.fixture(autouse=True)
def cleanup_db_between_tests():
    """Clean up test data after each test."""
    yield
    with Session(test_engine) as session:
        for table in reversed(SQLModel.metadata.sorted_tables):
            session.execute(table.delete())
        session.commit()


@pytest.fixture
def session():
    with Session(test_engine) as session:
        yield session


@pytest.fixture
def cache():
    return RolePermissionCache()


@pytest.fixture
def catalog(session, cache):
    """Permission catalog with the default role policies installed."""
    seed_permission_catalog(session, cache)


# ============================================================================
# FASTAPI APP & TEST CLIENT
# ============================================================================


@pytest.fixture
def client(session, catalog):
    def override_get_session():
        return session

    app.dependency_overrides[get_session] = override_get_session
    app.state.permission_cache = RolePermissionCache()
    yield TestClient(app)
    app.dependency_overrides.clear()


def login(client, username, password=PASSWORD):
    response = client.post("/auth/login", json={"username": username, "password": password})
    assert response.status_code == 200, response.text
    return response


# ============================================================================
# ENTITY FIXTURES
# ============================================================================


@pytest.fixture
def make_user(session):
    def _make_user(username, role=ROLE_USER, full_name=None, password=PASSWORD):
        user = User(
            username=username,
            full_name=full_name,
            email=f"{username}@example.com",
            password_hash=hash_password(password),
            role=role,
        )
        session.add(user)
        session.commit()
        session.refresh(user)
        return user

    return _make_user


@pytest.fixture
def admin_user(make_user):
    return make_user("admin", role=ROLE_ADMIN, full_name="System Admin")


@pytest.fixture
def leader_user(make_user):
    return make_user("lead", role=ROLE_LEADER, full_name="Team Leader")


@pytest.fixture
def plain_user(make_user):
    return make_user("alice", full_name="Alice Nguyen")


@pytest.fixture
def admin(admin_user):
    return Identity.from_user(admin_user)


@pytest.fixture
def leader(leader_user):
    return Identity.from_user(leader_user)


@pytest.fixture
def alice(plain_user):
    return Identity.from_user(plain_user)


@pytest.fixture
def bank(session):
    """Six single-choice questions whose correct answer is always "A"."""
    questions = []
    for i in range(6):
        q = Question(
            content=f"Question {i + 1}?",
            type="single",
            options=f'["right {i}", "wrong {i}a", "wrong {i}b", "wrong {i}c"]',
            correct_answers='["A"]',
        )
        session.add(q)
        questions.append(q)
    session.commit()
    for q in questions:
        session.refresh(q)
    return questions


@pytest.fixture
def make_exam(session, bank):
    def _make_exam(**overrides):
        fields = dict(
            title="Safety Induction",
            question_count=3,
            time_limit=30,
            start_date=NOW - timedelta(days=1),
            end_date=NOW + timedelta(days=1),
            max_attempts=1,
            is_active=True,
            is_public=False,
        )
        fields.update(overrides)
        exam = Exam(**fields)
        session.add(exam)
        session.commit()
        session.refresh(exam)
        return exam

    return _make_exam


@pytest.fixture
def add_result(session):
    """Record a completed attempt directly in the ledger."""

    def _add_result(exam, student_id=None, student_name=None, score=10.0):
        result = ExamResult(
            exam_id=exam.id,
            student_id=student_id,
            student_name=student_name,
            score=score,
            total_questions=3,
            correct_answers=3,
            attempt_number=1,
        )
        session.add(result)
        session.commit()
        session.refresh(result)
        return result

    return _add_result


@pytest.fixture
def rng():
    return random.Random(1234)
