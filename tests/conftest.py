"""Pytest configuration and shared fixtures.

This module provides fixtures and configuration used across all tests.
"""

import os
from typing import Callable, Generator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Set required environment variables for tests BEFORE importing app modules
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test_secret_key_for_testing_only")
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("SIGNING_HASH_ITERATIONS", "1000")

from edc_engine.models.database import Base, enable_sqlite_foreign_keys
from edc_engine.models.form_definition import FormDefinition
from edc_engine.models.membership import StudyMember
from edc_engine.models.response import FormResponse, ResponseStatus
from edc_engine.services.lifecycle import next_token
from edc_engine.services.signing import CredentialHasher

STUDY_ID = "study_001"


@pytest.fixture(scope="function")
def db_engine():
    """Create a test database engine with SQLite in-memory database.

    Yields:
        Engine: SQLAlchemy engine for testing

    Note:
        Uses a single shared connection so the API client (which runs
        sync routes in a worker thread) sees the same in-memory database.
        Database is created fresh for each test function.
    """
    engine = create_engine(
        "sqlite:///:memory:",
        echo=False,  # Set to True for SQL debugging
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_foreign_keys(engine)

    # Create all tables
    Base.metadata.create_all(engine)

    yield engine

    # Drop all tables after test
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db_session(db_engine) -> Generator[Session, None, None]:
    """Create a test database session.

    Args:
        db_engine: Test database engine fixture

    Yields:
        Session: SQLAlchemy session for testing

    Note:
        Session is rolled back after each test to ensure isolation.
    """
    TestSessionLocal = sessionmaker(
        bind=db_engine,
        autocommit=False,
        autoflush=False,
    )

    session = TestSessionLocal()

    yield session

    # Rollback any uncommitted changes
    session.rollback()
    session.close()


@pytest.fixture
def study_id() -> str:
    """Provide a sample study ID for testing."""
    return STUDY_ID


@pytest.fixture
def vitals_schema() -> dict:
    """Provide a small vitals form schema (camelCase JSON).

    Returns:
        dict: Schema with a calculated BMI, a bounded integer and a
        cross-field custom rule
    """
    return {
        "pages": [
            {
                "id": "page1",
                "title": "Vitals",
                "sections": [
                    {
                        "id": "measurements",
                        "title": "Measurements",
                        "fields": [
                            {
                                "id": "weight",
                                "type": "number",
                                "label": "Weight (kg)",
                                "required": True,
                                "validation": {"min": 20, "max": 300},
                            },
                            {
                                "id": "height",
                                "type": "number",
                                "label": "Height (cm)",
                                "required": True,
                                "validation": {"min": 50, "max": 250},
                            },
                            {
                                "id": "bmi",
                                "type": "calculated",
                                "label": "BMI",
                                "expression": "round({weight} / ({height} / 100) ^ 2, 1)",
                            },
                            {
                                "id": "age",
                                "type": "integer",
                                "label": "Age",
                                "required": True,
                                "validation": {"min": 0, "max": 120},
                            },
                        ],
                    }
                ],
            }
        ]
    }


@pytest.fixture
def valid_vitals_data() -> dict:
    """Provide a payload that passes the vitals schema."""
    return {"weight": 70, "height": 175, "age": 40}


@pytest.fixture
def make_member(db_session) -> Callable[..., StudyMember]:
    """Factory for study memberships.

    Usage:
        make_member("user-pi", "pi", credential="sign-me")
    """
    def _make(
        user_id: str,
        role: str,
        credential: str = None,
        study: str = STUDY_ID,
        display_name: str = "",
    ) -> StudyMember:
        member = StudyMember(
            study_id=study,
            user_id=user_id,
            role=role,
            display_name=display_name or user_id,
        )
        if credential is not None:
            CredentialHasher.set_credential(member, credential)
        db_session.add(member)
        db_session.commit()
        return member

    return _make


@pytest.fixture
def form_definition(db_session, vitals_schema) -> FormDefinition:
    """Stored vitals form definition, version 1."""
    form = FormDefinition(
        study_id=STUDY_ID,
        slug="vitals",
        version=1,
        name="Vital Signs",
        schema_json=vitals_schema,
        created_by="user-pi",
    )
    db_session.add(form)
    db_session.commit()
    db_session.refresh(form)
    return form


@pytest.fixture
def make_response(db_session, form_definition) -> Callable[..., FormResponse]:
    """Factory for stored responses in a given lifecycle state.

    Usage:
        response = make_response(ResponseStatus.LOCKED, data={...})
    """
    def _make(
        status: ResponseStatus = ResponseStatus.DRAFT,
        data: dict = None,
        participant_id: str = "P-001",
    ) -> FormResponse:
        response = FormResponse(
            study_id=STUDY_ID,
            participant_id=participant_id,
            form_id=form_definition.id,
            data=data if data is not None else {},
            status=status.value,
            created_by="user-entry",
            updated_at=next_token(None),
        )
        db_session.add(response)
        db_session.commit()
        db_session.refresh(response)
        return response

    return _make


@pytest.fixture
def client(db_session):
    """FastAPI test client bound to the test database session."""
    from fastapi.testclient import TestClient

    from edc_engine.main import app
    from edc_engine.models.database import get_db

    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()
