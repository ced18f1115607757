"""Pytest configuration and fixtures."""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import models  # noqa: F401  (registers the mappers on Base.metadata)
from database import Base, get_db
from main import app
from api.providers import get_registry as get_registry_for_providers
from api.sync import get_sync_service as get_sync_service_for_sync
from services.sync_service import SyncService
# Pytest fixtures - imported to make them available to tests
from tests.fixtures import connection, pending_connection  # noqa: F401
from tests.fixtures.mocks import (
    MockProviderAdapter,
    MockProviderRegistry,
    SAMPLE_TINK_ACCOUNTS,
    SAMPLE_TINK_TRANSACTIONS,
)


@pytest.fixture(name="db")
def db_fixture():
    """Create an in-memory SQLite database for testing."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()

    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(name="mock_adapter")
def mock_adapter_fixture():
    """Create a mock Tink adapter with sample data."""
    return MockProviderAdapter(
        accounts=SAMPLE_TINK_ACCOUNTS,
        transactions=SAMPLE_TINK_TRANSACTIONS,
    )


@pytest.fixture(name="mock_provider_registry")
def mock_provider_registry_fixture(mock_adapter):
    """Create a mock provider registry with sample data."""
    return MockProviderRegistry({"tink": mock_adapter})


def _client_for(db, registry):
    def override_get_db():
        try:
            yield db
        finally:
            pass

    def override_get_sync_service():
        return SyncService(provider_registry=registry)

    def override_get_registry():
        return registry

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_sync_service_for_sync] = override_get_sync_service
    app.dependency_overrides[get_registry_for_providers] = override_get_registry
    return TestClient(app)


@pytest.fixture(name="client")
def client_fixture(db):
    """Create a test client with the test database and an empty Tink adapter."""
    registry = MockProviderRegistry({"tink": MockProviderAdapter()})
    yield _client_for(db, registry)
    app.dependency_overrides.clear()


@pytest.fixture(name="client_with_mock_sync")
def client_with_mock_sync_fixture(db, mock_provider_registry):
    """Create a test client whose SyncService uses the sample-data adapter."""
    yield _client_for(db, mock_provider_registry)
    app.dependency_overrides.clear()


@pytest.fixture(name="client_with_failing_sync")
def client_with_failing_sync_fixture(db):
    """Create a test client whose adapter is unavailable."""
    failing = MockProviderAdapter(
        should_fail=True,
        failure_type="unavailable",
        failure_message="Tink API unavailable",
    )
    yield _client_for(db, MockProviderRegistry({"tink": failing}))
    app.dependency_overrides.clear()
