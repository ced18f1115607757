"""Tests for shared API helpers."""

import pytest
from fastapi import HTTPException

from api.helpers import get_adapter_or_404, get_or_404
from models import Account, Connection
from tests.fixtures import TENANT_ID
from tests.fixtures.mocks import MockProviderAdapter, MockProviderRegistry


class TestGetOr404:
    """Tests for get_or_404."""

    def test_returns_entity(self, db):
        account = Account(tenant_id=TENANT_ID, name="Test Account", currency="EUR")
        db.add(account)
        db.commit()

        result = get_or_404(db, Account, account.id, "Account not found")
        assert result.id == account.id
        assert result.name == "Test Account"

    def test_raises_404_when_missing(self, db):
        with pytest.raises(HTTPException) as exc_info:
            get_or_404(db, Account, "nonexistent-id", "Account not found")
        assert exc_info.value.status_code == 404
        assert exc_info.value.detail == "Account not found"

    def test_works_with_different_models(self, db, connection):
        result = get_or_404(db, Connection, connection.id)
        assert result.provider_id == "tink"


class TestGetAdapterOr404:
    def test_returns_registered_adapter(self):
        adapter = MockProviderAdapter()
        registry = MockProviderRegistry({"tink": adapter})

        assert get_adapter_or_404(registry, "tink") is adapter

    def test_unconfigured_provider_is_404(self):
        with pytest.raises(HTTPException) as exc_info:
            get_adapter_or_404(MockProviderRegistry(), "plaid")
        assert exc_info.value.status_code == 404
        assert "plaid" in exc_info.value.detail
