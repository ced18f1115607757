"""Tests for services.credential_manager."""

import sys
from unittest.mock import MagicMock, patch

from services.credential_manager import CREDENTIAL_KEYS, SERVICE_NAME, get_credential


class TestGetCredential:
    def test_returns_value(self):
        mock_keyring = MagicMock()
        mock_keyring.get_password.return_value = "secret123"
        with patch.dict(sys.modules, {"keyring": mock_keyring}):
            result = get_credential("TINK_CLIENT_SECRET")
        assert result == "secret123"
        mock_keyring.get_password.assert_called_once_with(SERVICE_NAME, "TINK_CLIENT_SECRET")

    def test_missing_entry_is_none(self):
        mock_keyring = MagicMock()
        mock_keyring.get_password.return_value = None
        with patch.dict(sys.modules, {"keyring": mock_keyring}):
            assert get_credential("PLAID_SECRET") is None

    def test_returns_none_when_keyring_not_installed(self):
        with patch.dict(sys.modules, {"keyring": None}):
            assert get_credential("TINK_CLIENT_SECRET") is None

    def test_backend_error_is_none(self):
        mock_keyring = MagicMock()
        mock_keyring.get_password.side_effect = RuntimeError("no backend")
        with patch.dict(sys.modules, {"keyring": mock_keyring}):
            assert get_credential("TINK_CLIENT_SECRET") is None


class TestCredentialKeys:
    def test_only_aggregator_app_secrets(self):
        assert CREDENTIAL_KEYS == {
            "PLAID_CLIENT_ID",
            "PLAID_SECRET",
            "TINK_CLIENT_ID",
            "TINK_CLIENT_SECRET",
        }

    def test_excludes_non_secret_keys(self):
        for key in ("DATABASE_URL", "LOG_LEVEL", "TINK_REDIRECT_URI", "PLAID_ENVIRONMENT"):
            assert key not in CREDENTIAL_KEYS
