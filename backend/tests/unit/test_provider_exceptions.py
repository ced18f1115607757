"""Tests for the provider exception hierarchy."""

import pytest

from integrations.exceptions import (
    AuthExchangeError,
    ProviderAuthError,
    ProviderDataError,
    ProviderError,
    ProviderUnavailable,
    TokenRefreshUnavailable,
    is_credential_error,
)


class TestExceptionHierarchy:
    """All provider exceptions are catchable as ProviderError."""

    @pytest.mark.parametrize(
        "exc_cls",
        [AuthExchangeError, ProviderAuthError, TokenRefreshUnavailable,
         ProviderUnavailable, ProviderDataError],
    )
    def test_is_provider_error(self, exc_cls):
        assert issubclass(exc_cls, ProviderError)

    def test_refresh_unavailable_is_an_auth_error(self):
        assert issubclass(TokenRefreshUnavailable, ProviderAuthError)

    def test_exchange_error_is_not_an_auth_error(self):
        """A rejected code says nothing about stored credentials."""
        assert not issubclass(AuthExchangeError, ProviderAuthError)


class TestRetriable:
    def test_only_unavailable_is_retriable(self):
        assert ProviderUnavailable("down").retriable is True
        assert ProviderAuthError("no").retriable is False
        assert ProviderDataError("bad").retriable is False


class TestCredentialErrors:
    @pytest.mark.parametrize(
        ("exc", "expected"),
        [
            (ProviderAuthError("401"), True),
            (TokenRefreshUnavailable("expired"), True),
            (ProviderUnavailable("503"), False),
            (ProviderDataError("bad json"), False),
            (AuthExchangeError("bad code"), False),
            (ValueError("x"), False),
        ],
    )
    def test_is_credential_error(self, exc, expected):
        assert is_credential_error(exc) is expected


class TestExceptionAttributes:
    def test_provider_name_and_message(self):
        exc = ProviderAuthError("Token expired", provider_name="Tink")
        assert exc.provider_name == "Tink"
        assert str(exc) == "Token expired"

    def test_unavailable_status_code(self):
        assert ProviderUnavailable("rate limited", status_code=429).status_code == 429
        assert ProviderUnavailable("timeout").status_code is None

    def test_data_error_keeps_payload(self):
        exc = ProviderDataError("bad", provider_name="Plaid", raw_payload={"x": 1}, status_code=400)
        assert exc.raw_payload == {"x": 1}
        assert exc.status_code == 400
