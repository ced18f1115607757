"""Mock implementations for external services."""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from integrations.exceptions import (
    AuthExchangeError,
    ProviderAuthError,
    ProviderDataError,
    ProviderUnavailable,
    TokenRefreshUnavailable,
)
from integrations.provider_protocol import (
    FetchWindow,
    OAuthToken,
    ProviderAccount,
    ProviderTransaction,
    TransactionBatch,
)
from integrations.provider_registry import ProviderRegistry


def _days_ago(days: int) -> date:
    return datetime.now(timezone.utc).date() - timedelta(days=days)


class MockProviderAdapter:
    """Scripted provider adapter for testing.

    Accounts and per-account transactions are returned as given. Failures
    are switched on with ``should_fail`` (fetch_accounts),
    ``failing_account_ids`` (fetch_transactions for those accounts) and
    ``refresh_failure_type`` (refresh).
    """

    def __init__(
        self,
        accounts: list[ProviderAccount] | None = None,
        transactions: dict[str, list[ProviderTransaction]] | None = None,
        removed_ids: dict[str, list[str]] | None = None,
        next_markers: dict[str, str] | None = None,
        should_fail: bool = False,
        failure_message: str = "Mock provider error",
        failure_type: str = "generic",
        failing_account_ids: tuple[str, ...] = (),
        refresh_failure_type: str | None = None,
        provider_id: str = "tink",
        marker_type: str = "page_token",
        external_reference: str | None = None,
    ):
        self._accounts = accounts or []
        self._transactions = transactions or {}
        self._removed_ids = removed_ids or {}
        self.next_markers = next_markers or {}
        self._should_fail = should_fail
        self._failure_message = failure_message
        self._failure_type = failure_type
        self._failing_account_ids = set(failing_account_ids)
        self._refresh_failure_type = refresh_failure_type
        self._provider_id = provider_id
        self._marker_type = marker_type
        self._external_reference = external_reference
        self.fetch_accounts_calls = 0
        self.refresh_calls = 0
        # (external account id, FetchWindow, marker) per fetch_transactions call
        self.transaction_calls: list[tuple[str, FetchWindow, str | None]] = []

    def _error(self, failure_type: str) -> Exception:
        if failure_type == "auth":
            return ProviderAuthError(self._failure_message, provider_name=self._provider_id)
        if failure_type == "refresh_unavailable":
            return TokenRefreshUnavailable(self._failure_message, provider_name=self._provider_id)
        if failure_type == "unavailable":
            return ProviderUnavailable(
                self._failure_message, provider_name=self._provider_id, status_code=503
            )
        if failure_type == "data":
            return ProviderDataError(
                self._failure_message, provider_name=self._provider_id,
                raw_payload={"unexpected": True},
            )
        return Exception(self._failure_message)

    @property
    def provider_id(self) -> str:
        return self._provider_id

    @property
    def display_name(self) -> str:
        return self._provider_id.capitalize()

    @property
    def marker_type(self) -> str:
        return self._marker_type

    def is_configured(self) -> bool:
        return True

    def authorization_url(self, state: str, market_hint: str | None = None) -> str:
        return f"https://auth.example.com/{self._provider_id}?state={state}&market={market_hint or ''}"

    def exchange_code(self, code: str) -> OAuthToken:
        if code == "bad-code":
            raise AuthExchangeError("Authorization code expired", provider_name=self._provider_id)
        return OAuthToken(
            access_token=f"access-{code}",
            refresh_token=f"refresh-{code}",
            expires_at=datetime.now(timezone.utc) + timedelta(hours=2),
            external_reference=self._external_reference,
        )

    def refresh(self, token: OAuthToken) -> OAuthToken:
        self.refresh_calls += 1
        if self._refresh_failure_type:
            raise self._error(self._refresh_failure_type)
        return OAuthToken(
            access_token=f"refreshed-{self.refresh_calls}",
            refresh_token=token.refresh_token,
            expires_at=datetime.now(timezone.utc) + timedelta(hours=2),
        )

    def fetch_accounts(self, token: OAuthToken) -> list[ProviderAccount]:
        self.fetch_accounts_calls += 1
        if self._should_fail:
            raise self._error(self._failure_type)
        return list(self._accounts)

    def fetch_transactions(
        self,
        token: OAuthToken,
        external_account_id: str,
        window: FetchWindow,
        marker: str | None = None,
    ) -> TransactionBatch:
        self.transaction_calls.append((external_account_id, window, marker))
        if external_account_id in self._failing_account_ids:
            raise self._error(self._failure_type if self._failure_type != "generic" else "unavailable")
        txns = [
            t for t in self._transactions.get(external_account_id, [])
            if t.transaction_date is None
            or window.start_date <= t.transaction_date <= window.end_date
        ]
        return TransactionBatch(
            transactions=txns,
            removed_ids=list(self._removed_ids.get(external_account_id, [])),
            next_marker=self.next_markers.get(external_account_id),
        )


class MockProviderRegistry(ProviderRegistry):
    """Mock provider registry for testing.

    Allows injecting mock providers without going through initialization.
    """

    def __init__(self, providers: dict | None = None):
        """Initialize with optional pre-configured providers.

        Args:
            providers: Dict mapping provider id to adapter.
                      If None, starts empty.
        """
        super().__init__()
        if providers:
            for provider_id, provider in providers.items():
                self._providers[provider_id] = provider

    def initialize_default_providers(self) -> None:
        """Override to do nothing - tests configure providers explicitly."""
        pass


# Sample data for tests

SAMPLE_TINK_ACCOUNTS = [
    ProviderAccount(
        id="tink_acc_001",
        name="Everyday Checking",
        institution="ING",
        account_type="checking",
        currency="EUR",
        balance=Decimal("1250.50"),
        account_number="4300",
        iban="NL91 ABNA 0417 1643 00",
        metadata={"tink_type": "CHECKING"},
    ),
    ProviderAccount(
        id="tink_acc_002",
        name="Savings",
        institution="ING",
        account_type="savings",
        currency="EUR",
        balance=Decimal("10000.00"),
        account_number="4567",
        iban="NL20INGB0001234567",
    ),
]

SAMPLE_TINK_TRANSACTIONS = {
    "tink_acc_001": [
        ProviderTransaction(
            account_id="tink_acc_001",
            external_id="tx_001",
            transaction_date=_days_ago(1),
            amount=Decimal("-42.10"),
            currency="EUR",
            description="ALBERT HEIJN 1234",
            counterparty_name="Albert Heijn",
            category="Groceries",
        ),
        ProviderTransaction(
            account_id="tink_acc_001",
            external_id="tx_002",
            transaction_date=_days_ago(3),
            amount=Decimal("2500.00"),
            currency="EUR",
            description="Salary",
            counterparty_name="ACME BV",
            category="Income",
        ),
        ProviderTransaction(
            account_id="tink_acc_001",
            external_id="tx_003",
            transaction_date=_days_ago(0),
            amount=Decimal("-9.99"),
            currency="EUR",
            description="Streaming subscription",
            booking_status="pending",
        ),
    ],
    "tink_acc_002": [
        ProviderTransaction(
            account_id="tink_acc_002",
            external_id="tx_101",
            transaction_date=_days_ago(10),
            amount=Decimal("500.00"),
            currency="EUR",
            description="Transfer from checking",
        ),
    ],
}
