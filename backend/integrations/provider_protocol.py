"""Provider protocol definitions for multi-provider support.

This module defines the normalized data shapes and the adapter interface
that every banking aggregator integration (Tink, Plaid, ...) implements.
Adapters own all provider-specific quirks: sign conventions, fixed-point
amounts, pagination style and institution naming.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Protocol


@dataclass
class OAuthToken:
    """Token material returned by a code exchange or a refresh."""

    access_token: str
    refresh_token: str | None = None
    expires_at: datetime | None = None  # None = does not expire
    token_type: str = "bearer"
    scope: str | None = None
    external_reference: str | None = None  # Plaid item id, Tink user id


@dataclass
class ProviderAccount:
    """Normalized account data from any provider.

    All provider clients must map their account data to this format.
    """

    id: str  # Provider's external ID for the account
    name: str  # Account name/nickname
    institution: str  # Human-readable bank name
    account_type: str = "checking"  # Canonical type, see sync_planner
    currency: str = "EUR"
    balance: Decimal | None = None
    account_number: str | None = None  # Account number or mask
    iban: str | None = None
    bic: str | None = None
    status: str = "active"  # "active" | "inactive" | "closed"
    metadata: dict = field(default_factory=dict)  # Merged into Account.provider_metadata
    raw_data: dict | None = None  # Raw provider response for audit


@dataclass
class ProviderTransaction:
    """Normalized transaction data from any provider.

    ``amount`` follows the canonical sign: positive is money coming in.
    """

    account_id: str  # Provider's account ID this transaction belongs to
    external_id: str  # Provider's unique ID for this transaction
    transaction_date: date | None
    amount: Decimal | None
    currency: str
    description: str | None = None
    counterparty_name: str | None = None
    category: str | None = None
    reference: str | None = None
    booking_status: str = "booked"  # "pending" | "booked"
    pending_external_id: str | None = None  # Pending predecessor, if the provider links them
    raw_data: dict | None = None  # Raw provider response for audit


@dataclass
class FetchWindow:
    """Date range and page budget for one transaction fetch."""

    start_date: date
    end_date: date
    limit: int | None = None


@dataclass
class TransactionBatch:
    """Result of a fetch_transactions() call.

    ``next_marker`` is the cursor or page token to replay on the next
    incremental fetch; None means there is nothing to persist.
    """

    transactions: list[ProviderTransaction] = field(default_factory=list)
    removed_ids: list[str] = field(default_factory=list)
    next_marker: str | None = None


class ProviderAdapter(Protocol):
    """Protocol that all banking aggregator adapters must implement."""

    @property
    def provider_id(self) -> str:
        """Stable identifier stored on connections (e.g. ``"tink"``)."""
        ...

    @property
    def display_name(self) -> str:
        """Human-readable provider name."""
        ...

    @property
    def marker_type(self) -> str:
        """Kind of pagination marker this adapter yields (``cursor`` or ``page_token``)."""
        ...

    def is_configured(self) -> bool:
        """Return True if application credentials for this provider are present."""
        ...

    def authorization_url(self, state: str, market_hint: str | None = None) -> str:
        """Build the URL the user visits to grant access.

        Args:
            state: Opaque value echoed back on the OAuth callback.
            market_hint: Optional ISO country code used to preselect banks.
        """
        ...

    def exchange_code(self, code: str) -> OAuthToken:
        """Exchange an authorization code for tokens.

        Raises:
            AuthExchangeError: If the code is invalid or expired.
        """
        ...

    def refresh(self, token: OAuthToken) -> OAuthToken:
        """Obtain a fresh access token.

        Raises:
            TokenRefreshUnavailable: If the provider issued no refresh token.
        """
        ...

    def fetch_accounts(self, token: OAuthToken) -> list[ProviderAccount]:
        """Fetch every account visible to the token."""
        ...

    def fetch_transactions(
        self,
        token: OAuthToken,
        external_account_id: str,
        window: FetchWindow,
        marker: str | None = None,
    ) -> TransactionBatch:
        """Fetch transactions for one account.

        Args:
            token: Credential to authenticate with.
            external_account_id: Provider's account id.
            window: Requested date range and page budget.
            marker: Previously persisted cursor or page token, if any.

        Raises:
            ProviderUnavailable: On network or 5xx failures.
            ProviderDataError: On malformed responses.
        """
        ...
