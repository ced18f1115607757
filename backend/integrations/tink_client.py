"""Tink API client.

This module implements the ProviderAdapter protocol for Tink, the European
open-banking aggregator, with direct HTTP requests through ``httpx``.

Tink specifics handled here:
- Amounts are fixed-point ``{"unscaledValue", "scale"}`` pairs and already
  use the canonical sign (money in is positive).
- Transactions are paged with ``nextPageToken`` plus explicit booked-date
  query parameters.
- Access tokens expire (``expires_in`` seconds) and come with a refresh
  token.
"""

import logging
from datetime import datetime, timedelta, timezone
from urllib.parse import urlencode

import httpx

from config import settings
from integrations.exceptions import (
    AuthExchangeError,
    ProviderAuthError,
    ProviderDataError,
    ProviderUnavailable,
    TokenRefreshUnavailable,
)
from integrations.institutions import institution_display_name
from integrations.parsing_utils import fixed_point_to_decimal, normalize_iban, parse_iso_date
from integrations.provider_protocol import (
    FetchWindow,
    OAuthToken,
    ProviderAccount,
    ProviderTransaction,
    TransactionBatch,
)

logger = logging.getLogger(__name__)

PROVIDER_ID = "tink"

_SCOPES = "accounts:read,balances:read,transactions:read"

# Largest page Tink's data v2 endpoints accept.
_MAX_PAGE_SIZE = 100

_ACCOUNT_TYPE_MAP: dict[str, str] = {
    "CHECKING": "checking",
    "SAVINGS": "savings",
    "CREDIT_CARD": "credit_card",
    "LOAN": "loan",
    "MORTGAGE": "loan",
    "INVESTMENT": "investment",
    "PENSION": "investment",
}


class TinkClient:
    """Wrapper around the Tink REST API.

    Implements the ProviderAdapter protocol. A custom ``transport`` can be
    passed to route requests through ``httpx.MockTransport`` in tests.
    """

    def __init__(
        self,
        client_id: str | None = None,
        client_secret: str | None = None,
        redirect_uri: str | None = None,
        api_base_url: str | None = None,
        link_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        self._client_id = client_id or settings.TINK_CLIENT_ID
        self._client_secret = client_secret or settings.TINK_CLIENT_SECRET
        self._redirect_uri = redirect_uri or settings.TINK_REDIRECT_URI
        self._api_base_url = api_base_url or settings.TINK_API_BASE_URL
        self._link_url = link_url or settings.TINK_LINK_URL
        self._timeout = timeout or settings.PROVIDER_HTTP_TIMEOUT_SECONDS
        self._transport = transport

    @property
    def provider_id(self) -> str:
        return PROVIDER_ID

    @property
    def display_name(self) -> str:
        return "Tink"

    @property
    def marker_type(self) -> str:
        return "page_token"

    def is_configured(self) -> bool:
        """Check if Tink client credentials are configured."""
        return bool(self._client_id) and bool(self._client_secret)

    # ------------------------------------------------------------------
    # OAuth
    # ------------------------------------------------------------------

    def authorization_url(self, state: str, market_hint: str | None = None) -> str:
        """Build the Tink Link URL that starts the consent flow."""
        params = {
            "client_id": self._client_id,
            "redirect_uri": self._redirect_uri,
            "response_type": "code",
            "scope": _SCOPES,
            "state": state,
            "market": (market_hint or settings.TINK_DEFAULT_MARKET).upper(),
        }
        return f"{self._link_url}?{urlencode(params)}"

    def exchange_code(self, code: str) -> OAuthToken:
        """Exchange an authorization code for an access/refresh token pair.

        Raises:
            AuthExchangeError: If Tink rejects the code.
            ProviderUnavailable: On network or server errors.
        """
        if not code:
            raise AuthExchangeError("Authorization code is empty", provider_name="Tink")
        try:
            payload = self._request(
                "POST",
                "/api/v1/oauth/token",
                data={
                    "grant_type": "authorization_code",
                    "code": code,
                    "client_id": self._client_id,
                    "client_secret": self._client_secret,
                },
            )
        except (ProviderAuthError, ProviderDataError) as exc:
            if isinstance(exc, ProviderDataError) and exc.status_code is None:
                raise
            raise AuthExchangeError(
                f"Tink rejected the authorization code: {exc}",
                provider_name="Tink",
            ) from exc
        return self._parse_token(payload)

    def refresh(self, token: OAuthToken) -> OAuthToken:
        """Refresh an expired access token.

        Raises:
            TokenRefreshUnavailable: If no refresh token was issued.
            ProviderAuthError: If Tink rejects the refresh token.
        """
        if not token.refresh_token:
            raise TokenRefreshUnavailable(
                "Tink issued no refresh token for this connection",
                provider_name="Tink",
            )
        try:
            payload = self._request(
                "POST",
                "/api/v1/oauth/token",
                data={
                    "grant_type": "refresh_token",
                    "refresh_token": token.refresh_token,
                    "client_id": self._client_id,
                    "client_secret": self._client_secret,
                },
            )
        except ProviderDataError as exc:
            if exc.status_code is None:
                raise
            # invalid_grant: the refresh token itself is no longer accepted
            raise ProviderAuthError(
                f"Tink rejected the refresh token (HTTP {exc.status_code})",
                provider_name="Tink",
            ) from exc
        refreshed = self._parse_token(payload)
        # Tink may omit the refresh token on refresh; the old one stays valid
        if not refreshed.refresh_token:
            refreshed.refresh_token = token.refresh_token
        logger.info("Tink: access token refreshed")
        return refreshed

    @staticmethod
    def _parse_token(payload: dict) -> OAuthToken:
        access_token = payload.get("access_token")
        if not access_token:
            raise ProviderDataError(
                "Tink token response has no access_token",
                provider_name="Tink",
                raw_payload={k: v for k, v in payload.items() if "token" not in k},
            )
        expires_at = None
        expires_in = payload.get("expires_in")
        if expires_in is not None:
            try:
                expires_at = datetime.now(timezone.utc) + timedelta(seconds=int(expires_in))
            except (TypeError, ValueError):
                raise ProviderDataError(
                    f"Tink returned a non-numeric expires_in: {expires_in!r}",
                    provider_name="Tink",
                )
        return OAuthToken(
            access_token=access_token,
            refresh_token=payload.get("refresh_token"),
            expires_at=expires_at,
            token_type=(payload.get("token_type") or "bearer").lower(),
            scope=payload.get("scope"),
        )

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def fetch_accounts(self, token: OAuthToken) -> list[ProviderAccount]:
        """Fetch all accounts, following ``nextPageToken`` until exhausted."""
        accounts: list[ProviderAccount] = []
        page_token: str | None = None
        while True:
            params = {"pageSize": _MAX_PAGE_SIZE}
            if page_token:
                params["pageToken"] = page_token
            payload = self._request("GET", "/data/v2/accounts", token=token, params=params)
            for raw in payload.get("accounts") or []:
                accounts.append(self._map_account(raw))
            page_token = payload.get("nextPageToken") or None
            if not page_token:
                break

        logger.info("Tink: %d accounts fetched", len(accounts))
        return accounts

    def _map_account(self, raw: dict) -> ProviderAccount:
        """Map a Tink v2 account to a ProviderAccount."""
        account_id = raw.get("id")
        if not account_id:
            raise ProviderDataError(
                "Tink account without id", provider_name="Tink", raw_payload=raw
            )

        balances = raw.get("balances") or {}
        balance_amount = (
            (balances.get("booked") or {}).get("amount")
            or (balances.get("available") or {}).get("amount")
            or {}
        )
        balance = fixed_point_to_decimal(balance_amount.get("value"))
        currency = (balance_amount.get("currencyCode") or "EUR").upper()

        identifiers = raw.get("identifiers") or {}
        iban_info = identifiers.get("iban") or {}
        iban = normalize_iban(iban_info.get("iban"))
        account_number = (identifiers.get("financialInstitution") or {}).get("accountNumber")
        if not account_number and iban:
            account_number = iban[-4:]

        raw_type = str(raw.get("type") or "").upper()
        status = "closed" if raw.get("closed") else "active"

        institution_id = raw.get("providerName") or raw.get("financialInstitutionId")
        return ProviderAccount(
            id=account_id,
            name=raw.get("name") or "Tink Account",
            institution=institution_display_name(institution_id),
            account_type=_ACCOUNT_TYPE_MAP.get(raw_type, "checking"),
            currency=currency,
            balance=balance,
            account_number=account_number,
            iban=iban,
            bic=iban_info.get("bic"),
            status=status,
            metadata={
                "tink_type": raw_type or None,
                "financial_institution_id": raw.get("financialInstitutionId"),
                "customer_segment": raw.get("customerSegment"),
            },
            raw_data=raw,
        )

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def fetch_transactions(
        self,
        token: OAuthToken,
        external_account_id: str,
        window: FetchWindow,
        marker: str | None = None,
    ) -> TransactionBatch:
        """Fetch booked and pending transactions inside ``window``.

        Pages are walked until Tink stops returning ``nextPageToken`` or
        ``window.limit`` transactions have been collected; in the latter case
        the remaining page token is returned as ``next_marker``. A stored
        ``marker`` resumes a walk; if Tink no longer accepts it (HTTP 400)
        the walk restarts from the first page.
        """
        transactions: list[ProviderTransaction] = []
        page_token = marker
        limit = window.limit

        while True:
            params = {
                "accountIdIn": external_account_id,
                "bookedDateGte": window.start_date.isoformat(),
                "bookedDateLte": window.end_date.isoformat(),
                "pageSize": _MAX_PAGE_SIZE if limit is None else max(1, min(_MAX_PAGE_SIZE, limit)),
            }
            if page_token:
                params["pageToken"] = page_token

            try:
                payload = self._request("GET", "/data/v2/transactions", token=token, params=params)
            except ProviderDataError as exc:
                if page_token and page_token == marker and exc.status_code == 400:
                    logger.warning(
                        "Tink: stored page token rejected for account %s, restarting",
                        external_account_id,
                    )
                    page_token = marker = None
                    continue
                raise

            for raw in payload.get("transactions") or []:
                transactions.append(self._map_transaction(raw, external_account_id))

            page_token = payload.get("nextPageToken") or None
            if not page_token:
                break
            if limit is not None and len(transactions) >= limit:
                logger.info(
                    "Tink: page limit reached for account %s, continuation saved",
                    external_account_id,
                )
                break

        logger.info(
            "Tink: %d transactions fetched for account %s (%s..%s)",
            len(transactions), external_account_id, window.start_date, window.end_date,
        )
        return TransactionBatch(transactions=transactions, next_marker=page_token)

    def _map_transaction(self, raw: dict, external_account_id: str) -> ProviderTransaction:
        """Map a Tink v2 transaction to a ProviderTransaction.

        Tink already reports outflows as negative amounts, so no sign flip.
        """
        amount_info = raw.get("amount") or {}
        dates = raw.get("dates") or {}
        descriptions = raw.get("descriptions") or {}
        counterparties = raw.get("counterparties") or {}
        amount = fixed_point_to_decimal(amount_info.get("value"))

        # The other side of the transaction: the payee for outflows, the payer for inflows
        side = "payee" if amount is not None and amount < 0 else "payer"
        counterparty = (counterparties.get(side) or {}).get("name")
        if not counterparty:
            counterparty = (raw.get("merchantInformation") or {}).get("merchantName")

        status = str(raw.get("status") or "BOOKED").upper()
        category = ((raw.get("categories") or {}).get("pfm") or {}).get("name")

        return ProviderTransaction(
            account_id=raw.get("accountId") or external_account_id,
            external_id=raw.get("id") or "",
            transaction_date=parse_iso_date(dates.get("booked") or dates.get("value")),
            amount=amount,
            currency=(amount_info.get("currencyCode") or "EUR").upper(),
            description=descriptions.get("display") or descriptions.get("original"),
            counterparty_name=counterparty,
            category=category,
            reference=raw.get("reference"),
            booking_status="pending" if status == "PENDING" else "booked",
            raw_data=raw,
        )

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def _request(
        self,
        method: str,
        path: str,
        token: OAuthToken | None = None,
        params: dict | None = None,
        data: dict | None = None,
    ) -> dict:
        """Perform one HTTP call and map failures onto the exception hierarchy."""
        headers = {"Accept": "application/json"}
        if token is not None:
            headers["Authorization"] = f"Bearer {token.access_token}"

        try:
            with httpx.Client(
                base_url=self._api_base_url,
                timeout=self._timeout,
                transport=self._transport,
            ) as client:
                response = client.request(method, path, params=params, data=data, headers=headers)
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            if status in (401, 403):
                raise ProviderAuthError(
                    f"Tink authentication failed (HTTP {status})",
                    provider_name="Tink",
                ) from exc
            if status == 429 or status >= 500:
                raise ProviderUnavailable(
                    f"Tink API unavailable (HTTP {status})",
                    provider_name="Tink",
                    status_code=status,
                ) from exc
            raise ProviderDataError(
                f"Tink API rejected {method} {path} (HTTP {status})",
                provider_name="Tink",
                raw_payload=exc.response.text,
                status_code=status,
            ) from exc
        except httpx.RequestError as exc:
            raise ProviderUnavailable(
                f"Tink connection failed: {exc}",
                provider_name="Tink",
            ) from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise ProviderDataError(
                f"Tink returned non-JSON response for {path}",
                provider_name="Tink",
                raw_payload=response.text,
            ) from exc
        if not isinstance(payload, dict):
            raise ProviderDataError(
                f"Tink returned an unexpected payload for {path}",
                provider_name="Tink",
                raw_payload=payload,
            )
        return payload
