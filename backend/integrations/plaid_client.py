"""Plaid API client.

This module implements the ProviderAdapter protocol for Plaid via the
plaid-python SDK.

Plaid specifics handled here:
- The "authorization code" is the Link ``public_token``; exchanging it
  yields an access token that never expires and no refresh token.
- Transactions come from ``/transactions/sync``: an opaque cursor is
  replayed to receive only what was added, modified or removed since.
- Raw amounts are positive for money leaving the account, so the sign is
  flipped to the canonical convention.
"""

import json
import logging
from decimal import Decimal

import urllib3
from plaid import ApiException, Environment
from plaid.api.plaid_api import PlaidApi
from plaid.api_client import ApiClient
from plaid.configuration import Configuration
from plaid.model.accounts_get_request import AccountsGetRequest
from plaid.model.country_code import CountryCode
from plaid.model.institutions_get_by_id_request import InstitutionsGetByIdRequest
from plaid.model.item_public_token_exchange_request import ItemPublicTokenExchangeRequest
from plaid.model.link_token_create_request import LinkTokenCreateRequest
from plaid.model.link_token_create_request_user import LinkTokenCreateRequestUser
from plaid.model.products import Products
from plaid.model.transactions_sync_request import TransactionsSyncRequest
from plaid.model.transactions_sync_request_options import TransactionsSyncRequestOptions

from config import settings
from integrations.exceptions import (
    AuthExchangeError,
    ProviderAuthError,
    ProviderDataError,
    ProviderUnavailable,
    TokenRefreshUnavailable,
)
from integrations.institutions import institution_display_name
from integrations.parsing_utils import parse_iso_date, to_decimal
from integrations.provider_protocol import (
    FetchWindow,
    OAuthToken,
    ProviderAccount,
    ProviderTransaction,
    TransactionBatch,
)

logger = logging.getLogger(__name__)

PROVIDER_ID = "plaid"

# Map PLAID_ENVIRONMENT setting to SDK host URLs.
# Plaid's Development environment is deprecated; only sandbox and production
# are supported.
_ENVIRONMENT_MAP: dict[str, str] = {
    "sandbox": Environment.Sandbox,
    "production": Environment.Production,
}

_LINK_URL = "https://cdn.plaid.com/link/v2/stable/link.html"

# /transactions/sync accepts at most 500 per page; stop after 100 pages so a
# runaway cursor cannot loop forever.
_SYNC_PAGE_SIZE = 500
_MAX_SYNC_PAGES = 100

_AUTH_ERROR_CODES = frozenset({
    "INVALID_ACCESS_TOKEN",
    "ITEM_LOGIN_REQUIRED",
    "ACCESS_NOT_GRANTED",
    "ITEM_NOT_FOUND",
    "PENDING_EXPIRATION",
})
_EXCHANGE_ERROR_CODES = frozenset({
    "INVALID_PUBLIC_TOKEN",
    "INVALID_LINK_TOKEN",
})
_UNAVAILABLE_ERROR_TYPES = frozenset({
    "RATE_LIMIT_EXCEEDED",
    "INSTITUTION_ERROR",
    "API_ERROR",
})
_MUTATION_DURING_PAGINATION = "TRANSACTIONS_SYNC_MUTATION_DURING_PAGINATION"

_DEPOSITORY_SUBTYPES: dict[str, str] = {
    "checking": "checking",
    "savings": "savings",
    "money market": "savings",
    "cd": "savings",
    "hsa": "savings",
}


def _enum_value(value) -> str:
    """Return the plain string behind a Plaid SDK enum (or a raw string)."""
    if value is None:
        return ""
    return str(getattr(value, "value", value)).lower()


def _as_dict(obj) -> dict:
    """Convert a Plaid SDK model (or a plain mapping) to a dict."""
    if obj is None:
        return {}
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    return dict(obj)


class PlaidClient:
    """Wrapper around the Plaid API.

    Implements the ProviderAdapter protocol using the plaid-python SDK.
    """

    def __init__(
        self,
        client_id: str | None = None,
        secret: str | None = None,
        environment: str | None = None,
    ):
        self._client_id = client_id or settings.PLAID_CLIENT_ID
        self._secret = secret or settings.PLAID_SECRET
        self._environment = environment or settings.PLAID_ENVIRONMENT

        # Lazily created on first use
        self._api: PlaidApi | None = None
        self._institution_names: dict[str, str] = {}

    def _get_api(self) -> PlaidApi:
        """Return (and cache) a PlaidApi instance."""
        if self._api is None:
            env_key = self._environment.lower()
            host = _ENVIRONMENT_MAP.get(env_key)
            if host is None:
                logger.warning(
                    "Unknown PLAID_ENVIRONMENT=%r, falling back to sandbox. "
                    "Valid values: sandbox, production",
                    self._environment,
                )
                host = Environment.Sandbox
            logger.info(
                "Plaid API client: environment=%s, host=%s, client_id=<configured>",
                env_key,
                host,
            )
            configuration = Configuration(
                host=host,
                api_key={
                    "clientId": self._client_id,
                    "secret": self._secret,
                },
            )
            api_client = ApiClient(configuration)
            self._api = PlaidApi(api_client)
        return self._api

    @property
    def provider_id(self) -> str:
        return PROVIDER_ID

    @property
    def display_name(self) -> str:
        return "Plaid"

    @property
    def marker_type(self) -> str:
        return "cursor"

    def is_configured(self) -> bool:
        """Check if Plaid credentials are configured."""
        return bool(self._client_id) and bool(self._secret)

    # ------------------------------------------------------------------
    # Link & token exchange
    # ------------------------------------------------------------------

    def create_link_token(self, client_user_id: str) -> str:
        """Create a Plaid Link token for the browser-based auth flow.

        Args:
            client_user_id: Stable id of the end user (the tenant id).

        Returns:
            The link_token string to be passed to Plaid Link.
        """
        api = self._get_api()
        request = LinkTokenCreateRequest(
            user=LinkTokenCreateRequestUser(client_user_id=client_user_id),
            client_name=settings.PLAID_CLIENT_NAME,
            products=[Products("transactions")],
            country_codes=[CountryCode(code) for code in settings.PLAID_COUNTRY_CODES],
            language="en",
        )
        try:
            response = api.link_token_create(request)
        except ApiException as exc:
            self._raise_mapped(exc, "link_token_create")
        except urllib3.exceptions.HTTPError as exc:
            raise ProviderUnavailable(f"Plaid connection failed: {exc}", provider_name="Plaid") from exc
        return response["link_token"]

    def authorization_url(self, state: str, market_hint: str | None = None) -> str:
        """Return a hosted Plaid Link URL.

        Plaid has no redirect-style consent page; the caller opens Link with
        a freshly created link token and posts the resulting public token to
        the OAuth callback. ``state`` identifies the Link session and
        ``market_hint`` is ignored (countries come from settings).
        """
        link_token = self.create_link_token(client_user_id=state)
        return f"{_LINK_URL}?isWebview=true&token={link_token}"

    def exchange_code(self, code: str) -> OAuthToken:
        """Exchange a Link public_token for a permanent access_token.

        Raises:
            AuthExchangeError: If Plaid rejects the public token.
        """
        if not code:
            raise AuthExchangeError("Public token is empty", provider_name="Plaid")
        api = self._get_api()
        try:
            response = api.item_public_token_exchange(
                ItemPublicTokenExchangeRequest(public_token=code)
            )
        except ApiException as exc:
            error_code, _, _ = self._parse_error_body(exc)
            status = exc.status or 0
            if error_code in _EXCHANGE_ERROR_CODES or status in (400, 401, 403):
                raise AuthExchangeError(
                    f"Plaid rejected the public token ({error_code or status})",
                    provider_name="Plaid",
                ) from exc
            self._raise_mapped(exc, "item_public_token_exchange")
        except urllib3.exceptions.HTTPError as exc:
            raise ProviderUnavailable(f"Plaid connection failed: {exc}", provider_name="Plaid") from exc

        logger.info("Plaid: public token exchanged for item %s", response["item_id"])
        return OAuthToken(
            access_token=response["access_token"],
            refresh_token=None,
            expires_at=None,
            token_type="access_token",
            external_reference=response["item_id"],
        )

    def refresh(self, token: OAuthToken) -> OAuthToken:
        """Plaid access tokens cannot be refreshed.

        When an Item needs attention the user has to go through Link update
        mode, so this always raises.
        """
        raise TokenRefreshUnavailable(
            "Plaid access tokens have no refresh path; re-link the institution",
            provider_name="Plaid",
        )

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def fetch_accounts(self, token: OAuthToken) -> list[ProviderAccount]:
        """Fetch accounts for the Item behind ``token``."""
        api = self._get_api()
        try:
            response = api.accounts_get(AccountsGetRequest(access_token=token.access_token))
        except ApiException as exc:
            self._raise_mapped(exc, "accounts_get")
        except urllib3.exceptions.HTTPError as exc:
            raise ProviderUnavailable(f"Plaid connection failed: {exc}", provider_name="Plaid") from exc

        item = response.get("item") or {}
        institution_id = item.get("institution_id")
        institution = self._institution_name(institution_id)

        accounts: list[ProviderAccount] = []
        for acct in response.get("accounts", []) or []:
            acct_id = acct.get("account_id")
            if not acct_id:
                raise ProviderDataError(
                    "Plaid account without account_id",
                    provider_name="Plaid",
                    raw_payload=_as_dict(acct),
                )
            balances = acct.get("balances") or {}
            acct_type = _enum_value(acct.get("type"))
            acct_subtype = _enum_value(acct.get("subtype"))
            accounts.append(ProviderAccount(
                id=acct_id,
                name=acct.get("name") or acct.get("official_name") or "Plaid Account",
                institution=institution,
                account_type=self._map_account_type(acct_type, acct_subtype),
                currency=(
                    balances.get("iso_currency_code")
                    or balances.get("unofficial_currency_code")
                    or "USD"
                ).upper(),
                balance=to_decimal(balances.get("current")),
                account_number=acct.get("mask"),
                metadata={
                    "plaid_type": acct_type or None,
                    "plaid_subtype": acct_subtype or None,
                    "official_name": acct.get("official_name"),
                    "institution_id": institution_id,
                    "available_balance": str(balances["available"])
                    if balances.get("available") is not None else None,
                },
                raw_data=_as_dict(acct),
            ))

        logger.info("Plaid: %d accounts fetched (%s)", len(accounts), institution)
        return accounts

    def _institution_name(self, institution_id: str | None) -> str:
        """Resolve an institution id to its name, caching per client."""
        if not institution_id:
            return institution_display_name(None)
        if institution_id in self._institution_names:
            return self._institution_names[institution_id]

        name = None
        try:
            response = self._get_api().institutions_get_by_id(
                InstitutionsGetByIdRequest(
                    institution_id=institution_id,
                    country_codes=[CountryCode(code) for code in settings.PLAID_COUNTRY_CODES],
                )
            )
            name = (response.get("institution") or {}).get("name")
        except (ApiException, urllib3.exceptions.HTTPError):
            logger.warning(
                "Plaid: institution lookup failed for %s, using id", institution_id,
                exc_info=True,
            )

        name = name or institution_display_name(institution_id)
        self._institution_names[institution_id] = name
        return name

    @staticmethod
    def _map_account_type(acct_type: str, acct_subtype: str) -> str:
        """Map Plaid type/subtype to a canonical account type."""
        if acct_type == "depository":
            return _DEPOSITORY_SUBTYPES.get(acct_subtype, "checking")
        if acct_type == "credit":
            return "credit_card"
        if acct_type == "loan":
            return "loan"
        if acct_type in ("investment", "brokerage"):
            return "investment"
        return "checking"

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
        """Pull transaction changes for one account with /transactions/sync.

        The cursor, not the date window, decides what comes back: without a
        cursor Plaid replays all history available for the Item. The window
        is only logged. If ``window.limit`` is reached while Plaid still has
        more, the cursor reached so far is returned so the next sync
        continues from it.
        """
        api = self._get_api()
        restarted = False

        while True:
            try:
                return self._sync_pages(api, token, external_account_id, window, marker)
            except ApiException as exc:
                error_code, _, _ = self._parse_error_body(exc)
                if error_code == _MUTATION_DURING_PAGINATION and not restarted:
                    logger.info(
                        "Plaid: data changed during pagination for %s, restarting",
                        external_account_id,
                    )
                    restarted = True
                    continue
                self._raise_mapped(exc, "transactions_sync")
            except urllib3.exceptions.HTTPError as exc:
                raise ProviderUnavailable(
                    f"Plaid connection failed: {exc}", provider_name="Plaid"
                ) from exc

    def _sync_pages(
        self,
        api: PlaidApi,
        token: OAuthToken,
        external_account_id: str,
        window: FetchWindow,
        marker: str | None,
    ) -> TransactionBatch:
        transactions: list[ProviderTransaction] = []
        removed: list[str] = []
        cursor = marker
        limit = window.limit
        pages = 0

        while True:
            kwargs = {
                "access_token": token.access_token,
                "count": _SYNC_PAGE_SIZE if limit is None else max(1, min(_SYNC_PAGE_SIZE, limit)),
                "options": TransactionsSyncRequestOptions(account_id=external_account_id),
            }
            if cursor:
                kwargs["cursor"] = cursor
            response = api.transactions_sync(TransactionsSyncRequest(**kwargs))
            pages += 1

            for txn in list(response.get("added") or []) + list(response.get("modified") or []):
                mapped = self._map_transaction(txn)
                if mapped.account_id == external_account_id:
                    transactions.append(mapped)
            for entry in response.get("removed") or []:
                txn_id = entry.get("transaction_id")
                if txn_id:
                    removed.append(txn_id)

            next_cursor = response.get("next_cursor")
            if next_cursor:
                cursor = next_cursor
            if not response.get("has_more"):
                break
            if limit is not None and len(transactions) >= limit:
                logger.info(
                    "Plaid: page limit reached for account %s, continuation saved",
                    external_account_id,
                )
                break
            if pages >= _MAX_SYNC_PAGES:
                logger.warning(
                    "Plaid: stopped after %d sync pages for account %s",
                    pages, external_account_id,
                )
                break

        logger.info(
            "Plaid: %d transactions, %d removed for account %s (%d pages, window %s..%s)",
            len(transactions), len(removed), external_account_id, pages,
            window.start_date, window.end_date,
        )
        return TransactionBatch(transactions=transactions, removed_ids=removed, next_marker=cursor)

    def _map_transaction(self, txn) -> ProviderTransaction:
        """Map a Plaid transaction to a ProviderTransaction.

        Plaid sign convention: positive amount = money leaving the account.
        Our convention: inflows positive. So we flip the sign.
        """
        raw_amount = to_decimal(txn.get("amount"))
        amount = -raw_amount if raw_amount is not None else None
        if amount is not None and amount == 0:
            amount = Decimal("0")  # avoid storing -0

        counterparty = None
        for party in txn.get("counterparties") or []:
            if party.get("name"):
                counterparty = party.get("name")
                break
        counterparty = counterparty or txn.get("merchant_name")

        category = None
        pfc = txn.get("personal_finance_category")
        if pfc:
            category = pfc.get("primary")
        if not category and txn.get("category"):
            category = list(txn.get("category"))[-1]

        payment_meta = txn.get("payment_meta") or {}

        return ProviderTransaction(
            account_id=txn.get("account_id") or "",
            external_id=txn.get("transaction_id") or "",
            transaction_date=parse_iso_date(txn.get("date") or txn.get("authorized_date")),
            amount=amount,
            currency=(
                txn.get("iso_currency_code")
                or txn.get("unofficial_currency_code")
                or "USD"
            ).upper(),
            description=txn.get("name") or txn.get("original_description"),
            counterparty_name=counterparty,
            category=category,
            reference=payment_meta.get("reference_number"),
            booking_status="pending" if txn.get("pending") else "booked",
            pending_external_id=txn.get("pending_transaction_id"),
            raw_data=_as_dict(txn),
        )

    # ------------------------------------------------------------------
    # Error mapping
    # ------------------------------------------------------------------

    @staticmethod
    def _parse_error_body(exc: ApiException) -> tuple[str, str, str]:
        """Extract (error_code, error_type, error_message) from an ApiException."""
        try:
            body = json.loads(exc.body) if exc.body else {}
        except (TypeError, ValueError):
            return "", "", ""
        if not isinstance(body, dict):
            return "", "", ""
        return (
            body.get("error_code") or "",
            body.get("error_type") or "",
            body.get("error_message") or "",
        )

    def _raise_mapped(self, exc: ApiException, operation: str):
        """Raise the ProviderError subclass matching a Plaid ApiException."""
        status = exc.status or 0
        error_code, error_type, error_message = self._parse_error_body(exc)
        message = f"Plaid {operation} failed"
        if error_code or error_message:
            message = f"Plaid error ({error_code}): {error_message or operation}"

        if status in (401, 403) or error_code in _AUTH_ERROR_CODES:
            raise ProviderAuthError(message, provider_name="Plaid") from exc
        if status == 429 or status >= 500 or error_type in _UNAVAILABLE_ERROR_TYPES:
            raise ProviderUnavailable(message, provider_name="Plaid", status_code=status or None) from exc
        raise ProviderDataError(
            message, provider_name="Plaid", raw_payload=exc.body, status_code=status or None
        ) from exc
