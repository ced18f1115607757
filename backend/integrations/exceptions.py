"""Typed exception hierarchy for provider errors.

The sync orchestrator decides what to do with a failure purely from its
type: auth-flavoured errors park the connection in ``error`` until the user
re-authorizes, unavailability is retried on the normal schedule, and data
errors are logged with the offending payload.
"""


class ProviderError(Exception):
    """Base exception for all provider-related errors.

    Carries the provider name so callers can identify which provider failed.
    """

    retriable: bool = False

    def __init__(self, message: str, provider_name: str = ""):
        self.provider_name = provider_name
        super().__init__(message)


class AuthExchangeError(ProviderError):
    """The provider rejected an authorization code (invalid, expired, reused)."""

    pass


class ProviderAuthError(ProviderError):
    """A stored credential was rejected (HTTP 401/403, login required)."""

    pass


class TokenRefreshUnavailable(ProviderAuthError):
    """The access token expired and the provider offers no refresh path.

    Terminal for the connection until the user authorizes again; never
    retried automatically.
    """

    pass


class ProviderUnavailable(ProviderError):
    """Network failures, timeouts, rate limits and 5xx responses.

    Retriable on the scheduler's normal cadence.
    """

    retriable = True

    def __init__(
        self,
        message: str,
        provider_name: str = "",
        status_code: int | None = None,
    ):
        self.status_code = status_code
        super().__init__(message, provider_name)


class ProviderDataError(ProviderError):
    """Malformed or unexpected response from the provider.

    ``raw_payload`` keeps the offending body for diagnosis; ``status_code``
    is set when the body came with a 4xx response.
    """

    def __init__(
        self,
        message: str,
        provider_name: str = "",
        raw_payload=None,
        status_code: int | None = None,
    ):
        self.raw_payload = raw_payload
        self.status_code = status_code
        super().__init__(message, provider_name)


def is_credential_error(exc: BaseException) -> bool:
    """Return True for errors that require the user to re-authorize."""
    return isinstance(exc, ProviderAuthError)
