"""Keyring-backed storage for aggregator application secrets.

Wraps the ``keyring`` library so the Plaid and Tink client secrets can
live in the OS keychain instead of ``.env``.  These are the app-level
secrets used to talk to each aggregator; per-connection OAuth tokens are
stored in the database by :mod:`services.credential_service`.
"""

import logging

logger = logging.getLogger(__name__)

SERVICE_NAME = "ledgerlink"

CREDENTIAL_KEYS: frozenset[str] = frozenset(
    {
        "PLAID_CLIENT_ID",
        "PLAID_SECRET",
        "TINK_CLIENT_ID",
        "TINK_CLIENT_SECRET",
    }
)


def get_credential(key: str) -> str | None:
    """Retrieve a secret from the keychain.

    Args:
        key: The credential name (e.g. ``"TINK_CLIENT_SECRET"``).

    Returns:
        The stored value, or ``None`` if not found or the keychain
        backend is unavailable.
    """
    try:
        import keyring
    except ImportError:
        return None

    try:
        return keyring.get_password(SERVICE_NAME, key)
    except Exception:
        logger.debug("keyring lookup failed for %s", key, exc_info=True)
        return None
