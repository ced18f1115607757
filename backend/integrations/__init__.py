"""Banking aggregator integrations.

This package contains:
- Provider protocol: normalized account/transaction shapes and the adapter interface
- Provider registry: explicit provider id -> adapter map
- Tink client: European open-banking aggregator (httpx)
- Plaid client: North American aggregator (plaid-python SDK)
"""

from integrations.provider_protocol import (
    OAuthToken,
    ProviderAccount,
    ProviderAdapter,
    ProviderTransaction,
)
from integrations.provider_registry import ProviderRegistry, get_provider_registry

__all__ = [
    "OAuthToken",
    "ProviderAccount",
    "ProviderAdapter",
    "ProviderRegistry",
    "ProviderTransaction",
    "get_provider_registry",
]
