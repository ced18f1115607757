"""Provider registry for banking aggregator adapters.

The registry is responsible for:
- Initializing and tracking available adapters
- Providing access to a specific adapter by provider id
- Listing all configured providers
"""

import importlib
import logging

from integrations.provider_protocol import ProviderAdapter

logger = logging.getLogger(__name__)

# Each tuple is (provider_id, module_path, class_name).
# Adding a new provider only requires appending one entry here.
PROVIDER_DEFINITIONS: list[tuple[str, str, str]] = [
    ("tink", "integrations.tink_client", "TinkClient"),
    ("plaid", "integrations.plaid_client", "PlaidClient"),
]

ALL_PROVIDER_IDS: list[str] = [provider_id for provider_id, _, _ in PROVIDER_DEFINITIONS]


class ProviderRegistry:
    """Explicit map of provider id -> adapter.

    Example:
        registry = ProviderRegistry()
        registry.initialize_default_providers()
        if registry.is_configured("tink"):
            adapter = registry.get_provider("tink")
            accounts = adapter.fetch_accounts(token)
    """

    def __init__(self):
        """Initialize the registry with no providers.

        Call register_provider() to add adapters, or use
        initialize_default_providers() to auto-detect configured ones.
        """
        self._providers: dict[str, ProviderAdapter] = {}

    def register_provider(self, provider: ProviderAdapter) -> None:
        """Register an adapter under its ``provider_id``.

        Args:
            provider: An adapter implementing the ProviderAdapter protocol.
        """
        self._providers[provider.provider_id] = provider

    def get_provider(self, provider_id: str) -> ProviderAdapter:
        """Get an adapter by provider id.

        Args:
            provider_id: The provider id (e.g. ``"tink"``, ``"plaid"``).

        Returns:
            The registered adapter.

        Raises:
            ValueError: If the provider is not registered/configured.
        """
        if provider_id not in self._providers:
            raise ValueError(f"Provider '{provider_id}' is not configured")
        return self._providers[provider_id]

    def list_providers(self) -> list[str]:
        """List all registered provider ids."""
        return list(self._providers.keys())

    def is_configured(self, provider_id: str) -> bool:
        """Check if a provider is registered.

        Args:
            provider_id: The provider id to check.

        Returns:
            True if the provider is registered, False otherwise.
        """
        return provider_id in self._providers

    def initialize_default_providers(self) -> None:
        """Auto-detect and initialize all configured providers.

        Each import is wrapped in try/except so a missing SDK for one
        provider never prevents the rest from initializing.
        """
        for provider_id, module_path, class_name in PROVIDER_DEFINITIONS:
            try:
                module = importlib.import_module(module_path)
                cls = getattr(module, class_name)
                self._try_init_provider(provider_id, cls)
            except ImportError:
                logger.debug("Provider skipped (not installed): %s", provider_id)

        provider_ids = self.list_providers()
        if provider_ids:
            logger.info("Active providers: %s", ", ".join(provider_ids))
        else:
            logger.warning("No providers configured")

    def _try_init_provider(self, provider_id: str, cls: type) -> None:
        """Attempt to instantiate and register a single adapter.

        Args:
            provider_id: Provider id for logging.
            cls: Adapter class to instantiate.
        """
        try:
            instance = cls()
            if instance.is_configured():
                self.register_provider(instance)
                logger.info("Provider registered: %s", provider_id)
            else:
                logger.debug("Provider skipped (not configured): %s", provider_id)
        except Exception:
            logger.warning(
                "Provider failed to initialize: %s", provider_id, exc_info=True
            )


def get_provider_registry() -> ProviderRegistry:
    """Create and return a provider registry with default providers.

    Returns:
        A ProviderRegistry with all available adapters registered.
    """
    registry = ProviderRegistry()
    registry.initialize_default_providers()
    return registry
