"""Application configuration using pydantic-settings."""

from typing import Any

from pydantic import field_validator
from pydantic.fields import FieldInfo
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from services.credential_manager import CREDENTIAL_KEYS, get_credential


class KeychainSettingsSource(PydanticBaseSettingsSource):
    """Load credential fields from the OS keychain via ``keyring``.

    Only fields whose uppercase name appears in
    :data:`~services.credential_manager.CREDENTIAL_KEYS` are looked up.
    All other fields return ``None`` so the next source in the chain
    handles them.
    """

    def get_field_value(
        self, field: FieldInfo, field_name: str
    ) -> tuple[Any, str, bool]:
        env_name = field_name.upper()
        if env_name not in CREDENTIAL_KEYS:
            return None, field_name, False
        value = get_credential(env_name)
        return value, field_name, False

    def __call__(self) -> dict[str, Any]:
        d: dict[str, Any] = {}
        for field_name, field_info in self.settings_cls.model_fields.items():
            value, key, is_complex = self.get_field_value(field_info, field_name)
            if value is not None:
                d[key] = value
        return d


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            KeychainSettingsSource(settings_cls),
            env_settings,
            dotenv_settings,
            file_secret_settings,
        )

    # Database
    DATABASE_URL: str = "sqlite:///./ledgerlink.db"

    # Plaid credentials (optional - for Plaid integration)
    PLAID_CLIENT_ID: str = ""
    PLAID_SECRET: str = ""
    PLAID_ENVIRONMENT: str = "sandbox"
    PLAID_COUNTRY_CODES: list[str] = ["US"]
    PLAID_CLIENT_NAME: str = "LedgerLink"

    # Tink credentials (optional - for Tink integration)
    TINK_CLIENT_ID: str = ""
    TINK_CLIENT_SECRET: str = ""
    TINK_REDIRECT_URI: str = "http://localhost:8000/api/oauth/tink/callback"
    TINK_API_BASE_URL: str = "https://api.tink.com"
    TINK_LINK_URL: str = "https://link.tink.com/1.0/authorize"
    TINK_DEFAULT_MARKET: str = "NL"

    PROVIDER_HTTP_TIMEOUT_SECONDS: float = 30.0

    # Sync planning
    SYNC_THROTTLE_HOURS: float = 20
    SYNC_INCREMENTAL_MAX_HOURS: float = 48
    SYNC_CATCHUP_MAX_DAYS: int = 7
    SYNC_INCREMENTAL_WINDOW_DAYS: int = 2
    SYNC_CATCHUP_WINDOW_DAYS: int = 7
    SYNC_OVERLAP_DAYS: int = 1
    SYNC_BACKFILL_DAYS: dict[str, int] = {
        "checking": 90,
        "credit_card": 90,
        "savings": 365,
        "investment": 365,
        "loan": 365,
    }
    SYNC_DEFAULT_BACKFILL_DAYS: int = 90
    SYNC_TRANSACTION_PAGE_LIMIT: int = 500

    # Orchestration
    SYNC_LOCK_TTL_SECONDS: int = 900
    SYNC_TIMEOUT_SECONDS: float = 600
    TOKEN_EXPIRY_SKEW_SECONDS: int = 300

    # Connection health
    HEALTH_SHORT_WINDOW_DAYS: int = 7
    HEALTH_LONG_WINDOW_DAYS: int = 30
    HEALTH_SHORT_WEIGHT: float = 0.7
    HEALTH_LONG_WEIGHT: float = 0.3
    HEALTH_STREAK_PENALTY: float = 0.1
    HEALTH_MAX_STREAK_PENALTY: float = 0.3
    HEALTH_FAILURE_THRESHOLD: int = 3

    @field_validator("PLAID_ENVIRONMENT", mode="before")
    @classmethod
    def normalize_plaid_environment(cls, v: str) -> str:
        """Lower-case the Plaid environment name (``Sandbox`` -> ``sandbox``)."""
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate and normalize LOG_LEVEL to an uppercase Python logging level."""
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid:
            raise ValueError(f"LOG_LEVEL must be one of {valid}, got {v!r}")
        return v.upper()

    # App settings
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: list[str] = ["http://localhost:5173"]


settings = Settings()
