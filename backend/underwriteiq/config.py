"""Application settings loaded from environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict

# Env var names that must be set before the service can take traffic.
REQUIRED_SETTINGS = {
    "openai_api_key": "OPENAI_API_KEY",
    "kv_url": "KV_URL",
    "kv_token": "KV_TOKEN",
    "blob_read_write_token": "BLOB_READ_WRITE_TOKEN",
    "ghl_api_key": "GHL_API_KEY",
    "ghl_location_id": "GHL_LOCATION_ID",
}

RECOMMENDED_SETTINGS = {
    "redirect_url_fundable": "REDIRECT_URL_FUNDABLE",
    "redirect_url_not_fundable": "REDIRECT_URL_NOT_FUNDABLE",
    "cron_secret": "CRON_SECRET",
}


class ConfigError(RuntimeError):
    """Raised at startup when required configuration is missing."""


class Settings(BaseSettings):
    # LLM
    openai_api_key: str = ""
    openai_timeout: int = 90_000  # ms
    llm_model: str = "gpt-4o-mini"
    langfuse_secret_key: str = ""
    langfuse_public_key: str = ""
    langfuse_host: str = "https://cloud.langfuse.com"

    # Storage
    kv_url: str = ""
    kv_token: str = ""
    kv_backend: str = "redis"  # redis | memory
    kv_prefix: str = "uwiq:"
    blob_read_write_token: str = ""
    blob_api_url: str = "https://blob.vercel-storage.com"

    # CRM
    ghl_api_key: str = ""
    ghl_location_id: str = ""
    ghl_api_url: str = "https://services.leadconnectorhq.com"

    # Redirects + feature flags
    redirect_url_fundable: str = ""
    redirect_url_not_fundable: str = ""
    redirect_base_url: str = "https://fundhub.ai"
    affiliate_dashboard_enabled: bool = True
    identity_verification_enabled: bool = True

    # HTTP surface
    cron_secret: str = ""
    public_base_url: str = ""
    allowed_origins: str = "*"
    rate_limit_per_minute: int = 10
    rate_limit_enabled: bool = True

    log_level: str = "INFO"
    log_format: str = "console"  # console | json

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    def missing_required(self) -> list[str]:
        return [env for field, env in REQUIRED_SETTINGS.items() if not getattr(self, field)]

    def missing_recommended(self) -> list[str]:
        return [env for field, env in RECOMMENDED_SETTINGS.items() if not getattr(self, field)]

    def validate_required(self) -> None:
        """Raise ConfigError naming every missing required variable."""
        missing = self.missing_required()
        if missing:
            raise ConfigError(f"Missing required environment variables: {', '.join(missing)}")

    @property
    def openai_timeout_seconds(self) -> float:
        return max(self.openai_timeout, 1) / 1000


_settings: Settings | None = None


def load_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Drop the cached Settings so the next load re-reads the environment."""
    global _settings
    _settings = None
