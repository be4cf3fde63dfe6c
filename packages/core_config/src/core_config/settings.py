from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Any, Optional
from core_config.constants import (
    ANCHOR_TAG,
    CLOUD_ANCHOR_TTL_DAYS,
    DEFAULT_API_ENDPOINT,
    JOURNAL_MAX_ENTRIES,
    TIMEOUT_HOST_MS,
    TIMEOUT_REGISTRY_MS,
    TIMEOUT_RESOLVE_MS,
)

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    environment: str = Field(default="dev", alias="ENVIRONMENT")
    service_log_level: str = Field(default="INFO", alias="SERVICE_LOG_LEVEL")

    # Room registry backend
    api_endpoint: str = Field(default=DEFAULT_API_ENDPOINT, alias="API_ENDPOINT")

    # Cloud anchor provider (opaque; the host app hands the key to the SDK)
    cloud_anchor_api_key: Optional[str] = Field(default=None, alias="CLOUD_ANCHOR_API_KEY")
    cloud_anchor_ttl_days: int = Field(default=CLOUD_ANCHOR_TTL_DAYS, alias="CLOUD_ANCHOR_TTL_DAYS")

    # ── Stage time-outs – milliseconds ───────────────────────────────
    timeout_registry_ms: int = Field(default=TIMEOUT_REGISTRY_MS, alias="TIMEOUT_REGISTRY_MS")
    timeout_host_ms: int = Field(default=TIMEOUT_HOST_MS, alias="TIMEOUT_HOST_MS")
    timeout_resolve_ms: int = Field(default=TIMEOUT_RESOLVE_MS, alias="TIMEOUT_RESOLVE_MS")

    # Anchor presentation
    anchor_tag: str = Field(default=ANCHOR_TAG, alias="ANCHOR_TAG")

    # Observability
    journal_max_entries: int = Field(default=JOURNAL_MAX_ENTRIES, alias="JOURNAL_MAX_ENTRIES")

    @property
    def registry_base_url(self) -> str:  # noqa: D401
        """Registry endpoint without a trailing slash."""
        return (self.api_endpoint or "").rstrip("/")

    def model_post_init(self, __context: Any) -> None:  # type: ignore[override]
        # Provider budgets of 0 disable the timeout; negative values are typos.
        if self.timeout_host_ms < 0:
            object.__setattr__(self, "timeout_host_ms", 0)
        if self.timeout_resolve_ms < 0:
            object.__setattr__(self, "timeout_resolve_ms", 0)
        if self.cloud_anchor_ttl_days < 1:
            object.__setattr__(self, "cloud_anchor_ttl_days", 1)

def get_settings() -> "Settings":
    return Settings()  # type: ignore
