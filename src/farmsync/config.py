from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_resource_ttls() -> dict[str, float]:
    return {
        # Audit trail changes constantly
        "audit_logs": 60.0,
        # Reference/config data rarely changes
        "site_settings": 1800.0,
        "balance": 60.0,
    }


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="FARMSYNC_", env_file=".env", extra="ignore")

    app_name: str = "farmsync"
    env: str = "dev"

    # Remote store (SQLAlchemy async URL)
    database_url: str = Field(
        default="sqlite+aiosqlite:///./farmsync.db",
        validation_alias="DATABASE_URL",
    )

    # Response cache
    cache_default_ttl: float = 300.0  # 5 minutes
    cache_max_entries: int = 500
    cache_resource_ttls: dict[str, float] = Field(default_factory=_default_resource_ttls)
    record_id_field: str = "id"

    # Real-time change batching
    subscription_window: float = 1.0
    subscription_max_batch: int = 50

    # Audit log batching
    audit_flush_interval: float = 5.0
    audit_batch_size: int = 10
    audit_table: str = "audit_logs"

    # Local fallback store
    local_store_path: str = "./.farmsync-local"

    # Observability
    enable_metrics: bool = True
    log_level: str = "INFO"
    log_json: bool = False


settings = Settings()
