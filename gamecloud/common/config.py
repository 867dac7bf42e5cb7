"""Central environment-driven settings for the provisioning service.

The process loads this once at startup. Behavior is controlled by environment
variables (see `.env.example`).
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class CommonSettings(BaseSettings):
    """Typed view of runtime configuration from environment variables."""

    service_name: str = "gamecloud"
    log_level: str = "INFO"
    postgres_dsn: str
    stripe_api_key: str
    stripe_webhook_secret: str
    stripe_webhook_tolerance_seconds: int = 300
    processor_timeout_seconds: float = 10.0
    currency: str = "eur"
    games: list[str] = ["minecraft", "valheim", "terraria", "factorio", "rust"]
    regions: list[str] = ["fra", "ams", "lon", "nyc", "sfo", "sgp"]
    otel_enabled: bool = True
    otel_exporter_otlp_endpoint: str = "http://otel-collector:4318/v1/traces"
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = CommonSettings()
