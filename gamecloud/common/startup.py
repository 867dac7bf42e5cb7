"""Startup-time helpers for safe config logging."""

from gamecloud.common.config import CommonSettings
from gamecloud.common.logging import logger

_SECRET_MARKERS = ("key", "secret", "password", "token", "dsn")


def _safe_value(name: str, value) -> str:
    """Return a printable value, redacting secret-like setting names."""

    if value is None:
        return "<unset>"
    if any(marker in name.lower() for marker in _SECRET_MARKERS):
        return "<redacted>"
    return str(value)


def log_startup_config(config: CommonSettings, keys: list[str]) -> None:
    """Log selected settings fields for quick troubleshooting."""

    snapshot = {"service": config.service_name}
    for key in keys:
        snapshot[key] = _safe_value(key, getattr(config, key, None))
    logger.info("startup_config=%s", snapshot)
