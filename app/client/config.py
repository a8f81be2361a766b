"""
Dashboard client configuration.

Environment variables use the DASHBOARD_ prefix, e.g. DASHBOARD_TENANT_ID.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings


class ClientSettings(BaseSettings):
    """Settings for a dashboard client process."""

    # ==========================================================================
    # ENDPOINTS
    # ==========================================================================
    api_url: str = "http://localhost:3333"
    ws_url: str = "http://localhost:3333"
    ws_path: str = "/ws/payments/socket.io"
    tenant_id: str = "tenant-alpha"

    # ==========================================================================
    # RECONCILIATION
    # ==========================================================================
    poll_interval_seconds: float = 30.0
    request_timeout_seconds: float = 10.0
    flush_interval_ms: int = 1000

    # ==========================================================================
    # STREAM RECONNECT (bounded exponential back-off)
    # ==========================================================================
    reconnect_attempts: int = 10
    reconnect_base_delay_seconds: float = 3.0
    reconnect_max_delay_seconds: float = 30.0

    # ==========================================================================
    # READ MODEL
    # ==========================================================================
    event_log_cap: int = 200
    alert_log_cap: int = 50
    default_period: str = "day"

    # ==========================================================================
    # ALERTS
    # ==========================================================================
    volume_threshold: float = 100_000
    failure_window: int = 9

    class Config:
        env_prefix = "DASHBOARD_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"


@lru_cache()
def get_client_settings() -> ClientSettings:
    """Get cached client settings instance."""
    return ClientSettings()
