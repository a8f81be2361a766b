"""
Payment Pulse Configuration

All environment variables and settings for the analytics API.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # ==========================================================================
    # APP
    # ==========================================================================
    app_name: str = "Payment Pulse"
    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"

    # ==========================================================================
    # SUPABASE (payment store)
    # ==========================================================================
    supabase_url: str
    supabase_service_key: str

    payments_table: str = "payments"
    metrics_rpc: str = "payment_metrics"
    trends_rpc: str = "payment_trends"
    payments_list_limit: int = 100

    # ==========================================================================
    # CORS
    # ==========================================================================
    # Comma-separated allow-list; credentials are always allowed
    cors_origins: str = "http://localhost:3000"

    # ==========================================================================
    # WEBSOCKET GATEWAY
    # ==========================================================================
    ws_path: str = "/ws/payments/socket.io"
    ws_send_timeout_seconds: float = 2.0

    # ==========================================================================
    # SIMULATOR
    # ==========================================================================
    simulator_default_rate: int = 10
    simulator_max_rate: int = 60

    # ==========================================================================
    # SERVER
    # ==========================================================================
    host: str = "0.0.0.0"
    port: int = 3333

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
