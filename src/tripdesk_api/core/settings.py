from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    database_url: str = "sqlite+aiosqlite:///./tripdesk.db"
    database_echo: bool = False

    # Application URLs
    frontend_url: str = "http://localhost:3000"
    server_public_url: str = "http://localhost:8000"

    # Internal API security
    admin_api_key: str = ""

    # Payment gateway (Przelewy24-compatible REST API)
    gateway_merchant_id: int | None = None
    gateway_pos_id: int | None = None
    gateway_api_key: str = ""
    gateway_crc_key: str = ""
    gateway_api_url: str = "https://sandbox.przelewy24.pl"
    gateway_timeout_seconds: float = 10.0
    gateway_payment_time_limit_minutes: int = 15
    gateway_webhook_allowed_ips: list[str] = Field(default_factory=list)

    @field_validator("gateway_webhook_allowed_ips", mode="before")
    @classmethod
    def _parse_ip_list(cls, value: object) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        if isinstance(value, (list, tuple, set)):
            return [str(item).strip() for item in value if str(item).strip()]
        return []

    @field_validator("gateway_merchant_id", "gateway_pos_id", mode="before")
    @classmethod
    def _blank_as_none(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    # Reservations
    gateway_reservation_ttl_minutes: int = 120
    manual_transfer_overdue_hours: int = 48
    reservation_sweeper_enabled: bool = False
    reservation_sweep_interval_seconds: int = 300

    # Manual transfer
    bank_account: str = ""
    bank_account_holder: str = ""

    # Loyalty
    loyalty_points_validity_days: int = 365
    loyalty_earn_divisor: int = 1000
    loyalty_balance_worker_enabled: bool = False
    loyalty_balance_interval_seconds: int = 3600

    # Notifications
    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_username: str | None = None
    smtp_password: str | None = None
    smtp_use_tls: bool = True
    smtp_sender_email: str | None = None
    shop_display_name: str = "Dream Travel Sport"

    # Tracing
    tracing_enabled: bool = False
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()
