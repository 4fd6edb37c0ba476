import os
from dataclasses import dataclass, field
from typing import List, Optional

from fastapi import Request


def _flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    """Runtime settings read from the environment once at startup."""

    app_name: str = "Ratacueva"
    app_url: str = "http://localhost:8000"
    database_url: Optional[str] = None
    database_name: Optional[str] = None
    use_transactions: bool = False

    secret_key: str = "dev-secret-key-change-me"
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24

    # "sync" gateways settle immediately, "async" ones confirm via webhook
    payment_mode: str = "sync"
    auto_create_shipment: bool = True
    default_shipping_provider: str = "Estafeta"
    currency: str = "MXN"

    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = None

    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        origins = os.getenv("CORS_ORIGINS", "*")
        return cls(
            app_name=os.getenv("APP_NAME", "Ratacueva"),
            app_url=os.getenv("APP_URL", "http://localhost:8000"),
            database_url=os.getenv("DATABASE_URL"),
            database_name=os.getenv("DATABASE_NAME"),
            use_transactions=_flag("DATABASE_TRANSACTIONS", False),
            secret_key=os.getenv("SECRET_KEY", "dev-secret-key-change-me"),
            access_token_expire_minutes=int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24)),
            payment_mode=os.getenv("PAYMENT_MODE", "sync"),
            auto_create_shipment=_flag("AUTO_CREATE_SHIPMENT", True),
            default_shipping_provider=os.getenv("DEFAULT_SHIPPING_PROVIDER", "Estafeta"),
            smtp_host=os.getenv("EMAIL_HOST"),
            smtp_port=int(os.getenv("EMAIL_PORT", 587)),
            smtp_user=os.getenv("EMAIL_USER"),
            smtp_password=os.getenv("EMAIL_PASS"),
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )


def get_settings(request: Request) -> Settings:
    return request.app.state.settings
