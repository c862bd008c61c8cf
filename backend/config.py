"""
Configuration management for the order reconciliation service.

Loads settings from .env via pydantic-settings.

Security notes:
    - Admin credentials come from the environment, never from source constants
    - Webhook credentials must be configured or every webhook is rejected
    - validate_production_settings() enforces strict settings in production
"""
import logging

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # ── Database ────────────────────────────────────────────────────
    database_url: str = "sqlite:///./data/orders.db"

    # ── Application ─────────────────────────────────────────────────
    environment: str = "development"
    frontend_url: str = "http://localhost:5173"
    # Public host the payment gateway redirects / calls back to
    host_url: str = "http://localhost:8000"

    # ── Auth (JWT) ──────────────────────────────────────────────────
    jwt_secret: str = ""
    jwt_issuer: str = "orders-api"
    jwt_access_ttl_minutes: int = 60

    # ── Admin operator login ───────────────────────────────────────
    admin_username: str = ""
    admin_password: str = ""

    # ── Payment gateway (PhonePe) ──────────────────────────────────
    phonepe_base_url: str = "https://api-preprod.phonepe.com/apis/pg-sandbox"
    phonepe_client_id: str = ""
    phonepe_client_secret: str = ""
    phonepe_client_version: str = "1"
    phonepe_webhook_username: str = ""
    phonepe_webhook_password: str = ""
    gateway_timeout_seconds: float = 10.0

    # ── Carrier (Shiprocket) ───────────────────────────────────────
    shiprocket_base_url: str = "https://apiv2.shiprocket.in/v1/external"
    shiprocket_email: str = ""
    shiprocket_password: str = ""
    shiprocket_pickup_location: str = "Primary"
    shiprocket_token_ttl_hours: int = 216  # carrier tokens live 10 days
    carrier_timeout_seconds: float = 15.0

    # Package defaults sent with every shipment (cm / kg)
    package_length_cm: float = 30
    package_breadth_cm: float = 25
    package_height_cm: float = 10
    package_weight_per_unit_kg: float = 0.5

    # ── Notifications (WhatsApp) ───────────────────────────────────
    whatsapp_api_key: str = ""
    whatsapp_phone_number_id: str = ""
    whatsapp_base_url: str = "https://cloudapi.akst.in/api/v1.0/messages"
    store_name: str = "Ramani Fashion"

    # ── Best-effort steps ──────────────────────────────────────────
    best_effort_timeout_seconds: float = 10.0
    dispatch_claim_ttl_seconds: int = 120

    # ── CORS ────────────────────────────────────────────────────────
    cors_origins: str = "http://localhost:5173,http://127.0.0.1:5173,http://localhost:3000,http://127.0.0.1:3000"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # allow unknown .env keys without crashing
    )

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def payment_redirect_url(self) -> str:
        return f"{self.host_url.rstrip('/')}/payment-callback"

    @property
    def payment_webhook_url(self) -> str:
        return f"{self.host_url.rstrip('/')}/api/payment/webhook"

    def validate_production_settings(self):
        """
        Validate settings for production safety.

        Called during app startup.
        """
        if self.environment == "production":
            if "*" in self.cors_origins:
                raise ValueError(
                    "CORS_ORIGINS must not contain '*' in production. "
                    "Set explicit allowed origins."
                )
            if not self.jwt_secret:
                raise ValueError(
                    "JWT_SECRET must be set in production. "
                    "It is used to sign customer and admin access tokens."
                )
            if not self.admin_username or not self.admin_password:
                raise ValueError(
                    "ADMIN_USERNAME and ADMIN_PASSWORD must be set in production."
                )
            if not self.phonepe_webhook_username or not self.phonepe_webhook_password:
                raise ValueError(
                    "PHONEPE_WEBHOOK_USERNAME and PHONEPE_WEBHOOK_PASSWORD must be set in production. "
                    "Without them every payment webhook is rejected."
                )
            logger.info("✅ Production settings validated")
        else:
            warnings = []
            if "*" in self.cors_origins:
                warnings.append("CORS_ORIGINS contains '*' (open access)")
            if not self.admin_username or not self.admin_password:
                warnings.append("Admin credentials not configured (admin login disabled)")
            if not self.phonepe_webhook_username:
                warnings.append("Webhook credentials not configured (webhooks will be rejected)")
            for w in warnings:
                logger.warning(f"⚠️  {w}")


# Global settings instance
settings = Settings()
