"""
Configuration management for the QRIS Checkout backend.

Loads settings from .env via pydantic-settings.

Notes:
    - SIMULATION_MODE swaps the Midtrans gateway for an in-memory provider
    - validate_production_settings() refuses unsafe production startups
"""
import logging

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List

logger = logging.getLogger(__name__)

MIDTRANS_SANDBOX_URL = "https://api.sandbox.midtrans.com"
MIDTRANS_PRODUCTION_URL = "https://api.midtrans.com"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # ── Database ────────────────────────────────────────────────────
    database_url: str = "sqlite:///./data/checkout.db"
    database_echo: bool = False

    # ── Application ─────────────────────────────────────────────────
    environment: str = "development"
    simulation_mode: bool = True  # local dev: in-memory payment provider

    # ── Midtrans Core API ───────────────────────────────────────────
    midtrans_server_key: str = ""
    midtrans_client_key: str = ""
    midtrans_is_production: bool = False
    qris_acquirer: str = "gopay"  # or "airpay"

    # ── Payment lifecycle ───────────────────────────────────────────
    provider_timeout_seconds: float = 10.0
    qr_refresh_max_age_seconds: int = 60
    order_id_max_attempts: int = 3

    # ── Background work ─────────────────────────────────────────────
    poll_interval_seconds: float = 15.0
    poll_state_retention_seconds: float = 300.0  # finished poller states kept for GET /watch
    reconcile_interval_seconds: float = 60.0

    # ── CORS ────────────────────────────────────────────────────────
    cors_origins: str = "http://localhost:3000,http://127.0.0.1:3000"

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
    def midtrans_base_url(self) -> str:
        """Core API host for the configured Midtrans environment."""
        if self.midtrans_is_production:
            return MIDTRANS_PRODUCTION_URL
        return MIDTRANS_SANDBOX_URL

    def validate_production_settings(self):
        """
        Validate settings for production safety.

        Called during app startup.
        """
        if self.environment == "production":
            if self.simulation_mode:
                raise ValueError(
                    "SIMULATION_MODE must be false in production. "
                    "The simulated provider settles payments on request."
                )
            if not self.midtrans_server_key:
                raise ValueError(
                    "MIDTRANS_SERVER_KEY must be set in production. "
                    "It authenticates charge and status calls."
                )
            if not self.midtrans_is_production:
                logger.warning("⚠️  Production environment is using the Midtrans sandbox")
            if "*" in self.cors_origins:
                raise ValueError(
                    "CORS_ORIGINS must not contain '*' in production. "
                    "Set explicit allowed origins."
                )
            logger.info("✅ Production settings validated")
        else:
            warnings = []
            if self.simulation_mode:
                warnings.append("SIMULATION_MODE=true (payments settle via /simulate)")
            if "*" in self.cors_origins:
                warnings.append("CORS_ORIGINS contains '*' (open access)")
            for w in warnings:
                logger.warning(f"⚠️  {w}")


# Global settings instance
settings = Settings()
