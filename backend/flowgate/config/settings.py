# /flowgate/config/settings.py

import sys
import base64
from typing import List
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # MongoDB
    mongo_atlas_uri: str = "mongodb://localhost:27017/flowgate"
    max_pool_size: int = 10
    min_pool_size: int = 1
    mongo_ssl: bool = False

    # WhatsApp Flow channel (fallbacks when no active config document exists)
    whatsapp_app_secret: str | None = None
    whatsapp_flow_private_key: str | None = None  # PEM text, or base64 of the PEM
    whatsapp_flow_private_key_passphrase: str | None = None

    # Redis
    redis_url: str = "redis://localhost:6379"
    redis_socket_timeout: float = 2.0

    # Data resolution
    integration_timeout_seconds: float = 10.0
    integration_cache_ttl: int = 60
    http_retry_attempts: int = 2
    calendar_api_base_url: str = "https://www.googleapis.com/calendar/v3"
    calendar_timezone: str = "UTC"

    # Legacy catalogue (hardcoded per-screen fallback)
    legacy_catalogue_url: str | None = None
    legacy_catalogue_token: str | None = None

    # Deployment
    workers: int = 4
    environment: str = Field(default="production")
    allowed_hosts: str = Field(default="*")

    # App Metadata & Limits
    api_version: str = "v1"
    rate_limit_per_minute: int = 300
    api_key: str | None = None

    # Error tracking
    sentry_dsn: str | None = None
    sentry_environment: str = "production"
    sentry_traces_sample_rate: float = 0.1

    # ---------------- Validators ---------------- #

    @field_validator("whatsapp_flow_private_key")
    @classmethod
    def decode_private_key(cls, v):
        """
        Accepts either the PEM text itself or a base64-encoded PEM, which is
        easier to pass through single-line environment variables.
        """
        if not v:
            return v
        v = v.replace("\\n", "\n").strip()
        if v.startswith("-----BEGIN"):
            return v
        try:
            decoded = base64.b64decode(v).decode("utf-8")
        except Exception:
            raise ValueError("WHATSAPP_FLOW_PRIVATE_KEY is neither PEM nor base64-encoded PEM")
        if not decoded.startswith("-----BEGIN"):
            raise ValueError("WHATSAPP_FLOW_PRIVATE_KEY does not decode to a PEM block")
        return decoded

    @field_validator("integration_timeout_seconds")
    @classmethod
    def timeout_within_channel_budget(cls, v):
        # The client gives up on the whole exchange after 10 seconds.
        if v <= 0 or v > 10:
            raise ValueError("INTEGRATION_TIMEOUT_SECONDS must be in (0, 10]")
        return v

    @property
    def allowed_host_list(self) -> List[str]:
        return [host.strip() for host in self.allowed_hosts.split(",") if host.strip()]

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


def validate_environment(settings_obj: Settings):
    try:
        if settings_obj.environment == "production":
            # The app secret may also come from the active config document.
            if not settings_obj.whatsapp_flow_private_key:
                raise ValueError("WHATSAPP_FLOW_PRIVATE_KEY is required in production")

        return settings_obj

    except Exception as e:
        print(f"--- [ERROR] Environment validation failed: {e}")
        sys.exit(1)


settings = Settings()
validate_environment(settings)
