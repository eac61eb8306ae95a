"""
WhatsApp CRM Bridge - Configuration Management
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from typing import List


class Settings(BaseSettings):
    """Application settings"""

    # FastAPI
    fastapi_env: str = "development"
    fastapi_host: str = "0.0.0.0"
    fastapi_port: int = 8000
    cors_origins: str = "*"  # Comma-separated origins

    # Supabase
    supabase_url: str = ""
    supabase_key: str = ""
    supabase_service_role_key: str = ""

    # Evolution API
    evolution_api_url: str = "http://localhost:8080"
    evolution_api_key: str = ""
    evolution_default_instance: str = ""
    evolution_timeout: float = 30.0
    evolution_max_retries: int = 3

    # Webhook
    webhook_public_url: str = ""
    webhook_events: str = "MESSAGES_UPSERT,CONNECTION_UPDATE,QRCODE_UPDATED,SEND_MESSAGE"

    # Routing
    default_country_code: str = "55"
    default_department_id: str = ""
    message_cache_size: int = 1000

    # Maintenance
    duplicate_window_days: int = 7

    # Authentication
    admin_api_key: str = ""

    # Logging
    log_level: str = "INFO"
    log_mask_phones: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    @property
    def EVOLUTION_BASE_URL(self) -> str:
        """Evolution API base URL without trailing slash"""
        return self.evolution_api_url.rstrip("/")

    @property
    def SUPABASE_KEY(self) -> str:
        """Service role key when available, anon key otherwise"""
        return self.supabase_service_role_key or self.supabase_key

    @property
    def WEBHOOK_EVENTS(self) -> List[str]:
        return [e.strip() for e in self.webhook_events.split(",") if e.strip()]

    @property
    def CORS_ORIGINS(self) -> List[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
