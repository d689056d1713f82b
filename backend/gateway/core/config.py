"""
Core configuration for the API gateway
"""
from pydantic_settings import BaseSettings
from pydantic import Field
from typing import Optional, List
from functools import lru_cache
import secrets


class Settings(BaseSettings):
    # ===========================================
    # APPLICATION
    # ===========================================

    APP_NAME: str = "Salim API Gateway"
    APP_VERSION: str = "1.0.0"
    APP_DESCRIPTION: str = "OpenAI-compatible API gateway with per-key quotas and usage accounting"

    # ===========================================
    # SERVER & INFRASTRUCTURE
    # ===========================================

    DEBUG: bool = False
    BACKEND_HOST: str = "127.0.0.1"  # Bind address (use 0.0.0.0 to expose externally)
    BACKEND_PORT: int = 8000

    # CORS
    CORS_ORIGINS: List[str] = ["*"]

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./data/gateway.db"

    # ===========================================
    # SECURITY (dashboard sessions)
    # ===========================================

    SECRET_KEY: str = Field(default_factory=lambda: secrets.token_urlsafe(32))
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24  # 24 hours

    def validate_secret_key(self) -> None:
        """
        Warn if SECRET_KEY appears to be auto-generated in production.
        Auto-generated keys change on restart, invalidating all sessions.
        """
        import logging
        logger = logging.getLogger(__name__)

        if len(self.SECRET_KEY) == 43 and not self.DEBUG:  # 32 bytes base64 = 43 chars
            logger.warning(
                "SECRET_KEY appears to be auto-generated. "
                "Set a stable SECRET_KEY in production to keep dashboard sessions across restarts."
            )

    # Administrator account (created on startup if ADMIN_PASS is set)
    ADMIN_EMAIL: str = "admin@example.com"
    ADMIN_PASS: Optional[str] = None
    ADMIN_NAME: str = "Admin User"

    @property
    def admin_password(self) -> Optional[str]:
        """Return None if ADMIN_PASS is empty or not set"""
        if self.ADMIN_PASS and self.ADMIN_PASS.strip():
            return self.ADMIN_PASS
        return None

    # ===========================================
    # UPSTREAM PROVIDER (OpenAI-compatible vendor API)
    # ===========================================

    UPSTREAM_API_BASE_URL: str = "https://api.z.ai/v1"
    UPSTREAM_API_KEY: str = "not-configured"
    UPSTREAM_DEFAULT_MODEL: str = "glm4.5-flash"
    UPSTREAM_IMAGE_MODEL: str = "cogview-3"
    UPSTREAM_EMBEDDING_MODEL: str = "embedding-3"
    UPSTREAM_MODERATION_MODEL: str = "moderation"
    UPSTREAM_TIMEOUT: int = 60  # seconds

    # ===========================================
    # API KEYS & RATE LIMITING
    # ===========================================

    API_KEY_PREFIX: str = "sk-"
    DEFAULT_KEY_RATE_LIMIT: int = 1000  # requests per window
    MAX_KEY_RATE_LIMIT: int = 10000
    RATE_LIMIT_WINDOW_SECONDS: int = 3600  # fixed window, 1 hour
    RATE_LIMIT_CLEANUP_INTERVAL: int = 300  # 5 minutes

    # Dashboard login attempts per client IP
    LOGIN_RATE_LIMIT: int = 10
    LOGIN_RATE_WINDOW_SECONDS: int = 300

    # ===========================================
    # CACHING
    # ===========================================

    CACHE_DEFAULT_TTL: int = 60
    DASHBOARD_CACHE_TTL: int = 30
    CACHE_CLEANUP_INTERVAL: int = 300

    # ===========================================
    # FINE-TUNING WORKER
    # ===========================================

    FINE_TUNE_WORKER_ENABLED: bool = True
    FINE_TUNE_POLL_INTERVAL: float = 1.0
    FINE_TUNE_QUEUE_SECONDS: int = 5  # queued -> running
    FINE_TUNE_RUN_SECONDS: int = 30  # running -> succeeded
    FINE_TUNE_ESTIMATE_SECONDS: int = 3600

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
