"""
Application configuration
"""

from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings"""

    # Application
    APP_NAME: str = "Flag Engine"
    APP_VERSION: str = "0.1.0"
    # Debug switches structlog to the console renderer; keep it off in production
    DEBUG: bool = False
    ENVIRONMENT: str = "production"

    # Database
    DATABASE_URL: str = "sqlite:///./flagengine.db"
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 40
    DB_POOL_RECYCLE: int = 3600
    DB_POOL_TIMEOUT: int = 30

    # Redis (optional) - cross-instance change notifications
    REDIS_URL: Optional[str] = None
    FLAG_CHANGE_CHANNEL: str = "flagengine:changes"
    REDIS_SOCKET_TIMEOUT: float = 2.0
    REDIS_CONNECT_TIMEOUT: float = 2.0
    CHANGE_QUEUE_SIZE: int = 1000  # Pending outbound notifications before new ones are dropped

    # Snapshot read model
    SNAPSHOT_REFRESH_SECONDS: float = 30.0  # Bounded staleness across replicas
    BUCKET_CACHE_SIZE: int = 10000

    # Flag constraints
    FLAG_KEY_MAX_LENGTH: int = 100
    FLAG_NAME_MAX_LENGTH: int = 255
    FLAG_DESCRIPTION_MAX_LENGTH: int = 1000

    # Audit queries
    AUDIT_DEFAULT_LIMIT: int = 50
    AUDIT_MAX_LIMIT: int = 500

    # Authorization - actor roles allowed to mutate flags and read the audit trail
    ADMIN_ROLES: str = "ADMIN"

    @property
    def admin_roles(self) -> List[str]:
        return [role.strip().upper() for role in self.ADMIN_ROLES.split(",") if role.strip()]

    # CORS (comma-separated)
    ALLOWED_ORIGINS: str = "http://localhost:3000"

    # Rate limiting
    RATE_LIMIT_DEFAULT: str = "1000/minute"

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")


# Global settings instance
settings = Settings()
