import os
from dataclasses import dataclass
from typing import Optional
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
    )

    # Security
    MASTER_KEY: str = Field(..., min_length=32, description="Master key for encryption (min 32 chars)")
    ADMIN: str = "admin"
    ADMIN_PASSWORD: str = Field(..., description="Admin password (plaintext or bcrypt hash)")

    # Database
    DB_TYPE: str = "sqlite"
    DATABASE_URL: Optional[str] = None

    # JWT
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 1440
    JWT_ALGORITHM: str = "HS256"

    # Key custody
    CUSTODY_BACKEND: str = Field("local", pattern="^(local|kmip)$")
    KMS_URL: Optional[str] = None
    KMS_API_KEY: Optional[str] = None
    KMS_TIMEOUT_SECONDS: float = 30.0
    KMS_RETRY_ATTEMPTS: int = Field(3, ge=1)
    KMS_RETRY_DELAY_SECONDS: float = 1.0

    # CRL
    CRL_DISTRIBUTION_URL: Optional[str] = None
    CRL_VALIDITY_DAYS: int = 7

    # Lifecycle policy
    KEY_REUSE_MAX_AGE_DAYS: int = 90
    CERTIFICATE_DELETE_GRACE_DAYS: int = 90
    AUDIT_ENABLED: bool = True

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    DEBUG: bool = False
    LOG_LEVEL: str = "info"

    @property
    def get_database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        if self.DB_TYPE == "sqlite":
            db_path = os.path.join(os.path.dirname(os.path.dirname(__file__)), "data", "pki_manager.db")
            os.makedirs(os.path.dirname(db_path), exist_ok=True)
            return f"sqlite:///{db_path}"
        raise ValueError("DATABASE_URL must be set for non-SQLite databases")


settings = Settings()


@dataclass(frozen=True)
class LifecycleConfig:
    """Policy knobs handed to the lifecycle state machine."""

    crl_distribution_url: Optional[str] = None
    crl_validity_days: int = 7
    key_reuse_max_age_days: int = 90
    certificate_delete_grace_days: int = 90

    @classmethod
    def from_settings(cls, source: Settings) -> "LifecycleConfig":
        return cls(
            crl_distribution_url=source.CRL_DISTRIBUTION_URL,
            crl_validity_days=source.CRL_VALIDITY_DAYS,
            key_reuse_max_age_days=source.KEY_REUSE_MAX_AGE_DAYS,
            certificate_delete_grace_days=source.CERTIFICATE_DELETE_GRACE_DAYS,
        )

    def crl_url_for(self, ca_id) -> Optional[str]:
        if not self.crl_distribution_url:
            return None
        return f"{self.crl_distribution_url.rstrip('/')}/{ca_id}.crl"
