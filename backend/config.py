"""Application configuration using pydantic-settings."""

from typing import Any

from pydantic import field_validator
from pydantic.fields import FieldInfo
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from services.credential_manager import CREDENTIAL_KEYS, get_credential


class KeychainSettingsSource(PydanticBaseSettingsSource):
    """Load credential fields from the system keychain via ``keyring``.

    Only fields whose uppercase name appears in
    :data:`~services.credential_manager.CREDENTIAL_KEYS` are looked up.
    All other fields return ``None`` so the next source in the chain
    handles them.
    """

    def get_field_value(
        self, field: FieldInfo, field_name: str
    ) -> tuple[Any, str, bool]:
        env_name = field_name.upper()
        if env_name not in CREDENTIAL_KEYS:
            return None, field_name, False
        value = get_credential(env_name)
        return value, field_name, False

    def __call__(self) -> dict[str, Any]:
        d: dict[str, Any] = {}
        for field_name, field_info in self.settings_cls.model_fields.items():
            value, key, is_complex = self.get_field_value(field_info, field_name)
            if value is not None:
                d[key] = value
        return d


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            KeychainSettingsSource(settings_cls),
            env_settings,
            dotenv_settings,
            file_secret_settings,
        )

    # Database
    DATABASE_URL: str = "sqlite:///./media_sync.db"

    # Asset store (Cloudinary) credentials
    CLOUDINARY_CLOUD_NAME: str = ""
    CLOUDINARY_API_KEY: str = ""
    CLOUDINARY_API_SECRET: str = ""
    CLOUDINARY_API_BASE_URL: str = "https://api.cloudinary.com/v1_1"
    ASSET_STORE_TIMEOUT_SECONDS: float = 30.0
    ASSET_STORE_PAGE_SIZE: int = 500
    DEFAULT_UPLOAD_FOLDER: str = "media"
    UPLOAD_STAGING_DIR: str = "./upload_staging"

    # Webhook verification
    WEBHOOK_SIGNING_SECRET: str = ""
    WEBHOOK_SIGNATURE_ALGORITHM: str = "sha1"
    WEBHOOK_MAX_SKEW_SECONDS: int = 7200

    # Cleanup/retry scheduler
    SCHEDULER_ENABLED: bool = True
    SCHEDULER_AUTO_START: bool = True
    SCHEDULER_INTERVAL_SECONDS: int = 300
    SCHEDULER_BATCH_SIZE: int = 10
    SCHEDULER_MAX_RETRIES: int = 3
    SCHEDULER_HEALTH_CHECK_INTERVAL_SECONDS: int = 60
    SCHEDULER_QUEUE_WARNING_THRESHOLD: int = 20
    SCHEDULER_FAILURE_WARNING_THRESHOLD: int = 10
    CLEANUP_CLAIM_LEASE_SECONDS: int = 1800

    # Reconciliation and observability
    RECONCILE_INTERVAL_SECONDS: int = 0
    RECONCILE_AUTO_FIX: bool = False
    MISSING_ASSET_GRACE_HOURS: int = 24
    SNAPSHOT_INTERVAL_SECONDS: int = 3600

    # Retention of audit rows, snapshots and finished queue items
    DATA_RETENTION_DAYS: int = 30
    RETENTION_INTERVAL_SECONDS: int = 86400

    # Realtime fan-out
    REALTIME_QUEUE_SIZE: int = 1000
    REALTIME_MAX_RECONNECT_ATTEMPTS: int = 3
    REALTIME_RECONNECT_BASE_DELAY_SECONDS: float = 2.0
    REALTIME_TRACK_SUBSCRIBER_STATUS: bool = True

    @field_validator("WEBHOOK_SIGNATURE_ALGORITHM", mode="before")
    @classmethod
    def validate_signature_algorithm(cls, v: str) -> str:
        """Normalize the webhook signature scheme to ``sha1`` or ``hmac-sha256``."""
        valid = {"sha1", "hmac-sha256"}
        if v.lower() not in valid:
            raise ValueError(f"WEBHOOK_SIGNATURE_ALGORITHM must be one of {valid}, got {v!r}")
        return v.lower()

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate and normalize LOG_LEVEL to an uppercase Python logging level."""
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid:
            raise ValueError(f"LOG_LEVEL must be one of {valid}, got {v!r}")
        return v.upper()

    # App settings
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"


settings = Settings()
