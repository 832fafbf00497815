"""Settings for firestoreorm.

All settings classes are pydantic-settings models, so every field can be
overridden from the environment (``FIRESTOREORM_STORE_PROJECT_ID=...``) or
passed explicitly. Default instances are registered with ``depends`` and
picked up by stores and repositories constructed without settings.
"""

import typing as t
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .depends import depends

# Firestore rejects batches and transactions with more writes than this.
MAX_BATCH_OPERATIONS = 500


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        extra="allow",
        arbitrary_types_allowed=True,
        validate_default=True,
        env_prefix="FIRESTOREORM_",
        protected_namespaces=("model_", "settings_"),
    )


class StoreSettings(Settings):
    """Document store connection settings."""

    model_config = SettingsConfigDict(env_prefix="FIRESTOREORM_STORE_")

    project_id: str | None = None
    credentials_path: str | None = None
    emulator_host: str | None = None
    database: str | None = None
    collection_prefix: str = ""
    transaction_max_attempts: int = Field(default=5, ge=1)


class RepositorySettings(Settings):
    """Repository configuration settings."""

    model_config = SettingsConfigDict(env_prefix="FIRESTOREORM_REPOSITORY_")

    max_batch_size: int = Field(
        default=MAX_BATCH_OPERATIONS,
        ge=1,
        le=MAX_BATCH_OPERATIONS,
        description="Operations per batch commit",
    )
    default_page_size: int = Field(default=10, ge=1, le=1000)
    max_page_size: int = Field(default=1000, ge=1)

    @field_validator("max_page_size")
    @classmethod
    def validate_page_size(cls, v: int, info: t.Any) -> int:
        values: dict[str, t.Any] = info.data if hasattr(info, "data") else {}
        if "default_page_size" in values and v < values["default_page_size"]:
            msg = "max_page_size cannot be smaller than default_page_size"
            raise ValueError(msg)
        return v


class LoggerSettings(Settings):
    """Logging configuration."""

    model_config = SettingsConfigDict(env_prefix="FIRESTOREORM_LOGGER_")

    log_level: str = "INFO"
    serialize: bool = False
    intercept_stdlib: bool = True
    format: str = (
        "<b><e>[</e> <w>{time:YYYY-MM-DD HH:mm:ss.SSS}</w> <e>]</e></b>"
        " <level>{level:>8}</level>"
        " <b><w>in</w></b> <b>{name:>28}</b>"
        "<b><e>[</e><w>{line:^5}</w><e>]</e></b>"
        "  <level>{message}</level>"
    )

    @field_validator("log_level")
    @classmethod
    def normalize_level(cls, v: str) -> str:
        return v.upper()


depends.set(StoreSettings)
depends.set(RepositorySettings)
depends.set(LoggerSettings)
