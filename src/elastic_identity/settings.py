"""Adapter configuration loaded from environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration for the identity store.

    Every field can be overridden by an environment variable of the same name
    (case-insensitive).  Pydantic-settings handles the parsing automatically.
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    ELASTICSEARCH_URL: str = "http://localhost:9200"
    ELASTICSEARCH_API_KEY: str | None = None
    ELASTICSEARCH_USERNAME: str | None = None
    ELASTICSEARCH_PASSWORD: str | None = None
    ELASTICSEARCH_REQUEST_TIMEOUT: float = 30.0
    ELASTICSEARCH_MAX_RETRIES: int = 0

    IDENTITY_INDEX_NAME: str = "users"
    # Drops the index on first use.  Test and bootstrap use only.
    IDENTITY_FORCE_RECREATE: bool = False
    IDENTITY_STRICT_NOT_FOUND: bool = False
    IDENTITY_WAIT_FOR_ACTIVE_SHARDS: str = "all"
    IDENTITY_INDEX_SHARDS: int = 1
    IDENTITY_INDEX_REPLICAS: int = 0

    LOG_LEVEL: str = "INFO"


settings = Settings()
