from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


def choose_env_file() -> str:
    return ".env.local" if Path(".env.local").exists() else ".env"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=choose_env_file(),
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",  # tolerate unrelated env vars
    )

    # CouchDB
    COUCHDB_HOST: str = "localhost"
    COUCHDB_PORT: int = 5984
    COUCHDB_USERNAME: str = "admin"
    COUCHDB_PASSWORD: str = ""

    # Blog collection
    BLOGS_COLLECTION: str = "blogs"
    CHANGES_HEARTBEAT_MS: int = 10000
    SUBSCRIPTION_MAX_BACKOFF: int = 60
    MAX_IMAGE_BYTES: int = 2 * 1024 * 1024

    # Identity
    AUTHOR_EMAIL: str = ""
    IDENTITY_HEADER: str = "X-Forwarded-Email"

    # Sessions
    SESSION_COOKIE: str = "portfolio_session"
    SESSION_TTL_SECONDS: int = 1800

    # Logging
    LOG_LEVEL: str = "INFO"

    # Our own API Key, required on every write route
    PORTFOLIO_API_KEY: str = ""

    @property
    def couchdb_url(self) -> str:
        return f"http://{self.COUCHDB_USERNAME}:{self.COUCHDB_PASSWORD}@{self.COUCHDB_HOST}:{self.COUCHDB_PORT}"


# Global settings instance (evaluated at import, but reads env on construction)
settings = Settings()
