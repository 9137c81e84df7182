"""Credentials and endpoints read from the environment (and .env)."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

from scouted.exceptions import ConfigurationError


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # SQLAlchemy URL, e.g. postgresql+psycopg://user:pw@host:5432/scouted
    database_url: str = ""

    # Secondary classifier (OpenRouter); blank disables classification
    openrouter_api_key: str = ""

    # Digest email (Resend)
    resend_api_key: str = ""
    resend_domain_verified: bool = False

    # Google Custom Search extractor; blank skips the source
    google_cse_api_key: str = ""
    google_cse_id: str = ""

    site_url: str = "https://scouted.whybe.ai"

    # Requests per second per domain
    rate_limit: float = 2.0

    def require_database_url(self) -> str:
        """Return the database URL or fail with a clear message."""
        if not self.database_url:
            raise ConfigurationError(
                "DATABASE_URL is not set; storage commands need a database"
            )
        return self.database_url


@lru_cache
def get_settings() -> Settings:
    return Settings()
