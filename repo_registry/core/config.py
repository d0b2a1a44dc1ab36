"""Application configuration using Pydantic Settings.

Configuration is loaded from environment variables.

Optionally, point `ENV_FILE` at a local env file (for development). When
`ENV_FILE` is unset no env file is read.
"""

import os
from enum import Enum
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppEnvironment(str, Enum):
    """Application environment values."""

    LOCAL = "local"
    TEST = "test"
    PROD = "prod"


# Engine-level options that some deployments append to DATABASE_URL_APP.
# They must not be forwarded to the driver's connect().
_ENGINE_ONLY_QUERY_OPTIONS = frozenset(
    {"pool_size", "max_overflow", "pool_timeout", "pool_recycle", "pool_pre_ping"}
)


def _strip_engine_options(url: str) -> str:
    parts = urlsplit(url)
    if not parts.query:
        return url
    query = [
        (key, value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
        if key not in _ENGINE_ONLY_QUERY_OPTIONS
    ]
    return urlunsplit(parts._replace(query=urlencode(query)))


class Settings(BaseSettings):
    """
    Application settings with type validation.

    Configuration is loaded from environment variables, with support
    for .env files in development.
    """

    model_config = SettingsConfigDict(
        env_file=os.getenv("ENV_FILE") or None, env_prefix="", extra="ignore"
    )

    # Application
    app_env: AppEnvironment = AppEnvironment.LOCAL
    app_name: str = "repository-registry-api"
    app_log_level: str = "INFO"

    # Observability
    observability_enabled: bool = True
    observability_structured_logs: bool = True
    observability_request_id_header: str = "X-Request-ID"

    # Database - read-only runtime user
    database_url_app: str = "sqlite+aiosqlite:///./repo_registry.db"

    # Repository listing
    repository_page_limit_default: int = 100
    repository_page_limit_max: int = 1000
    # Upper bound on raw pages fetched per request when post-load filters
    # discard rows and the page has to be refilled.
    repository_max_fetch_rounds: int = 16

    @property
    def async_url(self) -> str:
        """Database URL for the async engine.

        Plain ``postgresql://`` (or a sync Postgres driver) is rewritten to use
        asyncpg. Other drivers are passed through untouched.
        """
        url = _strip_engine_options(self.database_url_app)
        for prefix in ("postgresql+psycopg://", "postgresql+psycopg2://", "postgresql://"):
            if url.startswith(prefix):
                return "postgresql+asyncpg://" + url[len(prefix) :]
        return url

    @field_validator("app_env", mode="before")
    @classmethod
    def validate_app_env(cls, v: str | AppEnvironment) -> AppEnvironment:
        """Validate and parse app_env to AppEnvironment enum."""
        if isinstance(v, AppEnvironment):
            return v
        try:
            return AppEnvironment(v.lower())
        except ValueError:
            raise ValueError(
                f"app_env must be one of {[e.value for e in AppEnvironment]}, got '{v}'"
            )

    @field_validator("repository_page_limit_default", "repository_page_limit_max")
    @classmethod
    def validate_page_limits(cls, v: int) -> int:
        if v < 1:
            raise ValueError("page limits must be at least 1")
        return v

    @model_validator(mode="after")
    def validate_production_settings(self) -> "Settings":
        """
        Validate production-specific settings.

        These checks prevent unsupported configurations from being deployed to production.
        """
        if self.repository_page_limit_default > self.repository_page_limit_max:
            raise ValueError(
                "REPOSITORY_PAGE_LIMIT_DEFAULT must not exceed REPOSITORY_PAGE_LIMIT_MAX"
            )

        if self.app_env == AppEnvironment.PROD:
            if not self.database_url_app.startswith("postgresql"):
                raise ValueError("DATABASE_URL_APP must use a postgresql scheme in production")

        return self


settings = Settings()
