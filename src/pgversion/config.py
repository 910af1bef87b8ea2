"""Database configuration."""

import os
from typing import Literal
from urllib.parse import urlparse

from pydantic import BaseModel, Field, field_validator, model_validator

SslMode = Literal["disable", "allow", "prefer", "require", "verify-ca", "verify-full"]


class DatabaseConfig(BaseModel):
    """Database configuration.

    Args:
        url: PostgreSQL connection URL (postgresql://...)
        min_connections: Minimum pool size (default: 5)
        max_connections: Maximum pool size (default: 20)
        timeout: Connection timeout in seconds (default: 10.0)
        command_timeout: Query timeout in seconds (default: 60.0)
        max_inactive_connection_lifetime: Seconds before an idle pooled
            connection is closed (default: 60.0)
        ssl_mode: libpq-style TLS mode, or None to leave it to the driver
        migrations_dir: Directory holding the numbered ``.sql`` files
        allow_drift: Downgrade a hash mismatch on the current version to a
            warning instead of refusing to migrate

    Raises:
        ValidationError: If configuration is invalid
    """

    url: str
    min_connections: int = Field(default=5, gt=0)
    max_connections: int = Field(default=20, gt=0)
    timeout: float = Field(default=10.0, gt=0)
    command_timeout: float = Field(default=60.0, gt=0)
    max_inactive_connection_lifetime: float = Field(default=60.0, ge=0)
    ssl_mode: SslMode | None = None

    migrations_dir: str = "db/migrations"
    allow_drift: bool = False

    model_config = {"frozen": True}  # Configs shouldn't change after creation

    @field_validator("max_connections")
    @classmethod
    def validate_max_connections(cls, v: int, info) -> int:
        """Validate max_connections is >= min_connections."""
        # Note: min_connections is validated first due to field order
        min_conn = info.data.get("min_connections", 5)
        if v < min_conn:
            raise ValueError(
                f"max_connections ({v}) must be >= min_connections ({min_conn})"
            )
        return v

    @model_validator(mode="after")
    def validate_and_normalize_url(self) -> "DatabaseConfig":
        """Validate and normalize PostgreSQL URL with defaults.

        Applies PostgreSQL default values for missing components:
        - Host: localhost
        - Port: 5432
        - User: postgres
        - Database: same as username (or database name if provided alone)

        Examples:
            "dbname" → "postgresql://postgres@localhost:5432/dbname"
            "localhost/dbname" → "postgresql://postgres@localhost:5432/dbname"
        """
        try:
            url = self.url

            if not url.startswith(("postgresql://", "postgres://")):
                if "/" in url:
                    url = f"postgresql://{url}"
                else:
                    url = f"postgresql:///{url}"

            parsed = urlparse(url)

            if parsed.scheme not in ("postgresql", "postgres"):
                raise ValueError(
                    f"Invalid database URL scheme: {parsed.scheme}. "
                    "Expected 'postgresql' or 'postgres'"
                )

            username = parsed.username or "postgres"
            password = parsed.password
            hostname = parsed.hostname or "localhost"
            port = parsed.port or 5432
            database = (
                parsed.path.lstrip("/")
                if parsed.path and parsed.path != "/"
                else username
            )

            auth = f"{username}:{password}" if password else username
            normalized_url = f"postgresql://{auth}@{hostname}:{port}/{database}"

            # Use object.__setattr__ since model is frozen
            object.__setattr__(self, "url", normalized_url)

            return self

        except ValueError:
            raise
        except Exception as e:
            raise ValueError(f"Invalid database URL: {self.url}") from e

    @classmethod
    def from_env(
        cls,
        database_url_var: str = "DATABASE_URL",
        require_url: bool = False,
    ) -> "DatabaseConfig | None":
        """Build a config from environment variables.

        ``DATABASE_URL`` (or ``database_url_var``) wins; otherwise the URL is
        assembled from ``POSTGRES_HOST``, ``POSTGRES_PORT``, ``POSTGRES_USER``,
        ``POSTGRES_PASSWORD`` and ``POSTGRES_DB``. ``PGVERSION_MIGRATIONS_DIR``,
        ``PGVERSION_SSL_MODE`` and ``PGVERSION_ALLOW_DRIFT`` tune the rest.

        Returns:
            DatabaseConfig, or None when nothing is configured

        Raises:
            ValueError: If require_url is True and nothing is configured
        """
        url = os.getenv(database_url_var)

        if not url and os.getenv("POSTGRES_DB"):
            user = os.getenv("POSTGRES_USER", "postgres")
            password = os.getenv("POSTGRES_PASSWORD")
            host = os.getenv("POSTGRES_HOST", "localhost")
            port = os.getenv("POSTGRES_PORT", "5432")
            auth = f"{user}:{password}" if password else user
            url = f"postgresql://{auth}@{host}:{port}/{os.environ['POSTGRES_DB']}"

        if not url:
            if require_url:
                raise ValueError(
                    f"No database configuration found. Set {database_url_var} "
                    "or the POSTGRES_* variables (at least POSTGRES_DB)."
                )
            return None

        options: dict = {"url": url}
        if migrations_dir := os.getenv("PGVERSION_MIGRATIONS_DIR"):
            options["migrations_dir"] = migrations_dir
        if ssl_mode := os.getenv("PGVERSION_SSL_MODE"):
            options["ssl_mode"] = ssl_mode
        allow_drift = os.getenv("PGVERSION_ALLOW_DRIFT", "")
        if allow_drift.lower() in ("1", "true", "yes", "on"):
            options["allow_drift"] = True

        return cls(**options)
