# environment driven settings shared by the db and services packages
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal, Optional


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


@dataclass(frozen=True)
class Settings:
    """
    Connection and runtime settings.

    Fields:
      - backend: "sqlite" for local work and tests, "postgres" for the pooled server
      - sqlite_path: database file used by the sqlite backend
      - pg_*: PostgreSQL connection parameters (also used for a Supabase-hosted database)
      - jwt_secret: signing secret for session tokens, consumed by the auth layer only
    """

    backend: Literal["sqlite", "postgres"] = "sqlite"
    sqlite_path: str = "data/karigarverse.sqlite"
    sqlite_timeout: float = 5.0

    pg_host: str = "localhost"
    pg_user: str = "postgres"
    pg_password: str = ""
    pg_database: str = "karigarverse"
    pg_port: int = 5432
    pg_pool_min: int = 1
    pg_pool_max: int = 20
    pg_connect_timeout: float = 2.0
    pg_statement_timeout: float = 30.0
    pg_idle_timeout: float = 30.0

    jwt_secret: Optional[str] = None
    log_level: str = "INFO"

    @property
    def pg_dsn(self) -> str:
        return (
            f"postgresql://{self.pg_user}:{self.pg_password}"
            f"@{self.pg_host}:{self.pg_port}/{self.pg_database}"
        )


def load_settings() -> Settings:
    """Build Settings from the process environment."""
    backend = (os.getenv("KARIGAR_DB_BACKEND") or "sqlite").strip().lower()
    if backend not in ("sqlite", "postgres"):
        raise ValueError(
            f"KARIGAR_DB_BACKEND must be 'sqlite' or 'postgres', got {backend!r}"
        )

    log_level = os.getenv("KARIGAR_LOG_LEVEL")
    if not log_level:
        log_level = "DEBUG" if os.getenv("DEBUG") else "INFO"

    return Settings(
        backend=backend,  # type: ignore[arg-type]
        sqlite_path=os.getenv("KARIGAR_SQLITE_PATH", Settings.sqlite_path),
        sqlite_timeout=_env_float("KARIGAR_SQLITE_TIMEOUT", Settings.sqlite_timeout),
        pg_host=os.getenv("POSTGRES_HOST", Settings.pg_host),
        pg_user=os.getenv("POSTGRES_USER", Settings.pg_user),
        pg_password=os.getenv("POSTGRES_PASSWORD", Settings.pg_password),
        pg_database=os.getenv("POSTGRES_DB", Settings.pg_database),
        pg_port=_env_int("POSTGRES_PORT", Settings.pg_port),
        pg_pool_min=_env_int("POSTGRES_POOL_MIN", Settings.pg_pool_min),
        pg_pool_max=_env_int("POSTGRES_POOL_MAX", Settings.pg_pool_max),
        pg_connect_timeout=_env_float(
            "POSTGRES_CONNECT_TIMEOUT", Settings.pg_connect_timeout
        ),
        pg_statement_timeout=_env_float(
            "POSTGRES_STATEMENT_TIMEOUT", Settings.pg_statement_timeout
        ),
        pg_idle_timeout=_env_float("POSTGRES_IDLE_TIMEOUT", Settings.pg_idle_timeout),
        jwt_secret=os.getenv("JWT_SECRET"),
        log_level=log_level.upper(),
    )
