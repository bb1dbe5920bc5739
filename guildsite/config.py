"""Database connection settings.

Environment variables:
  DB_TYPE         'postgres' or 'mysql' (default: postgres)
  DATABASE_URL    PostgreSQL connection string (required for postgres)
  MYSQL_HOST      MySQL host (default: localhost)
  MYSQL_PORT      MySQL port (default: 3306)
  MYSQL_USER      MySQL username (default: root)
  MYSQL_PASSWORD  MySQL password (default: '')
  MYSQL_DATABASE  MySQL database name (required for mysql)
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from sqlalchemy.engine import URL, make_url

from .dialect import Dialect


class ConfigurationError(RuntimeError):
    """Missing or invalid connection settings; startup must stop."""


@dataclass(frozen=True)
class DatabaseConfig:
    dialect: Dialect
    url: URL

    @classmethod
    def from_env(cls, dialect: Dialect, env: Optional[Mapping[str, str]] = None) -> "DatabaseConfig":
        env = os.environ if env is None else env
        if dialect is Dialect.MYSQL:
            database = env.get("MYSQL_DATABASE")
            if not database:
                raise ConfigurationError("MYSQL_DATABASE environment variable is required")
            try:
                port = int(env.get("MYSQL_PORT") or 3306)
            except ValueError:
                raise ConfigurationError(f"MYSQL_PORT must be a number, got {env.get('MYSQL_PORT')!r}") from None
            url = URL.create(
                "mysql+pymysql",
                username=env.get("MYSQL_USER") or "root",
                password=env.get("MYSQL_PASSWORD") or None,
                host=env.get("MYSQL_HOST") or "localhost",
                port=port,
                database=database,
                query={"charset": "utf8mb4"},
            )
            return cls(dialect, url)

        conn = env.get("DATABASE_URL")
        if not conn:
            raise ConfigurationError("DATABASE_URL environment variable is required for PostgreSQL connection")
        url = make_url(conn)
        if url.drivername in ("postgres", "postgresql"):
            url = url.set(drivername="postgresql+psycopg2")
        return cls(dialect, url)

    @property
    def uri(self) -> str:
        return self.url.render_as_string(hide_password=False)

    @property
    def safe_uri(self) -> str:
        return self.url.render_as_string(hide_password=True)

    def engine_options(self) -> dict:
        opts = {"pool_pre_ping": True}
        if self.dialect is Dialect.MYSQL:
            opts.update(pool_recycle=280, connect_args={"connect_timeout": 30})
        return opts
