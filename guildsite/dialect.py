"""Database dialect selection and per-dialect column builders.

The dialect is resolved once at bootstrap and handed to everything that
builds tables; nothing below reads ``DB_TYPE`` on its own.
"""
from __future__ import annotations

import enum
import logging
import os
from typing import Callable, Dict, Mapping, Optional
from urllib.parse import parse_qs

import sqlalchemy as sa
from sqlalchemy.dialects import mysql, postgresql

logger = logging.getLogger(__name__)

PRODUCTION_MYSQL_HOST = "guttakrutt.org"


class Dialect(str, enum.Enum):
    POSTGRES = "postgres"
    MYSQL = "mysql"

    @property
    def sql_dir(self) -> str:
        """Folder name used for this dialect's migration files."""
        return "mysql" if self is Dialect.MYSQL else "postgresql"


class ColumnKind(str, enum.Enum):
    TEXT = "text"
    SERIAL = "serial"
    INTEGER = "integer"
    BOOLEAN = "boolean"
    TIMESTAMP = "timestamp"
    JSON = "json"


class UnmappedColumnKind(LookupError):
    def __init__(self, kind: ColumnKind, dialect: Dialect):
        super().__init__(f"No {dialect.value} column constructor for kind '{kind.value}'")
        self.kind = kind
        self.dialect = dialect


def resolve_dialect(
    env: Optional[Mapping[str, str]] = None,
    hostname: Optional[str] = None,
    query_string: Optional[str] = None,
) -> Dialect:
    """Pick postgres or mysql.

    ``DB_TYPE`` is the configured default. Request-side callers may also pass
    the hostname and raw query string: the production host implies mysql,
    ``db=mysql`` forces mysql and ``db=postgres`` beats everything else.
    """
    env = os.environ if env is None else env
    configured = (env.get("DB_TYPE") or "postgres").strip().lower()
    dialect = Dialect.MYSQL if configured == "mysql" else Dialect.POSTGRES

    if hostname and PRODUCTION_MYSQL_HOST in hostname:
        dialect = Dialect.MYSQL

    if query_string:
        requested = parse_qs(query_string.lstrip("?")).get("db", [])
        if "mysql" in requested:
            dialect = Dialect.MYSQL
        if "postgres" in requested:
            dialect = Dialect.POSTGRES
    return dialect


ColumnBuilder = Callable[..., sa.Column]


# --- postgres ---------------------------------------------------------------

def _pg_text(name, *args, **kw):
    return sa.Column(name, postgresql.TEXT(), *args, **kw)

def _pg_serial(name, *args, **kw):
    kw.setdefault("primary_key", True)
    return sa.Column(name, postgresql.INTEGER(), *args, autoincrement=True, **kw)

def _pg_integer(name, *args, **kw):
    return sa.Column(name, postgresql.INTEGER(), *args, **kw)

def _pg_boolean(name, *args, **kw):
    return sa.Column(name, postgresql.BOOLEAN(), *args, **kw)

def _pg_timestamp(name, *args, **kw):
    return sa.Column(name, postgresql.TIMESTAMP(), *args, **kw)

def _pg_json(name, *args, **kw):
    return sa.Column(name, postgresql.JSONB(), *args, **kw)


# --- mysql ------------------------------------------------------------------

def _mysql_text(name, *args, **kw):
    # MySQL can neither index nor default a bare TEXT column.
    keyed = kw.get("unique") or kw.get("index") or kw.get("server_default") is not None
    type_ = mysql.VARCHAR(255) if keyed else mysql.TEXT()
    return sa.Column(name, type_, *args, **kw)

def _mysql_serial(name, *args, **kw):
    kw.setdefault("primary_key", True)
    return sa.Column(name, mysql.INTEGER(), *args, autoincrement=True, **kw)

def _mysql_integer(name, *args, **kw):
    return sa.Column(name, mysql.INTEGER(), *args, **kw)

def _mysql_boolean(name, *args, **kw):
    return sa.Column(name, mysql.BOOLEAN(), *args, **kw)

def _mysql_timestamp(name, *args, **kw):
    return sa.Column(name, mysql.TIMESTAMP(), *args, **kw)

def _mysql_json(name, *args, **kw):
    return sa.Column(name, mysql.JSON(), *args, **kw)


COLUMN_BUILDERS: Dict[Dialect, Dict[ColumnKind, ColumnBuilder]] = {
    Dialect.POSTGRES: {
        ColumnKind.TEXT: _pg_text,
        ColumnKind.SERIAL: _pg_serial,
        ColumnKind.INTEGER: _pg_integer,
        ColumnKind.BOOLEAN: _pg_boolean,
        ColumnKind.TIMESTAMP: _pg_timestamp,
        ColumnKind.JSON: _pg_json,
    },
    Dialect.MYSQL: {
        ColumnKind.TEXT: _mysql_text,
        ColumnKind.SERIAL: _mysql_serial,
        ColumnKind.INTEGER: _mysql_integer,
        ColumnKind.BOOLEAN: _mysql_boolean,
        ColumnKind.TIMESTAMP: _mysql_timestamp,
        ColumnKind.JSON: _mysql_json,
    },
}


class ColumnBuilderSet:
    """The six column constructors for one dialect."""

    def __init__(self, dialect: Dialect, builders: Mapping[ColumnKind, ColumnBuilder]):
        missing = [k for k in ColumnKind if builders.get(k) is None]
        if missing:
            raise UnmappedColumnKind(missing[0], dialect)
        self.dialect = dialect
        self._builders = dict(builders)

    def constructor(self, kind: ColumnKind) -> ColumnBuilder:
        return self._builders[kind]

    def build(self, kind: ColumnKind, name: str, *args, **kw) -> sa.Column:
        col = self._builders[kind](name, *args, **kw)
        col.info["kind"] = kind
        return col

    def text(self, name, *args, **kw):
        return self.build(ColumnKind.TEXT, name, *args, **kw)

    def serial(self, name, *args, **kw):
        return self.build(ColumnKind.SERIAL, name, *args, **kw)

    def integer(self, name, *args, **kw):
        return self.build(ColumnKind.INTEGER, name, *args, **kw)

    def boolean(self, name, *args, **kw):
        return self.build(ColumnKind.BOOLEAN, name, *args, **kw)

    def timestamp(self, name, *args, **kw):
        return self.build(ColumnKind.TIMESTAMP, name, *args, **kw)

    def json(self, name, *args, **kw):
        return self.build(ColumnKind.JSON, name, *args, **kw)


def column_builders(dialect: Dialect) -> ColumnBuilderSet:
    builders = COLUMN_BUILDERS.get(Dialect(dialect))
    if builders is None:
        raise UnmappedColumnKind(ColumnKind.TEXT, dialect)
    return ColumnBuilderSet(Dialect(dialect), builders)


# Fail at import if someone drops an entry from the table above.
for _dialect in Dialect:
    column_builders(_dialect)
