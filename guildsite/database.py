"""Query helpers bound to the active dialect and schema."""
from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

import sqlalchemy as sa
from flask import current_app

from .dialect import Dialect
from .models import Schema, db
from .sqlcompat import translate

logger = logging.getLogger(__name__)

EXTENSION_KEY = "guildsite"


def current_dialect() -> Dialect:
    return current_app.extensions[EXTENSION_KEY]["dialect"]


def current_schema() -> Schema:
    return current_app.extensions[EXTENSION_KEY]["schema"]


def run_sql(sql: str, params: Optional[Mapping[str, Any]] = None):
    """Execute hand-written (PostgreSQL-flavoured) SQL on the active connection."""
    statement = translate(sql, current_dialect())
    try:
        return db.session.execute(sa.text(statement), dict(params or {}))
    except sa.exc.DBAPIError:
        logger.error("Database query error; query was: %s", statement)
        raise


def run_sql_returning_id(sql: str, params: Optional[Mapping[str, Any]] = None) -> Optional[int]:
    """Run an INSERT ... RETURNING id and hand back the new id on both dialects.

    The MySQL translation drops the RETURNING clause, so the id comes from
    the cursor's ``lastrowid`` (the driver's LAST_INSERT_ID()) instead.
    """
    result = run_sql(sql, params)
    if current_dialect() is Dialect.MYSQL:
        return result.lastrowid
    return result.scalar()


def insert_entity(table_name: str, data: Mapping[str, Any]) -> int:
    """Insert a row after checking it against the entity's insert contract."""
    contract = current_schema().contract(table_name)
    values = contract.validate_insert(data)
    result = db.session.execute(contract.table.insert().values(**values))
    return result.inserted_primary_key[0]


def fetch_entity(table_name: str, entity_id: int) -> Optional[dict]:
    table = current_schema().contract(table_name).table
    row = db.session.execute(sa.select(table).where(table.c.id == entity_id)).mappings().first()
    return dict(row) if row else None
