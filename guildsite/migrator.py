"""Boot-time schema migration from plain ``sql/<dialect>/*.sql`` files.

PostgreSQL runs the update script as one batch. MySQL runs it statement by
statement and keeps going past failures (a column that already exists on one
host is not a reason to refuse to start), then applies the optional schema
fix file, which may contain one ``DELIMITER //`` stored-procedure block.
"""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Tuple, Union

from .dialect import Dialect

logger = logging.getLogger(__name__)

MIGRATION_FILE = "update_schema.sql"
SCHEMA_FIX_FILE = "mysql8_schema_fix.sql"
DEFAULT_SQL_ROOT = Path(__file__).resolve().parent.parent / "sql"

_COMMENT_LINE = re.compile(r"^\s*(--|#).*$", re.MULTILINE)
_PROCEDURE_TERMINATOR = re.compile(r"//[ \t]*(?:\r?\n|$)")


@dataclass
class MigrationReport:
    dialect: Dialect
    path: Optional[Path] = None
    skipped: bool = False
    executed: int = 0
    failed: int = 0
    errors: List[Tuple[str, str]] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "dialect": self.dialect.value,
            "path": str(self.path) if self.path else None,
            "skipped": self.skipped,
            "executed": self.executed,
            "failed": self.failed,
        }


def sql_root() -> Path:
    return Path(os.environ.get("MIGRATIONS_DIR") or DEFAULT_SQL_ROOT)


def migration_path(dialect: Dialect, root: Union[str, Path, None] = None) -> Path:
    return Path(root or sql_root()) / dialect.sql_dir / MIGRATION_FILE


def split_statements(sql: str) -> List[str]:
    """Split on ';' and drop chunks that hold nothing but whitespace or comments."""
    out = []
    for chunk in sql.split(";"):
        if _COMMENT_LINE.sub("", chunk).strip():
            out.append(chunk.strip())
    return out


def split_schema_fix(sql: str) -> Tuple[List[str], List[str], List[str]]:
    """Return (statements before the procedure, procedure units, statements after)."""
    head, sep, tail = sql.partition("DELIMITER //")
    if not sep:
        return split_statements(head), [], []
    body, _, rest = tail.partition("DELIMITER ;")
    units = [u.strip() for u in _PROCEDURE_TERMINATOR.split(body) if _COMMENT_LINE.sub("", u).strip()]
    return split_statements(head), units, split_statements(rest)


def _execute(connection, statement: str) -> None:
    connection.execution_options(no_parameters=True).exec_driver_sql(statement)


def _execute_each(connection, statements: List[str], report: MigrationReport, label: str) -> None:
    for stmt in statements:
        try:
            _execute(connection, stmt)
            connection.commit()
            report.executed += 1
        except Exception as e:
            connection.rollback()
            report.failed += 1
            report.errors.append((stmt, str(e)))
            logger.error("Error executing %s statement: %s\n  %s", label, e, stmt)


def apply_migrations(connection, dialect: Dialect, root: Union[str, Path, None] = None) -> MigrationReport:
    """Bring the schema up to date from the dialect's SQL files.

    ``connection`` is a SQLAlchemy ``Connection`` (commit-as-you-go).
    A missing migration file is logged and skipped.
    """
    dialect = Dialect(dialect)
    path = migration_path(dialect, root)
    report = MigrationReport(dialect=dialect, path=path)
    logger.info("Applying migrations for %s from %s", dialect.sql_dir, path)

    if not path.exists():
        logger.error("Migration file not found: %s", path)
        report.skipped = True
        return report

    migration_sql = path.read_text(encoding="utf-8")

    if dialect is Dialect.POSTGRES:
        try:
            _execute(connection, migration_sql)
            connection.commit()
        except Exception:
            connection.rollback()
            raise
        report.executed = 1
        logger.info("Database migration completed")
        return report

    _execute_each(connection, split_statements(migration_sql), report, "migration")

    fix_path = path.with_name(SCHEMA_FIX_FILE)
    if fix_path.exists():
        logger.info("Applying additional schema fixes from %s", fix_path)
        before, procedure, after = split_schema_fix(fix_path.read_text(encoding="utf-8"))
        _execute_each(connection, before, report, "schema fix")
        _execute_each(connection, procedure, report, "stored procedure")
        _execute_each(connection, after, report, "schema fix")

    logger.info(
        "Database migration completed: %d statements executed, %d failed",
        report.executed, report.failed,
    )
    return report


def apply_migrations_safely(
    engine,
    dialect: Dialect,
    root: Union[str, Path, None] = None,
    record: Optional[Callable[..., object]] = None,
) -> Optional[MigrationReport]:
    """Startup wrapper: never raises; failures go to the log and ``record``.

    Connecting happens inside the guard, so an unreachable database is
    reported like any other migration failure.
    """
    try:
        with engine.connect() as connection:
            return apply_migrations(connection, dialect, root)
    except Exception as e:
        logger.exception("Error applying database migrations")
        if record is not None:
            try:
                record("system_critical", "error", f"Migration failure: {e}")
            except Exception:
                logger.exception("Failed to log migration error")
        return None
