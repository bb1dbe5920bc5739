"""PostgreSQL -> MySQL rewriting for hand-written SQL.

This is string rewriting, not parsing. Casts it cannot map are dropped and
RETURNING clauses are removed outright; both are logged as warnings. Callers
that need a generated id on MySQL should use ``database.run_sql_returning_id``
or ``database.insert_entity``.
"""
from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Iterable, Iterator, List, Mapping, NamedTuple, Union

from .dialect import Dialect

logger = logging.getLogger(__name__)

# The session store's CREATE TABLE statement; generic rewriting mangles it.
SESSION_TABLE_MYSQL = """CREATE TABLE IF NOT EXISTS `session` (
      `sid` VARCHAR(255) NOT NULL PRIMARY KEY,
      `sess` JSON NOT NULL,
      `expire` DATETIME(6) NOT NULL
    )"""

CAST_TYPES = {
    "text": "CHAR",
    "json": "JSON",
    "jsonb": "JSON",
    "int": "SIGNED",
    "integer": "SIGNED",
    "bool": "UNSIGNED",
    "boolean": "UNSIGNED",
    "date": "DATE",
    "timestamp": "DATETIME",
}

MYSQL_RESERVED_WORDS = (
    "rank", "order", "key", "group", "where", "option", "read",
    "index", "join", "limit", "values", "update", "default",
)

_IDENT = r"(?:\w+\.)*\w+"
_COMPOUND_CAST = re.compile(r"\(([^()]*(?:\([^()]*\)[^()]*)*)\)::\w+")
_SIMPLE_CAST = re.compile(
    r"\b(" + _IDENT + r")::(" + "|".join(sorted(CAST_TYPES, key=len, reverse=True)) + r")\b",
    re.IGNORECASE,
)
_RESIDUAL_CAST = re.compile(r"::\w+")
_JSON_TEXT = re.compile(r"(" + _IDENT + r")\s*->>\s*'([^']+)'")
_JSON_VALUE = re.compile(r"(" + _IDENT + r")\s*->\s*'([^']+)'")
_RETURNING = re.compile(r"\s+RETURNING\s+(?:\*|[\w.`\"]+(?:\s*,\s*[\w.`\"]+)*)", re.IGNORECASE)
_STRING_LITERAL = re.compile(r"'(?:[^']|'')*'")
_RESERVED = re.compile(
    r"(?<![`\w:])\"?\b(" + "|".join(MYSQL_RESERVED_WORDS) + r")\b\"?(?![`\w])",
    re.IGNORECASE,
)
# Contexts where a reserved word (any case) is SQL syntax, not an identifier:
# (pattern ending the text before, pattern starting the text after).
_KEYWORD_PATTERNS = {
    "order": (None, r"\s+by\b"),
    "group": (None, r"\s+by\b"),
    "key": (r"\b(?:primary|foreign|unique|duplicate)\s+$", None),
    "limit": (None, r"\s+(?:\d|\?|%s|%\(|:\w|\$\d)"),
    "where": (None, r"\s+(?!(?:from|as)\b)[\w(`\"'@:]"),
    "join": (
        r"\b(?:inner|left|right|outer|cross|full|natural|straight)\s+$",
        r"\s+[\w`\"]+(?:\s+(?:as\s+)?\w+)?\s+(?:on|using)\b",
    ),
    "update": (r"(?:^|;|\bon|\bfor|\bdo|\bkey)\s*$", None),
    "values": (None, r"\s*\("),
    "default": (r"(?:=|\bset)\s*$", r"\s+(?:'|\d|-\d|current_timestamp|null|true|false|now\b|values\b|charset\b)"),
    "index": (r"\b(?:create|unique|drop|add|using|force|use|ignore|fulltext|spatial)\s+$", None),
    "read": (r"\brepeatable\s+$", r"\s+(?:committed|uncommitted|only|write)\b"),
    "option": (r"\b(?:grant|check)\s+$", None),
}
_KEYWORD_CONTEXT = {
    word: (
        re.compile(before, re.IGNORECASE) if before else None,
        re.compile(after, re.IGNORECASE) if after else None,
    )
    for word, (before, after) in _KEYWORD_PATTERNS.items()
}


def _is_session_table_statement(sql: str) -> bool:
    return 'CREATE TABLE IF NOT EXISTS "session"' in sql and "(sid character varying" in sql


def _literal_spans(sql: str):
    return [m.span() for m in _STRING_LITERAL.finditer(sql)]


def _is_keyword_use(word: str, before: str, after: str) -> bool:
    before_re, after_re = _KEYWORD_CONTEXT.get(word.lower(), (None, None))
    if before_re is not None and before_re.search(before):
        return True
    return after_re is not None and after_re.match(after) is not None


def _quote_reserved(sql: str) -> str:
    """Backtick reserved words used as identifiers, skipping string literals."""
    spans = _literal_spans(sql)

    def repl(m: re.Match) -> str:
        token, word = m.group(0), m.group(1)
        if any(start <= m.start() < end for start, end in spans):
            return token
        if token.startswith('"') != token.endswith('"'):
            return token
        if not token.startswith('"'):
            after = sql[m.end():]
            # function call, e.g. rank() over (...)
            if re.match(r"\s*\(", after):
                return token
            if _is_keyword_use(word, sql[:m.start()], after):
                return token
        return f"`{word}`"

    return _RESERVED.sub(repl, sql)


def translate(sql: str, dialect: Union[Dialect, str]) -> str:
    """Rewrite PostgreSQL-flavoured ``sql`` for ``dialect`` (identity on postgres)."""
    if not sql or Dialect(dialect) is not Dialect.MYSQL:
        return sql

    if _is_session_table_statement(sql):
        logger.info("Replacing session table DDL with the MySQL version")
        return SESSION_TABLE_MYSQL

    original = sql

    if "::" in sql:
        sql = _COMPOUND_CAST.sub(r"(\1)", sql)
        if sql != original:
            logger.info("Removed cast from parenthesised expression")
        sql = _SIMPLE_CAST.sub(lambda m: f"CAST({m.group(1)} AS {CAST_TYPES[m.group(2).lower()]})", sql)
        if "::" in sql:
            stripped = _RESIDUAL_CAST.findall(sql)
            sql = _RESIDUAL_CAST.sub("", sql)
            logger.warning("Removed unmapped type casts %s from SQL; results may differ", stripped)

    if "->" in sql:
        sql = _JSON_TEXT.sub(r"JSON_UNQUOTE(JSON_EXTRACT(\1, '$.\2'))", sql)
        sql = _JSON_VALUE.sub(r"JSON_EXTRACT(\1, '$.\2')", sql)

    sql = _quote_reserved(sql)

    if re.search(r"\bRETURNING\b", sql, re.IGNORECASE):
        sql = _RETURNING.sub("", sql)
        logger.warning("RETURNING clause removed; no value will be returned on MySQL")

    if sql != original:
        logger.info("PostgreSQL -> MySQL conversion\n  original:  %s\n  converted: %s", original, sql)
    return sql


# -- dialect-aware fragment builders ---------------------------------------

def db_cast(expr: str, type_name: str, dialect: Union[Dialect, str]) -> str:
    if Dialect(dialect) is Dialect.MYSQL:
        target = CAST_TYPES.get(type_name.lower(), type_name.upper())
        return f"CAST({expr} AS {target})"
    return f"{expr}::{type_name}"


def json_extract(field: str, path: str, dialect: Union[Dialect, str]) -> str:
    parts = path.split(".")
    if Dialect(dialect) is Dialect.MYSQL:
        return f"JSON_EXTRACT({field}, '{'.'.join(['$'] + parts)}')"
    out = field
    for part in parts[:-1]:
        out += f"->'{part}'"
    return out + f"->>'{parts[-1]}'"


def json_build_object(values: Mapping[str, str], dialect: Union[Dialect, str]) -> str:
    args = ", ".join(f"'{k}', {v}" for k, v in values.items())
    fn = "JSON_OBJECT" if Dialect(dialect) is Dialect.MYSQL else "jsonb_build_object"
    return f"{fn}({args})"


def quote_identifier(name: str, dialect: Union[Dialect, str]) -> str:
    if Dialect(dialect) is Dialect.MYSQL:
        return "`" + name.replace("`", "``") + "`"
    return '"' + name.replace('"', '""') + '"'


# -- source audit ------------------------------------------------------------

POSTGRES_PATTERNS = (
    "::text", "::json", "::jsonb", "::int", "::boolean", "::timestamp",
    "jsonb_", "array_", "returning",
)
SCANNED_SUFFIXES = (".py", ".sql")


class SyntaxHit(NamedTuple):
    path: str
    line: int
    pattern: str
    text: str

    def as_dict(self) -> dict:
        return self._asdict()


def _iter_files(paths: Iterable[Union[str, Path]]) -> Iterator[Path]:
    for p in map(Path, paths):
        if p.is_dir():
            yield from sorted(f for f in p.rglob("*") if f.suffix in SCANNED_SUFFIXES and f.is_file())
        elif p.is_file():
            yield p


def find_postgres_syntax(paths: Iterable[Union[str, Path]], patterns=POSTGRES_PATTERNS) -> List[SyntaxHit]:
    """Report lines using PostgreSQL-only syntax that may break on MySQL."""
    hits: List[SyntaxHit] = []
    for path in _iter_files(paths):
        try:
            lines = path.read_text(encoding="utf-8").splitlines()
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Skipping %s: %s", path, e)
            continue
        for lineno, line in enumerate(lines, start=1):
            lowered = line.lower()
            for pattern in patterns:
                if pattern in lowered:
                    hits.append(SyntaxHit(str(path), lineno, pattern, line.strip()))
    return hits


def hits_to_json(hits: Iterable[SyntaxHit]) -> str:
    return json.dumps([h.as_dict() for h in hits], indent=2)
