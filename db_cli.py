# db_cli.py - guild site DB CLI
import os, sys, json, argparse, datetime
from typing import List

# Ensure local package import works when running directly
sys.path.insert(0, os.path.abspath("."))

import sqlalchemy as sa  # type: ignore
from sqlalchemy.schema import CreateIndex, CreateTable  # type: ignore

from guildsite.dialect import Dialect, resolve_dialect
from guildsite.models import build_schema
from guildsite.sqlcompat import find_postgres_syntax, hits_to_json, translate

def _fmt_dt(dt):
    if not dt: return None
    if isinstance(dt, (datetime.datetime, datetime.date)):
        return dt.isoformat()
    return str(dt)

def print_rows(rows: List[tuple], headers: List[str]) -> None:
    if not rows:
        print("(no rows)")
        return
    widths = [len(h) for h in headers]
    for r in rows:
        for i, v in enumerate(r):
            widths[i] = max(widths[i], len("" if v is None else str(v)))
    line = " | ".join(h.ljust(widths[i]) for i,h in enumerate(headers))
    print(line)
    print("-+-".join("-"*w for w in widths))
    for r in rows:
        print(" | ".join(("" if v is None else str(v)).ljust(widths[i]) for i,v in enumerate(r)))

def _dialect(args) -> Dialect:
    return Dialect(args.dialect) if args.dialect else resolve_dialect()

def _sa_dialect(dialect: Dialect):
    from sqlalchemy.dialects import mysql, postgresql
    return mysql.dialect() if dialect is Dialect.MYSQL else postgresql.dialect()

# --------------------
# Commands (offline)
# --------------------

def cmd_translate(args):
    if args.file:
        with open(args.file, "r", encoding="utf-8") as f:
            sql = f.read()
    else:
        sql = args.sql
    if not sql:
        raise SystemExit("Provide --sql or --file")
    print(translate(sql, _dialect(args)))

def cmd_ddl(args):
    dialect = _dialect(args)
    schema = build_schema(dialect)
    target = _sa_dialect(dialect)
    names = [args.table] if args.table else [t.name for t in schema.metadata.sorted_tables]
    for name in names:
        try:
            table = schema.contract(name).table
        except LookupError:
            raise SystemExit(f"Unknown table: {name}")
        print(f"{str(CreateTable(table).compile(dialect=target)).strip()};")
        for ix in sorted(table.indexes, key=lambda i: i.name):
            print(f"{str(CreateIndex(ix).compile(dialect=target)).strip()};")
        print()

def cmd_schema(args):
    print(json.dumps(build_schema(_dialect(args)).describe(), indent=2))

def cmd_find_pg_syntax(args):
    hits = find_postgres_syntax(args.paths or ["."])
    if args.json:
        print(hits_to_json(hits))
        return
    print_rows([(h.path, h.line, h.pattern, h.text.strip()[:80]) for h in hits],
               ["path", "line", "pattern", "text"])
    print(f"\n{len(hits)} potential PostgreSQL-specific constructs found")

# --------------------
# Commands (need a database)
# --------------------

def cmd_migrate(args):
    from guildsite.database import current_dialect
    from guildsite.migrator import apply_migrations
    from guildsite.models import db
    with db.engine.connect() as conn:
        report = apply_migrations(conn, current_dialect(), args.root)
    print(json.dumps(report.as_dict(), indent=2))
    for stmt, err in report.errors:
        print(f"-- failed: {err}\n{stmt}\n", file=sys.stderr)
    if report.skipped:
        raise SystemExit(1)

def cmd_logs(args):
    from guildsite.oplog import recent_operations
    rows = [
        (r["id"], _fmt_dt(r.get("timestamp")), r["operation"], r["status"], (r.get("details") or "")[:80])
        for r in recent_operations(limit=args.limit, operation=args.operation, status=args.status)
    ]
    print_rows(rows, ["id", "timestamp", "operation", "status", "details"])

def cmd_sql(args):
    # Dangerous but sometimes necessary; use responsibly.
    from guildsite.database import run_sql
    from guildsite.models import db
    sql = args.query
    is_select = sql.strip().lower().startswith(("select","with","show"))
    res = run_sql(sql)
    if is_select:
        rows = res.fetchall()
        if rows:
            print_rows([tuple(r) for r in rows], list(res.keys()))
        else:
            print("(no rows)")
    else:
        db.session.commit()
        print(json.dumps({"ok": True, "rowcount": res.rowcount}, indent=2))

def build_parser():
    p = argparse.ArgumentParser(description="Guild site DB CLI")
    sub = p.add_subparsers(dest="cmd", required=True)

    s = sub.add_parser("translate", help="Translate PostgreSQL-flavoured SQL")
    g = s.add_mutually_exclusive_group(required=True)
    g.add_argument("--sql")
    g.add_argument("--file")
    s.add_argument("--dialect", choices=[d.value for d in Dialect], default="mysql")
    s.set_defaults(func=cmd_translate, needs_app=False)

    s = sub.add_parser("ddl", help="Print CREATE TABLE statements for a dialect")
    s.add_argument("--dialect", choices=[d.value for d in Dialect])
    s.add_argument("--table")
    s.set_defaults(func=cmd_ddl, needs_app=False)

    s = sub.add_parser("schema", help="Show tables and column kinds (JSON)")
    s.add_argument("--dialect", choices=[d.value for d in Dialect])
    s.set_defaults(func=cmd_schema, needs_app=False)

    s = sub.add_parser("find-pg-syntax", help="Scan source files for PostgreSQL-only syntax")
    s.add_argument("paths", nargs="*")
    s.add_argument("--json", action="store_true")
    s.set_defaults(func=cmd_find_pg_syntax, needs_app=False)

    s = sub.add_parser("migrate", help="Apply sql/<dialect>/update_schema.sql")
    s.add_argument("--root", help="Directory holding the per-dialect sql folders")
    s.set_defaults(func=cmd_migrate, needs_app=True)

    s = sub.add_parser("logs", help="List recent operations-log entries")
    s.add_argument("--limit", type=int, default=50)
    s.add_argument("--operation")
    s.add_argument("--status", choices=["success", "error", "warning", "info"])
    s.set_defaults(func=cmd_logs, needs_app=True)

    s = sub.add_parser("sql", help="Execute raw SQL through the translator (danger!)")
    s.add_argument("--query", required=True)
    s.set_defaults(func=cmd_sql, needs_app=True)

    return p

def main(argv=None):
    args = build_parser().parse_args(argv)
    if not args.needs_app:
        args.func(args)
        return
    # migrations run explicitly here, not on app start
    os.environ["RUN_MIGRATIONS"] = "0"
    from guildsite import create_app
    app = create_app()
    with app.app_context():
        args.func(args)

if __name__ == "__main__":
    main()
