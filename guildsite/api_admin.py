# guildsite/api_admin.py
from flask import Blueprint, current_app, request, jsonify
from .database import current_dialect, current_schema
from .dialect import Dialect
from .migrator import apply_migrations
from .models import db
from .oplog import STATUSES, log_operation_quietly, recent_operations
from .security import admin_guard
from .sqlcompat import translate

admin_api = Blueprint("admin_api", __name__, url_prefix="/api/admin")

@admin_api.before_request
def _require_admin():
    # allow CORS preflight if needed
    if request.method == "OPTIONS":
        return
    admin_guard()

# -------- operations log ----------
@admin_api.get("/logs")
def logs_list():
    try: limit = int(request.args.get("limit", 100))
    except ValueError: limit = 100
    status = request.args.get("status")
    if status and status not in STATUSES:
        return jsonify(success=False, message=f"status must be one of {', '.join(STATUSES)}"), 400
    rows = recent_operations(limit=limit, operation=request.args.get("operation"), status=status)
    return jsonify(success=True, logs=rows, count=len(rows)), 200

# -------- SQL tools ----------
@admin_api.post("/sql/translate")
def sql_translate():
    data = request.get_json(force=True, silent=True) or {}
    sql = data.get("sql")
    if not isinstance(sql, str) or not sql.strip():
        return jsonify(success=False, message="sql is required"), 400
    try:
        dialect = Dialect(data.get("dialect") or Dialect.MYSQL.value)
    except ValueError:
        return jsonify(success=False, message="dialect must be 'postgres' or 'mysql'"), 400
    return jsonify(success=True, dialect=dialect.value, original=sql, translated=translate(sql, dialect)), 200

@admin_api.get("/schema")
def schema_describe():
    return jsonify(success=True, dialect=current_dialect().value, tables=current_schema().describe()), 200

@admin_api.post("/migrations/run")
def migrations_run():
    with db.engine.connect() as conn:
        report = apply_migrations(conn, current_dialect(), current_app.config.get("MIGRATIONS_DIR"))
    status = "warning" if report.failed or report.skipped else "success"
    log_operation_quietly(
        "schema_migration", status,
        f"Migrations: {report.executed} executed, {report.failed} failed",
        metadata=report.as_dict(),
    )
    return jsonify(success=not report.skipped, report=report.as_dict()), 200
