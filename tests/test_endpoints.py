import json

import pytest

import db_cli
from guildsite import ConfigurationError, create_app
from guildsite.database import insert_entity
from guildsite.dialect import Dialect
from guildsite.models import build_schema, db
from guildsite.oplog import recent_operations
from guildsite.security import issue_admin_token


def setup_app(**overrides):
    config = {
        "DB_TYPE": "mysql",
        "SQLALCHEMY_DATABASE_URI": "sqlite://",
        "RUN_MIGRATIONS": False,
        "SECRET_KEY": "test",
        "REQUEST_LOGGING": False,
    }
    config.update(overrides)
    app = create_app(config)
    with app.app_context():
        build_schema(Dialect.MYSQL).metadata.create_all(db.engine)
    return app


def setup_user(app):
    """One user with a main and an alt character; returns the user id."""
    with app.app_context():
        gid = insert_entity("guilds", {"name": "Guttakrutt", "realm": "Tarren Mill", "faction": "Horde"})
        uid = insert_entity("users", {"username": "krutt", "battle_tag": "Krutt#2112"})
        alt = insert_entity("characters", {"name": "Altkrutt", "class_name": "Mage", "rank": 5, "level": 80, "guild_id": gid})
        main = insert_entity("characters", {"name": "Mainkrutt", "class_name": "Priest", "rank": 1, "level": 80, "guild_id": gid})
        insert_entity("user_characters", {"user_id": uid, "character_id": alt})
        insert_entity("user_characters", {"user_id": uid, "character_id": main, "is_main": True, "verified": True})
        db.session.commit()
    return uid


def login(client, uid):
    with client.session_transaction() as sess:
        sess["_user_id"] = str(uid)
        sess["_fresh"] = True


def admin_headers(app):
    with app.test_request_context():
        return {"Authorization": f"Bearer {issue_admin_token()}"}


def test_health_reports_dialect():
    app = setup_app()
    with app.test_client() as client:
        assert client.get("/api/health").get_json() == {"ok": True, "dialect": "mysql"}


def test_anonymous_auth_endpoints():
    app = setup_app()
    with app.test_client() as client:
        assert client.get("/api/auth/user").get_json() == {"authenticated": False, "user": None}
        assert client.get("/auth-status.php").get_json()["authenticated"] is False

        resp = client.get("/api/auth/my-characters")
        assert resp.status_code == 401
        assert resp.get_json() == {"success": False, "message": "Authentication required"}

        resp = client.get("/auth-characters.php")
        assert resp.status_code == 401
        assert resp.get_json()["success"] is False


def test_logged_in_user_sees_characters_main_first():
    app = setup_app()
    uid = setup_user(app)
    with app.test_client() as client:
        login(client, uid)
        user = client.get("/api/auth/user").get_json()
        assert user["authenticated"] is True
        assert user["user"]["battleTag"] == "Krutt#2112"
        assert "password" not in user["user"]

        body = client.get("/api/auth/my-characters").get_json()
        assert body["count"] == 2
        assert [c["name"] for c in body["characters"]] == ["Mainkrutt", "Altkrutt"]
        assert body["characters"][0]["is_main"] is True

        php = client.get("/auth-characters.php").get_json()
        assert php["success"] is True
        assert php["data"]["count"] == 2
        assert "timestamp" in php

        assert client.post("/api/auth/logout").get_json()["success"] is True
        assert client.get("/api/auth/status").get_json()["authenticated"] is False


def test_direct_check_tokens():
    app = setup_app()
    uid = setup_user(app)
    with app.test_client() as client:
        assert client.get("/auth-direct-check.php").status_code == 400
        assert client.get("/auth-direct-check.php?token=x&userId=abc").status_code == 400
        assert client.get(f"/auth-direct-check.php?token=forged&userId={uid}").status_code == 401
        assert client.post("/auth-direct-check.php").status_code == 401

        login(client, uid)
        issued = client.post("/auth-direct-check.php").get_json()["data"]
        assert issued["userId"] == uid

        ok = client.get(f"/auth-direct-check.php?token={issued['token']}&userId={uid}")
        assert ok.status_code == 200
        assert ok.get_json()["data"] == {"valid": True, "userId": uid}
        other = client.get(f"/auth-direct-check.php?token={issued['token']}&userId={uid + 1}")
        assert other.status_code == 401


def test_bnet_login_redirects():
    app = setup_app(BNET_LOGIN_URL="https://oauth.battle.net/authorize")
    with app.test_client() as client:
        resp = client.get("/api/auth/bnet")
        assert resp.status_code == 302
        assert resp.headers["Location"].startswith("https://oauth.battle.net/authorize?t=")

    app = setup_app(PRODUCTION_OVERRIDE=lambda: True)
    with app.test_client() as client:
        resp = client.get("/api/auth/bnet")
        assert resp.status_code == 302
        assert resp.headers["Location"].startswith("/auth-bnet.php?t=")

    app = setup_app()
    with app.test_client() as client:
        assert client.get("/api/auth/bnet").status_code == 503


def test_admin_routes_require_token():
    app = setup_app()
    with app.test_client() as client:
        resp = client.get("/api/admin/logs")
        assert resp.status_code == 401
        body = resp.get_json()
        assert body["success"] is False
        assert body["message"] == "Admin token required."
        assert "errorId" in body

        resp = client.get("/api/admin/logs", headers={"Authorization": "Bearer nope"})
        assert resp.status_code == 401


def test_admin_sql_translate():
    app = setup_app()
    headers = admin_headers(app)
    with app.test_client() as client:
        resp = client.post("/api/admin/sql/translate", json={"sql": "SELECT id::text FROM guilds"}, headers=headers)
        assert resp.status_code == 200
        assert resp.get_json()["translated"] == "SELECT CAST(id AS CHAR) FROM guilds"

        resp = client.post("/api/admin/sql/translate", json={"sql": "SELECT 1", "dialect": "postgres"}, headers=headers)
        assert resp.get_json()["translated"] == "SELECT 1"

        assert client.post("/api/admin/sql/translate", json={}, headers=headers).status_code == 400
        bad = client.post("/api/admin/sql/translate", json={"sql": "SELECT 1", "dialect": "oracle"}, headers=headers)
        assert bad.status_code == 400


def test_admin_schema_and_logs():
    app = setup_app(REQUEST_LOGGING=True)
    headers = admin_headers(app)
    with app.test_client() as client:
        client.get("/api/auth/user")
        client.get("/api/no-such-route")

        schema = client.get("/api/admin/schema", headers=headers).get_json()
        assert schema["dialect"] == "mysql"
        assert schema["tables"]["characters"]["raid_participation"] == "json"

        logs = client.get("/api/admin/logs?limit=50", headers=headers).get_json()
        operations = {row["operation"] for row in logs["logs"]}
        assert {"public_api", "public_api_error", "admin_api", "admin_api_response"} <= operations

        assert client.get("/api/admin/logs?status=fatal", headers=headers).status_code == 400


def test_admin_migrations_run(tmp_path):
    (tmp_path / "mysql").mkdir()
    (tmp_path / "mysql" / "update_schema.sql").write_text(
        "CREATE TABLE IF NOT EXISTS extra (id INTEGER);\nALTER TABLE extra ADD COLUMN note TEXT;\n",
        encoding="utf-8",
    )
    app = setup_app(MIGRATIONS_DIR=str(tmp_path))
    with app.test_client() as client:
        body = client.post("/api/admin/migrations/run", headers=admin_headers(app)).get_json()
        assert body["success"] is True
        assert body["report"]["executed"] == 2
    with app.app_context():
        assert recent_operations(operation="schema_migration")[0]["status"] == "success"


def test_api_404_is_json_and_page_404_is_not():
    app = setup_app()
    with app.test_client() as client:
        resp = client.get("/api/does-not-exist")
        assert resp.status_code == 404
        assert resp.get_json()["success"] is False

        resp = client.get("/does-not-exist")
        assert resp.status_code == 404
        assert resp.get_json(silent=True) is None


def test_unhandled_error_is_logged_and_hidden():
    app = setup_app()

    @app.get("/api/explode")
    def explode():
        raise RuntimeError("kaboom")

    with app.test_client() as client:
        resp = client.get("/api/explode")
        assert resp.status_code == 500
        assert "kaboom" not in resp.get_json()["message"]
    with app.app_context():
        row = recent_operations(operation="system_error")[0]
        assert "kaboom" in row["details"]


def test_missing_connection_settings_stop_startup(monkeypatch):
    monkeypatch.setenv("DB_TYPE", "mysql")
    monkeypatch.delenv("MYSQL_DATABASE", raising=False)
    with pytest.raises(ConfigurationError):
        create_app()

    monkeypatch.setenv("DB_TYPE", "postgres")
    monkeypatch.delenv("DATABASE_URL", raising=False)
    with pytest.raises(ConfigurationError):
        create_app()


def test_cli_translate_and_schema(capsys):
    db_cli.main(["translate", "--sql", "SELECT rank FROM characters RETURNING id"])
    assert capsys.readouterr().out.strip() == "SELECT `rank` FROM characters"

    db_cli.main(["schema", "--dialect", "postgres"])
    tables = json.loads(capsys.readouterr().out)
    assert tables["guilds"]["id"] == "serial"

    db_cli.main(["ddl", "--dialect", "mysql", "--table", "website_content"])
    assert "`key` VARCHAR(255)" in capsys.readouterr().out


def test_unreachable_database_does_not_stop_startup(tmp_path, caplog):
    missing = tmp_path / "missing" / "dir" / "guild.db"
    app = create_app({
        "DB_TYPE": "mysql",
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{missing}",
        "RUN_MIGRATIONS": True,
        "SECRET_KEY": "test",
        "REQUEST_LOGGING": False,
    })
    assert "Error applying database migrations" in caplog.text
    with app.test_client() as client:
        assert client.get("/api/health").get_json() == {"ok": True, "dialect": "mysql"}
