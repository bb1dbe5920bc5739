import datetime as dt
import logging
from flask import Blueprint, current_app, jsonify
from flask_login import LoginManager, UserMixin, current_user, logout_user
import sqlalchemy as sa

from .client.routes import resolver_for_request
from .database import current_schema, fetch_entity
from .models import db

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth_bp", __name__)
login_manager = LoginManager()

PRIVATE_USER_FIELDS = ("password", "access_token", "refresh_token")


def _iso(value):
    return value.isoformat() if isinstance(value, (dt.date, dt.datetime)) else value


class SessionUser(UserMixin):
    """A ``users`` row carried by the flask_login session."""

    def __init__(self, row):
        self.row = dict(row)
        self.id = self.row["id"]

    def public(self) -> dict:
        r = self.row
        return {
            "id": r["id"],
            "username": r.get("username"),
            "battleNetId": r.get("battle_net_id"),
            "battleTag": r.get("battle_tag"),
            "email": r.get("email"),
            "lastLogin": _iso(r.get("last_login")),
            "createdAt": _iso(r.get("created_at")),
            "isGuildMember": bool(r.get("is_guild_member")),
            "isOfficer": bool(r.get("is_officer")),
            "region": r.get("region"),
            "locale": r.get("locale"),
            "avatarUrl": r.get("avatar_url"),
        }


@login_manager.user_loader
def load_user(user_id):  # called by Flask-Login using session cookie
    try:
        row = fetch_entity("users", int(user_id))
    except ValueError:
        return None
    return SessionUser(row) if row else None


def user_characters(user_id: int) -> list:
    """Characters linked to ``user_id``, main character first."""
    schema = current_schema()
    uc, ch = schema.user_characters, schema.characters
    q = (
        sa.select(ch, uc.c.is_main, uc.c.verified)
        .join(uc, uc.c.character_id == ch.c.id)
        .where(uc.c.user_id == user_id)
        .order_by(uc.c.is_main.desc(), ch.c.name.asc())
    )
    out = []
    for row in db.session.execute(q).mappings():
        item = {k: _iso(v) for k, v in row.items()}
        item["is_main"] = bool(item.get("is_main"))
        item["verified"] = bool(item.get("verified"))
        out.append(item)
    return out


def auth_state() -> dict:
    if current_user.is_authenticated:
        return {"authenticated": True, "user": current_user.public()}
    return {"authenticated": False, "user": None}


@auth_bp.get("/status")
def status():
    return jsonify(auth_state()), 200


@auth_bp.get("/user")
def user():
    return jsonify(auth_state()), 200


@auth_bp.get("/my-characters")
def my_characters():
    if not current_user.is_authenticated:
        return jsonify(success=False, message="Authentication required"), 401
    chars = user_characters(current_user.id)
    return jsonify(success=True, characters=chars, count=len(chars)), 200


@auth_bp.post("/logout")
def logout():
    if current_user.is_authenticated:
        logger.info("Logging out user %s", current_user.id)
    logout_user()
    return jsonify(success=True, message="Logged out successfully"), 200


@auth_bp.get("/bnet")
def bnet():
    resolver = resolver_for_request()
    if resolver.is_production_host():
        return resolver.redirect("/api/auth/bnet")
    login_url = current_app.config.get("BNET_LOGIN_URL")
    if not login_url:
        return jsonify(success=False, message="Battle.net login is not configured"), 503
    return resolver.redirect(login_url)
