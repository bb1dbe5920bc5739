"""Entity tables, written once against the dialect-neutral column builders."""
from __future__ import annotations

import functools
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping

import sqlalchemy as sa

from ..dialect import ColumnKind, Dialect, column_builders

logger = logging.getLogger(__name__)

NOW = sa.text("CURRENT_TIMESTAMP")


class ContractError(ValueError):
    def __init__(self, table: str, message: str):
        super().__init__(f"{table}: {message}")
        self.table = table


@dataclass(frozen=True)
class EntityContract:
    """Which fields a caller may send on insert and which ones it gets back."""

    table: sa.Table
    server_generated: FrozenSet[str] = field(default_factory=frozenset)

    @property
    def name(self) -> str:
        return self.table.name

    @property
    def select_fields(self) -> List[str]:
        return [c.name for c in self.table.columns]

    @property
    def insert_fields(self) -> List[str]:
        return [n for n in self.select_fields if n not in self.server_generated]

    @property
    def required_fields(self) -> List[str]:
        return [
            c.name for c in self.table.columns
            if c.name not in self.server_generated
            and not c.nullable
            and c.server_default is None
            and c.default is None
        ]

    def kinds(self) -> Dict[str, ColumnKind]:
        return {c.name: c.info["kind"] for c in self.table.columns}

    def validate_insert(self, data: Mapping[str, Any]) -> Dict[str, Any]:
        generated = sorted(set(data) & self.server_generated)
        if generated:
            raise ContractError(self.name, f"server-generated fields not accepted: {', '.join(generated)}")
        unknown = sorted(set(data) - set(self.select_fields))
        if unknown:
            raise ContractError(self.name, f"unknown fields: {', '.join(unknown)}")
        missing = [f for f in self.required_fields if data.get(f) is None]
        if missing:
            raise ContractError(self.name, f"missing required fields: {', '.join(missing)}")
        return {k: v for k, v in data.items() if k in self.insert_fields}


class Schema:
    """All entity tables for one dialect. Read-only once built."""

    def __init__(self, dialect: Dialect, metadata: sa.MetaData, contracts: Dict[str, EntityContract]):
        self.dialect = dialect
        self.metadata = metadata
        self._contracts = contracts

    def __getattr__(self, name: str) -> sa.Table:
        contracts = self.__dict__.get("_contracts") or {}
        if name in contracts:
            return contracts[name].table
        raise AttributeError(name)

    @property
    def tables(self) -> Dict[str, sa.Table]:
        return {name: c.table for name, c in self._contracts.items()}

    def contract(self, table_name: str) -> EntityContract:
        try:
            return self._contracts[table_name]
        except KeyError:
            raise LookupError(f"Unknown entity table '{table_name}'") from None

    def contracts(self) -> Iterable[EntityContract]:
        return self._contracts.values()

    def describe(self) -> Dict[str, Dict[str, str]]:
        """Field names and semantic kinds; identical for every dialect."""
        return {
            name: {col: kind.value for col, kind in c.kinds().items()}
            for name, c in self._contracts.items()
        }


def _entity(meta: sa.MetaData, name: str, columns, omit=()) -> EntityContract:
    table = sa.Table(name, meta, *columns)
    generated = {col.name for col in table.columns if col.primary_key and col.info["kind"] is ColumnKind.SERIAL}
    generated.update(omit)
    return EntityContract(table=table, server_generated=frozenset(generated))


def _guild_tables(meta, c):
    yield _entity(meta, "guilds", [
        c.serial("id"),
        c.text("name", nullable=False),
        c.text("realm", nullable=False),
        c.text("faction", nullable=False),
        c.text("description"),
        c.integer("member_count"),
        c.timestamp("last_updated", server_default=NOW),
        c.text("emblem_url"),
        c.text("server_region", server_default="eu"),
    ], omit=("last_updated",))

    # `rank` is reserved in MySQL; SQLAlchemy quotes it for us on that dialect.
    yield _entity(meta, "characters", [
        c.serial("id"),
        c.text("name", nullable=False),
        c.text("class_name", nullable=False),
        c.text("spec_name"),
        c.integer("rank", nullable=False),
        c.integer("level", nullable=False),
        c.text("avatar_url"),
        c.integer("item_level"),
        c.integer("guild_id", sa.ForeignKey("guilds.id"), nullable=False, index=True),
        c.text("blizzard_id"),
        c.text("realm"),
        c.text("role"),
        c.json("raid_participation"),
        c.integer("raider_io_score"),
        c.timestamp("last_active"),
        c.text("armory_link"),
        c.timestamp("last_updated", server_default=NOW),
    ], omit=("last_updated",))

    yield _entity(meta, "raid_progresses", [
        c.serial("id"),
        c.text("name", nullable=False),
        c.integer("bosses", nullable=False),
        c.integer("bosses_defeated", nullable=False),
        c.text("difficulty", nullable=False),
        c.integer("guild_id", sa.ForeignKey("guilds.id"), nullable=False, index=True),
        c.integer("world_rank"),
        c.integer("region_rank"),
        c.integer("realm_rank"),
        c.timestamp("last_updated", server_default=NOW),
    ], omit=("last_updated",))

    yield _entity(meta, "raid_bosses", [
        c.serial("id"),
        c.text("name", nullable=False),
        c.text("raid_name", nullable=False),
        c.text("icon_url"),
        c.text("best_time"),
        c.text("best_parse"),
        c.integer("pull_count", server_default=sa.text("0")),
        c.boolean("defeated", server_default=sa.false()),
        c.boolean("in_progress", server_default=sa.false()),
        c.text("difficulty", server_default="mythic"),
        c.integer("guild_id", sa.ForeignKey("guilds.id"), nullable=False, index=True),
        c.timestamp("last_updated", server_default=NOW),
        # external API identifiers and rankings
        c.text("boss_id"),
        c.integer("encounter_id"),
        c.text("warcraftlogs_id"),
        c.integer("dps_ranking"),
        c.integer("healing_ranking"),
        c.integer("tank_ranking"),
        c.timestamp("last_kill_date"),
        c.integer("kill_count"),
        c.text("fastest_kill"),
        c.text("report_url"),
        c.json("raider_io_data"),
        c.json("warcraft_logs_data"),
    ], omit=("last_updated",))


def _account_tables(meta, c):
    yield _entity(meta, "users", [
        c.serial("id"),
        c.text("username", nullable=False, unique=True),
        c.text("email", unique=True),
        c.text("password"),
        c.text("display_name"),
        c.text("battle_net_id", unique=True),
        c.text("battle_tag"),
        c.text("access_token"),
        c.text("refresh_token"),
        c.timestamp("token_expiry"),
        c.timestamp("last_login", server_default=NOW),
        c.timestamp("created_at", nullable=False, server_default=NOW),
        c.boolean("is_guild_member", server_default=sa.false()),
        c.boolean("is_officer", server_default=sa.false()),
        c.text("region", server_default="eu"),
        c.text("locale", server_default="en_GB"),
        c.text("avatar_url"),
    ], omit=("last_login", "created_at"))

    yield _entity(meta, "user_characters", [
        c.serial("id"),
        c.integer("user_id", sa.ForeignKey("users.id"), nullable=False, index=True),
        c.integer("character_id", sa.ForeignKey("characters.id"), nullable=False, index=True),
        c.boolean("is_main", server_default=sa.false()),
        c.boolean("verified", server_default=sa.false()),
        c.timestamp("verified_at"),
        c.timestamp("created_at", nullable=False, server_default=NOW),
    ], omit=("verified_at", "created_at"))

    yield _entity(meta, "admin_users", [
        c.serial("id"),
        c.text("username", nullable=False, unique=True),
        c.text("password", nullable=False),
        c.timestamp("last_login"),
        c.timestamp("last_updated", server_default=NOW),
    ], omit=("last_login", "last_updated"))


def _recruitment_tables(meta, c):
    yield _entity(meta, "applications", [
        c.serial("id"),
        c.text("character_name", nullable=False),
        c.text("class_name", nullable=False),
        c.text("spec_name", nullable=False),
        c.text("realm", nullable=False),
        c.integer("item_level"),
        c.text("experience", nullable=False),
        c.text("availability", nullable=False),
        c.text("contact_info", nullable=False),
        c.text("why_join", nullable=False),
        c.text("raiders_known"),
        c.text("referred_by"),
        c.text("additional_info"),
        c.text("logs"),
        c.text("status", nullable=False, server_default="pending"),
        c.integer("reviewed_by", sa.ForeignKey("admin_users.id")),
        c.text("review_notes"),
        c.timestamp("review_date"),
        c.timestamp("created_at", nullable=False, server_default=NOW),
        c.timestamp("updated_at", nullable=False, server_default=NOW),
    ], omit=("status", "reviewed_by", "review_notes", "review_date", "created_at", "updated_at"))

    yield _entity(meta, "application_notifications", [
        c.serial("id"),
        c.integer("application_id", sa.ForeignKey("applications.id"), nullable=False, index=True),
        c.integer("admin_id", sa.ForeignKey("admin_users.id")),
        c.boolean("read", nullable=False, server_default=sa.false()),
        c.text("notification_type", nullable=False),
        c.timestamp("created_at", nullable=False, server_default=NOW),
    ], omit=("created_at",))

    yield _entity(meta, "application_comments", [
        c.serial("id"),
        c.integer("application_id", sa.ForeignKey("applications.id"), nullable=False, index=True),
        c.integer("admin_id", sa.ForeignKey("admin_users.id"), nullable=False),
        c.text("comment", nullable=False),
        c.timestamp("created_at", nullable=False, server_default=NOW),
    ], omit=("created_at",))


def _content_tables(meta, c):
    yield _entity(meta, "website_content", [
        c.serial("id"),
        c.text("key", nullable=False, unique=True),
        c.text("title", nullable=False),
        c.text("content", nullable=False),
        c.text("content_en", nullable=False),
        c.text("content_no"),
        c.boolean("is_published", server_default=sa.true()),
        c.timestamp("last_updated", server_default=NOW),
        c.integer("updated_by", sa.ForeignKey("admin_users.id")),
    ], omit=("last_updated",))

    yield _entity(meta, "media_files", [
        c.serial("id"),
        c.text("filename", nullable=False),
        c.text("path", nullable=False),
        c.text("file_type", nullable=False),
        c.text("mime_type", nullable=False),
        c.integer("size", nullable=False),
        c.integer("width"),
        c.integer("height"),
        c.text("title"),
        c.text("description"),
        c.timestamp("uploaded_at", server_default=NOW),
        c.integer("uploaded_by", sa.ForeignKey("admin_users.id")),
    ], omit=("uploaded_at",))

    yield _entity(meta, "website_settings", [
        c.serial("id"),
        c.text("key", nullable=False, unique=True),
        c.text("value", nullable=False),
        c.text("description"),
        c.text("type", nullable=False),
        c.text("category", nullable=False),
        c.timestamp("last_updated", server_default=NOW),
        c.integer("updated_by", sa.ForeignKey("admin_users.id")),
    ], omit=("last_updated",))

    yield _entity(meta, "translations", [
        c.serial("id"),
        c.text("key", nullable=False, unique=True),
        c.text("en_text", nullable=False),
        c.text("no_text"),
        c.text("context"),
        c.timestamp("last_updated", server_default=NOW),
    ], omit=("last_updated",))

    # operations log; metadata is a JSON string, not a JSON column
    yield _entity(meta, "web_logs", [
        c.serial("id"),
        c.text("operation", nullable=False),
        c.text("status", nullable=False),
        c.text("details"),
        c.timestamp("timestamp", nullable=False, server_default=NOW),
        c.integer("user_id", sa.ForeignKey("admin_users.id")),
        c.integer("duration"),
        c.text("ip_address"),
        c.text("user_agent"),
        c.text("metadata"),
    ], omit=("timestamp",))


@functools.lru_cache(maxsize=None)
def build_schema(dialect: Dialect) -> Schema:
    """Build (once per dialect) every entity table on its own MetaData."""
    dialect = Dialect(dialect)
    c = column_builders(dialect)
    meta = sa.MetaData()
    contracts: Dict[str, EntityContract] = {}
    for group in (_guild_tables, _account_tables, _recruitment_tables, _content_tables):
        for contract in group(meta, c):
            contracts[contract.name] = contract
    logger.info("Schema using %s dialect (%d tables)", dialect.value, len(contracts))
    return Schema(dialect, meta, contracts)
