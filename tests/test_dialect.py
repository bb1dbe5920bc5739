import pytest
import sqlalchemy as sa

from guildsite.dialect import (
    COLUMN_BUILDERS,
    ColumnBuilderSet,
    ColumnKind,
    Dialect,
    UnmappedColumnKind,
    column_builders,
    resolve_dialect,
)


@pytest.mark.parametrize("dialect", list(Dialect))
@pytest.mark.parametrize("kind", list(ColumnKind))
def test_every_kind_has_a_constructor(dialect, kind):
    builders = column_builders(dialect)
    ctor = builders.constructor(kind)
    assert ctor is not None
    col = builders.build(kind, "c")
    assert isinstance(col, sa.Column)
    assert col.info["kind"] is kind


def test_missing_builder_is_rejected():
    partial = dict(COLUMN_BUILDERS[Dialect.MYSQL])
    del partial[ColumnKind.JSON]
    with pytest.raises(UnmappedColumnKind) as exc:
        ColumnBuilderSet(Dialect.MYSQL, partial)
    assert exc.value.kind is ColumnKind.JSON
    assert exc.value.dialect is Dialect.MYSQL


def test_serial_is_autoincrement_primary_key():
    for dialect in Dialect:
        col = column_builders(dialect).serial("id")
        assert col.primary_key
        assert col.autoincrement is True


def test_mysql_text_becomes_varchar_when_keyed():
    c = column_builders(Dialect.MYSQL)
    assert isinstance(c.text("key", unique=True).type, sa.VARCHAR)
    assert c.text("key", unique=True).type.length == 255
    assert isinstance(c.text("region", server_default="eu").type, sa.VARCHAR)
    assert isinstance(c.text("notes").type, sa.TEXT)
    # postgres TEXT can be indexed as is
    assert isinstance(column_builders(Dialect.POSTGRES).text("key", unique=True).type, sa.TEXT)


def test_postgres_json_is_jsonb():
    from sqlalchemy.dialects.postgresql import JSONB
    assert isinstance(column_builders(Dialect.POSTGRES).json("data").type, JSONB)


def test_resolve_dialect_defaults_to_postgres():
    assert resolve_dialect(env={}) is Dialect.POSTGRES
    assert resolve_dialect(env={"DB_TYPE": "MySQL "}) is Dialect.MYSQL
    assert resolve_dialect(env={"DB_TYPE": "sqlite"}) is Dialect.POSTGRES


def test_resolve_dialect_production_host_and_query():
    assert resolve_dialect(env={}, hostname="www.guttakrutt.org") is Dialect.MYSQL
    assert resolve_dialect(env={}, query_string="?db=mysql") is Dialect.MYSQL
    # explicit postgres request wins over host and DB_TYPE
    assert resolve_dialect(
        env={"DB_TYPE": "mysql"}, hostname="guttakrutt.org", query_string="db=postgres"
    ) is Dialect.POSTGRES


def test_sql_dir_names():
    assert Dialect.MYSQL.sql_dir == "mysql"
    assert Dialect.POSTGRES.sql_dir == "postgresql"
