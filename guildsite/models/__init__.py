from .base import db
from .schema import (
    ContractError,
    EntityContract,
    Schema,
    build_schema,
)

__all__ = [
    "db",
    "ContractError", "EntityContract", "Schema", "build_schema",
]
