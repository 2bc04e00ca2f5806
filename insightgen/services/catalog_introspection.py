from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from sqlalchemy import inspect
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError


class CatalogIntrospectionError(Exception):
    """Raised when reading constraint or column metadata from a customer database fails."""


@dataclass(frozen=True)
class ForeignKeyDefinition:
    constraint_name: str
    source_schema: str
    source_table: str
    source_columns: tuple[str, ...]
    target_schema: str
    target_table: str
    target_columns: tuple[str, ...]
    update_rule: str | None = None
    delete_rule: str | None = None


@dataclass(frozen=True)
class CatalogColumn:
    schema_name: str
    table_name: str
    column_name: str
    data_type: str
    nullable: bool


def column_set_key(columns: Sequence[str]) -> str:
    """Order-insensitive, case-insensitive identity of a column set."""

    return "|".join(sorted(column.lower() for column in columns))


def fetch_foreign_keys(engine: Engine, schema: str) -> list[ForeignKeyDefinition]:
    """Return foreign keys whose source and target tables both live in ``schema``."""

    try:
        inspector = inspect(engine)
        foreign_keys: list[ForeignKeyDefinition] = []
        for table_name in sorted(inspector.get_table_names(schema=schema)):
            for index, fk in enumerate(inspector.get_foreign_keys(table_name, schema=schema)):
                referred_schema = fk.get("referred_schema") or schema
                if referred_schema.lower() != schema.lower():
                    continue
                source_columns = tuple(fk.get("constrained_columns") or ())
                target_columns = tuple(fk.get("referred_columns") or ())
                if not source_columns or not target_columns:
                    continue
                options = fk.get("options") or {}
                foreign_keys.append(
                    ForeignKeyDefinition(
                        constraint_name=fk.get("name") or f"fk_{table_name}_{index}",
                        source_schema=schema,
                        source_table=table_name,
                        source_columns=source_columns,
                        target_schema=referred_schema,
                        target_table=fk["referred_table"],
                        target_columns=target_columns,
                        update_rule=_normalize_rule(options.get("onupdate")),
                        delete_rule=_normalize_rule(options.get("ondelete")),
                    )
                )
        return foreign_keys
    except SQLAlchemyError as exc:
        raise CatalogIntrospectionError(str(exc)) from exc


def fetch_unique_column_sets(engine: Engine, schema: str) -> dict[str, set[str]]:
    """Map each table in ``schema`` to the column-set keys covered by a primary key or unique constraint."""

    try:
        inspector = inspect(engine)
        unique_sets: dict[str, set[str]] = {}
        for table_name in inspector.get_table_names(schema=schema):
            keys: set[str] = set()
            pk = inspector.get_pk_constraint(table_name, schema=schema) or {}
            if pk.get("constrained_columns"):
                keys.add(column_set_key(pk["constrained_columns"]))
            for constraint in inspector.get_unique_constraints(table_name, schema=schema):
                if constraint.get("column_names"):
                    keys.add(column_set_key(constraint["column_names"]))
            for index in inspector.get_indexes(table_name, schema=schema):
                if index.get("unique") and index.get("column_names"):
                    keys.add(column_set_key([name for name in index["column_names"] if name]))
            unique_sets[table_name.lower()] = keys
        return unique_sets
    except SQLAlchemyError as exc:
        raise CatalogIntrospectionError(str(exc)) from exc


def fetch_columns(engine: Engine, schema: str) -> list[CatalogColumn]:
    """Return every column of every table in ``schema`` in table/ordinal order."""

    try:
        inspector = inspect(engine)
        columns: list[CatalogColumn] = []
        for table_name in sorted(inspector.get_table_names(schema=schema)):
            for col in inspector.get_columns(table_name, schema=schema):
                columns.append(
                    CatalogColumn(
                        schema_name=schema,
                        table_name=table_name,
                        column_name=col.get("name", ""),
                        data_type=base_type_name(col.get("type")),
                        nullable=col.get("nullable", True),
                    )
                )
        return columns
    except SQLAlchemyError as exc:
        raise CatalogIntrospectionError(str(exc)) from exc


def base_type_name(col_type: object) -> str:
    """Lower-cased type name without length/precision, e.g. ``NVARCHAR(50)`` -> ``nvarchar``."""

    if col_type is None:
        return "unknown"
    try:
        rendered = str(col_type)
    except SQLAlchemyError:
        rendered = type(col_type).__name__
    return rendered.split("(", 1)[0].strip().lower() or "unknown"


def _normalize_rule(value: str | None) -> str | None:
    if not value:
        return None
    return value.strip().upper()


_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def validate_schema_name(schema: str) -> str:
    """Return ``schema`` unchanged when it is a plain identifier safe to splice into SQL text."""

    if not _IDENTIFIER.match(schema or ""):
        raise CatalogIntrospectionError(f"Invalid schema name '{schema}'")
    return schema


def row_value(row: Mapping[str, Any], *candidates: str) -> Any:
    """Case-insensitive lookup of the first matching column in a result row mapping."""

    lowered = {key.lower(): value for key, value in row.items()}
    for candidate in candidates:
        if candidate.lower() in lowered:
            return lowered[candidate.lower()]
    return None
