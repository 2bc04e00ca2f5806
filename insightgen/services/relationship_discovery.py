from __future__ import annotations

import logging
from dataclasses import dataclass, field
from uuid import UUID

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from insightgen.services.catalog_introspection import (
    ForeignKeyDefinition,
    column_set_key,
    fetch_foreign_keys,
    fetch_unique_column_sets,
)
from insightgen.services.semantic_index_store import RelationshipRecord, SemanticIndexStore

logger = logging.getLogger(__name__)

RELATIONSHIP_CONFIDENCE = 1.0


@dataclass
class RelationshipResult:
    customer_id: UUID
    relationships: list[RelationshipRecord] = field(default_factory=list)
    one_to_many_count: int = 0
    many_to_one_count: int = 0
    one_to_one_count: int = 0
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def relationships_discovered(self) -> int:
        return len(self.relationships)


def build_relationship_pair(
    fk: ForeignKeyDefinition, is_unique: bool
) -> tuple[RelationshipRecord, RelationshipRecord]:
    """Return the child->parent and parent->child records derived from one foreign key."""

    source_table = f"{fk.source_schema}.{fk.source_table}"
    target_table = f"{fk.target_schema}.{fk.target_table}"
    source_columns = ", ".join(fk.source_columns)
    target_columns = ", ".join(fk.target_columns)
    fk_column_name = f"{source_table}.{source_columns}"

    child_to_parent = RelationshipRecord(
        source_table=source_table,
        source_column=source_columns,
        target_table=target_table,
        target_column=target_columns,
        fk_column_name=fk_column_name,
        relationship_type="one_to_one" if is_unique else "many_to_one",
        cardinality="1:1" if is_unique else "N:1",
        semantic_relationship="belongs_to",
        is_unique=is_unique,
        confidence=RELATIONSHIP_CONFIDENCE,
    )
    parent_to_child = RelationshipRecord(
        source_table=target_table,
        source_column=target_columns,
        target_table=source_table,
        target_column=source_columns,
        fk_column_name=fk_column_name,
        relationship_type="one_to_one" if is_unique else "one_to_many",
        cardinality="1:1" if is_unique else "1:N",
        semantic_relationship="linked_via" if is_unique else "has_many",
        is_unique=is_unique,
        confidence=RELATIONSHIP_CONFIDENCE,
    )
    return child_to_parent, parent_to_child


class RelationshipDiscoveryService:
    """Derive bidirectional relationships from foreign keys in the analytical schema."""

    def __init__(self, schema: str = "rpt") -> None:
        self.schema = schema

    def discover(
        self,
        customer_id: UUID,
        engine: Engine,
        store: SemanticIndexStore,
        *,
        discovery_run_id: UUID | None = None,
    ) -> RelationshipResult:
        foreign_keys = fetch_foreign_keys(engine, self.schema)
        unique_sets = fetch_unique_column_sets(engine, self.schema)

        result = RelationshipResult(customer_id=customer_id)
        processed_keys: list[tuple[str, ...]] = []
        had_persist_error = False

        if not foreign_keys:
            result.warnings.append(f"No foreign key relationships discovered for schema '{self.schema}'")

        for fk in foreign_keys:
            is_unique = column_set_key(fk.source_columns) in unique_sets.get(fk.source_table.lower(), set())
            child_to_parent, parent_to_child = build_relationship_pair(fk, is_unique)
            details = {
                "constraintName": fk.constraint_name,
                "sourceColumns": list(fk.source_columns),
                "targetColumns": list(fk.target_columns),
                "updateRule": fk.update_rule,
                "deleteRule": fk.delete_rule,
                "isUnique": is_unique,
            }

            for direction, record in (("child_to_parent", child_to_parent), ("parent_to_child", parent_to_child)):
                try:
                    store.replace_relationship(
                        customer_id,
                        record,
                        discovery_run_id=discovery_run_id,
                        details={"direction": direction, **details},
                    )
                except SQLAlchemyError as exc:
                    had_persist_error = True
                    logger.warning(
                        "Failed to persist relationship %s -> %s: %s",
                        record.source_table,
                        record.target_table,
                        exc,
                    )
                    result.errors.append(
                        f"Failed to persist relationship {record.source_table} -> {record.target_table}: {exc}"
                    )
                    continue

                result.relationships.append(record)
                processed_keys.append(record.key)
                if record.relationship_type == "one_to_one":
                    result.one_to_one_count += 1
                elif record.relationship_type == "many_to_one":
                    result.many_to_one_count += 1
                else:
                    result.one_to_many_count += 1

        if had_persist_error:
            logger.warning(
                "Skipping relationship pruning for customer %s because some relationships failed to persist",
                customer_id,
            )
        else:
            try:
                pruned = store.prune_relationships(customer_id, processed_keys)
            except SQLAlchemyError as exc:
                result.errors.append(f"Failed to prune stale relationships: {exc}")
            else:
                if pruned:
                    logger.info("Pruned %d stale relationship(s) for customer %s", pruned, customer_id)

        return result


__all__ = [
    "RELATIONSHIP_CONFIDENCE",
    "RelationshipDiscoveryService",
    "RelationshipResult",
    "build_relationship_pair",
]
