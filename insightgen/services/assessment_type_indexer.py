from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from insightgen.models import SemanticIndexAssessmentType
from insightgen.services.assessment_type_taxonomy import (
    AssessmentTypeConcept,
    find_matching_concepts,
    get_concept_by_name,
)
from insightgen.services.catalog_introspection import (
    CatalogIntrospectionError,
    row_value,
    validate_schema_name,
)
from insightgen.services.semantic_index_store import SemanticIndexStore

logger = logging.getLogger(__name__)


class UnknownAssessmentConceptError(ValueError):
    """Raised when a manual mapping names a concept missing from the taxonomy."""


@dataclass(frozen=True)
class DiscoveredAssessmentType:
    assessment_type_id: str
    assessment_type_version_id: str | None
    assessment_name: str
    definition_version: int


@dataclass(frozen=True)
class IndexedAssessmentType:
    assessment_type_id: str
    assessment_name: str
    semantic_concept: str
    semantic_category: str
    semantic_subcategory: str | None
    confidence: float
    is_wound_specific: bool


@dataclass
class AssessmentIndexResult:
    total: int = 0
    indexed: int = 0
    skipped: int = 0
    results: list[IndexedAssessmentType] = field(default_factory=list)


def _as_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def latest_versions(rows: list[DiscoveredAssessmentType]) -> list[DiscoveredAssessmentType]:
    """Keep the highest ``definition_version`` per assessment type, ordered by name."""

    latest: dict[str, DiscoveredAssessmentType] = {}
    for row in rows:
        current = latest.get(row.assessment_type_id)
        if current is None or row.definition_version > current.definition_version:
            latest[row.assessment_type_id] = row
    return sorted(latest.values(), key=lambda row: (row.assessment_name.lower(), row.assessment_type_id))


class AssessmentTypeIndexer:
    """Map a customer's assessment types onto the semantic taxonomy."""

    def __init__(self, customer_id: UUID, store: SemanticIndexStore, schema: str = "rpt") -> None:
        self.customer_id = customer_id
        self.schema = schema
        self._store = store

    def discover_assessment_types(self, engine: Engine) -> list[DiscoveredAssessmentType]:
        qualified = validate_schema_name(self.schema)
        try:
            with engine.connect() as connection:
                rows = connection.execute(
                    text(
                        "SELECT assessmentTypeId, id, name, definitionVersion "
                        f"FROM {qualified}.AssessmentTypeVersion"
                    )
                ).mappings().all()
        except SQLAlchemyError as exc:
            raise CatalogIntrospectionError(str(exc)) from exc

        discovered = [
            DiscoveredAssessmentType(
                assessment_type_id=str(row_value(row, "assessmentTypeId")),
                assessment_type_version_id=(
                    str(row_value(row, "id")) if row_value(row, "id") is not None else None
                ),
                assessment_name=str(row_value(row, "name") or "").strip(),
                definition_version=_as_int(row_value(row, "definitionVersion")),
            )
            for row in rows
        ]
        return latest_versions(discovered)

    def index_assessment_type(self, discovered: DiscoveredAssessmentType) -> IndexedAssessmentType | None:
        matches = find_matching_concepts(discovered.assessment_name)
        if not matches:
            logger.debug("No concept match for assessment type %r", discovered.assessment_name)
            return None
        best = matches[0]
        return self._save(
            discovered.assessment_type_id,
            discovered.assessment_name,
            best.concept,
            best.confidence,
            discovery_source="auto",
        )

    def index_all(self, engine: Engine) -> AssessmentIndexResult:
        discovered = self.discover_assessment_types(engine)
        result = AssessmentIndexResult(total=len(discovered))
        for assessment in discovered:
            indexed = self.index_assessment_type(assessment)
            if indexed is None:
                result.skipped += 1
                continue
            result.indexed += 1
            result.results.append(indexed)
        logger.info(
            "Assessment type indexing for customer %s: %d indexed, %d skipped",
            self.customer_id,
            result.indexed,
            result.skipped,
        )
        return result

    def seed_manual_mapping(
        self,
        assessment_type_id: str,
        assessment_name: str,
        semantic_concept: str,
        confidence: float = 1.0,
    ) -> IndexedAssessmentType:
        concept = get_concept_by_name(semantic_concept)
        if concept is None:
            raise UnknownAssessmentConceptError(f"Invalid semantic concept: {semantic_concept}")
        return self._save(assessment_type_id, assessment_name, concept, confidence, discovery_source="manual")

    def get_indexed(self) -> list[SemanticIndexAssessmentType]:
        return self._store.list_assessment_types(self.customer_id)

    def clear_all(self) -> int:
        return self._store.clear_assessment_types(self.customer_id)

    def _save(
        self,
        assessment_type_id: str,
        assessment_name: str,
        concept: AssessmentTypeConcept,
        confidence: float,
        *,
        discovery_source: str,
    ) -> IndexedAssessmentType:
        self._store.upsert_assessment_type(
            self.customer_id,
            assessment_type_id=assessment_type_id,
            assessment_name=assessment_name,
            semantic_concept=concept.concept,
            semantic_category=concept.category,
            semantic_subcategory=concept.subcategory,
            confidence=confidence,
            is_wound_specific=concept.is_wound_specific,
            discovery_source=discovery_source,
        )
        return IndexedAssessmentType(
            assessment_type_id=assessment_type_id,
            assessment_name=assessment_name,
            semantic_concept=concept.concept,
            semantic_category=concept.category,
            semantic_subcategory=concept.subcategory,
            confidence=confidence,
            is_wound_specific=concept.is_wound_specific,
        )


__all__ = [
    "AssessmentIndexResult",
    "AssessmentTypeIndexer",
    "DiscoveredAssessmentType",
    "IndexedAssessmentType",
    "UnknownAssessmentConceptError",
    "latest_versions",
]
