from __future__ import annotations

import logging
from dataclasses import dataclass, field
from uuid import UUID

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from insightgen.services.catalog_introspection import CatalogColumn, fetch_columns
from insightgen.services.concept_matching import ConceptMatch, OntologyConceptMatcher
from insightgen.services.semantic_index_store import NonFormColumnRecord, SemanticIndexStore

logger = logging.getLogger(__name__)

HIGH_CONFIDENCE_THRESHOLD = 0.85
REVIEW_THRESHOLD = 0.7

NON_FILTERABLE_TYPES = frozenset(
    {
        "image",
        "text",
        "ntext",
        "sql_variant",
        "xml",
        "hierarchyid",
        "timestamp",
        "varbinary",
        "geography",
        "geometry",
    }
)

LIKELY_JOIN_SUFFIXES = ("id", "_id", "fk", "_fk", "key", "_key")


@dataclass(frozen=True)
class MeasurementFamily:
    key: str
    tables: tuple[str, ...]
    columns: tuple[str, ...]
    canonical_concept: str
    confidence: float


MEASUREMENT_FAMILIES: tuple[MeasurementFamily, ...] = (
    MeasurementFamily("wound_area", ("rpt.Measurement",), ("area", "areaReduction"), "wound_area", 0.9),
    MeasurementFamily("wound_depth", ("rpt.Measurement",), ("depth",), "wound_depth", 0.9),
    MeasurementFamily("wound_length", ("rpt.Measurement",), ("length",), "wound_length", 0.9),
    MeasurementFamily("wound_width", ("rpt.Measurement",), ("width",), "wound_width", 0.9),
    MeasurementFamily("wound_volume", ("rpt.Measurement",), ("volume",), "wound_volume", 0.9),
    MeasurementFamily("wound_perimeter", ("rpt.Measurement",), ("perimeter",), "wound_perimeter", 0.9),
    MeasurementFamily(
        "measurement_timing",
        ("rpt.Measurement", "rpt.Assessment"),
        ("measurementDate", "assessmentDate", "date"),
        "assessment_date",
        0.85,
    ),
    MeasurementFamily(
        "baseline_offset",
        ("rpt.Measurement",),
        ("daysFromBaseline", "dimDateFk"),
        "days_from_baseline",
        0.85,
    ),
)


def infer_filterable(data_type: str | None) -> bool:
    normalized = (data_type or "").strip().lower()
    if normalized in NON_FILTERABLE_TYPES:
        return False
    if not normalized or normalized == "unknown":
        return True
    if normalized == "bit" or normalized == "boolean":
        return True
    return any(
        marker in normalized
        for marker in (
            "char",
            "int",
            "decimal",
            "numeric",
            "float",
            "real",
            "double",
            "money",
            "date",
            "time",
            "uniqueidentifier",
            "uuid",
        )
    )


def infer_joinable(column_name: str, data_type: str | None) -> bool:
    lowered = column_name.lower()
    if not lowered.endswith(LIKELY_JOIN_SUFFIXES):
        return False
    normalized = (data_type or "").strip().lower()
    if not normalized or normalized == "unknown":
        return True
    return any(marker in normalized for marker in ("int", "uniqueidentifier", "uuid", "char"))


def resolve_measurement_family(qualified_table: str, column_name: str) -> MeasurementFamily | None:
    table = qualified_table.lower()
    column = column_name.lower()
    for family in MEASUREMENT_FAMILIES:
        if any(t.lower() == table for t in family.tables) and any(c.lower() == column for c in family.columns):
            return family
    return None


@dataclass
class NonFormDiscoveryResult:
    columns_discovered: int = 0
    columns_mapped: int = 0
    high_confidence: int = 0
    review_required: int = 0
    avg_confidence: float | None = None
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


class NonFormSchemaDiscoveryService:
    """Index reporting-schema columns that are not part of any form."""

    def __init__(self, schema: str = "rpt") -> None:
        self.schema = schema

    def discover(
        self,
        customer_id: UUID,
        engine: Engine,
        store: SemanticIndexStore,
        matcher: OntologyConceptMatcher,
        *,
        discovery_run_id: UUID | None = None,
    ) -> NonFormDiscoveryResult:
        columns = fetch_columns(engine, self.schema)
        result = NonFormDiscoveryResult()
        processed: list[tuple[str, str]] = []
        confidences: list[float] = []
        had_persist_error = False

        if not columns:
            result.warnings.append(f"No columns discovered for schema '{self.schema}'")

        for column in columns:
            record = self._classify(column, matcher, result)
            try:
                store.replace_non_form_column(customer_id, record, discovery_run_id=discovery_run_id)
            except SQLAlchemyError as exc:
                had_persist_error = True
                logger.warning("Failed to persist column %s.%s: %s", record.table_name, record.column_name, exc)
                result.errors.append(f"Failed to persist {record.table_name}.{record.column_name}: {exc}")
                continue

            processed.append((record.table_name, record.column_name))
            result.columns_discovered += 1
            if record.semantic_concept:
                result.columns_mapped += 1
            if record.confidence is not None:
                confidences.append(record.confidence)
                if record.confidence >= HIGH_CONFIDENCE_THRESHOLD:
                    result.high_confidence += 1
            if record.is_review_required:
                result.review_required += 1

        if confidences:
            result.avg_confidence = round(sum(confidences) / len(confidences), 2)

        if not had_persist_error:
            try:
                store.prune_non_form_columns(customer_id, processed)
            except SQLAlchemyError as exc:
                result.errors.append(f"Failed to prune stale non-form columns: {exc}")
        return result

    def _classify(
        self,
        column: CatalogColumn,
        matcher: OntologyConceptMatcher,
        result: NonFormDiscoveryResult,
    ) -> NonFormColumnRecord:
        qualified_table = f"{column.schema_name}.{column.table_name}"
        label = f"{qualified_table}.{column.column_name}"

        concept: str | None = None
        category: str | None = None
        confidence: float | None = None

        match: ConceptMatch | None = matcher.match_data_source(
            column.schema_name, column.table_name, column.column_name
        )
        if match is None:
            match = matcher.match(column.column_name)
        if match is not None:
            concept = match.semantic_concept
            category = match.semantic_category
            confidence = round(match.similarity, 2)
        else:
            family = resolve_measurement_family(qualified_table, column.column_name)
            if family is not None:
                concept = family.canonical_concept
                category = family.key
                confidence = family.confidence

        review_note: str | None = None
        is_review_required = confidence is None or confidence < REVIEW_THRESHOLD
        if concept is None:
            review_note = "No ontology match found"
            result.warnings.append(f"{label} has no ontology match")
        elif is_review_required:
            review_note = f"Confidence {confidence:.2f} below review threshold {REVIEW_THRESHOLD}"
            result.warnings.append(f"{label} flagged for review (confidence {confidence:.2f})")

        return NonFormColumnRecord(
            table_name=qualified_table,
            column_name=column.column_name,
            data_type=column.data_type,
            semantic_concept=concept,
            semantic_category=category,
            confidence=confidence,
            is_filterable=infer_filterable(column.data_type),
            is_joinable=infer_joinable(column.column_name, column.data_type),
            is_review_required=is_review_required,
            review_note=review_note,
        )


__all__ = [
    "MEASUREMENT_FAMILIES",
    "NonFormDiscoveryResult",
    "NonFormSchemaDiscoveryService",
    "infer_filterable",
    "infer_joinable",
    "resolve_measurement_family",
]
