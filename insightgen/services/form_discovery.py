from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from insightgen.models import SemanticIndexField, SemanticIndexForm
from insightgen.services.catalog_introspection import (
    CatalogIntrospectionError,
    row_value,
    validate_schema_name,
)
from insightgen.services.concept_matching import ConceptMatcher
from insightgen.services.semantic_index_store import SemanticIndexStore

logger = logging.getLogger(__name__)

REVIEW_THRESHOLD = 0.7

FORM_DATA_TYPES: dict[int, str] = {
    1: "File",
    2: "UserList",
    3: "CalculatedValue",
    4: "Information",
    5: "SourceList",
    56: "Integer",
    58: "DateTime",
    61: "Date",
    104: "Boolean",
    106: "Decimal",
    231: "Text",
    1000: "SingleSelect",
    1001: "MultiSelect",
    1004: "ImageCapture",
    1005: "Unit",
}


def map_data_type(code: Any) -> str:
    try:
        return FORM_DATA_TYPES.get(int(code), "Unknown")
    except (TypeError, ValueError):
        return "Unknown"


@dataclass(frozen=True)
class SourceForm:
    form_id: str
    name: str
    description: str | None


@dataclass(frozen=True)
class SourceField:
    field_id: str
    form_id: str
    name: str
    variable_name: str | None
    data_type_code: Any


@dataclass
class FormDiscoveryResult:
    forms_discovered: int = 0
    fields_discovered: int = 0
    avg_confidence: float | None = None
    fields_requiring_review: int = 0
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


def fetch_forms(engine: Engine, schema: str) -> tuple[list[SourceForm], list[SourceField]]:
    qualified = validate_schema_name(schema)
    try:
        with engine.connect() as connection:
            form_rows = connection.execute(
                text(
                    f"SELECT id, name, description FROM {qualified}.AttributeSet "
                    "WHERE isDeleted = 0 ORDER BY name"
                )
            ).mappings().all()
            field_rows = connection.execute(
                text(
                    f"SELECT id, attributeSetFk, name, variableName, dataType FROM {qualified}.AttributeType "
                    "WHERE isDeleted = 0 ORDER BY attributeSetFk, name"
                )
            ).mappings().all()
    except SQLAlchemyError as exc:
        raise CatalogIntrospectionError(str(exc)) from exc

    forms = [
        SourceForm(
            form_id=str(row_value(row, "id")),
            name=str(row_value(row, "name") or "").strip(),
            description=row_value(row, "description"),
        )
        for row in form_rows
    ]
    fields = [
        SourceField(
            field_id=str(row_value(row, "id")),
            form_id=str(row_value(row, "attributeSetFk")),
            name=str(row_value(row, "name") or "").strip(),
            variable_name=row_value(row, "variableName"),
            data_type_code=row_value(row, "dataType"),
        )
        for row in field_rows
    ]
    return forms, fields


class FormDiscoveryService:
    """Index the customer's assessment forms and their fields."""

    def __init__(self, schema: str = "dbo") -> None:
        self.schema = schema

    def discover(
        self,
        customer_id: UUID,
        engine: Engine,
        store: SemanticIndexStore,
        matcher: ConceptMatcher,
        *,
        discovery_run_id: UUID | None = None,
    ) -> FormDiscoveryResult:
        forms, fields = fetch_forms(engine, self.schema)
        result = FormDiscoveryResult()

        store.clear_forms(customer_id)

        if not forms:
            result.warnings.append("No forms found in customer database")
            return result

        fields_by_form: dict[str, list[SourceField]] = defaultdict(list)
        for source_field in fields:
            fields_by_form[source_field.form_id].append(source_field)

        confidences: list[float] = []
        for form in forms:
            form_fields = fields_by_form.get(form.form_id, [])
            if not form_fields:
                result.warnings.append(f'Form "{form.name}" has no fields')

            record = SemanticIndexForm(
                customer_id=customer_id,
                form_identifier=form.form_id,
                form_name=form.name,
                description=form.description,
                field_count=len(form_fields),
                discovery_run_id=discovery_run_id,
            )
            form_confidences: list[float] = []
            review_count = 0
            for source_field in form_fields:
                indexed = self._index_field(form, source_field, matcher, result)
                if indexed.confidence is not None:
                    form_confidences.append(indexed.confidence)
                if indexed.is_review_required:
                    review_count += 1
                record.fields.append(indexed)

            if form_confidences:
                record.avg_confidence = round(sum(form_confidences) / len(form_confidences), 2)

            try:
                store.add_form(record)
            except SQLAlchemyError as exc:
                logger.warning("Failed to persist form %s: %s", form.name, exc)
                result.errors.append(f'Failed to process form "{form.name}": {exc}')
                continue

            result.forms_discovered += 1
            result.fields_discovered += len(form_fields)
            result.fields_requiring_review += review_count
            confidences.extend(form_confidences)

        if confidences:
            result.avg_confidence = round(sum(confidences) / len(confidences), 2)
        return result

    @staticmethod
    def _index_field(
        form: SourceForm,
        source_field: SourceField,
        matcher: ConceptMatcher,
        result: FormDiscoveryResult,
    ) -> SemanticIndexField:
        match = matcher.match(source_field.name)
        if match is None and source_field.variable_name:
            match = matcher.match(source_field.variable_name)

        label = f"{form.name}.{source_field.name}"
        confidence: float | None = None
        review_note: str | None = None
        is_review_required = True
        if match is None:
            review_note = "No ontology match found"
            result.warnings.append(f"{label} has no ontology match")
        else:
            confidence = round(match.similarity, 2)
            is_review_required = confidence < REVIEW_THRESHOLD
            if is_review_required:
                review_note = f"Confidence {confidence:.2f} below review threshold {REVIEW_THRESHOLD}"
                result.warnings.append(f"{label} flagged for review (confidence {confidence:.2f})")

        return SemanticIndexField(
            attribute_type_id=source_field.field_id,
            field_name=source_field.name,
            variable_name=source_field.variable_name,
            data_type=map_data_type(source_field.data_type_code),
            semantic_concept=match.semantic_concept if match else None,
            semantic_category=match.semantic_category if match else None,
            confidence=confidence,
            is_review_required=is_review_required,
            review_note=review_note,
        )


__all__ = [
    "FORM_DATA_TYPES",
    "FormDiscoveryResult",
    "FormDiscoveryService",
    "REVIEW_THRESHOLD",
    "fetch_forms",
    "map_data_type",
]
