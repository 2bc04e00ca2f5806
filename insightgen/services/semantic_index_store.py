from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Mapping
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from insightgen.models import (
    SemanticIndexAssessmentType,
    SemanticIndexField,
    SemanticIndexForm,
    SemanticIndexNonForm,
    SemanticIndexRelationship,
)


@dataclass(frozen=True)
class RelationshipRecord:
    source_table: str
    source_column: str
    target_table: str
    target_column: str
    fk_column_name: str
    relationship_type: str
    cardinality: str
    semantic_relationship: str
    is_unique: bool
    confidence: float = 1.0

    @property
    def key(self) -> tuple[str, str, str, str, str, str]:
        return (
            self.source_table,
            self.source_column,
            self.target_table,
            self.target_column,
            self.fk_column_name,
            self.relationship_type,
        )


@dataclass(frozen=True)
class NonFormColumnRecord:
    table_name: str
    column_name: str
    data_type: str
    semantic_concept: str | None
    semantic_category: str | None
    confidence: float | None
    is_filterable: bool
    is_joinable: bool
    is_review_required: bool
    review_note: str | None = None


class SemanticIndexStore:
    """Replace-by-key writes into the semantic index tables for one customer.

    Each write runs inside its own savepoint so a failing row leaves the rest of
    the session usable.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    @property
    def session(self) -> Session:
        return self._session

    # Relationships -----------------------------------------------------

    def replace_relationship(
        self,
        customer_id: UUID,
        record: RelationshipRecord,
        *,
        discovery_run_id: UUID | None = None,
        details: Mapping[str, Any] | None = None,
    ) -> None:
        with self._session.begin_nested():
            self._session.execute(
                delete(SemanticIndexRelationship).where(
                    SemanticIndexRelationship.customer_id == customer_id,
                    SemanticIndexRelationship.source_table == record.source_table,
                    SemanticIndexRelationship.source_column == record.source_column,
                    SemanticIndexRelationship.target_table == record.target_table,
                    SemanticIndexRelationship.target_column == record.target_column,
                    SemanticIndexRelationship.fk_column_name == record.fk_column_name,
                ).execution_options(synchronize_session=False)
            )
            self._session.add(
                SemanticIndexRelationship(
                    customer_id=customer_id,
                    source_table=record.source_table,
                    source_column=record.source_column,
                    target_table=record.target_table,
                    target_column=record.target_column,
                    fk_column_name=record.fk_column_name,
                    relationship_type=record.relationship_type,
                    cardinality=record.cardinality,
                    semantic_relationship=record.semantic_relationship,
                    confidence=record.confidence,
                    details=dict(details) if details else None,
                    discovery_run_id=discovery_run_id,
                )
            )

    def prune_relationships(self, customer_id: UUID, keep_keys: Iterable[tuple[str, ...]]) -> int:
        """Delete relationships of ``customer_id`` whose key is not in ``keep_keys``."""

        keep = set(keep_keys)
        rows = self._session.execute(
            select(
                SemanticIndexRelationship.id,
                SemanticIndexRelationship.source_table,
                SemanticIndexRelationship.source_column,
                SemanticIndexRelationship.target_table,
                SemanticIndexRelationship.target_column,
                SemanticIndexRelationship.fk_column_name,
                SemanticIndexRelationship.relationship_type,
            ).where(SemanticIndexRelationship.customer_id == customer_id)
        ).all()
        stale_ids = [row[0] for row in rows if tuple(row[1:]) not in keep]
        if not stale_ids:
            return 0
        with self._session.begin_nested():
            self._session.execute(
                delete(SemanticIndexRelationship)
                .where(SemanticIndexRelationship.id.in_(stale_ids))
                .execution_options(synchronize_session=False)
            )
        return len(stale_ids)

    def list_relationships(self, customer_id: UUID) -> list[SemanticIndexRelationship]:
        stmt = (
            select(SemanticIndexRelationship)
            .where(SemanticIndexRelationship.customer_id == customer_id)
            .order_by(
                SemanticIndexRelationship.source_table,
                SemanticIndexRelationship.source_column,
                SemanticIndexRelationship.target_table,
            )
        )
        return list(self._session.execute(stmt).scalars().all())

    # Non-form columns --------------------------------------------------

    def replace_non_form_column(
        self,
        customer_id: UUID,
        record: NonFormColumnRecord,
        *,
        discovery_run_id: UUID | None = None,
    ) -> None:
        with self._session.begin_nested():
            self._session.execute(
                delete(SemanticIndexNonForm).where(
                    SemanticIndexNonForm.customer_id == customer_id,
                    SemanticIndexNonForm.table_name == record.table_name,
                    SemanticIndexNonForm.column_name == record.column_name,
                ).execution_options(synchronize_session=False)
            )
            self._session.add(
                SemanticIndexNonForm(
                    customer_id=customer_id,
                    table_name=record.table_name,
                    column_name=record.column_name,
                    data_type=record.data_type,
                    semantic_concept=record.semantic_concept,
                    semantic_category=record.semantic_category,
                    confidence=record.confidence,
                    is_filterable=record.is_filterable,
                    is_joinable=record.is_joinable,
                    is_review_required=record.is_review_required,
                    review_note=record.review_note,
                    discovery_run_id=discovery_run_id,
                )
            )

    def prune_non_form_columns(self, customer_id: UUID, keep_keys: Iterable[tuple[str, str]]) -> int:
        keep = set(keep_keys)
        rows = self._session.execute(
            select(
                SemanticIndexNonForm.id,
                SemanticIndexNonForm.table_name,
                SemanticIndexNonForm.column_name,
            ).where(SemanticIndexNonForm.customer_id == customer_id)
        ).all()
        stale_ids = [row[0] for row in rows if (row[1], row[2]) not in keep]
        if not stale_ids:
            return 0
        with self._session.begin_nested():
            self._session.execute(
                delete(SemanticIndexNonForm)
                .where(SemanticIndexNonForm.id.in_(stale_ids))
                .execution_options(synchronize_session=False)
            )
        return len(stale_ids)

    # Forms ---------------------------------------------------------------

    def clear_forms(self, customer_id: UUID) -> None:
        form_ids = select(SemanticIndexForm.id).where(SemanticIndexForm.customer_id == customer_id)
        with self._session.begin_nested():
            self._session.execute(
                delete(SemanticIndexField)
                .where(SemanticIndexField.semantic_index_id.in_(form_ids))
                .execution_options(synchronize_session=False)
            )
            self._session.execute(
                delete(SemanticIndexForm)
                .where(SemanticIndexForm.customer_id == customer_id)
                .execution_options(synchronize_session=False)
            )

    def add_form(self, form: SemanticIndexForm) -> SemanticIndexForm:
        with self._session.begin_nested():
            self._session.add(form)
        return form

    # Assessment types ----------------------------------------------------

    def upsert_assessment_type(
        self,
        customer_id: UUID,
        *,
        assessment_type_id: str,
        assessment_name: str,
        semantic_concept: str,
        semantic_category: str,
        semantic_subcategory: str | None,
        confidence: float,
        is_wound_specific: bool,
        discovery_source: str = "auto",
    ) -> SemanticIndexAssessmentType:
        with self._session.begin_nested():
            record = self._session.execute(
                select(SemanticIndexAssessmentType).where(
                    SemanticIndexAssessmentType.customer_id == customer_id,
                    SemanticIndexAssessmentType.assessment_type_id == assessment_type_id,
                    SemanticIndexAssessmentType.semantic_concept == semantic_concept,
                )
            ).scalars().first()
            if record is None:
                record = SemanticIndexAssessmentType(
                    customer_id=customer_id,
                    assessment_type_id=assessment_type_id,
                    semantic_concept=semantic_concept,
                )
                self._session.add(record)
            record.assessment_name = assessment_name
            record.semantic_category = semantic_category
            record.semantic_subcategory = semantic_subcategory
            record.confidence = confidence
            record.is_wound_specific = is_wound_specific
            record.discovery_source = discovery_source
        return record

    def list_assessment_types(self, customer_id: UUID) -> list[SemanticIndexAssessmentType]:
        stmt = (
            select(SemanticIndexAssessmentType)
            .where(SemanticIndexAssessmentType.customer_id == customer_id)
            .order_by(
                SemanticIndexAssessmentType.assessment_name,
                SemanticIndexAssessmentType.confidence.desc(),
            )
        )
        return list(self._session.execute(stmt).scalars().all())

    def clear_assessment_types(self, customer_id: UUID) -> int:
        with self._session.begin_nested():
            result = self._session.execute(
                delete(SemanticIndexAssessmentType)
                .where(SemanticIndexAssessmentType.customer_id == customer_id)
                .execution_options(synchronize_session=False)
            )
        return result.rowcount or 0

    # Summary statistics --------------------------------------------------

    def form_stats(self, customer_id: UUID) -> dict[str, Any]:
        forms = self._session.execute(
            select(func.count(SemanticIndexForm.id)).where(SemanticIndexForm.customer_id == customer_id)
        ).scalar_one()
        field_row = self._session.execute(
            select(
                func.count(SemanticIndexField.id),
                func.avg(SemanticIndexField.confidence),
            )
            .join(SemanticIndexForm, SemanticIndexForm.id == SemanticIndexField.semantic_index_id)
            .where(SemanticIndexForm.customer_id == customer_id)
        ).one()
        review = self._session.execute(
            select(func.count(SemanticIndexField.id))
            .join(SemanticIndexForm, SemanticIndexForm.id == SemanticIndexField.semantic_index_id)
            .where(
                SemanticIndexForm.customer_id == customer_id,
                SemanticIndexField.is_review_required.is_(True),
            )
        ).scalar_one()
        avg_confidence = field_row[1]
        return {
            "forms_discovered": int(forms or 0),
            "fields_discovered": int(field_row[0] or 0),
            "avg_confidence": round(float(avg_confidence), 2) if avg_confidence is not None else None,
            "fields_requiring_review": int(review or 0),
        }

    def non_form_stats(self, customer_id: UUID) -> dict[str, int]:
        total = self._session.execute(
            select(func.count(SemanticIndexNonForm.id)).where(SemanticIndexNonForm.customer_id == customer_id)
        ).scalar_one()
        review = self._session.execute(
            select(func.count(SemanticIndexNonForm.id)).where(
                SemanticIndexNonForm.customer_id == customer_id,
                SemanticIndexNonForm.is_review_required.is_(True),
            )
        ).scalar_one()
        return {
            "non_form_columns": int(total or 0),
            "non_form_columns_requiring_review": int(review or 0),
        }

    def relationship_count(self, customer_id: UUID) -> int:
        return int(
            self._session.execute(
                select(func.count(SemanticIndexRelationship.id)).where(
                    SemanticIndexRelationship.customer_id == customer_id
                )
            ).scalar_one()
            or 0
        )

    def assessment_type_count(self, customer_id: UUID) -> int:
        return int(
            self._session.execute(
                select(func.count(func.distinct(SemanticIndexAssessmentType.assessment_type_id))).where(
                    SemanticIndexAssessmentType.customer_id == customer_id
                )
            ).scalar_one()
            or 0
        )


__all__ = [
    "NonFormColumnRecord",
    "RelationshipRecord",
    "SemanticIndexStore",
]
