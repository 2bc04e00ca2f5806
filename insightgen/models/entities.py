import uuid
from datetime import datetime, timezone
from typing import Optional

import sqlalchemy as sa
from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, JSON, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from insightgen.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )


class Customer(Base, TimestampMixin):
    __tablename__ = "customers"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    db_connection_encrypted: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    last_discovered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    discovery_runs: Mapped[list["CustomerDiscoveryRun"]] = relationship(
        "CustomerDiscoveryRun",
        back_populates="customer",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class CustomerDiscoveryRun(Base):
    __tablename__ = "customer_discovery_runs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    customer_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("customers.id", ondelete="CASCADE"), nullable=False, index=True
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="running")
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    duration_seconds: Mapped[float | None] = mapped_column(Float, nullable=True)
    stages: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    warnings: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    errors: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    forms_discovered: Mapped[int | None] = mapped_column(Integer, nullable=True)
    fields_discovered: Mapped[int | None] = mapped_column(Integer, nullable=True)
    avg_confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    fields_requiring_review: Mapped[int | None] = mapped_column(Integer, nullable=True)
    non_form_columns: Mapped[int | None] = mapped_column(Integer, nullable=True)
    non_form_columns_requiring_review: Mapped[int | None] = mapped_column(Integer, nullable=True)
    relationships_discovered: Mapped[int | None] = mapped_column(Integer, nullable=True)
    assessment_types_discovered: Mapped[int | None] = mapped_column(Integer, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    customer: Mapped[Customer] = relationship("Customer", back_populates="discovery_runs")
    logs: Mapped[list["DiscoveryLog"]] = relationship(
        "DiscoveryLog",
        back_populates="run",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class DiscoveryLog(Base):
    __tablename__ = "discovery_logs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    discovery_run_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("customer_discovery_runs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    level: Mapped[str] = mapped_column(String(10), nullable=False)
    stage: Mapped[str] = mapped_column(String(50), nullable=False)
    component: Mapped[str] = mapped_column(String(100), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    logged_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    run: Mapped[CustomerDiscoveryRun] = relationship("CustomerDiscoveryRun", back_populates="logs")


class ClinicalOntologyConcept(Base, TimestampMixin):
    """Curated clinical concept used to label discovered fields and columns."""

    __tablename__ = "clinical_ontology"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    concept_name: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    concept_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    semantic_concept: Mapped[str] = mapped_column(String(200), nullable=False)
    semantic_category: Mapped[str | None] = mapped_column(String(200), nullable=True)
    synonyms: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    data_sources: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    is_deprecated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class SemanticIndexForm(Base):
    __tablename__ = "semantic_index_forms"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    customer_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("customers.id", ondelete="CASCADE"), nullable=False, index=True
    )
    form_identifier: Mapped[str] = mapped_column(String(100), nullable=False)
    form_name: Mapped[str] = mapped_column(String(400), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    field_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    avg_confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    discovery_run_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    discovered_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    fields: Mapped[list["SemanticIndexField"]] = relationship(
        "SemanticIndexField",
        back_populates="form",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        sa.UniqueConstraint("customer_id", "form_identifier", name="uq_semantic_index_form"),
    )


class SemanticIndexField(Base):
    __tablename__ = "semantic_index_fields"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    semantic_index_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("semantic_index_forms.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    attribute_type_id: Mapped[str] = mapped_column(String(100), nullable=False)
    field_name: Mapped[str] = mapped_column(String(400), nullable=False)
    variable_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    data_type: Mapped[str] = mapped_column(String(50), nullable=False)
    semantic_concept: Mapped[str | None] = mapped_column(String(200), nullable=True)
    semantic_category: Mapped[str | None] = mapped_column(String(200), nullable=True)
    confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    is_review_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    review_note: Mapped[str | None] = mapped_column(Text, nullable=True)

    form: Mapped[SemanticIndexForm] = relationship("SemanticIndexForm", back_populates="fields")


class SemanticIndexNonForm(Base):
    __tablename__ = "semantic_index_nonform"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    customer_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("customers.id", ondelete="CASCADE"), nullable=False, index=True
    )
    table_name: Mapped[str] = mapped_column(String(300), nullable=False)
    column_name: Mapped[str] = mapped_column(String(200), nullable=False)
    data_type: Mapped[str] = mapped_column(String(100), nullable=False)
    semantic_concept: Mapped[str | None] = mapped_column(String(200), nullable=True)
    semantic_category: Mapped[str | None] = mapped_column(String(200), nullable=True)
    confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    is_filterable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_joinable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_review_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    review_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    discovery_run_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    discovered_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        sa.UniqueConstraint("customer_id", "table_name", "column_name", name="uq_semantic_index_nonform"),
    )


class SemanticIndexRelationship(Base):
    __tablename__ = "semantic_index_relationships"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    customer_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("customers.id", ondelete="CASCADE"), nullable=False, index=True
    )
    source_table: Mapped[str] = mapped_column(String(300), nullable=False)
    source_column: Mapped[str] = mapped_column(String(500), nullable=False)
    target_table: Mapped[str] = mapped_column(String(300), nullable=False)
    target_column: Mapped[str] = mapped_column(String(500), nullable=False)
    fk_column_name: Mapped[str] = mapped_column(String(800), nullable=False)
    relationship_type: Mapped[str] = mapped_column(String(20), nullable=False)
    cardinality: Mapped[str] = mapped_column(String(5), nullable=False)
    semantic_relationship: Mapped[str] = mapped_column(String(20), nullable=False)
    confidence: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)
    details: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    discovery_run_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    discovered_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class SemanticIndexAssessmentType(Base):
    __tablename__ = "semantic_index_assessment_types"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    customer_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("customers.id", ondelete="CASCADE"), nullable=False, index=True
    )
    assessment_type_id: Mapped[str] = mapped_column(String(100), nullable=False)
    assessment_name: Mapped[str] = mapped_column(String(400), nullable=False)
    semantic_concept: Mapped[str] = mapped_column(String(200), nullable=False)
    semantic_category: Mapped[str] = mapped_column(String(100), nullable=False)
    semantic_subcategory: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    is_wound_specific: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    discovery_source: Mapped[str] = mapped_column(String(20), nullable=False, default="auto")
    discovered_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        sa.UniqueConstraint(
            "customer_id",
            "assessment_type_id",
            "semantic_concept",
            name="uq_semantic_index_assessment_type",
        ),
    )
