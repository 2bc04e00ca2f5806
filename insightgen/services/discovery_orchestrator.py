from __future__ import annotations

import logging
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Callable, Literal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from insightgen.config import Settings, get_settings
from insightgen.database import SessionLocal
from insightgen.models import Customer, CustomerDiscoveryRun, utcnow
from insightgen.services.assessment_type_indexer import AssessmentTypeIndexer
from insightgen.services.concept_matching import OntologyConceptMatcher
from insightgen.services.connection_pool import DiscoveryConnectionPool
from insightgen.services.connection_resolver import resolve_sqlalchemy_url
from insightgen.services.customer_directory import CustomerDirectory, normalize_customer_code
from insightgen.services.discovery_logger import DiscoveryLogger, prune_discovery_logs
from insightgen.services.form_discovery import FormDiscoveryService
from insightgen.services.non_form_schema_discovery import NonFormSchemaDiscoveryService
from insightgen.services.relationship_discovery import RelationshipDiscoveryService
from insightgen.services.semantic_index_store import SemanticIndexStore

logger = logging.getLogger(__name__)

RUN_STATUS_RUNNING = "running"
RUN_STATUS_SUCCEEDED = "succeeded"
RUN_STATUS_FAILED = "failed"

STAGE_FORM_DISCOVERY = "form_discovery"
STAGE_NON_FORM_SCHEMA = "non_form_schema"
STAGE_RELATIONSHIPS = "relationships"
STAGE_ASSESSMENT_TYPES = "assessment_types"
STAGE_SUMMARY = "summary"

STAGE_NAMES: dict[str, str] = {
    STAGE_FORM_DISCOVERY: "Form Discovery",
    STAGE_NON_FORM_SCHEMA: "Non-Form Schema Discovery",
    STAGE_RELATIONSHIPS: "Entity Relationship Discovery",
    STAGE_ASSESSMENT_TYPES: "Assessment Type Indexing",
    STAGE_SUMMARY: "Computing Summary Statistics",
}

ProgressEventType = Literal["stage-start", "stage-complete", "stage-error", "complete"]


class DiscoveryInProgressError(RuntimeError):
    """Raised when a discovery run is already executing for the same customer."""


@dataclass(frozen=True)
class DiscoveryStageOptions:
    form_discovery: bool = True
    non_form_schema: bool = True
    relationships: bool = True
    assessment_types: bool = True
    discovery_logging: bool = True

    def as_dict(self) -> dict[str, bool]:
        return asdict(self)


@dataclass(frozen=True)
class DiscoveryProgressEvent:
    type: ProgressEventType
    stage: str | None = None
    name: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    error: str | None = None

    def as_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": self.type}
        if self.stage is not None:
            payload["stage"] = self.stage
        if self.name is not None:
            payload["name"] = self.name
        if self.error is not None:
            payload["error"] = self.error
        payload.update(self.data)
        return payload


ProgressSink = Callable[[DiscoveryProgressEvent], None]


@dataclass
class DiscoverySummary:
    forms_discovered: int = 0
    fields_discovered: int = 0
    avg_confidence: float | None = None
    fields_requiring_review: int = 0
    non_form_columns: int = 0
    non_form_columns_requiring_review: int = 0
    relationships_discovered: int = 0
    assessment_types_discovered: int = 0
    warnings: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class DiscoveryRunResult:
    status: str
    customer_id: UUID
    run_id: UUID
    started_at: datetime
    completed_at: datetime
    duration_seconds: float
    summary: DiscoverySummary | None
    warnings: list[str]
    errors: list[str]
    error: str | None = None


@dataclass(frozen=True)
class DiscoveryRunSummary:
    run_id: UUID
    status: str
    started_at: datetime
    completed_at: datetime | None
    duration_seconds: float | None
    stages: dict[str, bool]
    warnings: list[str]
    errors: list[str]
    forms_discovered: int | None
    fields_discovered: int | None
    avg_confidence: float | None
    fields_requiring_review: int | None
    non_form_columns: int | None
    relationships_discovered: int | None
    assessment_types_discovered: int | None
    error_message: str | None


class _CustomerRunLocks:
    """Non-blocking per-customer mutex registry."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def acquire(self, customer_code: str) -> bool:
        with self._guard:
            lock = self._locks.setdefault(customer_code, threading.Lock())
        return lock.acquire(blocking=False)

    def release(self, customer_code: str) -> None:
        with self._guard:
            lock = self._locks.get(customer_code)
        if lock is not None and lock.locked():
            lock.release()


@dataclass
class _RunContext:
    run: CustomerDiscoveryRun
    customer: Customer
    engine: Engine
    session: Session
    store: SemanticIndexStore
    discovery_log: DiscoveryLogger
    sink: ProgressSink | None
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


class DiscoveryOrchestrator:
    """Sequence the discovery stages for one customer and own the run record lifecycle."""

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        *,
        directory: CustomerDirectory | None = None,
        pool_factory: Callable[[], DiscoveryConnectionPool] = DiscoveryConnectionPool,
        settings: Settings | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._settings = settings or get_settings()
        self._directory = directory or CustomerDirectory(session_factory)
        self._pool_factory = pool_factory
        self._locks = _CustomerRunLocks()
        self.form_discovery = FormDiscoveryService(schema=self._settings.form_schema)
        self.non_form_discovery = NonFormSchemaDiscoveryService(schema=self._settings.discovery_schema)
        self.relationship_discovery = RelationshipDiscoveryService(schema=self._settings.discovery_schema)

    def run_discovery(
        self,
        customer_code: str,
        stages: DiscoveryStageOptions | None = None,
    ) -> DiscoveryRunResult:
        return self._execute(customer_code, stages or DiscoveryStageOptions(), sink=None)

    def run_discovery_with_progress(
        self,
        customer_code: str,
        sink: ProgressSink,
        stages: DiscoveryStageOptions | None = None,
    ) -> DiscoveryRunResult:
        return self._execute(customer_code, stages or DiscoveryStageOptions(), sink=sink)

    def ensure_configured(self, customer_code: str) -> None:
        """Raise the configuration error a run for ``customer_code`` would hit, if any."""

        with self._session_factory() as session:
            connection_string = self._directory.get_connection_string(customer_code, session=session)
        resolve_sqlalchemy_url(connection_string)

    def get_discovery_history(
        self,
        customer_code: str,
        limit: int | None = None,
        *,
        session: Session | None = None,
    ) -> list[DiscoveryRunSummary]:
        """Most recent runs for a customer, newest first."""

        if session is None:
            with self._session_factory() as managed:
                return self.get_discovery_history(customer_code, limit, session=managed)

        page_size = limit or self._settings.discovery_history_limit
        customer = self._directory.get_customer(customer_code, session=session)
        runs = (
            session.execute(
                select(CustomerDiscoveryRun)
                .where(CustomerDiscoveryRun.customer_id == customer.id)
                .order_by(CustomerDiscoveryRun.started_at.desc())
                .limit(page_size)
            )
            .scalars()
            .all()
        )
        return [_summarize_run(run) for run in runs]

    def _execute(
        self,
        customer_code: str,
        stages: DiscoveryStageOptions,
        *,
        sink: ProgressSink | None,
    ) -> DiscoveryRunResult:
        normalized = normalize_customer_code(customer_code)
        if not self._locks.acquire(normalized):
            raise DiscoveryInProgressError(f"Discovery is already running for customer {normalized}")

        session = self._session_factory()
        try:
            customer = self._directory.get_customer(normalized, session=session)
            connection_string = self._directory.get_connection_string(normalized, session=session)

            pool = self._pool_factory()
            try:
                engine = pool.acquire(connection_string)
                return self._run(customer, engine, stages, session, sink)
            finally:
                pool.close()
        finally:
            session.close()
            self._locks.release(normalized)

    def _run(
        self,
        customer: Customer,
        engine: Engine,
        stages: DiscoveryStageOptions,
        session: Session,
        sink: ProgressSink | None,
    ) -> DiscoveryRunResult:
        started_at = utcnow()
        run = CustomerDiscoveryRun(
            customer_id=customer.id,
            status=RUN_STATUS_RUNNING,
            started_at=started_at,
            stages=stages.as_dict(),
            warnings=[],
            errors=[],
        )
        session.add(run)
        session.commit()
        run_id = run.id
        customer_id = customer.id

        discovery_log = DiscoveryLogger(run_id)
        discovery_log.info("discovery", "orchestrator", "Discovery run started", {"stages": stages.as_dict()})
        ctx = _RunContext(
            run=run,
            customer=customer,
            engine=engine,
            session=session,
            store=SemanticIndexStore(session),
            discovery_log=discovery_log,
            sink=sink,
        )

        try:
            if stages.form_discovery:
                self._run_stage(ctx, STAGE_FORM_DISCOVERY, self._form_stage)
            if stages.non_form_schema:
                self._run_stage(ctx, STAGE_NON_FORM_SCHEMA, self._non_form_stage)
            if stages.relationships:
                self._run_stage(ctx, STAGE_RELATIONSHIPS, self._relationship_stage)
            if stages.assessment_types:
                self._run_stage(ctx, STAGE_ASSESSMENT_TYPES, self._assessment_type_stage)

            self._emit(ctx, DiscoveryProgressEvent("stage-start", STAGE_SUMMARY, STAGE_NAMES[STAGE_SUMMARY]))
            summary = self._compute_summary(ctx)
            self._emit(
                ctx,
                DiscoveryProgressEvent("stage-complete", STAGE_SUMMARY, data=summary.as_dict()),
            )

            completed_at = utcnow()
            duration = _duration_seconds(started_at, completed_at)
            run.status = RUN_STATUS_SUCCEEDED
            run.completed_at = completed_at
            run.duration_seconds = duration
            run.warnings = list(ctx.warnings)
            run.errors = list(ctx.errors)
            run.forms_discovered = summary.forms_discovered
            run.fields_discovered = summary.fields_discovered
            run.avg_confidence = summary.avg_confidence
            run.fields_requiring_review = summary.fields_requiring_review
            run.non_form_columns = summary.non_form_columns
            run.non_form_columns_requiring_review = summary.non_form_columns_requiring_review
            run.relationships_discovered = summary.relationships_discovered
            run.assessment_types_discovered = summary.assessment_types_discovered
            customer.last_discovered_at = completed_at

            discovery_log.info(
                "discovery",
                "orchestrator",
                "Discovery run completed successfully",
                {"durationSeconds": duration, "warnings": len(ctx.warnings), "errors": len(ctx.errors)},
            )
            if stages.discovery_logging:
                discovery_log.persist(session)
            prune_discovery_logs(session, customer_id, self._settings.discovery_log_retention_runs)
            session.commit()

            self._emit(
                ctx,
                DiscoveryProgressEvent("complete", data={"status": RUN_STATUS_SUCCEEDED, "summary": summary.as_dict()}),
            )
            return DiscoveryRunResult(
                status=RUN_STATUS_SUCCEEDED,
                customer_id=customer_id,
                run_id=run_id,
                started_at=started_at,
                completed_at=completed_at,
                duration_seconds=duration,
                summary=summary,
                warnings=list(ctx.warnings),
                errors=list(ctx.errors),
            )
        except Exception as exc:
            session.rollback()
            logger.exception("Discovery run %s failed for customer %s", run_id, customer.code)
            message = str(exc) or exc.__class__.__name__
            completed_at = utcnow()
            duration = _duration_seconds(started_at, completed_at)

            failed_run = session.get(CustomerDiscoveryRun, run_id)
            failed_run.status = RUN_STATUS_FAILED
            failed_run.completed_at = completed_at
            failed_run.duration_seconds = duration
            failed_run.error_message = message
            failed_run.warnings = list(ctx.warnings)
            failed_run.errors = [*ctx.errors, message]
            discovery_log.error("discovery", "orchestrator", "Discovery run failed", {"error": message})
            if stages.discovery_logging:
                discovery_log.persist(session)
            session.commit()

            self._emit(ctx, DiscoveryProgressEvent("complete", data={"status": RUN_STATUS_FAILED}, error=message))
            return DiscoveryRunResult(
                status=RUN_STATUS_FAILED,
                customer_id=customer_id,
                run_id=run_id,
                started_at=started_at,
                completed_at=completed_at,
                duration_seconds=duration,
                summary=None,
                warnings=list(ctx.warnings),
                errors=[*ctx.errors, message],
                error=message,
            )

    def _run_stage(
        self,
        ctx: _RunContext,
        stage: str,
        handler: Callable[[_RunContext], dict[str, Any]],
    ) -> None:
        name = STAGE_NAMES[stage]
        self._emit(ctx, DiscoveryProgressEvent("stage-start", stage, name))
        ctx.discovery_log.start_timer(stage)
        try:
            data = handler(ctx)
            ctx.session.commit()
        except Exception as exc:
            ctx.session.rollback()
            message = f"{name} failed: {exc}"
            logger.warning("Discovery stage %s failed for customer %s: %s", stage, ctx.customer.code, exc)
            ctx.discovery_log.error(stage, "orchestrator", message)
            ctx.errors.append(message)
            self._emit(ctx, DiscoveryProgressEvent("stage-error", stage, name, error=str(exc)))
            return
        ctx.discovery_log.end_timer(stage, stage, "orchestrator", f"{name} completed", data)
        self._emit(ctx, DiscoveryProgressEvent("stage-complete", stage, data=data))

    def _form_stage(self, ctx: _RunContext) -> dict[str, Any]:
        matcher = OntologyConceptMatcher.from_session(ctx.session)
        result = self.form_discovery.discover(
            ctx.customer.id, ctx.engine, ctx.store, matcher, discovery_run_id=ctx.run.id
        )
        ctx.warnings.extend(result.warnings)
        ctx.errors.extend(result.errors)
        return {
            "formsDiscovered": result.forms_discovered,
            "fieldsDiscovered": result.fields_discovered,
            "avgConfidence": result.avg_confidence,
            "fieldsRequiringReview": result.fields_requiring_review,
            "warnings": len(result.warnings),
        }

    def _non_form_stage(self, ctx: _RunContext) -> dict[str, Any]:
        matcher = OntologyConceptMatcher.from_session(ctx.session)
        result = self.non_form_discovery.discover(
            ctx.customer.id, ctx.engine, ctx.store, matcher, discovery_run_id=ctx.run.id
        )
        ctx.warnings.extend(result.warnings)
        ctx.errors.extend(result.errors)
        return {
            "columnsDiscovered": result.columns_discovered,
            "columnsMapped": result.columns_mapped,
            "reviewRequired": result.review_required,
            "avgConfidence": result.avg_confidence,
        }

    def _relationship_stage(self, ctx: _RunContext) -> dict[str, Any]:
        result = self.relationship_discovery.discover(
            ctx.customer.id, ctx.engine, ctx.store, discovery_run_id=ctx.run.id
        )
        ctx.warnings.extend(result.warnings)
        ctx.errors.extend(result.errors)
        return {
            "relationshipsDiscovered": result.relationships_discovered,
            "oneToMany": result.one_to_many_count,
            "manyToOne": result.many_to_one_count,
            "oneToOne": result.one_to_one_count,
        }

    def _assessment_type_stage(self, ctx: _RunContext) -> dict[str, Any]:
        indexer = AssessmentTypeIndexer(ctx.customer.id, ctx.store, schema=self._settings.discovery_schema)
        try:
            result = indexer.index_all(ctx.engine)
        except Exception as exc:
            ctx.warnings.append(f"Assessment type indexing failed: {exc}")
            raise
        if result.indexed == 0 and result.total > 0:
            ctx.warnings.append(
                f"Found {result.total} assessment types but could not match any to semantic concepts"
            )
        return {
            "assessmentTypesDiscovered": result.total,
            "assessmentTypesIndexed": result.indexed,
            "assessmentTypesSkipped": result.skipped,
        }

    def _compute_summary(self, ctx: _RunContext) -> DiscoverySummary:
        form_stats = ctx.store.form_stats(ctx.customer.id)
        non_form_stats = ctx.store.non_form_stats(ctx.customer.id)
        summary = DiscoverySummary(
            forms_discovered=form_stats["forms_discovered"],
            fields_discovered=form_stats["fields_discovered"],
            avg_confidence=form_stats["avg_confidence"],
            fields_requiring_review=form_stats["fields_requiring_review"],
            non_form_columns=non_form_stats["non_form_columns"],
            non_form_columns_requiring_review=non_form_stats["non_form_columns_requiring_review"],
            relationships_discovered=ctx.store.relationship_count(ctx.customer.id),
            assessment_types_discovered=ctx.store.assessment_type_count(ctx.customer.id),
        )
        if summary.forms_discovered == 0:
            ctx.warnings.append("No forms discovered. Form discovery step may not be configured.")
        summary.warnings = list(ctx.warnings)
        return summary

    @staticmethod
    def _emit(ctx: _RunContext, event: DiscoveryProgressEvent) -> None:
        if ctx.sink is None:
            return
        try:
            ctx.sink(event)
        except Exception:
            logger.exception("Discovery progress sink raised while handling %s", event.type)


def _duration_seconds(started_at: datetime, completed_at: datetime) -> float:
    return round((completed_at - started_at).total_seconds(), 3)


def _summarize_run(run: CustomerDiscoveryRun) -> DiscoveryRunSummary:
    return DiscoveryRunSummary(
        run_id=run.id,
        status=run.status,
        started_at=run.started_at,
        completed_at=run.completed_at,
        duration_seconds=run.duration_seconds,
        stages=dict(run.stages or {}),
        warnings=list(run.warnings or []),
        errors=list(run.errors or []),
        forms_discovered=run.forms_discovered,
        fields_discovered=run.fields_discovered,
        avg_confidence=run.avg_confidence,
        fields_requiring_review=run.fields_requiring_review,
        non_form_columns=run.non_form_columns,
        relationships_discovered=run.relationships_discovered,
        assessment_types_discovered=run.assessment_types_discovered,
        error_message=run.error_message,
    )


discovery_orchestrator = DiscoveryOrchestrator()


__all__ = [
    "DiscoveryInProgressError",
    "DiscoveryOrchestrator",
    "DiscoveryProgressEvent",
    "DiscoveryRunResult",
    "DiscoveryRunSummary",
    "DiscoveryStageOptions",
    "DiscoverySummary",
    "ProgressSink",
    "RUN_STATUS_FAILED",
    "RUN_STATUS_RUNNING",
    "RUN_STATUS_SUCCEEDED",
    "STAGE_NAMES",
    "discovery_orchestrator",
]
