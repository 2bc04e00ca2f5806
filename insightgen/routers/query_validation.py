from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter

from insightgen.config import get_settings
from insightgen.schemas import (
    ComplexityAnalysisRead,
    ComplexityRequest,
    CompositionChainRead,
    CompositionValidateRequest,
    CompositionValidationRead,
    ResidualFilterPayload,
    SnippetPayload,
    SqlValidateRequest,
    SqlValidationRead,
)
from insightgen.services.complexity_detector import (
    ComplexityThresholds,
    analyze_complexity,
    explain_complexity,
    get_strategy_label,
)
from insightgen.services.composition_validator import (
    ComposableSnippet,
    CompositionChain,
    get_chain_visualization,
    get_composition_chains,
    get_error_message,
    validate_composition,
)
from insightgen.services.sql_validator import ResidualFilter, validate_generated_sql

router = APIRouter(prefix="/query", tags=["Query Validation"])


def _to_snippet(payload: SnippetPayload) -> ComposableSnippet:
    return ComposableSnippet(
        id=payload.id,
        name=payload.name,
        intent=payload.intent,
        inputs=tuple(payload.inputs),
        outputs=tuple(payload.outputs),
        required_context=tuple(payload.required_context),
        description=payload.description,
    )


def _to_filter(payload: ResidualFilterPayload) -> ResidualFilter:
    return ResidualFilter(
        field=payload.field,
        operator=payload.operator,
        value=payload.value,
        required=payload.required,
        confidence=payload.confidence,
        original_text=payload.original_text,
        source=payload.source,
    )


def _serialize_chain(chain: CompositionChain) -> CompositionChainRead:
    payload = {
        "intent": chain.intent,
        "name": chain.name,
        "description": chain.description,
        "steps": list(chain.steps),
        "optionalSteps": [step for step in chain.steps if step in chain.optional_steps],
        "requiredOrder": chain.required_order,
        "inputMapping": dict(chain.input_mapping),
        "outputs": list(chain.outputs),
        "example": chain.example,
        "visualization": get_chain_visualization(chain.intent),
    }
    return CompositionChainRead(**payload)


@router.get("/composition/chains", response_model=list[CompositionChainRead])
def list_composition_chains() -> list[CompositionChainRead]:
    return [_serialize_chain(chain) for chain in get_composition_chains()]


@router.post("/composition/validate", response_model=CompositionValidationRead)
def validate_snippet_composition(payload: CompositionValidateRequest) -> CompositionValidationRead:
    result = validate_composition([_to_snippet(item) for item in payload.snippets], payload.intent)
    return CompositionValidationRead(
        valid=result.valid,
        intent=result.intent,
        applied_chain=_serialize_chain(result.applied_chain) if result.applied_chain else None,
        errors=list(result.errors),
        warnings=list(result.warnings),
        suggestions=list(result.suggestions),
        message=get_error_message(result),
    )


@router.post("/sql/validate", response_model=SqlValidationRead)
def validate_sql(payload: SqlValidateRequest) -> SqlValidationRead:
    residual_filters = [_to_filter(item) for item in payload.filters]
    result = validate_generated_sql(
        payload.sql,
        [_to_snippet(item) for item in payload.snippets],
        residual_filters,
    )
    by_identity = {id(residual): source for residual, source in zip(residual_filters, payload.filters)}
    return SqlValidationRead(
        verdict=result.verdict,
        used_snippets=result.used_snippets,
        missing_snippets=result.missing_snippets,
        applied_filters=[by_identity[id(item)] for item in result.applied_filters],
        dropped_filters=[by_identity[id(item)] for item in result.dropped_filters],
        errors=result.errors,
        warnings=result.warnings,
        details={
            "cteNames": list(result.details.cte_names),
            "hasWhereClause": result.details.has_where_clause,
            "whereClauseContent": result.details.where_clause_content,
        },
    )


@router.post("/complexity", response_model=ComplexityAnalysisRead)
def classify_question_complexity(payload: ComplexityRequest) -> ComplexityAnalysisRead:
    if payload.thresholds is not None:
        thresholds = ComplexityThresholds(**payload.thresholds.model_dump())
    else:
        settings = get_settings()
        thresholds = ComplexityThresholds(
            simple=settings.complexity_simple_threshold,
            medium=settings.complexity_medium_threshold,
        )

    analysis = analyze_complexity(payload.question, thresholds)
    return ComplexityAnalysisRead(
        complexity=analysis.complexity,
        score=analysis.score,
        strategy=analysis.strategy,
        strategy_label=get_strategy_label(analysis.strategy),
        confidence=analysis.confidence,
        reasons=list(analysis.reasons),
        indicators=asdict(analysis.indicators),
        explanation=explain_complexity(analysis),
    )
