"""Rules for combining reusable SQL snippets into a query for one analytical intent.

Each intent has exactly one static :class:`CompositionChain`. Validation never
raises; callers branch on :attr:`CompositionValidationResult.valid`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Sequence

logger = logging.getLogger(__name__)

CHAIN_ARROW = " → "


@dataclass(frozen=True)
class ComposableSnippet:
    id: str
    name: str
    intent: str
    inputs: tuple[str, ...] = ()
    outputs: tuple[str, ...] = ()
    required_context: tuple[str, ...] = ()
    description: str = ""


@dataclass(frozen=True)
class CompositionChain:
    intent: str
    name: str
    description: str
    steps: tuple[str, ...]
    optional_steps: frozenset[str]
    required_order: bool
    input_mapping: dict[str, str]
    outputs: tuple[str, ...]
    example: str

    @property
    def required_steps(self) -> tuple[str, ...]:
        return tuple(step for step in self.steps if step not in self.optional_steps)


@dataclass(frozen=True)
class CompositionValidationResult:
    valid: bool
    intent: str
    applied_chain: CompositionChain | None = None
    errors: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
    suggestions: tuple[str, ...] = ()


COMPOSITION_CHAINS: tuple[CompositionChain, ...] = (
    CompositionChain(
        intent="temporal_proximity_query",
        name="Area Reduction with Threshold",
        description=(
            "Complete flow for temporal proximity queries with healing threshold. "
            "Baseline → Proximity → Calculation → Optional Threshold"
        ),
        steps=(
            "baseline_measurement_per_wound",
            "closest_measurement_around_target_date",
            "area_reduction_with_wound_state_overlay",
            "threshold_filter_for_area_reduction",
        ),
        optional_steps=frozenset({"threshold_filter_for_area_reduction"}),
        required_order=True,
        input_mapping={
            "baseline_wounds->BaselineData": "baselineArea,baselineDimDateFk,baselineDate",
            "closest_measurement->ClosestMeasurement": (
                "woundFk,baselineArea,measurementArea,daysFromTarget,measurementDate"
            ),
            "area_reduction->AreaReductionData": (
                "woundFk,baselineArea,measurementArea,woundStateName,areaReduction"
            ),
        },
        outputs=("BaselineData", "ClosestMeasurement", "WoundStateAtTarget", "FilteredWounds"),
        example=(
            "Show wounds with 30% area reduction at 12 weeks | "
            "Compose: Baseline + Proximity(12w) + Calculation + Threshold(0.30)"
        ),
    ),
    CompositionChain(
        intent="assessment_correlation_check",
        name="Multi-Assessment Anti-Join",
        description=(
            "Find assessments of Type A missing corresponding Type B. "
            "Lookup → Collection → Anti-Join → Optional Date Window"
        ),
        steps=(
            "assessment_type_lookup_by_semantic_concept",
            "target_assessment_collection",
            "missing_target_assessment_anti_join",
            "date_window_match_for_assessments",
        ),
        optional_steps=frozenset({"date_window_match_for_assessments"}),
        required_order=True,
        input_mapping={
            "assessment_lookup->@assessmentTypeId": "assessmentTypeId (both source and target)",
            "target_collection->TargetAssessments": "patientFk,matchingDate",
            "date_match->DateMatches": "sourceDate,targetDate,dateDifference",
        },
        outputs=("@sourceAssessmentTypeId", "@targetAssessmentTypeId", "TargetAssessments", "MissingRecords"),
        example=(
            "Show visits with no billing | "
            "Compose: Lookup(clinical) + Lookup(billing) + Collection + AntiJoin"
        ),
    ),
    CompositionChain(
        intent="workflow_status_monitoring",
        name="Workflow Status with Age",
        description=(
            "Filter assessments by enum status and optionally calculate age. "
            "Lookup → Enum Filter → Optional Age Calc"
        ),
        steps=(
            "assessment_type_lookup_by_semantic_concept",
            "document_age_calculation",
            "workflow_enum_status_filter",
        ),
        optional_steps=frozenset({"document_age_calculation"}),
        # age calculation can run at any point
        required_order=False,
        input_mapping={
            "assessment_lookup->@assessmentTypeId": "assessmentTypeId (for status filter)",
            "document_age->documentAgeDays": "calculated by DATEDIFF",
        },
        outputs=("@assessmentTypeId", "WithAge", "FilteredByStatus"),
        example=(
            "Show pending forms older than 7 days | "
            "Compose: Lookup(billing) + StatusFilter(pending) + AgeCalc(>7d)"
        ),
    ),
)


def get_composition_chains() -> tuple[CompositionChain, ...]:
    return COMPOSITION_CHAINS


def get_chain_by_intent(intent: str) -> CompositionChain | None:
    for chain in COMPOSITION_CHAINS:
        if chain.intent == intent:
            return chain
    return None


def is_render_time_input(value: str) -> bool:
    """Placeholders and SQL variables are bound when the snippet is rendered."""

    return (value.startswith("{") and value.endswith("}")) or value.startswith("@")


def _distinct(values: Iterable[str]) -> list[str]:
    seen: list[str] = []
    for value in values:
        if value not in seen:
            seen.append(value)
    return seen


def validate_composition(snippets: Sequence[ComposableSnippet], intent: str) -> CompositionValidationResult:
    chain = get_chain_by_intent(intent)
    if chain is None:
        valid_intents = ", ".join(item.intent for item in COMPOSITION_CHAINS)
        return CompositionValidationResult(
            valid=False,
            intent=intent,
            errors=(f"No composition chain defined for intent: {intent}. Valid intents: {valid_intents}",),
            suggestions=(f'Add a CompositionChain for intent "{intent}" in COMPOSITION_CHAINS',),
        )

    errors: list[str] = []
    warnings: list[str] = []
    suggestions: list[str] = []

    if any(snippet.intent != intent for snippet in snippets):
        found = ", ".join(_distinct(snippet.intent for snippet in snippets))
        errors.append(f"Mixed intents in composition: {found}. All snippets must have intent: {intent}")

    supplied_ids = {snippet.id for snippet in snippets}
    for step in chain.required_steps:
        if step not in supplied_ids:
            errors.append(f"Missing required snippet: {step} (part of {chain.name} chain)")
            suggestions.append(f'Add snippet "{step}" to your composition for intent "{intent}"')

    expected_flow = CHAIN_ARROW.join(chain.steps)
    if chain.required_order:
        positioned = [(snippet.id, chain.steps.index(snippet.id)) for snippet in snippets if snippet.id in chain.steps]
        for (_, previous), (snippet_id, current) in zip(positioned, positioned[1:]):
            if current < previous:
                errors.append(f"Snippet '{snippet_id}' is out of order. Expected: {expected_flow}")
                suggestions.append(f"Reorder snippets: {expected_flow}")
                break

    produced: set[str] = set()
    for snippet in snippets:
        for required_input in snippet.inputs:
            if required_input in produced or is_render_time_input(required_input):
                continue
            warnings.append(f'Input "{required_input}" for snippet "{snippet.id}" may not be satisfied')
        produced.update(snippet.outputs)

    skipped_optional = [step for step in chain.steps if step in chain.optional_steps and step not in supplied_ids]
    for step in skipped_optional:
        logger.debug("Optional snippet %s not supplied for intent %s", step, intent)

    valid = not errors
    return CompositionValidationResult(
        valid=valid,
        intent=intent,
        applied_chain=chain if valid else None,
        errors=tuple(errors),
        warnings=tuple(warnings),
        suggestions=tuple(suggestions),
    )


def get_error_message(result: CompositionValidationResult) -> str:
    if result.valid:
        return f'Valid composition for intent "{result.intent}"'

    lines = [f'Invalid snippet composition for intent "{result.intent}":']
    for heading, items in (("Errors", result.errors), ("Warnings", result.warnings), ("Suggestions", result.suggestions)):
        if items:
            lines.append("")
            lines.append(f"{heading}:")
            lines.extend(f"  • {item}" for item in items)
    return "\n".join(lines)


def get_chain_visualization(intent: str) -> str:
    chain = get_chain_by_intent(intent)
    if chain is None:
        return f"No composition chain for intent: {intent}"

    flow = CHAIN_ARROW.join(chain.steps)
    optional = ", ".join(step for step in chain.steps if step in chain.optional_steps)
    return f"Chain: {flow}\nOptional: {optional}" if optional else f"Chain: {flow}"


__all__ = [
    "COMPOSITION_CHAINS",
    "ComposableSnippet",
    "CompositionChain",
    "CompositionValidationResult",
    "get_chain_by_intent",
    "get_chain_visualization",
    "get_composition_chains",
    "get_error_message",
    "validate_composition",
]
