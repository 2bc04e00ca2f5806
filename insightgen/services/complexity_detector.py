"""Score a clinician's question and pick how much review it needs before execution."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Literal

QueryComplexity = Literal["simple", "medium", "complex"]
ExecutionStrategy = Literal["auto", "preview", "inspect"]

MAX_SCORE = 10
MAX_CONFIDENCE = 0.95


@dataclass(frozen=True)
class ComplexityThresholds:
    simple: int = 4
    medium: int = 7
    complex: int = 10


DEFAULT_THRESHOLDS = ComplexityThresholds()


@dataclass(frozen=True)
class ComplexityIndicators:
    multi_step: bool = False
    aggregations: int = 0
    comparisons: int = 0
    time_series: bool = False
    multi_entity: bool = False
    grouping: bool = False


@dataclass(frozen=True)
class ComplexityAnalysis:
    complexity: QueryComplexity
    score: int
    strategy: ExecutionStrategy
    confidence: float
    reasons: tuple[str, ...]
    indicators: ComplexityIndicators = field(default_factory=ComplexityIndicators)


def _compile(*expressions: str) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(expression) for expression in expressions)


MULTI_STEP_PATTERNS = _compile(
    r"\bthen\b",
    r"\bafter that\b",
    r"\bfollowed by\b",
    r"\balso\b",
    r"\badditionally\b",
)

AGGREGATION_PATTERNS = _compile(
    r"\baverage\b",
    r"\bmean\b",
    r"\bsum\b",
    r"\btotal\b",
    r"\bcount\b",
    r"\bmax\b",
    r"\bmin\b",
    r"\bpercentage\b",
    r"\brate\b",
)

COMPARISON_PATTERNS = _compile(
    r"\bcompare",
    r"\bversus\b",
    r"\bvs\b",
    r"\bdifference between\b",
    r"\bbetter than\b",
    r"\bworse than\b",
    r"\bhigher than\b",
    r"\blower than\b",
)

TIME_SERIES_PATTERNS = _compile(
    r"\bover time\b",
    r"\btrends?\b",
    r"\btimeline\b",
    r"\bhistory\b",
    r"\bweekly\b",
    r"\bmonthly\b",
    r"\bquarterly\b",
    r"\byearly\b",
    r"\bper (?:day|week|month)\b",
)

ENTITY_KEYWORDS = (
    "patient",
    "wound",
    "assessment",
    "clinic",
    "clinician",
    "measurement",
    "visit",
    "treatment",
    "medication",
    "diagnosis",
    # etiologies
    "diabetic",
    "arterial",
    "venous",
    "pressure",
    "surgical",
    "burn",
)

_GROUPING_TARGETS = (
    r"day|week|month|quarter|year|"
    r"patient|wound|assessment|clinic|clinician|visit|treatment|etiology|site|location"
)

GROUPING_PATTERNS = _compile(
    r"\bfor each\b",
    r"\bgrouped by\b",
    r"\bper\b.*\bper\b",
    rf"\bby (?:{_GROUPING_TARGETS})s?\b",
)

STRATEGY_LABELS: dict[ExecutionStrategy, str] = {
    "auto": "Auto Execute",
    "preview": "Preview & Execute",
    "inspect": "Inspect Required",
}


def count_entities(question: str) -> int:
    lowered = question.lower()
    return sum(1 for keyword in ENTITY_KEYWORDS if re.search(rf"\b{keyword}", lowered))


def get_execution_strategy(score: int, thresholds: ComplexityThresholds = DEFAULT_THRESHOLDS) -> ExecutionStrategy:
    if score <= thresholds.simple:
        return "auto"
    if score <= thresholds.medium:
        return "preview"
    return "inspect"


def _complexity_for(score: int, thresholds: ComplexityThresholds) -> QueryComplexity:
    if score <= thresholds.simple:
        return "simple"
    if score <= thresholds.medium:
        return "medium"
    return "complex"


def analyze_complexity(question: str, thresholds: ComplexityThresholds = DEFAULT_THRESHOLDS) -> ComplexityAnalysis:
    lowered = (question or "").lower().strip()
    reasons: list[str] = []
    score = 0

    multi_step = any(pattern.search(lowered) for pattern in MULTI_STEP_PATTERNS)
    if multi_step:
        score += 3
        reasons.append("Multi-step question detected")

    aggregations = sum(1 for pattern in AGGREGATION_PATTERNS if pattern.search(lowered))
    if aggregations >= 2:
        score += 2
        reasons.append(f"Multiple aggregations ({aggregations})")

    comparisons = sum(1 for pattern in COMPARISON_PATTERNS if pattern.search(lowered))
    if comparisons:
        score += 2
        reasons.append("Comparison detected")

    time_series = any(pattern.search(lowered) for pattern in TIME_SERIES_PATTERNS)
    if time_series:
        score += 2
        reasons.append("Time series analysis detected")

    entity_count = count_entities(lowered)
    multi_entity = entity_count >= 3
    if multi_entity:
        score += 2
        reasons.append(f"Multiple entities detected ({entity_count})")

    grouping = any(pattern.search(lowered) for pattern in GROUPING_PATTERNS)
    if grouping:
        score += 2
        reasons.append("Per-entity grouping detected")

    final_score = min(score, MAX_SCORE)
    if not reasons:
        reasons.append("Simple single-entity query")

    return ComplexityAnalysis(
        complexity=_complexity_for(final_score, thresholds),
        score=final_score,
        strategy=get_execution_strategy(final_score, thresholds),
        confidence=min(final_score / MAX_SCORE, MAX_CONFIDENCE),
        reasons=tuple(reasons),
        indicators=ComplexityIndicators(
            multi_step=multi_step,
            aggregations=aggregations,
            comparisons=comparisons,
            time_series=time_series,
            multi_entity=multi_entity,
            grouping=grouping,
        ),
    )


def explain_complexity(analysis: ComplexityAnalysis) -> str:
    confidence_percent = round(analysis.confidence * 100)
    score = f"{analysis.score}/{MAX_SCORE}"
    reasons = ", ".join(analysis.reasons)
    if analysis.complexity == "simple":
        return (
            f"This is a simple query (score: {score}, confidence: {confidence_percent}%). "
            "It will be executed directly using semantic discovery."
        )
    if analysis.complexity == "medium":
        return (
            f"This is a medium complexity query (score: {score}, confidence: {confidence_percent}%). "
            f"The execution plan is shown before it runs automatically. Reasons: {reasons}."
        )
    return (
        f"This is a complex query (score: {score}, confidence: {confidence_percent}%). "
        f"It requires inspection before execution. Reasons: {reasons}."
    )


def get_strategy_label(strategy: ExecutionStrategy) -> str:
    return STRATEGY_LABELS[strategy]


__all__ = [
    "ComplexityAnalysis",
    "ComplexityIndicators",
    "ComplexityThresholds",
    "DEFAULT_THRESHOLDS",
    "analyze_complexity",
    "explain_complexity",
    "get_execution_strategy",
    "get_strategy_label",
]
