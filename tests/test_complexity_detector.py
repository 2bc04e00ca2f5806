import pytest

from insightgen.services.complexity_detector import (
    DEFAULT_THRESHOLDS,
    ComplexityThresholds,
    analyze_complexity,
    count_entities,
    explain_complexity,
    get_execution_strategy,
    get_strategy_label,
)


def test_simple_question_runs_automatically():
    analysis = analyze_complexity("How many patients?")

    assert analysis.score == 0
    assert analysis.complexity == "simple"
    assert analysis.strategy == "auto"
    assert analysis.confidence == 0
    assert analysis.reasons == ("Simple single-entity query",)


def test_etiology_comparison_over_time_requires_inspection():
    analysis = analyze_complexity(
        "Compare healing trends over time for diabetic versus arterial wounds by month"
    )

    assert analysis.score == 8
    assert analysis.score > DEFAULT_THRESHOLDS.medium
    assert analysis.complexity == "complex"
    assert analysis.strategy == "inspect"
    assert analysis.confidence == pytest.approx(0.8)
    assert analysis.indicators.comparisons == 2
    assert analysis.indicators.time_series
    assert analysis.indicators.multi_entity
    assert analysis.indicators.grouping
    assert "Per-entity grouping detected" in analysis.reasons


def test_medium_question_gets_preview():
    analysis = analyze_complexity("Compare the average and total wound area per week")

    assert analysis.score == 6
    assert analysis.complexity == "medium"
    assert analysis.strategy == "preview"
    assert analysis.indicators.aggregations == 2
    assert "Multiple aggregations (2)" in analysis.reasons


def test_multi_step_question():
    analysis = analyze_complexity("Find open wounds then show their latest measurement")

    assert analysis.indicators.multi_step
    assert analysis.score == 3
    assert analysis.reasons[0] == "Multi-step question detected"


def test_keywords_match_whole_words_only():
    # "summary" must not count as "sum", "meant" must not count as "mean"
    analysis = analyze_complexity("Give me a summary of what the clinic meant")

    assert analysis.indicators.aggregations == 0
    assert analysis.score == 0


def test_score_is_capped():
    analysis = analyze_complexity(
        "Compare the average and total healing rate over time for diabetic versus venous "
        "wounds by clinic, then also show each patient assessment grouped by month"
    )

    assert analysis.score == 10
    assert analysis.confidence == 0.95


@pytest.mark.parametrize(
    "question",
    [
        "How many patients?",
        "Show average wound area by month",
        "List pressure wounds then show treatment history",
    ],
)
def test_adding_a_comparison_never_lowers_the_score(question):
    base = analyze_complexity(question)
    compared = analyze_complexity(f"{question} compare versus last year")

    assert compared.score >= base.score


def test_analysis_is_deterministic():
    question = "Compare venous versus arterial wound healing rate by clinic"

    assert analyze_complexity(question) == analyze_complexity(question)


def test_count_entities_includes_etiologies():
    assert count_entities("diabetic and arterial wounds") == 3
    assert count_entities("How many patients?") == 1


@pytest.mark.parametrize(
    "score, expected",
    [(0, "auto"), (4, "auto"), (5, "preview"), (7, "preview"), (8, "inspect"), (10, "inspect")],
)
def test_default_strategy_boundaries(score, expected):
    assert get_execution_strategy(score) == expected


def test_custom_thresholds_shift_strategy():
    strict = ComplexityThresholds(simple=1, medium=3)

    analysis = analyze_complexity("Find open wounds then show their latest measurement", strict)

    assert analysis.complexity == "medium"
    assert analysis.strategy == "preview"


def test_explanation_and_labels():
    simple = analyze_complexity("How many patients?")
    complex_ = analyze_complexity("Compare healing trends over time for diabetic versus arterial wounds by month")

    assert explain_complexity(simple).startswith("This is a simple query (score: 0/10, confidence: 0%)")
    assert "requires inspection before execution" in explain_complexity(complex_)
    assert get_strategy_label("auto") == "Auto Execute"
    assert get_strategy_label("preview") == "Preview & Execute"
    assert get_strategy_label("inspect") == "Inspect Required"
