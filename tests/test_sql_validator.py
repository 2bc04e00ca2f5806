import pytest

from insightgen.services.composition_validator import ComposableSnippet
from insightgen.services.sql_validator import (
    RegexSqlStructureParser,
    ResidualFilter,
    SQLValidator,
    SqlStructure,
    validate_generated_sql,
)

TWO_CTE_SQL = """
WITH BaselineData AS (
    SELECT woundFk, area AS baselineArea FROM rpt.Measurement
),
  ClosestMeasurement   AS   (
    SELECT b.woundFk, m.area FROM BaselineData b JOIN rpt.Measurement m ON m.woundFk = b.woundFk
)
SELECT cm.woundFk, w.etiology
FROM ClosestMeasurement cm
JOIN rpt.Wound w ON w.id = cm.woundFk
WHERE w.etiology = 'diabetic' AND cm.area > 0
ORDER BY cm.woundFk
"""

BASELINE = ComposableSnippet(
    id="baseline_measurement_per_wound",
    name="Baseline",
    intent="temporal_proximity_query",
    outputs=("BaselineData",),
)
LOOKUP = ComposableSnippet(
    id="assessment_type_lookup_by_semantic_concept",
    name="Lookup",
    intent="assessment_correlation_check",
    outputs=("@assessmentTypeId",),
    required_context=("SemanticIndexAssessmentType",),
)


def _filter(field: str, required: bool = True) -> ResidualFilter:
    return ResidualFilter(field=field, operator="equals", value="x", required=required, original_text=f"{field} text")


def test_parser_extracts_cte_names_and_where_clause():
    structure = RegexSqlStructureParser().parse(TWO_CTE_SQL)

    assert structure.cte_names == ("BaselineData", "ClosestMeasurement")
    assert structure.has_where_clause
    assert structure.where_clause_content == "w.etiology = 'diabetic' AND cm.area > 0"


def test_parser_without_where_clause():
    structure = RegexSqlStructureParser().parse("SELECT id FROM rpt.Patient")

    assert structure == SqlStructure(cte_names=(), has_where_clause=False)


@pytest.mark.parametrize("sql", ["", "   ", None])
def test_empty_sql_is_rejected(sql):
    result = validate_generated_sql(sql, [], [])

    assert result.verdict == "reject"
    assert result.errors == ["SQL is empty or null"]


def test_matching_sql_passes():
    result = validate_generated_sql(TWO_CTE_SQL, [BASELINE], [_filter("etiology"), _filter("area")])

    assert result.verdict == "pass"
    assert result.used_snippets == ["baseline_measurement_per_wound"]
    assert [item.field for item in result.applied_filters] == ["etiology", "area"]
    assert result.errors == []
    assert result.warnings == []


def test_required_filter_only_in_select_list_is_dropped():
    sql = "SELECT w.etiology FROM rpt.Wound w WHERE w.patientFk IN (1, 2)"

    result = validate_generated_sql(sql, [], [_filter("etiology")])

    assert result.verdict == "reject"
    assert [item.field for item in result.dropped_filters] == ["etiology"]
    assert result.errors == ['Required filter missing: etiology (from "etiology text")']


def test_filter_operators_are_recognised():
    sql = (
        "SELECT * FROM rpt.Wound w WHERE w.patientFk IN (1, 2) AND w.etiology LIKE 'dia%' "
        "AND w.depth >= 2 AND w.status <> 'closed'"
    )

    result = validate_generated_sql(
        sql, [], [_filter("patientFk"), _filter("ETIOLOGY"), _filter("depth"), _filter("status")]
    )

    assert result.verdict == "pass"
    assert len(result.applied_filters) == 4


def test_field_name_prefix_does_not_count_as_filter():
    result = validate_generated_sql("SELECT * FROM rpt.Wound WHERE woundArea > 3", [], [_filter("area")])

    assert result.verdict == "reject"


def test_missing_optional_filter_only_warns():
    result = validate_generated_sql(TWO_CTE_SQL, [], [_filter("etiology"), _filter("clinic", required=False)])

    assert result.verdict == "pass"
    assert result.dropped_filters == []
    assert result.warnings == ['Optional filter not found: clinic (from "clinic text")']


def test_missing_snippet_with_satisfied_filters_needs_clarification():
    result = validate_generated_sql(TWO_CTE_SQL, [BASELINE, LOOKUP], [_filter("etiology")])

    assert result.verdict == "clarify"
    assert result.missing_snippets == ["assessment_type_lookup_by_semantic_concept"]
    assert "1 snippet(s) not detected in SQL" in result.warnings


def test_reject_takes_precedence_over_clarify():
    result = validate_generated_sql(TWO_CTE_SQL, [LOOKUP], [_filter("clinicFk")])

    assert result.verdict == "reject"
    assert result.missing_snippets == ["assessment_type_lookup_by_semantic_concept"]


def test_snippet_detected_by_required_context_token():
    sql = "SELECT assessment_type_id FROM SemanticIndexAssessmentType WHERE semantic_concept = 'billing'"

    result = validate_generated_sql(sql, [LOOKUP], [])

    assert result.verdict == "pass"
    assert result.used_snippets == [LOOKUP.id]


def test_sql_variable_outputs_are_not_matched_by_text():
    sql = "DECLARE @assessmentTypeId UNIQUEIDENTIFIER; SELECT 1"
    snippet = ComposableSnippet(id="lookup", name="Lookup", intent="x", outputs=("@assessmentTypeId",))

    result = validate_generated_sql(sql, [snippet], [])

    assert result.verdict == "clarify"


def test_area_reduction_snippet_detected_by_column_pattern():
    snippet = ComposableSnippet(
        id="area_reduction_with_wound_state_overlay",
        name="Area reduction",
        intent="temporal_proximity_query",
        outputs=("AreaReductionData",),
    )
    sql = "SELECT (b.area - m.area) / b.area AS reduction FROM rpt.Measurement m"

    assert validate_generated_sql(sql, [snippet], []).verdict == "pass"


def test_custom_parser_is_used():
    class FixedParser:
        def parse(self, sql):
            return SqlStructure(cte_names=("BaselineData",), has_where_clause=True, where_clause_content="x = 1")

    result = SQLValidator(parser=FixedParser()).validate("SELECT 1", [BASELINE], [_filter("x")])

    assert result.verdict == "pass"
    assert result.details.cte_names == ("BaselineData",)


def test_parser_ignores_where_clauses_inside_cte_bodies():
    sql = """
    WITH Counts AS (
        SELECT woundFk, COUNT(*) AS measurements FROM rpt.Measurement WHERE area > 0 GROUP BY woundFk
    )
    SELECT w.id, c.measurements
    FROM rpt.Wound w
    JOIN Counts c ON c.woundFk = w.id
    WHERE w.etiology = 'diabetic'
    ORDER BY w.id
    """

    structure = RegexSqlStructureParser().parse(sql)
    result = validate_generated_sql(sql, [], [_filter("etiology")])

    assert structure.where_clause_content == "w.etiology = 'diabetic'"
    assert result.verdict == "pass"


def test_parser_ignores_where_inside_subquery_and_literals():
    sql = (
        "SELECT p.id FROM rpt.Patient p "
        "WHERE p.note <> 'where (x' AND p.id IN (SELECT patientFk FROM rpt.Wound WHERE depth > 1);"
    )

    structure = RegexSqlStructureParser().parse(sql)

    assert structure.where_clause_content == (
        "p.note <> 'where (x' AND p.id IN (SELECT patientFk FROM rpt.Wound WHERE depth > 1)"
    )


def test_clause_keywords_inside_identifiers_do_not_end_where_clause():
    sql = "SELECT p.id FROM rpt.Patient p WHERE p.ageLimit > 3 AND p.orderByDate IS NOT NULL"

    structure = RegexSqlStructureParser().parse(sql)
    result = validate_generated_sql(sql, [], [_filter("ageLimit"), _filter("orderByDate")])

    assert structure.where_clause_content == "p.ageLimit > 3 AND p.orderByDate IS NOT NULL"
    assert result.verdict == "pass"


def test_where_keyword_inside_identifier_is_not_a_clause():
    structure = RegexSqlStructureParser().parse("SELECT nowhere FROM rpt.Somewhere")

    assert not structure.has_where_clause


@pytest.mark.parametrize(
    "predicate",
    [
        "w.etiology NOT IN ('venous')",
        "w.etiology NOT LIKE 'ven%'",
        "w.etiology BETWEEN 'a' AND 'm'",
        "w.etiology IS NULL",
        "w.etiology IS NOT NULL",
    ],
)
def test_negated_and_range_operators_count_as_filters(predicate):
    result = validate_generated_sql(f"SELECT w.id FROM rpt.Wound w WHERE {predicate}", [], [_filter("etiology")])

    assert result.verdict == "pass"
    assert [item.field for item in result.applied_filters] == ["etiology"]
