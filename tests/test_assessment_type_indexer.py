import pytest

from insightgen.services.assessment_type_indexer import (
    AssessmentTypeIndexer,
    DiscoveredAssessmentType,
    UnknownAssessmentConceptError,
    latest_versions,
)
from insightgen.services.assessment_type_taxonomy import (
    ASSESSMENT_TYPE_TAXONOMY,
    find_matching_concepts,
    get_concept_by_name,
    get_concepts_by_category,
)
from insightgen.services.semantic_index_store import SemanticIndexStore


def test_pattern_match_uses_default_confidence():
    matches = find_matching_concepts("Wound Assessment")

    assert matches[0].concept.concept == "clinical_wound_assessment"
    assert matches[0].confidence == 0.95


def test_keyword_match_is_discounted():
    matches = find_matching_concepts("Pressure and fall screening sheet")

    best = matches[0]
    assert best.concept.concept == "clinical_risk_assessment"
    assert best.confidence == pytest.approx(0.88 * 0.7)


def test_unrelated_name_has_no_matches():
    assert find_matching_concepts("Misc Checklist") == []


def test_concept_lookups():
    assert get_concept_by_name("billing_claim_form").category == "billing"
    assert get_concept_by_name("does_not_exist") is None
    treatment = get_concepts_by_category("treatment")
    assert {concept.concept for concept in treatment} == {
        "treatment_plan",
        "treatment_order",
        "treatment_procedure",
        "treatment_management_plan",
    }
    assert len({concept.concept for concept in ASSESSMENT_TYPE_TAXONOMY}) == len(ASSESSMENT_TYPE_TAXONOMY)


def test_latest_versions_keeps_highest_definition_per_type():
    rows = [
        DiscoveredAssessmentType("at-1", "v1", "Wound Assessment", 1),
        DiscoveredAssessmentType("at-1", "v3", "Wound Assessment", 3),
        DiscoveredAssessmentType("at-1", "v2", "Wound Assessment", 2),
        DiscoveredAssessmentType("at-2", "b1", "Billing Form", 1),
    ]

    latest = latest_versions(rows)

    assert [(row.assessment_type_id, row.assessment_type_version_id) for row in latest] == [
        ("at-2", "b1"),
        ("at-1", "v3"),
    ]


def test_index_all_maps_matching_types_and_skips_the_rest(customer_database, customer, db_session):
    indexer = AssessmentTypeIndexer(customer.id, SemanticIndexStore(db_session))

    result = indexer.index_all(customer_database)

    assert result.total == 3
    assert result.indexed == 2
    assert result.skipped == 1
    concepts = {item.assessment_name: item.semantic_concept for item in result.results}
    assert concepts == {
        "Billing Form": "billing_documentation",
        "Wound Assessment": "clinical_wound_assessment",
    }

    stored = indexer.get_indexed()
    assert {row.assessment_type_id for row in stored} == {"at-1", "at-2"}
    assert all(row.discovery_source == "auto" for row in stored)


def test_reindexing_updates_in_place(customer_database, customer, db_session):
    indexer = AssessmentTypeIndexer(customer.id, SemanticIndexStore(db_session))

    indexer.index_all(customer_database)
    indexer.index_all(customer_database)

    assert len(indexer.get_indexed()) == 2


def test_manual_mapping_overrides_and_validates_concept(customer, db_session):
    indexer = AssessmentTypeIndexer(customer.id, SemanticIndexStore(db_session))

    indexed = indexer.seed_manual_mapping("at-3", "Misc Checklist", "administrative_consent", confidence=0.8)

    assert indexed.semantic_category == "administrative"
    stored = indexer.get_indexed()
    assert stored[0].discovery_source == "manual"
    assert stored[0].confidence == 0.8

    with pytest.raises(UnknownAssessmentConceptError, match="Invalid semantic concept: nonsense"):
        indexer.seed_manual_mapping("at-3", "Misc Checklist", "nonsense")


def test_clear_all_removes_customer_mappings(customer_database, customer, db_session):
    indexer = AssessmentTypeIndexer(customer.id, SemanticIndexStore(db_session))
    indexer.index_all(customer_database)

    assert indexer.clear_all() == 2
    assert indexer.get_indexed() == []
