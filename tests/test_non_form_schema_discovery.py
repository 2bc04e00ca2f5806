import pytest
from sqlalchemy import select

from insightgen.models import SemanticIndexNonForm
from insightgen.services.catalog_introspection import CatalogIntrospectionError
from insightgen.services.concept_matching import OntologyConceptMatcher
from insightgen.services.non_form_schema_discovery import (
    NonFormSchemaDiscoveryService,
    infer_filterable,
    infer_joinable,
    resolve_measurement_family,
)
from insightgen.services.semantic_index_store import SemanticIndexStore


@pytest.mark.parametrize(
    "data_type, expected",
    [
        ("nvarchar", True),
        ("integer", True),
        ("float", True),
        ("datetime2", True),
        ("bit", True),
        ("uniqueidentifier", True),
        ("unknown", True),
        ("text", False),
        ("varbinary", False),
        ("xml", False),
        ("geography", False),
    ],
)
def test_infer_filterable(data_type, expected):
    assert infer_filterable(data_type) is expected


def test_infer_joinable_needs_key_like_name_and_type():
    assert infer_joinable("patientFk", "integer")
    assert infer_joinable("id", "uniqueidentifier")
    assert infer_joinable("assessmentTypeId", "varchar")
    assert not infer_joinable("etiology", "varchar")
    assert not infer_joinable("woundFk", "float")


def test_measurement_family_lookup_is_case_insensitive():
    family = resolve_measurement_family("RPT.measurement", "Depth")

    assert family is not None
    assert family.canonical_concept == "wound_depth"
    assert resolve_measurement_family("rpt.Wound", "depth") is None


def test_discover_classifies_reporting_columns(customer_database, customer, ontology, db_session):
    store = SemanticIndexStore(db_session)
    matcher = OntologyConceptMatcher.from_session(db_session)

    result = NonFormSchemaDiscoveryService().discover(customer.id, customer_database, store, matcher)
    db_session.flush()

    assert result.columns_discovered == 17
    assert result.columns_mapped == 4
    assert result.high_confidence == 4
    assert result.review_required == 13
    assert result.errors == []

    rows = {
        (row.table_name, row.column_name): row
        for row in db_session.execute(select(SemanticIndexNonForm)).scalars()
    }
    etiology = rows[("rpt.Wound", "etiology")]
    assert etiology.semantic_concept == "wound_etiology"
    assert etiology.confidence == 0.95
    assert etiology.is_review_required is False

    depth = rows[("rpt.Measurement", "depth")]
    assert depth.semantic_concept == "wound_depth"
    assert depth.semantic_category == "wound_depth"
    assert depth.confidence == 0.9
    assert depth.is_filterable is True

    timing = rows[("rpt.Measurement", "measurementDate")]
    assert timing.semantic_concept == "assessment_date"
    assert timing.confidence == 0.85

    wound_fk = rows[("rpt.Measurement", "woundFk")]
    assert wound_fk.is_joinable is True
    assert wound_fk.is_review_required is True
    assert wound_fk.review_note == "No ontology match found"


def test_rediscovery_prunes_columns_that_disappeared(customer_database, customer, ontology, db_session):
    store = SemanticIndexStore(db_session)
    matcher = OntologyConceptMatcher.from_session(db_session)
    service = NonFormSchemaDiscoveryService()
    service.discover(customer.id, customer_database, store, matcher)

    db_session.add(
        SemanticIndexNonForm(
            customer_id=customer.id,
            table_name="rpt.Retired",
            column_name="legacyCode",
            data_type="varchar",
        )
    )
    db_session.flush()

    second = service.discover(customer.id, customer_database, store, matcher)
    db_session.flush()

    tables = {row.table_name for row in db_session.execute(select(SemanticIndexNonForm)).scalars()}
    assert "rpt.Retired" not in tables
    assert second.columns_discovered == 17


def test_unreadable_schema_raises_catalog_error(customer_database, customer, ontology, db_session):
    with pytest.raises(CatalogIntrospectionError):
        NonFormSchemaDiscoveryService(schema="missing").discover(
            customer.id,
            customer_database,
            SemanticIndexStore(db_session),
            OntologyConceptMatcher.from_session(db_session),
        )
