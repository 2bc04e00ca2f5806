import base64
import os
import sys
from collections.abc import Generator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import (
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    UniqueConstraint,
    create_engine,
    event,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

TEST_DATABASE_URL = "sqlite://"
TEST_ENCRYPTION_KEY = base64.urlsafe_b64encode(b"insightgen-test-key-000000000000").decode("ascii")
os.environ.setdefault("DATABASE_URL", TEST_DATABASE_URL)
os.environ.setdefault("CONNECTION_ENCRYPTION_KEY", TEST_ENCRYPTION_KEY)

from insightgen.config import Settings  # noqa: E402
from insightgen.database import Base, get_db  # noqa: E402
from insightgen.main import app  # noqa: E402
from insightgen.models import ClinicalOntologyConcept, Customer  # noqa: E402
from insightgen.services.connection_pool import DiscoveryConnectionPool  # noqa: E402
from insightgen.services.customer_directory import CustomerDirectory, encrypt_connection_string  # noqa: E402
from insightgen.services.discovery_orchestrator import DiscoveryOrchestrator  # noqa: E402

CUSTOMER_SCHEMAS = ("rpt", "dbo")


def _create_testing_engine():
    return create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )


@pytest.fixture(scope="session")
def engine():
    engine = _create_testing_engine()
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def session_factory(engine):
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)


@pytest.fixture()
def db_session(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


def make_customer_engine(directory: Path) -> Engine:
    """SQLite stand-in for a customer database with ``rpt`` and ``dbo`` schemas attached."""

    engine = create_engine(f"sqlite:///{directory / 'customer.db'}", future=True)

    @event.listens_for(engine, "connect")
    def _attach_schemas(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        for schema in CUSTOMER_SCHEMAS:
            cursor.execute(f"ATTACH DATABASE '{directory / (schema + '.db')}' AS {schema}")
        cursor.close()

    return engine


def build_customer_metadata(*, unique_wound_state: bool = True) -> MetaData:
    metadata = MetaData()
    Table(
        "Patient",
        metadata,
        Column("id", Integer, primary_key=True),
        Column("firstName", String(100)),
        schema="rpt",
    )
    Table(
        "Wound",
        metadata,
        Column("id", Integer, primary_key=True),
        Column("patientFk", Integer, ForeignKey("rpt.Patient.id")),
        Column("etiology", String(100)),
        schema="rpt",
    )
    Table(
        "Measurement",
        metadata,
        Column("id", Integer, primary_key=True),
        Column("woundFk", Integer, ForeignKey("rpt.Wound.id")),
        Column("area", Float),
        Column("depth", Float),
        Column("measurementDate", DateTime),
        schema="rpt",
    )
    wound_state_args = [UniqueConstraint("woundFk")] if unique_wound_state else []
    Table(
        "WoundState",
        metadata,
        Column("id", Integer, primary_key=True),
        Column("woundFk", Integer, ForeignKey("rpt.Wound.id")),
        Column("stateName", String(100)),
        *wound_state_args,
        schema="rpt",
    )
    Table(
        "AssessmentTypeVersion",
        metadata,
        Column("id", String(36), primary_key=True),
        Column("assessmentTypeId", String(36)),
        Column("name", String(200)),
        Column("definitionVersion", Integer),
        schema="rpt",
    )
    Table(
        "AttributeSet",
        metadata,
        Column("id", String(36), primary_key=True),
        Column("name", String(200)),
        Column("description", String(500)),
        Column("isDeleted", Integer, default=0),
        schema="dbo",
    )
    Table(
        "AttributeType",
        metadata,
        Column("id", String(36), primary_key=True),
        Column("attributeSetFk", String(36)),
        Column("name", String(200)),
        Column("variableName", String(200)),
        Column("dataType", Integer),
        Column("isDeleted", Integer, default=0),
        schema="dbo",
    )
    return metadata


def seed_customer_rows(customer_engine: Engine, metadata: MetaData) -> None:
    tables = metadata.tables
    with customer_engine.begin() as connection:
        connection.execute(
            tables["rpt.AssessmentTypeVersion"].insert(),
            [
                {"id": "v1", "assessmentTypeId": "at-1", "name": "Wound Assessment", "definitionVersion": 1},
                {"id": "v2", "assessmentTypeId": "at-1", "name": "Wound Assessment", "definitionVersion": 2},
                {"id": "v3", "assessmentTypeId": "at-2", "name": "Billing Form", "definitionVersion": 1},
                {"id": "v4", "assessmentTypeId": "at-3", "name": "Misc Checklist", "definitionVersion": 1},
            ],
        )
        connection.execute(
            tables["dbo.AttributeSet"].insert(),
            [
                {"id": "form-1", "name": "Wound Assessment", "description": "Weekly wound review", "isDeleted": 0},
                {"id": "form-2", "name": "Retired Form", "description": None, "isDeleted": 1},
            ],
        )
        connection.execute(
            tables["dbo.AttributeType"].insert(),
            [
                {
                    "id": "field-1",
                    "attributeSetFk": "form-1",
                    "name": "Etiology",
                    "variableName": "wound_etiology",
                    "dataType": 1000,
                    "isDeleted": 0,
                },
                {
                    "id": "field-2",
                    "attributeSetFk": "form-1",
                    "name": "Free Notes",
                    "variableName": "notes",
                    "dataType": 231,
                    "isDeleted": 0,
                },
            ],
        )


@pytest.fixture()
def customer_database(tmp_path: Path) -> Engine:
    customer_engine = make_customer_engine(tmp_path)
    metadata = build_customer_metadata()
    metadata.create_all(customer_engine)
    seed_customer_rows(customer_engine, metadata)
    yield customer_engine
    customer_engine.dispose()


@pytest.fixture()
def ontology(db_session: Session) -> list[ClinicalOntologyConcept]:
    concepts = [
        ClinicalOntologyConcept(
            concept_name="Wound Etiology",
            semantic_concept="wound_etiology",
            semantic_category="wound_classification",
            synonyms=["etiology", "wound type"],
            data_sources=["rpt.Wound.etiology"],
        ),
        ClinicalOntologyConcept(
            concept_name="Wound Area",
            semantic_concept="wound_area",
            semantic_category="measurement",
            synonyms=["area"],
            data_sources=[],
        ),
    ]
    db_session.add_all(concepts)
    db_session.commit()
    return concepts


@pytest.fixture()
def customer(db_session: Session) -> Customer:
    record = Customer(
        code="STMARYS",
        name="St Mary's Wound Clinic",
        db_connection_encrypted=encrypt_connection_string("sqlite:///customer.db", TEST_ENCRYPTION_KEY),
        is_active=True,
    )
    db_session.add(record)
    db_session.commit()
    db_session.refresh(record)
    return record


@pytest.fixture()
def encryption_key() -> str:
    return TEST_ENCRYPTION_KEY


@pytest.fixture()
def test_settings() -> Settings:
    return Settings(DATABASE_URL=TEST_DATABASE_URL, CONNECTION_ENCRYPTION_KEY=TEST_ENCRYPTION_KEY)


@pytest.fixture()
def pools() -> list[DiscoveryConnectionPool]:
    return []


@pytest.fixture()
def orchestrator(session_factory, customer_database, test_settings, pools) -> DiscoveryOrchestrator:
    def pool_factory() -> DiscoveryConnectionPool:
        pool = DiscoveryConnectionPool(engine_factory=lambda url: customer_database)
        pools.append(pool)
        return pool

    return DiscoveryOrchestrator(
        session_factory,
        directory=CustomerDirectory(session_factory, encryption_key=TEST_ENCRYPTION_KEY),
        pool_factory=pool_factory,
        settings=test_settings,
    )


class PrefixedTestClient(TestClient):
    api_prefix = "/api"

    def request(self, method: str, url: str, *args, **kwargs):  # type: ignore[override]
        if url.startswith("/") and not url.startswith("/health"):
            url = f"{self.api_prefix}{url}"
        return super().request(method, url, *args, **kwargs)


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db

    client = PrefixedTestClient(app)
    try:
        yield client
    finally:
        app.dependency_overrides.pop(get_db, None)
