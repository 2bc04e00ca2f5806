import pytest
from cryptography.fernet import Fernet
from sqlalchemy import create_engine

from insightgen.models import Customer
from insightgen.services.connection_pool import DiscoveryConnectionPool
from insightgen.services.customer_directory import (
    ConnectionStringUnavailableError,
    CustomerDirectory,
    CustomerNotFoundError,
    encrypt_connection_string,
    normalize_customer_code,
)


def test_normalize_customer_code():
    assert normalize_customer_code("  stMarys ") == "STMARYS"
    assert normalize_customer_code(None) == ""


def test_get_customer_is_case_insensitive(session_factory, customer, encryption_key):
    directory = CustomerDirectory(session_factory, encryption_key=encryption_key)

    found = directory.get_customer("stmarys")

    assert found.id == customer.id
    assert found.name == "St Mary's Wound Clinic"


def test_get_customer_ignores_inactive_customers(session_factory, db_session, encryption_key):
    db_session.add(Customer(code="CLOSED", name="Closed clinic", is_active=False))
    db_session.commit()
    directory = CustomerDirectory(session_factory, encryption_key=encryption_key)

    with pytest.raises(CustomerNotFoundError, match="CLOSED"):
        directory.get_customer("closed")


def test_blank_customer_code_is_rejected(session_factory, encryption_key):
    directory = CustomerDirectory(session_factory, encryption_key=encryption_key)

    with pytest.raises(CustomerNotFoundError):
        directory.get_customer("   ")


def test_connection_string_is_decrypted(session_factory, customer, encryption_key):
    directory = CustomerDirectory(session_factory, encryption_key=encryption_key)

    assert directory.get_connection_string("STMARYS") == "sqlite:///customer.db"


def test_connection_string_with_wrong_key_is_unavailable(session_factory, customer):
    directory = CustomerDirectory(session_factory, encryption_key=Fernet.generate_key().decode("ascii"))

    with pytest.raises(ConnectionStringUnavailableError, match="could not be decrypted"):
        directory.get_connection_string("STMARYS")


def test_invalid_encryption_key_is_reported():
    with pytest.raises(ConnectionStringUnavailableError, match="invalid"):
        encrypt_connection_string("sqlite://", "not-a-fernet-key")


def test_pool_reuses_engine_per_connection_string():
    created = []

    def factory(url):
        engine = create_engine(url)
        created.append(engine)
        return engine

    pool = DiscoveryConnectionPool(engine_factory=factory)

    first = pool.acquire("sqlite://")
    second = pool.acquire("sqlite://")

    assert first is second
    assert len(created) == 1


def test_pool_close_is_idempotent_and_blocks_acquire():
    with DiscoveryConnectionPool(engine_factory=lambda url: create_engine(url)) as pool:
        pool.acquire("sqlite://")

    assert pool.closed
    pool.close()

    with pytest.raises(RuntimeError, match="already been closed"):
        pool.acquire("sqlite://")
