from __future__ import annotations

from typing import Callable

from cryptography.fernet import Fernet, InvalidToken
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from insightgen.config import get_settings
from insightgen.database import SessionLocal
from insightgen.models import Customer


class CustomerNotFoundError(LookupError):
    """Raised when no active customer matches the supplied code."""


class ConnectionStringUnavailableError(ValueError):
    """Raised when a customer has no usable (decryptable) connection string."""


def normalize_customer_code(code: str) -> str:
    return (code or "").strip().upper()


def _build_fernet(key: str | None) -> Fernet:
    if not key:
        raise ConnectionStringUnavailableError("Connection encryption key is not configured.")
    try:
        return Fernet(key.encode("utf-8") if isinstance(key, str) else key)
    except (ValueError, TypeError) as exc:
        raise ConnectionStringUnavailableError("Connection encryption key is invalid.") from exc


def encrypt_connection_string(plain_text: str, key: str | None = None) -> str:
    fernet = _build_fernet(key if key is not None else get_settings().connection_encryption_key)
    return fernet.encrypt(plain_text.encode("utf-8")).decode("utf-8")


class CustomerDirectory:
    """Look up customers and their decrypted analytical database connection strings."""

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        encryption_key: str | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._encryption_key = encryption_key

    def get_customer(self, code: str, *, session: Session | None = None) -> Customer:
        normalized = normalize_customer_code(code)
        if not normalized:
            raise CustomerNotFoundError("Customer code is required")

        if session is not None:
            return self._load_customer(session, normalized)
        with self._session_factory() as managed:
            customer = self._load_customer(managed, normalized)
            managed.expunge(customer)
            return customer

    def get_connection_string(self, code: str, *, session: Session | None = None) -> str:
        customer = self.get_customer(code, session=session)
        encrypted = (customer.db_connection_encrypted or "").strip()
        if not encrypted:
            raise ConnectionStringUnavailableError(
                f"Customer {customer.code} does not have a database connection configured"
            )

        key = self._encryption_key or get_settings().connection_encryption_key
        fernet = _build_fernet(key)
        try:
            return fernet.decrypt(encrypted.encode("utf-8")).decode("utf-8")
        except InvalidToken as exc:
            raise ConnectionStringUnavailableError(
                f"Connection string for customer {customer.code} could not be decrypted"
            ) from exc

    @staticmethod
    def _load_customer(session: Session, normalized_code: str) -> Customer:
        stmt = select(Customer).where(
            func.upper(Customer.code) == normalized_code,
            Customer.is_active.is_(True),
        )
        customer = session.execute(stmt).scalars().first()
        if customer is None:
            raise CustomerNotFoundError(f"Customer not found: {normalized_code}")
        return customer


__all__ = [
    "ConnectionStringUnavailableError",
    "CustomerDirectory",
    "CustomerNotFoundError",
    "encrypt_connection_string",
    "normalize_customer_code",
]
