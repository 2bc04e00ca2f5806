from __future__ import annotations

from urllib.parse import parse_qsl, urlparse

from sqlalchemy.engine import URL, make_url
from sqlalchemy.exc import ArgumentError


class UnsupportedConnectionError(ValueError):
    """Raised when a customer connection string cannot be converted into an SQLAlchemy URL."""


_SUPPORTED_JDBC_DIALECTS: dict[str, str] = {
    "postgresql": "postgresql+psycopg",
    "sqlserver": "mssql+pyodbc",
    "mssql": "mssql+pyodbc",
}

_SQLSERVER_DRIVER = "ODBC Driver 18 for SQL Server"

_ADO_KEY_ALIASES: dict[str, str] = {
    "server": "host",
    "data source": "host",
    "address": "host",
    "addr": "host",
    "network address": "host",
    "database": "database",
    "initial catalog": "database",
    "user id": "username",
    "uid": "username",
    "user": "username",
    "password": "password",
    "pwd": "password",
    "trustservercertificate": "TrustServerCertificate",
    "encrypt": "Encrypt",
}


def resolve_sqlalchemy_url(connection_string: str) -> URL:
    """Convert a customer connection string into an SQLAlchemy URL.

    Accepts JDBC URLs, ADO.NET style ``Key=Value;`` strings for SQL Server and
    plain SQLAlchemy URLs.
    """

    raw = (connection_string or "").strip()
    if not raw:
        raise UnsupportedConnectionError("Connection string is empty.")

    if raw.startswith("jdbc:"):
        return _convert_jdbc_to_sqlalchemy_url(raw)
    if "://" in raw:
        try:
            return make_url(raw)
        except ArgumentError as exc:
            raise UnsupportedConnectionError(f"Invalid connection URL: {exc}") from exc
    if "=" in raw:
        return _convert_ado_to_sqlalchemy_url(raw)
    raise UnsupportedConnectionError("Unrecognised connection string format.")


def _convert_jdbc_to_sqlalchemy_url(connection_string: str) -> URL:
    raw_url = connection_string[len("jdbc:") :]
    parsed = urlparse(raw_url)

    if not parsed.scheme:
        raise UnsupportedConnectionError("JDBC connection string is missing a database dialect.")

    dialect = parsed.scheme.lower()
    if dialect not in _SUPPORTED_JDBC_DIALECTS:
        raise UnsupportedConnectionError(
            f"Unsupported JDBC dialect '{parsed.scheme}'. Supported dialects: {', '.join(sorted(_SUPPORTED_JDBC_DIALECTS))}."
        )

    drivername = _SUPPORTED_JDBC_DIALECTS[dialect]

    if not parsed.hostname:
        raise UnsupportedConnectionError("Connection string must include a hostname.")

    database = parsed.path.lstrip("/") if parsed.path else None
    if not database:
        raise UnsupportedConnectionError("Connection string must include a database name.")

    query_pairs = parse_qsl(parsed.query, keep_blank_values=True)
    query: dict[str, str] | None = dict(query_pairs) if query_pairs else None

    if drivername.startswith("mssql+pyodbc"):
        query = _with_sqlserver_defaults(query)

    return URL.create(
        drivername=drivername,
        username=parsed.username,
        password=parsed.password,
        host=parsed.hostname,
        port=parsed.port,
        database=database,
        query=query,
    )


def _convert_ado_to_sqlalchemy_url(connection_string: str) -> URL:
    values: dict[str, str] = {}
    for segment in connection_string.split(";"):
        if not segment.strip() or "=" not in segment:
            continue
        key, value = segment.split("=", 1)
        alias = _ADO_KEY_ALIASES.get(key.strip().lower())
        if alias:
            values[alias] = value.strip()

    server = values.get("host")
    if not server:
        raise UnsupportedConnectionError("Connection string must include a server.")
    database = values.get("database")
    if not database:
        raise UnsupportedConnectionError("Connection string must include a database name.")

    if server.lower().startswith("tcp:"):
        server = server[4:]
    host, port = server, None
    if "," in server:
        host, raw_port = server.split(",", 1)
        try:
            port = int(raw_port.strip())
        except ValueError as exc:
            raise UnsupportedConnectionError(f"Invalid server port '{raw_port}'.") from exc

    query = {
        key: values[key]
        for key in ("TrustServerCertificate", "Encrypt")
        if key in values
    }

    return URL.create(
        drivername="mssql+pyodbc",
        username=values.get("username"),
        password=values.get("password"),
        host=host.strip(),
        port=port,
        database=database,
        query=_with_sqlserver_defaults(query),
    )


def _with_sqlserver_defaults(query: dict[str, str] | None) -> dict[str, str]:
    query = dict(query or {})
    query.setdefault("TrustServerCertificate", "yes")
    query.setdefault("driver", _SQLSERVER_DRIVER)
    return query
