from __future__ import annotations

import logging
from typing import Callable

from sqlalchemy import create_engine
from sqlalchemy.engine import URL, Engine

from insightgen.services.connection_resolver import resolve_sqlalchemy_url

logger = logging.getLogger(__name__)

EngineFactory = Callable[[URL], Engine]


def _default_engine_factory(url: URL) -> Engine:
    return create_engine(url, pool_pre_ping=True, future=True)


class DiscoveryConnectionPool:
    """Engines opened against customer databases for the lifetime of one discovery run.

    Engines are cached by connection string so every stage of a run shares the
    same connection pool. ``close`` disposes every engine and may be called more
    than once; acquiring after close raises ``RuntimeError``.
    """

    def __init__(self, engine_factory: EngineFactory | None = None) -> None:
        self._engine_factory = engine_factory or _default_engine_factory
        self._engines: dict[str, Engine] = {}
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def acquire(self, connection_string: str) -> Engine:
        if self._closed:
            raise RuntimeError("Discovery connection pool has already been closed")
        engine = self._engines.get(connection_string)
        if engine is None:
            url = resolve_sqlalchemy_url(connection_string)
            engine = self._engine_factory(url)
            self._engines[connection_string] = engine
            logger.debug("Opened discovery engine for %s", url.render_as_string(hide_password=True))
        return engine

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        engines = list(self._engines.values())
        self._engines.clear()
        for engine in engines:
            engine.dispose()
        logger.debug("Closed discovery connection pool (%d engine(s))", len(engines))

    def __enter__(self) -> "DiscoveryConnectionPool":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
