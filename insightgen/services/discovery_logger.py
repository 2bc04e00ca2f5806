from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal, Mapping
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from insightgen.models import CustomerDiscoveryRun, DiscoveryLog, utcnow

logger = logging.getLogger(__name__)

DiscoveryLogLevel = Literal["debug", "info", "warn", "error"]

_PYTHON_LEVELS: dict[str, int] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


@dataclass(frozen=True)
class DiscoveryLogEntry:
    level: DiscoveryLogLevel
    stage: str
    component: str
    message: str
    metadata: Mapping[str, Any] | None = None
    duration_ms: int | None = None
    logged_at: datetime = field(default_factory=utcnow)


class DiscoveryLogger:
    """Collect structured log entries for one discovery run.

    Every entry is mirrored to the module logger straight away; ``persist``
    writes the collected entries to the ``discovery_logs`` table at the end of
    the run.
    """

    def __init__(self, run_id: UUID | None = None) -> None:
        self.run_id = run_id
        self._entries: list[DiscoveryLogEntry] = []
        self._timers: dict[str, float] = {}

    def debug(self, stage: str, component: str, message: str, metadata: Mapping[str, Any] | None = None) -> None:
        self._log("debug", stage, component, message, metadata)

    def info(self, stage: str, component: str, message: str, metadata: Mapping[str, Any] | None = None) -> None:
        self._log("info", stage, component, message, metadata)

    def warn(self, stage: str, component: str, message: str, metadata: Mapping[str, Any] | None = None) -> None:
        self._log("warn", stage, component, message, metadata)

    def error(self, stage: str, component: str, message: str, metadata: Mapping[str, Any] | None = None) -> None:
        self._log("error", stage, component, message, metadata)

    def start_timer(self, operation_id: str) -> None:
        self._timers[operation_id] = time.perf_counter()

    def end_timer(
        self,
        operation_id: str,
        stage: str,
        component: str,
        message: str,
        metadata: Mapping[str, Any] | None = None,
    ) -> int:
        started = self._timers.pop(operation_id, None)
        duration_ms = int((time.perf_counter() - started) * 1000) if started is not None else 0
        self._log("info", stage, component, message, metadata, duration_ms=duration_ms)
        return duration_ms

    @property
    def entries(self) -> list[DiscoveryLogEntry]:
        return list(self._entries)

    def entries_for_stage(self, stage: str) -> list[DiscoveryLogEntry]:
        return [entry for entry in self._entries if entry.stage == stage]

    def summary(self) -> dict[str, int]:
        counts = {level: 0 for level in _PYTHON_LEVELS}
        for entry in self._entries:
            counts[entry.level] += 1
        counts["total"] = len(self._entries)
        return counts

    def persist(self, session: Session) -> int:
        if self.run_id is None or not self._entries:
            return 0
        session.add_all(
            DiscoveryLog(
                discovery_run_id=self.run_id,
                level=entry.level,
                stage=entry.stage,
                component=entry.component,
                message=entry.message,
                payload=dict(entry.metadata) if entry.metadata else None,
                duration_ms=entry.duration_ms,
                logged_at=entry.logged_at,
            )
            for entry in self._entries
        )
        session.flush()
        return len(self._entries)

    def _log(
        self,
        level: DiscoveryLogLevel,
        stage: str,
        component: str,
        message: str,
        metadata: Mapping[str, Any] | None,
        *,
        duration_ms: int | None = None,
    ) -> None:
        self._entries.append(
            DiscoveryLogEntry(
                level=level,
                stage=stage,
                component=component,
                message=message,
                metadata=metadata,
                duration_ms=duration_ms,
            )
        )
        logger.log(_PYTHON_LEVELS[level], "[%s/%s] %s", stage, component, message)


def prune_discovery_logs(session: Session, customer_id: UUID, keep_runs: int = 5) -> int:
    """Delete detailed logs of all but the ``keep_runs`` most recent runs for a customer."""

    recent_ids = (
        session.execute(
            select(CustomerDiscoveryRun.id)
            .where(CustomerDiscoveryRun.customer_id == customer_id)
            .order_by(CustomerDiscoveryRun.started_at.desc())
            .limit(keep_runs)
        )
        .scalars()
        .all()
    )
    customer_run_ids = select(CustomerDiscoveryRun.id).where(CustomerDiscoveryRun.customer_id == customer_id)
    stmt = delete(DiscoveryLog).where(DiscoveryLog.discovery_run_id.in_(customer_run_ids))
    if recent_ids:
        stmt = stmt.where(DiscoveryLog.discovery_run_id.not_in(recent_ids))
    result = session.execute(stmt.execution_options(synchronize_session=False))
    return result.rowcount or 0


__all__ = [
    "DiscoveryLogEntry",
    "DiscoveryLogger",
    "prune_discovery_logs",
]
