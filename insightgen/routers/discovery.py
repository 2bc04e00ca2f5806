from __future__ import annotations

import json
import logging
import queue
import threading
from typing import Iterator

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from insightgen.database import get_db
from insightgen.schemas import DiscoveryRunHistoryRead, DiscoveryRunResultRead, DiscoveryStageSelection
from insightgen.services.connection_resolver import UnsupportedConnectionError
from insightgen.services.customer_directory import ConnectionStringUnavailableError, CustomerNotFoundError
from insightgen.services.discovery_orchestrator import (
    DiscoveryInProgressError,
    DiscoveryOrchestrator,
    DiscoveryProgressEvent,
    DiscoveryRunResult,
    DiscoveryRunSummary,
    discovery_orchestrator,
)

router = APIRouter(prefix="/customers/{customer_code}/discovery", tags=["Discovery"])

logger = logging.getLogger(__name__)

_CONFIGURATION_ERRORS = (CustomerNotFoundError, ConnectionStringUnavailableError, UnsupportedConnectionError)
_RUN_REFUSED_ERRORS = (*_CONFIGURATION_ERRORS, DiscoveryInProgressError)

_STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def get_discovery_orchestrator() -> DiscoveryOrchestrator:
    return discovery_orchestrator


def _translate_configuration_error(exc: Exception) -> HTTPException:
    if isinstance(exc, CustomerNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, (ConnectionStringUnavailableError, UnsupportedConnectionError)):
        return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))


def _serialize_result(result: DiscoveryRunResult) -> DiscoveryRunResultRead:
    payload = {
        "status": result.status,
        "customerId": result.customer_id,
        "runId": result.run_id,
        "startedAt": result.started_at,
        "completedAt": result.completed_at,
        "durationSeconds": result.duration_seconds,
        "summary": result.summary.as_dict() if result.summary else None,
        "warnings": result.warnings,
        "errors": result.errors,
        "error": result.error,
    }
    return DiscoveryRunResultRead(**payload)


def _serialize_history(run: DiscoveryRunSummary) -> DiscoveryRunHistoryRead:
    return DiscoveryRunHistoryRead.model_validate(run)


def _format_event(payload: dict) -> str:
    return f"data: {json.dumps(payload, default=str)}\n\n"


@router.post("", response_model=DiscoveryRunResultRead)
def run_customer_discovery(
    customer_code: str,
    selection: DiscoveryStageSelection | None = None,
    orchestrator: DiscoveryOrchestrator = Depends(get_discovery_orchestrator),
) -> DiscoveryRunResultRead:
    options = (selection or DiscoveryStageSelection()).to_options()
    try:
        result = orchestrator.run_discovery(customer_code, options)
    except _RUN_REFUSED_ERRORS as exc:
        raise _translate_configuration_error(exc) from exc
    return _serialize_result(result)


@router.post("/stream")
def stream_customer_discovery(
    customer_code: str,
    selection: DiscoveryStageSelection | None = None,
    orchestrator: DiscoveryOrchestrator = Depends(get_discovery_orchestrator),
) -> StreamingResponse:
    try:
        orchestrator.ensure_configured(customer_code)
    except _CONFIGURATION_ERRORS as exc:
        raise _translate_configuration_error(exc) from exc

    options = (selection or DiscoveryStageSelection()).to_options()
    events: queue.Queue[dict | None] = queue.Queue()

    def sink(event: DiscoveryProgressEvent) -> None:
        events.put(event.as_payload())

    def worker() -> None:
        try:
            orchestrator.run_discovery_with_progress(customer_code, sink, options)
        except _RUN_REFUSED_ERRORS as exc:
            events.put({"type": "complete", "status": "failed", "error": str(exc)})
        except Exception as exc:
            logger.exception("Streaming discovery for %s failed", customer_code)
            events.put({"type": "complete", "status": "failed", "error": str(exc)})
        finally:
            events.put(None)

    def event_stream() -> Iterator[str]:
        thread = threading.Thread(target=worker, name=f"discovery-{customer_code}", daemon=True)
        thread.start()
        while True:
            payload = events.get()
            if payload is None:
                break
            yield _format_event(payload)
        thread.join()

    return StreamingResponse(event_stream(), media_type="text/event-stream", headers=_STREAM_HEADERS)


@router.get("/history", response_model=list[DiscoveryRunHistoryRead])
def read_discovery_history(
    customer_code: str,
    limit: int | None = Query(default=None, ge=1, le=100),
    db: Session = Depends(get_db),
    orchestrator: DiscoveryOrchestrator = Depends(get_discovery_orchestrator),
) -> list[DiscoveryRunHistoryRead]:
    try:
        runs = orchestrator.get_discovery_history(customer_code, limit, session=db)
    except CustomerNotFoundError as exc:
        raise _translate_configuration_error(exc) from exc
    return [_serialize_history(run) for run in runs]
