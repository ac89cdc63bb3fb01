"""HTTP route definitions for the service."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from fastapi.responses import PlainTextResponse
from starlette.concurrency import run_in_threadpool

from app.schemas import HealthResponse, IngesterStatus
from models.errors import DecodeError, StoreCorrupted, TimeParseError, UnknownModel
from models.records import TimeWindow
from services.ingest_service import IngestService, build_default_service
from services.sinks import WriteOutcome

logger = logging.getLogger(__name__)

router = APIRouter()


def get_service() -> IngestService:
    return build_default_service()


async def _ingest(request: Request, service: IngestService, model: Optional[str]) -> str:
    body = await request.body()
    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Request body is not valid JSON.",
        ) from exc

    try:
        record, outcome = await run_in_threadpool(service.ingest_payload, payload, model)
    except (DecodeError, UnknownModel) as exc:
        logger.warning("Rejected posted record: %s", exc, extra={"model": model})
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except TimeParseError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(exc),
        ) from exc

    if outcome is not WriteOutcome.written:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Sink write failed; record {outcome.value}.",
        )
    logger.debug("Stored posted record", extra={"model": record.model})
    return "OK"


@router.get(
    "/",
    summary="Liveness check.",
    status_code=status.HTTP_200_OK,
    response_class=Response,
)
async def root() -> Response:
    return Response(status_code=status.HTTP_200_OK)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service and ingester health.",
)
async def healthcheck(service: IngestService = Depends(get_service)) -> HealthResponse:
    ingester = IngesterStatus(**service.health.snapshot())
    return HealthResponse(
        status="ok" if service.health.healthy else "degraded",
        ingester=ingester,
    )


@router.post(
    "/readings",
    response_class=PlainTextResponse,
    summary="Ingest one reading from a non-streaming sensor.",
)
async def post_reading(
    request: Request,
    service: IngestService = Depends(get_service),
) -> str:
    return await _ingest(request, service, model=None)


@router.post(
    "/loc1/{model}",
    response_class=PlainTextResponse,
    summary="Ingest one reading whose model must match the path.",
)
async def post_model_reading(
    model: str,
    request: Request,
    service: IngestService = Depends(get_service),
) -> str:
    return await _ingest(request, service, model=model)


@router.get(
    "/latest",
    summary="Most recent record per model since startup.",
)
def get_latest(service: IngestService = Depends(get_service)) -> List[Dict[str, Any]]:
    snapshot = service.latest.snapshot()
    return [snapshot[model].to_payload() for model in sorted(snapshot)]


@router.get(
    "/readings",
    summary="Stored records near a time window (nearest-timestamp bracketing).",
)
def get_readings(
    start: Optional[float] = Query(None, description="Window start, epoch seconds."),
    end: Optional[float] = Query(None, description="Window end, epoch seconds."),
    exact: bool = Query(False, description="Use an exact inclusive range instead."),
    service: IngestService = Depends(get_service),
) -> List[Dict[str, Any]]:
    if (start is None) != (end is None):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Both start and end are required for a windowed read.",
        )

    window = None
    if start is not None and end is not None:
        try:
            window = TimeWindow(start=start, end=end)
        except ValueError as exc:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=str(exc),
            ) from exc

    try:
        records = service.query.query(window, exact=exact)
    except StoreCorrupted as exc:
        logger.error("Query aborted: %s", exc, extra={"line_number": exc.line_number})
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(exc),
        ) from exc
    return [record.to_payload() for record in records]
