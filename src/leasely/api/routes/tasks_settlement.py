"""Worker routes for scheduled settlement batches.

Cloud Scheduler (or any cron) POSTs here once per stage and interval. Each
call runs one complete, bounded batch and returns its summary.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError

from leasely.api.task_auth import verify_task_auth
from leasely.domain.cancellation import BookingNotFoundError
from leasely.domain.ports import DataIntegrityError
from leasely.infra.time import utc_now
from leasely.observability.correlation import get_correlation_id
from leasely.observability.logging import get_logger
from leasely.observability.redaction import safe_log_context
from leasely.settlement.deps import SettlementDeps, default_deps
from leasely.settlement.out_of_stock import cancel_out_of_stock_bookings
from leasely.settlement.stages import STAGES, run_stage

router = APIRouter(tags=["tasks"])

logger = get_logger(__name__)


class RunStageRequest(BaseModel):
    # Override of the batch clock, for replays and tests.
    now: datetime | None = None


class CancelOutOfStockRequest(BaseModel):
    booking_id: str
    now: datetime | None = None


def get_deps() -> SettlementDeps:
    return default_deps()


def _resolve_now(now: datetime | None) -> datetime:
    if now is None:
        return utc_now()
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now


async def _read_body(request: Request, model: type[BaseModel]) -> BaseModel | JSONResponse:
    correlation_id = get_correlation_id()
    try:
        raw = await request.body()
        payload: Any = await request.json() if raw else {}
    except Exception:
        logger.warning(
            "invalid json body",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return JSONResponse(status_code=400, content={"ok": False, "error": "invalid json"})

    try:
        return model.model_validate(payload)
    except ValidationError as e:
        logger.warning(
            "invalid task payload",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=correlation_id,
                    errors=e.error_count(),
                )
            },
        )
        return JSONResponse(status_code=400, content={"ok": False, "error": "invalid payload"})


def _require_auth(request: Request) -> None:
    if not verify_task_auth(request):
        logger.warning(
            "task auth failed",
            extra={"extra_fields": safe_log_context(correlationId=get_correlation_id())},
        )
        raise HTTPException(status_code=401, detail="Unauthorized")


@router.post("/tasks/settlement/{stage}")
async def handle_run_stage(stage: str, request: Request) -> JSONResponse:
    """Run one settlement stage (expire, payin, transfer, payout, reversal, deposit).

    Per-booking failures are part of the 200 summary; only a failure of the
    batch itself (e.g. the bulk read) returns 500 so the scheduler retries.
    """
    _require_auth(request)

    if stage not in STAGES:
        return JSONResponse(status_code=404, content={"ok": False, "error": "unknown stage"})

    body = await _read_body(request, RunStageRequest)
    if isinstance(body, JSONResponse):
        return body

    now = _resolve_now(body.now)
    correlation_id = get_correlation_id()

    try:
        summary = run_stage(stage, now, get_deps())
    except Exception:
        logger.exception(
            "settlement batch failed",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id, stage=stage)},
        )
        return JSONResponse(status_code=500, content={"ok": False, "error": "processing failed"})

    return JSONResponse(status_code=200, content={"ok": True, **summary.to_dict()})


@router.post("/tasks/bookings/cancel-out-of-stock")
async def handle_cancel_out_of_stock(request: Request) -> JSONResponse:
    """Cancel pending bookings crowded out by a newly accepted and paid booking."""
    _require_auth(request)

    body = await _read_body(request, CancelOutOfStockRequest)
    if isinstance(body, JSONResponse):
        return body

    correlation_id = get_correlation_id()

    try:
        summary = cancel_out_of_stock_bookings(
            body.booking_id,
            now=_resolve_now(body.now),
            deps=get_deps(),
        )
    except BookingNotFoundError:
        return JSONResponse(status_code=404, content={"ok": False, "error": "booking not found"})
    except DataIntegrityError as e:
        logger.error(
            "out-of-stock sweep integrity error",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=correlation_id,
                    booking_id=body.booking_id,
                    error=e,
                )
            },
        )
        return JSONResponse(status_code=500, content={"ok": False, "error": "integrity error"})
    except Exception:
        logger.exception(
            "out-of-stock sweep failed",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return JSONResponse(status_code=500, content={"ok": False, "error": "processing failed"})

    return JSONResponse(status_code=200, content={"ok": True, **summary.to_dict()})
