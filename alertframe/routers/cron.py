"""Sweep trigger endpoint, called by the worker or an external cron service."""
import hmac
import logging
import time

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from ..config import settings
from ..schemas.sweep import SweepDetail, SweepResponse, SweepSummary
from ..services.scheduler import SchedulerService, scheduler_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cron", tags=["cron"])


def get_scheduler() -> SchedulerService:
    """Dependency returning the scheduler that runs sweeps."""
    return scheduler_service


def _is_authorized(request: Request) -> bool:
    """Require ``Authorization: Bearer <CRON_SECRET>`` when a secret is configured."""
    if not settings.cron_secret:
        return True
    header = request.headers.get("authorization", "")
    return hmac.compare_digest(header.encode(), f"Bearer {settings.cron_secret}".encode())


@router.api_route(
    "/check-alerts",
    methods=["GET", "POST"],
    response_model=SweepResponse,
    response_model_exclude_none=True,
)
async def check_alerts(request: Request, scheduler: SchedulerService = Depends(get_scheduler)):
    """Run one sweep over all due alerts and report the outcome."""
    if not _is_authorized(request):
        logger.warning("Unauthorized sweep request")
        return JSONResponse(status_code=401, content={"error": "Unauthorized"})

    started = time.monotonic()
    try:
        sweep = await scheduler.run_sweep()
    except Exception as e:
        duration = int((time.monotonic() - started) * 1000)
        logger.error(f"Sweep failed after {duration}ms: {e}")
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "error": "Sweep failed",
                "message": str(e),
                "duration": duration,
            },
        )

    return SweepResponse(
        success=True,
        timestamp=sweep.timestamp.isoformat() + "Z",
        summary=SweepSummary(
            alerts_checked=sweep.checked,
            changes_detected=sweep.changed,
            errors=sweep.errors,
        ),
        details=[
            SweepDetail(
                alert_id=detail.alert_id,
                title=detail.title,
                change_detected=None if detail.error else detail.change_detected,
                error=detail.error,
            )
            for detail in sweep.details
        ],
        duration=sweep.duration_ms,
    )
