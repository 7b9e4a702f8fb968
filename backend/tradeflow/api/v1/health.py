from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from tradeflow.ai.quota_manager import QuotaManager
from tradeflow.config import settings
from tradeflow.dependencies import get_db, get_quota_manager
from tradeflow.schemas.health import HealthResponse, QuotaStatusResponse

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request, db: AsyncSession = Depends(get_db)) -> HealthResponse:
    db_status = "healthy"
    try:
        await db.execute(text("SELECT 1"))
    except Exception:
        db_status = "unhealthy"

    queue = getattr(request.app.state, "processing_queue", None)
    queue_status = queue.status() if queue is not None else None
    worker_ok = queue_status is None or queue_status["running"]

    overall = "healthy" if db_status == "healthy" and worker_ok else "degraded"
    return HealthResponse(
        message=f"Service is {overall}",
        status=overall,
        database=db_status,
        processing_queue=queue_status,
        timestamp=datetime.now(timezone.utc),
        environment=settings.environment,
        version="1.0.0",
    )


@router.get("/health/quota", response_model=QuotaStatusResponse)
async def quota_status(quota: QuotaManager = Depends(get_quota_manager)) -> QuotaStatusResponse:
    return QuotaStatusResponse(
        message="Quota status retrieved",
        providers=quota.get_quota_status(),
        best_available={
            "ocr": quota.get_best_available_service("ocr"),
            "compliance": quota.get_best_available_service("compliance"),
        },
    )
