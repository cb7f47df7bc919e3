# Author: Bradley R. Kinnard — the app's pulse check

"""Health endpoint with actual connectivity checks. Also /metrics."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Request, Response

from src.criticode.adapters.database import ping_db
from src.criticode.adapters.metrics_client import get_metrics
from src.criticode.adapters.redis_client import ping_redis
from src.criticode.api.schemas import HealthResponse
from src.criticode.config import settings
from src.criticode.services.ai_invoker import AIInvoker, get_invoker

router = APIRouter(tags=["health"])
log = logging.getLogger(__name__)


@router.get(settings.health_path, response_model=HealthResponse)
async def health_check(request: Request, invoker: Annotated[AIInvoker, Depends(get_invoker)]) -> HealthResponse:
    """db, redis and whether we can reach the AI at all"""
    rid = getattr(request.state, "request_id", "unknown")

    db_status = await ping_db()
    redis_status = await ping_redis()
    ai_status = "configured" if invoker.configured else "not_configured"

    # ok or skipped counts as healthy, no API key means we can't do the one thing we're for
    all_ok = db_status == "ok" and redis_status in ("ok", "skipped") and invoker.configured

    log.info(f"health | db={db_status} redis={redis_status} ai={ai_status}")

    return HealthResponse(
        status="ok" if all_ok else "degraded",
        request_id=rid,
        ai=ai_status,
        database=db_status,
        redis=redis_status,
    )


@router.get("/metrics")
async def metrics() -> Response:
    """prometheus metrics endpoint"""
    return Response(content=get_metrics(), media_type="text/plain; charset=utf-8")
