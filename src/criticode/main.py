# Author: Bradley R. Kinnard — because code doesn't critique itself.

"""
AI code review backend. Paste code or upload a file, get security, performance,
best-practice and refactoring findings back. Signed-in callers keep a history.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator
import logging
import uuid

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
import uvicorn
from src.criticode.adapters.database import close_db, init_db
from src.criticode.adapters.llm_client import close_llm
from src.criticode.adapters.redis_client import close_redis
from src.criticode.api.dependencies import client_ip
from src.criticode.api.error_handlers import app_error_response, handle_unexpected, install_error_handlers
from src.criticode.api.routes_auth import router as auth_router
from src.criticode.api.routes_health import router as health_router
from src.criticode.api.routes_review import router as review_router
from src.criticode.api.routes_reviews import router as reviews_router
from src.criticode.config import settings
from src.criticode.core.rate_limiter import GENERAL, get_rate_limiter, ip_key, rate_limit_error
from src.criticode.logging_config import bind_request, setup_logging

logger = logging.getLogger(__name__)

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    setup_logging(level=settings.log_level)
    await init_db()
    logger.info(f"Service started ({settings.environment}); waiting for requests")
    yield
    logger.info("Shutdown signal received; wrapping up")
    await close_llm()
    await close_redis()
    await close_db()


app = FastAPI(
    title="Criticode",
    version="0.1.0",
    lifespan=lifespan
)

install_error_handlers(app)


# middleware added last runs first: request id wraps everything below it

@app.middleware("http")
async def catch_unexpected(request: Request, call_next):
    """innermost. a crash still goes out through request id, headers and CORS"""
    try:
        return await call_next(request)
    except Exception as e:
        return await handle_unexpected(request, e)


@app.middleware("http")
async def general_rate_limit(request: Request, call_next):
    """catch-all per-address budget. health checks don't count."""
    result = await get_rate_limiter().check(GENERAL, ip_key(client_ip(request)), request.url.path)
    if not result.allowed:
        return app_error_response(request, rate_limit_error(GENERAL, result))
    response = await call_next(request)
    if not result.skipped:
        # route-level limits already set theirs, those are the tighter ones
        for name, value in result.headers().items():
            response.headers.setdefault(name, value)
    return response


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    for name, value in SECURITY_HEADERS.items():
        response.headers.setdefault(name, value)
    return response


@app.middleware("http")
async def inject_request_id(request: Request, call_next):
    # LB might send one, otherwise make it up
    rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = rid
    bind_request(rid, request.method, request.url.path)  # push to structlog context
    response = await call_next(request)
    response.headers["X-Request-ID"] = rid
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
    expose_headers=["X-Request-ID", "RateLimit-Limit", "RateLimit-Remaining", "RateLimit-Reset", "Retry-After"],
)


app.include_router(health_router)
app.include_router(review_router, prefix="/api")
app.include_router(reviews_router, prefix="/api")
app.include_router(auth_router, prefix="/api")


if __name__ == "__main__":
    uvicorn.run("src.criticode.main:app", host="0.0.0.0", port=8000, reload=True)
