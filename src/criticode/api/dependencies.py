# Author: Bradley R. Kinnard — gatekeepers

"""FastAPI dependencies for identity, rate limiting, caller address."""

import logging
from typing import Annotated

from fastapi import Depends, Header, Request

from src.criticode.config import settings
from src.criticode.core.identity import IdentityResolver, get_identity_resolver
from src.criticode.core.models import Identity
from src.criticode.core.rate_limiter import AUTH, AUTHENTICATED_REVIEW, RateLimiter, get_rate_limiter, ip_key, user_key

log = logging.getLogger(__name__)


def client_ip(request: Request) -> str:
    """socket peer, or the first X-Forwarded-For hop if we sit behind a proxy we trust"""
    if settings.trust_proxy:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


async def optional_identity(
    resolver: Annotated[IdentityResolver, Depends(get_identity_resolver)],
    authorization: str | None = Header(default=None),
) -> Identity | None:
    """bad or missing token = anonymous, never an error"""
    return await resolver.resolve(authorization, required=False)


async def require_identity(
    resolver: Annotated[IdentityResolver, Depends(get_identity_resolver)],
    authorization: str | None = Header(default=None),
) -> Identity:
    """401 before anything else runs"""
    return await resolver.resolve(authorization, required=True)


async def review_rate_limit(
    request: Request,
    identity: Annotated[Identity, Depends(require_identity)],
    limiter: Annotated[RateLimiter, Depends(get_rate_limiter)],
) -> Identity:
    """auth + per-user review limit in one shot. same counter as authenticated analyze."""
    await limiter.enforce(AUTHENTICATED_REVIEW, user_key(identity.id), request.url.path)
    return identity


async def auth_rate_limit(
    request: Request,
    limiter: Annotated[RateLimiter, Depends(get_rate_limiter)],
) -> None:
    """brute force guard for /auth, keyed by address"""
    await limiter.enforce(AUTH, ip_key(client_ip(request)), request.url.path)


OptionalIdentity = Annotated[Identity | None, Depends(optional_identity)]
RequiredIdentity = Annotated[Identity, Depends(require_identity)]
ReviewOwner = Annotated[Identity, Depends(review_rate_limit)]
