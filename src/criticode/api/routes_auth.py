# Author: Bradley R. Kinnard — who are you, again

"""
Token introspection. Issuing tokens belongs to the account service, we only read them.
Five hits a minute per address, /auth is the usual brute force target.
"""

import logging

from fastapi import APIRouter, Depends

from src.criticode.api.dependencies import RequiredIdentity, auth_rate_limit
from src.criticode.api.schemas import ERROR_RESPONSES, IdentityResponse, MessageResponse

log = logging.getLogger(__name__)

router = APIRouter(
    prefix="/auth",
    tags=["auth"],
    dependencies=[Depends(auth_rate_limit)],
    responses=ERROR_RESPONSES,
)


@router.get("/me", response_model=IdentityResponse)
async def whoami(user: RequiredIdentity) -> IdentityResponse:
    return IdentityResponse(user=user)


@router.post("/logout", response_model=MessageResponse)
async def logout() -> MessageResponse:
    # tokens are stateless, nothing to revoke server-side
    return MessageResponse(
        message="Logout successful",
        note="Remove the token from client storage to finish logging out",
    )
