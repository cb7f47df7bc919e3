# Author: Bradley R. Kinnard — your reviews, nobody else's

"""
Owner-scoped review storage on async SQLAlchemy.

Every read and write is filtered by owner. Someone else's review is an
AUTHORIZATION error, a missing one is NOT_FOUND, and the delete statement
itself carries the owner so a race can't delete across users.
"""

import logging
import math
from typing import Any, Sequence

from sqlalchemy import Select, delete, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from src.criticode.adapters.database import ReviewRow, get_sessionmaker, utcnow
from src.criticode.core.errors import (
    authorization_error,
    internal_error,
    not_found_error,
    validation_error,
)
from src.criticode.core.models import AnalysisResult, Review, ReviewPage, UserStats

log = logging.getLogger(__name__)

MAX_CODE_CHARS = 500 * 1024
DEFAULT_LIMIT = 20
MAX_LIMIT = 100
RECENT_ACTIVITY = 10

SORT_FIELDS = {
    "created_at": ReviewRow.created_at,
    "createdAt": ReviewRow.created_at,
    "updated_at": ReviewRow.updated_at,
    "updatedAt": ReviewRow.updated_at,
    "language": ReviewRow.language,
    "file_name": ReviewRow.file_name,
    "fileName": ReviewRow.file_name,
}


def _to_review(row: ReviewRow) -> Review:
    return Review(
        id=row.id,
        owner_id=row.user_id,
        code=row.code,
        language=row.language,
        file_name=row.file_name,
        analysis=AnalysisResult.model_validate(row.analysis),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _clamp_page(page: int, limit: int) -> tuple[int, int]:
    if page < 1:
        page = 1
    if limit < 1 or limit > MAX_LIMIT:
        limit = DEFAULT_LIMIT
    return page, limit


class ReviewStore:

    def __init__(self, sessions: async_sessionmaker):
        self._sessions = sessions

    async def create(
        self,
        owner_id: str,
        code: str,
        language: str,
        file_name: str | None,
        analysis: AnalysisResult,
    ) -> Review:
        if not owner_id or not code or not language or analysis is None:
            raise validation_error("Missing required fields for review creation")
        if len(code) > MAX_CODE_CHARS:
            raise validation_error("Code size exceeds 500KB limit")

        now = utcnow()
        row = ReviewRow(
            user_id=owner_id,
            code=code,
            language=language.lower(),
            file_name=file_name or None,
            analysis=analysis.model_dump(by_alias=True),
            created_at=now,
            updated_at=now,
        )
        try:
            async with self._sessions() as session, session.begin():
                session.add(row)
        except SQLAlchemyError as e:
            log.error(f"db error creating review for {owner_id[:8]}: {e}")
            raise internal_error("Failed to create review in database", {"dbError": str(e)})

        log.info(f"review {row.id} saved for {owner_id[:8]} lang={row.language}")
        return _to_review(row)

    async def get_by_id(self, review_id: str, owner_id: str) -> Review:
        if not review_id or not owner_id:
            raise validation_error("Review ID and User ID are required")

        row = await self._one(select(ReviewRow).where(ReviewRow.id == review_id), "fetch review")
        if row is None:
            raise not_found_error("Review not found")
        if row.user_id != owner_id:
            raise authorization_error("You do not have permission to access this review")
        return _to_review(row)

    async def list(
        self,
        owner_id: str,
        page: int = 1,
        limit: int = DEFAULT_LIMIT,
        language: str | None = None,
        sort_by: str | None = None,
    ) -> ReviewPage:
        if not owner_id:
            raise validation_error("User ID is required")
        page, limit = _clamp_page(page, limit)

        where = [ReviewRow.user_id == owner_id]
        if language:
            where.append(func.lower(ReviewRow.language) == language.lower())

        column = SORT_FIELDS.get(sort_by or "", ReviewRow.created_at)
        order = [column.desc()]
        if column is not ReviewRow.created_at:
            order.append(ReviewRow.created_at.desc())

        return await self._page(where, order, page, limit, "fetch reviews")

    async def delete(self, review_id: str, owner_id: str) -> None:
        if not review_id or not owner_id:
            raise validation_error("Review ID and User ID are required")

        try:
            async with self._sessions() as session, session.begin():
                owner = await session.scalar(select(ReviewRow.user_id).where(ReviewRow.id == review_id))
                if owner is None:
                    raise not_found_error("Review not found")
                if owner != owner_id:
                    raise authorization_error("You do not have permission to delete this review")

                # owner goes in the WHERE too, the check above isn't enough on its own
                result = await session.execute(
                    delete(ReviewRow).where(ReviewRow.id == review_id, ReviewRow.user_id == owner_id)
                )
                if result.rowcount == 0:
                    raise not_found_error("Review not found")
        except SQLAlchemyError as e:
            log.error(f"db error deleting review {review_id}: {e}")
            raise internal_error("Failed to delete review from database", {"dbError": str(e)})

        log.info(f"review {review_id} deleted by {owner_id[:8]}")

    async def search(self, owner_id: str, query: str, page: int = 1, limit: int = DEFAULT_LIMIT) -> ReviewPage:
        if not owner_id or not query:
            raise validation_error("User ID and search query are required")
        page, limit = _clamp_page(page, limit)

        where = [
            ReviewRow.user_id == owner_id,
            or_(
                ReviewRow.file_name.icontains(query, autoescape=True),
                ReviewRow.code.icontains(query, autoescape=True),
            ),
        ]
        return await self._page(where, [ReviewRow.created_at.desc()], page, limit, "search reviews")

    async def stats(self, owner_id: str) -> UserStats:
        if not owner_id:
            raise validation_error("User ID is required")

        try:
            async with self._sessions() as session:
                total = await session.scalar(
                    select(func.count()).select_from(ReviewRow).where(ReviewRow.user_id == owner_id)
                )
                languages = (
                    await session.scalars(
                        select(ReviewRow.language)
                        .where(ReviewRow.user_id == owner_id)
                        .group_by(ReviewRow.language)
                        .order_by(func.max(ReviewRow.created_at).desc())
                    )
                ).all()
                recent = (
                    await session.scalars(
                        select(ReviewRow)
                        .where(ReviewRow.user_id == owner_id)
                        .order_by(ReviewRow.created_at.desc())
                        .limit(RECENT_ACTIVITY)
                    )
                ).all()
        except SQLAlchemyError as e:
            log.error(f"db error fetching stats for {owner_id[:8]}: {e}")
            raise internal_error("Failed to fetch user statistics", {"dbError": str(e)})

        return UserStats(
            total_reviews=total or 0,
            languages_used=list(languages),
            recent_activity=[_to_review(r) for r in recent],
        )

    async def languages(self, owner_id: str) -> dict[str, int]:
        """review count per language"""
        if not owner_id:
            raise validation_error("User ID is required")
        try:
            async with self._sessions() as session:
                rows = (
                    await session.execute(
                        select(ReviewRow.language, func.count())
                        .where(ReviewRow.user_id == owner_id)
                        .group_by(ReviewRow.language)
                    )
                ).all()
        except SQLAlchemyError as e:
            log.error(f"db error fetching language stats for {owner_id[:8]}: {e}")
            raise internal_error("Failed to fetch language statistics", {"dbError": str(e)})
        return {lang: count for lang, count in rows}

    async def _one(self, stmt: Select, what: str) -> Any:
        try:
            async with self._sessions() as session:
                return await session.scalar(stmt)
        except SQLAlchemyError as e:
            log.error(f"db error trying to {what}: {e}")
            raise internal_error(f"Failed to {what}", {"dbError": str(e)})

    async def _page(self, where: Sequence[Any], order: Sequence[Any], page: int, limit: int, what: str) -> ReviewPage:
        try:
            async with self._sessions() as session:
                total = await session.scalar(select(func.count()).select_from(ReviewRow).where(*where))
                rows = (
                    await session.scalars(
                        select(ReviewRow).where(*where).order_by(*order).offset((page - 1) * limit).limit(limit)
                    )
                ).all()
        except SQLAlchemyError as e:
            log.error(f"db error trying to {what}: {e}")
            raise internal_error(f"Failed to {what}", {"dbError": str(e)})

        total = total or 0
        return ReviewPage(
            reviews=[_to_review(r) for r in rows],
            total=total,
            page=page,
            limit=limit,
            total_pages=math.ceil(total / limit),
        )


_store: ReviewStore | None = None


def get_review_store() -> ReviewStore:
    global _store
    if _store is None:
        _store = ReviewStore(get_sessionmaker())
    return _store
