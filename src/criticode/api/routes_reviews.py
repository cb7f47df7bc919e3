# Author: Bradley R. Kinnard — your review history, and only yours

"""Saved review management. Every route needs a token and shares the per-user limit."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Query

from src.criticode.api.dependencies import ReviewOwner
from src.criticode.api.schemas import (
    ERROR_RESPONSES,
    LanguagesResponse,
    MessageResponse,
    ReviewListResponse,
    ReviewResponse,
    SearchResponse,
    StatsResponse,
)
from src.criticode.services.review_store import DEFAULT_LIMIT, ReviewStore, get_review_store
from src.criticode.utils.validation import validate_pagination, validate_search_query

log = logging.getLogger(__name__)

router = APIRouter(prefix="/reviews", tags=["reviews"], responses=ERROR_RESPONSES)

Store = Annotated[ReviewStore, Depends(get_review_store)]


@router.get("", response_model=ReviewListResponse)
async def list_reviews(
    user: ReviewOwner,
    store: Store,
    page: int = Query(1),
    limit: int = Query(DEFAULT_LIMIT),
    language: str | None = Query(None),
    sort_by: str | None = Query(None, alias="sortBy"),
) -> ReviewListResponse:
    """Newest first unless sortBy says otherwise."""
    validate_pagination(page, limit)
    result = await store.list(user.id, page=page, limit=limit, language=language, sort_by=sort_by)
    return ReviewListResponse(**dict(result))


# fixed paths before /{review_id} or they'd be swallowed as ids

@router.get("/search", response_model=SearchResponse)
async def search_reviews(
    user: ReviewOwner,
    store: Store,
    q: str | None = Query(None),
    page: int = Query(1),
    limit: int = Query(DEFAULT_LIMIT),
) -> SearchResponse:
    """Substring match on file name or code, case-insensitive."""
    query = validate_search_query(q)
    validate_pagination(page, limit)
    result = await store.search(user.id, query, page=page, limit=limit)
    return SearchResponse(**dict(result), query=query)


@router.get("/stats", response_model=StatsResponse)
async def review_stats(user: ReviewOwner, store: Store) -> StatsResponse:
    return StatsResponse(stats=await store.stats(user.id))


@router.get("/languages", response_model=LanguagesResponse)
async def review_languages(user: ReviewOwner, store: Store) -> LanguagesResponse:
    return LanguagesResponse(languages=await store.languages(user.id))


@router.get("/{review_id}", response_model=ReviewResponse)
async def get_review(review_id: str, user: ReviewOwner, store: Store) -> ReviewResponse:
    return ReviewResponse(review=await store.get_by_id(review_id, user.id))


@router.delete("/{review_id}", response_model=MessageResponse, response_model_exclude_none=True)
async def delete_review(review_id: str, user: ReviewOwner, store: Store) -> MessageResponse:
    await store.delete(review_id, user.id)
    log.info(f"delete | review={review_id} user={user.id[:8]}")
    return MessageResponse(message="Review deleted successfully")
