# Author: Bradley R. Kinnard — the orchestrator

"""
Main review pipeline. Admit, analyze, maybe save, respond.

    Admitted -> Invoking -> (Persisting) -> Responded
        \\-> rate limit error, before any real work

Identity is resolved before we get here. Anything that fails up to and
including the AI call fails the request. The save is best effort: if the
store blows up the caller still gets the full analysis with saved=False.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum

from src.criticode.adapters.metrics_client import analysis_requests_total, analyze_latency, reviews_saved_total
from src.criticode.core.errors import AppError
from src.criticode.core.models import AnalysisResult, Identity
from src.criticode.core.rate_limiter import RateLimiter, RateLimitResult, get_rate_limiter, review_admission
from src.criticode.services.ai_invoker import AIInvoker, get_invoker
from src.criticode.services.review_store import ReviewStore, get_review_store

log = logging.getLogger(__name__)


class Stage(str, Enum):
    ADMITTED = "admitted"
    INVOKING = "invoking"
    PERSISTING = "persisting"
    RESPONDED = "responded"


@dataclass
class PipelineOutcome:
    analysis: AnalysisResult
    admission: RateLimitResult
    review_id: str | None = None
    stages: list[Stage] = field(default_factory=list)

    @property
    def saved(self) -> bool:
        return self.review_id is not None


class ReviewPipeline:

    def __init__(self, limiter: RateLimiter, invoker: AIInvoker, store: ReviewStore):
        self._limiter = limiter
        self._invoker = invoker
        self._store = store

    async def run(
        self,
        *,
        code: str,
        language: str,
        file_name: str | None,
        identity: Identity | None,
        client_ip: str | None,
    ) -> PipelineOutcome:
        start = time.perf_counter()
        policy, key = review_admission(identity, client_ip)

        try:
            admission = await self._limiter.enforce(policy, key)
        except AppError:
            log.info(f"review rejected at admission | class={policy.category} key={key}")
            analysis_requests_total.labels(outcome="rejected").inc()
            raise
        stages = [Stage.ADMITTED, Stage.INVOKING]

        try:
            analysis = await self._invoker.analyze(code, language)
        except Exception as e:
            # terminal, and nothing gets saved
            log.warning(f"analysis failed | lang={language} len={len(code)}: {e}")
            analysis_requests_total.labels(outcome="failed").inc()
            raise
        if analysis.is_empty:
            log.info(f"no issues found | lang={language} len={len(code)}")

        review_id = None
        if identity is not None:
            stages.append(Stage.PERSISTING)
            review_id = await self._persist(identity, code, language, file_name, analysis)

        stages.append(Stage.RESPONDED)
        analysis_requests_total.labels(outcome="ok").inc()
        analyze_latency.observe(time.perf_counter() - start)
        log.info(f"review done | lang={language} user={identity.id[:8] if identity else 'anon'} saved={review_id is not None}")

        return PipelineOutcome(analysis=analysis, admission=admission, review_id=review_id, stages=stages)

    async def _persist(
        self,
        identity: Identity,
        code: str,
        language: str,
        file_name: str | None,
        analysis: AnalysisResult,
    ) -> str | None:
        """save or log. never raises, except cancellation of *us* (the write keeps going)."""
        try:
            # shielded so a client hanging up doesn't abort a half-done insert
            review = await asyncio.shield(self._store.create(identity.id, code, language, file_name, analysis))
        except Exception as e:
            log.error(f"Failed to save review for {identity.id[:8]}: {e}")
            reviews_saved_total.labels(outcome="failed").inc()
            return None

        reviews_saved_total.labels(outcome="saved").inc()
        return review.id


_pipeline: ReviewPipeline | None = None


def get_pipeline() -> ReviewPipeline:
    global _pipeline
    if _pipeline is None:
        _pipeline = ReviewPipeline(get_rate_limiter(), get_invoker(), get_review_store())
    return _pipeline
