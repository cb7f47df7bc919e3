# Author: Bradley R. Kinnard — end to end, minus the actual AI

"""
Integration test: HTTP in, envelope out. Real app, real middleware, in-memory
db, fake LLM.
Run with: pytest tests/integration/test_review_api.py -v
"""

import asyncio
import json
from unittest.mock import AsyncMock

import httpx
import pytest

from src.criticode.adapters.database import close_db
from src.criticode.config import settings
from src.criticode.core import rate_limiter
from src.criticode.core.identity import IdentityResolver, UserDirectory, get_identity_resolver
from src.criticode.core.rate_limiter import MemoryCounterStore, RateLimiter, get_rate_limiter
from src.criticode.main import app
from src.criticode.services.ai_invoker import AIInvoker, get_invoker
from src.criticode.services.review_pipeline import ReviewPipeline, get_pipeline
from src.criticode.services.review_store import ReviewStore, get_review_store
from tests.fakes import ALICE_ID, BOB_ID, SQLI_ANALYSIS, SQLI_CODE, FakeLLM, RecordingSleep, bearer

ALICE = bearer(ALICE_ID, "alice@example.com")
BOB = bearer(BOB_ID, "bob@example.com")


@pytest.fixture
def llm():
    return FakeLLM(json.dumps(SQLI_ANALYSIS))


@pytest.fixture
def limiter(monkeypatch):
    limiter = RateLimiter(MemoryCounterStore())
    # the general limit runs in middleware, outside dependency injection
    monkeypatch.setattr(rate_limiter, "_limiter", limiter)
    return limiter


@pytest.fixture
def store(sessions, users):
    return ReviewStore(sessions)


@pytest.fixture
def invoker(llm):
    return AIInvoker(llm, sleep=RecordingSleep())


@pytest.fixture
async def client(sessions, limiter, store, invoker):
    """app wired to test doubles, reset after each test"""
    resolver = IdentityResolver(UserDirectory(sessions), settings.jwt_secret, settings.jwt_issuer, settings.jwt_audience)
    pipeline = ReviewPipeline(limiter, invoker, store)

    app.dependency_overrides.update({
        get_identity_resolver: lambda: resolver,
        get_rate_limiter: lambda: limiter,
        get_review_store: lambda: store,
        get_invoker: lambda: invoker,
        get_pipeline: lambda: pipeline,
    })
    transport = httpx.ASGITransport(app=app, raise_app_exceptions=False)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as c:
        yield c
    app.dependency_overrides.clear()
    await close_db()


async def analyze(client, headers=None, **overrides):
    body = {"code": SQLI_CODE, "language": "javascript", "fileName": "db.js", **overrides}
    return await client.post("/api/review/analyze", json=body, headers=headers or {})


# analyze

@pytest.mark.asyncio
async def test_anonymous_sql_injection_review_is_not_saved(client):
    resp = await analyze(client)

    assert resp.status_code == 200, resp.text
    data = resp.json()
    assert data["saved"] is False
    assert "reviewId" not in data
    finding = data["analysis"]["security"][0]
    assert finding["severity"] == "Critical"
    assert "codeExample" in finding, "wire format is camelCase"
    assert set(data["analysis"]) == {"security", "performance", "bestPractices", "refactoring"}

    assert resp.headers["RateLimit-Limit"] == "5"
    assert resp.headers["RateLimit-Remaining"] == "4"
    assert resp.headers["X-Request-ID"]
    assert resp.headers["X-Content-Type-Options"] == "nosniff"


@pytest.mark.asyncio
async def test_authenticated_review_is_saved_and_retrievable(client):
    resp = await analyze(client, headers=ALICE)

    assert resp.status_code == 200, resp.text
    data = resp.json()
    assert data["saved"] is True
    review_id = data["reviewId"]
    assert resp.headers["RateLimit-Limit"] == "30"

    fetched = await client.get(f"/api/reviews/{review_id}", headers=ALICE)
    assert fetched.status_code == 200
    review = fetched.json()["review"]
    assert review["ownerId"] == ALICE_ID
    assert review["analysis"] == data["analysis"]


@pytest.mark.asyncio
async def test_sql_concatenation_is_flagged_and_saved_only_with_token(client, llm):
    """injection found either way, history only for a signed-in caller"""
    code = "SELECT * FROM users WHERE name = '" + "' || :name || '" + "';"

    anon = await analyze(client, code=code, language="sql", fileName="lookup.sql")
    signed = await analyze(client, headers=ALICE, code=code, language="sql", fileName="lookup.sql")

    for resp in (anon, signed):
        assert resp.status_code == 200
        security = resp.json()["analysis"]["security"]
        assert any(issue["severity"] in ("High", "Critical") for issue in security)
        assert all(issue["line"] >= 0 for issue in security)
    assert anon.json()["saved"] is False
    assert signed.json()["saved"] is True
    assert "sql" in llm.prompts[0]


@pytest.mark.asyncio
async def test_bad_token_on_analyze_is_just_anonymous(client):
    resp = await analyze(client, headers={"Authorization": "Bearer nope"})
    assert resp.status_code == 200
    assert resp.json()["saved"] is False


@pytest.mark.asyncio
async def test_sixth_anonymous_review_is_rate_limited(client, llm):
    for _ in range(5):
        assert (await analyze(client)).status_code == 200

    resp = await analyze(client)

    assert resp.status_code == 429
    body = resp.json()
    assert body["error"] == "RateLimitError"
    assert body["category"] == "anonymous_review"
    assert body["retryAfter"] > 0
    assert body["currentUsage"] == 6
    assert body["limit"] == 5
    assert "resetTime" in body
    assert int(resp.headers["Retry-After"]) == body["retryAfter"]
    assert resp.headers["RateLimit-Limit"] == "5", "headers describe the anonymous class, not the general one"
    assert resp.headers["RateLimit-Remaining"] == "0"
    assert resp.headers["RateLimit-Reset"] == resp.headers["Retry-After"]
    assert llm.calls == 5


@pytest.mark.asyncio
async def test_validation_errors_are_400_envelopes(client, llm):
    resp = await analyze(client, code="   ", language="")
    assert resp.status_code == 400
    body = resp.json()
    assert body["error"] == "ValidationError"
    assert {e["field"] for e in body["details"]["errors"]} == {"code", "language"}
    assert body["path"] == "/api/review/analyze"
    assert body["method"] == "POST"
    assert body["requestId"] == resp.headers["X-Request-ID"]

    missing = await client.post("/api/review/analyze", json={"code": "x = 1"})
    assert missing.status_code == 400
    assert missing.json()["details"]["errors"][0]["field"] == "language"
    assert llm.calls == 0


@pytest.mark.asyncio
async def test_store_failure_still_returns_analysis(client, limiter, invoker):
    broken = AsyncMock(spec=ReviewStore)
    broken.create.side_effect = RuntimeError("database is on fire")
    app.dependency_overrides[get_pipeline] = lambda: ReviewPipeline(limiter, invoker, broken)

    resp = await analyze(client, headers=ALICE)

    assert resp.status_code == 200
    assert resp.json()["saved"] is False
    assert len(resp.json()["analysis"]["security"]) == 1


@pytest.mark.asyncio
async def test_llm_timeout_is_503(client, limiter, store):
    async def hang(prompt: str) -> str:
        await asyncio.sleep(3600)
        return "{}"

    sleep = RecordingSleep()
    slow = AIInvoker(hang, timeout=0.01, sleep=sleep)
    app.dependency_overrides[get_pipeline] = lambda: ReviewPipeline(limiter, slow, store)

    resp = await analyze(client, headers=ALICE)

    assert resp.status_code == 503
    body = resp.json()
    assert body["error"] == "ServiceUnavailableError"
    assert body["details"]["reason"] == "timeout"
    assert sleep.delays == [1.0]
    assert (await store.stats(ALICE_ID)).total_reviews == 0


@pytest.mark.asyncio
async def test_unparseable_model_output_is_500(client, limiter, store):
    garbage = AIInvoker(FakeLLM("I think your code is lovely"), sleep=RecordingSleep())
    app.dependency_overrides[get_pipeline] = lambda: ReviewPipeline(limiter, garbage, store)

    resp = await analyze(client)

    assert resp.status_code == 500
    assert resp.json()["error"] == "InternalServerError"


@pytest.mark.asyncio
async def test_model_output_stays_out_of_production_errors(client, limiter, store, monkeypatch):
    """raw model text goes to the logs, never back to the caller"""
    monkeypatch.setattr(settings, "environment", "production")
    garbage = AIInvoker(FakeLLM("I think your code is lovely"), sleep=RecordingSleep())
    app.dependency_overrides[get_pipeline] = lambda: ReviewPipeline(limiter, garbage, store)

    resp = await analyze(client)

    assert resp.status_code == 500
    body = resp.json()
    assert body["message"] == "Failed to parse AI response as valid JSON"
    assert "details" not in body
    assert "lovely" not in resp.text


# upload

@pytest.mark.asyncio
async def test_upload_detects_language_from_extension(client):
    content = b"import os\nos.system(input())\n"
    files = {"file": ("handler.py", content, "text/x-python")}
    resp = await client.post("/api/review/upload", files=files, headers=ALICE)

    assert resp.status_code == 200, resp.text
    data = resp.json()
    assert data["language"] == "python"
    assert data["fileName"] == "handler.py"
    assert data["fileSize"] == len(content)
    assert data["saved"] is True


@pytest.mark.asyncio
async def test_upload_rejects_unknown_extension(client, llm):
    files = {"file": ("tool.exe", b"MZ", "application/octet-stream")}
    resp = await client.post("/api/review/upload", files=files)

    assert resp.status_code == 400
    assert resp.json()["details"]["reason"] == "bad_extension"
    assert llm.calls == 0


@pytest.mark.asyncio
async def test_upload_over_2mb_is_413(client, llm):
    files = {"file": ("big.js", b"a" * (2 * 1024 * 1024 + 10), "text/javascript")}
    resp = await client.post("/api/review/upload", files=files)

    assert resp.status_code == 413
    assert resp.json()["error"] == "PayloadTooLargeError"
    assert llm.calls == 0


@pytest.mark.asyncio
async def test_upload_without_file(client):
    resp = await client.post("/api/review/upload", files={"other": ("x.py", b"x", "text/plain")})
    assert resp.status_code == 400
    assert resp.json()["details"]["reason"] == "no_file"


# review management

@pytest.mark.asyncio
async def test_reviews_require_a_token(client):
    resp = await client.get("/api/reviews")
    assert resp.status_code == 401
    assert resp.json()["error"] == "AuthenticationError"
    assert resp.headers["WWW-Authenticate"] == "Bearer"


@pytest.mark.asyncio
async def test_cross_owner_access_is_forbidden(client):
    review_id = (await analyze(client, headers=ALICE)).json()["reviewId"]

    assert (await client.get(f"/api/reviews/{review_id}", headers=BOB)).status_code == 403
    assert (await client.delete(f"/api/reviews/{review_id}", headers=BOB)).status_code == 403
    assert (await client.get(f"/api/reviews/{review_id}", headers=ALICE)).status_code == 200

    deleted = await client.delete(f"/api/reviews/{review_id}", headers=ALICE)
    assert deleted.status_code == 200
    assert deleted.json() == {"message": "Review deleted successfully"}
    assert (await client.get(f"/api/reviews/{review_id}", headers=ALICE)).status_code == 404


@pytest.mark.asyncio
async def test_list_search_stats_languages(client):
    await analyze(client, headers=ALICE)
    await analyze(client, headers=ALICE, code="def f():\n    return eval(x)\n", language="python", fileName="calc.py")

    listing = (await client.get("/api/reviews", params={"limit": 1, "sortBy": "language"}, headers=ALICE)).json()
    assert listing["total"] == 2
    assert listing["totalPages"] == 2
    assert listing["reviews"][0]["language"] == "python"

    filtered = (await client.get("/api/reviews", params={"language": "JavaScript"}, headers=ALICE)).json()
    assert filtered["total"] == 1

    found = (await client.get("/api/reviews/search", params={"q": "CALC"}, headers=ALICE)).json()
    assert found["total"] == 1
    assert found["query"] == "CALC"

    stats = (await client.get("/api/reviews/stats", headers=ALICE)).json()["stats"]
    assert stats["totalReviews"] == 2
    assert set(stats["languagesUsed"]) == {"javascript", "python"}

    langs = (await client.get("/api/reviews/languages", headers=ALICE)).json()["languages"]
    assert langs == {"javascript": 1, "python": 1}

    # bob sees none of it
    assert (await client.get("/api/reviews", headers=BOB)).json()["total"] == 0


@pytest.mark.asyncio
async def test_bad_paging_and_search_are_400(client):
    assert (await client.get("/api/reviews", params={"page": 0}, headers=ALICE)).status_code == 400
    assert (await client.get("/api/reviews", params={"limit": 500}, headers=ALICE)).status_code == 400
    assert (await client.get("/api/reviews", params={"page": "two"}, headers=ALICE)).status_code == 400
    assert (await client.get("/api/reviews/search", headers=ALICE)).status_code == 400
    assert (await client.get("/api/reviews/search", params={"q": "x" * 101}, headers=ALICE)).status_code == 400


# auth

@pytest.mark.asyncio
async def test_me_and_logout(client):
    me = await client.get("/api/auth/me", headers=ALICE)
    assert me.status_code == 200
    assert me.json()["user"] == {"id": ALICE_ID, "email": "alice@example.com"}

    out = await client.post("/api/auth/logout")
    assert out.status_code == 200
    assert out.json()["message"] == "Logout successful"


@pytest.mark.asyncio
async def test_auth_routes_are_limited_per_address(client):
    for _ in range(5):
        assert (await client.get("/api/auth/me", headers=ALICE)).status_code == 200

    resp = await client.get("/api/auth/me", headers=ALICE)

    assert resp.status_code == 429
    assert resp.json()["category"] == "auth"
    assert "securityNote" in resp.json()


# plumbing

@pytest.mark.asyncio
async def test_health_and_metrics(client):
    health = await client.get("/health")
    assert health.status_code == 200
    body = health.json()
    assert body["status"] == "ok"
    assert body["ai"] == "configured"
    assert body["redis"] == "skipped"
    assert "RateLimit-Limit" not in health.headers, "health is exempt from the general limit"

    metrics = await client.get("/metrics")
    assert metrics.status_code == 200
    assert "analysis_requests_total" in metrics.text


@pytest.mark.asyncio
async def test_request_id_is_echoed(client):
    resp = await client.get("/health", headers={"X-Request-ID": "trace-123"})
    assert resp.headers["X-Request-ID"] == "trace-123"
    assert resp.json()["request_id"] == "trace-123"


@pytest.mark.asyncio
async def test_unknown_route_is_404_envelope(client):
    resp = await client.get("/api/nope")
    assert resp.status_code == 404
    body = resp.json()
    assert body["error"] == "NotFoundError"
    assert body["path"] == "/api/nope"


@pytest.mark.asyncio
async def test_unexpected_error_is_500_with_stack_in_development(client):
    exploding = AsyncMock(spec=ReviewStore)
    exploding.stats.side_effect = RuntimeError("kaboom")
    app.dependency_overrides[get_review_store] = lambda: exploding

    resp = await client.get("/api/reviews/stats", headers={**ALICE, "X-Request-ID": "trace-500"})

    assert resp.status_code == 500
    body = resp.json()
    assert body["error"] == "InternalServerError"
    assert body["message"] == "kaboom"
    assert "RuntimeError" in body["stack"]
    assert resp.headers["X-Request-ID"] == "trace-500", "a crash still carries the request id header"
    assert body["requestId"] == "trace-500"
    assert resp.headers["X-Content-Type-Options"] == "nosniff"
    assert resp.headers["X-Frame-Options"] == "DENY"
