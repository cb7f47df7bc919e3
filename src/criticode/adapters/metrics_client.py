# Author: Bradley R. Kinnard — counting everything

"""Prometheus metrics. Import and use from anywhere."""

from prometheus_client import Counter, Histogram, REGISTRY, generate_latest

# latency for the full analyze pipeline, admission to response
analyze_latency = Histogram(
    "analyze_latency_seconds",
    "Time spent in the analyze pipeline",
    buckets=[0.5, 1.0, 2.0, 5.0, 10.0, 15.0, 30.0, 60.0]
)

analysis_requests_total = Counter(
    "analysis_requests_total",
    "Analyze pipeline outcomes",
    ["outcome"]  # ok, failed
)

# one per LLM attempt, so retries show up
llm_attempts_total = Counter(
    "llm_attempts_total",
    "LLM call attempts",
    ["outcome"]  # ok, timeout, parse_error, transport_error
)

llm_latency = Histogram(
    "llm_latency_seconds",
    "Latency of a single LLM attempt",
    buckets=[0.5, 1.0, 2.0, 5.0, 10.0, 15.0]
)

# best-effort saves
reviews_saved_total = Counter(
    "reviews_saved_total",
    "Review persistence attempts after a successful analysis",
    ["outcome"]  # saved, failed
)

# rate limit hits
rate_limit_hit_total = Counter(
    "rate_limit_hit_total",
    "Requests rejected by rate limiter",
    ["category"]
)


def get_metrics() -> bytes:
    """dump all metrics in prometheus format"""
    return generate_latest(REGISTRY)
