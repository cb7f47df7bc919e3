# Author: Bradley R. Kinnard — the model is flaky, the contract isn't

"""
Code in, AnalysisResult out. Wraps the LLM in a bounded-latency, bounded-retry
contract:

- every attempt gets `timeout` seconds, then it's abandoned
- timeouts and transport errors are retried, `max_retries` attempts total,
  sleeping backoff_base * 2^(attempt-1) in between
- config and parse errors are never retried, a model that returns garbage
  will return the same garbage again
- whatever parses gets repaired into the four-array shape instead of rejected
"""

import asyncio
import json
import logging
import math
import re
import time
from typing import Any, Awaitable, Callable

from src.criticode.adapters import llm_client
from src.criticode.adapters.metrics_client import llm_attempts_total, llm_latency
from src.criticode.config import settings
from src.criticode.core.errors import AppError, ErrorKind, service_unavailable_error, validation_error
from src.criticode.core.models import (
    DEFAULT_SEVERITY,
    SEVERITIES,
    AnalysisResult,
    BestPracticeIssue,
    PerformanceIssue,
    RefactoringOpportunity,
    SecurityIssue,
)

log = logging.getLogger(__name__)

Complete = Callable[[str], Awaitable[str]]
Sleep = Callable[[float], Awaitable[None]]

MAX_CODE_CHARS = 100_000
EXCERPT_CHARS = 200
NON_RETRYABLE = frozenset({"not_configured", "parse"})
CATEGORIES = ("security", "performance", "bestPractices", "refactoring")


def build_prompt(code: str, language: str) -> str:
    """Same (code, language) always gives the same prompt."""
    return f"""You are an expert code reviewer and security analyst. Analyze the following {language} code and provide a comprehensive review.

Code to analyze:
```{language}
{code}
```

Analysis requirements:

1. Security: vulnerabilities, potential exploits, input validation issues, authentication/authorization flaws, data exposure, injection, cryptographic issues.
2. Performance: bottlenecks, inefficient algorithms, memory leaks, unnecessary computation, database query issues, blocking operations.
3. Best practices: style, maintainability, readability, error handling, logging, documentation, naming.
4. Refactoring: design pattern applications, deduplication, architectural and modularity improvements.

Output format requirements:
- Respond with EXACTLY the JSON structure below and nothing else
- Line numbers are 1-based (the first line is line 1)
- If a category has no findings, return an empty array for it
- Do not wrap the JSON in markdown code blocks and do not add any prose before or after it

Required JSON structure:
{{
  "security": [
    {{
      "severity": "Critical|High|Medium|Low",
      "issue": "Brief description of the security issue",
      "line": 0,
      "description": "Detailed explanation of the vulnerability",
      "fix": "Specific steps to fix it",
      "codeExample": "Example of a secure implementation"
    }}
  ],
  "performance": [
    {{
      "issue": "Brief description of the performance issue",
      "line": 0,
      "description": "Detailed explanation of the problem",
      "suggestion": "Specific improvement",
      "codeExample": "Example of optimized code"
    }}
  ],
  "bestPractices": [
    {{
      "issue": "Brief description of the best practice violation",
      "line": 0,
      "description": "Why this matters",
      "suggestion": "Specific recommendation",
      "codeExample": "Example of improved code"
    }}
  ],
  "refactoring": [
    {{
      "opportunity": "Brief description of the refactoring opportunity",
      "line": 0,
      "description": "Detailed explanation of the improvement",
      "benefit": "Expected benefit",
      "codeExample": "Example of refactored code"
    }}
  ]
}}

Focus on actionable, specific feedback, give line numbers where issues occur, and prioritize security issues by severity."""


def strip_code_fence(text: str) -> str:
    """```json ... ``` or ``` ... ``` -> the inside. Anything else untouched."""
    cleaned = text.strip()
    if cleaned.startswith("```json"):
        cleaned = re.sub(r"^```json\s*", "", cleaned)
        cleaned = re.sub(r"\s*```$", "", cleaned)
    elif cleaned.startswith("```"):
        cleaned = re.sub(r"^```\s*", "", cleaned)
        cleaned = re.sub(r"\s*```$", "", cleaned)
    return cleaned


def _parse_error(raw: str) -> AppError:
    return AppError(
        ErrorKind.INTERNAL,
        "Failed to parse AI response as valid JSON",
        reason="parse",
        details={"excerpt": raw[:EXCERPT_CHARS]},
    )


def _coerce_line(value: Any) -> int:
    # bool is an int subclass, a line number of True is still garbage
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    if isinstance(value, float) and not math.isfinite(value):
        return 0
    return max(0, int(value))


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float, bool)):
        return str(value)
    return json.dumps(value)


def _items(parsed: dict, category: str) -> list[dict]:
    raw = parsed.get(category)
    if not isinstance(raw, list):
        if raw is not None:
            log.warning(f"AI response field {category} is {type(raw).__name__}, not a list, using []")
        return []
    items = [i for i in raw if isinstance(i, dict)]
    if len(items) != len(raw):
        log.warning(f"dropped {len(raw) - len(items)} non-object entries from {category}")
    return items


def _severity(value: Any, index: int) -> str:
    if value in SEVERITIES:
        return value
    log.warning(f"Invalid security severity at index {index}, defaulting to {DEFAULT_SEVERITY}")
    return DEFAULT_SEVERITY


def normalize_analysis(parsed: Any) -> AnalysisResult:
    """Repair, don't reject. Missing arrays become [], bad lines become 0."""
    if not isinstance(parsed, dict):
        log.warning(f"AI response is {type(parsed).__name__}, not an object, returning empty analysis")
        parsed = {}

    return AnalysisResult(
        security=[
            SecurityIssue(
                severity=_severity(i.get("severity"), n),
                issue=_text(i.get("issue")),
                line=_coerce_line(i.get("line")),
                description=_text(i.get("description")),
                fix=_text(i.get("fix")),
                code_example=_text(i.get("codeExample")),
            )
            for n, i in enumerate(_items(parsed, "security"))
        ],
        performance=[
            PerformanceIssue(
                issue=_text(i.get("issue")),
                line=_coerce_line(i.get("line")),
                description=_text(i.get("description")),
                suggestion=_text(i.get("suggestion")),
                code_example=_text(i.get("codeExample")),
            )
            for i in _items(parsed, "performance")
        ],
        best_practices=[
            BestPracticeIssue(
                issue=_text(i.get("issue")),
                line=_coerce_line(i.get("line")),
                description=_text(i.get("description")),
                suggestion=_text(i.get("suggestion")),
                code_example=_text(i.get("codeExample")),
            )
            for i in _items(parsed, "bestPractices")
        ],
        refactoring=[
            RefactoringOpportunity(
                opportunity=_text(i.get("opportunity")),
                line=_coerce_line(i.get("line")),
                description=_text(i.get("description")),
                benefit=_text(i.get("benefit")),
                code_example=_text(i.get("codeExample")),
            )
            for i in _items(parsed, "refactoring")
        ],
    )


def parse_response(raw: str) -> AnalysisResult:
    """raw model text -> AnalysisResult. Unparseable JSON is a non-retryable parse error."""
    try:
        parsed = json.loads(strip_code_fence(raw))
    except ValueError:
        raise _parse_error(raw)
    return normalize_analysis(parsed)


class AIInvoker:

    def __init__(
        self,
        complete: Complete | None,
        *,
        timeout: float = 15.0,
        max_retries: int = 2,
        backoff_base: float = 1.0,
        max_code_chars: int = MAX_CODE_CHARS,
        sleep: Sleep = asyncio.sleep,
    ):
        self._complete = complete
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.backoff_base = backoff_base
        self.max_code_chars = max_code_chars
        self._sleep = sleep

    @property
    def configured(self) -> bool:
        return self._complete is not None

    def health(self) -> dict[str, Any]:
        return {"status": "healthy" if self.configured else "not_configured", "configured": self.configured}

    def backoff_delay(self, attempt: int) -> float:
        """attempt 1 failed -> wait base, attempt 2 failed -> 2*base, ..."""
        return self.backoff_base * (2 ** (attempt - 1))

    def _check_inputs(self, code: Any, language: Any) -> None:
        if not self.configured:
            raise service_unavailable_error(
                "AI service is not configured. Set OPENAI_API_KEY.", reason="not_configured"
            )
        if not isinstance(code, str) or not code.strip():
            raise validation_error("Code parameter is required and must be a non-empty string", reason="bad_input")
        if not isinstance(language, str) or not language.strip():
            raise validation_error("Language parameter is required and must be a non-empty string", reason="bad_input")
        if len(code) > self.max_code_chars:
            raise validation_error(
                f"Code is too large. Maximum size is {self.max_code_chars} characters.", reason="bad_input"
            )

    async def _attempt(self, prompt: str) -> AnalysisResult:
        t0 = time.perf_counter()
        try:
            raw = await asyncio.wait_for(self._complete(prompt), timeout=self.timeout)
        except asyncio.TimeoutError:
            llm_attempts_total.labels(outcome="timeout").inc()
            raise service_unavailable_error(
                f"AI request timed out after {self.timeout:g} seconds", reason="timeout"
            )
        finally:
            llm_latency.observe(time.perf_counter() - t0)

        try:
            result = parse_response(raw)
        except AppError:
            log.warning(f"unparseable model output: {raw[:EXCERPT_CHARS]!r}")
            llm_attempts_total.labels(outcome="parse_error").inc()
            raise
        llm_attempts_total.labels(outcome="ok").inc()
        return result

    async def analyze(self, code: str, language: str) -> AnalysisResult:
        self._check_inputs(code, language)
        prompt = build_prompt(code, language)
        last_error: Exception | None = None

        for attempt in range(1, self.max_retries + 1):
            try:
                log.info(f"analyzing {language} code with LLM (attempt {attempt}/{self.max_retries})")
                result = await self._attempt(prompt)
                log.info(
                    f"analysis done | security={len(result.security)} performance={len(result.performance)} "
                    f"best_practices={len(result.best_practices)} refactoring={len(result.refactoring)}"
                )
                return result
            except AppError as e:
                if e.reason in NON_RETRYABLE:
                    raise
                last_error = e
            except Exception as e:
                llm_attempts_total.labels(outcome="transport_error").inc()
                last_error = e

            log.warning(f"LLM attempt {attempt}/{self.max_retries} failed: {last_error}")
            if attempt < self.max_retries:
                await self._sleep(self.backoff_delay(attempt))

        timed_out = isinstance(last_error, AppError) and last_error.reason == "timeout"
        raise service_unavailable_error(
            f"Failed to analyze code after {self.max_retries} attempts: {last_error}",
            reason="timeout" if timed_out else "retries_exhausted",
            details={"attempts": self.max_retries, "lastError": str(last_error)},
        ) from last_error


_invoker: AIInvoker | None = None


def get_invoker() -> AIInvoker:
    global _invoker
    if _invoker is None:
        complete = llm_client.complete_json if llm_client.is_configured() else None
        if complete is None:
            log.warning("LLM API key not configured. Analysis will be unavailable.")
        _invoker = AIInvoker(
            complete,
            timeout=settings.llm_timeout,
            max_retries=settings.llm_max_retries,
            backoff_base=settings.llm_backoff_base,
        )
    return _invoker
