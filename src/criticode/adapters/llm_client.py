# Author: Bradley R. Kinnard — pay per token

"""
Async OpenAI client, JSON mode only. Retries and timeouts belong to the
invoker, so the SDK's own retry loop is off and its timeout is just a backstop.
"""

import asyncio
import logging

from openai import AsyncOpenAI

from src.criticode.config import settings

log = logging.getLogger(__name__)

_client: AsyncOpenAI | None = None
_lock = asyncio.Lock()

SYSTEM = "You are an expert code reviewer and security analyst. Respond with valid JSON only."


def is_configured() -> bool:
    return bool(settings.openai_api_key)


async def get_llm() -> AsyncOpenAI:
    global _client
    if _client is not None:
        return _client

    async with _lock:
        if _client is None:
            if not is_configured():
                raise ValueError("OPENAI_API_KEY not set, can't create LLM client")
            log.info(f"creating AsyncOpenAI client, model={settings.openai_model} base_url={settings.openai_base_url or 'default'}")
            _client = AsyncOpenAI(
                api_key=settings.openai_api_key,
                base_url=settings.openai_base_url,
                # a little past the invoker's own deadline so ours fires first
                timeout=settings.llm_timeout + 5,
                max_retries=0,
            )
    return _client


async def complete_json(prompt: str) -> str:
    """One prompt in, raw JSON text out. Parsing is the invoker's problem."""
    client = await get_llm()

    resp = await client.chat.completions.create(
        model=settings.openai_model,
        messages=[
            {"role": "system", "content": SYSTEM},
            {"role": "user", "content": prompt},
        ],
        temperature=0.0,
        response_format={"type": "json_object"},
    )

    if resp.usage is not None:
        log.info(f"llm usage | prompt={resp.usage.prompt_tokens} completion={resp.usage.completion_tokens}")
    return resp.choices[0].message.content or ""


async def close_llm() -> None:
    """lifespan shutdown. drops the pooled http connections."""
    global _client
    if _client is not None:
        await _client.close()
        _client = None
