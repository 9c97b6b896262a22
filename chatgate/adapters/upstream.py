"""
Upstream HTTP client and request shaping for the conversational-AI API.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any

import httpx

from chatgate.config.settings import settings
from chatgate.core.models import ChatRequest
from chatgate.util.logger import logger

# 命中任一片段即按流式处理；其余（通常是 application/json）整体读取
_STREAMING_CONTENT_TYPES = (
    "text/event-stream",
    "stream+json",
    "application/x-ndjson",
    "text/plain",
)

_upstream_async_client: httpx.AsyncClient | None = None
_upstream_client_lock: Any = None


def _upstream_http_limits() -> httpx.Limits:
    return httpx.Limits(
        max_connections=max(10, int(settings.upstream_max_connections)),
        max_keepalive_connections=max(5, int(settings.upstream_max_keepalive_connections)),
    )


def _upstream_http_timeout() -> httpx.Timeout:
    timeout = float(settings.upstream_timeout_seconds)
    return httpx.Timeout(connect=timeout, read=timeout, write=timeout, pool=timeout)


async def get_upstream_async_client() -> httpx.AsyncClient:
    global _upstream_async_client, _upstream_client_lock
    if _upstream_async_client is not None:
        return _upstream_async_client
    if _upstream_client_lock is None:
        _upstream_client_lock = asyncio.Lock()
    async with _upstream_client_lock:
        if _upstream_async_client is None:
            _upstream_async_client = httpx.AsyncClient(
                http2=False,
                timeout=_upstream_http_timeout(),
                limits=_upstream_http_limits(),
            )
    return _upstream_async_client


async def close_upstream_async_client() -> None:
    global _upstream_async_client
    if _upstream_async_client is not None:
        await _upstream_async_client.aclose()
        _upstream_async_client = None


def is_streaming_content_type(content_type: str | None) -> bool:
    lowered = (content_type or "").lower()
    return any(marker in lowered for marker in _STREAMING_CONTENT_TYPES)


def build_upstream_headers(api_key: str) -> dict[str, str]:
    return {
        "Content-Type": "application/json",
        "Accept": "text/event-stream, application/json",
        settings.upstream_api_key_header: api_key,
    }


def encode_upstream_body(chat_request: ChatRequest) -> bytes:
    return json.dumps(chat_request.to_upstream_payload(), ensure_ascii=False).encode("utf-8")


def safe_error_detail(body: bytes) -> str:
    text = body.decode("utf-8", errors="replace").strip()
    if not text:
        return ""
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        return text[:600]
    if isinstance(parsed, dict) and isinstance(parsed.get("error"), str):
        return parsed["error"][:600]
    return json.dumps(parsed, ensure_ascii=False)[:600]
