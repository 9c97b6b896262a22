"""Translate upstream replies (streamed or batched) into NormalizedEvent sequences."""

from __future__ import annotations

import json
from contextlib import aclosing
from typing import AsyncGenerator, AsyncIterable

import httpx

from chatgate.adapters.upstream import (
    build_upstream_headers,
    encode_upstream_body,
    get_upstream_async_client,
    is_streaming_content_type,
    safe_error_detail,
)
from chatgate.config.settings import Settings, settings as default_settings
from chatgate.core.errors import UpstreamError, UpstreamMalformedError, UpstreamUnavailableError
from chatgate.core.models import ChatRequest, NormalizedEvent
from chatgate.normalizer.line_buffer import LineBuffer
from chatgate.normalizer.line_parser import DEFAULT_SENTINEL, ParsedLine, parse_line
from chatgate.observability.metrics import count_upstream_failure, count_upstream_response
from chatgate.util.fields import MESSAGE_FIELDS, first_text_field, flag_field
from chatgate.util.logger import logger


def terminal_event(session_id: str) -> NormalizedEvent:
    return NormalizedEvent(ai_message="", session_id=session_id, has_followup=False)


def _event_for(parsed: ParsedLine, session_id: str) -> NormalizedEvent:
    if parsed.terminal:
        return terminal_event(session_id)
    return NormalizedEvent(ai_message=parsed.message, session_id=session_id, has_followup=parsed.has_followup)


async def _drain(chunks: AsyncIterable[bytes]) -> None:
    try:
        async for _ in chunks:
            pass
    except Exception as exc:
        logger.info("upstream drain after sentinel interrupted error=%s", exc)


async def translate_stream(
    chunks: AsyncIterable[bytes],
    session_id: str,
    sentinel: str = DEFAULT_SENTINEL,
) -> AsyncGenerator[NormalizedEvent, None]:
    """
    Turn raw upstream chunks into events, one per logical line.

    Exactly one terminal event closes the sequence: the upstream sentinel, or a
    synthesized one when the upstream closes without it. Lines after the sentinel
    are drained and discarded so the connection is released cleanly.
    """

    buffer = LineBuffer()
    finished = False
    iterator = aiter(chunks)
    async for chunk in iterator:
        for line in buffer.feed(chunk):
            try:
                parsed = parse_line(line, sentinel=sentinel)
            except Exception as exc:
                logger.warning("stream line skipped error=%s line_chars=%d", exc, len(line))
                continue
            if parsed is None:
                continue
            yield _event_for(parsed, session_id)
            if parsed.terminal:
                finished = True
                break
        if finished:
            break

    if finished:
        await _drain(iterator)
        return

    tail = buffer.flush()
    if tail.strip():
        try:
            parsed = parse_line(tail, sentinel=sentinel)
        except Exception as exc:
            logger.warning("stream tail skipped error=%s tail_chars=%d", exc, len(tail))
            parsed = None
        if parsed is not None:
            yield _event_for(parsed, session_id)
            if parsed.terminal:
                return

    logger.info("upstream stream closed without sentinel session_id=%s inject_terminal=true", session_id)
    yield terminal_event(session_id)


def batch_event(body: bytes, session_id: str, empty_message: str) -> NormalizedEvent:
    try:
        decoded = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as exc:
        raise UpstreamMalformedError(f"upstream_malformed_body: {exc}") from exc
    if decoded is None:
        raise UpstreamMalformedError("upstream_malformed_body: null")
    if not isinstance(decoded, dict):
        # 合法 JSON 但不是对象，按无可用消息处理
        return NormalizedEvent(ai_message=empty_message, session_id=session_id, has_followup=False)
    return NormalizedEvent(
        ai_message=first_text_field(decoded, MESSAGE_FIELDS, default=empty_message),
        session_id=session_id,
        has_followup=flag_field(decoded),
    )


class ResponseNormalizer:
    """Issues the upstream call for one ChatRequest and yields NormalizedEvents as they arrive."""

    def __init__(self, config: Settings | None = None, client: httpx.AsyncClient | None = None) -> None:
        self.settings = config or default_settings
        self._client = client

    async def _client_or_shared(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client
        return await get_upstream_async_client()

    def apology(self, session_id: str, *, mid_stream: bool) -> NormalizedEvent:
        message = self.settings.stream_failure_message if mid_stream else self.settings.upstream_failure_message
        return NormalizedEvent(ai_message=message, session_id=session_id, has_followup=False)

    async def _upstream_events(self, chat_request: ChatRequest) -> AsyncGenerator[NormalizedEvent, None]:
        url = self.settings.upstream_url
        session_id = chat_request.session_id
        body = encode_upstream_body(chat_request)
        headers = build_upstream_headers(self.settings.upstream_api_key)
        client = await self._client_or_shared()
        logger.debug("upstream start url=%s payload_bytes=%d session_id=%s", url, len(body), session_id)

        try:
            async with client.stream("POST", url, content=body, headers=headers) as resp:
                logger.debug("upstream connected url=%s status=%s", url, resp.status_code)
                if resp.status_code >= 400:
                    detail = safe_error_detail(await resp.aread())
                    raise UpstreamUnavailableError(f"upstream_http_error:{resp.status_code}:{detail}")

                content_type = resp.headers.get("content-type", "")
                if is_streaming_content_type(content_type):
                    count_upstream_response("stream")
                    translated = translate_stream(
                        resp.aiter_bytes(),
                        session_id,
                        sentinel=self.settings.stream_done_sentinel,
                    )
                    async with aclosing(translated):
                        async for event in translated:
                            yield event
                    return

                count_upstream_response("batch")
                payload = await resp.aread()
                yield batch_event(payload, session_id, self.settings.batch_empty_message)
        except httpx.HTTPError as exc:
            detail = (str(exc) or "").strip() or type(exc).__name__
            raise UpstreamUnavailableError(f"upstream_unreachable: {detail}") from exc

    async def events(self, chat_request: ChatRequest) -> AsyncGenerator[NormalizedEvent, None]:
        """Never raises for upstream trouble; ends with an apology event instead."""

        session_id = chat_request.session_id
        emitted = 0
        try:
            async with aclosing(self._upstream_events(chat_request)) as upstream_events:
                async for event in upstream_events:
                    emitted += 1
                    yield event
        except UpstreamError as exc:
            logger.warning("upstream failed session_id=%s emitted=%d error=%s", session_id, emitted, exc)
            count_upstream_failure(type(exc).__name__, mid_stream=emitted > 0)
            yield self.apology(session_id, mid_stream=emitted > 0)
        except Exception:  # pragma: no cover - fail-safe
            logger.exception("normalizer unexpected error session_id=%s emitted=%d", session_id, emitted)
            count_upstream_failure("unexpected", mid_stream=emitted > 0)
            yield self.apology(session_id, mid_stream=emitted > 0)

    async def sse_chunks(self, chat_request: ChatRequest) -> AsyncGenerator[bytes, None]:
        async with aclosing(self.events(chat_request)) as events:
            async for event in events:
                yield event.to_sse()
