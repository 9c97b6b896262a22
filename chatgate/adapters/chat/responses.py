"""
CORS headers, JSON error bodies and the streaming response wrapper for the chat route.
"""

from __future__ import annotations

from typing import AsyncIterable, Iterable

from fastapi.responses import JSONResponse, Response, StreamingResponse

from chatgate.config.settings import settings
from chatgate.core.errors import GateRejectedError


def cors_headers() -> dict[str, str]:
    return {
        "Access-Control-Allow-Origin": settings.cors_allow_origin,
        "Access-Control-Allow-Methods": settings.cors_allow_methods,
        "Access-Control-Allow-Headers": settings.cors_allow_headers,
    }


def preflight_response() -> Response:
    return Response(status_code=200, headers=cors_headers())


def error_response(status_code: int, error: str, message: str | None = None) -> JSONResponse:
    content = {"error": error}
    if message:
        content["message"] = message
    return JSONResponse(status_code=status_code, content=content, headers=cors_headers())


def rejected_response(exc: GateRejectedError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload(), headers=cors_headers())


def build_event_stream_response(generator: Iterable[bytes] | AsyncIterable[bytes]) -> StreamingResponse:
    # 前端按 text/plain 读取 "data: ...\n\n" 行
    return StreamingResponse(
        generator,
        media_type="text/plain",
        headers={
            **cors_headers(),
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
