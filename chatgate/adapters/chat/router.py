"""Chat proxy route: access gate, then the normalized upstream stream."""

from __future__ import annotations

import json

from fastapi import APIRouter, Request
from fastapi.responses import Response

from chatgate.adapters.chat.responses import (
    build_event_stream_response,
    preflight_response,
    rejected_response,
)
from chatgate.core.access_gate import AccessGate, GateDecision
from chatgate.core.errors import GateRejectedError, InvalidRequestError
from chatgate.normalizer.normalizer import ResponseNormalizer
from chatgate.observability.logging import log_event
from chatgate.observability.metrics import count_gate_reject
from chatgate.util.logger import logger

router = APIRouter()

_ALL_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS")
_access_gate: AccessGate | None = None


def get_access_gate() -> AccessGate:
    global _access_gate
    if _access_gate is None:
        _access_gate = AccessGate()
    return _access_gate


def reset_access_gate(gate: AccessGate | None = None) -> None:
    global _access_gate
    _access_gate = gate


def build_normalizer() -> ResponseNormalizer:
    return ResponseNormalizer()


async def _read_json_body(request: Request) -> object:
    raw = await request.body()
    if not raw.strip():
        raise InvalidRequestError("Invalid JSON body", message="request body is empty")
    try:
        return json.loads(raw)
    except (UnicodeDecodeError, ValueError) as exc:
        raise InvalidRequestError("Invalid JSON body") from exc


@router.api_route("/chat", methods=list(_ALL_METHODS))
async def chat(request: Request) -> Response:
    gate = get_access_gate()
    try:
        decision = gate.check_request(request.method, request.headers)
        if decision is GateDecision.PREFLIGHT:
            return preflight_response()
        payload = await _read_json_body(request)
        chat_request = gate.validate_body(payload)
    except GateRejectedError as exc:
        count_gate_reject(exc.status_code, exc.error)
        logger.info("chat rejected method=%s status=%s error=%s", request.method, exc.status_code, exc.error)
        return rejected_response(exc)

    log_event(
        "chat_accepted",
        session_id=chat_request.session_id,
        domain_name=chat_request.domain_name,
        text_chars=len(chat_request.text),
        is_draft=chat_request.is_draft,
    )
    normalizer = build_normalizer()
    return build_event_stream_response(normalizer.sse_chunks(chat_request))
