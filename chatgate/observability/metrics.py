"""Log-backed counters for gate decisions and upstream outcomes."""

from __future__ import annotations

from chatgate.util.logger import get_logger

logger = get_logger("metrics")

GATE_REJECT = "gate_reject"
UPSTREAM_RESPONSE = "upstream_response"
UPSTREAM_FAILURE = "upstream_failure"


def emit_counter(name: str, value: int = 1, labels: dict | None = None) -> None:
    rendered = " ".join(f"{key}={labels[key]}" for key in sorted(labels or {}))
    logger.info("counter name=%s value=%s %s", name, value, rendered)


def count_gate_reject(status_code: int, error: str) -> None:
    emit_counter(GATE_REJECT, labels={"status": status_code, "error": error})


def count_upstream_response(mode: str) -> None:
    # mode: stream | batch
    emit_counter(UPSTREAM_RESPONSE, labels={"mode": mode})


def count_upstream_failure(kind: str, *, mid_stream: bool) -> None:
    emit_counter(UPSTREAM_FAILURE, labels={"kind": kind, "mid_stream": mid_stream})
