"""Audit record handling for gate decisions."""

from __future__ import annotations

import json
import queue
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from chatgate.config.settings import settings
from chatgate.util.logger import get_logger


logger = get_logger("audit")
_AUDIT_QUEUE: queue.Queue[tuple[Path, dict[str, Any]] | None] = queue.Queue(maxsize=10000)
_AUDIT_WORKER: threading.Thread | None = None
_AUDIT_LOCK = threading.Lock()


def _audit_path() -> Path | None:
    raw = (settings.audit_log_path or "").strip()
    if not raw:
        return None
    return Path(raw)


def _append_payload(path: Path, payload: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as handle:
        handle.write(json.dumps(payload, ensure_ascii=False) + "\n")


def _worker_loop() -> None:
    while True:
        item = _AUDIT_QUEUE.get()
        try:
            if item is None:
                break
            _append_payload(*item)
        except Exception as exc:  # pragma: no cover - operational safeguard
            logger.warning("audit worker write failed: %s", exc)
        finally:
            _AUDIT_QUEUE.task_done()


def _ensure_worker() -> None:
    global _AUDIT_WORKER
    if _AUDIT_WORKER is not None and _AUDIT_WORKER.is_alive():
        return
    with _AUDIT_LOCK:
        if _AUDIT_WORKER is not None and _AUDIT_WORKER.is_alive():
            return
        _AUDIT_WORKER = threading.Thread(target=_worker_loop, name="chatgate-audit-writer", daemon=True)
        _AUDIT_WORKER.start()


def write_audit(event: dict[str, Any]) -> None:
    """Queue one audit record. Callers pass identifying headers only, never body content."""

    path = _audit_path()
    if path is None:
        return
    payload = {
        "ts": datetime.now(tz=timezone.utc).isoformat(),
        **event,
    }
    _ensure_worker()
    try:
        _AUDIT_QUEUE.put_nowait((path, payload))
    except queue.Full:  # pragma: no cover - overload safeguard
        _append_payload(path, payload)
        logger.warning("audit queue full, fallback to sync write event=%s", event.get("event", "unknown"))


def flush_audit(timeout_seconds: float = 1.0) -> None:
    """Block until queued records are written (used by shutdown and tests)."""

    if _AUDIT_WORKER is None:
        return
    deadline = time.monotonic() + timeout_seconds
    while _AUDIT_QUEUE.unfinished_tasks and time.monotonic() < deadline:
        time.sleep(0.01)


def shutdown_audit_worker(timeout_seconds: float = 1.0) -> None:
    global _AUDIT_WORKER
    if _AUDIT_WORKER is None:
        return
    try:
        _AUDIT_QUEUE.put_nowait(None)
    except queue.Full:
        pass
    worker = _AUDIT_WORKER
    worker.join(timeout=timeout_seconds)
    _AUDIT_WORKER = None
