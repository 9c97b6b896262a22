"""Per-request chat event log lines."""

from __future__ import annotations

from chatgate.util.logger import get_logger

logger = get_logger("events")


def log_event(event: str, session_id: str = "", **payload: object) -> None:
    """Write one ``event=... session_id=... k=v`` line; keys are sorted so lines stay greppable."""

    fields = " ".join(f"{key}={payload[key]}" for key in sorted(payload))
    logger.info("event=%s session_id=%s %s", event, session_id or "-", fields)
