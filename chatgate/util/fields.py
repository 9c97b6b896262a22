"""Tolerant field extraction over decoded upstream JSON."""

from __future__ import annotations

from typing import Any, Iterable, Mapping

MESSAGE_FIELDS: tuple[str, ...] = ("text", "content", "message", "ai_message")
FOLLOWUP_FIELD = "has_followup"

_TRUTHY_STRINGS = frozenset({"true", "1", "yes"})
_FALSY_STRINGS = frozenset({"false", "0", "no", ""})


def first_text_field(payload: Mapping[str, Any], names: Iterable[str] = MESSAGE_FIELDS, default: str = "") -> str:
    """Return the first non-empty string value among ``names``, in order."""

    for name in names:
        value = payload.get(name)
        if isinstance(value, str) and value:
            return value
    return default


def flag_field(payload: Mapping[str, Any], name: str = FOLLOWUP_FIELD) -> bool:
    value = payload.get(name)
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in _TRUTHY_STRINGS
    return False


def strict_flag(value: Any, default: bool = False) -> bool | None:
    """Parse a caller-supplied boolean; ``None`` means the value is not a recognisable flag."""

    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUTHY_STRINGS:
            return True
        if lowered in _FALSY_STRINGS:
            return False
    return None
