"""Parse one logical upstream line: SSE ``data:`` frame, raw JSON, or plain text."""

from __future__ import annotations

import json
from dataclasses import dataclass

from chatgate.util.fields import MESSAGE_FIELDS, first_text_field, flag_field

SSE_DATA_PREFIX = "data:"
DEFAULT_SENTINEL = "[DONE]"


@dataclass(frozen=True, slots=True)
class ParsedLine:
    message: str = ""
    has_followup: bool = False
    terminal: bool = False


TERMINAL_LINE = ParsedLine(terminal=True)


def _parse_payload(text: str) -> ParsedLine:
    try:
        decoded = json.loads(text)
    except ValueError:
        return ParsedLine(message=text)
    if not isinstance(decoded, dict):
        # 非对象 JSON（数字、字符串、数组）按原文输出
        return ParsedLine(message=text)
    return ParsedLine(
        message=first_text_field(decoded, MESSAGE_FIELDS),
        has_followup=flag_field(decoded),
    )


def parse_line(raw_line: str, sentinel: str = DEFAULT_SENTINEL) -> ParsedLine | None:
    """Return ``None`` for blank lines, ``TERMINAL_LINE`` for the end-of-stream marker."""

    line = raw_line.strip()
    if not line:
        return None
    if line.startswith(SSE_DATA_PREFIX):
        data = line[len(SSE_DATA_PREFIX):].strip()
        if not data or data == sentinel:
            return TERMINAL_LINE
        return _parse_payload(data)
    return _parse_payload(line)
