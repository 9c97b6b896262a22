"""Reassemble logical lines from arbitrary upstream byte chunks."""

from __future__ import annotations

import codecs


class LineBuffer:
    """
    Incrementally decodes bytes and splits on ``\\n``.

    The trailing segment of every feed may be an incomplete line and stays buffered
    until a later chunk completes it or ``flush`` is called at stream end. Decoding
    is stateful, so a multi-byte character split across chunks is reassembled.
    """

    def __init__(self, encoding: str = "utf-8") -> None:
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._pending = ""

    def feed(self, chunk: bytes) -> list[str]:
        if not chunk:
            return []
        self._pending += self._decoder.decode(chunk)
        if "\n" not in self._pending:
            return []
        *lines, self._pending = self._pending.split("\n")
        return lines

    def flush(self) -> str:
        tail = self._pending + self._decoder.decode(b"", final=True)
        self._pending = ""
        return tail

    @property
    def pending(self) -> str:
        return self._pending
