"""Incremental Server-Sent-Events decoder.

Lines arrive newline-stripped (httpx ``aiter_lines``). Each ``data:`` line
of an event becomes its own payload; providers send one JSON object per
line, so multi-line data is intentionally NOT joined the way the SSE
standard describes.
"""

from __future__ import annotations

DONE = "[DONE]"


class SSEParser:
    """Buffers ``data:`` fields until the blank line that ends the event."""

    def __init__(self) -> None:
        self._buffer: list[str] = []

    def feed(self, line: str) -> list[str]:
        """Consume one line; return the payloads completed by it (maybe none)."""
        if not line.strip():
            return self._flush()

        if line.startswith("data:"):
            value = line[5:]
            if value.startswith(" "):
                value = value[1:]
            self._buffer.append(value)
        # event:, id:, retry: and ":" comments are accepted but not surfaced
        return []

    def finish(self) -> list[str]:
        """Flush an event left open when the byte stream ended."""
        return self._flush()

    @property
    def pending(self) -> int:
        """Number of buffered data lines not yet emitted."""
        return len(self._buffer)

    def _flush(self) -> list[str]:
        payloads = self._buffer
        self._buffer = []
        return payloads
