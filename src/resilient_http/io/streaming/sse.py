"""Incremental SSE (text/event-stream) framing.

Records are separated by a blank line. Bytes are decoded incrementally so
multi-byte UTF-8 sequences may span chunk boundaries, and an incomplete
record stays buffered until its terminating blank line arrives.
"""

from __future__ import annotations

import codecs
import re
from dataclasses import dataclass

DONE_SENTINEL = "[DONE]"

_RECORD_SEPARATOR = re.compile(r"\r?\n\r?\n")


@dataclass(frozen=True, slots=True)
class SSERecord:
    """One blank-line-terminated record: optional event name plus its data lines."""
    event: str | None
    data: tuple[str, ...]


def parse_record(block: str) -> SSERecord | None:
    """Parse one record block. Comment lines and unknown fields are ignored."""
    event: str | None = None
    data: list[str] = []
    for line in block.splitlines():
        if not line or line.startswith(":"):
            continue
        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if name == "data":
            data.append(value)
        elif name == "event":
            event = value
    return SSERecord(event, tuple(data)) if data else None


class SSEParser:
    """Feed chunks, get complete records back.

    Example:
        >>> parser = SSEParser()
        >>> parser.feed(b'data: {"a"')
        []
        >>> parser.feed(b': 1}\\n\\n')
        [SSERecord(event=None, data=('{"a": 1}',))]
    """

    __slots__ = ("_decoder", "_buffer")

    def __init__(self, encoding: str = "utf-8") -> None:
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._buffer = ""

    def feed(self, chunk: bytes | str) -> list[SSERecord]:
        self._buffer += self._decoder.decode(chunk) if isinstance(chunk, bytes) else chunk
        blocks = _RECORD_SEPARATOR.split(self._buffer)
        self._buffer = blocks.pop()
        return [r for b in blocks if (r := parse_record(b)) is not None]

    def flush(self) -> list[SSERecord]:
        """Parse whatever remains at end of stream."""
        self._buffer += self._decoder.decode(b"", final=True)
        rest, self._buffer = self._buffer, ""
        return [r for b in _RECORD_SEPARATOR.split(rest) if (r := parse_record(b)) is not None]
