"""Event-stream decoding for chat-completions streams.

LineReader turns arbitrary byte chunks into complete text lines: it
buffers, splits on newline, yields every complete line, and keeps the
trailing partial line for the next chunk. UTF-8 sequences split across
chunks are decoded correctly.

parse_sse_line() interprets one line:
    data: {"choices":[{"delta":{"content":"Hel"}}]}   -> delta "Hel"
    data: [DONE]                                      -> done sentinel
    anything else (comments, blanks, bad JSON)        -> None (skipped)
"""

import codecs
import json

from chatrelay.services.llm.types import StreamEvent

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"


class LineReader:
    """Incremental newline splitter over a byte stream."""

    def __init__(self, encoding: str = "utf-8"):
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._buffer = ""

    def feed(self, chunk: bytes) -> list[str]:
        """Add bytes and return the lines completed by them."""
        self._buffer += self._decoder.decode(chunk)
        if "\n" not in self._buffer:
            return []
        *lines, self._buffer = self._buffer.split("\n")
        return [line.rstrip("\r") for line in lines]

    def flush(self) -> list[str]:
        """Return whatever is left once the byte stream has ended."""
        self._buffer += self._decoder.decode(b"", final=True)
        rest, self._buffer = self._buffer, ""
        rest = rest.rstrip("\r")
        return [rest] if rest else []

    @property
    def pending(self) -> str:
        """The buffered partial line (for diagnostics)."""
        return self._buffer


def parse_sse_line(line: str) -> StreamEvent | None:
    """Decode one event-stream line into a StreamEvent, or None to skip it."""
    line = line.strip()
    if not line.startswith(DATA_PREFIX):
        return None

    payload = line[len(DATA_PREFIX) :].strip()
    if not payload:
        return None
    if payload == DONE_SENTINEL:
        return StreamEvent(done=True)

    try:
        data = json.loads(payload)
    except ValueError:
        return None

    if not isinstance(data, dict):
        return None
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return None
    delta = choices[0].get("delta")
    if not isinstance(delta, dict):
        return None
    content = delta.get("content")
    if not isinstance(content, str):
        return None

    return StreamEvent(delta_text=content)
