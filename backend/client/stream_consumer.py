from __future__ import annotations

import codecs
import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterable, Callable, List, Optional

from config.logging import log_event
from core.exceptions import StreamParseError

logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "


@dataclass
class Envelope:
    kind: str
    content: str

    @property
    def is_error(self) -> bool:
        return self.kind == "error"


@dataclass
class StreamResult:
    text: str = ""
    fragments: int = 0
    errors: List[str] = field(default_factory=list)
    skipped_lines: int = 0

    @property
    def failed(self) -> bool:
        return bool(self.errors)


def parse_line(line: str) -> Optional[Envelope]:
    """One wire line to an Envelope. Blank and non-data lines yield None."""
    line = line.rstrip("\r")
    if not line.startswith(DATA_PREFIX):
        return None
    payload = line[len(DATA_PREFIX):]
    try:
        j = json.loads(payload)
    except ValueError as e:
        raise StreamParseError(line, str(e)) from e
    if not isinstance(j, dict) or not isinstance(j.get("content"), str):
        raise StreamParseError(line, "envelope has no text content")
    kind = j.get("kind") or "content"
    return Envelope(kind=str(kind), content=j["content"])


class StreamConsumer:
    """
    Reads the gateway's envelope stream chunk by chunk.

    Chunks may split lines and multi-byte characters anywhere; both are
    reassembled before parsing. ``on_update`` receives the whole answer so far
    every time it grows.
    """

    async def consume(
        self,
        chunks: AsyncIterable[bytes],
        on_update: Optional[Callable[[str], Any]] = None,
    ) -> StreamResult:
        result = StreamResult()
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        buffer = ""
        try:
            async for chunk in chunks:
                buffer += decoder.decode(chunk)
                *lines, buffer = buffer.split("\n")
                for line in lines:
                    self._apply(line, result, on_update)
            buffer += decoder.decode(b"", final=True)
            if buffer:
                self._apply(buffer, result, on_update)
        finally:
            aclose = getattr(chunks, "aclose", None)
            if aclose is not None:
                await aclose()
        return result

    def _apply(self, line: str, result: StreamResult, on_update: Optional[Callable[[str], Any]]) -> None:
        try:
            envelope = parse_line(line)
        except StreamParseError as e:
            result.skipped_lines += 1
            log_event("stream.parse_error", level=logging.WARNING, error=e.message, line=e.details.get("line"))
            return
        if envelope is None or not envelope.content:
            return
        if envelope.is_error:
            result.errors.append(envelope.content)
        result.fragments += 1
        result.text += envelope.content
        if on_update is not None:
            on_update(result.text)
