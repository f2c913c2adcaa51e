from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Optional

from core.exceptions import ProviderError

logger = logging.getLogger(__name__)

ENVELOPE_PREFIX = "data: "
KIND_CONTENT = "content"
KIND_ERROR = "error"

ERROR_TEXT = "Error: Failed to generate response"
RATE_LIMIT_TEXT = "Error: The model is receiving too many requests right now. Please try again shortly."


def encode_envelope(content: str, kind: str = KIND_CONTENT) -> bytes:
    """One outbound SSE line: `data: {"kind": ..., "content": ...}` followed by a blank line."""
    payload = json.dumps({"kind": kind, "content": content}, ensure_ascii=False)
    return f"{ENVELOPE_PREFIX}{payload}\n\n".encode("utf-8")


@dataclass
class StreamStats:
    fragments: int = 0
    chars: int = 0
    error: Optional[str] = None
    error_kind: Optional[str] = None


class StreamNormalizer:
    """Turns an adapter's fragment sequence into envelope bytes, in order, one per fragment."""

    def __init__(self, provider_name: str, model: str):
        self.provider_name = provider_name
        self.model = model
        self.stats = StreamStats()

    async def normalize(
        self,
        fragments: AsyncIterator[str],
        on_close: Optional[Callable[[StreamStats], Awaitable[None]]] = None,
    ) -> AsyncIterator[bytes]:
        """
        Empty fragments are dropped. A failure mid-stream produces exactly one
        error envelope, then the stream ends. Cancellation writes nothing further.
        """
        try:
            async for fragment in fragments:
                if not fragment:
                    continue
                self.stats.fragments += 1
                self.stats.chars += len(fragment)
                yield encode_envelope(fragment)
        except ProviderError as e:
            self.stats.error, self.stats.error_kind = e.message, e.kind
            logger.warning("Provider failed mid-stream (%s/%s): %s", self.provider_name, self.model, e.message)
            yield encode_envelope(RATE_LIMIT_TEXT if e.is_rate_limit else ERROR_TEXT, kind=KIND_ERROR)
        except Exception as e:
            self.stats.error, self.stats.error_kind = f"{type(e).__name__}: {e}", "internal"
            logger.exception("Stream error (%s/%s)", self.provider_name, self.model)
            yield encode_envelope(ERROR_TEXT, kind=KIND_ERROR)
        finally:
            if on_close is not None:
                await on_close(self.stats)
