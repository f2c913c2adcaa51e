# backend/providers/adapters/anthropic_chat_adapter.py
import logging
from typing import Any, Dict, List, Optional

from providers.base import ChatProviderAdapter, NativeRequest, ProviderContext

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 4096
DEFAULT_TEMPERATURE = 0.7


class AnthropicChatAdapter(ChatProviderAdapter):
    """
    Anthropic Messages API streaming (POST /v1/messages, stream=true).

    The system instruction goes in as a leading `assistant` turn rather than
    the `system` field. Images are not forwarded to this provider.
    """

    wire = "anthropic"

    def translate(self, model: str, context: ProviderContext) -> NativeRequest:
        messages: List[Dict[str, Any]] = [{"role": "assistant", "content": context.system_instruction}]
        dropped = 0
        for turn in context.all_turns():
            dropped += len(turn.images)
            messages.append({"role": turn.role, "content": turn.content})
        if dropped:
            logger.info("Dropping %d image(s): %s is text-only", dropped, self.provider.name)

        defaults = self.provider.defaults or {}
        payload: Dict[str, Any] = {
            "model": model,
            "max_tokens": int(defaults.get("max_tokens") or DEFAULT_MAX_TOKENS),
            "temperature": float(defaults.get("temperature", DEFAULT_TEMPERATURE)),
            "messages": messages,
            "stream": True,
        }

        headers = self._headers()
        if self.provider.api_key:
            headers["x-api-key"] = self.provider.api_key
        headers.setdefault("anthropic-version", "2023-06-01")

        return NativeRequest(
            method="POST",
            url=f"{self._base_url()}/v1/messages",
            json=payload,
            headers=headers,
        )

    def parse_event(self, data: str) -> Optional[str]:
        j = self._load_event(data)
        if j is None:
            return None
        t = j.get("type")
        if t == "error":
            self._raise_payload_error(j.get("error") or {})
        if t == "content_block_delta":
            text = (j.get("delta") or {}).get("text")
            return text if isinstance(text, str) else None
        return None
