# backend/providers/adapters/openai_chat_adapter.py
from typing import Any, Dict, List, Optional

from models.chat import ChatTurn
from providers.base import ChatProviderAdapter, NativeRequest, ProviderContext


class OpenAIChatAdapter(ChatProviderAdapter):
    """OpenAI (and OpenAI-compatible) /chat/completions streaming."""

    wire = "openai"

    def translate(self, model: str, context: ProviderContext) -> NativeRequest:
        messages: List[Dict[str, Any]] = [{"role": "system", "content": context.system_instruction}]
        messages.extend(self._message(turn) for turn in context.all_turns())

        payload: Dict[str, Any] = {"model": model, "messages": messages, "stream": True}
        defaults = self.provider.defaults or {}
        if defaults.get("temperature") is not None:
            payload["temperature"] = float(defaults["temperature"])
        if defaults.get("max_tokens") is not None:
            payload["max_tokens"] = int(defaults["max_tokens"])

        headers = self._headers()
        if self.provider.api_key:
            headers["Authorization"] = f"Bearer {self.provider.api_key}"

        return NativeRequest(
            method="POST",
            url=f"{self._base_url()}/chat/completions",
            json=payload,
            headers=headers,
        )

    @staticmethod
    def _message(turn: ChatTurn) -> Dict[str, Any]:
        if not turn.images:
            return {"role": turn.role, "content": turn.content}
        # Multi-part: one text part, then one image part per attachment, in order
        parts: List[Dict[str, Any]] = [{"type": "text", "text": turn.content or ""}]
        parts.extend({"type": "image_url", "image_url": {"url": image}} for image in turn.images)
        return {"role": turn.role, "content": parts}

    def parse_event(self, data: str) -> Optional[str]:
        j = self._load_event(data)
        if j is None:
            return None
        if "error" in j:
            self._raise_payload_error(j["error"])
        choices = j.get("choices") or []
        if not choices:
            return None
        delta = (choices[0] or {}).get("delta") or {}
        content = delta.get("content")
        return content if isinstance(content, str) else None
