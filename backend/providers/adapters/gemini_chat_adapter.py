# backend/providers/adapters/gemini_chat_adapter.py
from typing import Any, Dict, List, Optional

from core.exceptions import ProviderError
from core.images import decode_data_uri
from models.chat import ChatTurn
from providers.base import ChatProviderAdapter, NativeRequest, ProviderContext


class GeminiChatAdapter(ChatProviderAdapter):
    """
    Google Generative Language API via :streamGenerateContent (alt=sse).

    Every turn but the last is history (role `user` stays `user`, anything
    else becomes `model`). The system instruction is not a separate field:
    it is prepended to the final turn's text.
    """

    wire = "gemini"

    def translate(self, model: str, context: ProviderContext) -> NativeRequest:
        contents: List[Dict[str, Any]] = []
        for turn in context.history:
            contents.append({
                "role": "user" if turn.role == "user" else "model",
                "parts": self._parts(turn.content, turn),
            })

        final = context.current_turn
        final_text = f"{context.system_instruction}\n{final.content}"
        contents.append({"role": "user", "parts": self._parts(final_text, final)})

        payload: Dict[str, Any] = {"contents": contents}

        gc: Dict[str, Any] = {}
        defaults = self.provider.defaults or {}
        if defaults.get("temperature") is not None:
            gc["temperature"] = float(defaults["temperature"])
        if defaults.get("max_tokens") is not None:
            gc["maxOutputTokens"] = int(defaults["max_tokens"])
        if gc:
            payload["generationConfig"] = gc

        headers = self._headers()
        if self.provider.api_key:
            headers["x-goog-api-key"] = self.provider.api_key

        return NativeRequest(
            method="POST",
            url=f"{self._base_url()}/v1beta/models/{model}:streamGenerateContent",
            json=payload,
            headers=headers,
            params={"alt": "sse"},
        )

    @staticmethod
    def _parts(text: str, turn: ChatTurn) -> List[Dict[str, Any]]:
        parts: List[Dict[str, Any]] = [{"text": text or ""}]
        for uri in turn.images:
            image = decode_data_uri(uri)
            parts.append({"inlineData": {"mimeType": image.mime_type, "data": image.b64()}})
        return parts

    def parse_event(self, data: str) -> Optional[str]:
        j = self._load_event(data)
        if j is None:
            return None
        if "error" in j:
            self._raise_payload_error(j["error"])

        cands = j.get("candidates") or []
        if not cands:
            block = (j.get("promptFeedback") or {}).get("blockReason")
            if block:
                raise ProviderError(self.provider.name, f"prompt blocked: {block}", kind="bad_request")
            return None

        parts = (cands[0].get("content") or {}).get("parts") or []
        texts = [p["text"] for p in parts if isinstance(p, dict) and isinstance(p.get("text"), str)]
        return "".join(texts) if texts else None
