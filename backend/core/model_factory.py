from __future__ import annotations
from typing import Dict, Optional, Type

from core.exceptions import UnsupportedModelError
from providers.base import ChatProviderAdapter, ClientFactory, Provider
from providers.adapters.anthropic_chat_adapter import AnthropicChatAdapter
from providers.adapters.gemini_chat_adapter import GeminiChatAdapter
from providers.adapters.openai_chat_adapter import OpenAIChatAdapter

ADAPTERS: Dict[str, Type[ChatProviderAdapter]] = {
    OpenAIChatAdapter.wire: OpenAIChatAdapter,
    GeminiChatAdapter.wire: GeminiChatAdapter,
    AnthropicChatAdapter.wire: AnthropicChatAdapter,
}


def normalize_wire(wire: str) -> str:
    w = (wire or "").lower().strip()
    # Accept "google" et al. but normalize to "gemini"
    if w in ("google", "googleai", "google_genai", "gemini"):
        return "gemini"
    return w


def build_chat_adapter(
    provider: Provider,
    model_name: str,
    *,
    timeout_s: float = 180.0,
    client_factory: Optional[ClientFactory] = None,
) -> ChatProviderAdapter:
    """
    One adapter per request; it owns nothing until open() is called.
    """
    cls = ADAPTERS.get(normalize_wire(provider.wire))
    if cls is None:
        raise UnsupportedModelError(model_name)
    return cls(provider, timeout_s=timeout_s, client_factory=client_factory)
