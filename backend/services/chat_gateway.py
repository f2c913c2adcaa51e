import time
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from config.logging import log_event
from config.settings import Settings
from core.exceptions import ConfigurationError, ProviderError, ValidationError
from core.model_factory import build_chat_adapter
from core.system_prompt import build_system_instruction
from models.requests import ChatRequest
from providers.base import ClientFactory, ProviderContext, UpstreamStream
from providers.registry import ModelRegistry
from services.stream_normalizer import StreamNormalizer, StreamStats


@dataclass
class ChatStream:
    """An upstream that answered 2xx, plus the envelope body that drains it."""
    provider: str
    model: str
    upstream: UpstreamStream
    body: AsyncIterator[bytes]

    async def aclose(self) -> None:
        await self.upstream.aclose()


class ChatGateway:
    """Validates a chat request, picks the adapter, and opens the upstream stream."""

    def __init__(
        self,
        registry: ModelRegistry,
        settings: Settings,
        client_factory: Optional[ClientFactory] = None,
    ):
        self.registry = registry
        self.settings = settings
        self.client_factory = client_factory

    def system_instruction(self, language: Optional[str]) -> str:
        return build_system_instruction(
            language,
            identity=self.settings.assistant_identity,
            default_language=self.settings.default_language,
        )

    async def open_stream(self, request: ChatRequest) -> ChatStream:
        """
        Everything that can fail before the first byte fails here, so the
        router can still answer with a JSON error and a real status code.
        """
        self._validate(request)
        provider, model = self.registry.resolve(request.model)

        if provider.api_key_env and not provider.api_key:
            raise ConfigurationError(
                f"Missing credential for provider '{provider.name}'",
                provider=provider.name,
                api_key_env=provider.api_key_env,
            )

        adapter = build_chat_adapter(
            provider,
            model,
            timeout_s=self.settings.provider_timeout_s,
            client_factory=self.client_factory,
        )
        context = ProviderContext.from_turns(self.system_instruction(request.language), request.messages)
        native = adapter.translate(model, context)

        image_count = sum(len(t.images) for t in request.messages)
        log_event(
            "chat.start",
            provider=provider.name,
            model=model,
            turns=len(request.messages),
            images=image_count,
            language=request.language or self.settings.default_language,
        )

        start_time = time.perf_counter()
        try:
            upstream = await adapter.open(native)
        except ProviderError as e:
            duration_ms = int((time.perf_counter() - start_time) * 1000)
            log_event(
                "provider.error",
                provider=provider.name,
                model=model,
                phase="open",
                error_kind=e.kind,
                upstream_status=e.upstream_status,
                error=e.message,
            )
            log_event("chat.end", provider=provider.name, model=model, ok=False, duration_ms=duration_ms, error=e.message)
            raise

        log_event("chat.stream_open", provider=provider.name, model=model)

        async def on_close(stats: StreamStats) -> None:
            await upstream.aclose()
            duration_ms = int((time.perf_counter() - start_time) * 1000)
            if stats.error:
                log_event(
                    "provider.error",
                    provider=provider.name,
                    model=model,
                    phase="stream",
                    error_kind=stats.error_kind,
                    error=stats.error,
                )
            log_event(
                "chat.end",
                provider=provider.name,
                model=model,
                ok=stats.error is None,
                duration_ms=duration_ms,
                fragments=stats.fragments,
                answer_chars=stats.chars,
            )

        normalizer = StreamNormalizer(provider.name, model)
        body = normalizer.normalize(upstream.deltas(), on_close=on_close)
        return ChatStream(provider=provider.name, model=model, upstream=upstream, body=body)

    def _validate(self, request: ChatRequest) -> None:
        if not request.messages:
            raise ValidationError("messages must not be empty", field="messages")
        if not (request.model or "").strip():
            raise ValidationError("model is required", field="model")
