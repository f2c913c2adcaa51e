# backend/core/exceptions.py
from typing import Any, Dict, Optional


class ChatGatewayError(Exception):
    """Base exception for the application."""

    status_code: int = 500

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None,
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)


class ValidationError(ChatGatewayError):
    """Raised when client input is malformed. Never retried."""

    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(
            message=message,
            code="VALIDATION_ERROR",
            details={"field": field} if field else {},
        )


class UnsupportedModelError(ChatGatewayError):
    """Raised when a requested model matches no known adapter."""

    status_code = 400

    def __init__(self, model_name: str):
        super().__init__(
            message=f"Unsupported model '{model_name}'",
            code="UNSUPPORTED_MODEL",
            details={"model_name": model_name},
        )


class ConfigurationError(ChatGatewayError):
    """Raised on deployment misconfiguration (e.g. a missing provider credential)."""

    status_code = 500

    def __init__(self, message: str, **details: Any):
        super().__init__(message=message, code="CONFIGURATION_ERROR", details=details)


class ProviderError(ChatGatewayError):
    """Raised when a provider call fails.

    ``kind`` is one of: rate_limit, auth, bad_request, overloaded, upstream, network.
    Only a retryable rate limit maps to 429; everything else surfaces as 500
    when detected before the stream starts.
    """

    RETRYABLE_KINDS = frozenset({"rate_limit", "overloaded", "network"})

    def __init__(
        self,
        provider_name: str,
        original_error: str,
        kind: str = "upstream",
        retryable: Optional[bool] = None,
        upstream_status: Optional[int] = None,
    ):
        self.provider_name = provider_name
        self.kind = kind
        self.retryable = kind in self.RETRYABLE_KINDS if retryable is None else retryable
        self.upstream_status = upstream_status
        super().__init__(
            message=f"Provider '{provider_name}' error: {original_error}",
            code="PROVIDER_ERROR",
            details={
                "provider_name": provider_name,
                "kind": kind,
                "retryable": self.retryable,
                "upstream_status": upstream_status,
            },
            status_code=429 if (kind == "rate_limit" and self.retryable) else 500,
        )

    @property
    def is_rate_limit(self) -> bool:
        return self.kind == "rate_limit" and self.retryable


class RateLimitExceededError(ChatGatewayError):
    """Raised when a caller exceeds the gateway's own request rate limit."""

    status_code = 429

    def __init__(self, key: str, retry_after_s: float):
        super().__init__(
            message="Rate limit exceeded. Please slow down.",
            code="RATE_LIMITED",
            details={"key": key, "retry_after_s": round(retry_after_s, 3)},
        )
        self.retry_after_s = retry_after_s


class ConversationNotFoundError(ChatGatewayError):
    """Raised when a conversation is missing, deleted, or owned by someone else."""

    status_code = 404

    def __init__(self, conversation_id: str):
        super().__init__(
            message="Chat not found or unauthorized",
            code="NOT_FOUND",
            details={"conversation_id": conversation_id},
        )


class UnauthorizedError(ChatGatewayError):
    """Raised when the caller identity is missing."""

    status_code = 401

    def __init__(self):
        super().__init__(message="Unauthorized", code="UNAUTHORIZED")


class StreamParseError(ChatGatewayError):
    """A malformed envelope line seen by the client. Logged and skipped."""

    def __init__(self, line: str, reason: str):
        super().__init__(
            message=f"Unparseable stream line: {reason}",
            code="STREAM_PARSE_ERROR",
            details={"line": line[:200]},
        )


class ConversationStateError(ChatGatewayError):
    """Raised by the client-side store when an ordering/consistency rule is broken."""

    def __init__(self, message: str, message_id: Optional[str] = None):
        super().__init__(
            message=message,
            code="CONVERSATION_STATE",
            details={"message_id": message_id} if message_id else {},
        )
