"""Types shared by the format transformers.

These represent decoded units of the backend's native API, independent
of which dialect the caller speaks.
"""

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class TokenUsage:
    """Token usage statistics."""

    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    def to_openai(self) -> dict[str, int]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }

    @classmethod
    def from_native(cls, data: dict[str, Any]) -> "TokenUsage":
        """Read native token counters; absent or non-numeric fields stay 0."""
        return cls(
            prompt_tokens=_as_int(data.get("prompt_eval_count")),
            completion_tokens=_as_int(data.get("eval_count")),
        )


@dataclass(frozen=True)
class StreamChunk:
    """One decoded line of a native streaming response.

    Chat lines carry role/content under "message"; generate lines carry
    a flat "response" text, stored in content.
    """

    role: str | None = None
    content: str | None = None
    done: bool = False
    done_reason: str | None = None
    usage: TokenUsage | None = None

    @classmethod
    def from_native(cls, data: dict[str, Any]) -> "StreamChunk":
        role: str | None = None
        content: str | None = None

        message = data.get("message")
        if isinstance(message, dict):
            role = message.get("role") if isinstance(message.get("role"), str) else None
            content = message.get("content") if isinstance(message.get("content"), str) else None
        elif isinstance(data.get("response"), str):
            content = data["response"]

        done = data.get("done") is True
        return cls(
            role=role or None,
            content=content or None,
            done=done,
            done_reason=data.get("done_reason") if isinstance(data.get("done_reason"), str) else None,
            usage=TokenUsage.from_native(data) if done else None,
        )


@dataclass(frozen=True)
class PullProgress:
    """One decoded line of the backend's pull status stream."""

    status: str
    completed: int = 0
    total: int = 0
    digest: str | None = None

    @property
    def is_success(self) -> bool:
        return self.status == "success"

    @classmethod
    def from_native(cls, data: dict[str, Any]) -> "PullProgress":
        return cls(
            status=str(data.get("status", "")),
            completed=_as_int(data.get("completed")),
            total=_as_int(data.get("total")),
            digest=data.get("digest"),
        )


@dataclass(frozen=True)
class EmbeddingInput:
    """Canonical embedding input, resolved once at ingress.

    batch is True only when the caller sent more than one item; a
    one-element list is treated the same as a bare string.
    """

    items: tuple[str, ...]
    batch: bool
    extra: tuple[tuple[str, Any], ...] = ()

    @property
    def options(self) -> dict[str, Any]:
        """Caller fields forwarded to the backend alongside each item."""
        return dict(self.extra)


def _as_int(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    return 0
