"""OpenAI-compatible API transformer.

Converts OpenAI Chat Completions / Completions requests into the backend's
native /api/chat and /api/generate bodies, and converts native replies
(single JSON object or NDJSON stream) back into OpenAI responses and SSE
chunks.

OpenAI API Reference:
- Request: POST /v1/chat/completions with {model, messages, stream, max_tokens, temperature}
- Streaming: SSE with data: {"choices": [{"delta": {...}}]} and a final data: [DONE]

Native API Reference:
- Request: POST /api/chat with {model, messages, stream, options: {num_predict, ...}}
- Streaming: NDJSON, one {"message": {...}, "done": false} per line, then {"done": true, ...}
"""

import json
import logging
import re
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

from .types import StreamChunk, TokenUsage

logger = logging.getLogger(__name__)

SSE_DONE = "data: [DONE]\n\n"

# OpenAI request field -> native options field
CHAT_OPTION_FIELDS = {
    "max_tokens": "num_predict",
    "temperature": "temperature",
    "top_p": "top_p",
    "stop": "stop",
    "seed": "seed",
    "presence_penalty": "presence_penalty",
    "frequency_penalty": "frequency_penalty",
}

COMPLETION_OPTION_FIELDS = {
    "max_tokens": "num_predict",
    "temperature": "temperature",
    "top_p": "top_p",
    "stop": "stop",
}


def new_response_id(kind: str = "chat") -> str:
    prefix = "chatcmpl" if kind == "chat" else "cmpl"
    return f"{prefix}-{uuid.uuid4().hex[:24]}"


def finish_reason_for(done_reason: str | None) -> str:
    """Map native done_reason to an OpenAI finish_reason."""
    return "length" if done_reason == "length" else "stop"


def flatten_content(content: Any) -> str:
    """Flatten OpenAI message content to plain text.

    A list of content parts keeps only its text parts, joined by newlines.
    """
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        texts = [
            part.get("text", "")
            for part in content
            if isinstance(part, dict) and part.get("type") == "text"
        ]
        return "\n".join(t for t in texts if t)
    return str(content)


def _map_options(body: dict[str, Any], fields: dict[str, str]) -> dict[str, Any]:
    options: dict[str, Any] = {}
    for src, dst in fields.items():
        value = body.get(src)
        if value is not None:
            options[dst] = value
    return options


def chat_request_to_native(body: dict[str, Any], model: str) -> dict[str, Any]:
    """Convert an OpenAI chat request to a native /api/chat body.

    Args:
        body: Validated OpenAI request body
        model: Model name to use (overrides body["model"])

    Returns:
        Native request dict ready for /api/chat
    """
    messages: list[dict[str, Any]] = []
    for msg in body.get("messages", []):
        if not isinstance(msg, dict):
            continue
        messages.append(
            {
                "role": msg.get("role"),
                "content": flatten_content(msg.get("content")),
            }
        )

    request: dict[str, Any] = {
        "model": model,
        "messages": messages,
        "stream": body.get("stream") is True,
    }
    options = _map_options(body, CHAT_OPTION_FIELDS)
    if options:
        request["options"] = options
    return request


def completion_request_to_native(body: dict[str, Any], model: str) -> dict[str, Any]:
    """Convert an OpenAI text completion request to a native /api/generate body."""
    prompt = body.get("prompt", "")
    if isinstance(prompt, list):
        prompt = prompt[0] if prompt else ""

    request: dict[str, Any] = {
        "model": model,
        "prompt": prompt,
        "stream": body.get("stream") is True,
    }
    options = _map_options(body, COMPLETION_OPTION_FIELDS)
    if options:
        request["options"] = options
    return request


def chat_response_from_native(
    data: dict[str, Any],
    model: str,
    response_id: str | None = None,
    created: int | None = None,
) -> dict[str, Any]:
    """Convert a buffered native /api/chat reply to an OpenAI chat completion."""
    chunk = StreamChunk.from_native({**data, "done": True})
    usage = TokenUsage.from_native(data)
    return {
        "id": response_id or new_response_id("chat"),
        "object": "chat.completion",
        "created": created if created is not None else int(time.time()),
        "model": model,
        "choices": [
            {
                "index": 0,
                "message": {
                    "role": chunk.role or "assistant",
                    "content": chunk.content or "",
                },
                "finish_reason": finish_reason_for(chunk.done_reason),
            }
        ],
        "usage": usage.to_openai(),
    }


def completion_response_from_native(
    data: dict[str, Any],
    model: str,
    response_id: str | None = None,
    created: int | None = None,
) -> dict[str, Any]:
    """Convert a buffered native /api/generate reply to an OpenAI text completion."""
    text = data.get("response") if isinstance(data.get("response"), str) else ""
    done_reason = data.get("done_reason") if isinstance(data.get("done_reason"), str) else None
    return {
        "id": response_id or new_response_id("completion"),
        "object": "text_completion",
        "created": created if created is not None else int(time.time()),
        "model": model,
        "choices": [
            {
                "index": 0,
                "text": text,
                "logprobs": None,
                "finish_reason": finish_reason_for(done_reason),
            }
        ],
        "usage": TokenUsage.from_native(data).to_openai(),
    }


def _created_from(modified_at: Any) -> int:
    """Unix time of a native RFC 3339 "modified_at", or 0."""
    if not isinstance(modified_at, str) or not modified_at:
        return 0
    # Native timestamps carry nanoseconds; fromisoformat takes at most six digits
    value = re.sub(r"(\.\d{6})\d+", r"\1", modified_at)
    try:
        return int(datetime.fromisoformat(value).timestamp())
    except ValueError:
        return 0


def models_to_openai(models: list[dict[str, Any]]) -> dict[str, Any]:
    """Convert native listing entries to an OpenAI /v1/models listing."""
    return {
        "object": "list",
        "data": [
            {
                "id": str(entry.get("name", "")),
                "object": "model",
                "created": _created_from(entry.get("modified_at")),
                "owned_by": "ollama",
            }
            for entry in models
        ],
    }


def sse_frame(payload: dict[str, Any]) -> str:
    return f"data: {json.dumps(payload)}\n\n"


@dataclass
class OpenAIStreamTranslator:
    """Translates one native NDJSON stream into OpenAI SSE frames.

    One instance per response. Each native line yields at most one delta
    frame; the done line yields the terminal frame and the [DONE] sentinel,
    after which every further line is ignored.
    """

    model: str
    kind: Literal["chat", "completion"] = "chat"
    response_id: str = ""
    created: int = field(default_factory=lambda: int(time.time()))

    _role_sent: bool = False
    finished: bool = False
    usage: TokenUsage | None = None

    def __post_init__(self) -> None:
        if not self.response_id:
            self.response_id = new_response_id(self.kind)

    @property
    def _object(self) -> str:
        return "chat.completion.chunk" if self.kind == "chat" else "text_completion"

    def _frame(self, choice: dict[str, Any]) -> str:
        return sse_frame(
            {
                "id": self.response_id,
                "object": self._object,
                "created": self.created,
                "model": self.model,
                "choices": [{"index": 0, **choice}],
            }
        )

    def _delta_frame(self, role: str | None, content: str | None) -> str | None:
        if self.kind == "completion":
            if not content:
                return None
            return self._frame({"text": content, "finish_reason": None})

        delta: dict[str, Any] = {}
        if role and not self._role_sent:
            delta["role"] = role
            self._role_sent = True
        if content:
            delta["content"] = content
        if not delta:
            return None
        return self._frame({"delta": delta, "finish_reason": None})

    def _final_frames(self, done_reason: str | None) -> list[str]:
        self.finished = True
        reason = finish_reason_for(done_reason)
        if self.kind == "completion":
            final = self._frame({"text": "", "finish_reason": reason})
        else:
            final = self._frame({"delta": {}, "finish_reason": reason})
        return [final, SSE_DONE]

    def feed_line(self, line: bytes | str) -> list[str]:
        """Translate one native line into zero or more SSE frames."""
        if self.finished:
            return []

        if isinstance(line, bytes):
            line = line.decode("utf-8", errors="replace")
        line = line.strip()
        if not line:
            return []

        try:
            data = json.loads(line)
        except json.JSONDecodeError:
            logger.warning("Skipping malformed stream line: %s", line[:200])
            return []
        if not isinstance(data, dict):
            logger.warning("Skipping malformed stream line: %s", line[:200])
            return []

        chunk = StreamChunk.from_native(data)
        frames: list[str] = []
        frame = self._delta_frame(chunk.role, chunk.content)
        if frame:
            frames.append(frame)

        if chunk.done:
            self.usage = chunk.usage
            frames.extend(self._final_frames(chunk.done_reason))
        return frames

    def finish(self) -> list[str]:
        """Close a stream that ended without a done line."""
        if self.finished:
            return []
        return self._final_frames(None)
