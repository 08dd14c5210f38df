"""Pydantic models for OpenAI-compatible request validation.

These models validate incoming requests before any backend call. Unknown
fields are allowed and ignored; the model field is accepted but always
replaced by the configured model downstream.
"""

from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    StrictBool,
    ValidationError,
    field_validator,
    model_validator,
)


class ChatMessage(BaseModel):
    """A message in the conversation."""

    model_config = ConfigDict(extra="allow")

    role: str
    content: str | list[dict[str, Any]] | None = None

    @field_validator("role")
    @classmethod
    def validate_role(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("role cannot be empty")
        return v


class SamplingParams(BaseModel):
    """Sampling fields shared by chat and text completion."""

    model_config = ConfigDict(extra="allow")

    model: str | None = None
    stream: StrictBool | None = None
    max_tokens: int | None = None
    temperature: float | None = None
    top_p: float | None = None
    stop: str | list[str] | None = None

    @field_validator("max_tokens")
    @classmethod
    def validate_max_tokens(cls, v: int | None) -> int | None:
        """Validate max_tokens is positive."""
        if v is not None and v <= 0:
            raise ValueError("max_tokens must be positive")
        return v

    @field_validator("temperature")
    @classmethod
    def validate_temperature(cls, v: float | None) -> float | None:
        """Validate temperature is in valid range."""
        if v is not None and (v < 0 or v > 2):
            raise ValueError("temperature must be between 0 and 2")
        return v


class ChatCompletionRequest(SamplingParams):
    """OpenAI Chat Completions request body."""

    messages: list[ChatMessage]
    seed: int | None = None
    presence_penalty: float | None = None
    frequency_penalty: float | None = None

    @field_validator("messages")
    @classmethod
    def validate_messages(cls, v: list[ChatMessage]) -> list[ChatMessage]:
        """Validate messages list is not empty."""
        if not v:
            raise ValueError("messages list cannot be empty")
        return v


class CompletionRequest(SamplingParams):
    """OpenAI legacy Completions request body.

    Only a single prompt is supported: a string or a one-element list.
    """

    prompt: str | list[str]

    @field_validator("prompt")
    @classmethod
    def validate_prompt(cls, v: str | list[str]) -> str | list[str]:
        if isinstance(v, list) and len(v) != 1:
            raise ValueError("prompt must be a string or a list with exactly one string")
        return v


class EmbeddingRequest(BaseModel):
    """Embedding request body, accepted in both dialects.

    The OpenAI dialect uses "input"; the native one uses "prompt".
    """

    model_config = ConfigDict(extra="allow")

    model: str | None = None
    input: str | list[str] | None = None
    prompt: str | list[str] | None = None

    @model_validator(mode="after")
    def validate_has_input(self) -> "EmbeddingRequest":
        if self.input is None and self.prompt is None:
            raise ValueError("either 'input' or 'prompt' is required")
        return self


def validate_request(body: Any, model: type[BaseModel]) -> list[str]:
    """Validate a request body against one of the request models.

    Args:
        body: The decoded request body
        model: The pydantic model to validate against

    Returns:
        List of validation error messages (empty if valid)
    """
    if not isinstance(body, dict):
        return ["request body must be a JSON object"]

    try:
        model.model_validate(body)
    except ValidationError as e:
        errors: list[str] = []
        for err in e.errors():
            loc = ".".join(str(part) for part in err.get("loc", ()))
            msg = err.get("msg", "invalid value")
            errors.append(f"{loc}: {msg}" if loc else msg)
        return errors

    return []
