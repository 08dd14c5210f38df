"""Embedding request normalization and response envelopes.

The backend's /api/embeddings takes a single string under "prompt" and
answers {"embedding": [...]}. Callers send either dialect:

- OpenAI: {"input": "text"} or {"input": ["a", "b"]}
- native: {"prompt": "text"}

Input is resolved once into an EmbeddingInput; the backend is then called
once per item and the vectors are wrapped in the envelope the caller's
path expects.
"""

from typing import Any

from .types import EmbeddingInput, TokenUsage

# Inbound path answered with the native embed envelope. Every other
# embedding path gets the OpenAI list envelope.
NATIVE_EMBED_PATH = "/api/embed"

_INPUT_FIELDS = ("input", "prompt", "model")


class EmbeddingInputError(ValueError):
    """Raised when an embedding request carries no usable input."""

    pass


class EmbeddingExtractionError(ValueError):
    """Raised when a backend reply holds no usable vector."""

    pass


def normalize_input(body: dict[str, Any]) -> EmbeddingInput:
    """Resolve "input" (preferred) or "prompt" into canonical items.

    Raises:
        EmbeddingInputError: On a missing field, a non-string element,
            or an empty list
    """
    if "input" in body and body["input"] is not None:
        raw = body["input"]
        field_name = "input"
    elif "prompt" in body and body["prompt"] is not None:
        raw = body["prompt"]
        field_name = "prompt"
    else:
        raise EmbeddingInputError("either 'input' or 'prompt' is required")

    if isinstance(raw, str):
        items: tuple[str, ...] = (raw,)
    elif isinstance(raw, list):
        if not raw:
            raise EmbeddingInputError(f"'{field_name}' must not be an empty list")
        for i, item in enumerate(raw):
            if not isinstance(item, str):
                raise EmbeddingInputError(
                    f"'{field_name}[{i}]' must be a string, got {type(item).__name__}"
                )
        items = tuple(raw)
    else:
        raise EmbeddingInputError(
            f"'{field_name}' must be a string or a list of strings, got {type(raw).__name__}"
        )

    extra = tuple((k, v) for k, v in body.items() if k not in _INPUT_FIELDS)
    return EmbeddingInput(items=items, batch=len(items) > 1, extra=extra)


def backend_request(item: str, model: str, embedding_input: EmbeddingInput) -> dict[str, Any]:
    """Build the backend /api/embeddings body for one item."""
    return {**embedding_input.options, "model": model, "prompt": item}


def extract_vector(data: Any) -> list[float]:
    """Read the vector from "embedding", falling back to "embeddings[0]".

    Raises:
        EmbeddingExtractionError: If no non-empty list vector is present
    """
    if not isinstance(data, dict):
        raise EmbeddingExtractionError("embedding response is not a JSON object")

    vector = data.get("embedding")
    if vector is None:
        embeddings = data.get("embeddings")
        if isinstance(embeddings, list) and embeddings:
            vector = embeddings[0]

    if vector is None:
        raise EmbeddingExtractionError("embedding response has no vector")
    if not isinstance(vector, list):
        raise EmbeddingExtractionError(
            f"invalid embedding format: {type(vector).__name__}"
        )
    if not vector:
        raise EmbeddingExtractionError("embedding vector is empty")
    return vector


def uses_native_envelope(path: str) -> bool:
    return path.rstrip("/") == NATIVE_EMBED_PATH


def native_embed_envelope(vectors: list[list[float]], model: str) -> dict[str, Any]:
    """{"model": ..., "embeddings": [[...], ...]}"""
    return {"model": model, "embeddings": vectors}


def openai_embedding_envelope(
    vectors: list[tuple[int, list[float]]],
    model: str,
    usage: TokenUsage | None = None,
) -> dict[str, Any]:
    """OpenAI list envelope.

    Args:
        vectors: (input index, vector) pairs, in input order
        model: Model name reported to the caller
        usage: Prompt token count summed over items, if known
    """
    prompt_tokens = usage.prompt_tokens if usage else 0
    return {
        "object": "list",
        "data": [
            {"object": "embedding", "embedding": vector, "index": index}
            for index, vector in vectors
        ],
        "model": model,
        "usage": {"prompt_tokens": prompt_tokens, "total_tokens": prompt_tokens},
    }


def build_envelope(
    path: str,
    vectors: list[tuple[int, list[float]]],
    model: str,
    usage: TokenUsage | None = None,
) -> dict[str, Any]:
    """Pick the envelope by inbound path."""
    if uses_native_envelope(path):
        return native_embed_envelope([v for _, v in vectors], model)
    return openai_embedding_envelope(vectors, model, usage)
