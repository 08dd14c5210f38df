"""Format transformers between the OpenAI-compatible API and the native API.

This module provides request/response translation for chat, text
completion and embeddings, plus request validation models.
"""

from .embeddings import (
    EmbeddingExtractionError,
    EmbeddingInputError,
    build_envelope,
    extract_vector,
    normalize_input,
)
from .openai import (
    OpenAIStreamTranslator,
    chat_request_to_native,
    chat_response_from_native,
    completion_request_to_native,
    completion_response_from_native,
    models_to_openai,
)
from .types import EmbeddingInput, PullProgress, StreamChunk, TokenUsage
from .validation import (
    ChatCompletionRequest,
    CompletionRequest,
    EmbeddingRequest,
    validate_request,
)

__all__ = [
    # Translators
    "OpenAIStreamTranslator",
    "chat_request_to_native",
    "chat_response_from_native",
    "completion_request_to_native",
    "completion_response_from_native",
    "models_to_openai",
    # Embeddings
    "EmbeddingExtractionError",
    "EmbeddingInputError",
    "build_envelope",
    "extract_vector",
    "normalize_input",
    # Types
    "EmbeddingInput",
    "PullProgress",
    "StreamChunk",
    "TokenUsage",
    # Validation
    "ChatCompletionRequest",
    "CompletionRequest",
    "EmbeddingRequest",
    "validate_request",
]
