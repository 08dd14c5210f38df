"""Tests for embedding input normalization and envelopes."""

import pytest

from ollama_gate.gateway.transforms.embeddings import (
    EmbeddingExtractionError,
    EmbeddingInputError,
    backend_request,
    build_envelope,
    extract_vector,
    normalize_input,
)
from ollama_gate.gateway.transforms.types import TokenUsage


class TestNormalizeInput:
    """Tests for resolving input/prompt into canonical items."""

    def test_string_input(self):
        result = normalize_input({"input": "hello"})

        assert result.items == ("hello",)
        assert result.batch is False

    def test_single_element_list_is_not_batch(self):
        """A one-element list behaves like a bare string."""
        result = normalize_input({"input": ["hello"]})

        assert result.items == ("hello",)
        assert result.batch is False

    def test_list_input_is_batch(self):
        result = normalize_input({"input": ["a", "b", "c"]})

        assert result.items == ("a", "b", "c")
        assert result.batch is True

    def test_prompt_fallback(self):
        """Native callers send prompt."""
        result = normalize_input({"model": "x", "prompt": "hello"})

        assert result.items == ("hello",)

    def test_input_wins_over_prompt(self):
        result = normalize_input({"input": "from input", "prompt": "from prompt"})

        assert result.items == ("from input",)

    def test_missing_input(self):
        with pytest.raises(EmbeddingInputError, match="'input' or 'prompt'"):
            normalize_input({"model": "x"})

    def test_empty_list(self):
        with pytest.raises(EmbeddingInputError, match="empty"):
            normalize_input({"input": []})

    def test_non_string_element(self):
        with pytest.raises(EmbeddingInputError, match=r"input\[1\]"):
            normalize_input({"input": ["a", 2]})

    def test_wrong_type(self):
        with pytest.raises(EmbeddingInputError, match="dict"):
            normalize_input({"input": {"text": "a"}})

    def test_extra_fields_are_forwarded(self):
        """Fields other than input/prompt/model reach the backend."""
        ei = normalize_input({"model": "gpt", "input": "hi", "options": {"num_ctx": 512}})

        payload = backend_request("hi", "nomic-embed-text", ei)

        assert payload == {
            "options": {"num_ctx": 512},
            "model": "nomic-embed-text",
            "prompt": "hi",
        }


class TestExtractVector:
    """Tests for reading vectors from backend replies."""

    def test_embedding_field(self):
        assert extract_vector({"embedding": [0.1, 0.2]}) == [0.1, 0.2]

    def test_embeddings_fallback(self):
        assert extract_vector({"embeddings": [[0.3, 0.4], [0.5]]}) == [0.3, 0.4]

    @pytest.mark.parametrize(
        "data",
        [
            [0.1],
            {},
            {"embedding": "nope"},
            {"embedding": []},
            {"embeddings": []},
        ],
    )
    def test_invalid(self, data):
        with pytest.raises(EmbeddingExtractionError):
            extract_vector(data)


class TestBuildEnvelope:
    """Tests for picking the response envelope by path."""

    def test_native_embed_envelope(self):
        result = build_envelope("/api/embed", [(0, [0.1]), (1, [0.2])], "m")

        assert result == {"model": "m", "embeddings": [[0.1], [0.2]]}

    @pytest.mark.parametrize("path", ["/v1/embeddings", "/api/embeddings"])
    def test_openai_envelope(self, path):
        """Indices are the original input positions."""
        result = build_envelope(path, [(0, [0.1]), (2, [0.3])], "m", TokenUsage(prompt_tokens=8))

        assert result["object"] == "list"
        assert result["model"] == "m"
        assert [d["index"] for d in result["data"]] == [0, 2]
        assert all(d["object"] == "embedding" for d in result["data"])
        assert result["usage"] == {"prompt_tokens": 8, "total_tokens": 8}
