"""Tests for the OpenAI-compatible transformer."""

import json

import pytest

from ollama_gate.gateway.transforms.openai import (
    SSE_DONE,
    OpenAIStreamTranslator,
    chat_request_to_native,
    chat_response_from_native,
    completion_request_to_native,
    completion_response_from_native,
    finish_reason_for,
    flatten_content,
    models_to_openai,
    new_response_id,
)


def _parse_frame(frame: str) -> dict:
    assert frame.startswith("data: ")
    assert frame.endswith("\n\n")
    return json.loads(frame[len("data: ") : -2])


class TestChatRequestToNative:
    """Tests for converting OpenAI chat requests to /api/chat bodies."""

    def test_model_is_replaced(self):
        """The configured model always wins over the caller's."""
        body = {"model": "gpt-4", "messages": [{"role": "user", "content": "Hi"}]}

        result = chat_request_to_native(body, "qwen3:0.6b")

        assert result["model"] == "qwen3:0.6b"
        assert result["messages"] == [{"role": "user", "content": "Hi"}]
        assert result["stream"] is False
        assert "options" not in result

    def test_sampling_fields_move_to_options(self):
        """max_tokens becomes num_predict; other sampling fields keep their names."""
        body = {
            "messages": [{"role": "user", "content": "Hi"}],
            "max_tokens": 50,
            "temperature": 0.2,
            "top_p": 0.9,
            "stop": ["\n"],
            "seed": 7,
        }

        result = chat_request_to_native(body, "m")

        assert result["options"] == {
            "num_predict": 50,
            "temperature": 0.2,
            "top_p": 0.9,
            "stop": ["\n"],
            "seed": 7,
        }

    def test_stream_only_when_true(self):
        """Only a literal true enables streaming."""
        messages = [{"role": "user", "content": "Hi"}]

        assert chat_request_to_native({"messages": messages, "stream": True}, "m")["stream"]
        assert not chat_request_to_native({"messages": messages, "stream": "yes"}, "m")["stream"]

    def test_content_parts_are_flattened(self):
        """Text parts are joined; image parts are dropped."""
        body = {
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": "first"},
                        {"type": "image_url", "image_url": {"url": "data:..."}},
                        {"type": "text", "text": "second"},
                    ],
                }
            ]
        }

        result = chat_request_to_native(body, "m")

        assert result["messages"][0]["content"] == "first\nsecond"


class TestCompletionRequestToNative:
    """Tests for converting OpenAI completion requests to /api/generate bodies."""

    def test_string_prompt(self):
        result = completion_request_to_native({"prompt": "Once upon", "max_tokens": 5}, "m")

        assert result == {
            "model": "m",
            "prompt": "Once upon",
            "stream": False,
            "options": {"num_predict": 5},
        }

    def test_single_element_list_prompt(self):
        result = completion_request_to_native({"prompt": ["Once upon"]}, "m")

        assert result["prompt"] == "Once upon"

    def test_chat_only_options_are_not_copied(self):
        """seed and penalties are chat-only fields."""
        result = completion_request_to_native({"prompt": "x", "seed": 1}, "m")

        assert "options" not in result


class TestBufferedResponses:
    """Tests for non-streaming reply conversion."""

    def test_chat_response_usage(self):
        """Usage comes from prompt_eval_count and eval_count."""
        data = {
            "model": "qwen3:0.6b",
            "message": {"role": "assistant", "content": "Hello!"},
            "done": True,
            "done_reason": "stop",
            "prompt_eval_count": 12,
            "eval_count": 3,
        }

        result = chat_response_from_native(data, "qwen3:0.6b", response_id="chatcmpl-x", created=1)

        assert result["id"] == "chatcmpl-x"
        assert result["object"] == "chat.completion"
        assert result["created"] == 1
        assert result["choices"][0]["message"] == {"role": "assistant", "content": "Hello!"}
        assert result["choices"][0]["finish_reason"] == "stop"
        assert result["usage"] == {
            "prompt_tokens": 12,
            "completion_tokens": 3,
            "total_tokens": 15,
        }

    def test_chat_response_length_finish(self):
        data = {"message": {"content": "cut"}, "done_reason": "length"}

        result = chat_response_from_native(data, "m")

        assert result["choices"][0]["finish_reason"] == "length"
        assert result["choices"][0]["message"]["role"] == "assistant"
        assert result["usage"]["total_tokens"] == 0

    def test_completion_response(self):
        data = {"response": "there was", "done": True, "prompt_eval_count": 2, "eval_count": 2}

        result = completion_response_from_native(data, "m")

        assert result["object"] == "text_completion"
        assert result["id"].startswith("cmpl-")
        assert result["choices"][0]["text"] == "there was"
        assert result["choices"][0]["logprobs"] is None
        assert result["usage"]["total_tokens"] == 4


class TestHelpers:
    """Tests for small helpers."""

    @pytest.mark.parametrize(
        "done_reason,expected",
        [("length", "length"), ("stop", "stop"), ("load", "stop"), (None, "stop")],
    )
    def test_finish_reason(self, done_reason, expected):
        assert finish_reason_for(done_reason) == expected

    def test_flatten_content_none(self):
        assert flatten_content(None) == ""

    def test_response_id_prefixes(self):
        assert new_response_id("chat").startswith("chatcmpl-")
        assert new_response_id("completion").startswith("cmpl-")

    def test_models_to_openai(self):
        result = models_to_openai(
            [
                {"name": "qwen3:0.6b", "modified_at": "2025-01-01T00:00:00.123456789Z"},
                {"name": "qwen3:latest"},
            ]
        )

        assert result["object"] == "list"
        assert [m["id"] for m in result["data"]] == ["qwen3:0.6b", "qwen3:latest"]
        assert result["data"][0]["created"] == 1735689600
        assert result["data"][1]["created"] == 0
        assert all(m["owned_by"] == "ollama" for m in result["data"])

    def test_models_to_openai_bad_timestamp(self):
        result = models_to_openai([{"name": "m", "modified_at": "yesterday"}])

        assert result["data"][0]["created"] == 0


class TestOpenAIStreamTranslator:
    """Tests for NDJSON -> SSE stream translation."""

    def _chat_lines(self):
        return [
            b'{"message": {"role": "assistant", "content": "Hel"}, "done": false}\n',
            b'{"message": {"role": "assistant", "content": "lo"}, "done": false}\n',
            b'{"message": {"role": "assistant", "content": ""}, "done": true, '
            b'"done_reason": "stop", "prompt_eval_count": 5, "eval_count": 2}\n',
        ]

    def test_chat_stream(self):
        """Deltas, then a terminal frame, then [DONE]."""
        translator = OpenAIStreamTranslator(model="m", response_id="chatcmpl-abc", created=1)

        frames = []
        for line in self._chat_lines():
            frames.extend(translator.feed_line(line))

        assert frames[-1] == SSE_DONE
        chunks = [_parse_frame(f) for f in frames[:-1]]
        assert len(chunks) == 3

        assert chunks[0]["choices"][0]["delta"] == {"role": "assistant", "content": "Hel"}
        assert chunks[1]["choices"][0]["delta"] == {"content": "lo"}
        assert chunks[2]["choices"][0]["delta"] == {}
        assert chunks[2]["choices"][0]["finish_reason"] == "stop"

        for chunk in chunks:
            assert chunk["id"] == "chatcmpl-abc"
            assert chunk["object"] == "chat.completion.chunk"
            assert chunk["model"] == "m"

        assert translator.finished
        assert translator.usage is not None
        assert translator.usage.total_tokens == 7

    def test_content_concatenates_to_full_text(self):
        """Concatenated delta contents equal the native contents."""
        translator = OpenAIStreamTranslator(model="m")
        text = ""
        for line in self._chat_lines():
            for frame in translator.feed_line(line):
                if frame == SSE_DONE:
                    continue
                text += _parse_frame(frame)["choices"][0]["delta"].get("content", "")

        assert text == "Hello"

    def test_lines_after_done_are_ignored(self):
        translator = OpenAIStreamTranslator(model="m")
        for line in self._chat_lines():
            translator.feed_line(line)

        assert translator.feed_line(b'{"message": {"content": "late"}}') == []
        assert translator.finish() == []

    def test_malformed_and_blank_lines_are_skipped(self):
        translator = OpenAIStreamTranslator(model="m")

        assert translator.feed_line(b"not json\n") == []
        assert translator.feed_line(b"\n") == []
        assert translator.feed_line(b"[1, 2]") == []
        assert not translator.finished

    def test_finish_without_done_line(self):
        """A stream that ends early still gets a terminal frame and [DONE]."""
        translator = OpenAIStreamTranslator(model="m")
        translator.feed_line(b'{"message": {"role": "assistant", "content": "partial"}}')

        frames = translator.finish()

        assert len(frames) == 2
        assert _parse_frame(frames[0])["choices"][0]["finish_reason"] == "stop"
        assert frames[1] == SSE_DONE
        assert translator.usage is None

    def test_length_finish_reason(self):
        translator = OpenAIStreamTranslator(model="m")

        frames = translator.feed_line(b'{"message": {"content": ""}, "done": true, "done_reason": "length"}')

        assert _parse_frame(frames[0])["choices"][0]["finish_reason"] == "length"

    def test_completion_stream(self):
        """Completion frames carry text instead of delta."""
        translator = OpenAIStreamTranslator(model="m", kind="completion")

        frames = translator.feed_line(b'{"response": "Once", "done": false}')
        frames += translator.feed_line(b'{"response": "", "done": true, "eval_count": 1}')

        chunks = [_parse_frame(f) for f in frames[:-1]]
        assert chunks[0]["object"] == "text_completion"
        assert chunks[0]["id"].startswith("cmpl-")
        assert chunks[0]["choices"][0]["text"] == "Once"
        assert chunks[1]["choices"][0]["text"] == ""
        assert chunks[1]["choices"][0]["finish_reason"] == "stop"
        assert frames[-1] == SSE_DONE
