"""Tests for SSE framing helpers."""

import json
import logging

from better_prompt.gateway.transforms.sse import (
    DONE_EVENT,
    STREAM_DONE,
    assemble_completion,
    format_error_event,
    format_sse_event,
    parse_sse_line,
)


class TestParseSseLine:
    """Tests for parse_sse_line."""

    def test_data_line(self):
        assert parse_sse_line('data: {"a": 1}') == {"a": 1}

    def test_data_without_space(self):
        assert parse_sse_line('data:{"a": 1}') == {"a": 1}

    def test_done_marker(self):
        assert parse_sse_line("data: [DONE]") is STREAM_DONE

    def test_ignored_lines(self):
        assert parse_sse_line("") is None
        assert parse_sse_line(": keep-alive") is None
        assert parse_sse_line("event: ping") is None
        assert parse_sse_line("data:") is None

    def test_malformed_json_is_skipped(self):
        assert parse_sse_line("data: {not json") is None
        assert parse_sse_line("data: [1, 2]") is None

    def test_malformed_json_is_logged(self, caplog):
        with caplog.at_level(logging.DEBUG, logger="better_prompt.gateway.transforms.sse"):
            assert parse_sse_line("data: {not json") is None
            assert parse_sse_line("data: [1, 2]") is None

        messages = [r.getMessage() for r in caplog.records]
        assert any("Dropping malformed SSE data line" in m for m in messages)
        assert any("Dropping non-object SSE data line" in m for m in messages)


class TestFormatting:
    """Tests for outbound event framing."""

    def test_format_event(self):
        event = format_sse_event({"text": "héllo"})
        assert event.startswith(b"data: ")
        assert event.endswith(b"\n\n")
        assert json.loads(event[6:].decode()) == {"text": "héllo"}

    def test_error_event(self):
        event = format_error_event({"error": {"message": "boom"}})
        assert json.loads(event[6:].decode())["error"]["message"] == "boom"

    def test_done_event(self):
        assert DONE_EVENT == b"data: [DONE]\n\n"


class TestAssembleCompletion:
    """Tests for folding streamed chunks into a completion."""

    def test_joins_content(self):
        chunks = [
            {"id": "c1", "created": 100, "model": "m", "choices": [{"index": 0, "delta": {"role": "assistant"}}]},
            {"choices": [{"index": 0, "delta": {"content": "Hel"}}]},
            {"choices": [{"index": 0, "delta": {"content": "lo"}, "finish_reason": "length"}]},
            {"choices": [], "usage": {"total_tokens": 7}},
        ]

        completion = assemble_completion(chunks, "fallback-model")

        assert completion["id"] == "c1"
        assert completion["object"] == "chat.completion"
        assert completion["created"] == 100
        assert completion["model"] == "m"
        assert completion["choices"] == [
            {
                "index": 0,
                "message": {"role": "assistant", "content": "Hello"},
                "finish_reason": "length",
            }
        ]
        assert completion["usage"] == {"total_tokens": 7}

    def test_reasoning_content(self):
        chunks = [
            {"choices": [{"index": 0, "delta": {"reasoning_content": "think"}}]},
            {"choices": [{"index": 0, "delta": {"content": "answer"}}]},
        ]

        message = assemble_completion(chunks)["choices"][0]["message"]

        assert message["reasoning_content"] == "think"
        assert message["content"] == "answer"

    def test_defaults(self):
        completion = assemble_completion([{"choices": [{"delta": {"content": "x"}}]}], "m")

        assert completion["model"] == "m"
        assert completion["choices"][0]["finish_reason"] == "stop"
        assert completion["choices"][0]["message"]["role"] == "assistant"
        assert "usage" not in completion

    def test_empty_stream(self):
        completion = assemble_completion([], "m")
        assert completion["choices"] == []
