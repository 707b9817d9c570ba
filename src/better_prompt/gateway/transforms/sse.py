"""Server-Sent-Events framing for OpenAI-style chat completion streams."""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Iterable
from typing import Any

logger = logging.getLogger(__name__)

DONE_MARKER = "[DONE]"
DONE_EVENT = b"data: [DONE]\n\n"


class StreamDone:
    """Sentinel returned by ``parse_sse_line`` for the ``[DONE]`` marker."""

    def __repr__(self) -> str:
        return "STREAM_DONE"


STREAM_DONE = StreamDone()


def parse_sse_line(line: str) -> dict[str, Any] | StreamDone | None:
    """Parse one SSE line from an upstream stream.

    Args:
        line: Raw line, already decoded and stripped.

    Returns:
        The decoded chunk, ``STREAM_DONE`` for the terminator, or ``None``
        for blank lines, comments and non-data fields.
    """
    if not line.startswith("data:"):
        return None

    data_str = line[5:].strip()
    if data_str == DONE_MARKER:
        return STREAM_DONE
    if not data_str:
        return None

    try:
        data = json.loads(data_str)
    except json.JSONDecodeError as e:
        logger.debug("Dropping malformed SSE data line (%s): %.200s", e, data_str)
        return None
    if not isinstance(data, dict):
        logger.debug("Dropping non-object SSE data line: %.200s", data_str)
        return None
    return data


def format_sse_event(chunk: dict[str, Any]) -> bytes:
    """Frame one chunk as ``data: <json>\\n\\n``."""
    return f"data: {json.dumps(chunk, ensure_ascii=False)}\n\n".encode()


def format_error_event(envelope: dict[str, Any]) -> bytes:
    """Frame an error envelope for a stream that failed after it started."""
    return format_sse_event(envelope)


def assemble_completion(chunks: Iterable[dict[str, Any]], model: str = "") -> dict[str, Any]:
    """Fold streamed ``chat.completion.chunk`` objects into one completion.

    Used when a provider is called in streaming mode on behalf of a caller
    that asked for a whole response.
    """
    completion_id = ""
    created = 0
    content: dict[int, list[str]] = {}
    reasoning: dict[int, list[str]] = {}
    roles: dict[int, str] = {}
    finish_reasons: dict[int, str | None] = {}
    usage: dict[str, Any] | None = None

    for chunk in chunks:
        completion_id = completion_id or chunk.get("id", "")
        created = created or chunk.get("created", 0)
        model = chunk.get("model") or model
        if chunk.get("usage"):
            usage = chunk["usage"]

        for choice in chunk.get("choices") or []:
            index = choice.get("index", 0)
            delta = choice.get("delta") or {}
            content.setdefault(index, [])
            if delta.get("role"):
                roles[index] = delta["role"]
            if delta.get("content"):
                content[index].append(delta["content"])
            if delta.get("reasoning_content"):
                reasoning.setdefault(index, []).append(delta["reasoning_content"])
            if choice.get("finish_reason"):
                finish_reasons[index] = choice["finish_reason"]

    choices = []
    for index in sorted(content):
        message: dict[str, Any] = {
            "role": roles.get(index, "assistant"),
            "content": "".join(content[index]),
        }
        if index in reasoning:
            message["reasoning_content"] = "".join(reasoning[index])
        choices.append(
            {
                "index": index,
                "message": message,
                "finish_reason": finish_reasons.get(index, "stop"),
            }
        )

    completion: dict[str, Any] = {
        "id": completion_id,
        "object": "chat.completion",
        "created": created or int(time.time()),
        "model": model,
        "choices": choices,
    }
    if usage is not None:
        completion["usage"] = usage
    return completion
