"""Wire-format helpers for the completion gateway."""

from better_prompt.gateway.transforms.sse import (
    DONE_EVENT,
    STREAM_DONE,
    assemble_completion,
    format_error_event,
    format_sse_event,
    parse_sse_line,
)
from better_prompt.gateway.transforms.validation import validate_request

__all__ = [
    "DONE_EVENT",
    "STREAM_DONE",
    "assemble_completion",
    "format_error_event",
    "format_sse_event",
    "parse_sse_line",
    "validate_request",
]
