"""Streaming decoder: SSE framing, payload-family decoders, typed events."""

from .decoder import MalformedPolicy, ResponseStream, decode_stream, stream_request
from .events import (
    ContentPart,
    ReasoningPart,
    ResponseResult,
    StreamEvent,
    StreamEventKind,
    TextPart,
    ToolCallPart,
)
from .payloads import ChatCompletionsPayloadDecoder, PayloadDecoder, ResponsesPayloadDecoder
from .sse import DONE_SENTINEL, SSEParser, SSERecord, parse_record

__all__ = [
    # Events
    "StreamEventKind", "StreamEvent", "ResponseResult",
    "ContentPart", "TextPart", "ReasoningPart", "ToolCallPart",
    # SSE
    "SSEParser", "SSERecord", "parse_record", "DONE_SENTINEL",
    # Payloads
    "PayloadDecoder", "ResponsesPayloadDecoder", "ChatCompletionsPayloadDecoder",
    # Decoder
    "ResponseStream", "MalformedPolicy", "decode_stream", "stream_request",
]
