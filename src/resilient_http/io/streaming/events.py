"""Typed stream events and the shared response result shape.

Every payload family decodes into the same ResponseResult, whose content
is a tuple of parts tagged by kind (text, tool-call, reasoning).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Literal, TypeAlias

from resilient_http.foundation.errors import JsonDict, JsonValue
from resilient_http.io import codec


class StreamEventKind(StrEnum):
    TEXT_DELTA = "text-delta"
    REASONING_DELTA = "reasoning-delta"
    TOOL_CALL = "tool-call"
    DECODE_ERROR = "decode-error"
    DONE = "done"


@dataclass(frozen=True, slots=True)
class TextPart:
    text: str
    kind: Literal["text"] = "text"


@dataclass(frozen=True, slots=True)
class ReasoningPart:
    text: str
    kind: Literal["reasoning"] = "reasoning"


@dataclass(frozen=True, slots=True)
class ToolCallPart:
    """A tool invocation requested by the model. Arguments stay as the raw JSON string."""
    id: str
    name: str
    arguments: str = ""
    kind: Literal["tool-call"] = "tool-call"

    @property
    def parsed_arguments(self) -> JsonValue:
        """Arguments decoded as JSON, None if they do not parse."""
        try:
            return codec.decode(self.arguments) if self.arguments else None
        except ValueError:
            return None


ContentPart: TypeAlias = TextPart | ReasoningPart | ToolCallPart


@dataclass(frozen=True, slots=True)
class ResponseResult:
    """Final assembled response.

    Attributes:
        id: Upstream response id ("" when unknown)
        model: Model that produced the response
        content: Ordered content parts
        status: Upstream status label, if any
        usage: Token usage as reported upstream
        raw: The payload the result was built from
        synthesized: True when built locally because the stream ended without a final record
    """
    id: str = ""
    model: str | None = None
    content: tuple[ContentPart, ...] = ()
    status: str | None = None
    usage: JsonDict | None = None
    raw: JsonValue = field(default=None, repr=False)
    synthesized: bool = False

    @property
    def text(self) -> str:
        return "".join(p.text for p in self.content if isinstance(p, TextPart))

    @property
    def tool_calls(self) -> list[ToolCallPart]:
        return [p for p in self.content if isinstance(p, ToolCallPart)]

    @property
    def reasoning(self) -> str:
        return "".join(p.text for p in self.content if isinstance(p, ReasoningPart))

    def to_dict(self) -> JsonDict:
        parts: list[JsonValue] = []
        for p in self.content:
            if isinstance(p, ToolCallPart):
                parts.append({"kind": p.kind, "id": p.id, "name": p.name, "arguments": p.arguments})
            else:
                parts.append({"kind": p.kind, "text": p.text})
        return {"id": self.id, "model": self.model, "status": self.status, "content": parts,
                "usage": self.usage, "synthesized": self.synthesized}


@dataclass(frozen=True, slots=True)
class StreamEvent:
    """One decoded stream event. Which fields are set depends on `kind`."""
    kind: StreamEventKind
    text: str | None = None
    tool_call: ToolCallPart | None = None
    result: ResponseResult | None = None
    error: str | None = None
    raw: JsonValue = field(default=None, repr=False)

    @classmethod
    def text_delta(cls, text: str, raw: JsonValue = None) -> StreamEvent:
        return cls(StreamEventKind.TEXT_DELTA, text=text, raw=raw)

    @classmethod
    def reasoning_delta(cls, text: str, raw: JsonValue = None) -> StreamEvent:
        return cls(StreamEventKind.REASONING_DELTA, text=text, raw=raw)

    @classmethod
    def tool(cls, call: ToolCallPart, raw: JsonValue = None) -> StreamEvent:
        return cls(StreamEventKind.TOOL_CALL, tool_call=call, raw=raw)

    @classmethod
    def done(cls, result: ResponseResult) -> StreamEvent:
        return cls(StreamEventKind.DONE, result=result, raw=result.raw)

    @classmethod
    def decode_error(cls, data: str, error: str) -> StreamEvent:
        return cls(StreamEventKind.DECODE_ERROR, error=error, raw=data)

    def to_dict(self) -> JsonDict:
        out: JsonDict = {"kind": self.kind.value}
        if self.text is not None:
            out["text"] = self.text
        if self.tool_call is not None:
            out["tool_call"] = {"id": self.tool_call.id, "name": self.tool_call.name,
                                "arguments": self.tool_call.arguments}
        if self.result is not None:
            out["result"] = self.result.to_dict()
        if self.error is not None:
            out["error"] = self.error
        return out
