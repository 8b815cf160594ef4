"""Payload-family decoders.

Each upstream payload family gets one explicit decoder that maps its
records (streamed) and its complete bodies (non-streamed) into the shared
ResponseResult / StreamEvent shapes:

- ResponsesPayloadDecoder: typed event records (`response.output_text.delta`,
  `response.output_item.done`, `response.completed`, ...)
- ChatCompletionsPayloadDecoder: `choices[0].delta` chunks closed by a
  `finish_reason`

Decoders are stateful; use one instance per stream. Shape violations raise
ValueError, which the stream treats as a malformed record. Failure records
from the upstream raise StreamFailedError, which ends the stream.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any, Protocol, runtime_checkable

from resilient_http.foundation.errors import JsonDict, JsonValue, StreamFailedError
from resilient_http.io import codec

from .events import ContentPart, ReasoningPart, ResponseResult, StreamEvent, TextPart, ToolCallPart


@runtime_checkable
class PayloadDecoder(Protocol):
    """Maps one payload family into stream events and results."""

    def decode_event(self, payload: JsonValue, event: str | None = None) -> list[StreamEvent]:
        """Events for one streamed record (may be empty)."""
        ...

    def finish(self) -> list[StreamEvent]:
        """Events owed at end of stream; include a done event if one can be assembled."""
        ...

    def fallback(self) -> ResponseResult:
        """Minimal result when the stream ended without a final record."""
        ...

    def decode_response(self, raw: JsonValue) -> ResponseResult:
        """Map a complete (non-streamed) body."""
        ...


def _require_object(payload: JsonValue) -> JsonDict:
    if not isinstance(payload, dict):
        raise ValueError(f"expected a JSON object, got {type(payload).__name__}")
    return payload


def _arguments(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else codec.encode_str(value)


def _tool_call(item: JsonDict) -> ToolCallPart:
    function = item.get("function") if isinstance(item.get("function"), dict) else {}
    call_id = item.get("call_id") or item.get("id") or item.get("item_id") or ""
    name = item.get("name") or function.get("name") or ""  # type: ignore[union-attr]
    args = item.get("arguments", function.get("arguments"))  # type: ignore[union-attr]
    return ToolCallPart(str(call_id), str(name), _arguments(args))


def _failure(detail: Any, partial: ResponseResult, raw: JsonDict) -> StreamFailedError:
    """Typed error for a failure record; `partial` is what was assembled so far."""
    error = detail if isinstance(detail, dict) else {"message": str(detail)} if detail else {}
    message = str(error.get("message") or "upstream reported a failed response")
    code = error.get("code") or error.get("type")
    return StreamFailedError(message, code=str(code) if code else None, result=partial,
                             body=codec.encode_str(raw)[:2048])


class ResponsesPayloadDecoder:
    """Decoder for typed-event streams (Responses-style APIs).

    A function call arrives as `output_item.added`, argument fragments keyed
    by `item_id`, then `output_item.done`; it is emitted once, on the done
    record. Calls still open at end of stream are emitted by `finish()`.
    `response.failed` and `error` records raise StreamFailedError.

    Args:
        model: Model name used in the fallback result until the stream reports one
    """

    __slots__ = ("_id", "_model", "_text", "_reasoning", "_tool_calls", "_seen_calls", "_open_calls", "_arguments")

    def __init__(self, model: str | None = None) -> None:
        self._id = ""
        self._model = model
        self._text: list[str] = []
        self._reasoning: list[str] = []
        self._tool_calls: list[ToolCallPart] = []
        self._seen_calls: set[str] = set()
        self._open_calls: dict[str, JsonDict] = {}
        self._arguments: dict[str, list[str]] = {}

    def decode_event(self, payload: JsonValue, event: str | None = None) -> list[StreamEvent]:
        data = _require_object(payload)
        kind = str(data.get("type") or event or "")
        response = data.get("response")

        if isinstance(response, dict):
            self._id = str(response.get("id") or self._id)
            self._model = response.get("model") or self._model  # type: ignore[assignment]
        if kind == "error" or kind.endswith((".failed", ".error")) or (
                isinstance(response, dict) and response.get("status") == "failed"):
            detail = data.get("error") or (response.get("error") if isinstance(response, dict) else None) or data
            raise _failure(detail, replace(self.fallback(), status="failed", raw=data), data)

        if isinstance(response, dict):
            if kind.endswith((".completed", ".done", ".incomplete")) or response.get("status") == "completed":
                return [StreamEvent.done(self.decode_response(response))]
            return []

        if "output_text.delta" in kind or "text_delta" in kind:
            if (text := self._delta_text(data)) is None:
                raise ValueError(f"{kind} record without text")
            self._text.append(text)
            return [StreamEvent.text_delta(text, data)]

        if "reasoning" in kind and "delta" in kind:
            if (text := self._delta_text(data)) is None:
                return []
            self._reasoning.append(text)
            return [StreamEvent.reasoning_delta(text, data)]

        item = data.get("item")
        if isinstance(item, dict) and item.get("type") in ("function_call", "tool_call"):
            key = str(item.get("id") or item.get("call_id") or "")
            if kind.endswith(".done"):
                self._open_calls.pop(key, None)
                return self._emit_call(key, self._complete(key, item), data)
            self._open_calls[key] = item
            return []

        is_call = "function_call" in kind or "tool_call" in kind
        if is_call and "arguments" in kind:
            key = str(data.get("item_id") or "")
            if kind.endswith(".delta") and isinstance(data.get("delta"), str):
                self._arguments.setdefault(key, []).append(data["delta"])  # type: ignore[arg-type]
            elif kind.endswith(".done") and isinstance(data.get("arguments"), str):
                self._arguments[key] = [data["arguments"]]  # type: ignore[list-item]
            return []
        if is_call and not kind.endswith((".added", ".delta", ".in_progress")):
            source = data.get("tool_call") if isinstance(data.get("tool_call"), dict) else data
            key = str(source.get("id") or source.get("item_id") or "")  # type: ignore[union-attr]
            return self._emit_call(key, self._complete(key, source), data)  # type: ignore[arg-type]
        return []

    def _complete(self, key: str, item: JsonDict) -> ToolCallPart:
        call = _tool_call(item)
        if not call.arguments and (fragments := self._arguments.get(key)):
            call = replace(call, arguments="".join(fragments))
        return call

    def _emit_call(self, key: str, call: ToolCallPart, raw: JsonDict) -> list[StreamEvent]:
        keys = {k for k in (key, call.id) if k}
        if keys & self._seen_calls:
            return []
        self._seen_calls |= keys
        self._tool_calls.append(call)
        return [StreamEvent.tool(call, raw)]

    @staticmethod
    def _delta_text(data: JsonDict) -> str | None:
        delta = data.get("delta")
        if isinstance(delta, str):
            return delta
        if isinstance(delta, dict) and isinstance(delta.get("text"), str):
            return delta["text"]  # type: ignore[return-value]
        text = data.get("text")
        return text if isinstance(text, str) else None

    def finish(self) -> list[StreamEvent]:
        events: list[StreamEvent] = []
        for key, item in list(self._open_calls.items()):
            if item.get("name") or item.get("function"):
                events.extend(self._emit_call(key, self._complete(key, item), item))
        self._open_calls.clear()
        return events

    def fallback(self) -> ResponseResult:
        parts: list[ContentPart] = []
        if self._reasoning:
            parts.append(ReasoningPart("".join(self._reasoning)))
        if self._text:
            parts.append(TextPart("".join(self._text)))
        parts.extend(self._tool_calls)
        return ResponseResult(id=self._id, model=self._model, content=tuple(parts), synthesized=True)

    def decode_response(self, raw: JsonValue) -> ResponseResult:
        data = _require_object(raw)
        if "choices" in data and "output" not in data:
            return ChatCompletionsPayloadDecoder(self._model).decode_response(data)
        parts: list[ContentPart] = []
        for item in data.get("output") or []:
            if not isinstance(item, dict):
                continue
            match item.get("type"):
                case "message":
                    for c in item.get("content") or []:
                        if isinstance(c, dict) and c.get("type") in ("output_text", "text") and isinstance(c.get("text"), str):
                            parts.append(TextPart(c["text"]))
                case "function_call" | "tool_call":
                    parts.append(_tool_call(item))
                case "reasoning":
                    summary = [s.get("text", "") for s in item.get("summary") or [] if isinstance(s, dict)]
                    if summary:
                        parts.append(ReasoningPart("".join(summary)))
        if not any(isinstance(p, TextPart) for p in parts) and isinstance(data.get("output_text"), str):
            parts.insert(0, TextPart(data["output_text"]))
        return ResponseResult(
            id=str(data.get("id") or ""),
            model=data.get("model") or self._model,  # type: ignore[arg-type]
            content=tuple(parts),
            status=data.get("status"),  # type: ignore[arg-type]
            usage=data.get("usage") if isinstance(data.get("usage"), dict) else None,  # type: ignore[arg-type]
            raw=data,
        )


class ChatCompletionsPayloadDecoder:
    """Decoder for `choices[].delta` chunk streams (Chat Completions-style APIs).

    Tool call fragments are accumulated per index and emitted once the
    choice reports a finish_reason; the done event is assembled at end of
    stream so a trailing usage chunk is included.
    """

    __slots__ = ("_id", "_model", "_text", "_reasoning", "_calls", "_finish_reason", "_usage")

    def __init__(self, model: str | None = None) -> None:
        self._id = ""
        self._model = model
        self._text: list[str] = []
        self._reasoning: list[str] = []
        self._calls: dict[int, dict[str, str]] = {}
        self._finish_reason: str | None = None
        self._usage: JsonDict | None = None

    def decode_event(self, payload: JsonValue, event: str | None = None) -> list[StreamEvent]:
        data = _require_object(payload)
        self._id = str(data.get("id") or self._id)
        self._model = data.get("model") or self._model  # type: ignore[assignment]
        if data.get("error"):
            raise _failure(data["error"], replace(self._assemble(synthesized=True), status="failed", raw=data), data)
        if isinstance(data.get("usage"), dict):
            self._usage = data["usage"]  # type: ignore[assignment]
        choices = data.get("choices")
        if choices is None:
            return []
        if not isinstance(choices, list):
            raise ValueError("choices is not a list")
        if not choices:
            return []
        choice = _require_object(choices[0])
        delta = choice.get("delta") or {}
        if not isinstance(delta, dict):
            raise ValueError("delta is not an object")

        events: list[StreamEvent] = []
        if isinstance(content := delta.get("content"), str) and content:
            self._text.append(content)
            events.append(StreamEvent.text_delta(content, data))
        if isinstance(reasoning := delta.get("reasoning_content"), str) and reasoning:
            self._reasoning.append(reasoning)
            events.append(StreamEvent.reasoning_delta(reasoning, data))
        for fragment in delta.get("tool_calls") or []:
            if not isinstance(fragment, dict):
                continue
            slot = self._calls.setdefault(int(fragment.get("index", 0)), {"id": "", "name": "", "arguments": ""})
            function = fragment.get("function") if isinstance(fragment.get("function"), dict) else {}
            slot["id"] = str(fragment.get("id") or slot["id"])
            slot["name"] = str(function.get("name") or slot["name"])  # type: ignore[union-attr]
            slot["arguments"] += str(function.get("arguments") or "")  # type: ignore[union-attr]
        if choice.get("finish_reason") and self._finish_reason is None:
            self._finish_reason = str(choice["finish_reason"])
            events.extend(StreamEvent.tool(call) for call in self._tool_calls())
        return events

    def _tool_calls(self) -> list[ToolCallPart]:
        return [ToolCallPart(c["id"], c["name"], c["arguments"]) for _, c in sorted(self._calls.items())]

    def _assemble(self, *, synthesized: bool) -> ResponseResult:
        parts: list[ContentPart] = []
        if self._reasoning:
            parts.append(ReasoningPart("".join(self._reasoning)))
        if self._text:
            parts.append(TextPart("".join(self._text)))
        parts.extend(self._tool_calls())
        return ResponseResult(id=self._id, model=self._model, content=tuple(parts), status=self._finish_reason,
                              usage=self._usage, synthesized=synthesized)

    def finish(self) -> list[StreamEvent]:
        return [StreamEvent.done(self._assemble(synthesized=False))] if self._finish_reason else []

    def fallback(self) -> ResponseResult:
        return self._assemble(synthesized=True)

    def decode_response(self, raw: JsonValue) -> ResponseResult:
        data = _require_object(raw)
        choices = data.get("choices") or []
        message = choices[0].get("message") if choices and isinstance(choices[0], dict) else None
        parts: list[ContentPart] = []
        finish_reason = None
        if isinstance(message, dict):
            if isinstance(reasoning := message.get("reasoning_content"), str) and reasoning:
                parts.append(ReasoningPart(reasoning))
            if isinstance(content := message.get("content"), str):
                parts.append(TextPart(content))
            parts.extend(_tool_call(c) for c in message.get("tool_calls") or [] if isinstance(c, dict))
            finish_reason = choices[0].get("finish_reason")
        return ResponseResult(
            id=str(data.get("id") or ""),
            model=data.get("model") or self._model,  # type: ignore[arg-type]
            content=tuple(parts),
            status=finish_reason,
            usage=data.get("usage") if isinstance(data.get("usage"), dict) else None,  # type: ignore[arg-type]
            raw=data,
        )
