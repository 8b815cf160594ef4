"""Conversation chaining on top of a BoundedStateCache.

Remembers the last response id per logical conversation so the next turn
can reference it instead of re-sending the history.
"""

from __future__ import annotations

from typing import Any

from resilient_http.io.streaming import ResponseResult

from .store import BoundedStateCache


class ConversationChain:
    """Continuation ids keyed by conversation.

    Example:
        >>> chain = ConversationChain(BoundedStateCache(ttl_ms=600_000))
        >>> body = {"input": prompt, "previous_response_id": chain.previous_response_id("c1")}
        >>> result = await (await stream_request(executor, descriptor)).final()
        >>> chain.remember("c1", result)
    """

    __slots__ = ("store", "prefix")

    def __init__(self, store: BoundedStateCache | None = None, prefix: str = "conv") -> None:
        self.store = store if store is not None else BoundedStateCache()
        self.prefix = prefix

    def _key(self, conversation_id: str) -> str:
        return f"{self.prefix}:{conversation_id}"

    def previous_response_id(self, conversation_id: str) -> str | None:
        value = self.store.get(self._key(conversation_id))
        return value if isinstance(value, str) else None

    def remember(self, conversation_id: str, result: ResponseResult | str | Any) -> str | None:
        """Store the response id to continue from. Results without an id are ignored."""
        response_id = result if isinstance(result, str) else getattr(result, "id", None)
        if not response_id:
            return None
        self.store.set(self._key(conversation_id), response_id)
        return response_id

    def forget(self, conversation_id: str) -> bool:
        return self.store.delete(self._key(conversation_id))
