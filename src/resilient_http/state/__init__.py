"""Bounded state cache and conversation chaining."""

from .conversation import ConversationChain
from .store import DEFAULT_MAX_SIZE, DEFAULT_TTL_MS, BoundedStateCache, StateEntry

__all__ = ["BoundedStateCache", "StateEntry", "ConversationChain", "DEFAULT_MAX_SIZE", "DEFAULT_TTL_MS"]
