"""Async helpers: attempt deadlines and bounded prefetch."""

from .buffer import buffer_stream
from .deadline import run_with_deadline

__all__ = ["buffer_stream", "run_with_deadline"]
