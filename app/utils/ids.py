"""
Identifier generation.

Action, disease and plant ids come from an injected :class:`IdGenerator`
so tests can supply deterministic values.
"""

from __future__ import annotations

import threading
import uuid

from app.utils.concurrency import synchronized


class IdGenerator:
    """Random ids (uuid4 hex, optionally prefixed)."""

    def new_id(self, prefix: str = "") -> str:
        value = uuid.uuid4().hex
        return f"{prefix}_{value}" if prefix else value


class SequentialIdGenerator(IdGenerator):
    """Monotonic ids (``act_1``, ``act_2``, ...) for tests and fixtures."""

    def __init__(self, start: int = 1) -> None:
        self._next = start
        self._lock = threading.Lock()

    @synchronized
    def new_id(self, prefix: str = "") -> str:
        value = self._next
        self._next += 1
        return f"{prefix}_{value}" if prefix else str(value)
