"""Circuit breaker for runaway repetition of identical tool calls.

Tracks a sliding window of recent call identities ``(name, args_hash)``
and trips when the most recent ``threshold`` entries are all identical.
Alternating loops (A, B, A, B) are deliberately not caught; repeated calls
that differ only in arguments never trip it.
"""

from __future__ import annotations

import hashlib
import logging
from collections import deque

from mastermind.types import ToolCall

_logger = logging.getLogger(__name__)

MIN_WINDOW = 5
MIN_THRESHOLD = 3


def _hash_identity(call: ToolCall) -> tuple[str, str]:
    name, args = call.identity
    return name, hashlib.sha256(args.encode("utf-8")).hexdigest()[:16]


class LoopGuard:
    """Sliding-window detector for stuck tool-call loops."""

    def __init__(self, window: int = MIN_WINDOW, threshold: int = MIN_THRESHOLD) -> None:
        self.threshold = max(threshold, MIN_THRESHOLD)
        window = max(window, MIN_WINDOW, self.threshold)
        self._window: deque[tuple[str, str]] = deque(maxlen=window)

    def observe(self, call: ToolCall) -> bool:
        """Record *call*; return True if it completes a loop."""
        key = _hash_identity(call)
        self._window.append(key)
        if len(self._window) < self.threshold:
            return False

        recent = list(self._window)[-self.threshold:]
        if all(k == key for k in recent):
            _logger.warning(
                "Loop detected: %s called %d times with identical arguments",
                call.name, self.threshold,
            )
            return True
        return False

    def reset(self) -> None:
        self._window.clear()

    def __len__(self) -> int:
        return len(self._window)
