"""
engine/undo_log.py
==================

Bounded stack of full-state snapshots enabling single-step rollback.

The scoring session pushes a snapshot immediately before applying an accepted
delivery, so popping the newest entry exactly reverses the last delivery.
Rejected commands never reach snapshot().
"""

import copy
import logging
from collections import deque

from engine.errors import NoHistoryError

logger = logging.getLogger(__name__)

DEFAULT_UNDO_DEPTH = 10


class UndoLog:
    def __init__(self, capacity=DEFAULT_UNDO_DEPTH):
        if capacity < 1:
            raise ValueError("undo capacity must be at least 1")
        self.capacity = capacity
        self._stack = deque(maxlen=capacity)

    def snapshot(self, state):
        """Push a deep copy of *state*; the oldest entry drops past capacity."""
        self._stack.append(copy.deepcopy(state))

    def undo(self):
        """Pop and return the newest snapshot, or raise NoHistoryError."""
        if not self._stack:
            raise NoHistoryError()
        state = self._stack.pop()
        logger.debug("UndoLog: restored snapshot, %d left", len(self._stack))
        return state

    def clear(self):
        self._stack.clear()

    def __len__(self):
        return len(self._stack)
