"""Trigger tokens.

A token is a millisecond timestamp used as a change marker: stamping a new
token on a node's `triggerExecution` asks that node to run again. Tokens handed
out by one clock are strictly increasing even when the wall clock stalls or
steps backwards.
"""

from __future__ import annotations

import time
from typing import Callable


class TriggerClock:
    def __init__(self, now: Callable[[], float] = time.time):
        self._now = now
        self._last = 0

    @property
    def last(self) -> int:
        return self._last

    def next(self) -> int:
        stamp = int(self._now() * 1000)
        if stamp <= self._last:
            stamp = self._last + 1
        self._last = stamp
        return stamp
