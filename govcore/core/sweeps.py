from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator

from govcore.core.errors import SweepInProgressError


class SingleFlight:
    """
    Only one sweep of a kind at a time; a concurrent caller is refused, not queued.
    """

    def __init__(self, kind: str):
        self.kind = str(kind)
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._lock.locked()

    @contextmanager
    def guard(self) -> Iterator[None]:
        if not self._lock.acquire(blocking=False):
            raise SweepInProgressError(kind=self.kind)
        try:
            yield
        finally:
            self._lock.release()
