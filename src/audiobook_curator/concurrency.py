"""Coordination primitives shared by worker threads.

OnceSet     -- mutex-guarded "already handled" set for once-per-group side effects.
CancelToken -- process-wide cooperative cancellation flag.
"""

import threading

from loguru import logger

log = logger.bind(stage="concurrency")


class OnceSet:
    """Set of keys where the first caller to claim a key wins.

    Multiple files of one group are written concurrently; a group-level side
    effect (saving the cover, writing the sidecar) must run for exactly one
    of them. claim() checks and inserts under one lock.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._seen: set[str] = set()

    def claim(self, key: str) -> bool:
        """Return True if this caller is the first to claim key."""
        with self._lock:
            if key in self._seen:
                return False
            self._seen.add(key)
            return True


class CancelToken:
    """Cooperative cancellation checked at coarse boundaries.

    Work that has already started is never interrupted.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        log.info("Cancellation requested")
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()
