"""Serialized inference for the HTTP layer.

Architecture:
    FastAPI (async) -> asyncio.Lock -> single-thread executor -> ImageClassifier.classify

An ImageClassifier owns one input buffer and one session, so at most one
classification may be in flight. Requests wait up to QUEUE_TIMEOUT_SECONDS
for their turn, then fail with TimeoutError (mapped to 503).
"""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

T = TypeVar("T")

QUEUE_TIMEOUT_SECONDS: float = 5.0


class InferencePool:
    """Runs blocking classifier calls one at a time off the event loop."""

    def __init__(self, timeout: float = QUEUE_TIMEOUT_SECONDS) -> None:
        self._timeout = timeout
        self._lock = asyncio.Lock()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="classifier")
        self._active_count: int = 0
        self._queue_depth: int = 0
        self._counter_lock = threading.Lock()

    async def run(self, func: Callable[..., T], *args: object) -> T:
        """Run ``func(*args)`` in the worker thread once no other call is active.

        Raises:
            TimeoutError: If the turn cannot be acquired within the timeout.
        """
        with self._counter_lock:
            self._queue_depth += 1
        try:
            await asyncio.wait_for(self._lock.acquire(), timeout=self._timeout)
        finally:
            with self._counter_lock:
                self._queue_depth -= 1

        with self._counter_lock:
            self._active_count += 1
        try:
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(self._executor, func, *args)
        finally:
            self._lock.release()
            with self._counter_lock:
                self._active_count -= 1

    @property
    def active_count(self) -> int:
        """Number of currently running classifications (0 or 1)."""
        with self._counter_lock:
            return self._active_count

    @property
    def queue_depth(self) -> int:
        """Number of requests waiting for their turn."""
        with self._counter_lock:
            return self._queue_depth

    def shutdown(self) -> None:
        """Shut down the worker thread, waiting for a running call to finish."""
        self._executor.shutdown(wait=True)
        logger.debug("Inference pool shut down")
