"""
Cancellation tokens with deadlines for engine operations.

A Context is the Python counterpart of a request-scoped cancellation
handle. Every engine call made by the service derives a child context with
its own operation timeout; the child inherits the parent's deadline (the
earlier one wins) and is cancelled together with its parent.

Usage:
    ctx = Context()
    child = ctx.with_timeout(TIMEOUT_LIST)
    child.check()            # raises CancelledError / DeadlineExceededError
    child.on_cancel(resp.close)
    ctx.cancel()             # cancels ctx and every child
    child.close()            # detaches child from ctx once the call is done

Children are also context managers that detach on exit:
    with ctx.with_timeout(TIMEOUT_LIST) as scope:
        ...
"""

import threading
import time
import logging
from typing import Callable, List, Optional

from .errors import CancelledError, DeadlineExceededError

logger = logging.getLogger(__name__)


class Context:
    """Thread-safe cancellation token with an optional deadline."""

    def __init__(self, timeout: Optional[float] = None, parent: Optional['Context'] = None):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: List[Callable[[], None]] = []
        self._parent = parent

        deadline = None
        if timeout is not None:
            deadline = time.monotonic() + timeout
        if parent is not None and parent.deadline is not None:
            deadline = parent.deadline if deadline is None else min(deadline, parent.deadline)
        self.deadline = deadline

        if parent is not None:
            parent.on_cancel(self.cancel)

    def with_timeout(self, timeout: Optional[float]) -> 'Context':
        """Derive a child context that expires after `timeout` seconds."""
        return Context(timeout=timeout, parent=self)

    def close(self) -> None:
        """Detach from the parent. The context itself stays usable and cancellable."""
        parent, self._parent = self._parent, None
        if parent is not None:
            parent.remove_callback(self.cancel)

    def __enter__(self) -> 'Context':
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def cancel(self) -> None:
        """Cancel this context. Safe to call more than once."""
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logger.debug(f"Cancel callback failed: {e}")

    def on_cancel(self, callback: Callable[[], None]) -> None:
        """Run `callback` when the context is cancelled (immediately if it already is)."""
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return
        callback()

    def remove_callback(self, callback: Callable[[], None]) -> None:
        """Forget a callback registered with on_cancel. Unknown callbacks are ignored."""
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, or None when there is none."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def expired(self) -> bool:
        return self.deadline is not None and time.monotonic() >= self.deadline

    def check(self) -> None:
        """Raise if the context was cancelled or its deadline passed."""
        if self.cancelled:
            raise CancelledError("context cancelled")
        if self.expired():
            raise DeadlineExceededError("context deadline exceeded")
