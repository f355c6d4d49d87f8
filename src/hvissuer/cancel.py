"""Cancellable execution scope for a single issuance call.

A :class:`CancelScope` governs one ``sign`` invocation.  Every remote
call is executed through :meth:`CancelScope.call`, which blocks the
caller until the call finishes, the scope is cancelled from another
thread, or the scope deadline passes -- whichever comes first.  A
cancelled call is abandoned on the scope's worker thread; its result
is discarded.

Usage::

    with CancelScope(timeout=30) as scope:
        policy = scope.call("policy", client.policy)

    # from another thread
    scope.cancel()
"""

from __future__ import annotations

import contextvars
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, Any, TypeVar

from hvissuer.errors import IssuanceCancelled

if TYPE_CHECKING:
    from collections.abc import Callable

log = logging.getLogger(__name__)

T = TypeVar("T")


class CancelScope:
    """Deadline- and cancel-aware wrapper around blocking calls.

    Parameters
    ----------
    timeout:
        Seconds until the scope cancels itself, or ``None`` for no
        deadline.

    """

    def __init__(self, timeout: float | None = None) -> None:
        self._deadline = time.monotonic() + timeout if timeout is not None else None
        self._cancelled = threading.Event()
        self._wake = threading.Event()
        self._lock = threading.Lock()
        self._reason = "issuance cancelled"
        self._executor: ThreadPoolExecutor | None = None
        self._closed = False

    # -- lifecycle ------------------------------------------------------

    def __enter__(self) -> CancelScope:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        """Release the worker thread.  In-flight calls are abandoned."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=False, cancel_futures=True)

    # -- cancellation ---------------------------------------------------

    def cancel(self, reason: str = "issuance cancelled") -> None:
        """Cancel the scope.  Safe to call from any thread, more than once."""
        with self._lock:
            if not self._cancelled.is_set():
                self._reason = reason
                self._cancelled.set()
                log.debug("Scope cancelled: %s", reason)
        self._wake.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def remaining(self) -> float | None:
        """Seconds left before the deadline, or ``None`` without one."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def check(self, step: str) -> None:
        """Raise :class:`IssuanceCancelled` if the scope is no longer live."""
        remaining = self.remaining()
        if remaining is not None and remaining <= 0:
            self.cancel("issuance deadline exceeded")
        if self._cancelled.is_set():
            msg = f"{self._reason} during {step}"
            raise IssuanceCancelled(msg, step=step)

    # -- blocking helpers -----------------------------------------------

    def call(self, step: str, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run *fn* on the scope worker and wait for it cancellably.

        Exceptions raised by *fn* propagate unchanged.

        Raises
        ------
        IssuanceCancelled
            If the scope is cancelled or the deadline passes before *fn*
            returns.

        """
        self.check(step)
        executor = self._get_executor()
        self._wake.clear()
        ctx = contextvars.copy_context()
        future = executor.submit(ctx.run, fn, *args, **kwargs)
        future.add_done_callback(lambda _f: self._wake.set())

        while not future.done():
            self._wake.wait(timeout=self.remaining())
            self.check(step)
            self._wake.clear()

        return future.result()

    def sleep(self, step: str, seconds: float) -> None:
        """Sleep for *seconds*, waking early and raising on cancellation."""
        self.check(step)
        remaining = self.remaining()
        if remaining is not None and remaining < seconds:
            self._cancelled.wait(timeout=remaining)
        else:
            self._cancelled.wait(timeout=seconds)
        self.check(step)

    def _get_executor(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._closed:
                msg = "CancelScope is closed"
                raise RuntimeError(msg)
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=1,
                    thread_name_prefix="hvissuer-call",
                )
            return self._executor
