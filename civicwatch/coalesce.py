"""Event coalescing: debounce, throttle and request generations.

Map pans and keystrokes arrive in bursts. A :class:`Debouncer` collapses a
burst into one callback carrying the latest payload once the input has been
quiet for ``wait_s``. A :class:`Throttler` lets at most one call through per
window. :class:`RequestGenerations` stamps dispatched work so responses that
were overtaken by a newer request can be discarded.

Timers go through a :class:`Scheduler` so tests (or an event loop) can
supply their own clock. Each caller owns its own instances; they are not
meant to be shared between independent screens.
"""
import logging
import threading
import time
from typing import Any, Callable, Optional, Protocol

logger = logging.getLogger(__name__)


class TimerHandle(Protocol):
    def cancel(self) -> None:
        ...


class Scheduler(Protocol):
    """Runs ``fn`` after ``delay_s`` seconds; the returned handle cancels it."""

    def schedule(self, fn: Callable[[], None], delay_s: float) -> TimerHandle:
        ...


class ThreadingScheduler:
    """Scheduler backed by daemon ``threading.Timer`` threads."""

    def schedule(self, fn: Callable[[], None], delay_s: float) -> TimerHandle:
        timer = threading.Timer(delay_s, fn)
        timer.daemon = True
        timer.start()
        return timer


class Debouncer:
    """Fire ``callback(payload)`` once input has been quiet for ``wait_s`` seconds.

    Idle -> Pending on submit; a new submit while Pending re-arms the timer
    with the newer payload; the timer firing returns to Idle.
    """

    def __init__(self, callback: Callable[[Any], None], wait_s: float,
                 scheduler: Optional[Scheduler] = None):
        if wait_s < 0:
            raise ValueError(f"wait_s must be >= 0, got {wait_s}")
        self._callback = callback
        self.wait_s = wait_s
        self._scheduler = scheduler or ThreadingScheduler()
        self._lock = threading.Lock()
        self._handle: Optional[TimerHandle] = None
        self._payload: Any = None
        self._armed_at = 0  # bumps on every submit so a superseded timer is a no-op
        self._disposed = False

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._handle is not None

    @property
    def disposed(self) -> bool:
        return self._disposed

    def submit(self, payload: Any = None) -> None:
        with self._lock:
            if self._disposed:
                logger.debug("[Coalesce] Ignoring submit on disposed debouncer")
                return
            if self._handle is not None:
                self._handle.cancel()
            self._armed_at += 1
            ticket = self._armed_at
            self._payload = payload
            self._handle = self._scheduler.schedule(lambda: self._fire(ticket), self.wait_s)

    def _fire(self, ticket: int) -> None:
        with self._lock:
            if self._disposed or ticket != self._armed_at or self._handle is None:
                return
            payload = self._payload
            self._handle = None
            self._payload = None
        self._callback(payload)

    def flush(self) -> bool:
        """Fire now if a call is pending. Returns True if the callback ran."""
        with self._lock:
            if self._handle is None or self._disposed:
                return False
            self._handle.cancel()
            self._handle = None
            payload = self._payload
            self._payload = None
        self._callback(payload)
        return True

    def cancel(self) -> None:
        """Drop any pending call without firing it."""
        with self._lock:
            if self._handle is not None:
                self._handle.cancel()
            self._handle = None
            self._payload = None

    def dispose(self) -> None:
        """Cancel any pending call and refuse further submits."""
        self.cancel()
        self._disposed = True

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.dispose()
        return False


class Throttler:
    """Let ``callback`` run at most once per ``window_s`` seconds (leading edge).

    Calls inside the window are dropped, not deferred.
    """

    def __init__(self, callback: Callable[..., Any], window_s: float,
                 clock: Callable[[], float] = time.monotonic):
        if window_s < 0:
            raise ValueError(f"window_s must be >= 0, got {window_s}")
        self._callback = callback
        self.window_s = window_s
        self._clock = clock
        self._lock = threading.Lock()
        self._last_run: Optional[float] = None
        self._disposed = False

    def __call__(self, *args, **kwargs) -> bool:
        """Invoke the callback if the window allows it. Returns True if it ran."""
        with self._lock:
            if self._disposed:
                return False
            now = self._clock()
            if self._last_run is not None and now - self._last_run < self.window_s:
                return False
            self._last_run = now
        self._callback(*args, **kwargs)
        return True

    def reset(self) -> None:
        with self._lock:
            self._last_run = None

    def dispose(self) -> None:
        with self._lock:
            self._disposed = True


class RequestGenerations:
    """Monotonic tokens for discarding out-of-order responses.

    ``issue()`` before dispatching a request; when its response arrives, keep
    it only if ``is_current(token)``.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._latest = 0

    @property
    def latest(self) -> int:
        with self._lock:
            return self._latest

    def issue(self) -> int:
        with self._lock:
            self._latest += 1
            return self._latest

    def is_current(self, token: int) -> bool:
        with self._lock:
            return token == self._latest

    def invalidate(self) -> None:
        """Make every token issued so far stale."""
        self.issue()
