"""Cancel token used to abandon outstanding registry waits."""

from __future__ import annotations

import signal
from typing import Callable, Dict, Optional


class CancelToken:
    """
    Lightweight cooperative cancellation flag.

    It can be tripped explicitly, by SIGINT/SIGTERM when signal handling is
    enabled, or through a parent token. Poll loops call `should_stop()`
    between sleeps and give up when it returns True. Tripping a token never
    runs cleanup on its own.
    """

    def __init__(
        self,
        parent: Optional["CancelToken"] = None,
        enable_signals: bool = False,
        on_stop: Optional[Callable[[], None]] = None,
    ) -> None:
        self._parent = parent
        self._on_stop = on_stop
        self._stop_requested = False
        self._prev_handlers: Dict[int, Callable] = {}
        if enable_signals:
            self._install_signal_handlers()

    def _install_signal_handlers(self) -> None:
        """Capture SIGINT/SIGTERM and mark the token as stopped."""
        for sig in (signal.SIGINT, signal.SIGTERM):
            previous = signal.getsignal(sig)
            try:
                signal.signal(sig, self._handle_signal)  # type: ignore[arg-type]
                self._prev_handlers[sig] = previous
            except ValueError:
                # Not on the main thread; run without signal handling.
                continue

    def _handle_signal(self, signum: int, frame) -> None:  # type: ignore[override]
        self.request_stop()

    def child(self) -> "CancelToken":
        """Derive a token that trips with this one but can also trip alone."""
        return CancelToken(parent=self)

    def request_stop(self) -> None:
        """Mark the token as stopped and trigger the callback once."""
        if self._stop_requested:
            return
        self._stop_requested = True
        if self._on_stop:
            self._on_stop()

    def should_stop(self) -> bool:
        """Return True when this token or any ancestor was tripped."""
        if self._stop_requested:
            return True
        if self._parent is not None and self._parent.should_stop():
            self.request_stop()
            return True
        return False

    def restore(self) -> None:
        """Restore original signal handlers."""
        for sig, handler in self._prev_handlers.items():
            signal.signal(sig, handler)  # type: ignore[arg-type]
        self._prev_handlers.clear()

    def __enter__(self) -> "CancelToken":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.restore()
