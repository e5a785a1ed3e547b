"""Caller-owned cleanup stack for provisioned resources."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

from gb_common.errors import NoCleanupContext
from gb_common.logging import TEARDOWN_PHASE, phase_logger

from gb_provisioner.engine.cancel import CancelToken

logger = logging.getLogger(__name__)
teardown_logger = phase_logger(__name__, TEARDOWN_PHASE)

CleanupAction = Callable[[], Any]


@dataclass
class _Entry:
    action: CleanupAction
    label: str


class CleanupStack:
    """Accumulate teardown actions and run them in reverse, exactly once.

    The stack goes ``open -> destroyed`` one way. Registering on a destroyed
    stack raises `NoCleanupContext`. Each step that acquires a resource
    registers its release immediately after the acquisition succeeds, so
    unwinding always matches what was actually provisioned.

    The stack carries a `CancelToken`. Cancelling tells poll loops to give up
    but never runs cleanup; `unwind_all()` is always explicit (or triggered
    by leaving the ``with`` block).
    """

    def __init__(self, cancel: CancelToken | None = None) -> None:
        self._entries: List[_Entry] = []
        self._destroyed = False
        self.cancel_token = cancel or CancelToken()

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    def __len__(self) -> int:
        return len(self._entries)

    def register(self, action: CleanupAction, *, label: Optional[str] = None) -> None:
        """Append a teardown action."""
        if self._destroyed:
            raise NoCleanupContext("cleanup stack is already destroyed")
        name = label or getattr(action, "__name__", repr(action))
        self._entries.append(_Entry(action=action, label=name))
        logger.debug("Registered cleanup %s (%d pending)", name, len(self._entries))

    def unwind_all(self) -> int:
        """Run registered actions newest-first and return how many ran.

        A failing action is logged and does not stop the rest.
        """
        entries, self._entries = self._entries, []
        self._destroyed = True
        for entry in reversed(entries):
            teardown_logger.debug("Running cleanup %s", entry.label)
            try:
                entry.action()
            except Exception:
                teardown_logger.exception("Cleanup %s failed", entry.label)
        return len(entries)

    destroy = unwind_all

    def cancel(self) -> None:
        """Signal abandonment of in-flight waits."""
        self.cancel_token.request_stop()

    @property
    def cancelled(self) -> bool:
        return self.cancel_token.should_stop()

    def child(self) -> "CleanupStack":
        """New stack whose cancel token is derived from this one."""
        if self._destroyed:
            raise NoCleanupContext("cannot derive from a destroyed cleanup stack")
        return CleanupStack(cancel=self.cancel_token.child())

    def __enter__(self) -> "CleanupStack":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cancel()
        self.unwind_all()


def require_stack(stack: Any) -> CleanupStack:
    """Return ``stack`` if it is an open `CleanupStack`, else raise `NoCleanupContext`."""
    if not isinstance(stack, CleanupStack):
        raise NoCleanupContext(f"expected a CleanupStack, got {type(stack).__name__}")
    if stack.destroyed:
        raise NoCleanupContext("cleanup stack is already destroyed")
    return stack
