"""Cleanup stack ordering, idempotence and failure isolation."""

from __future__ import annotations

import logging

import pytest

from gb_common.errors import NoCleanupContext
from gb_provisioner.engine.cleanup import CleanupStack, require_stack

pytestmark = pytest.mark.unit_provisioner


def test_unwind_runs_in_reverse_registration_order() -> None:
    order: list[str] = []
    stack = CleanupStack()
    for name in ("network", "tunnel", "zdbs", "minio"):
        stack.register(lambda name=name: order.append(name), label=name)

    assert len(stack) == 4
    assert stack.unwind_all() == 4
    assert order == ["minio", "zdbs", "tunnel", "network"]
    assert stack.destroyed


def test_unwind_is_idempotent() -> None:
    calls: list[int] = []
    stack = CleanupStack()
    stack.register(lambda: calls.append(1))

    assert stack.unwind_all() == 1
    assert stack.unwind_all() == 0
    assert stack.destroy() == 0
    assert calls == [1]


def test_failing_action_does_not_stop_the_rest(caplog) -> None:
    order: list[str] = []

    def broken() -> None:
        raise RuntimeError("wg-quick down failed")

    stack = CleanupStack()
    stack.register(lambda: order.append("first"))
    stack.register(broken, label="tunnel")
    stack.register(lambda: order.append("last"))

    with caplog.at_level(logging.ERROR):
        assert stack.unwind_all() == 3

    assert order == ["last", "first"]
    assert "Cleanup tunnel failed" in caplog.text


def test_register_after_destroy_is_rejected() -> None:
    stack = CleanupStack()
    stack.unwind_all()
    with pytest.raises(NoCleanupContext):
        stack.register(lambda: None)
    with pytest.raises(NoCleanupContext):
        stack.child()


def test_context_manager_cancels_then_unwinds_on_error() -> None:
    seen: list[bool] = []

    with pytest.raises(ValueError):
        with CleanupStack() as stack:
            stack.register(lambda: seen.append(stack.cancelled))
            raise ValueError("step failed")

    assert seen == [True]
    assert stack.destroyed


def test_cancel_does_not_unwind() -> None:
    calls: list[int] = []
    stack = CleanupStack()
    stack.register(lambda: calls.append(1))

    stack.cancel()

    assert stack.cancelled
    assert calls == []
    assert not stack.destroyed


def test_child_stack_follows_parent_cancellation() -> None:
    parent = CleanupStack()
    child = parent.child()
    assert not child.cancelled
    parent.cancel()
    assert child.cancelled


def test_require_stack() -> None:
    stack = CleanupStack()
    assert require_stack(stack) is stack
    with pytest.raises(NoCleanupContext):
        require_stack(object())
    stack.unwind_all()
    with pytest.raises(NoCleanupContext):
        require_stack(stack)
