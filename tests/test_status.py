from __future__ import annotations

import pytest

from order_sync.status import (
    ActorRole,
    InvalidTransitionError,
    OrderStatus,
    allowed_targets,
    can_transition,
    is_terminal,
    next_status,
    parse_role,
    parse_status,
    validate_transition,
)


def test_forward_chain_steps_one_at_a_time() -> None:
    assert next_status(OrderStatus.QUEUED) is OrderStatus.ACCEPTED
    assert next_status(OrderStatus.READY) is OrderStatus.AWAITING_PAYMENT
    assert next_status(OrderStatus.AWAITING_PAYMENT) is OrderStatus.PAID
    assert next_status(OrderStatus.PAID) is None
    assert next_status(OrderStatus.CANCELLED) is None


@pytest.mark.parametrize("status", [s for s in OrderStatus if not is_terminal(s)])
def test_any_active_status_can_be_cancelled(status: OrderStatus) -> None:
    assert can_transition(status, OrderStatus.CANCELLED)


def test_skipping_and_moving_backwards_are_rejected() -> None:
    assert not can_transition(OrderStatus.QUEUED, OrderStatus.READY)
    assert not can_transition(OrderStatus.READY, OrderStatus.PREPARING)
    assert not can_transition(OrderStatus.PAID, OrderStatus.CANCELLED)
    assert not can_transition(OrderStatus.CANCELLED, OrderStatus.QUEUED)


def test_terminal_statuses() -> None:
    assert is_terminal(OrderStatus.PAID)
    assert is_terminal(OrderStatus.CANCELLED)
    assert not is_terminal(OrderStatus.AWAITING_PAYMENT)


def test_validate_transition_names_both_statuses() -> None:
    with pytest.raises(InvalidTransitionError, match="from queued to ready"):
        validate_transition(OrderStatus.QUEUED, OrderStatus.READY, ActorRole.KITCHEN)


def test_admin_may_not_move_orders() -> None:
    with pytest.raises(InvalidTransitionError, match="Role admin"):
        validate_transition(OrderStatus.QUEUED, OrderStatus.ACCEPTED, ActorRole.ADMIN)
    assert allowed_targets(OrderStatus.QUEUED, ActorRole.ADMIN) == []


def test_unknown_role_has_no_targets() -> None:
    assert allowed_targets(OrderStatus.QUEUED, None) == []
    with pytest.raises(InvalidTransitionError):
        validate_transition(OrderStatus.QUEUED, OrderStatus.ACCEPTED, None)


def test_allowed_targets_lists_forward_step_then_cancel() -> None:
    assert allowed_targets(OrderStatus.PREPARING, ActorRole.KITCHEN) == [
        OrderStatus.READY,
        OrderStatus.CANCELLED,
    ]
    assert allowed_targets(OrderStatus.PAID, ActorRole.WAITER) == []


def test_parse_helpers_normalise_input() -> None:
    assert parse_status(" Ready ") is OrderStatus.READY
    assert parse_role("KITCHEN") is ActorRole.KITCHEN
    assert parse_role("chef") is None
    assert parse_role(None) is None
    with pytest.raises(ValueError):
        parse_status("served")
