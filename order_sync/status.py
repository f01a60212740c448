from __future__ import annotations

from enum import Enum
from typing import Optional


class OrderStatus(str, Enum):
    QUEUED = "queued"
    ACCEPTED = "accepted"
    PREPARING = "preparing"
    READY = "ready"
    AWAITING_PAYMENT = "awaiting_payment"
    PAID = "paid"
    CANCELLED = "cancelled"


class ActorRole(str, Enum):
    KITCHEN = "kitchen"
    WAITER = "waiter"
    ADMIN = "admin"


class InvalidTransitionError(ValueError):
    """Raised when a status change is not in the legal transition table."""


FORWARD_CHAIN: tuple[OrderStatus, ...] = (
    OrderStatus.QUEUED,
    OrderStatus.ACCEPTED,
    OrderStatus.PREPARING,
    OrderStatus.READY,
    OrderStatus.AWAITING_PAYMENT,
    OrderStatus.PAID,
)

TERMINAL_STATUSES = frozenset({OrderStatus.PAID, OrderStatus.CANCELLED})

ACTIVE_STATUSES: tuple[OrderStatus, ...] = tuple(
    status for status in FORWARD_CHAIN if status not in TERMINAL_STATUSES
)


def _build_transitions() -> dict[OrderStatus, frozenset[OrderStatus]]:
    table: dict[OrderStatus, frozenset[OrderStatus]] = {}
    for index, status in enumerate(FORWARD_CHAIN):
        if status in TERMINAL_STATUSES:
            table[status] = frozenset()
            continue
        table[status] = frozenset({FORWARD_CHAIN[index + 1], OrderStatus.CANCELLED})
    table[OrderStatus.CANCELLED] = frozenset()
    return table


VALID_TRANSITIONS = _build_transitions()

# Targets each role may request. The entry surface never transitions; admins never mutate status.
ROLE_PERMISSIONS: dict[ActorRole, frozenset[OrderStatus]] = {
    ActorRole.KITCHEN: frozenset(OrderStatus) - {OrderStatus.QUEUED},
    ActorRole.WAITER: frozenset(OrderStatus) - {OrderStatus.QUEUED},
    ActorRole.ADMIN: frozenset(),
}


def parse_status(value: OrderStatus | str) -> OrderStatus:
    if isinstance(value, OrderStatus):
        return value
    return OrderStatus(str(value or "").strip().lower())


def parse_role(value: ActorRole | str | None) -> Optional[ActorRole]:
    if isinstance(value, ActorRole):
        return value
    try:
        return ActorRole(str(value or "").strip().lower())
    except ValueError:
        return None


def is_terminal(status: OrderStatus) -> bool:
    return status in TERMINAL_STATUSES


def next_status(status: OrderStatus) -> Optional[OrderStatus]:
    """Return the forward step from ``status``, or None for terminal states."""
    if status in TERMINAL_STATUSES:
        return None
    return FORWARD_CHAIN[FORWARD_CHAIN.index(status) + 1]


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in VALID_TRANSITIONS.get(current, frozenset())


def role_may_request(role: Optional[ActorRole], target: OrderStatus) -> bool:
    if role is None:
        return False
    return target in ROLE_PERMISSIONS.get(role, frozenset())


def allowed_targets(current: OrderStatus, role: Optional[ActorRole]) -> list[OrderStatus]:
    """Targets a role can request from ``current``, forward step first, cancel last."""
    targets: list[OrderStatus] = []
    forward = next_status(current)
    if forward is not None and role_may_request(role, forward):
        targets.append(forward)
    if can_transition(current, OrderStatus.CANCELLED) and role_may_request(role, OrderStatus.CANCELLED):
        targets.append(OrderStatus.CANCELLED)
    return targets


def validate_transition(current: OrderStatus, target: OrderStatus, role: Optional[ActorRole]) -> None:
    if not can_transition(current, target):
        raise InvalidTransitionError(
            f"Cannot move an order from {current.value} to {target.value}."
        )
    if not role_may_request(role, target):
        who = role.value if role is not None else "this user"
        raise InvalidTransitionError(f"Role {who} may not set orders to {target.value}.")
