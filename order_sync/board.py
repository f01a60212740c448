from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Iterable, List, Optional

from .schemas import Order
from .status import FORWARD_CHAIN, ActorRole, OrderStatus, allowed_targets

WARNING_AFTER_MINUTES = 15
LATE_AFTER_MINUTES = 25

_STATUS_RANK: Dict[OrderStatus, int] = {
    status: index for index, status in enumerate(FORWARD_CHAIN + (OrderStatus.CANCELLED,))
}


class AgeLevel(str, Enum):
    NORMAL = "normal"
    WARNING = "warning"
    LATE = "late"


def status_label(status: OrderStatus) -> str:
    return status.value.replace("_", " ").upper()


def sort_orders(orders: Iterable[Order]) -> List[Order]:
    return sorted(orders, key=lambda order: (_STATUS_RANK[order.status], order.created_at))


def group_by_status(
    orders: Iterable[Order], statuses: Optional[Iterable[OrderStatus]] = None
) -> Dict[OrderStatus, List[Order]]:
    """Board columns in canonical status order, each sorted oldest first."""
    columns: Dict[OrderStatus, List[Order]] = {
        status: [] for status in (statuses if statuses is not None else _STATUS_RANK)
    }
    for order in sort_orders(orders):
        column = columns.get(order.status)
        if column is not None:
            column.append(order)
    return columns


def minutes_waiting(order: Order, now: Optional[datetime] = None) -> int:
    now = now or datetime.now(timezone.utc)
    created = order.created_at
    if created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return max(0, int((now - created).total_seconds() // 60))


def age_level(minutes: int) -> AgeLevel:
    if minutes >= LATE_AFTER_MINUTES:
        return AgeLevel.LATE
    if minutes >= WARNING_AFTER_MINUTES:
        return AgeLevel.WARNING
    return AgeLevel.NORMAL


def available_actions(order: Order, role: Optional[ActorRole]) -> List[OrderStatus]:
    if role is None:
        return []
    return allowed_targets(order.status, role)
