from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from .schemas import Order
from .status import OrderStatus


@dataclass(frozen=True)
class StatusAlert:
    order_id: str
    order_number: int
    status: OrderStatus
    previous: Optional[OrderStatus]


class StatusWatcher:
    """Tracks the last status seen per order and reports entries into one watched status.

    The map is rebuilt from every observation, so an order that leaves the
    watched status and comes back alerts again, while an order sitting in it
    across cycles alerts once. With ``alert_on_first_cycle`` off the first
    observation only seeds the map. With ``require_previous`` on, an order
    first seen already in the watched status never alerts.
    """

    def __init__(
        self,
        watched: OrderStatus,
        *,
        alert_on_first_cycle: bool = True,
        require_previous: bool = False,
    ):
        self._watched = watched
        self._alert_on_first_cycle = alert_on_first_cycle
        self._require_previous = require_previous
        self._last_seen: Dict[str, OrderStatus] = {}
        self._observed_once = False

    @property
    def watched(self) -> OrderStatus:
        return self._watched

    def last_seen(self, order_id: str) -> Optional[OrderStatus]:
        return self._last_seen.get(order_id)

    def observe(self, orders: Iterable[Order]) -> List[StatusAlert]:
        emit = self._observed_once or self._alert_on_first_cycle
        alerts: List[StatusAlert] = []
        seen: Dict[str, OrderStatus] = {}
        for order in orders:
            previous = self._last_seen.get(order.id)
            entered = order.status == self._watched and previous != self._watched
            if entered and emit and (previous is not None or not self._require_previous):
                alerts.append(
                    StatusAlert(
                        order_id=order.id,
                        order_number=order.order_number,
                        status=order.status,
                        previous=previous,
                    )
                )
            seen[order.id] = order.status
        self._last_seen = seen
        self._observed_once = True
        return alerts

    def reset(self) -> None:
        self._last_seen = {}
        self._observed_once = False
