from __future__ import annotations

import sqlite3
from datetime import datetime, timedelta, timezone
from typing import Iterator, List, Optional

import pytest

from order_sync.database import apply_schema
from order_sync.local_state import LocalStateRepository
from order_sync.memory_authority import InMemoryAuthority
from order_sync.schemas import LineItem, Order
from order_sync.sync import ViewListener

BASE_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def make_order(
    order_id: str,
    number: int,
    status: str = "queued",
    *,
    minutes_ago: int = 0,
    items: tuple = (),
    customer_name: str = "Thandi",
) -> Order:
    return Order(
        id=order_id,
        order_number=number,
        customer_name=customer_name,
        status=status,
        created_at=BASE_TIME - timedelta(minutes=minutes_ago),
        items=items,
    )


def make_item(
    item_id: str,
    name: str,
    unit_price_cents: int,
    quantity: int = 1,
    note: str = "",
    extras=None,
) -> LineItem:
    return LineItem(
        id=item_id,
        menu_item_id=item_id,
        name=name,
        unit_price_cents=unit_price_cents,
        quantity=quantity,
        note=note,
        extras=extras,
    )


class RecordingListener(ViewListener):
    def __init__(self) -> None:
        self.snapshots: List[tuple] = []
        self.errors: List[Optional[str]] = []
        self.redirects: List[str] = []
        self.alerts: list = []

    def snapshot_changed(self, orders) -> None:
        self.snapshots.append(orders)

    def error_changed(self, message) -> None:
        self.errors.append(message)

    def redirect(self, destination) -> None:
        self.redirects.append(destination)

    def alert(self, alert) -> None:
        self.alerts.append(alert)

    def statuses(self, index: int = -1) -> dict:
        return {order.id: order.status.value for order in self.snapshots[index]}


@pytest.fixture()
def authority() -> InMemoryAuthority:
    return InMemoryAuthority(clock=lambda: BASE_TIME)


@pytest.fixture()
def listener() -> RecordingListener:
    return RecordingListener()


@pytest.fixture()
def local_state(tmp_path) -> Iterator[LocalStateRepository]:
    db_path = tmp_path / "local_state.db"

    def connection_factory() -> sqlite3.Connection:
        conn = sqlite3.connect(db_path)
        conn.row_factory = sqlite3.Row
        return conn

    with connection_factory() as conn:
        apply_schema(conn)

    yield LocalStateRepository(connection_factory=connection_factory)
