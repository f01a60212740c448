from __future__ import annotations

from conftest import make_order
from order_sync.notifications import StatusWatcher
from order_sync.status import OrderStatus


def test_ready_across_three_cycles_alerts_once() -> None:
    watcher = StatusWatcher(OrderStatus.READY)
    fired = []
    fired += watcher.observe([make_order("a", 1, "preparing")])
    for _ in range(3):
        fired += watcher.observe([make_order("a", 1, "ready")])

    assert [(alert.order_id, alert.previous) for alert in fired] == [("a", OrderStatus.PREPARING)]


def test_leaving_and_reentering_alerts_again() -> None:
    watcher = StatusWatcher(OrderStatus.QUEUED)
    assert len(watcher.observe([make_order("a", 1, "queued")])) == 1
    assert watcher.observe([make_order("a", 1, "accepted")]) == []
    assert len(watcher.observe([make_order("a", 1, "queued")])) == 1


def test_first_cycle_can_seed_without_alerting() -> None:
    watcher = StatusWatcher(OrderStatus.READY, alert_on_first_cycle=False)
    assert watcher.observe([make_order("a", 1, "ready")]) == []
    assert watcher.last_seen("a") is OrderStatus.READY
    alerts = watcher.observe([make_order("a", 1, "ready"), make_order("b", 2, "ready")])
    assert [alert.order_number for alert in alerts] == [2]


def test_orders_that_disappear_are_forgotten() -> None:
    watcher = StatusWatcher(OrderStatus.READY)
    watcher.observe([make_order("a", 1, "ready")])
    watcher.observe([])
    assert watcher.last_seen("a") is None
    assert len(watcher.observe([make_order("a", 1, "ready")])) == 1


def test_reset_restores_first_cycle_behaviour() -> None:
    watcher = StatusWatcher(OrderStatus.READY, alert_on_first_cycle=False)
    watcher.observe([make_order("a", 1, "preparing")])
    watcher.reset()
    assert watcher.observe([make_order("a", 1, "ready")]) == []
