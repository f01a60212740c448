from __future__ import annotations

import asyncio

import pytest

from conftest import RecordingListener, make_order
from order_sync.authority_client import TIMEOUT_MESSAGE
from order_sync.memory_authority import InMemoryAuthority, MockAuthorityClient
from order_sync.status import InvalidTransitionError, OrderStatus
from order_sync.sync import LOGIN, LiveSyncController, ViewKind

IDLE_INTERVAL = 60.0


class CountingClient(MockAuthorityClient):
    def __init__(self, authority, token=None):
        super().__init__(authority, token)
        self.fetches = 0
        self.in_flight = 0
        self.max_in_flight = 0

    async def fetch_active_orders(self):
        self.fetches += 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            return await super().fetch_active_orders()
        finally:
            self.in_flight -= 1


def _controller(
    authority, listener, view=ViewKind.KITCHEN, token="kitchen-dev", interval=IDLE_INTERVAL, **kwargs
):
    client = CountingClient(authority, token)
    controller = LiveSyncController(client, view, listener=listener, interval=interval, **kwargs)
    return controller, client


def test_start_publishes_active_orders(authority: InMemoryAuthority, listener: RecordingListener) -> None:
    authority.seed(make_order("o1", 1, "queued"))
    authority.seed(make_order("o2", 2, "ready", minutes_ago=5))
    authority.seed(make_order("o3", 3, "paid"))

    async def scenario():
        controller, _ = _controller(authority, listener)
        await controller.start()
        try:
            assert controller.alive
            assert [order.id for order in controller.snapshot] == ["o2", "o1"]
        finally:
            await controller.stop()

    asyncio.run(scenario())
    assert listener.redirects == []


def test_failed_transition_rolls_back_to_identical_snapshot(
    authority: InMemoryAuthority, listener: RecordingListener
) -> None:
    authority.seed(make_order("o1", 1, "queued"))
    authority.seed(make_order("o2", 2, "preparing"))

    async def scenario():
        controller, _ = _controller(authority, listener)
        await controller.start()
        before = controller.snapshot
        authority.fail_next("request_transition", "Network error")

        accepted = await controller.request_transition("o1", OrderStatus.ACCEPTED)

        assert accepted is False
        assert controller.snapshot == before
        assert controller.error == "Network error"
        assert listener.statuses(-2)["o1"] == "accepted"
        await controller.stop()

    asyncio.run(scenario())


def test_order_42_fails_then_succeeds_on_retry(
    authority: InMemoryAuthority, listener: RecordingListener
) -> None:
    authority.seed(make_order("o42", 42, "queued"))

    async def scenario():
        controller, _ = _controller(authority, listener)
        await controller.start()

        authority.set_delay("request_transition", 0.05)
        authority.fail_next("request_transition", "Network error")
        pending = asyncio.create_task(controller.request_transition("o42", "accepted"))
        await asyncio.sleep(0.01)
        assert controller.find("o42").status is OrderStatus.ACCEPTED
        assert controller.is_pending("o42")

        assert await pending is False
        assert controller.find("o42").status is OrderStatus.QUEUED
        assert controller.error == "Network error"

        authority.set_delay("request_transition", 0)
        assert await controller.request_transition("o42", "accepted") is True
        assert controller.find("o42").status is OrderStatus.ACCEPTED
        assert controller.error is None

        await controller.refresh()
        assert controller.find("o42").status is OrderStatus.ACCEPTED
        assert controller.error is None
        assert authority.order("o42").status is OrderStatus.ACCEPTED
        await controller.stop()

    asyncio.run(scenario())
    assert listener.errors == ["Network error", None]


def test_second_request_while_in_flight_is_ignored(
    authority: InMemoryAuthority, listener: RecordingListener
) -> None:
    authority.seed(make_order("o1", 1, "queued"))

    async def scenario():
        controller, _ = _controller(authority, listener)
        await controller.start()
        authority.set_delay("request_transition", 0.05)

        first = asyncio.create_task(controller.request_transition("o1", "accepted"))
        await asyncio.sleep(0.01)
        assert await controller.request_transition("o1", "cancelled") is False
        assert await first is True
        assert authority.order("o1").status is OrderStatus.ACCEPTED
        await controller.stop()

    asyncio.run(scenario())


def test_timeout_is_treated_as_failure(authority: InMemoryAuthority, listener: RecordingListener) -> None:
    authority.seed(make_order("o1", 1, "ready"))

    async def scenario():
        controller, _ = _controller(authority, listener, view=ViewKind.WAITER, token="waiter-dev", timeout=0.05)
        await controller.start()
        authority.set_delay("request_transition", 0.5)

        assert await controller.request_transition("o1", "awaiting_payment") is False
        assert controller.find("o1").status is OrderStatus.READY
        assert controller.error == TIMEOUT_MESSAGE
        assert authority.order("o1").status is OrderStatus.READY
        await controller.stop()

    asyncio.run(scenario())


def test_terminal_transition_removes_order_immediately(
    authority: InMemoryAuthority, listener: RecordingListener
) -> None:
    authority.seed(make_order("o1", 1, "awaiting_payment"))
    authority.seed(make_order("o2", 2, "queued"))

    async def scenario():
        controller, _ = _controller(authority, listener, view=ViewKind.WAITER, token="waiter-dev")
        await controller.start()
        authority.set_delay("request_transition", 0.05)

        pending = asyncio.create_task(controller.request_transition("o1", "paid"))
        await asyncio.sleep(0.01)
        assert controller.find("o1") is None
        assert await pending is True
        assert [order.id for order in controller.snapshot] == ["o2"]
        await controller.stop()

    asyncio.run(scenario())


def test_illegal_transition_never_reaches_the_authority(
    authority: InMemoryAuthority, listener: RecordingListener
) -> None:
    authority.seed(make_order("o1", 1, "queued"))
    authority.fail_next("request_transition", "should not be called")

    async def scenario():
        controller, _ = _controller(authority, listener)
        await controller.start()
        with pytest.raises(InvalidTransitionError):
            await controller.request_transition("o1", "preparing")
        with pytest.raises(InvalidTransitionError):
            await controller.request_transition("missing", "accepted")
        assert await controller.request_transition("o1", "accepted") is False
        assert controller.error == "should not be called"
        await controller.stop()

    asyncio.run(scenario())


def test_role_mismatch_redirects_and_halts(authority: InMemoryAuthority, listener: RecordingListener) -> None:
    async def scenario():
        controller, client = _controller(authority, listener, token="waiter-dev")
        await controller.start()
        assert not controller.alive
        assert client.fetches == 0

    asyncio.run(scenario())
    assert listener.redirects == [ViewKind.WAITER.value]


def test_missing_session_redirects_to_login(authority: InMemoryAuthority, listener: RecordingListener) -> None:
    async def scenario():
        controller, _ = _controller(authority, listener, view=ViewKind.WAITER, token="expired")
        await controller.start()
        assert not controller.alive
        assert await controller.refresh() is False

    asyncio.run(scenario())
    assert listener.redirects == [LOGIN]


def test_unreachable_role_check_keeps_polling(authority: InMemoryAuthority, listener: RecordingListener) -> None:
    authority.seed(make_order("o1", 1, "queued"))

    async def scenario():
        controller, _ = _controller(authority, listener, timeout=0.05)
        await controller.start()
        authority.set_delay("check_role", 0.5)
        await controller.refresh()
        assert controller.alive
        assert controller.error == TIMEOUT_MESSAGE
        assert [order.id for order in controller.snapshot] == ["o1"]
        await controller.stop()

    asyncio.run(scenario())
    assert listener.redirects == []


def test_session_revoked_mid_mutation_redirects(authority: InMemoryAuthority, listener: RecordingListener) -> None:
    authority.seed(make_order("o1", 1, "queued"))

    async def scenario():
        controller, _ = _controller(authority, listener)
        await controller.start()
        authority.revoke_session("kitchen-dev")
        assert await controller.request_transition("o1", "accepted") is False
        assert not controller.alive

    asyncio.run(scenario())
    assert listener.redirects == [LOGIN]


def test_overlapping_refresh_runs_one_more_cycle(authority: InMemoryAuthority, listener: RecordingListener) -> None:
    async def scenario():
        controller, client = _controller(authority, listener)
        await controller.start()
        fetched = client.fetches
        authority.set_delay("fetch_active_orders", 0.05)

        running = asyncio.create_task(controller.refresh())
        await asyncio.sleep(0.01)
        assert await controller.refresh() is False
        assert await controller.refresh() is False
        assert await running is True
        assert client.fetches == fetched + 2
        await controller.stop()

    asyncio.run(scenario())


def test_teardown_makes_in_flight_work_a_no_op(authority: InMemoryAuthority, listener: RecordingListener) -> None:
    authority.seed(make_order("o1", 1, "queued"))

    async def scenario():
        controller, _ = _controller(authority, listener)
        await controller.start()
        published = len(listener.snapshots)
        authority.set_delay("fetch_active_orders", 0.05)
        authority.set_delay("request_transition", 0.05)
        authority.fail_next("request_transition", "Network error")

        cycle = asyncio.create_task(controller.refresh())
        mutation = asyncio.create_task(controller.request_transition("o1", "accepted"))
        await asyncio.sleep(0.01)
        await controller.stop()
        authority.seed(make_order("o2", 2, "queued"))

        assert await mutation is False
        await cycle
        return published

    published = asyncio.run(scenario())
    # Only the optimistic apply made before teardown was published.
    assert len(listener.snapshots) == published + 1
    assert listener.errors == []


def test_alerts_respect_sound_preference(authority: InMemoryAuthority, listener: RecordingListener, local_state) -> None:
    authority.seed(make_order("o1", 1, "queued"))
    local_state.set_sound_enabled("kitchen", True)

    async def scenario():
        controller, _ = _controller(authority, listener, local_state=local_state)
        assert controller.sound_enabled
        await controller.start()
        await controller.refresh()
        controller.set_sound_enabled(False)
        authority.seed(make_order("o2", 2, "queued"))
        await controller.refresh()
        await controller.stop()

    asyncio.run(scenario())
    assert [alert.order_id for alert in listener.alerts] == ["o1"]
    assert local_state.get_sound_enabled("kitchen") is False


def test_waiter_alerts_only_for_orders_becoming_ready(
    authority: InMemoryAuthority, listener: RecordingListener
) -> None:
    authority.seed(make_order("o1", 1, "ready"))
    authority.seed(make_order("o2", 2, "preparing"))

    async def scenario():
        controller, _ = _controller(
            authority, listener, view=ViewKind.WAITER, token="waiter-dev", sound_enabled=True
        )
        await controller.start()
        authority.add_session("kitchen-2", "kitchen")
        await authority.request_transition("kitchen-2", "o2", OrderStatus.READY)
        await controller.refresh()
        await controller.refresh()
        await controller.stop()

    asyncio.run(scenario())
    assert [alert.order_number for alert in listener.alerts] == [2]


def test_guest_view_is_not_a_staff_controller(authority: InMemoryAuthority) -> None:
    with pytest.raises(ValueError):
        LiveSyncController(MockAuthorityClient(authority), ViewKind.GUEST)


def test_rollback_keeps_confirmed_status_not_yet_fetched(
    authority: InMemoryAuthority, listener: RecordingListener
) -> None:
    authority.seed(make_order("o1", 1, "queued"))

    async def scenario():
        controller, _ = _controller(authority, listener)
        await controller.start()
        authority.set_delay("fetch_active_orders", 0.1)
        slow_cycle = asyncio.create_task(controller.refresh())
        await asyncio.sleep(0.01)

        assert await controller.request_transition("o1", "accepted") is True
        before = controller.snapshot
        assert controller.find("o1").status is OrderStatus.ACCEPTED

        authority.fail_next("request_transition", "Network error")
        assert await controller.request_transition("o1", "preparing") is False
        assert controller.snapshot == before

        await slow_cycle
        assert controller.find("o1").status is OrderStatus.ACCEPTED
        await controller.stop()

    asyncio.run(scenario())
    assert authority.order("o1").status is OrderStatus.ACCEPTED


def test_restart_after_teardown_drops_abandoned_mutation(
    authority: InMemoryAuthority, listener: RecordingListener
) -> None:
    authority.seed(make_order("o1", 1, "queued"))

    async def scenario():
        controller, _ = _controller(authority, listener)
        await controller.start()
        authority.set_delay("request_transition", 0.05)
        authority.fail_next("request_transition", "Network error")

        mutation = asyncio.create_task(controller.request_transition("o1", "accepted"))
        await asyncio.sleep(0.01)
        await controller.stop()
        assert await mutation is False

        authority.set_delay("request_transition", 0)
        await controller.start()
        assert controller.find("o1").status is OrderStatus.QUEUED
        assert not controller.is_pending("o1")
        assert await controller.request_transition("o1", "accepted") is True
        assert controller.find("o1").status is OrderStatus.ACCEPTED
        await controller.stop()

    asyncio.run(scenario())


def test_timer_picks_up_new_orders(authority: InMemoryAuthority, listener: RecordingListener) -> None:
    authority.seed(make_order("o1", 1, "queued"))

    async def scenario():
        controller, client = _controller(authority, listener, interval=0.02)
        await controller.start()
        authority.seed(make_order("o2", 2, "queued"))
        await asyncio.sleep(0.15)
        ids = [order.id for order in controller.snapshot]
        fetches = client.fetches
        await controller.stop()
        return ids, fetches

    ids, fetches = asyncio.run(scenario())
    assert ids == ["o1", "o2"]
    assert fetches >= 2


def test_slow_fetch_never_overlaps_timer_cycles(
    authority: InMemoryAuthority, listener: RecordingListener
) -> None:
    async def scenario():
        controller, client = _controller(authority, listener, interval=0.01)
        await controller.start()
        authority.set_delay("fetch_active_orders", 0.05)
        await asyncio.sleep(0.25)
        await controller.stop()
        return client

    client = asyncio.run(scenario())
    assert client.fetches >= 3
    assert client.max_in_flight == 1


def test_stop_cancels_the_timer(authority: InMemoryAuthority, listener: RecordingListener) -> None:
    async def scenario():
        controller, client = _controller(authority, listener, interval=0.02)
        await controller.start()
        await asyncio.sleep(0.05)
        await controller.stop()
        stopped_at = client.fetches
        await asyncio.sleep(0.1)
        return stopped_at, client.fetches

    stopped_at, final = asyncio.run(scenario())
    assert stopped_at >= 2
    assert final == stopped_at


def test_timer_halts_when_session_is_revoked(
    authority: InMemoryAuthority, listener: RecordingListener
) -> None:
    async def scenario():
        controller, client = _controller(authority, listener, interval=0.02)
        await controller.start()
        authority.revoke_session("kitchen-dev")
        await asyncio.sleep(0.1)
        assert not controller.alive
        halted_at = client.fetches
        await asyncio.sleep(0.1)
        return halted_at, client.fetches

    halted_at, final = asyncio.run(scenario())
    assert final == halted_at
    assert listener.redirects == [LOGIN]


def test_waiter_ignores_orders_first_seen_ready(
    authority: InMemoryAuthority, listener: RecordingListener
) -> None:
    authority.seed(make_order("o1", 1, "preparing"))

    async def scenario():
        controller, _ = _controller(
            authority, listener, view=ViewKind.WAITER, token="waiter-dev", sound_enabled=True
        )
        await controller.start()
        authority.seed(make_order("o2", 2, "ready"))
        await controller.refresh()
        await controller.stop()

    asyncio.run(scenario())
    assert listener.alerts == []
