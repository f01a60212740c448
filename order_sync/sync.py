from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Tuple

from .authority_client import (
    DEFAULT_REQUEST_TIMEOUT,
    AuthorityClient,
    AuthorityServiceError,
    AuthorityUnavailable,
    AuthorizationError,
    RequestTimeout,
    call_with_deadline,
)
from .local_state import LocalStateRepository
from .notifications import StatusAlert, StatusWatcher
from .schemas import Order
from .status import (
    ACTIVE_STATUSES,
    ActorRole,
    InvalidTransitionError,
    OrderStatus,
    is_terminal,
    parse_role,
    parse_status,
    validate_transition,
)

logger = logging.getLogger(__name__)

LOGIN = "login"


class ViewKind(str, Enum):
    KITCHEN = "kitchen"
    WAITER = "waiter"
    GUEST = "guest"


@dataclass(frozen=True)
class ViewProfile:
    kind: ViewKind
    allowed_role: Optional[ActorRole]
    mismatch_redirect: str
    interval: float
    watched_status: OrderStatus
    alert_on_first_cycle: bool
    alert_requires_previous: bool = False
    tracked_statuses: FrozenSet[OrderStatus] = frozenset(ACTIVE_STATUSES)


VIEW_PROFILES: Dict[ViewKind, ViewProfile] = {
    ViewKind.KITCHEN: ViewProfile(
        kind=ViewKind.KITCHEN,
        allowed_role=ActorRole.KITCHEN,
        mismatch_redirect=ViewKind.WAITER.value,
        interval=2.5,
        watched_status=OrderStatus.QUEUED,
        alert_on_first_cycle=True,
    ),
    ViewKind.WAITER: ViewProfile(
        kind=ViewKind.WAITER,
        allowed_role=ActorRole.WAITER,
        mismatch_redirect=ViewKind.KITCHEN.value,
        interval=3.0,
        watched_status=OrderStatus.READY,
        alert_on_first_cycle=False,
        alert_requires_previous=True,
    ),
    ViewKind.GUEST: ViewProfile(
        kind=ViewKind.GUEST,
        allowed_role=None,
        mismatch_redirect=LOGIN,
        interval=2.5,
        watched_status=OrderStatus.READY,
        alert_on_first_cycle=True,
    ),
}


class ViewListener:
    """Receives controller output. Views override the callbacks they render."""

    def snapshot_changed(self, orders: Tuple[Order, ...]) -> None:
        pass

    def error_changed(self, message: Optional[str]) -> None:
        pass

    def redirect(self, destination: str) -> None:
        pass

    def alert(self, alert: StatusAlert) -> None:
        pass


class PollingController:
    """Fixed-interval fetch cycles with a reentrancy guard and teardown handling."""

    def __init__(
        self,
        *,
        interval: float,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        listener: Optional[ViewListener] = None,
    ):
        self._interval = interval
        self._timeout = timeout
        self._listener = listener or ViewListener()
        self._task: Optional[asyncio.Task] = None
        self._alive = False
        self._cycle_running = False
        self._rerun_requested = False
        self._error: Optional[str] = None

    @property
    def alive(self) -> bool:
        return self._alive

    @property
    def error(self) -> Optional[str]:
        return self._error

    @property
    def interval(self) -> float:
        return self._interval

    async def start(self) -> None:
        if self._alive:
            return
        self._alive = True
        await self.refresh()
        if self._alive:
            self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        self._alive = False
        task, self._task = self._task, None
        if task is None or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def refresh(self) -> bool:
        """Run one reconciliation cycle now.

        Returns False when the controller is torn down or a cycle is already
        running; in the latter case the running cycle repeats once it finishes.
        """
        if not self._alive:
            return False
        if self._cycle_running:
            self._rerun_requested = True
            return False
        self._cycle_running = True
        try:
            while True:
                self._rerun_requested = False
                await self._cycle()
                if not (self._rerun_requested and self._alive):
                    break
        finally:
            self._cycle_running = False
        return True

    async def _run(self) -> None:
        while self._alive:
            await asyncio.sleep(self._interval)
            if not self._alive:
                break
            await self.refresh()

    async def _cycle(self) -> None:
        raise NotImplementedError

    def _halt(self) -> None:
        self._alive = False
        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    def _set_error(self, message: Optional[str]) -> None:
        if message == self._error:
            return
        self._error = message
        self._listener.error_changed(message)


@dataclass
class _PendingMutation:
    target: OrderStatus
    confirmed_seq: Optional[int] = None

    @property
    def in_flight(self) -> bool:
        return self.confirmed_seq is None


class LiveSyncController(PollingController):
    """Keeps a staff view's replica of the active orders in step with the authority.

    The published snapshot is the last authoritative fetch with pending
    optimistic transitions laid over it. Confirmed transitions stay laid over
    until a cycle that started after the confirmation has replaced the
    authoritative copy.
    """

    def __init__(
        self,
        client: AuthorityClient,
        view: ViewKind,
        *,
        listener: Optional[ViewListener] = None,
        local_state: Optional[LocalStateRepository] = None,
        interval: Optional[float] = None,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        sound_enabled: Optional[bool] = None,
    ):
        view = ViewKind(view)
        if view is ViewKind.GUEST:
            raise ValueError("Guest tracking uses GuestOrderTracker")
        profile = VIEW_PROFILES[view]
        super().__init__(interval=interval or profile.interval, timeout=timeout, listener=listener)
        self._client = client
        self._profile = profile
        self._local_state = local_state
        self._role: Optional[ActorRole] = None
        self._authoritative: Tuple[Order, ...] = ()
        self._snapshot: Tuple[Order, ...] = ()
        self._pending: Dict[str, _PendingMutation] = {}
        self._confirm_seq = 0
        self._watcher = StatusWatcher(
            profile.watched_status,
            alert_on_first_cycle=profile.alert_on_first_cycle,
            require_previous=profile.alert_requires_previous,
        )
        if sound_enabled is None:
            sound_enabled = local_state.get_sound_enabled(view.value) if local_state else False
        self._sound_enabled = sound_enabled

    @property
    def view(self) -> ViewKind:
        return self._profile.kind

    @property
    def role(self) -> Optional[ActorRole]:
        return self._role

    @property
    def snapshot(self) -> Tuple[Order, ...]:
        return self._snapshot

    @property
    def sound_enabled(self) -> bool:
        return self._sound_enabled

    def set_sound_enabled(self, enabled: bool) -> None:
        self._sound_enabled = enabled
        if self._local_state is not None:
            self._local_state.set_sound_enabled(self.view.value, enabled)

    def is_pending(self, order_id: str) -> bool:
        pending = self._pending.get(order_id)
        return pending is not None and pending.in_flight

    def find(self, order_id: str) -> Optional[Order]:
        for order in self._snapshot:
            if order.id == order_id:
                return order
        return None

    async def request_transition(self, order_id: str, target: OrderStatus | str) -> bool:
        """Apply ``target`` optimistically, then confirm it with the authority.

        Returns True once the authority accepted the change. Illegal targets
        raise InvalidTransitionError before anything is sent; a second request
        for an order whose call is still in flight is ignored.
        """
        target = parse_status(target)
        if not self._alive:
            return False
        if self.is_pending(order_id):
            logger.debug("Ignoring transition while one is in flight order=%s", order_id)
            return False

        order = self.find(order_id)
        if order is None:
            raise InvalidTransitionError(f"Order {order_id} is not on the {self.view.value} board.")
        validate_transition(order.status, target, self._role)

        self._set_error(None)
        previous = self._pending.get(order_id)
        mutation = _PendingMutation(target=target)
        self._pending[order_id] = mutation
        self._publish()

        try:
            await call_with_deadline(self._client.request_transition(order_id, target), self._timeout)
        except AuthorityServiceError as exc:
            if not self._alive:
                self._discard(order_id, mutation)
                return False
            self._rollback(order_id, mutation, previous)
            logger.warning(
                "Transition rolled back order=%s target=%s: %s", order_id, target.value, exc
            )
            if isinstance(exc, AuthorizationError):
                self._deny(LOGIN, str(exc))
            else:
                self._set_error(str(exc) or "Something went wrong. Please try again.")
            return False

        if not self._alive:
            self._discard(order_id, mutation)
            return False
        self._confirm_seq += 1
        mutation.confirmed_seq = self._confirm_seq
        logger.info(
            "Transition confirmed order=%s number=%s status=%s",
            order_id,
            order.order_number,
            target.value,
        )
        await self.refresh()
        return True

    async def _cycle(self) -> None:
        if not await self._check_access():
            return

        cycle_seq = self._confirm_seq
        try:
            orders = await call_with_deadline(self._client.fetch_active_orders(), self._timeout)
        except AuthorizationError as exc:
            if self._alive:
                self._deny(LOGIN, str(exc))
            return
        except AuthorityServiceError as exc:
            if self._alive:
                logger.warning("Active order fetch failed view=%s: %s", self.view.value, exc)
                self._set_error(str(exc))
            return
        if not self._alive:
            return

        tracked = tuple(order for order in orders if order.status in self._profile.tracked_statuses)
        alerts = self._watcher.observe(tracked)
        self._authoritative = tracked
        self._settle_confirmed(cycle_seq)
        self._publish()
        self._set_error(None)
        self._emit(alerts)
        logger.debug("Cycle complete view=%s orders=%d", self.view.value, len(tracked))

    async def _check_access(self) -> bool:
        try:
            value = await call_with_deadline(self._client.check_role(), self._timeout)
        except (RequestTimeout, AuthorityUnavailable) as exc:
            if self._alive:
                logger.warning("Role check failed view=%s: %s", self.view.value, exc)
                self._set_error(str(exc))
            return False
        except AuthorityServiceError as exc:
            if self._alive:
                self._deny(LOGIN, str(exc))
            return False
        if not self._alive:
            return False

        role = parse_role(value)
        if role != self._profile.allowed_role:
            destination = self._profile.mismatch_redirect if role is not None else LOGIN
            self._deny(destination, f"role {value!r} cannot use the {self.view.value} view")
            return False
        self._role = role
        return True

    def _deny(self, destination: str, reason: str) -> None:
        logger.info(
            "Access denied view=%s redirect=%s reason=%s", self.view.value, destination, reason
        )
        self._halt()
        self._listener.redirect(destination)

    def _rollback(
        self, order_id: str, mutation: _PendingMutation, previous: Optional[_PendingMutation]
    ) -> None:
        if self._pending.get(order_id) is not mutation:
            return
        if previous is None:
            del self._pending[order_id]
        else:
            # A confirmed overlay not yet settled by a fetch still applies.
            self._pending[order_id] = previous
        self._publish()

    def _discard(self, order_id: str, mutation: _PendingMutation) -> None:
        if self._pending.get(order_id) is mutation:
            del self._pending[order_id]

    def _settle_confirmed(self, cycle_seq: int) -> None:
        for order_id, mutation in list(self._pending.items()):
            if mutation.confirmed_seq is not None and mutation.confirmed_seq <= cycle_seq:
                del self._pending[order_id]

    def _compose(self) -> Tuple[Order, ...]:
        composed: List[Order] = []
        for order in self._authoritative:
            mutation = self._pending.get(order.id)
            if mutation is None or order.status == mutation.target:
                composed.append(order)
            elif not is_terminal(mutation.target):
                composed.append(order.model_copy(update={"status": mutation.target}))
        return tuple(composed)

    def _publish(self) -> None:
        snapshot = self._compose()
        if snapshot == self._snapshot:
            return
        self._snapshot = snapshot
        self._listener.snapshot_changed(snapshot)

    def _emit(self, alerts: List[StatusAlert]) -> None:
        for alert in alerts:
            logger.debug(
                "Status alert view=%s order=%s status=%s sound=%s",
                self.view.value,
                alert.order_id,
                alert.status.value,
                self._sound_enabled,
            )
            if self._sound_enabled:
                self._listener.alert(alert)
