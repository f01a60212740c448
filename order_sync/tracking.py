from __future__ import annotations

import logging
from typing import Optional

from .authority_client import (
    DEFAULT_REQUEST_TIMEOUT,
    AuthorityClient,
    AuthorityServiceError,
    call_with_deadline,
)
from .local_state import LocalStateRepository
from .notifications import StatusWatcher
from .schemas import Order, TrackedOrder, TrackedOrderRecord
from .sync import VIEW_PROFILES, PollingController, ViewKind, ViewListener

logger = logging.getLogger(__name__)


class GuestOrderTracker(PollingController):
    """Polls the ordering surface's own order by id and guest token."""

    def __init__(
        self,
        client: AuthorityClient,
        *,
        local_state: Optional[LocalStateRepository] = None,
        listener: Optional[ViewListener] = None,
        interval: Optional[float] = None,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        sound_enabled: Optional[bool] = None,
    ):
        profile = VIEW_PROFILES[ViewKind.GUEST]
        super().__init__(interval=interval or profile.interval, timeout=timeout, listener=listener)
        self._client = client
        self._local_state = local_state
        self._record: Optional[TrackedOrderRecord] = None
        self._tracked: Optional[TrackedOrder] = None
        self._watcher = StatusWatcher(
            profile.watched_status, alert_on_first_cycle=profile.alert_on_first_cycle
        )
        if sound_enabled is None:
            sound_enabled = (
                local_state.get_sound_enabled(ViewKind.GUEST.value) if local_state else False
            )
        self._sound_enabled = sound_enabled

    @property
    def record(self) -> Optional[TrackedOrderRecord]:
        return self._record

    @property
    def tracked(self) -> Optional[TrackedOrder]:
        return self._tracked

    @property
    def order(self) -> Optional[Order]:
        return self._tracked.as_order() if self._tracked else None

    @property
    def order_number(self) -> Optional[int]:
        if self._tracked is not None:
            return self._tracked.order.order_number
        return self._record.order_number if self._record else None

    @property
    def sound_enabled(self) -> bool:
        return self._sound_enabled

    def set_sound_enabled(self, enabled: bool) -> None:
        self._sound_enabled = enabled
        if self._local_state is not None:
            self._local_state.set_sound_enabled(ViewKind.GUEST.value, enabled)

    async def resume(self) -> Optional[TrackedOrderRecord]:
        """Pick up the order saved before a reload, if any."""
        if self._local_state is None:
            return None
        record = self._local_state.load_tracked_order()
        if record is not None:
            await self.track(record, persist=False)
        return record

    async def track(self, record: TrackedOrderRecord, *, persist: bool = True) -> None:
        if persist and self._local_state is not None:
            self._local_state.save_tracked_order(record)
        if self._record is None or self._record.order_id != record.order_id:
            self._tracked = None
            self._watcher.reset()
        self._record = record
        if self.alive:
            await self.refresh()
        else:
            await self.start()

    async def forget(self) -> None:
        await self.stop()
        if self._local_state is not None:
            self._local_state.clear_tracked_order()
        self._record = None
        self._tracked = None
        self._watcher.reset()
        self._set_error(None)

    async def _cycle(self) -> None:
        record = self._record
        if record is None:
            return
        try:
            tracked = await call_with_deadline(
                self._client.fetch_tracked_order(record.order_id, record.guest_token),
                self._timeout,
            )
        except AuthorityServiceError as exc:
            if self.alive:
                logger.warning("Tracked order fetch failed order=%s: %s", record.order_id, exc)
                self._set_error(str(exc))
            return
        if not self.alive or self._record is not record:
            return

        alerts = self._watcher.observe([tracked.order])
        changed = tracked != self._tracked
        self._tracked = tracked
        if changed:
            self._listener.snapshot_changed((tracked.as_order(),))
        self._set_error(None)
        for alert in alerts:
            logger.info("Tracked order is %s order=%s", alert.status.value, alert.order_id)
            if self._sound_enabled:
                self._listener.alert(alert)
