from __future__ import annotations

import asyncio
import logging
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional

from .authority_client import AuthorityServiceError, AuthorizationError
from .schemas import (
    LineItem,
    MenuItem,
    ModifierGroup,
    ModifierOption,
    Order,
    PlaceOrderReceipt,
    PlaceOrderRequest,
    TrackedOrder,
)
from .status import (
    ActorRole,
    InvalidTransitionError,
    OrderStatus,
    is_terminal,
    parse_role,
    validate_transition,
)

logger = logging.getLogger(__name__)

DEV_SESSIONS = {
    "kitchen-dev": "kitchen",
    "waiter-dev": "waiter",
    "admin-dev": "admin",
}


def default_menu() -> List[MenuItem]:
    return [
        MenuItem(id="beef-burger", name="Beef Burger", price_cents=8500, category="Burgers"),
        MenuItem(id="veggie-burger", name="Veggie Burger", price_cents=7500, category="Burgers"),
        MenuItem(id="rump-steak", name="Rump Steak 300g", price_cents=18900, category="Grill"),
        MenuItem(id="chips", name="Chips", price_cents=3000, category="Sides"),
        MenuItem(id="extra-cheese", name="Cheese", price_cents=1000, category="Extras"),
    ]


def default_modifier_groups() -> Dict[str, List[ModifierGroup]]:
    cooking = ModifierGroup(
        group_id="cooking",
        group_name="Cooking",
        items=[
            ModifierOption(id="rare", name="Rare"),
            ModifierOption(id="medium", name="Medium"),
            ModifierOption(id="well-done", name="Well done"),
        ],
    )
    add_ons = ModifierGroup(
        group_id="add-ons",
        group_name="Add-ons",
        items=[
            ModifierOption(id="bacon", name="Bacon", price_cents=1500),
            ModifierOption(id="egg", name="Egg", price_cents=800),
            ModifierOption(id="cheese", name="Cheese", price_cents=1000),
        ],
    )
    sauce = ModifierGroup(
        group_id="sauce",
        group_name="Sauce",
        max_select=1,
        items=[
            ModifierOption(id="pepper", name="Pepper sauce", price_cents=1200),
            ModifierOption(id="mushroom", name="Mushroom sauce", price_cents=1200),
        ],
    )
    return {
        "beef-burger": [cooking, add_ons],
        "veggie-burger": [add_ons],
        "rump-steak": [cooking, sauce],
    }


@dataclass
class _StoredOrder:
    order: Order
    guest_token: str


class InMemoryAuthority:
    """Development stand-in for the order authority, with injectable failures."""

    def __init__(
        self,
        *,
        menu: Optional[Iterable[MenuItem]] = None,
        modifier_groups: Optional[Dict[str, List[ModifierGroup]]] = None,
        sessions: Optional[Dict[str, str]] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self._menu = {item.id: item for item in (menu if menu is not None else default_menu())}
        self._groups = modifier_groups if modifier_groups is not None else default_modifier_groups()
        self._sessions = dict(DEV_SESSIONS if sessions is None else sessions)
        self._clock = clock
        self._orders: Dict[str, _StoredOrder] = {}
        self._next_number = 1
        self._failures: Dict[str, List[str]] = {}
        self._delays: Dict[str, float] = {}

    def fail_next(self, operation: str, message: str = "Simulated authority failure") -> None:
        self._failures.setdefault(operation, []).append(message)

    def set_delay(self, operation: str, seconds: float) -> None:
        if seconds <= 0:
            self._delays.pop(operation, None)
        else:
            self._delays[operation] = seconds

    def add_session(self, token: str, role: str) -> None:
        self._sessions[token] = role

    def revoke_session(self, token: str) -> None:
        self._sessions.pop(token, None)

    def order(self, order_id: str) -> Optional[Order]:
        stored = self._orders.get(order_id)
        return stored.order if stored else None

    def seed(self, order: Order, guest_token: Optional[str] = None) -> str:
        token = guest_token or secrets.token_urlsafe(16)
        self._orders[order.id] = _StoredOrder(order=order, guest_token=token)
        self._next_number = max(self._next_number, order.order_number + 1)
        return token

    def list_menu(self) -> List[MenuItem]:
        return [item for item in self._menu.values() if item.is_available]

    async def check_role(self, token: Optional[str]) -> str:
        await self._simulate("check_role")
        return self._role_for(token).value

    async def fetch_active_orders(self, token: Optional[str]) -> List[Order]:
        await self._simulate("fetch_active_orders")
        self._role_for(token)
        orders = [stored.order for stored in self._orders.values() if not is_terminal(stored.order.status)]
        return sorted(orders, key=lambda order: order.created_at)

    async def fetch_tracked_order(self, order_id: str, guest_token: str) -> TrackedOrder:
        await self._simulate("fetch_tracked_order")
        stored = self._orders.get(order_id.strip())
        if stored is None or not secrets.compare_digest(stored.guest_token, guest_token.strip()):
            raise AuthorityServiceError("Order not found.", 404)
        return TrackedOrder(order=stored.order, items=stored.order.items)

    async def request_transition(
        self, token: Optional[str], order_id: str, target: OrderStatus
    ) -> Order:
        await self._simulate("request_transition")
        role = self._role_for(token)
        stored = self._orders.get(order_id)
        if stored is None:
            raise AuthorityServiceError("Order not found.", 404)
        try:
            validate_transition(stored.order.status, target, role)
        except InvalidTransitionError as exc:
            raise AuthorityServiceError(str(exc), 409) from exc

        stored.order = stored.order.model_copy(update={"status": target})
        logger.info(
            "Transition committed order=%s status=%s role=%s", order_id, target.value, role.value
        )
        return stored.order

    async def fetch_modifier_groups(self, menu_item_id: str) -> List[ModifierGroup]:
        await self._simulate("fetch_modifier_groups")
        return [group.model_copy(deep=True) for group in self._groups.get(menu_item_id, [])]

    async def place_order(self, request: PlaceOrderRequest) -> PlaceOrderReceipt:
        await self._simulate("place_order")
        items: List[LineItem] = []
        for index, requested in enumerate(request.items):
            menu_item = self._menu.get(requested.menu_item_id)
            if menu_item is None or not menu_item.is_available:
                raise AuthorityServiceError(
                    f"Menu item {requested.menu_item_id} is not available.", 400
                )
            items.append(
                LineItem(
                    id=f"line-{index + 1}",
                    menu_item_id=menu_item.id,
                    name=menu_item.name,
                    unit_price_cents=menu_item.price_cents,
                    quantity=requested.quantity,
                    note=requested.note,
                    extras=requested.extras,
                )
            )

        order = Order(
            id=str(uuid.uuid4()),
            order_number=self._next_number,
            order_type=request.order_type,
            customer_name=request.customer_name.strip(),
            customer_phone=(request.customer_phone or "").strip() or None,
            status=OrderStatus.QUEUED,
            created_at=self._clock(),
            items=tuple(items),
        )
        self._next_number += 1
        guest_token = secrets.token_urlsafe(16)
        self._orders[order.id] = _StoredOrder(order=order, guest_token=guest_token)
        logger.info("Order placed order=%s number=%s items=%d", order.id, order.order_number, len(items))
        return PlaceOrderReceipt(order_id=order.id, guest_token=guest_token, order_number=order.order_number)

    def _role_for(self, token: Optional[str]) -> ActorRole:
        if not token or token not in self._sessions:
            raise AuthorizationError("No active session.", 401)
        role = parse_role(self._sessions[token])
        if role is None:
            raise AuthorizationError("Unknown role.", 403)
        return role

    async def _simulate(self, operation: str) -> None:
        delay = self._delays.get(operation)
        if delay:
            await asyncio.sleep(delay)
        pending = self._failures.get(operation)
        if pending:
            raise AuthorityServiceError(pending.pop(0), 503)


class MockAuthorityClient:
    """AuthorityClient bound to one session of an in-memory authority."""

    def __init__(self, authority: InMemoryAuthority, token: Optional[str] = None):
        self._authority = authority
        self._token = token

    async def check_role(self) -> str:
        return await self._authority.check_role(self._token)

    async def fetch_active_orders(self) -> List[Order]:
        return await self._authority.fetch_active_orders(self._token)

    async def fetch_tracked_order(self, order_id: str, guest_token: str) -> TrackedOrder:
        return await self._authority.fetch_tracked_order(order_id, guest_token)

    async def request_transition(self, order_id: str, target: OrderStatus) -> Order:
        return await self._authority.request_transition(self._token, order_id, target)

    async def fetch_modifier_groups(self, menu_item_id: str) -> List[ModifierGroup]:
        return await self._authority.fetch_modifier_groups(menu_item_id)

    async def place_order(self, request: PlaceOrderRequest) -> PlaceOrderReceipt:
        return await self._authority.place_order(request)
