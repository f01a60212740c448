from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from .authority_client import (
    DEFAULT_REQUEST_TIMEOUT,
    AuthorityClient,
    AuthorityServiceError,
    call_with_deadline,
)
from .local_state import LocalStateRepository
from .modifiers import ModifierSelection, build_extras_payload, ensure_valid_selection
from .pricing import order_total
from .schemas import (
    ExtrasPayload,
    LineItem,
    MenuItem,
    ModifierGroup,
    OrderType,
    PlaceOrderItem,
    PlaceOrderRequest,
    TrackedOrderRecord,
)

logger = logging.getLogger(__name__)

OPTIONS_UNAVAILABLE_NOTICE = "Could not load options, added item without modifiers."

SelectionKey = Tuple[Tuple[str, Tuple[str, ...]], ...]


class CheckoutValidationError(ValueError):
    """Raised when the cart cannot be submitted; ``field`` names the offending input."""

    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field


def _selection_key(payload: Optional[ExtrasPayload]) -> SelectionKey:
    if payload is None:
        return ()
    return tuple(
        (group.group_id, tuple(option.id for option in group.selected))
        for group in payload.groups
        if group.selected
    )


@dataclass
class CartLine:
    menu_item_id: str
    name: str
    unit_price_cents: int
    quantity: int = 1
    note: str = ""
    extras: Optional[ExtrasPayload] = None

    @property
    def selection_key(self) -> SelectionKey:
        return _selection_key(self.extras)

    def as_line_item(self, line_id: str) -> LineItem:
        return LineItem(
            id=line_id,
            menu_item_id=self.menu_item_id,
            name=self.name,
            unit_price_cents=self.unit_price_cents,
            quantity=self.quantity,
            note=self.note,
            extras=self.extras,
        )

    def as_request_item(self) -> PlaceOrderItem:
        return PlaceOrderItem(
            menu_item_id=self.menu_item_id,
            quantity=self.quantity,
            note=self.note.strip(),
            extras=self.extras,
        )


class Cart:
    def __init__(self) -> None:
        self._lines: List[CartLine] = []

    @property
    def lines(self) -> List[CartLine]:
        return list(self._lines)

    def __len__(self) -> int:
        return len(self._lines)

    def is_empty(self) -> bool:
        return not self._lines

    def add(
        self,
        item: MenuItem,
        groups: Sequence[ModifierGroup] = (),
        selection: Optional[ModifierSelection] = None,
    ) -> CartLine:
        """Add one unit, merging into an identical un-noted line when present."""
        selection = selection or {}
        ensure_valid_selection(groups, selection)
        extras = build_extras_payload(groups, selection) if groups else None
        key = _selection_key(extras)

        for line in self._lines:
            if line.menu_item_id == item.id and not line.note and line.selection_key == key:
                line.quantity += 1
                return line

        line = CartLine(
            menu_item_id=item.id,
            name=item.name,
            unit_price_cents=item.price_cents,
            extras=extras if key else None,
        )
        self._lines.append(line)
        return line

    def increment(self, index: int) -> None:
        self._lines[index].quantity += 1

    def decrement(self, index: int) -> None:
        line = self._lines[index]
        if line.quantity <= 1:
            del self._lines[index]
        else:
            line.quantity -= 1

    def set_note(self, index: int, note: str) -> None:
        self._lines[index].note = note

    def clear(self) -> None:
        self._lines.clear()

    def line_items(self) -> List[LineItem]:
        return [line.as_line_item(f"cart-{index + 1}") for index, line in enumerate(self._lines)]

    def total(self) -> int:
        return order_total(self.line_items())

    def build_order(
        self,
        customer_name: str,
        customer_phone: Optional[str] = None,
        order_type: OrderType = "dine_in",
    ) -> PlaceOrderRequest:
        name = (customer_name or "").strip()
        if not name:
            raise CheckoutValidationError("customer_name", "Please enter your name.")
        if not self._lines:
            raise CheckoutValidationError("items", "Your cart is empty.")
        return PlaceOrderRequest(
            order_type=order_type,
            customer_name=name,
            customer_phone=(customer_phone or "").strip() or None,
            items=[line.as_request_item() for line in self._lines],
        )


async def load_modifier_groups(
    client: AuthorityClient,
    menu_item_id: str,
    timeout: float = DEFAULT_REQUEST_TIMEOUT,
) -> Tuple[List[ModifierGroup], Optional[str]]:
    """Fetch an item's groups; on failure return no groups and a notice to show."""
    try:
        groups = await call_with_deadline(client.fetch_modifier_groups(menu_item_id), timeout)
    except AuthorityServiceError as exc:
        logger.warning("Modifier groups unavailable item=%s: %s", menu_item_id, exc)
        return [], OPTIONS_UNAVAILABLE_NOTICE
    return list(groups), None


async def submit_order(
    client: AuthorityClient,
    cart: Cart,
    customer_name: str,
    customer_phone: Optional[str] = None,
    order_type: OrderType = "dine_in",
    *,
    local_state: Optional[LocalStateRepository] = None,
    timeout: float = DEFAULT_REQUEST_TIMEOUT,
) -> TrackedOrderRecord:
    request = cart.build_order(customer_name, customer_phone, order_type)
    receipt = await call_with_deadline(client.place_order(request), timeout)
    record = receipt.as_record()
    if local_state is not None:
        local_state.save_tracked_order(record)
    cart.clear()
    logger.info("Order submitted order=%s number=%s", record.order_id, record.order_number)
    return record
