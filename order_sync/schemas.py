from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .status import OrderStatus, parse_status

OrderType = Literal["dine_in", "collection"]


class HealthResponse(BaseModel):
    status: Literal["ok"]


class RoleResponse(BaseModel):
    role: str


class ModifierOption(BaseModel):
    id: str
    name: str
    price_cents: int = Field(default=0, ge=0, description="Incremental price in minor units")


class ModifierGroup(BaseModel):
    group_id: str
    group_name: str
    min_select: Optional[int] = Field(default=None, ge=0)
    max_select: Optional[int] = Field(default=None, ge=0)
    is_required: Optional[bool] = None
    items: List[ModifierOption] = Field(default_factory=list)


class SelectedOption(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    price_cents: int = Field(default=0, ge=0)


class PayloadGroup(BaseModel):
    model_config = ConfigDict(frozen=True)

    group_id: str
    name: str = ""
    selected: Tuple[SelectedOption, ...] = ()


class ExtrasPayload(BaseModel):
    """Committed modifier selection with option names and prices captured at order time."""

    model_config = ConfigDict(frozen=True)

    groups: Tuple[PayloadGroup, ...] = ()

    def selection(self) -> Dict[str, List[str]]:
        return {group.group_id: [option.id for option in group.selected] for group in self.groups}


class LineItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    menu_item_id: str
    name: str
    unit_price_cents: int = Field(..., ge=0)
    quantity: int = Field(..., gt=0)
    note: str = ""
    extras: Optional[ExtrasPayload] = None

    @field_validator("note", mode="before")
    @classmethod
    def _blank_note(cls, value):
        return value or ""


class Order(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    order_number: int
    order_type: OrderType = "dine_in"
    customer_name: str
    customer_phone: Optional[str] = None
    status: OrderStatus
    created_at: datetime
    items: Tuple[LineItem, ...] = ()

    @field_validator("status", mode="before")
    @classmethod
    def _normalise_status(cls, value):
        return parse_status(value)


class TrackedOrder(BaseModel):
    """Guest-facing lookup result; items may come separately from the order row."""

    model_config = ConfigDict(frozen=True)

    order: Order
    items: Tuple[LineItem, ...] = ()

    @property
    def line_items(self) -> Tuple[LineItem, ...]:
        return self.items or self.order.items

    def as_order(self) -> Order:
        if self.order.items or not self.items:
            return self.order
        return self.order.model_copy(update={"items": self.items})


class TrackedOrderRecord(BaseModel):
    order_id: str
    guest_token: str
    order_number: Optional[int] = None


class MenuItem(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    price_cents: int = Field(..., ge=0)
    category: Optional[str] = None
    is_available: bool = True


class TransitionRequest(BaseModel):
    status: OrderStatus


class PlaceOrderItem(BaseModel):
    menu_item_id: str
    quantity: int = Field(..., gt=0)
    note: str = ""
    extras: Optional[ExtrasPayload] = None


class PlaceOrderRequest(BaseModel):
    order_type: OrderType
    customer_name: str = Field(..., min_length=1)
    customer_phone: Optional[str] = None
    items: List[PlaceOrderItem] = Field(..., min_length=1)


class PlaceOrderReceipt(BaseModel):
    order_id: str
    guest_token: str
    order_number: int

    def as_record(self) -> TrackedOrderRecord:
        return TrackedOrderRecord(
            order_id=self.order_id,
            guest_token=self.guest_token,
            order_number=self.order_number,
        )
