from __future__ import annotations

import asyncio
from typing import Any, Awaitable, List, Optional, Protocol, TypeVar

import httpx
from pydantic import TypeAdapter, ValidationError

from .schemas import (
    ModifierGroup,
    Order,
    PlaceOrderReceipt,
    PlaceOrderRequest,
    RoleResponse,
    TrackedOrder,
)
from .status import OrderStatus

DEFAULT_REQUEST_TIMEOUT = 8.0
TIMEOUT_MESSAGE = "Network timeout. Please try again."

T = TypeVar("T")

_ORDER_LIST = TypeAdapter(List[Order])
_GROUP_LIST = TypeAdapter(List[ModifierGroup])


class AuthorityServiceError(Exception):
    """Raised when the order authority rejects or fails a call."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class AuthorityUnavailable(AuthorityServiceError):
    """Raised when the order authority cannot be reached at all."""


class AuthorizationError(AuthorityServiceError):
    """Raised for a missing session or a role the authority refuses."""


class RequestTimeout(AuthorityServiceError):
    """Raised when a remote call misses its deadline."""


class AuthorityClient(Protocol):
    async def check_role(self) -> str: ...

    async def fetch_active_orders(self) -> List[Order]: ...

    async def fetch_tracked_order(self, order_id: str, guest_token: str) -> TrackedOrder: ...

    async def request_transition(self, order_id: str, target: OrderStatus) -> Order: ...

    async def fetch_modifier_groups(self, menu_item_id: str) -> List[ModifierGroup]: ...

    async def place_order(self, request: PlaceOrderRequest) -> PlaceOrderReceipt: ...


async def call_with_deadline(call: Awaitable[T], timeout: float) -> T:
    try:
        return await asyncio.wait_for(call, timeout)
    except asyncio.TimeoutError as exc:
        raise RequestTimeout(TIMEOUT_MESSAGE) from exc


class HTTPAuthorityClient:
    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        *,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def check_role(self) -> str:
        response = await self._request("GET", "/me/role")
        return _parse(RoleResponse, response).role

    async def fetch_active_orders(self) -> List[Order]:
        response = await self._request("GET", "/orders/active")
        return _parse_adapter(_ORDER_LIST, response)

    async def fetch_tracked_order(self, order_id: str, guest_token: str) -> TrackedOrder:
        response = await self._request(
            "GET",
            f"/orders/{order_id.strip()}/guest",
            params={"token": guest_token.strip()},
        )
        return _parse(TrackedOrder, response)

    async def request_transition(self, order_id: str, target: OrderStatus) -> Order:
        response = await self._request(
            "POST",
            f"/orders/{order_id}/status",
            json={"status": OrderStatus(target).value},
        )
        return _parse(Order, response)

    async def fetch_modifier_groups(self, menu_item_id: str) -> List[ModifierGroup]:
        response = await self._request("GET", f"/menu-items/{menu_item_id}/modifier-groups")
        return _parse_adapter(_GROUP_LIST, response)

    async def place_order(self, request: PlaceOrderRequest) -> PlaceOrderReceipt:
        response = await self._request("POST", "/orders", json=request.model_dump(mode="json"))
        return _parse(PlaceOrderReceipt, response)

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            raise RequestTimeout(TIMEOUT_MESSAGE) from exc
        except httpx.HTTPError as exc:
            raise AuthorityUnavailable(f"Order authority unreachable: {exc}") from exc

        if response.status_code in (401, 403):
            raise AuthorizationError(_detail(response), response.status_code)
        if response.status_code >= 400:
            raise AuthorityServiceError(_detail(response), response.status_code)
        return response


def _detail(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict) and payload.get("detail"):
        detail = payload["detail"]
        return detail if isinstance(detail, str) else str(detail)
    return response.text or f"Order authority answered {response.status_code}"


def _parse(model: type[T], response: httpx.Response) -> T:
    try:
        return model.model_validate(response.json())  # type: ignore[attr-defined]
    except (ValueError, ValidationError) as exc:
        raise AuthorityServiceError(f"Malformed response from order authority: {exc}") from exc


def _parse_adapter(adapter: TypeAdapter, response: httpx.Response):
    try:
        return adapter.validate_python(response.json())
    except (ValueError, ValidationError) as exc:
        raise AuthorityServiceError(f"Malformed response from order authority: {exc}") from exc
