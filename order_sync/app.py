from __future__ import annotations

import logging
import os
from typing import Optional, Sequence

from fastapi import Depends, FastAPI, Header, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .authority_client import AuthorityServiceError, AuthorizationError
from .memory_authority import InMemoryAuthority
from . import schemas

logger = logging.getLogger(__name__)


def bearer_token(authorization: Optional[str] = Header(default=None)) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def create_app(
    authority: Optional[InMemoryAuthority] = None,
    allowed_origins: Optional[Sequence[str]] = None,
) -> FastAPI:
    authority = authority or InMemoryAuthority()
    app = FastAPI(
        title="Order Authority (development)",
        version="0.1.0",
        description="In-memory order authority for local runs of the staff and guest views.",
    )
    if allowed_origins is None:
        allowed_origins = [
            origin.strip() for origin in os.environ.get("ALLOWED_ORIGINS", "*").split(",")
        ]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(allowed_origins),
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.authority = authority

    @app.exception_handler(AuthorityServiceError)
    async def authority_error(request: Request, exc: AuthorityServiceError) -> JSONResponse:
        default = status.HTTP_401_UNAUTHORIZED if isinstance(exc, AuthorizationError) else 502
        code = exc.status_code or default
        if code >= 500:
            logger.warning("Authority call failed path=%s: %s", request.url.path, exc)
        return JSONResponse(status_code=code, content={"detail": str(exc)})

    @app.get("/healthz", response_model=schemas.HealthResponse)
    async def healthz() -> schemas.HealthResponse:
        return schemas.HealthResponse(status="ok")

    @app.get("/me/role", response_model=schemas.RoleResponse)
    async def me_role(token: Optional[str] = Depends(bearer_token)) -> schemas.RoleResponse:
        return schemas.RoleResponse(role=await authority.check_role(token))

    @app.get("/orders/active", response_model=list[schemas.Order])
    async def active_orders(token: Optional[str] = Depends(bearer_token)) -> list[schemas.Order]:
        return await authority.fetch_active_orders(token)

    @app.get("/orders/{order_id}/guest", response_model=schemas.TrackedOrder)
    async def guest_order(order_id: str, token: str = "") -> schemas.TrackedOrder:
        return await authority.fetch_tracked_order(order_id, token)

    @app.post("/orders/{order_id}/status", response_model=schemas.Order)
    async def transition(
        order_id: str,
        payload: schemas.TransitionRequest,
        token: Optional[str] = Depends(bearer_token),
    ) -> schemas.Order:
        return await authority.request_transition(token, order_id, payload.status)

    @app.get("/menu-items", response_model=list[schemas.MenuItem])
    async def menu_items() -> list[schemas.MenuItem]:
        return authority.list_menu()

    @app.get("/menu-items/{menu_item_id}/modifier-groups", response_model=list[schemas.ModifierGroup])
    async def modifier_groups(menu_item_id: str) -> list[schemas.ModifierGroup]:
        return await authority.fetch_modifier_groups(menu_item_id)

    @app.post(
        "/orders",
        response_model=schemas.PlaceOrderReceipt,
        status_code=status.HTTP_201_CREATED,
    )
    async def place_order(payload: schemas.PlaceOrderRequest) -> schemas.PlaceOrderReceipt:
        return await authority.place_order(payload)

    return app
