from __future__ import annotations

import logging
from typing import Optional

from .authority_client import AuthorityClient, HTTPAuthorityClient
from .config import ConfigurationError, Settings, load_settings
from .database import connection_factory, init_db
from .local_state import LocalStateRepository
from .memory_authority import InMemoryAuthority, MockAuthorityClient
from .sync import LiveSyncController, ViewKind, ViewListener
from .tracking import GuestOrderTracker

logger = logging.getLogger(__name__)


def build_authority_client(
    settings: Optional[Settings] = None,
    *,
    authority: Optional[InMemoryAuthority] = None,
    token: Optional[str] = None,
) -> AuthorityClient:
    settings = settings or load_settings()
    token = token or settings.authority_token
    if settings.authority_mode == "http":
        if not settings.authority_url:
            raise ConfigurationError("AUTHORITY_URL must be set when AUTHORITY_MODE=http")
        logger.info("Using order authority at %s", settings.authority_url)
        return HTTPAuthorityClient(
            settings.authority_url, token, timeout=settings.request_timeout
        )
    logger.info("Using in-memory order authority")
    return MockAuthorityClient(authority or InMemoryAuthority(), token)


def build_local_state(settings: Optional[Settings] = None) -> LocalStateRepository:
    settings = settings or load_settings()
    factory = connection_factory(settings.local_state_path)
    init_db(factory)
    return LocalStateRepository(connection_factory=factory)


def build_controller(
    view: ViewKind | str,
    client: AuthorityClient,
    *,
    settings: Optional[Settings] = None,
    listener: Optional[ViewListener] = None,
    local_state: Optional[LocalStateRepository] = None,
) -> LiveSyncController:
    settings = settings or load_settings()
    return LiveSyncController(
        client,
        ViewKind(view),
        listener=listener,
        local_state=local_state,
        interval=settings.poll_interval,
        timeout=settings.request_timeout,
    )


def build_guest_tracker(
    client: AuthorityClient,
    *,
    settings: Optional[Settings] = None,
    listener: Optional[ViewListener] = None,
    local_state: Optional[LocalStateRepository] = None,
) -> GuestOrderTracker:
    settings = settings or load_settings()
    return GuestOrderTracker(
        client,
        local_state=local_state,
        listener=listener,
        interval=settings.poll_interval,
        timeout=settings.request_timeout,
    )
