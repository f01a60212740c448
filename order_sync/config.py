from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional, Tuple

from .authority_client import DEFAULT_REQUEST_TIMEOUT
from .database import LOCAL_STATE_PATH
from .pricing import DEFAULT_CURRENCY_SYMBOL

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

AUTHORITY_MODES = ("memory", "http")


class ConfigurationError(RuntimeError):
    """Raised when an environment variable holds an unusable value."""


@dataclass(frozen=True)
class Settings:
    authority_mode: str = "memory"
    authority_url: str = "http://localhost:8090"
    authority_token: Optional[str] = None
    poll_interval: Optional[float] = None
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    local_state_path: str = LOCAL_STATE_PATH
    currency_symbol: str = DEFAULT_CURRENCY_SYMBOL
    log_level: str = "INFO"
    allowed_origins: Tuple[str, ...] = ("*",)
    port: int = 8090


def _positive_float(environ: Mapping[str, str], name: str) -> Optional[float]:
    raw = environ.get(name, "").strip()
    if not raw:
        return None
    try:
        value = float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from exc
    if value <= 0:
        raise ConfigurationError(f"{name} must be greater than zero, got {raw!r}")
    return value


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    env = os.environ if environ is None else environ

    mode = env.get("AUTHORITY_MODE", "memory").strip().lower()
    if mode not in AUTHORITY_MODES:
        raise ConfigurationError(f"AUTHORITY_MODE must be one of {', '.join(AUTHORITY_MODES)}")

    raw_port = env.get("PORT", "8090").strip()
    try:
        port = int(raw_port)
    except ValueError as exc:
        raise ConfigurationError(f"PORT must be an integer, got {raw_port!r}") from exc

    return Settings(
        authority_mode=mode,
        authority_url=env.get("AUTHORITY_URL", "http://localhost:8090").strip(),
        authority_token=env.get("AUTHORITY_TOKEN") or None,
        poll_interval=_positive_float(env, "POLL_INTERVAL_SECONDS"),
        request_timeout=_positive_float(env, "REQUEST_TIMEOUT_SECONDS") or DEFAULT_REQUEST_TIMEOUT,
        local_state_path=env.get("LOCAL_STATE_PATH", LOCAL_STATE_PATH),
        currency_symbol=env.get("CURRENCY_SYMBOL", DEFAULT_CURRENCY_SYMBOL),
        log_level=env.get("LOG_LEVEL", "INFO").upper(),
        allowed_origins=tuple(
            origin.strip() for origin in env.get("ALLOWED_ORIGINS", "*").split(",") if origin.strip()
        ),
        port=port,
    )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger("httpx").setLevel(logging.WARNING)
