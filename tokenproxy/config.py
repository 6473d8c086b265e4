from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from .constants import (
    CERTS_DIRNAME,
    DEFAULT_CALLBACK_URL,
    DEFAULT_DATA_DIR,
    DEFAULT_HOST_MARKER,
    DEFAULT_LISTEN_BIND,
    DEFAULT_PROXY_PORT,
    DEFAULT_SCOPES,
    DEFAULT_WEB_PORT,
    LOG_LEVELS,
    LOGGER,
)
from .env import _get_env_float, _get_env_int, parse_list_env


@dataclass(frozen=True)
class ProxyConfig:
    oidc_issuer: str
    client_id: str
    client_secret: str | None = None
    listen_bind: str = DEFAULT_LISTEN_BIND
    proxy_port: int = DEFAULT_PROXY_PORT
    web_port: int = DEFAULT_WEB_PORT
    data_dir: Path = DEFAULT_DATA_DIR
    log_level: str = "info"
    logger: logging.Logger = LOGGER
    callback_url: str = DEFAULT_CALLBACK_URL
    host_marker: str = DEFAULT_HOST_MARKER
    scopes: list[str] = field(default_factory=lambda: list(DEFAULT_SCOPES))
    pending_ttl_seconds: int = 600
    login_timeout_seconds: float = 0
    http_timeout_seconds: float = 30

    def __post_init__(self) -> None:
        if self.log_level not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of: {', '.join(sorted(LOG_LEVELS))}")
        for name in ("proxy_port", "web_port"):
            port = getattr(self, name)
            if not 0 <= port <= 65535:
                raise ValueError(f"{name} must be between 0 and 65535")
        if not self.host_marker:
            raise ValueError("host_marker must not be empty")
        if "://" not in self.callback_url:
            raise ValueError("callback_url must include a scheme, e.g. vendor://login")
        object.__setattr__(self, "data_dir", Path(self.data_dir).expanduser())

    @property
    def debug(self) -> bool:
        return self.log_level == "debug"

    @property
    def callback_prefix(self) -> str:
        """Scheme prefix identifying the terminal redirect, e.g. ``daikinunified://``."""
        scheme, _, _ = self.callback_url.partition("://")
        return f"{scheme}://"

    @property
    def certs_dir(self) -> Path:
        return self.data_dir / CERTS_DIRNAME

    @classmethod
    def from_env(cls, **overrides) -> "ProxyConfig":
        values = {
            "oidc_issuer": os.getenv("TOKENPROXY_OIDC_ISSUER", "").strip(),
            "client_id": os.getenv("TOKENPROXY_CLIENT_ID", "").strip(),
            "client_secret": os.getenv("TOKENPROXY_CLIENT_SECRET", "").strip() or None,
            "listen_bind": os.getenv("TOKENPROXY_LISTEN_BIND", DEFAULT_LISTEN_BIND).strip(),
            "proxy_port": _get_env_int("TOKENPROXY_PROXY_PORT", DEFAULT_PROXY_PORT),
            "web_port": _get_env_int("TOKENPROXY_WEB_PORT", DEFAULT_WEB_PORT),
            "data_dir": Path(os.getenv("TOKENPROXY_DATA_DIR", "").strip() or DEFAULT_DATA_DIR),
            "log_level": os.getenv("TOKENPROXY_LOG_LEVEL", "info").strip().lower(),
            "callback_url": os.getenv("TOKENPROXY_CALLBACK_URL", DEFAULT_CALLBACK_URL).strip(),
            "host_marker": os.getenv("TOKENPROXY_HOST_MARKER", DEFAULT_HOST_MARKER).strip(),
            "scopes": parse_list_env("TOKENPROXY_SCOPES") or list(DEFAULT_SCOPES),
            "pending_ttl_seconds": _get_env_int("TOKENPROXY_PENDING_TTL", 600),
            "login_timeout_seconds": _get_env_float("TOKENPROXY_LOGIN_TIMEOUT", 0),
            "http_timeout_seconds": _get_env_float("TOKENPROXY_HTTP_TIMEOUT", 30),
        }
        values.update(overrides)
        return cls(**values)
