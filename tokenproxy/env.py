from __future__ import annotations

import logging
import os
from pathlib import Path
from urllib.parse import urlparse

from dotenv import load_dotenv

from .constants import LOG_LEVELS, LOGGER


def parse_list_env(key: str) -> list[str]:
    raw = os.getenv(key, "")
    if not raw.strip():
        return []
    items = raw.replace(",", " ").split()
    return [item for item in items if item]


def _get_env_int(key: str, default: int) -> int:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{key} must be an integer value.")


def _get_env_float(key: str, default: float) -> float:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise RuntimeError(f"{key} must be a number.")


def load_env() -> None:
    env_path = Path(__file__).resolve().parent.parent / ".env"
    if not env_path.exists():
        return
    load_dotenv(env_path, override=True)


def validate_env() -> None:
    required = (
        "TOKENPROXY_OIDC_ISSUER",
        "TOKENPROXY_CLIENT_ID",
    )
    missing = [key for key in required if not os.getenv(key, "").strip()]
    if missing:
        raise RuntimeError(f"Missing required environment variables: {', '.join(missing)}")

    issuer = os.getenv("TOKENPROXY_OIDC_ISSUER", "").strip()
    parsed_issuer = urlparse(issuer)
    if parsed_issuer.scheme != "https" or not parsed_issuer.netloc:
        raise RuntimeError(
            "TOKENPROXY_OIDC_ISSUER must be an HTTPS URL (for example: "
            "https://idp.example.com/oidc)."
        )

    log_level = os.getenv("TOKENPROXY_LOG_LEVEL", "info").strip().lower()
    if log_level not in LOG_LEVELS:
        raise RuntimeError(
            f"TOKENPROXY_LOG_LEVEL must be one of: {', '.join(sorted(LOG_LEVELS))}."
        )


def setup_logging(log_level: str = "info") -> None:
    level = logging.DEBUG if log_level == "debug" else logging.INFO
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    LOGGER.setLevel(level)
    logging.getLogger("auth").setLevel(level)
