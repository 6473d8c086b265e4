from __future__ import annotations

import logging
from pathlib import Path

LOGGER = logging.getLogger("tokenproxy")
LOGGER.addHandler(logging.NullHandler())

APP_VERSION = "0.1.0"

DEFAULT_LISTEN_BIND = "0.0.0.0"
DEFAULT_PROXY_PORT = 8888
DEFAULT_WEB_PORT = 8889
DEFAULT_DATA_DIR = Path.home() / ".tokenproxy"

DEFAULT_CALLBACK_URL = "daikinunified://login"
DEFAULT_HOST_MARKER = "daikin"
DEFAULT_SCOPES = ["email", "openid", "profile"]

LOG_LEVELS = {"info", "debug"}

CERTS_DIRNAME = "certs"
CA_CERT_FILENAME = "ca.pem"
MITMPROXY_CA_CERT_FILENAME = "mitmproxy-ca-cert.pem"
INDEX_FILENAME = "index.html"
SUCCESS_FILENAME = "success.html"
