"""mitmproxy addon that watches the vendor login for its terminal redirect."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from mitmproxy import ctx

from .constants import LOGGER

if TYPE_CHECKING:
    from mitmproxy import connection, http, tls
    from mitmproxy.proxy import server_hooks

    from auth.models import TokenSet

    from .rendezvous import RendezvousController

INSPECT_METADATA_KEY = "tokenproxy_inspect"

# ECONNRESET and ERR_SSL_UNSUPPORTED_PROTOCOL show up in mitmproxy's messages as
# ConnectionResetError text and OpenSSL "unsupported protocol" reasons.
_NOISE_MARKERS = (
    "econnreset",
    "connection reset",
    "reset by peer",
    "err_ssl_unsupported_protocol",
    "unsupported protocol",
    "unsupported_protocol",
)


def is_connection_noise(message: str | None) -> bool:
    if not message:
        return False
    lowered = message.lower()
    return any(marker in lowered for marker in _NOISE_MARKERS)


class TokenCaptureAddon:
    def __init__(
        self,
        *,
        host_marker: str,
        callback_prefix: str,
        exchange: Callable[[str], Awaitable["TokenSet"]],
        rendezvous: "RendezvousController[TokenSet]",
        logger: logging.Logger | None = None,
        debug: bool = False,
    ) -> None:
        self.host_marker = host_marker.lower()
        self.callback_prefix = callback_prefix
        self.proxyserver: Any = None
        self._exchange = exchange
        self._rendezvous = rendezvous
        self._logger = logger or LOGGER
        self._debug = debug
        self._closed = False
        self._tasks: set[asyncio.Task] = set()

    def running(self) -> None:
        self.proxyserver = ctx.master.addons.get("proxyserver")

    # -- request / response ----------------------------------------------------

    def requestheaders(self, flow: "http.HTTPFlow") -> None:
        if self._closed:
            return
        if self._debug:
            self._logger.debug("Proxy process request for %s", flow.request.pretty_url)

        if self.host_marker in flow.request.pretty_host.lower():
            flow.metadata[INSPECT_METADATA_KEY] = True

    def response(self, flow: "http.HTTPFlow") -> None:
        if self._closed or flow.response is None:
            return
        if not flow.metadata.get(INSPECT_METADATA_KEY):
            return

        location = flow.response.headers.get("location")
        if location and location.startswith(self.callback_prefix):
            self._logger.info("Detected login redirect from %s", flow.request.pretty_host)
            self._spawn_capture(location)

    # -- connection lifecycle ---------------------------------------------------

    def server_disconnected(self, data: "server_hooks.ServerConnectionHookData") -> None:
        self.close_client(data.client)

    def close_client(self, client: "connection.Client") -> bool:
        """Close the client connection whose upstream went away."""
        if self.proxyserver is None:
            return False
        handler = self.proxyserver.connections.get(client.id)
        if handler is None:
            return False
        transport = handler.transports.get(handler.client)
        if transport is None or transport.handler is None:
            return False

        if self._debug:
            self._logger.debug("Upstream closed, closing client %s", client.peername)
        handler.close_connection(handler.client)
        return True

    # -- errors -------------------------------------------------------------------

    def error(self, flow: "http.HTTPFlow") -> None:
        message = flow.error.msg if flow.error else "unknown error"
        url = flow.request.pretty_url if flow.request else ""
        self._log_error(url, message)

    def tls_failed_client(self, data: "tls.TlsData") -> None:
        self._log_error(_tls_target(data), data.conn.error)

    def tls_failed_server(self, data: "tls.TlsData") -> None:
        self._log_error(_tls_target(data), data.conn.error)

    def _log_error(self, url: str, message: str | None) -> None:
        if is_connection_noise(message):
            return
        self._logger.error("SSL-Proxy ERROR for %s: %s", url, message or "unknown error")

    # -- capture --------------------------------------------------------------------

    def _spawn_capture(self, location: str) -> None:
        task = asyncio.create_task(self._capture(location))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _capture(self, location: str) -> None:
        try:
            token_set = await self._exchange(location)
        except asyncio.CancelledError:
            raise
        except Exception as error:
            self._logger.warning("Token detection FAILED: %s", error)
            self._rendezvous.fail(error)
            return

        self._logger.info("Token detection SUCCESS")
        self._rendezvous.deliver(token_set)

    @property
    def pending_captures(self) -> int:
        return len(self._tasks)

    async def aclose(self) -> None:
        self._closed = True
        self.proxyserver = None
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()


def _tls_target(data: "tls.TlsData") -> str:
    server = data.context.server
    host = server.sni or (server.address[0] if server.address else "")
    return f"https://{host}" if host else ""
