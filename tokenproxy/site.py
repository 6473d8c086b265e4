"""Plain HTTP site for downloading the CA certificate and starting the login."""

from __future__ import annotations

import asyncio
import contextlib
import html
import logging
import shutil
import socket
from pathlib import Path

import uvicorn
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Mount, Route
from starlette.staticfiles import StaticFiles

from .config import ProxyConfig
from .constants import (
    APP_VERSION,
    CA_CERT_FILENAME,
    INDEX_FILENAME,
    LOGGER,
    MITMPROXY_CA_CERT_FILENAME,
    SUCCESS_FILENAME,
)
from .errors import BindError

_INDEX_TEMPLATE = """\
<!DOCTYPE html>
<html lang="en">
<head><meta charset="utf-8"><title>Cloud Login</title></head>
<body>
    <b>
        Step 1: <a href="./{ca_cert}">Download and install Certificate</a>
        <p/>
        Step 2: <a href="{login_url}">Login into the Cloud</a>
    </b>
</body>
</html>
"""

_SUCCESS_HTML = """\
<!DOCTYPE html>
<html lang="en">
<head><meta charset="utf-8"><title>Cloud Login</title></head>
<body>
    <b>Login successfully Done</b>
</body>
</html>
"""


def render_index(login_url: str) -> str:
    return _INDEX_TEMPLATE.format(
        ca_cert=CA_CERT_FILENAME,
        login_url=html.escape(login_url, quote=True),
    )


def publish_pages(certs_dir: Path, login_url: str) -> None:
    certs_dir.mkdir(parents=True, exist_ok=True)
    (certs_dir / INDEX_FILENAME).write_text(render_index(login_url), encoding="utf-8")
    (certs_dir / SUCCESS_FILENAME).write_text(_SUCCESS_HTML, encoding="utf-8")


def export_ca_certificate(data_dir: Path, certs_dir: Path) -> Path | None:
    source = data_dir / MITMPROXY_CA_CERT_FILENAME
    if not source.exists():
        return None
    certs_dir.mkdir(parents=True, exist_ok=True)
    target = certs_dir / CA_CERT_FILENAME
    shutil.copyfile(source, target)
    return target


def create_site_app(certs_dir: Path) -> Starlette:
    certs_dir.mkdir(parents=True, exist_ok=True)

    async def health_route(request: Request) -> Response:
        del request
        return JSONResponse({"status": "ok", "version": APP_VERSION})

    return Starlette(
        routes=[
            Route("/health", health_route, methods=["GET"]),
            Mount("/", app=StaticFiles(directory=certs_dir, html=True), name="certs"),
        ]
    )


class _EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the host application."""

    @contextlib.contextmanager
    def capture_signals(self):
        yield


def bind_socket(host: str, port: int) -> socket.socket:
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, port))
        sock.listen(128)
        sock.setblocking(False)
    except OSError as error:
        sock.close()
        raise BindError("web", host, port, str(error)) from error
    return sock


class StaticSite:
    def __init__(self, config: ProxyConfig, *, logger: logging.Logger | None = None) -> None:
        self.config = config
        self._logger = logger or LOGGER
        self._server: _EmbeddedServer | None = None
        self._task: asyncio.Task | None = None
        self._socket: socket.socket | None = None

    @property
    def port(self) -> int | None:
        if self._socket is None:
            return None
        return self._socket.getsockname()[1]

    async def start(self) -> None:
        certs_dir = self.config.certs_dir
        export_ca_certificate(self.config.data_dir, certs_dir)

        sock = bind_socket(self.config.listen_bind, self.config.web_port)
        server = _EmbeddedServer(
            uvicorn.Config(
                create_site_app(certs_dir),
                log_level="warning",
                lifespan="off",
                access_log=False,
            )
        )
        task = asyncio.create_task(server.serve(sockets=[sock]))

        while not server.started:
            if task.done():
                sock.close()
                error = task.exception()
                raise BindError(
                    "web",
                    self.config.listen_bind,
                    self.config.web_port,
                    str(error) if error else "web server stopped during startup",
                )
            await asyncio.sleep(0.01)

        self._server = server
        self._task = task
        self._socket = sock
        self._logger.info("Web server listening on %s:%s", self.config.listen_bind, self.port)

    def publish(self, login_url: str) -> None:
        publish_pages(self.config.certs_dir, login_url)

    async def stop(self) -> None:
        server, task, sock = self._server, self._task, self._socket
        self._server = None
        self._task = None
        self._socket = None
        if server is None or task is None:
            return

        server.should_exit = True
        try:
            await task
        finally:
            if sock is not None:
                sock.close()
        self._logger.info("Web server stopped")
