"""In-process mitmproxy master hosting the token capture addon."""

from __future__ import annotations

import asyncio
import logging

from mitmproxy import options
from mitmproxy.addons import default_addons
from mitmproxy.master import Master

from .config import ProxyConfig
from .constants import LOGGER
from .errors import BindError


class _RunningSignal:
    """Addon whose ``running`` hook fires once every listener has been set up."""

    def __init__(self) -> None:
        self.event = asyncio.Event()

    def running(self) -> None:
        self.event.set()


class MitmproxyEngine:
    def __init__(self, config: ProxyConfig, addon: object, *, logger: logging.Logger | None = None) -> None:
        self.config = config
        self.addon = addon
        self._logger = logger or LOGGER
        self._master: Master | None = None
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def _build_master(self) -> Master:
        self.config.data_dir.mkdir(parents=True, exist_ok=True)
        opts = options.Options(
            listen_host=self.config.listen_bind,
            listen_port=self.config.proxy_port,
            confdir=str(self.config.data_dir),
        )
        master = Master(opts)
        master.addons.add(*default_addons())
        master.addons.add(self.addon)
        return master

    async def start(self) -> None:
        master = self._build_master()
        signal = _RunningSignal()
        master.addons.add(signal)

        task = asyncio.create_task(master.run())
        ready = asyncio.create_task(signal.event.wait())
        done, _ = await asyncio.wait({task, ready}, return_when=asyncio.FIRST_COMPLETED)

        if task in done:
            ready.cancel()
            error = task.exception()
            raise BindError(
                "proxy",
                self.config.listen_bind,
                self.config.proxy_port,
                str(error) if error else "proxy stopped during startup",
            )

        self._master = master
        self._task = task

        proxyserver = master.addons.get("proxyserver")
        listen_addrs = proxyserver.listen_addrs() if proxyserver else []
        if not listen_addrs:
            await self.stop()
            raise BindError("proxy", self.config.listen_bind, self.config.proxy_port)

        self._logger.info(
            "SSL-Proxy listening on %s",
            ", ".join(f"{host}:{port}" for host, port, *_ in listen_addrs),
        )

    async def stop(self) -> None:
        master, task = self._master, self._task
        self._master = None
        self._task = None
        if master is None or task is None:
            return

        master.shutdown()
        await task
        self._logger.info("SSL-Proxy stopped")
