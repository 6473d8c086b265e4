from __future__ import annotations

import asyncio
import logging
from typing import Callable, Protocol

from auth.login_flow import LoginFlow
from auth.models import TokenSet

from .config import ProxyConfig
from .engine import MitmproxyEngine
from .errors import AlreadyRunningError, StoppedError, SupersededError
from .interception import TokenCaptureAddon
from .rendezvous import RendezvousController
from .site import StaticSite


class ProxyEngine(Protocol):
    async def start(self) -> None: ...

    async def stop(self) -> None: ...


class Site(Protocol):
    async def start(self) -> None: ...

    def publish(self, login_url: str) -> None: ...

    async def stop(self) -> None: ...


class LoginProxy:
    """Runs one login cycle at a time; concurrent logins need separate instances."""

    def __init__(
        self,
        flow: LoginFlow,
        config: ProxyConfig,
        *,
        engine_factory: Callable[[ProxyConfig, TokenCaptureAddon], ProxyEngine] | None = None,
        site_factory: Callable[[ProxyConfig], Site] | None = None,
    ) -> None:
        self.flow = flow
        self.config = config
        self._logger: logging.Logger = config.logger
        self._engine_factory = engine_factory or (
            lambda cfg, addon: MitmproxyEngine(cfg, addon, logger=cfg.logger)
        )
        self._site_factory = site_factory or (lambda cfg: StaticSite(cfg, logger=cfg.logger))
        self.rendezvous: RendezvousController[TokenSet] = RendezvousController(logger=self._logger)

        self._engine: ProxyEngine | None = None
        self._site: Site | None = None
        self._addon: TokenCaptureAddon | None = None
        self._lock = asyncio.Lock()
        self.login_url: str | None = None

    @property
    def running(self) -> bool:
        return self._engine is not None

    def _build_addon(self) -> TokenCaptureAddon:
        return TokenCaptureAddon(
            host_marker=self.config.host_marker,
            callback_prefix=self.config.callback_prefix,
            exchange=self.flow.exchange,
            rendezvous=self.rendezvous,
            logger=self._logger,
            debug=self.config.debug,
        )

    async def start(self) -> str:
        """Start both listeners and return the login URL published on the index page."""
        async with self._lock:
            if self._engine is not None:
                raise AlreadyRunningError()
            self.rendezvous.close(SupersededError("Proxy server just started. Discarded old login."))

            addon = self._build_addon()
            engine = self._engine_factory(self.config, addon)
            await engine.start()

            site = self._site_factory(self.config)
            try:
                await site.start()
            except BaseException:
                self._logger.error("Web server could not be started, stopping SSL-Proxy")
                await engine.stop()
                await addon.aclose()
                raise

            try:
                login_url = await self.flow.generate_login_url()
                site.publish(login_url)
            except BaseException:
                await site.stop()
                await engine.stop()
                await addon.aclose()
                raise

            self._engine = engine
            self._site = site
            self._addon = addon
            self.login_url = login_url
            self._logger.info(
                "Login proxy ready: proxy %s:%s, instructions http://%s:%s/",
                self.config.listen_bind,
                self.config.proxy_port,
                self.config.listen_bind,
                self.config.web_port,
            )
            return login_url

    async def stop(self) -> None:
        self.rendezvous.close(StoppedError())

        async with self._lock:
            engine, site, addon = self._engine, self._site, self._addon
            self._engine = None
            self._site = None
            self._addon = None
            self.login_url = None
            if engine is None:
                return

            try:
                await engine.stop()
            finally:
                try:
                    if site is not None:
                        await site.stop()
                finally:
                    if addon is not None:
                        await addon.aclose()

    def wait_for_login_result(self) -> asyncio.Future[TokenSet]:
        """Return a future settled by the next captured login.

        Any earlier unsettled wait is rejected with ``SupersededError``.
        """
        return self.rendezvous.begin_wait()

    async def login(self, timeout: float | None = None) -> TokenSet:
        future = self.wait_for_login_result()
        if timeout:
            return await asyncio.wait_for(future, timeout)
        return await future

    async def __aenter__(self) -> "LoginProxy":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()
