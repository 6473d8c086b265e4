import asyncio

import httpx
import pytest

from auth.login_flow import LoginFlow
from auth.models import TokenSet
from tests.proxy_helpers import Upstream, free_port, get_via_proxy
from tokenproxy.config import ProxyConfig
from tokenproxy.errors import AlreadyRunningError, BindError, StoppedError
from tokenproxy.session import LoginProxy


class _FakeClient:
    async def authorization_url(self, *, state, code_challenge, code_challenge_method="S256") -> str:
        return f"https://idp.example.com/authorize?state={state}&code_challenge={code_challenge}"

    async def exchange_code(self, *, code, code_verifier) -> TokenSet:
        return TokenSet(f"access-{code}", "Bearer", None)

    async def aclose(self) -> None:
        pass


class _FakeEngine:
    def __init__(self, events: list[str], fail: bool = False) -> None:
        self.events = events
        self.fail = fail
        self.release: asyncio.Event | None = None

    async def start(self) -> None:
        if self.fail:
            raise BindError("proxy", "127.0.0.1", 8888, "address in use")
        self.events.append("engine.start")

    async def stop(self) -> None:
        if self.release is not None:
            await self.release.wait()
        self.events.append("engine.stop")


class _FakeSite:
    def __init__(self, events: list[str], fail: bool = False) -> None:
        self.events = events
        self.fail = fail
        self.published: list[str] = []

    async def start(self) -> None:
        if self.fail:
            raise BindError("web", "127.0.0.1", 8889, "address in use")
        self.events.append("site.start")

    def publish(self, login_url: str) -> None:
        self.published.append(login_url)

    async def stop(self) -> None:
        self.events.append("site.stop")


def _config(tmp_path) -> ProxyConfig:
    return ProxyConfig(
        oidc_issuer="https://idp.example.com",
        client_id="client-1",
        listen_bind="127.0.0.1",
        data_dir=tmp_path,
    )


def _proxy(tmp_path, *, engine_fail=False, site_fail=False):
    events: list[str] = []
    engines: list[_FakeEngine] = []
    sites: list[_FakeSite] = []

    def engine_factory(config, addon):
        engine = _FakeEngine(events, fail=engine_fail)
        engine.addon = addon
        engines.append(engine)
        return engine

    def site_factory(config):
        site = _FakeSite(events, fail=site_fail)
        sites.append(site)
        return site

    proxy = LoginProxy(
        LoginFlow(_FakeClient()),
        _config(tmp_path),
        engine_factory=engine_factory,
        site_factory=site_factory,
    )
    return proxy, events, engines, sites


@pytest.mark.asyncio
async def test_start_publishes_login_url(tmp_path) -> None:
    proxy, events, _, sites = _proxy(tmp_path)

    login_url = await proxy.start()

    try:
        assert proxy.running
        assert proxy.login_url == login_url
        assert sites[0].published == [login_url]
        assert events == ["engine.start", "site.start"]
        assert len(proxy.flow.store) == 1
    finally:
        await proxy.stop()


@pytest.mark.asyncio
async def test_start_twice_fails(tmp_path) -> None:
    proxy, _, _, _ = _proxy(tmp_path)
    await proxy.start()

    try:
        with pytest.raises(AlreadyRunningError):
            await proxy.start()
    finally:
        await proxy.stop()


@pytest.mark.asyncio
async def test_stop_rejects_wait_and_allows_restart(tmp_path) -> None:
    proxy, events, _, _ = _proxy(tmp_path)
    await proxy.start()
    waiting = proxy.wait_for_login_result()

    await proxy.stop()

    with pytest.raises(StoppedError, match="Proxy server stopped."):
        await waiting
    assert not proxy.running
    assert events == ["engine.start", "site.start", "engine.stop", "site.stop"]

    await proxy.start()
    assert proxy.running
    await proxy.stop()


@pytest.mark.asyncio
async def test_stop_is_idempotent(tmp_path) -> None:
    proxy, events, _, _ = _proxy(tmp_path)

    await proxy.stop()
    await proxy.start()
    await proxy.stop()
    await proxy.stop()

    assert events.count("engine.stop") == 1


@pytest.mark.asyncio
async def test_site_bind_failure_stops_engine(tmp_path) -> None:
    proxy, events, _, _ = _proxy(tmp_path, site_fail=True)

    with pytest.raises(BindError) as excinfo:
        await proxy.start()

    assert excinfo.value.listener == "web"
    assert events == ["engine.start", "engine.stop"]
    assert not proxy.running


@pytest.mark.asyncio
async def test_engine_bind_failure_leaves_proxy_stopped(tmp_path) -> None:
    proxy, events, _, sites = _proxy(tmp_path, engine_fail=True)

    with pytest.raises(BindError):
        await proxy.start()

    assert events == []
    assert sites == []
    assert not proxy.running


@pytest.mark.asyncio
async def test_login_returns_captured_tokens(tmp_path) -> None:
    proxy, _, _, _ = _proxy(tmp_path)
    login_url = await proxy.start()
    state = login_url.split("state=")[1].split("&")[0]

    try:
        waiting = asyncio.create_task(proxy.login(timeout=1))
        await asyncio.sleep(0)
        token_set = await proxy.flow.exchange(f"daikinunified://login?code=abc&state={state}")
        proxy.rendezvous.deliver(token_set)

        assert (await waiting).access_token == "access-abc"
    finally:
        await proxy.stop()


@pytest.mark.asyncio
async def test_login_times_out(tmp_path) -> None:
    proxy, _, _, _ = _proxy(tmp_path)

    async with proxy:
        with pytest.raises(asyncio.TimeoutError):
            await proxy.login(timeout=0.01)

    assert not proxy.running


@pytest.mark.asyncio
async def test_start_waits_for_a_running_stop(tmp_path) -> None:
    proxy, events, engines, _ = _proxy(tmp_path)
    await proxy.start()
    release = asyncio.Event()
    engines[0].release = release

    stopping = asyncio.create_task(proxy.stop())
    await asyncio.sleep(0)
    starting = asyncio.create_task(proxy.start())
    await asyncio.sleep(0)
    release.set()
    await stopping
    await starting

    try:
        assert proxy.running
        assert events == ["engine.start", "site.start", "engine.stop", "site.stop", "engine.start", "site.start"]
    finally:
        await proxy.stop()


@pytest.mark.asyncio
async def test_proxy_captures_login_redirect_end_to_end(tmp_path) -> None:
    config = ProxyConfig(
        oidc_issuer="https://idp.example.com",
        client_id="client-1",
        listen_bind="127.0.0.1",
        proxy_port=free_port(),
        web_port=free_port(),
        data_dir=tmp_path,
        host_marker="127.0.0.1",
    )
    proxy = LoginProxy(LoginFlow(_FakeClient()), config)

    async with Upstream() as upstream:
        login_url = await proxy.start()
        try:
            state = login_url.split("state=")[1].split("&")[0]
            upstream.response = (
                "HTTP/1.1 302 Found\r\n"
                f"Location: daikinunified://login?code=abc&state={state}\r\n"
                "Content-Length: 0\r\n\r\n"
            ).encode("ascii")
            waiting = asyncio.create_task(proxy.login(timeout=5))
            await asyncio.sleep(0)

            head, _, writer = await get_via_proxy(
                config.proxy_port, f"http://127.0.0.1:{upstream.port}/authorize"
            )
            token_set = await waiting
            writer.close()

            async with httpx.AsyncClient(base_url=f"http://127.0.0.1:{config.web_port}") as client:
                index = await client.get("/")
                ca = await client.get("/ca.pem")
        finally:
            await proxy.stop()

    assert head.startswith(b"HTTP/1.1 302")
    assert b"daikinunified://login?code=abc" in head
    assert token_set.access_token == "access-abc"
    assert state not in proxy.flow.store
    assert "Login into the Cloud" in index.text
    assert ca.status_code == 200
    assert "BEGIN CERTIFICATE" in ca.text
