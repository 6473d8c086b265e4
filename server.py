from __future__ import annotations

import asyncio
import json
import sys

from auth.login_flow import LoginFlow
from auth.oidc import OIDCClient
from auth.pending import PendingStateStore
from tokenproxy.config import ProxyConfig
from tokenproxy.constants import APP_VERSION, LOGGER
from tokenproxy.env import load_env, setup_logging, validate_env
from tokenproxy.errors import TokenProxyError
from tokenproxy.session import LoginProxy


def build_oidc_client(config: ProxyConfig) -> OIDCClient:
    return OIDCClient(
        issuer=config.oidc_issuer,
        client_id=config.client_id,
        client_secret=config.client_secret,
        redirect_uri=config.callback_url,
        scopes=config.scopes,
        timeout=config.http_timeout_seconds,
    )


def create_proxy(config: ProxyConfig, *, oidc_client: OIDCClient | None = None) -> LoginProxy:
    flow = LoginFlow(
        oidc_client or build_oidc_client(config),
        store=PendingStateStore(ttl_seconds=config.pending_ttl_seconds),
        logger=config.logger,
        debug=config.debug,
    )
    return LoginProxy(flow, config)


def print_instructions(proxy: LoginProxy) -> None:
    config = proxy.config
    print(f"Login proxy {APP_VERSION}")
    print(f"- Configure the client to use the HTTPS proxy {config.listen_bind}:{config.proxy_port}")
    print(f"- Open http://{config.listen_bind}:{config.web_port}/ to install the certificate and log in")


async def run(config: ProxyConfig, *, proxy: LoginProxy | None = None) -> int:
    proxy = proxy or create_proxy(config)
    try:
        try:
            await proxy.start()
        except TokenProxyError as error:
            LOGGER.error("Could not start login proxy: %s", error)
            return 1

        try:
            print_instructions(proxy)
            timeout = config.login_timeout_seconds or None
            token_set = await proxy.login(timeout=timeout)
        except asyncio.TimeoutError:
            LOGGER.error("No login captured within %ss", config.login_timeout_seconds)
            return 1
        except TokenProxyError as error:
            LOGGER.error("Login failed: %s", error)
            return 1
        finally:
            await proxy.stop()
    finally:
        await proxy.flow.client.aclose()

    print(json.dumps(token_set.as_dict(), indent=2, default=str))
    return 0


def main() -> None:
    load_env()
    validate_env()
    config = ProxyConfig.from_env()
    setup_logging(config.log_level)
    try:
        exit_code = asyncio.run(run(config))
    except KeyboardInterrupt:
        LOGGER.info("Interrupted, proxy stopped.")
        exit_code = 130
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
