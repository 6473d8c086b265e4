from __future__ import annotations

import json
import logging
from typing import Protocol

from auth.models import InterceptedRedirect, TokenSet
from auth.pending import PendingStateStore
from auth.pkce import (
    CODE_CHALLENGE_METHOD,
    generate_code_challenge,
    generate_code_verifier,
    generate_state,
)
from tokenproxy.errors import AuthorizationError, UnknownStateError, UnrecognizedCallbackError

LOGGER = logging.getLogger("auth.login_flow")


class AuthorizationClient(Protocol):
    async def authorization_url(
        self,
        *,
        state: str,
        code_challenge: str,
        code_challenge_method: str = CODE_CHALLENGE_METHOD,
    ) -> str: ...

    async def exchange_code(self, *, code: str, code_verifier: str) -> TokenSet: ...


class LoginFlow:
    """PKCE bookkeeping for one login session.

    ``generate_login_url`` records ``state -> code_verifier`` in the pending
    store; ``exchange`` resolves a captured redirect against that store and
    trades the authorization code for a validated token set.
    """

    def __init__(
        self,
        client: AuthorizationClient,
        *,
        store: PendingStateStore | None = None,
        logger: logging.Logger | None = None,
        debug: bool = False,
    ) -> None:
        self.client = client
        self.store = store if store is not None else PendingStateStore()
        self._logger = logger or LOGGER
        self._debug = debug

    async def generate_login_url(self) -> str:
        code_verifier = generate_code_verifier()
        code_challenge = generate_code_challenge(code_verifier)
        state = generate_state()

        self.store.add(state, code_verifier)

        url = await self.client.authorization_url(
            state=state,
            code_challenge=code_challenge,
            code_challenge_method=CODE_CHALLENGE_METHOD,
        )
        if self._debug:
            self._logger.debug("Generated login URL %s", url)
        return url

    async def exchange(self, redirect_url: str) -> TokenSet:
        redirect = InterceptedRedirect.from_url(redirect_url)

        pending = self.store.consume(redirect.state)
        if pending is None:
            raise UnknownStateError(redirect.state)

        if redirect.code:
            token_set = await self.client.exchange_code(
                code=redirect.code,
                code_verifier=pending.code_verifier,
            )
            if self._debug:
                self._logger.debug(
                    "Received and validated tokens: %s",
                    json.dumps(token_set.as_dict(), default=str),
                )
                self._logger.debug(
                    "Validated ID token claims: %s",
                    json.dumps(token_set.claims, default=str),
                )
            return token_set

        if redirect.error:
            self._logger.error("Login redirect returned an error: %s", json.dumps(redirect.as_dict()))
            raise AuthorizationError(redirect.error, redirect.error_description)

        raise UnrecognizedCallbackError(redirect.as_dict())
