"""OpenID Connect client used by the login flow.

Provider endpoints are taken from OpenID discovery. The authorization URL is
built and the authorization code is exchanged with authlib's
``AsyncOAuth2Client``; the returned ID token is validated against the
provider's JWKS (signature, issuer, audience, expiry) before a ``TokenSet``
is handed back.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx
from authlib.integrations.httpx_client import AsyncOAuth2Client, OAuthError
from authlib.jose import JsonWebKey, JsonWebToken
from authlib.jose.errors import JoseError

from auth.models import TokenSet
from tokenproxy.errors import DiscoveryError, IdTokenValidationError, TokenExchangeError

LOGGER = logging.getLogger("auth.oidc")

DISCOVERY_PATH = "/.well-known/openid-configuration"
DEFAULT_ID_TOKEN_ALGORITHMS = ["RS256"]
CLOCK_LEEWAY_SECONDS = 60


class OIDCClient:
    def __init__(
        self,
        *,
        issuer: str,
        client_id: str,
        redirect_uri: str,
        scopes: list[str],
        client_secret: str | None = None,
        timeout: float = 30,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.issuer = issuer.rstrip("/")
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.scopes = list(scopes)
        self.timeout = timeout
        self._own_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)
        self._metadata: dict[str, Any] | None = None

    async def aclose(self) -> None:
        if self._own_client:
            await self._http.aclose()

    # -- discovery -------------------------------------------------------------

    async def discover(self) -> dict[str, Any]:
        if self._metadata is not None:
            return self._metadata

        url = f"{self.issuer}{DISCOVERY_PATH}"
        try:
            response = await self._http.get(url)
            response.raise_for_status()
            metadata = response.json()
        except httpx.HTTPStatusError as error:
            raise DiscoveryError(
                f"OpenID discovery failed with status {error.response.status_code}: {url}"
            ) from error
        except (httpx.HTTPError, ValueError) as error:
            raise DiscoveryError(f"OpenID discovery failed for {url}: {error}") from error

        if not isinstance(metadata, dict):
            raise DiscoveryError("OpenID discovery document must be a JSON object.")
        missing = [
            key
            for key in ("authorization_endpoint", "token_endpoint", "jwks_uri")
            if not isinstance(metadata.get(key), str)
        ]
        if missing:
            raise DiscoveryError(f"OpenID discovery document missing: {', '.join(missing)}")
        if metadata.get("issuer", self.issuer).rstrip("/") != self.issuer:
            raise DiscoveryError(
                f"OpenID discovery issuer {metadata.get('issuer')!r} does not match {self.issuer!r}"
            )

        self._metadata = metadata
        return metadata

    # -- authorization ---------------------------------------------------------

    def _oauth_client(self) -> AsyncOAuth2Client:
        return AsyncOAuth2Client(
            client_id=self.client_id,
            client_secret=self.client_secret,
            redirect_uri=self.redirect_uri,
            scope=" ".join(self.scopes),
            token_endpoint_auth_method="client_secret_basic" if self.client_secret else "none",
            timeout=self.timeout,
        )

    async def authorization_url(
        self,
        *,
        state: str,
        code_challenge: str,
        code_challenge_method: str = "S256",
    ) -> str:
        metadata = await self.discover()
        async with self._oauth_client() as client:
            url, _ = client.create_authorization_url(
                metadata["authorization_endpoint"],
                state=state,
                code_challenge=code_challenge,
                code_challenge_method=code_challenge_method,
            )
        return url

    async def exchange_code(self, *, code: str, code_verifier: str) -> TokenSet:
        metadata = await self.discover()
        async with self._oauth_client() as client:
            try:
                payload = await client.fetch_token(
                    metadata["token_endpoint"],
                    grant_type="authorization_code",
                    code=code,
                    code_verifier=code_verifier,
                )
            except OAuthError as error:
                raise TokenExchangeError(
                    f"Token request rejected: {error.error}: {error.description}"
                ) from error
            except httpx.HTTPStatusError as error:
                raise TokenExchangeError(
                    f"Token request failed with status {error.response.status_code}: "
                    f"{error.response.text}"
                ) from error
            except (httpx.HTTPError, ValueError) as error:
                raise TokenExchangeError(f"Token request failed: {error}") from error

        payload = dict(payload)
        claims: dict[str, Any] = {}
        id_token = payload.get("id_token")
        if id_token:
            claims = await self.validate_id_token(id_token)
        elif "openid" in self.scopes:
            raise IdTokenValidationError("Token response missing id_token.")

        try:
            return TokenSet.from_payload(payload, claims)
        except RuntimeError as error:
            raise TokenExchangeError(str(error)) from error

    # -- id token ----------------------------------------------------------------

    async def _load_jwks(self, jwks_uri: str) -> dict[str, Any]:
        try:
            response = await self._http.get(jwks_uri)
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError) as error:
            raise IdTokenValidationError(f"Could not load JWKS from {jwks_uri}: {error}") from error

    async def validate_id_token(self, id_token: str) -> dict[str, Any]:
        metadata = await self.discover()
        jwks = await self._load_jwks(metadata["jwks_uri"])
        algorithms = metadata.get("id_token_signing_alg_values_supported") or DEFAULT_ID_TOKEN_ALGORITHMS

        try:
            key_set = JsonWebKey.import_key_set(jwks)
            claims = JsonWebToken(algorithms).decode(
                id_token,
                key_set,
                claims_options={
                    "iss": {"essential": True, "value": metadata.get("issuer", self.issuer)},
                    "aud": {"essential": True, "value": self.client_id},
                    "exp": {"essential": True},
                },
            )
            claims.validate(leeway=CLOCK_LEEWAY_SECONDS)
        except (JoseError, ValueError) as error:
            raise IdTokenValidationError(f"ID token validation failed: {error}") from error

        LOGGER.debug("Validated ID token for sub=%s", claims.get("sub"))
        return dict(claims)
