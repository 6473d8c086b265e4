from __future__ import annotations

import time
import urllib.parse
from dataclasses import dataclass, field
from typing import Any


@dataclass
class PendingAuthorization:
    state: str
    code_verifier: str
    created_at: float


@dataclass
class InterceptedRedirect:
    url: str
    code: str | None = None
    state: str | None = None
    error: str | None = None
    error_description: str | None = None

    @classmethod
    def from_url(cls, url: str) -> "InterceptedRedirect":
        """Parse OAuth callback parameters from the query and fragment of *url*.

        Query parameters win over fragment parameters of the same name.
        """
        parsed = urllib.parse.urlparse(url)
        params: dict[str, str] = {}
        for part in (parsed.fragment, parsed.query):
            for key, value in urllib.parse.parse_qsl(part, keep_blank_values=True):
                params[key] = value

        return cls(
            url=url,
            code=params.get("code") or None,
            state=params.get("state") or None,
            error=params.get("error") or None,
            error_description=params.get("error_description") or None,
        )

    def as_dict(self) -> dict[str, str]:
        payload = {
            "code": self.code,
            "state": self.state,
            "error": self.error,
            "error_description": self.error_description,
        }
        return {key: value for key, value in payload.items() if value is not None}


@dataclass
class TokenSet:
    access_token: str
    token_type: str
    expires_at: float | None
    refresh_token: str | None = None
    id_token: str | None = None
    scope: str = ""
    claims: dict[str, Any] = field(default_factory=dict)

    def is_expired(self) -> bool:
        if self.expires_at is None:
            return False
        return time.time() >= self.expires_at

    @classmethod
    def from_payload(cls, payload: dict, claims: dict[str, Any] | None = None) -> "TokenSet":
        access_token = payload.get("access_token")
        token_type = payload.get("token_type", "Bearer")
        expires_in = payload.get("expires_in")
        expires_at = payload.get("expires_at")
        refresh_token = payload.get("refresh_token")
        id_token = payload.get("id_token")
        scope = payload.get("scope", "")

        if not isinstance(access_token, str) or not access_token:
            raise RuntimeError("Token response missing access_token.")
        if not isinstance(token_type, str):
            raise RuntimeError("Token response token_type must be a string.")
        if refresh_token is not None and not isinstance(refresh_token, str):
            raise RuntimeError("Token response refresh_token must be a string.")
        if id_token is not None and not isinstance(id_token, str):
            raise RuntimeError("Token response id_token must be a string.")
        if not isinstance(scope, str):
            raise RuntimeError("Token response scope must be a string.")

        if expires_at is None and isinstance(expires_in, (int, float)):
            expires_at = time.time() + expires_in

        return cls(
            access_token=access_token,
            token_type=token_type,
            expires_at=float(expires_at) if expires_at is not None else None,
            refresh_token=refresh_token,
            id_token=id_token,
            scope=scope,
            claims=dict(claims or {}),
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "access_token": self.access_token,
            "token_type": self.token_type,
            "expires_at": self.expires_at,
            "refresh_token": self.refresh_token,
            "id_token": self.id_token,
            "scope": self.scope,
            "claims": self.claims,
        }
