from __future__ import annotations


class TokenProxyError(RuntimeError):
    pass


class AlreadyRunningError(TokenProxyError):
    def __init__(self, message: str = "Proxy server already started. Stop it before starting again.") -> None:
        super().__init__(message)


class BindError(TokenProxyError):
    def __init__(self, listener: str, host: str, port: int, reason: str = "") -> None:
        detail = f": {reason}" if reason else ""
        super().__init__(f"Could not bind {listener} listener on {host}:{port}{detail}")
        self.listener = listener
        self.host = host
        self.port = port


class UnknownStateError(TokenProxyError):
    def __init__(self, state: str | None) -> None:
        super().__init__(
            f"Can not decode response for state {state!r}. "
            "Please reload the start page and try again."
        )
        self.state = state


class AuthorizationError(TokenProxyError):
    def __init__(self, error: str, error_description: str | None = None) -> None:
        super().__init__(f"{error}: {error_description}" if error_description else error)
        self.error = error
        self.error_description = error_description


class UnrecognizedCallbackError(TokenProxyError):
    def __init__(self, params: dict[str, str]) -> None:
        super().__init__("Login redirect carried neither an authorization code nor an error.")
        self.params = params


class DiscoveryError(TokenProxyError):
    pass


class TokenExchangeError(TokenProxyError):
    pass


class IdTokenValidationError(TokenProxyError):
    pass


class RendezvousClosedError(TokenProxyError):
    pass


class StoppedError(RendezvousClosedError):
    def __init__(self, message: str = "Proxy server stopped.") -> None:
        super().__init__(message)


class SupersededError(RendezvousClosedError):
    def __init__(self, message: str = "Login wait superseded by a newer one.") -> None:
        super().__init__(message)
