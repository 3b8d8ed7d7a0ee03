import logging
from typing import Callable, Protocol, Union

import httpx

from .types import AuthConfig

logger = logging.getLogger("ferry")


class TokenStore(Protocol):
    def get_token(self) -> Union[str, None]: ...

    def set_token(self, token: str) -> None: ...

    def remove_token(self) -> None: ...

    def is_authenticated(self) -> bool: ...


class MemoryTokenStore:
    """Process-local token store; persistence is left to other implementations."""

    def __init__(self, token: Union[str, None] = None):
        self._token = token or None

    def get_token(self) -> Union[str, None]:
        return self._token

    def set_token(self, token: str) -> None:
        self._token = token or None

    def remove_token(self) -> None:
        self._token = None

    def is_authenticated(self) -> bool:
        return bool(self._token)


class BearerAuth(httpx.Auth):
    """Attach the current session token to outgoing requests.

    - httpx: implements auth_flow, so it works as ``auth=`` on Client and AsyncClient.
    - requests: uses the __call__(request) protocol.
    - aiohttp (or anything else): call before_send(headers) per attempt.

    The token is read from the store on every request, never cached, so a token
    rotated or cleared elsewhere takes effect on the next attempt.
    """

    def __init__(
        self,
        store: TokenStore,
        on_redirect: Union[Callable[[str], None], None] = None,
        config: Union[AuthConfig, None] = None,
    ):
        self.store = store
        self.on_redirect = on_redirect
        self.config = config or AuthConfig()

    def header_value(self) -> Union[str, None]:
        token = self.store.get_token()
        if not token:
            return None
        return f"{self.config.scheme} {token}".strip()

    def before_send(self, headers: dict[str, str]) -> dict[str, str]:
        value = self.header_value()
        if value is None:
            return headers
        return {**headers, self.config.header: value}

    def on_auth_failure(self) -> None:
        """Clear the session and point the caller at the login surface. Never retries."""
        self.store.remove_token()
        logger.info(f"session cleared after auth failure; redirecting to {self.config.login_path}")
        if self.on_redirect is not None:
            self.on_redirect(self.config.login_path)

    # ------------------------ httpx ------------------------
    def auth_flow(self, request):
        value = self.header_value()
        if value is not None:
            request.headers[self.config.header] = value
        yield request

    # ------------------------ requests auth protocol ------------------------
    def __call__(self, r):
        value = self.header_value()
        if value is not None:
            r.headers[self.config.header] = value
        return r
