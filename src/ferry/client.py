import asyncio
import contextlib
import logging
import mimetypes
import os
import time
from typing import Any, Callable, Union
from urllib.parse import quote

from .adapters import TransportFailure, coerce_transport
from .auth import BearerAuth, MemoryTokenStore, TokenStore
from .env import apply_overrides, load_config_from_env
from .errors import FerryError, UnknownError, normalize
from .policies import RetryPolicy
from .queue import RequestSerializer, SyncRequestSerializer
from .state import RetryState
from .types import ClientConfig, ErrorKind, Failure, RawResponse, RequestDescriptor

logger = logging.getLogger("ferry")


def _segment(value) -> str:
    return quote(str(value), safe="")


def _read_image(image, filename: Union[str, None]) -> tuple[bytes, str]:
    if isinstance(image, (bytes, bytearray, memoryview)):
        return bytes(image), filename or "image"
    if isinstance(image, (str, os.PathLike)):
        with open(image, "rb") as f:
            return f.read(), filename or os.path.basename(os.fspath(image))
    if hasattr(image, "read"):
        name = filename or os.path.basename(str(getattr(image, "name", "") or "")) or "image"
        return image.read(), name
    raise TypeError("image must be bytes, a path, or a binary file object")


class _Endpoints:
    """Backend capabilities, one method per endpoint.

    Each method builds a RequestDescriptor and hands it to ``_execute``; for
    Client that returns the decoded envelope, for AsyncClient a coroutine.
    Every method accepts ``headers=``, ``timeout=`` and ``serialize=`` overrides.
    """

    config: ClientConfig

    def _execute(self, descriptor: RequestDescriptor):
        raise NotImplementedError

    def _build(
        self,
        method: str,
        path: str,
        call_class: str,
        *,
        json: Any = None,
        params: Union[dict, None] = None,
        files: Union[dict, None] = None,
        upload: bool = False,
        headers: Union[dict, None] = None,
        timeout: Union[float, None] = None,
        serialize: Union[bool, None] = None,
    ) -> RequestDescriptor:
        if timeout is None:
            timeout = self.config.upload_timeout if upload else self.config.timeout
        return RequestDescriptor(
            method=method,
            path=path,
            json=json,
            params=params,
            files=files,
            headers=dict(headers or {}),
            timeout=timeout,
            call_class=call_class,
            serialize=serialize,
        )

    def _call(self, method: str, path: str, call_class: str, **kwargs):
        return self._execute(self._build(method, path, call_class, **kwargs))

    # ---------- auth ----------
    def register(
        self, email: str, name: str, password: str, key: Union[str, None] = None, **options
    ):
        payload = {"email": email, "name": name, "password": password}
        if key is not None:
            payload["key"] = key
        return self._call("POST", "/register", "auth", json=payload, **options)

    def _login_request(self, email: str, password: str, **options) -> RequestDescriptor:
        payload = {"email": email, "password": password}
        return self._build("POST", "/login", "auth", json=payload, **options)

    # ---------- products ----------
    def get_products(self, **options):
        return self._call("GET", "/product", "product", **options)

    def get_product(self, product_id, **options):
        return self._call("GET", f"/product/{_segment(product_id)}", "product", **options)

    def create_product(self, product: dict, **options):
        return self._call("POST", "/product", "product", json=product, **options)

    # ---------- orders ----------
    def get_orders(self, **options):
        return self._call("GET", "/orders", "order", **options)

    def get_order(self, order_id, **options):
        return self._call("GET", f"/orders/{_segment(order_id)}", "order", **options)

    def create_order(self, order: dict, **options):
        return self._call("POST", "/orders", "order", json=order, **options)

    # ---------- inventory ----------
    def get_inventory(self, **options):
        return self._call("GET", "/inventory", "inventory", **options)

    # ---------- deliveries ----------
    def get_deliveries(self, **options):
        return self._call("GET", "/delivery", "delivery", **options)

    def get_delivery(self, order_id, **options):
        return self._call("GET", f"/delivery/{_segment(order_id)}", "delivery", **options)

    # ---------- analytics ----------
    def get_sales_analytics(self, days: int = 7, **options):
        return self._call("GET", "/analytics/sales", "analytics", params={"days": days}, **options)

    def get_ai_analytics(self, **options):
        return self._call("GET", "/analytics/ai", "analytics", **options)

    def get_sales_forecast(self, days: int = 30, **options):
        params = {"days": days}
        return self._call("GET", "/analytics/sales/forecast", "analytics", params=params, **options)

    def analyze_shelf_image(
        self,
        image,
        filename: Union[str, None] = None,
        content_type: Union[str, None] = None,
        **options,
    ):
        """Upload a shelf photo as multipart field ``image`` with the upload deadline."""
        content, name = _read_image(image, filename)
        ctype = content_type or mimetypes.guess_type(name)[0] or "application/octet-stream"
        files = {"image": (name, content, ctype)}
        return self._call(
            "POST", "/analytics/image", "analytics", files=files, upload=True, **options
        )

    def get_dashboard_stats(self, **options):
        return self._call("GET", "/admin/dashboard", "dashboard", **options)

    # ---------- simulation ----------
    def start_simulation(self, **options):
        return self._call("POST", "/simulation/start", "simulation", json={}, **options)

    def seed_data(self, **options):
        return self._call("POST", "/simulation/seed", "simulation", json={}, **options)

    # ---------- health ----------
    def health_check(self, **options):
        """Return the health body as sent ({"status", "timestamp"}), not an envelope."""
        return self._call("GET", "/health", "health", **options)


class _BaseClient(_Endpoints):
    def __init__(
        self,
        config: Union[ClientConfig, None],
        token_store: Union[TokenStore, None],
        on_redirect: Union[Callable[[str], None], None],
        backoff,
        log_level: Union[int, None],
        **overrides,
    ):
        """Initialize shared client state.

        Args:
            config (ClientConfig | None): base configuration; defaults to ClientConfig()
            token_store (TokenStore | None): session token holder; defaults to MemoryTokenStore
            on_redirect (callable | None): called with the login path after a terminal AuthError
            backoff: anything coerce_backoff accepts; defaults to the configured schedule
            log_level (int | None): level for the "ferry" logger
            overrides: ClientConfig / RetryConfig fields applied on top of config
        """
        # Prefer config objects, then apply keyword overrides on top
        self.config = apply_overrides(config or ClientConfig(), **overrides)
        self.token_store = token_store if token_store is not None else MemoryTokenStore()
        self.auth = BearerAuth(self.token_store, on_redirect, self.config.auth)
        self.retry_policy = RetryPolicy.from_config(self.config.retry, backoff=backoff)
        self._logger = logger
        if log_level is not None:
            self._logger.setLevel(log_level)

    @property
    def is_authenticated(self) -> bool:
        return self.token_store.is_authenticated()

    def logout(self) -> None:
        self.token_store.remove_token()

    def _remember(self, envelope, remember: bool) -> None:
        if not remember or not isinstance(envelope, dict) or not envelope.get("success"):
            return
        data = envelope.get("data")
        token = data.get("token") if isinstance(data, dict) else None
        if token:
            self.token_store.set_token(token)

    def _should_serialize(self, descriptor: RequestDescriptor) -> bool:
        if descriptor.serialize is not None:
            return descriptor.serialize
        return self.config.serializes(descriptor.call_class)

    def _log_start(self, d: RequestDescriptor, state: RetryState):
        self._logger.debug(
            f"req start method={d.method} path={d.path} attempt={state.total_attempts}"
        )

    def _succeed(self, d: RequestDescriptor, state: RetryState, raw: RawResponse, started: float):
        elapsed = (time.monotonic() - started) * 1000
        if not raw.decoded:
            error = UnknownError(f"Invalid response from server: {raw.status}", status=raw.status)
            state.failed(error)
            self._give_up(d, state, error)
            raise error
        state.succeeded()
        self._logger.debug(
            f"req done method={d.method} path={d.path} status={raw.status} took={elapsed:.0f}ms"
        )
        return raw.body

    def _after_failure(self, d: RequestDescriptor, state: RetryState, failure: Failure):
        """Record a failed attempt; return the delay before the next one, or None if terminal."""
        if failure.status is None:
            self._logger.warning(
                f"request error method={d.method} path={d.path} "
                f"reason={failure.reason}: {failure.detail}"
            )
        error = normalize(failure, default_retry_after=self.retry_policy.rate_limit_delay)
        state.failed(error)
        if self.retry_policy.should_retry(error.kind, state.attempts):
            delay = self.retry_policy.delay_for(error.kind, state.attempts + 1, error.retry_after)
            state.schedule_retry(delay)
            d.attempt = state.attempts
            self._logger.info(
                f"{error.kind.value} on {d.method} {d.path} (status={error.status}); "
                f"retry {state.attempts}/{state.max_attempts} in {delay:.2f}s"
            )
            return delay
        self._give_up(d, state, error)
        return None

    def _give_up(self, d: RequestDescriptor, state: RetryState, error: FerryError):
        state.give_up()
        error.attempts = state.total_attempts
        self._logger.error(
            f"{error.kind.value} on {d.method} {d.path} status={error.status} "
            f"after {error.attempts} attempt(s): {error.message}"
        )
        if error.kind is ErrorKind.AUTH:
            self.auth.on_auth_failure()


# ---------- Sync client ----------


class Client(_BaseClient):
    def __init__(
        self,
        config: Union[ClientConfig, None] = None,
        *,
        token_store: Union[TokenStore, None] = None,
        on_redirect: Union[Callable[[str], None], None] = None,
        transport=None,
        backoff=None,
        sleep: Union[Callable[[float], None], None] = None,
        log_level: Union[int, None] = None,
        **overrides,
    ):
        """Initialize a Client.

        Args:
            transport: None | "httpx" | "requests" | an object with send(descriptor, auth)
            sleep (callable | None): waits between attempts; defaults to time.sleep

        See _BaseClient for the remaining arguments.
        """
        super().__init__(config, token_store, on_redirect, backoff, log_level, **overrides)
        self.transport, self._own_transport = coerce_transport(
            transport, self.config.base_url, asynchronous=False
        )
        self.serializer = SyncRequestSerializer()
        self._sleep = sleep or time.sleep

    @classmethod
    def from_env(cls, prefix: str = "FERRY_", env_path: Union[str, None] = None, **kwargs):
        """Build a Client from FERRY_* variables (see load_config_from_env)."""
        return cls(load_config_from_env(prefix=prefix, env_path=env_path), **kwargs)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def close(self):
        if self._own_transport and hasattr(self.transport, "close"):
            self.transport.close()

    def login(self, email: str, password: str, remember: bool = True, **options):
        envelope = self._execute(self._login_request(email, password, **options))
        self._remember(envelope, remember)
        return envelope

    def _execute(self, descriptor: RequestDescriptor):
        if self._should_serialize(descriptor):
            return self.serializer.enqueue(lambda: self._run(descriptor))
        return self._run(descriptor)

    def _run(self, d: RequestDescriptor):
        state = RetryState(max_attempts=self.retry_policy.max_attempts)
        while True:
            state.sending()
            self._log_start(d, state)
            started = time.monotonic()
            try:
                raw = self.transport.send(d, self.auth)
            except TransportFailure as e:
                failure = e.failure
            else:
                if raw.ok:
                    return self._succeed(d, state, raw, started)
                failure = Failure.from_response(raw)
            delay = self._after_failure(d, state, failure)
            if delay is None:
                raise state.last_error
            self._sleep(delay)


# ---------- Async client ----------


class AsyncClient(_BaseClient):
    def __init__(
        self,
        config: Union[ClientConfig, None] = None,
        *,
        token_store: Union[TokenStore, None] = None,
        on_redirect: Union[Callable[[str], None], None] = None,
        transport=None,
        backoff=None,
        sleep=None,
        log_level: Union[int, None] = None,
        **overrides,
    ):
        """Initialize an AsyncClient.

        Other keywords:
        - transport: None | "httpx" | "aiohttp" | an object with async send(descriptor, auth)
        - sleep: coroutine function used between attempts; defaults to asyncio.sleep
        """
        super().__init__(config, token_store, on_redirect, backoff, log_level, **overrides)
        self.transport, self._own_transport = coerce_transport(
            transport, self.config.base_url, asynchronous=True
        )
        self.serializer = RequestSerializer()
        self._sleep = sleep or asyncio.sleep

    @classmethod
    def from_env(cls, prefix: str = "FERRY_", env_path: Union[str, None] = None, **kwargs):
        return cls(load_config_from_env(prefix=prefix, env_path=env_path), **kwargs)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()
        return False

    async def aclose(self):
        if self._own_transport and hasattr(self.transport, "aclose"):
            with contextlib.suppress(Exception):
                await self.transport.aclose()

    async def login(self, email: str, password: str, remember: bool = True, **options):
        envelope = await self._execute(self._login_request(email, password, **options))
        self._remember(envelope, remember)
        return envelope

    async def analyze_shelf_image(
        self,
        image,
        filename: Union[str, None] = None,
        content_type: Union[str, None] = None,
        **options,
    ):
        # Paths and file objects are read in a worker thread, off the event loop
        if not isinstance(image, (bytes, bytearray, memoryview)):
            image, filename = await asyncio.to_thread(_read_image, image, filename)
        return await super().analyze_shelf_image(image, filename, content_type, **options)

    async def _execute(self, descriptor: RequestDescriptor):
        if self._should_serialize(descriptor):
            return await self.serializer.enqueue(lambda: self._run(descriptor))
        return await self._run(descriptor)

    async def _run(self, d: RequestDescriptor):
        state = RetryState(max_attempts=self.retry_policy.max_attempts)
        while True:
            state.sending()
            self._log_start(d, state)
            started = time.monotonic()
            try:
                raw = await self.transport.send(d, self.auth)
            except TransportFailure as e:
                failure = e.failure
            else:
                if raw.ok:
                    return self._succeed(d, state, raw, started)
                failure = Failure.from_response(raw)
            delay = self._after_failure(d, state, failure)
            if delay is None:
                raise state.last_error
            await self._sleep(delay)
