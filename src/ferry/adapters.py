import asyncio
import contextlib
import json
from typing import Union

import httpx

from .auth import BearerAuth
from .types import Failure, RawResponse, RequestDescriptor


class TransportFailure(Exception):
    """No response was received for an attempt."""

    def __init__(self, failure: Failure):
        super().__init__(failure.detail or failure.reason or "transport failure")
        self.failure = failure


def _join(base_url: str, path: str) -> str:
    if path.startswith(("http://", "https://")):
        return path
    return f"{base_url.rstrip('/')}/{path.lstrip('/')}"


def _decode(text: str) -> tuple[bool, object]:
    """Return (decoded, body); an empty body decodes to None."""
    if not text.strip():
        return True, None
    try:
        return True, json.loads(text)
    except ValueError:
        return False, None


def _text(content: bytes, charset: Union[str, None]) -> str:
    """Decode a body leniently; undecodable bytes become U+FFFD like httpx does."""
    try:
        return content.decode(charset or "utf-8", errors="replace")
    except LookupError:
        return content.decode("utf-8", errors="replace")


# ---------- httpx (sync) ----------
class HttpxTransport:
    def __init__(self, base_url: str, client: Union[httpx.Client, None] = None):
        self.base_url = base_url
        self._own_client = client is None
        self.client = client or httpx.Client(follow_redirects=True)

    def send(self, descriptor: RequestDescriptor, auth: BearerAuth) -> RawResponse:
        url = _join(self.base_url, descriptor.path)
        try:
            resp = self.client.request(
                descriptor.method,
                url,
                json=descriptor.json,
                params=descriptor.params,
                files=descriptor.files,
                headers=descriptor.headers,
                timeout=descriptor.timeout,
                auth=auth,
            )
        except httpx.TimeoutException as e:
            raise TransportFailure(Failure(reason="timeout", detail=str(e))) from e
        except httpx.TransportError as e:
            raise TransportFailure(Failure(reason="network", detail=str(e))) from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise TransportFailure(Failure(detail=str(e))) from e
        decoded, body = _decode(resp.text)
        return RawResponse(
            status=resp.status_code,
            headers=dict(resp.headers),
            body=body,
            decoded=decoded,
            text=resp.text,
            url=str(resp.url),
        )

    def close(self):
        if self._own_client:
            with contextlib.suppress(Exception):
                self.client.close()


# ---------- httpx (async) ----------
class AsyncHttpxTransport:
    def __init__(self, base_url: str, client: Union[httpx.AsyncClient, None] = None):
        self.base_url = base_url
        self._own_client = client is None
        self.client = client or httpx.AsyncClient(follow_redirects=True)

    async def send(self, descriptor: RequestDescriptor, auth: BearerAuth) -> RawResponse:
        url = _join(self.base_url, descriptor.path)
        try:
            # wait_for bounds the whole attempt; a late response is abandoned
            resp = await asyncio.wait_for(
                self.client.request(
                    descriptor.method,
                    url,
                    json=descriptor.json,
                    params=descriptor.params,
                    files=descriptor.files,
                    headers=descriptor.headers,
                    timeout=descriptor.timeout,
                    auth=auth,
                ),
                timeout=descriptor.timeout,
            )
        except (httpx.TimeoutException, asyncio.TimeoutError) as e:
            raise TransportFailure(Failure(reason="timeout", detail=str(e))) from e
        except httpx.TransportError as e:
            raise TransportFailure(Failure(reason="network", detail=str(e))) from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise TransportFailure(Failure(detail=str(e))) from e
        decoded, body = _decode(resp.text)
        return RawResponse(
            status=resp.status_code,
            headers=dict(resp.headers),
            body=body,
            decoded=decoded,
            text=resp.text,
            url=str(resp.url),
        )

    async def aclose(self):
        if self._own_client:
            with contextlib.suppress(Exception):
                await self.client.aclose()


# ---------- requests (sync) ----------
class RequestsTransport:
    def __init__(self, base_url: str, session=None):
        import requests  # noqa: PLC0415

        self.base_url = base_url
        self._own_session = session is None
        self.session = session or requests.Session()

    def send(self, descriptor: RequestDescriptor, auth: BearerAuth) -> RawResponse:
        import requests  # noqa: PLC0415

        url = _join(self.base_url, descriptor.path)
        try:
            resp = self.session.request(
                descriptor.method,
                url,
                json=descriptor.json,
                params=descriptor.params,
                files=descriptor.files,
                headers=descriptor.headers,
                timeout=descriptor.timeout,
                auth=auth,
            )
        # Timeout first: ConnectTimeout is also a ConnectionError
        except requests.Timeout as e:
            raise TransportFailure(Failure(reason="timeout", detail=str(e))) from e
        except requests.ConnectionError as e:
            raise TransportFailure(Failure(reason="network", detail=str(e))) from e
        except requests.RequestException as e:
            raise TransportFailure(Failure(detail=str(e))) from e
        text = resp.text or ""
        decoded, body = _decode(text)
        return RawResponse(
            status=resp.status_code,
            headers=dict(resp.headers),
            body=body,
            decoded=decoded,
            text=text,
            url=str(getattr(resp, "url", url)),
        )

    def close(self):
        if self._own_session:
            with contextlib.suppress(Exception):
                self.session.close()


# ---------- aiohttp (async) ----------
class AiohttpTransport:
    def __init__(self, base_url: str, session=None):
        self.base_url = base_url
        self._own_session = session is None
        # ClientSession must be created inside a running loop; defer until first send
        self.session = session

    def _form(self, files):
        import aiohttp  # noqa: PLC0415

        form = aiohttp.FormData()
        for field_name, (filename, content, content_type) in files.items():
            form.add_field(field_name, content, filename=filename, content_type=content_type)
        return form

    async def send(self, descriptor: RequestDescriptor, auth: BearerAuth) -> RawResponse:
        import aiohttp  # noqa: PLC0415

        if self.session is None:
            self.session = aiohttp.ClientSession()
        url = _join(self.base_url, descriptor.path)
        kwargs = {
            "params": descriptor.params,
            "headers": auth.before_send(dict(descriptor.headers)),
            "timeout": aiohttp.ClientTimeout(total=descriptor.timeout),
        }
        if descriptor.files:
            kwargs["data"] = self._form(descriptor.files)
        elif descriptor.json is not None:
            kwargs["json"] = descriptor.json
        try:
            # ClientTimeout(total=...) bounds connect + read for the whole attempt
            async with self.session.request(descriptor.method, url, **kwargs) as resp:
                text = _text(await resp.read(), resp.charset)
                status = resp.status
                headers = dict(resp.headers)
                final_url = str(resp.url)
        except asyncio.TimeoutError as e:
            raise TransportFailure(Failure(reason="timeout", detail=str(e))) from e
        except aiohttp.ClientConnectionError as e:
            raise TransportFailure(Failure(reason="network", detail=str(e))) from e
        except aiohttp.ClientError as e:
            raise TransportFailure(Failure(detail=str(e))) from e
        decoded, body = _decode(text)
        return RawResponse(
            status=status,
            headers=headers,
            body=body,
            decoded=decoded,
            text=text,
            url=final_url,
        )

    async def aclose(self):
        if self._own_session and self.session is not None:
            with contextlib.suppress(Exception):
                await self.session.close()


SYNC_TRANSPORTS = {"httpx": HttpxTransport, "requests": RequestsTransport}
ASYNC_TRANSPORTS = {"httpx": AsyncHttpxTransport, "aiohttp": AiohttpTransport}


def coerce_transport(transport, base_url: str, asynchronous: bool):
    """Turn None | "httpx" | "requests" | "aiohttp" | transport instance into a transport.

    Returns (transport, owned) where owned tells the client to close it.
    """
    table = ASYNC_TRANSPORTS if asynchronous else SYNC_TRANSPORTS
    if transport is None:
        return table["httpx"](base_url), True
    if isinstance(transport, str):
        cls = table.get(transport.lower())
        if cls is None:
            flavour = "async" if asynchronous else "sync"
            raise ValueError(
                f"Unknown {flavour} transport {transport!r}; use one of {sorted(table)}"
            )
        return cls(base_url), True
    if not hasattr(transport, "send"):
        raise TypeError("transport must be None, a transport name, or an object with send()")
    return transport, False
