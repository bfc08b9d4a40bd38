"""Module for HttpClient class."""

from __future__ import annotations

import logging
from asyncio import TimeoutError as _asyncioTimeoutError
from dataclasses import dataclass
from typing import Any

import aiohttp
from multidict import CIMultiDict, CIMultiDictProxy
from yarl import URL

from .config import CloudConfig
from .exceptions import (
    MiCloudException,
    TimeoutError,
    _ConnectionError,
)
from .json import loads_wrapped

_LOGGER = logging.getLogger(__name__)


@dataclass
class HttpResponse:
    """Status, headers and body of a single, unfollowed http response."""

    status: int
    headers: CIMultiDictProxy[str]
    body: bytes
    url: URL

    @property
    def ok(self) -> bool:
        """Return True for 2xx responses."""
        return 200 <= self.status < 300

    @property
    def is_redirect(self) -> bool:
        """Return True for 3xx responses carrying a location."""
        return 300 <= self.status < 400 and "Location" in self.headers

    @property
    def location(self) -> str | None:
        """Return the location header, if any."""
        return self.headers.get("Location")

    @property
    def set_cookies(self) -> list[str]:
        """Return every Set-Cookie header of the response."""
        return self.headers.getall("Set-Cookie", [])

    @property
    def text(self) -> str:
        """Return the body decoded as text."""
        return self.body.decode(errors="replace")

    def json(self) -> Any:
        """Return the body parsed as JSON, stripping the account sentinel."""
        return loads_wrapped(self.body)


def _client_session() -> aiohttp.ClientSession:
    # Cookies are tracked by the caller and sent as an explicit header.
    return aiohttp.ClientSession(cookie_jar=aiohttp.DummyCookieJar())


class HttpClient:
    """HttpClient Class.

    Redirects are never followed here. The account service sets the cookies
    we need on intermediate redirect responses, so callers walk redirect
    chains themselves.
    """

    def __init__(self, config: CloudConfig) -> None:
        http_client = config.http_client
        if http_client is not None and not isinstance(
            http_client.cookie_jar, aiohttp.DummyCookieJar
        ):
            raise MiCloudException(
                "A custom http_client must use an aiohttp.DummyCookieJar, "
                "its cookies would replace the tracked ones"
            )
        self._config = config
        self._client_session: aiohttp.ClientSession | None = None

    @property
    def client(self) -> aiohttp.ClientSession:
        """Return the underlying http client."""
        if self._config.http_client and issubclass(
            self._config.http_client.__class__, aiohttp.ClientSession
        ):
            return self._config.http_client

        if not self._client_session:
            self._client_session = _client_session()
        return self._client_session

    async def get(
        self,
        url: URL | str,
        *,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> HttpResponse:
        """Send an http get request."""
        return await self.request("GET", url, params=params, headers=headers)

    async def post(
        self,
        url: URL | str,
        *,
        params: dict[str, Any] | None = None,
        data: dict[str, str] | bytes | None = None,
        headers: dict[str, str] | None = None,
    ) -> HttpResponse:
        """Send an http post request."""
        return await self.request(
            "POST", url, params=params, data=data, headers=headers
        )

    async def request(
        self,
        method: str,
        url: URL | str,
        *,
        params: dict[str, Any] | None = None,
        data: dict[str, str] | bytes | None = None,
        headers: dict[str, str] | None = None,
    ) -> HttpResponse:
        """Send an http request and return the response without following it."""
        url = URL(url) if isinstance(url, str) else url
        _LOGGER.debug("%s %s", method, url.with_query(None))
        if self._config.timeout is None:
            _LOGGER.warning("Request timeout is set to None.")
        client_timeout = aiohttp.ClientTimeout(total=self._config.timeout)

        try:
            resp = await self.client.request(
                method,
                url,
                params=params,
                data=data,
                headers=headers,
                timeout=client_timeout,
                allow_redirects=False,
            )
            async with resp:
                body = await resp.read()
                resp_headers = CIMultiDictProxy(CIMultiDict(resp.headers))
        except (aiohttp.ServerDisconnectedError, aiohttp.ClientOSError) as ex:
            raise _ConnectionError(
                f"Unable to connect to {url.host}: {ex}", ex
            ) from ex
        except (aiohttp.ServerTimeoutError, _asyncioTimeoutError) as ex:
            raise TimeoutError(
                f"Unable to query the cloud, timed out: {url.host}: {ex}", ex
            ) from ex
        except Exception as ex:
            raise MiCloudException(
                f"Unable to query the cloud: {url.host}: {ex}", ex
            ) from ex

        _LOGGER.debug("%s %s responded with status %s", method, url.path, resp.status)
        return HttpResponse(resp.status, resp_headers, body, url)

    async def close(self) -> None:
        """Close the ClientSession."""
        client = self._client_session
        self._client_session = None
        if client:
            await client.close()
