"""Cookie tracking across manually followed redirect chains.

The account service hands out the session cookies (``userId``,
``serviceToken``, ``passToken`` ...) on intermediate responses of redirect
chains, and marks cookies it wants removed with the literal value
``EXPIRED``. aiohttp's own redirect handling drops cookies on cross-origin
hops, so the chain is walked by :func:`follow_redirects` and every
``Set-Cookie`` header is fed into a :class:`CookieTracker`.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable, MutableMapping
from typing import TYPE_CHECKING

from yarl import URL

if TYPE_CHECKING:
    from .httpclient import HttpResponse

_LOGGER = logging.getLogger(__name__)

EXPIRED = "EXPIRED"
#: Prefix of device ids the web login assigns, never replaces ours
INTERNAL_DEVICE_ID_PREFIX = "wb_"

#: Cookies the mobile app always sends
FIXED_COOKIES = {
    "locale": "en_GB",
    "timezone": "GMT+02:00",
    "is_daylight": "1",
    "dst_offset": "3600000",
    "channel": "MI_APP_STORE",
    "sdkVersion": "accountsdk-18.8.15",
}

_SESSION_COOKIES = ("userId", "serviceToken", "passToken", "cUserId")


class CookieTracker:
    """Accumulate cookies in a plain name to value mapping.

    The mapping is updated in place so it can be owned by the client state.
    """

    def __init__(
        self, cookies: MutableMapping[str, str], *, device_id: str | None = None
    ) -> None:
        self._cookies = cookies
        self._device_id = device_id

    @property
    def cookies(self) -> MutableMapping[str, str]:
        """Return the tracked cookies."""
        return self._cookies

    def get(self, name: str) -> str | None:
        """Return the value of a cookie, if set."""
        return self._cookies.get(name)

    def set(self, name: str, value: str) -> bool:
        """Store a cookie, returns True if the jar now holds the value."""
        if (
            name == "deviceId"
            and value.startswith(INTERNAL_DEVICE_ID_PREFIX)
            and self._device_id
            and not self._device_id.startswith(INTERNAL_DEVICE_ID_PREFIX)
        ):
            _LOGGER.debug("Ignoring %s deviceId cookie", INTERNAL_DEVICE_ID_PREFIX)
            return False

        if value == EXPIRED:
            _LOGGER.debug("Removing expired cookie %s", name)
            self._cookies.pop(name, None)
            return False

        self._cookies[name] = value
        return True

    def update_from_headers(self, headers: Iterable[str]) -> list[str]:
        """Apply Set-Cookie header values, return the names that were stored."""
        stored = []
        for header in headers:
            name, sep, value = header.split(";", 1)[0].strip().partition("=")
            if not sep or not name or not value:
                continue
            if self.set(name, value):
                stored.append(name)
        if stored:
            _LOGGER.debug("New cookies set: %s", stored)
        return stored

    def update_from_response(self, response: HttpResponse) -> list[str]:
        """Apply every Set-Cookie header of a response."""
        return self.update_from_headers(response.set_cookies)

    def header(
        self,
        *,
        device_id: str,
        overrides: dict[str, str | None] | None = None,
        fixed: bool = True,
    ) -> str:
        """Build a Cookie header.

        Session values from ``overrides`` win over the jar. ``serviceToken``
        is mirrored into ``yetAnotherServiceToken``.
        """
        overrides = overrides or {}
        entries: dict[str, str] = {}
        for name in _SESSION_COOKIES:
            value = overrides.get(name) or self._cookies.get(name)
            if value and value != EXPIRED:
                entries[name] = value
        if token := entries.get("serviceToken"):
            entries["yetAnotherServiceToken"] = token
        if fixed:
            entries.update(FIXED_COOKIES)
        entries["deviceId"] = device_id
        for name, value in self._cookies.items():
            if name not in entries and value != EXPIRED:
                entries[name] = value
        return "; ".join(f"{name}={value}" for name, value in entries.items())


async def follow_redirects(
    fetch: Callable[[URL], Awaitable[HttpResponse]],
    url: URL | str,
    tracker: CookieTracker,
    *,
    max_hops: int = 5,
) -> URL:
    """Follow a redirect chain collecting cookies at every hop.

    ``fetch`` performs a single request without following redirects. Returns
    the url of the last response of the chain.
    """
    current = URL(url) if isinstance(url, str) else url
    for hop in range(max_hops):
        response = await fetch(current)
        tracker.update_from_response(response)
        _LOGGER.debug("Redirect %s status: %s", hop + 1, response.status)
        if not response.is_redirect:
            return current
        # Relative locations are resolved against the current url
        current = current.join(URL(response.location))  # type: ignore[arg-type]
    _LOGGER.warning("Too many redirects, stopped after %s hops", max_hops)
    return current
