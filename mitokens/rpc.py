"""Signed calls to the device api of an authenticated session."""

from __future__ import annotations

import logging
from typing import Any

from .config import CloudConfig
from .cookies import CookieTracker
from .crypto import (
    api_path,
    decrypt_rc4,
    generate_enc_params,
    generate_nonce,
    generate_signature,
    signed_nonce,
)
from .exceptions import (
    ApiError,
    CryptoError,
    HttpStatusError,
    LoginStep,
    MiCloudException,
)
from .httpclient import HttpClient
from .json import dumps as json_dumps
from .json import loads as json_loads
from .state import ClientState, SessionData

_LOGGER = logging.getLogger(__name__)


class MiCloudRpc:
    """Send signed requests to the device api.

    Every call draws a fresh nonce. The session secrets are only read.
    """

    COMMON_HEADERS = {
        "Accept-Encoding": "identity",
        "Content-Type": "application/x-www-form-urlencoded",
        "x-xiaomi-protocal-flag-cli": "PROTOCAL-HTTP2",
    }
    ENCRYPT_HEADERS = {"MIOT-ENCRYPT-ALGORITHM": "ENCRYPT-RC4"}

    def __init__(
        self,
        state: ClientState,
        *,
        config: CloudConfig | None = None,
        http_client: HttpClient | None = None,
    ) -> None:
        state.require(LoginStep.STEP3, "ssecurity", "service_token")
        self._state = state
        self._config = config or CloudConfig()
        self._http_client = http_client or HttpClient(self._config)
        self._cookies = CookieTracker(state.cookies, device_id=state.device_id)
        self._logger = self._config.logger or _LOGGER

    @classmethod
    def from_session(
        cls, session: SessionData, *, config: CloudConfig | None = None
    ) -> MiCloudRpc:
        """Return an rpc client for a saved session."""
        return cls(session.to_state(), config=config)

    @property
    def config(self) -> CloudConfig:
        """Return the config of the client."""
        return self._config

    @property
    def user_id(self) -> str | None:
        """Return the user id of the session."""
        return self._state.user_id

    def url(self, path: str) -> str:
        """Return the full url of an api path."""
        return f"{self._config.api_url}/{path.lstrip('/')}"

    def _headers(self, *, encrypted: bool) -> dict[str, str]:
        state = self._state
        headers = {
            **self.COMMON_HEADERS,
            "User-Agent": state.agent,
            "Cookie": self._cookies.header(
                device_id=state.device_id,
                overrides={
                    "userId": state.user_id,
                    "serviceToken": state.service_token,
                },
            ),
        }
        if encrypted:
            headers.update(self.ENCRYPT_HEADERS)
        return headers

    async def send_encrypted(self, path: str, params: dict[str, Any]) -> Any:
        """Send an rc4 encrypted request and return the decrypted payload."""
        url = self.url(path)
        nonce = generate_nonce()
        ssecurity: str = self._state.ssecurity  # type: ignore[assignment]
        key = signed_nonce(ssecurity, nonce)
        enc_params = generate_enc_params(
            api_path(url), "POST", key, nonce, params, ssecurity
        )
        resp = await self._http_client.post(
            url, params=enc_params, headers=self._headers(encrypted=True)
        )
        if not resp.ok:
            raise HttpStatusError(
                f"{path} responded with an unexpected status code {resp.status}",
                status=resp.status,
            )
        return self._decrypt_response(key, resp.body, path)

    def _decrypt_response(self, key: str, body: bytes, path: str) -> Any:
        try:
            return json_loads(decrypt_rc4(key, body))
        except (CryptoError, ValueError) as ex:
            try:
                payload = json_loads(body)
            except ValueError:
                raise CryptoError(
                    f"Unable to decrypt the response of {path}: {ex}"
                ) from ex
            self._logger.debug("Received unencrypted response from %s", path)
            return payload

    async def send_plain(self, path: str, params: dict[str, Any]) -> Any:
        """Send an hmac signed request of the plain legacy api."""
        url = self.url(path)
        nonce = generate_nonce()
        key = signed_nonce(self._state.ssecurity, nonce)  # type: ignore[arg-type]
        fields = {
            "signature": generate_signature(api_path(url), key, nonce, params),
            "_nonce": nonce,
            **{name: str(value) for name, value in params.items()},
        }
        resp = await self._http_client.post(
            url, data=fields, headers=self._headers(encrypted=False)
        )
        if not resp.ok:
            raise HttpStatusError(
                f"{path} responded with an unexpected status code {resp.status}",
                status=resp.status,
            )
        try:
            return resp.json()
        except ValueError as ex:
            raise MiCloudException(
                f"Invalid json in the response of {path}: {ex}"
            ) from ex

    async def call(
        self, path: str, data: dict[str, Any] | str, *, encrypted: bool = True
    ) -> Any:
        """Call an api path and return its result.

        Raises :class:`ApiError` when the response code is not 0.
        """
        params = {"data": data if isinstance(data, str) else json_dumps(data)}
        if encrypted:
            response = await self.send_encrypted(path, params)
        else:
            response = await self.send_plain(path, params)

        if not isinstance(response, dict):
            raise ApiError(f"Unexpected response of {path}: {response!r}")
        if (code := response.get("code")) != 0:
            message = response.get("message") or response.get("desc") or "error"
            raise ApiError(f"{path} returned {message}", code=code)
        return response.get("result")

    async def close(self) -> None:
        """Close the http client."""
        await self._http_client.close()
