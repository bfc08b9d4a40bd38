"""Implementation of the Xiaomi account login.

The account service uses a three step login, with an optional two factor
branch between the second and the third step.

step1: GET serviceLogin with a ``userId`` cookie. The JSON body, prefixed with
``&&&START&&&``, carries a rotating ``_sign`` token.

step2: POST serviceLoginAuth2 with the user, the md5 password hash and
``_sign``. A successful login returns the session secret ``ssecurity``
together with ``userId``, ``cUserId``, ``passToken`` and a ``location`` url.
When a second factor is required the service still returns an ``ssecurity``
field, but with a short placeholder value, and a ``notificationUrl``. Only a
``ssecurity`` longer than four characters counts as a login.

2fa: the identity options (phone=4, email=8) are listed from the
notification url with ``authStart`` replaced by ``list``. The ticket entered
by the user is posted to the verify endpoint of each option in turn until one
answers with code 0. The returned location starts a redirect chain that sets
``userId``, ``serviceToken`` and friends as cookies. Its final url carries a
``nonce`` which is *not* the ``ssecurity``; step2 is run again to obtain the
real session secret, now without a second factor.

step3: GET the ``location`` of step2. A 2xx response setting the
``serviceToken`` cookie completes the login.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any

from yarl import URL

from .config import CloudConfig
from .cookies import FIXED_COOKIES, CookieTracker, follow_redirects
from .credentials import Credentials
from .exceptions import (
    AuthenticationError,
    HttpStatusError,
    LoginStep,
    MiCloudException,
    ProtocolError,
    TwoFactorStateError,
)
from .httpclient import HttpClient, HttpResponse
from .state import ClientState, LoginStage, SessionData

_LOGGER = logging.getLogger(__name__)

ACCOUNT_URL = URL("https://account.xiaomi.com")
SERVICE_LOGIN_URL = (ACCOUNT_URL / "pass" / "serviceLogin").with_query(
    sid="xiaomiio", _json="true"
)
LOGIN_AUTH_URL = ACCOUNT_URL / "pass" / "serviceLoginAuth2"
STS_CALLBACK_URL = "https://sts.api.io.mi.com/sts"

#: A ssecurity of this length or shorter is the 2fa placeholder
MIN_SSECURITY_LENGTH = 4

FLAG_PHONE = 4
FLAG_EMAIL = 8
VERIFY_PATHS = {
    FLAG_PHONE: "/identity/auth/verifyPhone",
    FLAG_EMAIL: "/identity/auth/verifyEmail",
}


@dataclass
class LoginResult:
    """Outcome of a login attempt."""

    stage: LoginStage
    requires_2fa: bool = False
    verify_url: str | None = None
    session: SessionData | None = None

    @property
    def success(self) -> bool:
        """Return True unless the login waits for a second factor."""
        return not self.requires_2fa


class MiCloudAuth:
    """Login to the Xiaomi cloud and export the resulting session."""

    def __init__(
        self,
        credentials: Credentials | None = None,
        *,
        config: CloudConfig | None = None,
        state: ClientState | None = None,
    ) -> None:
        self._config = config or CloudConfig()
        if state is None:
            if not credentials or not credentials.username:
                raise MiCloudException("Credentials must be supplied to login")
            state = ClientState(
                username=credentials.username, password=credentials.password
            )
        self._state = state
        self._http_client = HttpClient(self._config)
        self._cookies = CookieTracker(state.cookies, device_id=state.device_id)
        self._logger = self._config.logger or _LOGGER

        self._logger.debug("Created login for %s", state.username)

    @classmethod
    def from_state(
        cls, state: ClientState | dict[str, Any], *, config: CloudConfig | None = None
    ) -> MiCloudAuth:
        """Resume a login from a serialized client state."""
        if isinstance(state, dict):
            state = ClientState.from_dict(state)
        return cls(config=config, state=state)

    @classmethod
    def from_session(
        cls, session: SessionData, *, config: CloudConfig | None = None
    ) -> MiCloudAuth:
        """Return an authenticated instance for a saved session."""
        return cls(config=config, state=session.to_state())

    @property
    def state(self) -> ClientState:
        """The client state, serialize it with ``to_dict()``."""
        return self._state

    @property
    def stage(self) -> LoginStage:
        """The current login stage."""
        return self._state.stage

    def export_session(self) -> SessionData:
        """Return the session of a completed login."""
        return SessionData.from_state(self._state)

    def _expect(self, step: LoginStep, *stages: LoginStage) -> None:
        if self._state.stage not in stages:
            raise ProtocolError(
                f"Cannot run {step} in stage {self._state.stage.name}",
                step=step,
                reason=f"unexpected stage {self._state.stage.value}",
            )

    def _headers(self, *, cookie: str | None = None, form: bool = True) -> dict:
        headers = {"User-Agent": self._state.agent}
        if form:
            headers["Content-Type"] = "application/x-www-form-urlencoded"
        if cookie:
            headers["Cookie"] = cookie
        return headers

    def _cookie_header(self) -> str:
        state = self._state
        return self._cookies.header(
            device_id=state.device_id,
            overrides={
                "userId": state.user_id,
                "serviceToken": state.service_token,
                "passToken": state.pass_token,
                "cUserId": state.c_user_id,
            },
        )

    async def _fetch(
        self, method: str, url: URL, *, step: LoginStep, **kwargs: Any
    ) -> HttpResponse:
        resp = await self._http_client.request(method, url, **kwargs)
        self._cookies.update_from_response(resp)
        self._logger.debug("%s responded with status %s", step, resp.status)
        return resp

    async def login(self) -> LoginResult:
        """Run the login until it completes or needs a second factor."""
        if not await self.login_step1():
            raise ProtocolError(
                "Login step 1 failed, no sign in response",
                step=LoginStep.STEP1,
                reason="missing _sign",
            )

        result = await self.login_step2()
        if result.requires_2fa:
            return result

        if not await self.login_step3():
            raise ProtocolError(
                "Login step 3 failed, no serviceToken received",
                step=LoginStep.STEP3,
                reason="missing serviceToken",
            )
        return LoginResult(self._state.stage, session=self.export_session())

    async def login_step1(self) -> bool:
        """Fetch the anti forgery sign token, returns False if absent."""
        self._expect(LoginStep.STEP1, LoginStage.FRESH, LoginStage.STEP1_DONE)
        self._cookies.set("sdkVersion", FIXED_COOKIES["sdkVersion"])
        self._cookies.set("deviceId", self._state.device_id)

        resp = await self._fetch(
            "GET",
            SERVICE_LOGIN_URL,
            step=LoginStep.STEP1,
            headers=self._headers(cookie=f"userId={self._state.username}"),
        )
        try:
            data = resp.json()
        except ValueError as ex:
            self._logger.debug("Login step 1 response is not json: %s", ex)
            return False

        if isinstance(data, dict) and (sign := data.get("_sign")):
            self._state.sign = sign
            self._state.stage = LoginStage.STEP1_DONE
            self._logger.debug("Login step 1 got sign")
            return True

        self._logger.debug("Login step 1 response has no sign")
        return False

    async def login_step2(self) -> LoginResult:
        """Post the credentials.

        Returns a result with ``requires_2fa`` set when the account asks for
        a second factor, raises :class:`AuthenticationError` when the login
        is rejected.
        """
        self._expect(
            LoginStep.STEP2,
            LoginStage.STEP1_DONE,
            LoginStage.AWAITING_VERIFICATION,
            LoginStage.VERIFICATION_SUBMITTED,
        )
        state = self._state
        self._logger.debug(
            "Login step 2 with sign %s", "present" if state.sign else "missing"
        )
        fields = {
            "sid": "xiaomiio",
            "hash": state.credentials.password_hash,
            "callback": STS_CALLBACK_URL,
            "qs": "%3Fsid%3Dxiaomiio%26_json%3Dtrue",
            "user": state.username,
            "_sign": state.sign or "",
            "_json": "true",
        }
        resp = await self._fetch(
            "POST",
            LOGIN_AUTH_URL,
            step=LoginStep.STEP2,
            data=fields,
            headers=self._headers(cookie=self._cookie_header()),
        )
        if not resp.ok:
            raise HttpStatusError(
                f"Login step 2 responded with an unexpected status code {resp.status}",
                status=resp.status,
            )
        try:
            data = resp.json()
        except ValueError as ex:
            raise ProtocolError(
                f"Login step 2 response is not json: {ex}",
                step=LoginStep.STEP2,
                reason="invalid json",
            ) from ex
        if not isinstance(data, dict):
            raise ProtocolError(
                "Login step 2 response is not an object",
                step=LoginStep.STEP2,
                reason="invalid json",
            )

        ssecurity = data.get("ssecurity")
        if isinstance(ssecurity, str) and len(ssecurity) > MIN_SSECURITY_LENGTH:
            state.ssecurity = ssecurity
            state.user_id = _as_str(data.get("userId"))
            state.c_user_id = _as_str(data.get("cUserId"))
            state.pass_token = _as_str(data.get("passToken"))
            state.location = _as_str(data.get("location"))
            state.code = data.get("code")
            state.stage = LoginStage.AUTHENTICATED
            self._logger.debug(
                "Login step 2 succeeded for user %s, location %s",
                state.user_id,
                "present" if state.location else "missing",
            )
            return LoginResult(state.stage)

        if verify_url := data.get("notificationUrl"):
            state.verify_url = verify_url
            state.stage = LoginStage.AWAITING_VERIFICATION
            self._logger.debug("Login step 2 requires a second factor")
            return LoginResult(state.stage, requires_2fa=True, verify_url=verify_url)

        desc = data.get("desc") or "Login failed"
        self._logger.debug("Login step 2 rejected: %s", desc)
        raise AuthenticationError(desc, step=LoginStep.STEP2, reason=desc)

    async def check_identity_options(self) -> list[int]:
        """List the verification channels of the account.

        Never raises for transport or parse failures, the phone channel is
        assumed instead.
        """
        state = self._state
        state.require(LoginStep.IDENTITY_LIST, "verify_url")
        list_url = state.verify_url.replace(  # type: ignore[union-attr]
            "identity/authStart", "identity/list"
        )
        try:
            resp = await self._fetch(
                "GET",
                URL(list_url, encoded=True),
                step=LoginStep.IDENTITY_LIST,
                headers=self._headers(cookie=self._cookie_header(), form=False),
            )
        except MiCloudException as ex:
            self._logger.warning("Unable to list identity options: %s", ex)
            options = [FLAG_PHONE]
        else:
            if identity_session := self._cookies.get("identity_session"):
                state.identity_session = identity_session
            options = self._parse_identity_options(resp)

        state.identity_options = options
        self._logger.debug("Identity options: %s", options)
        return options

    def _parse_identity_options(self, resp: HttpResponse) -> list[int]:
        try:
            data = resp.json()
            flag = data.get("flag") or FLAG_PHONE
            return [int(option) for option in data.get("options") or [flag]]
        except (ValueError, TypeError, AttributeError) as ex:
            self._logger.debug("Unable to parse identity options: %s", ex)
            return [FLAG_PHONE]

    async def verify_ticket(self, ticket: str) -> bool:
        """Submit the ticket the user received on one of the identity options."""
        self._expect(LoginStep.VERIFY, LoginStage.AWAITING_VERIFICATION)
        state = self._state
        if not state.identity_options:
            await self.check_identity_options()

        for flag in list(state.identity_options):
            if (path := VERIFY_PATHS.get(flag)) is None:
                self._logger.debug("Skipping unknown identity option %s", flag)
                continue

            url = URL(f"{ACCOUNT_URL}{path}").with_query(
                _dc=str(int(time.time() * 1000))
            )
            cookie = self._cookie_header()
            if state.identity_session and not self._cookies.get("identity_session"):
                cookie += f"; identity_session={state.identity_session}"
            fields = {
                "_flag": str(flag),
                "ticket": ticket,
                "trust": "true",
                "_json": "true",
            }
            try:
                resp = await self._fetch(
                    "POST",
                    url,
                    step=LoginStep.VERIFY,
                    data=fields,
                    headers=self._headers(cookie=cookie),
                )
                result = resp.json()
            except (MiCloudException, ValueError) as ex:
                self._logger.debug("Verification with option %s failed: %s", flag, ex)
                continue

            if not isinstance(result, dict) or result.get("code") != 0:
                self._logger.debug(
                    "Verification with option %s rejected: %s",
                    flag,
                    result.get("code") if isinstance(result, dict) else result,
                )
                continue

            self._logger.debug("Verification succeeded with option %s", flag)
            if location := result.get("location"):
                await self._follow_location(location)
            self._finish_verification()
            return True

        raise AuthenticationError(
            "Invalid verification code",
            step=LoginStep.VERIFY,
            reason="invalid verification code",
        )

    async def _follow_location(self, location: str) -> None:
        async def fetch(url: URL) -> HttpResponse:
            return await self._http_client.get(
                url, headers=self._headers(cookie=self._cookie_header(), form=False)
            )

        try:
            final_url = await follow_redirects(
                fetch,
                URL(location, encoded=True),
                self._cookies,
                max_hops=self._config.max_redirects,
            )
        except MiCloudException as ex:
            # The retried step 2 decides whether the login went through
            self._logger.warning("Unable to follow verification redirect: %s", ex)
            return

        if "nonce" in final_url.query:
            self._logger.debug(
                "Ignoring nonce of %s, it is not the ssecurity", final_url.host
            )

    def _finish_verification(self) -> None:
        state = self._state
        state.identity_session = None
        for name, attr in (
            ("userId", "user_id"),
            ("serviceToken", "service_token"),
            ("passToken", "pass_token"),
            ("cUserId", "c_user_id"),
        ):
            if value := self._cookies.get(name):
                setattr(state, attr, value)
        state.stage = LoginStage.VERIFICATION_SUBMITTED

    async def complete_verification(self, ticket: str) -> SessionData:
        """Verify the ticket and finish the login, returns the session."""
        await self.check_identity_options()
        await self.verify_ticket(ticket)

        if not self._state.sign:
            raise TwoFactorStateError(
                "Missing sign after 2FA, the client state lost the step 1 token",
                step=LoginStep.STEP2,
                reason="missing sign after 2FA",
            )

        self._logger.debug("Retrying login step 2 to get the ssecurity")
        result = await self.login_step2()
        if result.requires_2fa:
            raise TwoFactorStateError(
                "Session state not properly maintained after 2FA",
                step=LoginStep.STEP2,
                reason="state not maintained across 2FA",
            )

        if not await self.login_step3():
            raise ProtocolError(
                "Login step 3 failed after 2FA, no serviceToken received",
                step=LoginStep.STEP3,
                reason="missing serviceToken",
            )
        return self.export_session()

    async def login_step3(self) -> bool:
        """Exchange the location for the service token, returns success."""
        self._expect(LoginStep.STEP3, LoginStage.AUTHENTICATED)
        state = self._state
        state.require(LoginStep.STEP3, "location")

        resp = await self._fetch(
            "GET",
            URL(state.location, encoded=True),  # type: ignore[arg-type]
            step=LoginStep.STEP3,
            headers=self._headers(),
        )
        if not resp.ok:
            self._logger.warning(
                "Login step 3 responded with status code %s", resp.status
            )
            return False

        if not (service_token := self._cookies.get("serviceToken")):
            self._logger.warning("Login step 3 did not set a serviceToken")
            return False

        state.service_token = service_token
        state.stage = LoginStage.TOKEN_EXCHANGED
        self._logger.debug("Login step 3 complete")
        return True

    async def close(self) -> None:
        """Close the http client."""
        await self._http_client.close()


def _as_str(value: Any) -> str | None:
    return None if value is None else str(value)
