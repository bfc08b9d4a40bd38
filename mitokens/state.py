"""Client state of a login and the session exported from it.

:class:`ClientState` is the complete snapshot of an in-flight or finished
login. It serializes to a plain dict so step two of the flow (the 2FA ticket
submission) can run in a different process than step one:

>>> state = auth.state.to_dict()
>>> # ... store the dict, ask the user for the ticket ...
>>> auth = MiCloudAuth.from_state(state)
>>> session = await auth.complete_verification(ticket)

:class:`SessionData` is the minimal subset a caller persists to make
encrypted api calls later without logging in again.
"""

from __future__ import annotations

import secrets
import string
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from mashumaro import field_options
from mashumaro.config import BaseConfig

from .credentials import Credentials
from .exceptions import LoginStep, ProtocolError
from .json import DataClassJSONMixin

APP_AGENT_SUFFIX = "APP/com.xiaomi.mihome APPV/10.5.201"


def generate_agent() -> str:
    """Return a random user agent in the format of the mobile app."""
    agent_id = "".join(secrets.choice("ABCDE") for _ in range(13))
    random_text = "".join(secrets.choice(string.ascii_lowercase) for _ in range(18))
    return f"{random_text}-{agent_id} {APP_AGENT_SUFFIX}"


def generate_device_id() -> str:
    """Return a random device id of six lowercase letters."""
    return "".join(secrets.choice(string.ascii_lowercase) for _ in range(6))


class LoginStage(Enum):
    """Enum for the login stage of a client state."""

    FRESH = "fresh"
    STEP1_DONE = "step1_done"
    AWAITING_VERIFICATION = "awaiting_verification"
    VERIFICATION_SUBMITTED = "verification_submitted"
    AUTHENTICATED = "authenticated"
    TOKEN_EXCHANGED = "token_exchanged"


class _StateBaseMixin(DataClassJSONMixin):
    """Base class for serialization mixin."""

    class Config(BaseConfig):
        """Serialization config."""

        serialize_by_alias = True


def _alias(name: str, default: Any = None) -> Any:
    return field(default=default, metadata=field_options(alias=name))


@dataclass
class ClientState(_StateBaseMixin):
    """Everything needed to resume a login at the point it stopped."""

    username: str
    password: str = field(default="", repr=False)
    agent: str = field(default_factory=generate_agent)
    device_id: str = field(
        default_factory=generate_device_id, metadata=field_options(alias="deviceId")
    )
    cookies: dict[str, str] = field(default_factory=dict, repr=False)
    stage: LoginStage = LoginStage.FRESH

    sign: str | None = field(default=None, repr=False)
    ssecurity: str | None = field(default=None, repr=False)
    user_id: str | None = _alias("userId")
    c_user_id: str | None = _alias("cUserId")
    pass_token: str | None = field(
        default=None, repr=False, metadata=field_options(alias="passToken")
    )
    location: str | None = field(default=None, repr=False)
    code: int | str | None = None
    service_token: str | None = field(
        default=None, repr=False, metadata=field_options(alias="serviceToken")
    )

    verify_url: str | None = _alias("verifyUrl")
    identity_session: str | None = field(
        default=None, repr=False, metadata=field_options(alias="identitySession")
    )
    identity_options: list[int] = field(
        default_factory=list, metadata=field_options(alias="identityOptions")
    )

    @classmethod
    def __pre_deserialize__(cls, d: dict[Any, Any]) -> dict[Any, Any]:
        if "stage" in d:
            return d
        # Records without a stage are resumed from the furthest step they hold
        if d.get("ssecurity") and d.get("serviceToken"):
            stage = LoginStage.TOKEN_EXCHANGED
        elif d.get("ssecurity") and len(d["ssecurity"]) > 4:
            stage = LoginStage.AUTHENTICATED
        elif d.get("verifyUrl"):
            stage = LoginStage.AWAITING_VERIFICATION
        elif d.get("sign"):
            stage = LoginStage.STEP1_DONE
        else:
            stage = LoginStage.FRESH
        return {**d, "stage": stage.value}

    @property
    def credentials(self) -> Credentials:
        """Return the account credentials of the state."""
        return Credentials(self.username, self.password)

    @property
    def is_authenticated(self) -> bool:
        """Return True if the state holds both session secrets."""
        return bool(self.ssecurity) and bool(self.service_token)

    def require(self, step: LoginStep, *names: str) -> None:
        """Raise ProtocolError if any of the named fields is empty."""
        if missing := [name for name in names if not getattr(self, name)]:
            raise ProtocolError(
                f"Missing {', '.join(missing)} before {step}",
                step=step,
                reason=f"missing {', '.join(missing)}",
            )


@dataclass
class SessionData(_StateBaseMixin):
    """Session of an authenticated login as handed to the caller."""

    username: str
    user_id: str = _alias("userId", "")
    service_token: str = field(
        default="", repr=False, metadata=field_options(alias="serviceToken")
    )
    ssecurity: str = field(default="", repr=False)
    cookies: dict[str, str] = field(default_factory=dict, repr=False)
    device_id: str = field(
        default_factory=generate_device_id, metadata=field_options(alias="deviceId")
    )
    saved_at: datetime | None = _alias("savedAt")

    @classmethod
    def __pre_deserialize__(cls, d: dict[Any, Any]) -> dict[Any, Any]:
        # Older exports used snake case for the device id
        if "deviceId" not in d and "device_id" in d:
            d = {**d, "deviceId": d["device_id"]}
        return d

    @classmethod
    def from_state(cls, state: ClientState) -> SessionData:
        """Export the session of an authenticated client state."""
        if not state.is_authenticated or not state.user_id:
            raise ProtocolError(
                "Client state is not authenticated",
                step=LoginStep.STEP3,
                reason="missing ssecurity or serviceToken",
            )
        return cls(
            username=state.username,
            user_id=state.user_id,
            service_token=state.service_token,  # type: ignore[arg-type]
            ssecurity=state.ssecurity,  # type: ignore[arg-type]
            cookies=dict(state.cookies),
            device_id=state.device_id,
            saved_at=datetime.now(UTC),
        )

    def to_state(self) -> ClientState:
        """Return an authenticated client state for this session."""
        cookies = dict(self.cookies)
        cookies["userId"] = self.user_id
        cookies["serviceToken"] = self.service_token
        cookies["yetAnotherServiceToken"] = self.service_token
        return ClientState(
            username=self.username,
            device_id=self.device_id or generate_device_id(),
            cookies=cookies,
            stage=LoginStage.TOKEN_EXCHANGED,
            ssecurity=self.ssecurity,
            user_id=self.user_id,
            service_token=self.service_token,
            pass_token=cookies.get("passToken"),
            c_user_id=cookies.get("cUserId"),
        )

    def age(self, now: datetime | None = None) -> float | None:
        """Return the seconds since the session was saved, if known."""
        if self.saved_at is None:
            return None
        saved_at = self.saved_at
        if saved_at.tzinfo is None:
            saved_at = saved_at.replace(tzinfo=UTC)
        return ((now or datetime.now(UTC)) - saved_at).total_seconds()
