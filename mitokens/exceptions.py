"""mitokens exceptions."""

from __future__ import annotations

from asyncio import TimeoutError as _asyncioTimeoutError
from enum import StrEnum
from typing import Any


class LoginStep(StrEnum):
    """Steps of the login protocol, used to tag errors."""

    STEP1 = "step1"
    STEP2 = "step2"
    IDENTITY_LIST = "identity_list"
    VERIFY = "verify"
    STEP3 = "step3"


class MiCloudException(Exception):
    """Base exception for library errors."""


class TimeoutError(MiCloudException, _asyncioTimeoutError):
    """Timeout exception for cloud requests."""

    def __repr__(self) -> str:
        return MiCloudException.__repr__(self)

    def __str__(self) -> str:
        return MiCloudException.__str__(self)


class _ConnectionError(MiCloudException):
    """Connection exception for cloud requests."""


class HttpStatusError(MiCloudException):
    """The cloud answered with an unexpected http status code."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        self.status: int | None = kwargs.get("status")
        super().__init__(*args)


class CryptoError(MiCloudException):
    """Signing or payload cipher failure.

    Raised for malformed base64 input or ciphertext that does not decrypt to
    the expected payload. This usually means a key mismatch on our side rather
    than a rejection by the cloud.
    """


class LoginError(MiCloudException):
    """Base exception for failures of a login step."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        self.step: LoginStep | None = kwargs.get("step")
        self.reason: str | None = kwargs.get("reason") or (
            str(args[0]) if args else None
        )
        super().__init__(*args)

    def __repr__(self) -> str:
        step = repr(self.step) if self.step else ""
        return f"{self.__class__.__name__}({step})"

    def __str__(self) -> str:
        step = f" (step={self.step})" if self.step else ""
        return super().__str__() + step


class ProtocolError(LoginError):
    """An expected field was missing at a step boundary."""


class AuthenticationError(LoginError):
    """The cloud rejected the credentials or the verification ticket."""


class TwoFactorStateError(AuthenticationError):
    """The session secret could not be obtained after a verified 2FA ticket."""


class SessionExpiredError(MiCloudException):
    """A saved session is no longer accepted by the cloud."""


class ApiError(MiCloudException):
    """An encrypted api call returned a non-zero result code."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        self.code: int | None = kwargs.get("code")
        super().__init__(*args)

    def __str__(self) -> str:
        code = f" (code={self.code})" if self.code is not None else ""
        return super().__str__() + code
