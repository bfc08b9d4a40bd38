"""Python interface for the Xiaomi cloud device tokens.

Login, then list the devices of every home together with their tokens::

>>> from mitokens import Credentials, DeviceCatalog, MiCloudAuth
>>> auth = MiCloudAuth(Credentials("user@example.com", "password"))
>>> result = await auth.login()
>>> if result.requires_2fa:
...     session = await auth.complete_verification(input("Code: "))
... else:
...     session = result.session
>>> devices = await DeviceCatalog.from_session(session).get_devices()

Errors are raised as `MiCloudException` subclasses and are expected
to be handled by the user of the library.
"""

from mitokens.auth import LoginResult, MiCloudAuth
from mitokens.catalog import CatalogEvent, DeviceCatalog, EventType, ProgressStep
from mitokens.config import ALL_REGIONS, CloudConfig
from mitokens.credentials import Credentials
from mitokens.device import Device
from mitokens.exceptions import (
    ApiError,
    AuthenticationError,
    CryptoError,
    HttpStatusError,
    LoginError,
    LoginStep,
    MiCloudException,
    ProtocolError,
    SessionExpiredError,
    TimeoutError,
    TwoFactorStateError,
)
from mitokens.rpc import MiCloudRpc
from mitokens.state import ClientState, LoginStage, SessionData
from mitokens.version import __version__

__all__ = [
    "__version__",
    "ALL_REGIONS",
    "ApiError",
    "AuthenticationError",
    "CatalogEvent",
    "ClientState",
    "CloudConfig",
    "Credentials",
    "CryptoError",
    "Device",
    "DeviceCatalog",
    "EventType",
    "HttpStatusError",
    "LoginError",
    "LoginResult",
    "LoginStage",
    "LoginStep",
    "MiCloudAuth",
    "MiCloudException",
    "MiCloudRpc",
    "ProgressStep",
    "ProtocolError",
    "SessionData",
    "SessionExpiredError",
    "TimeoutError",
    "TwoFactorStateError",
]
