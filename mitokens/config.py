"""Configuration for talking to the Xiaomi cloud.

A :class:`CloudConfig` selects the server region and the transport behaviour.
It serializes to a plain dict so a caller can keep it next to a saved session:

>>> from mitokens import CloudConfig
>>> config = CloudConfig(region="de", timeout=20)
>>> config.to_dict()
{'region': 'de', 'timeout': 20, 'max_redirects': 5}
>>> CloudConfig.from_dict({"region": "sg"}).api_url
'https://sg.api.io.mi.com/app'

"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Self

from aiohttp import ClientSession
from mashumaro import field_options
from mashumaro.config import BaseConfig
from mashumaro.types import SerializationStrategy

from .exceptions import MiCloudException
from .json import DataClassJSONMixin

_LOGGER = logging.getLogger(__name__)

DEFAULT_REGION = "cn"
#: Every server region the cloud is known to run
ALL_REGIONS = ["cn", "de", "us", "ru", "tw", "sg", "in", "i2"]


def api_url(region: str) -> str:
    """Return the base url of the device api for a region."""
    if region not in ALL_REGIONS:
        raise MiCloudException(f"Unknown server region: {region}")
    if region == DEFAULT_REGION:
        return "https://api.io.mi.com/app"
    return f"https://{region}.api.io.mi.com/app"


class _DoNotSerialize(SerializationStrategy):
    def serialize(self, value: Any) -> None:
        return None

    def deserialize(self, value: Any) -> None:
        return None


class _CloudConfigBaseMixin(DataClassJSONMixin):
    """Base class for serialization mixin."""

    class Config(BaseConfig):
        """Serialization config."""

        omit_none = True


@dataclass
class CloudConfig(_CloudConfigBaseMixin):
    """Class to represent parameters that determine how to reach the cloud."""

    DEFAULT_TIMEOUT = 10
    DEFAULT_MAX_REDIRECTS = 5

    #: Server region of the device api, see :data:`ALL_REGIONS`
    region: str = DEFAULT_REGION
    #: Timeout in seconds for a single request
    timeout: int | None = DEFAULT_TIMEOUT
    #: Upper bound of redirects followed after a verified 2FA ticket
    max_redirects: int = DEFAULT_MAX_REDIRECTS

    # compare=False will be excluded from object comparison.
    #: Set a custom http_client to use, it must use an aiohttp.DummyCookieJar
    http_client: ClientSession | None = field(
        default=None,
        compare=False,
        metadata=field_options(serialization_strategy=_DoNotSerialize()),
    )
    #: Logger receiving the protocol trace, defaults to the module loggers
    logger: logging.Logger | logging.LoggerAdapter | None = field(
        default=None,
        compare=False,
        metadata=field_options(serialization_strategy=_DoNotSerialize()),
    )

    def __post_init__(self) -> None:
        if self.region not in ALL_REGIONS:
            raise MiCloudException(f"Unknown server region: {self.region}")

    def __pre_serialize__(self) -> Self:
        return replace(self, http_client=None, logger=None)

    @property
    def api_url(self) -> str:
        """Base url of the device api for the configured region."""
        return api_url(self.region)

    def with_region(self, region: str) -> CloudConfig:
        """Return a copy of the config pointing at another region."""
        return replace(self, region=region)
