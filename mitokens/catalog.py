"""Progressive device catalog of a Xiaomi cloud account.

The catalog walks the homes of the account and the homes shared with it,
lists the devices of each home and fetches the beacon key of bluetooth
devices. Progress is reported as soon as something is known:

>>> catalog = DeviceCatalog.from_session(session)
>>> async for event in catalog.stream():
...     print(event.type, event.message)
status Fetching devices...
progress Getting homes...
progress Checking shared homes...
progress Found 1 home(s)
progress Getting devices from home 1/1 (Home)...
progress Found device: Lamp
complete None
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from mashumaro import field_options
from mashumaro.config import BaseConfig

from .config import CloudConfig
from .device import Device
from .exceptions import ApiError, MiCloudException, SessionExpiredError
from .json import DataClassJSONMixin
from .rpc import MiCloudRpc
from .state import SessionData

_LOGGER = logging.getLogger(__name__)

#: Sessions older than this are validated before use, in seconds
SESSION_VALIDATE_AFTER = 3600

HOMES_PATH = "/v2/homeroom/gethome"
DEVICE_COUNT_PATH = "/v2/user/get_device_cnt"
HOME_DEVICES_PATH = "/v2/home/home_device_list"
BEACON_KEY_PATH = "/v2/device/blt_get_beaconkey"


class EventType(StrEnum):
    """Type of a catalog event."""

    Status = "status"
    Progress = "progress"
    Complete = "complete"
    Error = "error"


class ProgressStep(StrEnum):
    """Step reported by a progress event."""

    Homes = "homes"
    Shared = "shared"
    HomesComplete = "homes_complete"
    Devices = "devices"
    BleKey = "ble_key"
    DeviceFound = "device_found"


class _EventBaseMixin(DataClassJSONMixin):
    """Base class for serialization mixin."""

    class Config(BaseConfig):
        """Serialization config."""

        omit_none = True
        serialize_by_alias = True


def _alias(name: str) -> Any:
    return field(default=None, metadata=field_options(alias=name))


@dataclass
class CatalogEvent(_EventBaseMixin):
    """A single event of the catalog stream."""

    type: EventType
    message: str | None = None
    step: ProgressStep | None = None
    current_home: int | None = _alias("currentHome")
    total_homes: int | None = _alias("totalHomes")
    total_devices: int | None = _alias("totalDevices")
    device_name: str | None = _alias("deviceName")
    device: Device | None = None
    devices: list[Device] | None = None

    @classmethod
    def progress(
        cls, step: ProgressStep, message: str, **kwargs: Any
    ) -> CatalogEvent:
        """Return a progress event."""
        return cls(EventType.Progress, message=message, step=step, **kwargs)


@dataclass
class Home:
    """A home of the account, owned or shared."""

    home_id: str
    owner: str
    name: str | None = None


class DeviceCatalog:
    """Enumerate the devices of every home the session can see."""

    def __init__(self, rpc: MiCloudRpc) -> None:
        self._rpc = rpc
        self._logger = rpc.config.logger or _LOGGER

    @classmethod
    def from_session(
        cls, session: SessionData, *, config: CloudConfig | None = None
    ) -> DeviceCatalog:
        """Return a catalog for a saved session."""
        return cls(MiCloudRpc.from_session(session, config=config))

    @staticmethod
    def needs_validation(session: SessionData) -> bool:
        """Return True if the session is too old to be used unchecked."""
        age = session.age()
        return age is not None and age > SESSION_VALIDATE_AFTER

    @property
    def region(self) -> str:
        """Return the server region of the catalog."""
        return self._rpc.config.region

    async def validate_session(self) -> bool:
        """Return True if the cloud still accepts the session."""
        try:
            await self._rpc.call(
                DEVICE_COUNT_PATH, {"fetch_own": True, "fetch_share": True}
            )
        except MiCloudException as ex:
            self._logger.debug("Session validation failed: %s", ex)
            return False
        return True

    async def get_homes(self) -> list[Home]:
        """Return the homes owned by the user."""
        try:
            result = await self._rpc.call(
                HOMES_PATH,
                {
                    "fg": True,
                    "fetch_share": True,
                    "fetch_share_dev": True,
                    "limit": 300,
                    "app_ver": 7,
                },
            )
        except ApiError as ex:
            self._logger.warning("Unable to get homes: %s", ex)
            return []

        owner = str(self._rpc.user_id)
        return [
            Home(home_id=str(home["id"]), owner=owner, name=home.get("name"))
            for home in _records(result, "homelist")
            if home.get("id") is not None
        ]

    async def get_shared_homes(self) -> list[Home]:
        """Return the homes other users share with the user."""
        try:
            result = await self._rpc.call(
                DEVICE_COUNT_PATH, {"fetch_own": True, "fetch_share": True}
            )
        except MiCloudException as ex:
            self._logger.warning("Unable to get shared homes: %s", ex)
            return []

        share = result.get("share") if isinstance(result, dict) else None
        return [
            Home(home_id=str(home["home_id"]), owner=str(home["home_owner"]))
            for home in _records(share, "share_family")
            if home.get("home_id") is not None and home.get("home_owner") is not None
        ]

    async def get_home_devices(self, home: Home) -> list[Device]:
        """Return the devices of a home, without beacon keys."""
        try:
            result = await self._rpc.call(
                HOME_DEVICES_PATH,
                {
                    "home_owner": _as_number(home.owner),
                    "home_id": _as_number(home.home_id),
                    "limit": 200,
                    "get_split_device": True,
                    "support_smart_home": True,
                },
            )
        except ApiError as ex:
            self._logger.warning(
                "Unable to get devices of home %s: %s", home.home_id, ex
            )
            return []

        return [
            Device.from_record(record)
            for record in _records(result, "device_info")
            if record.get("did")
        ]

    async def get_beacon_key(self, did: str) -> str | None:
        """Return the beacon key of a bluetooth device, if the cloud has one."""
        try:
            result = await self._rpc.call(BEACON_KEY_PATH, {"did": did, "pdid": 1})
        except MiCloudException as ex:
            self._logger.warning("Unable to get the beacon key of %s: %s", did, ex)
            return None
        if not isinstance(result, dict):
            return None
        return result.get("beaconkey") or None

    async def discover(self) -> AsyncGenerator[CatalogEvent, None]:
        """Yield progress events while walking the homes, then a complete event.

        Transport failures of the owned homes and device lists propagate.
        """
        yield CatalogEvent.progress(ProgressStep.Homes, "Getting homes...")
        homes: dict[str, Home] = {}
        for home in await self.get_homes():
            homes.setdefault(home.home_id, home)

        yield CatalogEvent.progress(ProgressStep.Shared, "Checking shared homes...")
        for home in await self.get_shared_homes():
            homes.setdefault(home.home_id, home)

        total_homes = len(homes)
        yield CatalogEvent.progress(
            ProgressStep.HomesComplete,
            f"Found {total_homes} home(s)",
            total_homes=total_homes,
        )

        devices: dict[str, Device] = {}
        for index, home in enumerate(homes.values(), start=1):
            name = f" ({home.name})" if home.name else ""
            yield CatalogEvent.progress(
                ProgressStep.Devices,
                f"Getting devices from home {index}/{total_homes}{name}...",
                current_home=index,
                total_homes=total_homes,
            )
            for device in await self.get_home_devices(home):
                if device.did in devices:
                    self._logger.debug("Skipping duplicate device %s", device.did)
                    continue
                if device.is_bluetooth:
                    yield CatalogEvent.progress(
                        ProgressStep.BleKey,
                        f"Fetching BLE key for {device.name}...",
                        device_name=device.name,
                    )
                    if beacon_key := await self.get_beacon_key(device.did):
                        device.extra["ble_key"] = beacon_key
                devices[device.did] = device
                yield CatalogEvent.progress(
                    ProgressStep.DeviceFound,
                    f"Found device: {device.name}",
                    device=device,
                    total_devices=len(devices),
                )

        self._logger.debug("Found %s devices in %s homes", len(devices), total_homes)
        yield CatalogEvent(EventType.Complete, devices=list(devices.values()))

    async def stream(
        self, *, validate: bool = False
    ) -> AsyncGenerator[CatalogEvent, None]:
        """Yield the event stream of a device fetch.

        Library errors end the stream with an error event instead of raising.
        """
        yield CatalogEvent(EventType.Status, message="Fetching devices...")
        try:
            if validate:
                yield CatalogEvent(EventType.Status, message="Validating session...")
                if not await self.validate_session():
                    yield CatalogEvent(EventType.Error, message="Session expired")
                    return
            async for event in self.discover():
                yield event
        except MiCloudException as ex:
            self._logger.debug("Device fetch failed: %s", ex)
            yield CatalogEvent(EventType.Error, message=str(ex))

    async def get_devices(self, *, validate: bool = False) -> list[Device]:
        """Return every device, raises instead of yielding an error event."""
        if validate and not await self.validate_session():
            raise SessionExpiredError("Session expired")
        devices: list[Device] = []
        async for event in self.discover():
            if event.type is EventType.Complete:
                devices = event.devices or []
        return devices

    async def close(self) -> None:
        """Close the underlying rpc client."""
        await self._rpc.close()


def _records(result: Any, key: str) -> list[dict[str, Any]]:
    """Return the dict entries of a list in an api result, skipping others."""
    records = result.get(key) if isinstance(result, dict) else None
    if not isinstance(records, list):
        return []
    return [record for record in records if isinstance(record, dict)]


def _as_number(value: str) -> int | str:
    # Home and owner ids are sent as json numbers
    return int(value) if value.isdigit() else value
