"""Device records as listed by the home api."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from mashumaro import field_options
from mashumaro.config import BaseConfig

from .json import DataClassJSONMixin

#: Devices whose did contains this marker are bluetooth devices
BLUETOOTH_MARKER = "blt"


class _DeviceBaseMixin(DataClassJSONMixin):
    """Base class for serialization mixin."""

    class Config(BaseConfig):
        """Serialization config."""

        omit_none = True
        serialize_by_alias = True


@dataclass
class Device(_DeviceBaseMixin):
    """A device of one of the user's homes."""

    did: str
    name: str = ""
    model: str = ""
    token: str = field(default="", repr=False)
    ip: str | None = None
    mac: str | None = None
    ssid: str | None = None
    bssid: str | None = None
    rssi: int | None = None
    is_online: bool = field(default=False, metadata=field_options(alias="isOnline"))
    desc: str | None = None
    #: Free form extra data, ``ble_key`` holds the beacon key of ble devices
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def is_bluetooth(self) -> bool:
        """Return True for bluetooth devices."""
        return BLUETOOTH_MARKER in self.did

    @property
    def ble_key(self) -> str | None:
        """Return the beacon key, if one was fetched."""
        return self.extra.get("ble_key")

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> Device:
        """Create a device from a record of the home device list."""
        rssi = record.get("rssi")
        extra = record.get("extra")
        return cls(
            did=str(record["did"]),
            name=record.get("name") or "",
            model=record.get("model") or "",
            token=record.get("token") or "",
            ip=record.get("localip") or None,
            mac=record.get("mac") or None,
            ssid=record.get("ssid") or None,
            bssid=record.get("bssid") or None,
            rssi=_int_or_none(rssi),
            is_online=bool(record.get("isOnline")),
            desc=record.get("desc") or None,
            extra=dict(extra) if isinstance(extra, dict) else {},
        )


def _int_or_none(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
