import hashlib
import logging

import aiohttp
import pytest

from mitokens.config import ALL_REGIONS, CloudConfig, api_url
from mitokens.credentials import Credentials
from mitokens.device import Device
from mitokens.exceptions import MiCloudException
from mitokens.json import dumps as json_dumps
from mitokens.json import loads as json_loads
from mitokens.json import loads_wrapped

from .fakecloud import LAMP, MOCK_PASSWORD, MOCK_USER, THERMOMETER


@pytest.mark.parametrize(
    ("region", "url"),
    [
        pytest.param("cn", "https://api.io.mi.com/app", id="cn"),
        pytest.param("us", "https://us.api.io.mi.com/app", id="us"),
        pytest.param("sg", "https://sg.api.io.mi.com/app", id="sg"),
    ],
)
def test_api_url(region, url):
    assert api_url(region) == url
    assert CloudConfig(region=region).api_url == url


def test_unknown_region():
    with pytest.raises(MiCloudException, match="Unknown server region: xx"):
        api_url("xx")
    with pytest.raises(MiCloudException, match="Unknown server region"):
        CloudConfig(region="xx")


async def test_serialization():
    """Test the transport objects are never serialized."""
    http_client = aiohttp.ClientSession()
    config = CloudConfig(
        region="de",
        timeout=20,
        http_client=http_client,
        logger=logging.getLogger(__name__),
    )
    config_dict = config.to_dict()

    assert config_dict == {"region": "de", "timeout": 20, "max_redirects": 5}
    assert CloudConfig.from_dict(json_loads(json_dumps(config_dict))) == config
    assert config.http_client is http_client
    await http_client.close()


def test_with_region():
    config = CloudConfig(timeout=3)
    other = config.with_region("i2")

    assert other.region == "i2"
    assert other.timeout == 3
    assert config.region == "cn"
    assert len(ALL_REGIONS) == 8


def test_password_hash():
    credentials = Credentials(MOCK_USER, MOCK_PASSWORD)
    expected = hashlib.md5(MOCK_PASSWORD.encode()).hexdigest().upper()  # noqa: S324

    assert credentials.password_hash == expected
    assert MOCK_PASSWORD not in repr(credentials)


@pytest.mark.parametrize(
    "body",
    [
        pytest.param('&&&START&&&{"code":0}', id="wrapped"),
        pytest.param(b'&&&START&&&{"code":0}', id="wrapped-bytes"),
        pytest.param('{"code":0}', id="plain"),
    ],
)
def test_loads_wrapped(body):
    assert loads_wrapped(body) == {"code": 0}


def test_device_from_record():
    device = Device.from_record(LAMP)

    assert device.did == "123456"
    assert device.name == "Lamp"
    assert device.ip == "192.168.1.10"
    assert device.rssi == -50
    assert device.is_online
    assert not device.is_bluetooth
    assert device.extra == {"fw_version": "1.0.0"}
    assert LAMP["token"] not in repr(device)


def test_device_from_sparse_record():
    device = Device.from_record(dict(THERMOMETER, did="blt.3.abcdef", rssi="n/a"))

    assert device.is_bluetooth
    assert device.rssi is None
    assert device.ip is None
    assert device.ble_key is None
    assert device.extra == {}


def test_device_serialization():
    device = Device.from_record(THERMOMETER)
    device.extra["ble_key"] = "00ff"

    assert device.to_dict() == {
        "did": "blt.3.abcdef",
        "name": "Thermometer",
        "model": "miaomiaoce.sensor_ht.t2",
        "token": "",
        "isOnline": False,
        "extra": {"ble_key": "00ff"},
    }
    assert Device.from_dict(device.to_dict()) == device
    assert device.ble_key == "00ff"
