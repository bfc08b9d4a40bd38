from __future__ import annotations

import pytest

from mitokens.config import CloudConfig
from mitokens.exceptions import (
    ApiError,
    CryptoError,
    HttpStatusError,
    ProtocolError,
)
from mitokens.rpc import MiCloudRpc
from mitokens.state import ClientState

from .fakecloud import MOCK_SERVICE_TOKEN, MOCK_USER, FakeMiCloud, mock_cloud


async def test_call(cloud, session):
    rpc = MiCloudRpc.from_session(session)
    result = await rpc.call("/v2/homeroom/gethome", {"fg": True})
    await rpc.close()

    assert result == {
        "homelist": [{"id": 1001, "name": "Home"}, {"id": 1002, "name": "Office"}]
    }
    assert cloud.api_calls == [("/v2/homeroom/gethome", {"fg": True})]

    headers = cloud.api_headers
    assert headers["MIOT-ENCRYPT-ALGORITHM"] == "ENCRYPT-RC4"
    assert headers["x-xiaomi-protocal-flag-cli"] == "PROTOCAL-HTTP2"
    assert headers["Accept-Encoding"] == "identity"
    assert headers["Content-Type"] == "application/x-www-form-urlencoded"
    assert headers["User-Agent"].endswith("APP/com.xiaomi.mihome APPV/10.5.201")
    assert f"yetAnotherServiceToken={MOCK_SERVICE_TOKEN}" in headers["Cookie"]
    assert f"deviceId={session.device_id}" in headers["Cookie"]


async def test_call_with_string_data(cloud, session):
    rpc = MiCloudRpc.from_session(session)
    await rpc.call("/v2/device/blt_get_beaconkey", '{"did":"blt.3.abcdef","pdid":1}')
    await rpc.close()

    assert cloud.api_calls == [
        ("/v2/device/blt_get_beaconkey", {"did": "blt.3.abcdef", "pdid": 1})
    ]


async def test_call_api_error(mocker, session):
    mock_cloud(mocker, FakeMiCloud(api_errors={"/v2/homeroom/gethome": -2}))
    rpc = MiCloudRpc.from_session(session)

    with pytest.raises(ApiError, match="mock error") as exc_info:
        await rpc.call("/v2/homeroom/gethome", {})
    assert exc_info.value.code == -2
    assert "(code=-2)" in str(exc_info.value)
    await rpc.close()


async def test_call_http_error(mocker, session):
    mock_cloud(mocker, FakeMiCloud(expired_session=True))
    rpc = MiCloudRpc.from_session(session)

    with pytest.raises(HttpStatusError) as exc_info:
        await rpc.call("/v2/homeroom/gethome", {})
    assert exc_info.value.status == 401
    await rpc.close()


async def test_call_undecryptable(mocker, session):
    mock_cloud(mocker, FakeMiCloud(garbage_response=True))
    rpc = MiCloudRpc.from_session(session)

    with pytest.raises(CryptoError, match="Unable to decrypt"):
        await rpc.call("/v2/homeroom/gethome", {})
    await rpc.close()


async def test_send_plain(cloud, session):
    rpc = MiCloudRpc.from_session(session)
    result = await rpc.call(
        "/home/device_list", {"getVirtualModel": False}, encrypted=False
    )
    await rpc.close()

    assert result["list"][0]["name"] == "Lamp"
    assert cloud.api_calls == [("/home/device_list", {"getVirtualModel": False})]
    assert "MIOT-ENCRYPT-ALGORITHM" not in cloud.api_headers


@pytest.mark.parametrize(
    ("region", "url"),
    [
        pytest.param("cn", "https://api.io.mi.com/app/v2/x", id="cn"),
        pytest.param("de", "https://de.api.io.mi.com/app/v2/x", id="de"),
        pytest.param("i2", "https://i2.api.io.mi.com/app/v2/x", id="i2"),
    ],
)
def test_url(session, region, url):
    rpc = MiCloudRpc.from_session(session, config=CloudConfig(region=region))
    assert rpc.url("/v2/x") == url
    assert rpc.url("v2/x") == url


def test_requires_session():
    with pytest.raises(ProtocolError, match="ssecurity, service_token"):
        MiCloudRpc(ClientState(username=MOCK_USER))
