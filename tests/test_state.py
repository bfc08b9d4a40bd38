from __future__ import annotations

import re
from datetime import UTC, datetime

import pytest

from mitokens.exceptions import LoginStep, ProtocolError
from mitokens.json import dumps as json_dumps
from mitokens.json import loads as json_loads
from mitokens.state import (
    ClientState,
    LoginStage,
    SessionData,
    generate_agent,
    generate_device_id,
)

from .fakecloud import (
    MOCK_PASSWORD,
    MOCK_SERVICE_TOKEN,
    MOCK_SSECURITY,
    MOCK_USER,
    MOCK_USER_ID,
    VERIFY_URL,
)


def _authenticated_state() -> ClientState:
    return ClientState(
        username=MOCK_USER,
        password=MOCK_PASSWORD,
        device_id="abcdef",
        cookies={"passToken": "pass", "serviceToken": MOCK_SERVICE_TOKEN},
        stage=LoginStage.TOKEN_EXCHANGED,
        ssecurity=MOCK_SSECURITY,
        user_id=MOCK_USER_ID,
        service_token=MOCK_SERVICE_TOKEN,
    )


def test_generate_agent():
    agent = generate_agent()
    assert re.fullmatch(
        r"[a-z]{18}-[A-E]{13} APP/com\.xiaomi\.mihome APPV/10\.5\.201", agent
    )
    assert generate_agent() != agent


def test_generate_device_id():
    assert re.fullmatch(r"[a-z]{6}", generate_device_id())


def test_client_state_serialization():
    state = ClientState(
        username=MOCK_USER,
        password=MOCK_PASSWORD,
        stage=LoginStage.AWAITING_VERIFICATION,
        sign="sign",
        verify_url=VERIFY_URL,
        identity_session="session",
        identity_options=[4, 8],
    )
    state_dict = state.to_dict()

    assert state_dict["stage"] == "awaiting_verification"
    assert state_dict["deviceId"] == state.device_id
    assert state_dict["verifyUrl"] == VERIFY_URL
    assert state_dict["identitySession"] == "session"
    assert state_dict["identityOptions"] == [4, 8]
    assert ClientState.from_dict(json_loads(json_dumps(state_dict))) == state


@pytest.mark.parametrize(
    ("record", "stage"),
    [
        pytest.param({}, LoginStage.FRESH, id="fresh"),
        pytest.param({"sign": "sign"}, LoginStage.STEP1_DONE, id="step1"),
        pytest.param(
            {"sign": "sign", "ssecurity": "null", "verifyUrl": VERIFY_URL},
            LoginStage.AWAITING_VERIFICATION,
            id="2fa",
        ),
        pytest.param(
            {"sign": "sign", "ssecurity": MOCK_SSECURITY, "location": "https://x"},
            LoginStage.AUTHENTICATED,
            id="authenticated",
        ),
        pytest.param(
            {"ssecurity": MOCK_SSECURITY, "serviceToken": MOCK_SERVICE_TOKEN},
            LoginStage.TOKEN_EXCHANGED,
            id="token",
        ),
    ],
)
def test_client_state_stage_inferred(record, stage):
    state = ClientState.from_dict({"username": MOCK_USER, **record})
    assert state.stage is stage


def test_require():
    state = ClientState(username=MOCK_USER, sign="sign")
    state.require(LoginStep.STEP2, "sign")

    with pytest.raises(ProtocolError, match="Missing ssecurity, location") as e:
        state.require(LoginStep.STEP3, "ssecurity", "location")
    assert e.value.step is LoginStep.STEP3


def test_is_authenticated():
    state = _authenticated_state()
    assert state.is_authenticated

    state.service_token = None
    assert not state.is_authenticated


def test_password_not_in_repr():
    state = _authenticated_state()
    assert MOCK_PASSWORD not in repr(state)
    assert MOCK_SSECURITY not in repr(state)


def test_session_from_state(freezer):
    freezer.move_to("2024-06-01 12:00:00")
    session = SessionData.from_state(_authenticated_state())

    assert session.username == MOCK_USER
    assert session.user_id == MOCK_USER_ID
    assert session.ssecurity == MOCK_SSECURITY
    assert session.service_token == MOCK_SERVICE_TOKEN
    assert session.device_id == "abcdef"
    assert session.cookies["passToken"] == "pass"
    assert session.saved_at == datetime(2024, 6, 1, 12, tzinfo=UTC)


def test_session_from_unauthenticated_state():
    state = ClientState(username=MOCK_USER, ssecurity=MOCK_SSECURITY)
    with pytest.raises(ProtocolError, match="not authenticated") as e:
        SessionData.from_state(state)
    assert e.value.step is LoginStep.STEP3


def test_session_serialization():
    session = SessionData.from_state(_authenticated_state())
    session_dict = json_loads(json_dumps(session.to_dict()))

    assert set(session_dict) == {
        "username",
        "userId",
        "serviceToken",
        "ssecurity",
        "cookies",
        "deviceId",
        "savedAt",
    }
    assert SessionData.from_dict(session_dict) == session


def test_session_legacy_device_id():
    session = SessionData.from_dict(
        {
            "username": MOCK_USER,
            "userId": MOCK_USER_ID,
            "serviceToken": MOCK_SERVICE_TOKEN,
            "ssecurity": MOCK_SSECURITY,
            "cookies": {},
            "device_id": "ghijkl",
            "savedAt": "2024-06-01T12:00:00.000Z",
        }
    )
    assert session.device_id == "ghijkl"
    assert session.saved_at == datetime(2024, 6, 1, 12, tzinfo=UTC)


def test_session_to_state(session):
    state = session.to_state()

    assert state.stage is LoginStage.TOKEN_EXCHANGED
    assert state.is_authenticated
    assert state.device_id == session.device_id
    assert state.pass_token == session.cookies["passToken"]
    assert state.cookies["serviceToken"] == MOCK_SERVICE_TOKEN
    assert state.cookies["yetAnotherServiceToken"] == MOCK_SERVICE_TOKEN
    assert state.cookies["userId"] == MOCK_USER_ID


def test_session_age(freezer, session):
    freezer.move_to("2024-06-01 12:00:00")
    session.saved_at = datetime(2024, 6, 1, 11, 30, tzinfo=UTC)
    assert session.age() == 1800

    freezer.tick(60)
    assert session.age() == 1860

    session.saved_at = None
    assert session.age() is None
