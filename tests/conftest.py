from __future__ import annotations

import os
from datetime import UTC, datetime

import pytest
from asyncclick.testing import CliRunner

from mitokens.state import SessionData

from .fakecloud import (
    MOCK_PASS_TOKEN,
    MOCK_SERVICE_TOKEN,
    MOCK_SSECURITY,
    MOCK_USER,
    MOCK_USER_ID,
    FakeMiCloud,
    mock_cloud,
)


@pytest.fixture
def cloud(mocker) -> FakeMiCloud:
    """Return the default fake cloud, patched into aiohttp."""
    return mock_cloud(mocker)


@pytest.fixture
def session() -> SessionData:
    """Return a freshly saved session of the mock user."""
    return SessionData(
        username=MOCK_USER,
        user_id=MOCK_USER_ID,
        service_token=MOCK_SERVICE_TOKEN,
        ssecurity=MOCK_SSECURITY,
        cookies={"passToken": MOCK_PASS_TOKEN},
        device_id="abcdef",
        saved_at=datetime.now(UTC),
    )


@pytest.fixture
def runner():
    """Runner fixture that unsets the MITOKENS_ environment variables for tests."""
    mitokens_vars = {k: None for k in os.environ if k.startswith("MITOKENS_")}
    runner = CliRunner(env=mitokens_vars)

    return runner
