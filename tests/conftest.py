"""Shared fixtures for the imds-credentials test suite."""
from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from imds_credentials.config import Config, Settings
from imds_credentials.models.credentials import RoleCredentials


T0 = datetime(2024, 1, 1, 0, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Controllable replacement for the manager's clock."""

    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class FakeTimer:
    """Records what threading.Timer would have scheduled."""

    def __init__(self, interval, function, args=None) -> None:
        self.interval = interval
        self.function = function
        self.args = args or []
        self.daemon = False
        self.started = False
        self.cancelled = False
        self.fired = False

    def start(self) -> None:
        self.started = True

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        self.fired = True
        self.function(*self.args)


class FakeTimerFactory:
    def __init__(self) -> None:
        self.timers: list[FakeTimer] = []

    def __call__(self, interval, function, args=None) -> FakeTimer:
        timer = FakeTimer(interval, function, args)
        self.timers.append(timer)
        return timer

    @property
    def pending(self) -> list[FakeTimer]:
        return [t for t in self.timers if t.started and not t.cancelled and not t.fired]

    @property
    def last(self) -> FakeTimer:
        return self.timers[-1]


def make_response(status_code=200, text="", json_data=None):
    """Build a fake httpx.Response."""
    resp = MagicMock()
    resp.status_code = status_code
    resp.text = text
    if json_data is None:
        resp.json.side_effect = ValueError("Expecting value")
    else:
        resp.json.return_value = json_data
    return resp


def credential_document(expiration="2024-01-01T00:10:00Z", **overrides):
    doc = {
        "Code": "Success",
        "LastUpdated": "2024-01-01T00:00:00Z",
        "Type": "AWS-HMAC",
        "AccessKeyId": "AKIAEXAMPLE",
        "SecretAccessKey": "secret",
        "Token": "session-token",
        "Expiration": expiration,
    }
    doc.update(overrides)
    return {k: v for k, v in doc.items() if v is not None}


@pytest.fixture
def fake_settings() -> Settings:
    return Settings(
        endpoint="http://169.254.169.254",
        timeout=1.0,
        use_token=False,
        token_ttl=21600,
        safety_margin=240,
        min_refresh_delay=1.0,
        retry_delay=30.0,
        max_retry_delay=60.0,
    )


@pytest.fixture
def fake_config(fake_settings) -> Config:
    return Config(settings=fake_settings)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def timers() -> FakeTimerFactory:
    return FakeTimerFactory()


@pytest.fixture
def mock_fetcher():
    """MagicMock MetadataFetcher: role myrole, region us-east-1, credentials expiring 00:10."""
    fetcher = MagicMock()
    fetcher.fetch_role_name.return_value = "myrole"
    fetcher.fetch_credentials.return_value = RoleCredentials.model_validate(credential_document())
    fetcher.fetch_region.return_value = "us-east-1"
    return fetcher
