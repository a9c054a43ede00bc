"""Shared test fixtures."""

from datetime import UTC, datetime

import pytest

from study_alerts.clock import FrozenClock
from study_alerts.config import Settings

NOW = datetime(2030, 1, 15, 9, 0, tzinfo=UTC)


class FakeChannel:
    """Records every send; result and failure mode are configurable."""

    def __init__(self, name: str, result: bool = True, error: Exception | None = None) -> None:
        self._name = name
        self.result = result
        self.error = error
        self.sent: list[tuple[str, object]] = []

    @property
    def name(self) -> str:
        return self._name

    async def send(self, recipient, payload) -> bool:
        if self.error is not None:
            raise self.error
        self.sent.append((recipient, payload))
        return self.result


@pytest.fixture
def make_channel():
    """Factory for recording fake channels."""
    return FakeChannel


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(NOW)


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings for a service test: in-memory stores, no hint timers, no retry delay."""
    return Settings(
        storage_backend="memory",
        database_path=tmp_path / "test.db",
        hint_timers_enabled=False,
        retry_backoff_seconds=0,
        default_channels="dashboard",
        urgent_channels="telegram",
    )
