"""Tests for NotificationRouter."""

import pytest

from study_alerts.notifications.router import NotificationRouter


def test_register_and_get(make_channel) -> None:
    router = NotificationRouter()
    ch = make_channel("telegram")
    router.register_channel(ch)

    assert router.get_channel("telegram") is ch
    assert router.list_channels() == ["telegram"]


def test_get_unknown_returns_none() -> None:
    assert NotificationRouter().get_channel("pager") is None


def test_duplicate_registration_rejected(make_channel) -> None:
    router = NotificationRouter()
    router.register_channel(make_channel("sms"))
    with pytest.raises(ValueError, match="already registered"):
        router.register_channel(make_channel("sms"))


def test_routers_are_independent(make_channel) -> None:
    first = NotificationRouter()
    second = NotificationRouter()
    first.register_channel(make_channel("dashboard"))

    assert second.list_channels() == []
