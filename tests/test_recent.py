"""Tests for the recently-processed LRU guard."""

from study_alerts.scheduler.recent import RecentlyProcessed


def test_add_and_contains() -> None:
    recent = RecentlyProcessed()
    recent.add("a1")
    assert "a1" in recent
    assert "a2" not in recent
    assert len(recent) == 1


def test_evicts_least_recently_added() -> None:
    recent = RecentlyProcessed(capacity=2)
    recent.add("a1")
    recent.add("a2")
    recent.add("a1")  # refresh
    recent.add("a3")

    assert "a1" in recent
    assert "a2" not in recent
    assert "a3" in recent
    assert len(recent) == 2


def test_capacity_floor() -> None:
    recent = RecentlyProcessed(capacity=0)
    recent.add("a1")
    recent.add("a2")
    assert len(recent) == 1
