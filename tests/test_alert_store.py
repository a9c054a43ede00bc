"""Tests for the alert stores — CAS transitions behave the same on both backends."""

import asyncio
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from study_alerts.alerts.models import Alert, AlertKind, AlertState
from study_alerts.alerts.store import InMemoryAlertStore, SQLiteAlertStore
from study_alerts.errors import ConflictError
from study_alerts.tasks.models import Priority

NOW = datetime(2030, 1, 15, 9, 0, tzinfo=UTC)


@pytest.fixture(params=["sqlite", "memory"])
def store(request, tmp_path: Path):
    if request.param == "sqlite":
        return SQLiteAlertStore(db_path=tmp_path / "test.db")
    return InMemoryAlertStore()


def _make_alert(
    alert_id: str = "a1",
    task_id: str = "t1",
    owner_id: str = "alice",
    offset_minutes: int = 15,
    **kwargs,
) -> Alert:
    defaults = {
        "fire_at": NOW + timedelta(minutes=5),
        "kind": AlertKind.REMINDER,
        "priority": Priority.MEDIUM,
        "title": "Pharmacology quiz",
        "message": "Pharmacology quiz starts in 15min",
        "channels": ["dashboard"],
        "created_at": NOW - timedelta(hours=1),
    }
    defaults.update(kwargs)
    return Alert(
        id=alert_id,
        task_id=task_id,
        owner_id=owner_id,
        offset=timedelta(minutes=offset_minutes),
        **defaults,
    )


# -- insert / get --------------------------------------------------------------


async def test_insert_and_get(store) -> None:
    alert = _make_alert()
    await store.insert([alert])

    fetched = await store.get_alert("a1")
    assert fetched == alert
    assert fetched.state == AlertState.PENDING


async def test_insert_forces_pending(store) -> None:
    await store.insert([_make_alert(state=AlertState.SENT)])
    assert (await store.get_alert("a1")).state == AlertState.PENDING


async def test_insert_empty_is_noop(store) -> None:
    await store.insert([])
    assert await store.list_owner_ids() == []


async def test_duplicate_task_offset_revision_rejected(store) -> None:
    await store.insert([_make_alert("a1")])
    with pytest.raises(ConflictError):
        await store.insert([_make_alert("a2")])


async def test_same_offset_new_revision_allowed(store) -> None:
    await store.insert([_make_alert("a1")])
    await store.insert([_make_alert("a2", task_revision=1)])
    assert len(await store.alerts_for_task("t1")) == 2


# -- claim / mark_sent ---------------------------------------------------------


async def test_claim_then_mark_sent(store) -> None:
    await store.insert([_make_alert()])

    assert await store.claim("a1", NOW) is True
    assert (await store.get_alert("a1")).state == AlertState.DISPATCHING
    assert await store.claim("a1", NOW) is False

    assert await store.mark_sent("a1", NOW) is True
    sent = await store.get_alert("a1")
    assert sent.state == AlertState.SENT
    assert sent.sent_at == NOW


async def test_mark_sent_twice_concurrently_exactly_one_wins(store) -> None:
    await store.insert([_make_alert()])

    results = await asyncio.gather(store.mark_sent("a1", NOW), store.mark_sent("a1", NOW))
    assert sorted(results) == [False, True]


async def test_concurrent_claims_exactly_one_wins(store) -> None:
    await store.insert([_make_alert()])

    results = await asyncio.gather(*(store.claim("a1", NOW) for _ in range(5)))
    assert results.count(True) == 1


async def test_transition_on_unknown_alert_returns_false(store) -> None:
    assert await store.claim("ghost", NOW) is False
    assert await store.mark_sent("ghost", NOW) is False
    assert await store.mark_read("ghost", NOW) is False


# -- mark_failed / claim_retry -------------------------------------------------


async def test_mark_failed_increments_attempts(store) -> None:
    await store.insert([_make_alert()])
    await store.claim("a1", NOW)

    retry_at = NOW + timedelta(minutes=1)
    assert await store.mark_failed("a1", "telegram: timeout", NOW, retry_at) is True

    failed = await store.get_alert("a1")
    assert failed.state == AlertState.FAILED
    assert failed.attempts == 1
    assert failed.last_error == "telegram: timeout"
    assert failed.next_attempt_at == retry_at


async def test_claim_retry_respects_max_retries(store) -> None:
    await store.insert([_make_alert()])
    await store.claim("a1", NOW)
    await store.mark_failed("a1", "boom", NOW)

    assert await store.claim_retry("a1", NOW, max_retries=1) is False
    assert await store.claim_retry("a1", NOW, max_retries=3) is True
    assert (await store.get_alert("a1")).state == AlertState.DISPATCHING


async def test_claim_retry_needs_failed_state(store) -> None:
    await store.insert([_make_alert()])
    assert await store.claim_retry("a1", NOW, max_retries=3) is False


async def test_mark_sent_clears_error(store) -> None:
    await store.insert([_make_alert()])
    await store.claim("a1", NOW)
    await store.mark_failed("a1", "boom", NOW, NOW)
    await store.claim_retry("a1", NOW, max_retries=3)
    await store.mark_sent("a1", NOW)

    alert = await store.get_alert("a1")
    assert alert.last_error is None
    assert alert.next_attempt_at is None
    assert alert.attempts == 1


# -- cancel / read -------------------------------------------------------------


async def test_mark_cancelled_only_from_pending(store) -> None:
    await store.insert([_make_alert("a1"), _make_alert("a2", offset_minutes=5)])
    await store.claim("a2", NOW)
    await store.mark_sent("a2", NOW)

    assert await store.mark_cancelled("a1", NOW) is True
    assert await store.mark_cancelled("a2", NOW) is False
    assert (await store.get_alert("a2")).state == AlertState.SENT


async def test_cancel_for_task_spares_sent_alerts(store) -> None:
    await store.insert(
        [
            _make_alert("a1", offset_minutes=30),
            _make_alert("a2", offset_minutes=15),
            _make_alert("a3", offset_minutes=5),
            _make_alert("other", task_id="t2"),
        ]
    )
    await store.claim("a1", NOW)
    await store.mark_sent("a1", NOW)
    await store.claim("a2", NOW)
    await store.mark_failed("a2", "boom", NOW)

    cancelled = await store.cancel_for_task("t1", NOW)

    assert sorted(cancelled) == ["a2", "a3"]
    assert (await store.get_alert("a1")).state == AlertState.SENT
    assert (await store.get_alert("a3")).cancelled_at == NOW
    assert (await store.get_alert("other")).state == AlertState.PENDING


async def test_mark_read_from_pending_or_sent(store) -> None:
    await store.insert([_make_alert("a1"), _make_alert("a2", offset_minutes=5)])
    await store.claim("a2", NOW)
    await store.mark_sent("a2", NOW)

    assert await store.mark_read("a1", NOW) is True
    assert await store.mark_read("a2", NOW) is True
    assert await store.mark_read("a2", NOW) is False
    assert (await store.get_alert("a2")).read_at == NOW


async def test_read_alert_cannot_be_claimed(store) -> None:
    await store.insert([_make_alert()])
    await store.mark_read("a1", NOW)
    assert await store.claim("a1", NOW) is False


# -- stale claims --------------------------------------------------------------


async def test_release_stale_claims(store) -> None:
    await store.insert([_make_alert("old", offset_minutes=30), _make_alert("fresh")])
    await store.claim("old", NOW - timedelta(minutes=10))
    await store.claim("fresh", NOW)

    released = await store.release_stale_claims(NOW - timedelta(minutes=5))

    assert released == 1
    old = await store.get_alert("old")
    assert old.state == AlertState.PENDING
    assert old.claimed_at is None
    assert (await store.get_alert("fresh")).state == AlertState.DISPATCHING


# -- queries -------------------------------------------------------------------


async def test_due_alerts(store) -> None:
    await store.insert(
        [
            _make_alert("due-late", offset_minutes=5, fire_at=NOW),
            _make_alert("due-early", offset_minutes=30, fire_at=NOW - timedelta(minutes=20)),
            _make_alert("future", offset_minutes=1, fire_at=NOW + timedelta(seconds=1)),
            _make_alert("bob", owner_id="bob", task_id="t9", fire_at=NOW),
        ]
    )
    due = await store.due_alerts("alice", NOW)
    assert [a.id for a in due] == ["due-early", "due-late"]


async def test_retryable_alerts(store) -> None:
    await store.insert(
        [
            _make_alert("ready", offset_minutes=30),
            _make_alert("later", offset_minutes=15),
            _make_alert("spent", offset_minutes=5),
        ]
    )
    for alert_id in ("ready", "later", "spent"):
        await store.claim(alert_id, NOW)
    await store.mark_failed("ready", "x", NOW, NOW - timedelta(seconds=1))
    await store.mark_failed("later", "x", NOW, NOW + timedelta(minutes=5))
    await store.mark_failed("spent", "x", NOW, None)
    for _ in range(2):
        await store.claim_retry("spent", NOW, max_retries=5)
        await store.mark_failed("spent", "x", NOW, None)

    retryable = await store.retryable_alerts("alice", NOW, max_retries=3)
    assert [a.id for a in retryable] == ["ready"]


async def test_pending_and_failed_alerts(store) -> None:
    await store.insert([_make_alert("p"), _make_alert("f", offset_minutes=5)])
    await store.claim("f", NOW)
    await store.mark_failed("f", "boom", NOW)

    assert [a.id for a in await store.pending_alerts("alice")] == ["p"]
    assert [a.id for a in await store.failed_alerts("alice")] == ["f"]


async def test_count_by_state(store) -> None:
    await store.insert([_make_alert("a1"), _make_alert("a2", offset_minutes=5)])
    await store.mark_cancelled("a2", NOW)

    counts = await store.count_by_state("alice")
    assert counts[AlertState.PENDING] == 1
    assert counts[AlertState.CANCELLED] == 1
    assert counts[AlertState.SENT] == 0


async def test_list_owner_ids(store) -> None:
    await store.insert([_make_alert("a1"), _make_alert("b1", owner_id="bob", task_id="t2")])
    assert await store.list_owner_ids() == ["alice", "bob"]
