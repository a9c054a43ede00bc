"""Tests for AlertSweeper — due pass, retry pass, isolation, recovery."""

import asyncio
from datetime import timedelta
from pathlib import Path

import pytest

from study_alerts.alerts.models import Alert, AlertKind, AlertState
from study_alerts.alerts.store import InMemoryAlertStore, SQLiteAlertStore
from study_alerts.errors import StoreUnavailableError
from study_alerts.notifications.dispatcher import Dispatcher
from study_alerts.notifications.history import InMemoryNotificationHistory
from study_alerts.notifications.router import NotificationRouter
from study_alerts.owners import InMemoryOwnerDirectory
from study_alerts.scheduler.executor import AlertExecutor, DeliveryOutcome
from study_alerts.scheduler.sweep import AlertSweeper
from study_alerts.tasks.models import Priority

# -- Helpers -------------------------------------------------------------------


class BrokenOwnerStore(InMemoryAlertStore):
    """Fails every due-alert query for one owner."""

    def __init__(self, broken_owner: str) -> None:
        super().__init__()
        self._broken_owner = broken_owner

    async def due_alerts(self, owner_id, now):
        if owner_id == self._broken_owner:
            raise StoreUnavailableError("partition offline")
        return await super().due_alerts(owner_id, now)


def _make_alert(
    clock,
    alert_id: str,
    owner_id: str = "alice",
    fire_in_minutes: int = 0,
    offset_minutes: int = 15,
) -> Alert:
    return Alert(
        id=alert_id,
        task_id=f"task-{owner_id}",
        owner_id=owner_id,
        offset=timedelta(minutes=offset_minutes),
        fire_at=clock.now() + timedelta(minutes=fire_in_minutes),
        kind=AlertKind.REMINDER,
        priority=Priority.MEDIUM,
        title="Ward round",
        message="Ward round soon",
        channels=["dashboard"],
        created_at=clock.now() - timedelta(hours=1),
    )


def _build(alerts, clock, router, max_retries: int = 3, backoff: float = 60):
    executor = AlertExecutor(
        alerts,
        InMemoryOwnerDirectory(),
        Dispatcher(router, InMemoryNotificationHistory(), clock),
        clock,
        max_retries=max_retries,
        retry_backoff_seconds=backoff,
    )
    return executor, AlertSweeper(alerts, executor, clock, claim_lease_seconds=300)


@pytest.fixture
def router(make_channel) -> NotificationRouter:
    r = NotificationRouter()
    r.register_channel(make_channel("dashboard"))
    return r


# -- Due pass ------------------------------------------------------------------


async def test_sweep_delivers_only_due_alerts(clock, router) -> None:
    alerts = InMemoryAlertStore()
    _, sweeper = _build(alerts, clock, router)
    await alerts.insert(
        [
            _make_alert(clock, "due", fire_in_minutes=-1, offset_minutes=30),
            _make_alert(clock, "now", fire_in_minutes=0, offset_minutes=15),
            _make_alert(clock, "later", fire_in_minutes=10, offset_minutes=5),
        ]
    )

    report = await sweeper.sweep()

    assert report.sent == 2
    assert (await alerts.get_alert("due")).state == AlertState.SENT
    assert (await alerts.get_alert("now")).state == AlertState.SENT
    assert (await alerts.get_alert("later")).state == AlertState.PENDING


async def test_alert_sent_in_first_sweep_after_fire_time(clock, router) -> None:
    alerts = InMemoryAlertStore()
    _, sweeper = _build(alerts, clock, router)
    await alerts.insert([_make_alert(clock, "a1", fire_in_minutes=1)])

    assert (await sweeper.sweep()).sent == 0
    clock.advance(seconds=30)
    assert (await sweeper.sweep()).sent == 0
    clock.advance(seconds=30)
    assert (await sweeper.sweep()).sent == 1
    clock.advance(seconds=30)
    assert (await sweeper.sweep()).sent == 0


async def test_cancelled_alerts_are_ignored(clock, router) -> None:
    alerts = InMemoryAlertStore()
    _, sweeper = _build(alerts, clock, router)
    await alerts.insert([_make_alert(clock, "a1", fire_in_minutes=-1)])
    await alerts.cancel_for_task("task-alice", clock.now())

    report = await sweeper.sweep()
    assert report.sent == 0
    assert router.get_channel("dashboard").sent == []


# -- Racing triggers -----------------------------------------------------------


async def test_hint_and_sweep_racing_dispatch_once(clock, router) -> None:
    alerts = InMemoryAlertStore()
    executor, sweeper = _build(alerts, clock, router)
    await alerts.insert([_make_alert(clock, "a1")])

    results = await asyncio.gather(sweeper.sweep(), executor.deliver("a1"), sweeper.sweep())

    assert len(router.get_channel("dashboard").sent) == 1
    sent_by_sweeps = results[0].sent + results[2].sent
    sent_by_hint = 1 if results[1] == DeliveryOutcome.SENT else 0
    assert sent_by_sweeps + sent_by_hint == 1


async def test_two_processes_on_one_database_dispatch_once(
    clock, tmp_path: Path, make_channel
) -> None:
    db_path = tmp_path / "test.db"
    first_router = NotificationRouter()
    first_router.register_channel(make_channel("dashboard"))
    second_router = NotificationRouter()
    second_router.register_channel(make_channel("dashboard"))

    _, first = _build(SQLiteAlertStore(db_path), clock, first_router)
    _, second = _build(SQLiteAlertStore(db_path), clock, second_router)
    await SQLiteAlertStore(db_path).insert(
        [_make_alert(clock, f"a{i}", offset_minutes=i) for i in range(5)]
    )

    await asyncio.gather(first.sweep(), second.sweep())

    delivered = len(first_router.get_channel("dashboard").sent) + len(
        second_router.get_channel("dashboard").sent
    )
    assert delivered == 5


# -- Restart recovery ----------------------------------------------------------


async def test_restart_delivers_alerts_due_while_down(clock, tmp_path: Path, router) -> None:
    db_path = tmp_path / "test.db"
    await SQLiteAlertStore(db_path).insert(
        [
            _make_alert(clock, "a1", fire_in_minutes=5, offset_minutes=30),
            _make_alert(clock, "a2", fire_in_minutes=20, offset_minutes=15),
        ]
    )

    # Process is down for ten minutes; a fresh store and sweeper come up.
    clock.advance(minutes=10)
    alerts = SQLiteAlertStore(db_path)
    _, sweeper = _build(alerts, clock, router)

    report = await sweeper.sweep()

    assert report.sent == 1
    assert (await alerts.get_alert("a1")).state == AlertState.SENT
    assert (await alerts.get_alert("a2")).state == AlertState.PENDING


async def test_stale_claim_is_released_and_delivered(clock, router) -> None:
    alerts = InMemoryAlertStore()
    _, sweeper = _build(alerts, clock, router)
    await alerts.insert([_make_alert(clock, "a1", fire_in_minutes=-1)])
    await alerts.claim("a1", clock.now())

    # Claimed by a dispatcher that crashed; within the lease nothing happens.
    clock.advance(minutes=1)
    assert (await sweeper.sweep()).sent == 0

    clock.advance(minutes=5)
    report = await sweeper.sweep()
    assert report.released == 1
    assert report.sent == 1


# -- Isolation -----------------------------------------------------------------


async def test_one_owner_failure_does_not_block_others(clock, router) -> None:
    alerts = BrokenOwnerStore("bob")
    _, sweeper = _build(alerts, clock, router)
    await alerts.insert([_make_alert(clock, "a1", owner_id="alice")])
    await alerts.insert([_make_alert(clock, "b1", owner_id="bob")])
    await alerts.insert([_make_alert(clock, "c1", owner_id="carol")])

    report = await sweeper.sweep()

    assert report.owner_errors == 1
    assert report.sent == 2
    assert (await alerts.get_alert("b1")).state == AlertState.PENDING


async def test_failing_channel_for_one_owner_does_not_affect_others(clock, make_channel) -> None:
    router = NotificationRouter()
    router.register_channel(make_channel("dashboard"))
    router.register_channel(make_channel("sms", error=RuntimeError("carrier down")))
    alerts = InMemoryAlertStore()
    _, sweeper = _build(alerts, clock, router)
    bob_alert = _make_alert(clock, "b1", owner_id="bob")
    bob_alert.channels = ["sms"]
    await alerts.insert([_make_alert(clock, "a1", owner_id="alice"), bob_alert])

    report = await sweeper.sweep()

    assert report.sent == 1
    assert report.failed == 1
    assert (await alerts.get_alert("a1")).state == AlertState.SENT
    assert (await alerts.get_alert("b1")).state == AlertState.FAILED


# -- Retry pass ----------------------------------------------------------------


async def test_retry_pass_honours_backoff_and_max_retries(clock, make_channel) -> None:
    channel = make_channel("dashboard", result=False)
    router = NotificationRouter()
    router.register_channel(channel)
    alerts = InMemoryAlertStore()
    _, sweeper = _build(alerts, clock, router, max_retries=3, backoff=60)
    await alerts.insert([_make_alert(clock, "a1")])

    report = await sweeper.sweep()
    assert report.outcomes[DeliveryOutcome.FAILED] == 1

    # Backoff not elapsed yet.
    clock.advance(seconds=30)
    assert (await sweeper.sweep()).failed == 0

    clock.advance(seconds=30)
    assert (await sweeper.sweep()).outcomes[DeliveryOutcome.FAILED] == 1

    clock.advance(seconds=120)
    assert (await sweeper.sweep()).outcomes[DeliveryOutcome.EXHAUSTED] == 1

    clock.advance(hours=1)
    assert (await sweeper.sweep()).failed == 0
    alert = await alerts.get_alert("a1")
    assert alert.state == AlertState.FAILED
    assert alert.attempts == 3


async def test_retry_pass_delivers_once_channel_recovers(clock, make_channel) -> None:
    channel = make_channel("dashboard", result=False)
    router = NotificationRouter()
    router.register_channel(channel)
    alerts = InMemoryAlertStore()
    _, sweeper = _build(alerts, clock, router, backoff=0)
    await alerts.insert([_make_alert(clock, "a1")])

    await sweeper.sweep()
    channel.result = True
    clock.advance(seconds=30)
    report = await sweeper.sweep()

    assert report.sent == 1
    assert (await alerts.get_alert("a1")).state == AlertState.SENT
