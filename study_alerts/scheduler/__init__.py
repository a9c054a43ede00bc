"""Alert delivery: the executor, the periodic sweep and hint timers."""

from study_alerts.scheduler.engine import EngineStatus, SchedulerEngine
from study_alerts.scheduler.executor import AlertExecutor, DeliveryOutcome
from study_alerts.scheduler.recent import RecentlyProcessed
from study_alerts.scheduler.sweep import AlertSweeper, SweepReport

__all__ = [
    "AlertExecutor",
    "AlertSweeper",
    "DeliveryOutcome",
    "EngineStatus",
    "RecentlyProcessed",
    "SchedulerEngine",
    "SweepReport",
]
