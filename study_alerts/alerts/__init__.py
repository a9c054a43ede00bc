"""Alerts: the model, the planner and the CAS store."""

from study_alerts.alerts.models import Alert, AlertKind, AlertState
from study_alerts.alerts.planner import PlanningPolicy, plan_alerts
from study_alerts.alerts.store import AlertRepository, InMemoryAlertStore, SQLiteAlertStore

__all__ = [
    "Alert",
    "AlertKind",
    "AlertRepository",
    "AlertState",
    "InMemoryAlertStore",
    "PlanningPolicy",
    "SQLiteAlertStore",
    "plan_alerts",
]
