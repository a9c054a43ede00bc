"""Error taxonomy for the scheduling engine."""


class StudyAlertError(Exception):
    """Base class for all engine errors."""


class ValidationError(StudyAlertError):
    """Input rejected: missing title or scheduled time, bad offset, bad deadline."""


class NotFoundError(StudyAlertError):
    """Unknown task, alert or owner."""


class ConflictError(StudyAlertError):
    """A state transition lost to a concurrent one or targets a terminal record.

    Callers of CAS store methods get ``False`` instead of this error; it is raised
    only by service operations where the caller asked for something impossible,
    such as completing a deleted task.
    """


class DispatchError(StudyAlertError):
    """Every channel failed for an alert. Handled inside the scheduler."""

    def __init__(self, alert_id: str, reason: str) -> None:
        super().__init__(f"Dispatch failed for alert {alert_id}: {reason}")
        self.alert_id = alert_id
        self.reason = reason


class StoreUnavailableError(StudyAlertError):
    """The persistence backend failed. Fatal for the current operation."""
