"""Error taxonomy for the alarm core."""
from typing import Optional
from uuid import UUID


class WakeGuardError(Exception):
    """Base class for all alarm core errors."""


class NotFound(WakeGuardError):
    """Operation referenced an unknown alarm id."""

    def __init__(self, alarm_id: UUID):
        self.alarm_id = alarm_id
        super().__init__(f"Alarm {alarm_id} not found")


class InvalidConfig(WakeGuardError):
    """Configuration rejected before any mutation."""


class InvalidTransition(WakeGuardError):
    """Operation is not valid in the current alarm or session state."""


class SchedulingError(WakeGuardError):
    """Raised by a platform scheduler that refuses a request."""


class SchedulingFailed(WakeGuardError):
    """The platform scheduler refused; the alarm keeps its prior state."""

    def __init__(self, reason: str, alarm_id: Optional[UUID] = None):
        self.reason = reason
        self.alarm_id = alarm_id
        super().__init__(f"Scheduling failed: {reason}")


class StorageFailed(WakeGuardError):
    """The persistent store rejected a write; the change was not applied."""
