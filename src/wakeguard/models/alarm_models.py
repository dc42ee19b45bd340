"""Models for alarms, their schedules and wake-up check settings."""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, IntEnum
from typing import FrozenSet, Iterable, Tuple, Union
from uuid import UUID, uuid4

from wakeguard.config import WAKEUP_DELAY_OPTIONS, WAKEUP_RESPONSE_OPTIONS, settings
from wakeguard.errors import InvalidConfig
from wakeguard.models.challenge_models import ChallengeConfig


class AlarmState(Enum):
    """Alarm lifecycle states."""
    SCHEDULED = "scheduled"
    PAUSED = "paused"
    TRIGGERING = "triggering"
    COMPLETED = "completed"


class Weekday(IntEnum):
    """Days of the week, numbered like ``datetime.weekday()``."""
    MONDAY = 0
    TUESDAY = 1
    WEDNESDAY = 2
    THURSDAY = 3
    FRIDAY = 4
    SATURDAY = 5
    SUNDAY = 6

    @property
    def short_name(self) -> str:
        return self.name[:3].capitalize()


def _check_time(hour: int, minute: int) -> None:
    if isinstance(hour, bool) or not isinstance(hour, int) or not 0 <= hour <= 23:
        raise InvalidConfig(f"Hour must be between 0 and 23, got {hour!r}")
    if isinstance(minute, bool) or not isinstance(minute, int) or not 0 <= minute <= 59:
        raise InvalidConfig(f"Minute must be between 0 and 59, got {minute!r}")


@dataclass(frozen=True)
class OneShot:
    """Alarm that fires once at the next matching time of day."""
    hour: int
    minute: int

    def __post_init__(self):
        _check_time(self.hour, self.minute)

    def describe(self) -> str:
        return f"{self.hour:02d}:{self.minute:02d} once"


@dataclass(frozen=True)
class Repeating:
    """Alarm that fires on a set of weekdays."""
    hour: int
    minute: int
    weekdays: FrozenSet[Weekday]

    def __post_init__(self):
        _check_time(self.hour, self.minute)
        try:
            days = frozenset(Weekday(day) for day in self.weekdays)
        except (TypeError, ValueError) as e:
            raise InvalidConfig(f"Invalid weekday set: {e}") from e
        if not days:
            raise InvalidConfig("Repeating schedule needs at least one weekday")
        object.__setattr__(self, "weekdays", days)

    def describe(self) -> str:
        days = ", ".join(day.short_name for day in sorted(self.weekdays))
        return f"{self.hour:02d}:{self.minute:02d} every {days}"


Schedule = Union[OneShot, Repeating]


def make_schedule(hour: int, minute: int, weekdays: Iterable[Weekday] = ()) -> Schedule:
    """Build a one-shot schedule, or a repeating one when weekdays are given."""
    days = frozenset(weekdays or ())
    if days:
        return Repeating(hour, minute, days)
    return OneShot(hour, minute)


@dataclass(frozen=True)
class WakeUpCheckConfig:
    """Settings for the delayed re-verification after dismissal."""
    is_enabled: bool = False
    delay_minutes: int = field(default_factory=lambda: settings.wakeup.delay_minutes)
    response_time_minutes: int = field(default_factory=lambda: settings.wakeup.response_time_minutes)

    def __post_init__(self):
        if self.delay_minutes not in WAKEUP_DELAY_OPTIONS:
            raise InvalidConfig(
                f"Wake-up delay must be one of {WAKEUP_DELAY_OPTIONS}, got {self.delay_minutes!r}"
            )
        if self.response_time_minutes not in WAKEUP_RESPONSE_OPTIONS:
            raise InvalidConfig(
                f"Wake-up response time must be one of {WAKEUP_RESPONSE_OPTIONS}, "
                f"got {self.response_time_minutes!r}"
            )


@dataclass(frozen=True)
class Alarm:
    """An alarm together with the challenges that gate its dismissal."""
    schedule: Schedule
    title: str = "Alarm"
    icon: str = "alarm"
    state: AlarmState = AlarmState.SCHEDULED
    challenges: Tuple[ChallengeConfig, ...] = ()
    wake_up_check: WakeUpCheckConfig = field(default_factory=WakeUpCheckConfig)
    id: UUID = field(default_factory=uuid4)
    created_at: datetime = field(default_factory=lambda: datetime.now().astimezone())

    def __post_init__(self):
        if not isinstance(self.schedule, (OneShot, Repeating)):
            raise InvalidConfig(f"Unsupported schedule: {self.schedule!r}")
        object.__setattr__(self, "challenges", tuple(self.challenges))

    @property
    def is_repeating(self) -> bool:
        return isinstance(self.schedule, Repeating)
