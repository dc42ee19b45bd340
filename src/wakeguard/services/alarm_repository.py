"""In-memory alarm repository and next-occurrence computation."""
import dataclasses
import logging
import threading
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple
from uuid import UUID, uuid4

from wakeguard.errors import InvalidConfig, InvalidTransition, NotFound
from wakeguard.models.alarm_models import (
    Alarm,
    AlarmState,
    OneShot,
    Repeating,
    Schedule,
    WakeUpCheckConfig,
)
from wakeguard.models.challenge_models import ChallengeConfig


logger = logging.getLogger(__name__)

# Called with (before, after, alarms_after) ahead of applying a change.
# Raising from the hook aborts the change.
CommitHook = Callable[[Optional[Alarm], Optional[Alarm], List[Alarm]], None]

UPDATABLE_FIELDS = {"title", "icon", "schedule", "challenges", "wake_up_check"}


def next_occurrence(schedule: Schedule, now: datetime) -> datetime:
    """Next fire time strictly after ``now``, in the timezone of ``now``."""
    today = now.replace(hour=schedule.hour, minute=schedule.minute, second=0, microsecond=0)
    if isinstance(schedule, OneShot):
        return today if today > now else today + timedelta(days=1)

    for offset in range(8):
        candidate = today + timedelta(days=offset)
        if candidate > now and candidate.weekday() in schedule.weekdays:
            return candidate
    # Unreachable for a non-empty weekday set
    raise InvalidConfig(f"Schedule {schedule!r} has no qualifying weekday")


def upcoming(alarms: Iterable[Alarm], now: datetime) -> List[Tuple[datetime, Alarm]]:
    """Scheduled alarms ordered by next fire time, ties broken by id."""
    pending = [
        (next_occurrence(alarm.schedule, now), alarm)
        for alarm in alarms
        if alarm.state is AlarmState.SCHEDULED
    ]
    return sorted(pending, key=lambda item: (item[0], str(item[1].id)))


def _check_challenges(challenges: Iterable[ChallengeConfig]) -> Tuple[ChallengeConfig, ...]:
    challenges = tuple(challenges)
    seen = set()
    for config in challenges:
        if not hasattr(config, "kind") or not hasattr(config, "id"):
            raise InvalidConfig(f"Not a challenge config: {config!r}")
        if config.id in seen:
            raise InvalidConfig(f"Duplicate challenge id {config.id}")
        seen.add(config.id)
    return challenges


class AlarmRepository:
    """Authoritative set of alarms keyed by id.

    Every mutation is all-or-nothing: the optional commit hook sees the
    candidate state first and the change is only applied if it returns.
    """

    def __init__(self, alarms: Iterable[Alarm] = ()):
        self._alarms: Dict[UUID, Alarm] = {alarm.id: alarm for alarm in alarms}
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._alarms)

    def __contains__(self, alarm_id: UUID) -> bool:
        with self._lock:
            return alarm_id in self._alarms

    def get(self, alarm_id: UUID) -> Alarm:
        with self._lock:
            try:
                return self._alarms[alarm_id]
            except KeyError:
                raise NotFound(alarm_id) from None

    def list(self) -> List[Alarm]:
        """Consistent snapshot, oldest first."""
        with self._lock:
            return sorted(self._alarms.values(), key=lambda a: (a.created_at, str(a.id)))

    def next_alarm(self, now: datetime) -> Optional[Alarm]:
        """Earliest scheduled alarm after ``now``."""
        ordered = upcoming(self.list(), now)
        return ordered[0][1] if ordered else None

    def _apply(self, before: Optional[Alarm], after: Optional[Alarm], hook: Optional[CommitHook]) -> None:
        alarm_id = (after or before).id
        candidate = dict(self._alarms)
        if after is None:
            candidate.pop(alarm_id, None)
        else:
            candidate[alarm_id] = after
        if hook is not None:
            hook(before, after, list(candidate.values()))
        self._alarms = candidate

    def add(
        self,
        schedule: Schedule,
        challenges: Iterable[ChallengeConfig] = (),
        title: str = "Alarm",
        icon: str = "alarm",
        wake_up_check: Optional[WakeUpCheckConfig] = None,
        commit_hook: Optional[CommitHook] = None,
    ) -> Alarm:
        """Create a new scheduled alarm with a fresh id."""
        alarm = Alarm(
            schedule=schedule,
            title=title or "Alarm",
            icon=icon or "alarm",
            state=AlarmState.SCHEDULED,
            challenges=_check_challenges(challenges),
            wake_up_check=wake_up_check or WakeUpCheckConfig(),
            id=uuid4(),
        )
        with self._lock:
            self._apply(None, alarm, commit_hook)
        logger.info("Alarm %s added (%s)", alarm.id, alarm.schedule.describe())
        return alarm

    def toggle(self, alarm_id: UUID, commit_hook: Optional[CommitHook] = None) -> Alarm:
        """Flip between scheduled and paused."""
        with self._lock:
            before = self.get(alarm_id)
            if before.state is AlarmState.SCHEDULED:
                state = AlarmState.PAUSED
            elif before.state is AlarmState.PAUSED:
                state = AlarmState.SCHEDULED
            else:
                raise InvalidTransition(f"Alarm {alarm_id} cannot be toggled while {before.state.value}")
            after = dataclasses.replace(before, state=state)
            self._apply(before, after, commit_hook)
        logger.info("Alarm %s toggled to %s", alarm_id, after.state.value)
        return after

    def delete(self, alarm_id: UUID, commit_hook: Optional[CommitHook] = None) -> Alarm:
        """Remove an alarm permanently."""
        with self._lock:
            before = self.get(alarm_id)
            self._apply(before, None, commit_hook)
        logger.info("Alarm %s deleted", alarm_id)
        return before

    def update(self, alarm_id: UUID, commit_hook: Optional[CommitHook] = None, **fields: Any) -> Alarm:
        """Replace mutable fields, keeping id and creation time."""
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise InvalidConfig(f"Cannot update fields: {', '.join(sorted(unknown))}")
        if "challenges" in fields:
            fields["challenges"] = _check_challenges(fields["challenges"])
        if "schedule" in fields and not isinstance(fields["schedule"], (OneShot, Repeating)):
            raise InvalidConfig(f"Unsupported schedule: {fields['schedule']!r}")
        if "wake_up_check" in fields and not isinstance(fields["wake_up_check"], WakeUpCheckConfig):
            raise InvalidConfig("wake_up_check must be a WakeUpCheckConfig")
        with self._lock:
            before = self.get(alarm_id)
            after = dataclasses.replace(before, **fields)
            self._apply(before, after, commit_hook)
        logger.info("Alarm %s updated (%s)", alarm_id, ", ".join(sorted(fields)) or "no fields")
        return after

    def set_state(self, alarm_id: UUID, state: AlarmState, commit_hook: Optional[CommitHook] = None) -> Alarm:
        """Move an alarm to a lifecycle state without touching its settings."""
        with self._lock:
            before = self.get(alarm_id)
            after = dataclasses.replace(before, state=state)
            self._apply(before, after, commit_hook)
        logger.debug(f"Alarm {alarm_id}: {before.state.value} -> {state.value}")
        return after

    def duplicate(self, alarm_id: UUID, commit_hook: Optional[CommitHook] = None) -> Alarm:
        """Copy an alarm under a new id with a "(Copy)" title."""
        with self._lock:
            source = self.get(alarm_id)
            title = f"{source.title} (Copy)" if source.title else "Alarm (Copy)"
            copy = Alarm(
                schedule=source.schedule,
                title=title,
                icon=source.icon,
                state=AlarmState.SCHEDULED,
                challenges=tuple(dataclasses.replace(config, id=uuid4()) for config in source.challenges),
                wake_up_check=source.wake_up_check,
                id=uuid4(),
            )
            self._apply(None, copy, commit_hook)
        logger.info("Alarm %s duplicated as %s", alarm_id, copy.id)
        return copy
