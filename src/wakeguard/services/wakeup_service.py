"""Service for wake-up re-verification after an alarm is dismissed."""
import asyncio
import itertools
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional
from uuid import UUID

from wakeguard import monitoring
from wakeguard.models.alarm_models import Alarm, WakeUpCheckConfig
from wakeguard.services.collaborators import Clock

logger = logging.getLogger(__name__)


class WakeUpPhase(Enum):
    """Phases of a wake-up check."""
    INACTIVE = "inactive"
    ARMED_PENDING_DELAY = "armed_pending_delay"
    AWAITING_RESPONSE = "awaiting_response"
    RETRIGGERED = "retriggered"


class WakeUpEventType(Enum):
    """Timer expiries delivered back to the orchestrator."""
    CHECK_DUE = "check_due"
    RESPONSE_TIMEOUT = "response_timeout"


@dataclass(frozen=True)
class WakeUpEvent:
    """Timer expiry for one armed check, tagged with the check's token."""
    alarm_id: UUID
    token: int
    type: WakeUpEventType


@dataclass
class WakeUpCheck:
    """State of the check for one alarm."""
    alarm_id: UUID
    config: WakeUpCheckConfig
    token: int
    phase: WakeUpPhase = WakeUpPhase.ARMED_PENDING_DELAY
    armed_at: Optional[datetime] = None
    respond_by: Optional[datetime] = None
    task: Optional[asyncio.Task] = None


class WakeUpScheduler:
    """Arms delayed wake-up checks and reports expiries through ``dispatch``.

    ``dispatch`` must run the event through the orchestrator's serialized
    entry point, which then calls back into ``accept``. Every state change
    here happens inside that entry point.
    """

    def __init__(self, clock: Clock, dispatch: Callable[[WakeUpEvent], Awaitable[None]]):
        self.clock = clock
        self.dispatch = dispatch
        self.checks: Dict[UUID, WakeUpCheck] = {}
        self._tokens = itertools.count(1)

    def phase(self, alarm_id: UUID) -> WakeUpPhase:
        check = self.checks.get(alarm_id)
        return check.phase if check else WakeUpPhase.INACTIVE

    def get(self, alarm_id: UUID) -> Optional[WakeUpCheck]:
        return self.checks.get(alarm_id)

    def on_dismissed(self, alarm: Alarm) -> bool:
        """Handle a successful dismissal. Returns True when a check was armed."""
        current = self.checks.get(alarm.id)
        if current is not None and current.phase is WakeUpPhase.RETRIGGERED:
            # The re-triggered pass has been defeated, the check is over
            del self.checks[alarm.id]
            logger.info("Wake-up check for alarm %s finished after re-trigger", alarm.id)
            return False
        self.cancel(alarm.id)
        if not alarm.wake_up_check.is_enabled:
            return False

        check = WakeUpCheck(
            alarm_id=alarm.id,
            config=alarm.wake_up_check,
            token=next(self._tokens),
            armed_at=self.clock.now(),
        )
        check.task = asyncio.get_running_loop().create_task(self._run(check.alarm_id, check.token, check.config))
        self.checks[alarm.id] = check
        monitoring.wakeup_checks_armed.inc()
        logger.info(
            "Wake-up check armed for alarm %s: check in %d min, %d min to respond",
            alarm.id, check.config.delay_minutes, check.config.response_time_minutes,
        )
        return True

    async def _run(self, alarm_id: UUID, token: int, config: WakeUpCheckConfig) -> None:
        await self.clock.sleep(config.delay_minutes * 60)
        await self.dispatch(WakeUpEvent(alarm_id, token, WakeUpEventType.CHECK_DUE))
        await self.clock.sleep(config.response_time_minutes * 60)
        await self.dispatch(WakeUpEvent(alarm_id, token, WakeUpEventType.RESPONSE_TIMEOUT))

    def accept(self, event: WakeUpEvent) -> Optional[WakeUpCheck]:
        """Apply a timer event. Returns the check when the event is still current."""
        check = self.checks.get(event.alarm_id)
        if check is None or check.token != event.token:
            logger.debug(f"Dropping stale wake-up event {event}")
            return None

        if event.type is WakeUpEventType.CHECK_DUE and check.phase is WakeUpPhase.ARMED_PENDING_DELAY:
            check.phase = WakeUpPhase.AWAITING_RESPONSE
            check.respond_by = self.clock.now() + timedelta(minutes=check.config.response_time_minutes)
            logger.info("Wake-up check due for alarm %s, respond by %s", event.alarm_id, check.respond_by)
            return check

        if event.type is WakeUpEventType.RESPONSE_TIMEOUT and check.phase is WakeUpPhase.AWAITING_RESPONSE:
            check.phase = WakeUpPhase.RETRIGGERED
            check.task = None
            check.respond_by = None
            monitoring.wakeup_retriggers.inc()
            logger.warning("No response to wake-up check for alarm %s, re-triggering", event.alarm_id)
            return check

        logger.debug(f"Ignoring wake-up event {event} in phase {check.phase.value}")
        return None

    def respond(self, alarm_id: UUID) -> bool:
        """User answered the check. Returns False if no check was awaiting an answer."""
        check = self.checks.get(alarm_id)
        if check is None or check.phase is not WakeUpPhase.AWAITING_RESPONSE:
            return False
        self.cancel(alarm_id)
        logger.info("Wake-up check for alarm %s answered", alarm_id)
        return True

    def cancel(self, alarm_id: UUID) -> None:
        """Drop the check for an alarm and cancel its timer."""
        check = self.checks.pop(alarm_id, None)
        if check is None:
            return
        if check.task is not None and check.task is not asyncio.current_task():
            check.task.cancel()
        logger.info("Wake-up check for alarm %s cancelled (was %s)", alarm_id, check.phase.value)

    async def stop(self) -> None:
        """Cancel every pending check."""
        tasks = [check.task for check in self.checks.values() if check.task is not None]
        self.checks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
