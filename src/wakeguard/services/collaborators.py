"""Boundary contracts for the alarm core and their in-process defaults."""
import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional, Protocol
from uuid import UUID

from wakeguard.errors import SchedulingError
from wakeguard.models.alarm_models import Alarm
from wakeguard.models.challenge_models import (
    BluetoothChallenge,
    ChallengeInstance,
    MathChallenge,
    MemoryChallenge,
    TypingChallenge,
)


logger = logging.getLogger(__name__)


class Clock(Protocol):
    """Source of wall-clock time and timer suspension."""

    def now(self) -> datetime: ...

    async def sleep(self, seconds: float) -> None: ...


class PlatformScheduler(Protocol):
    """Registers fire times with the platform; raises SchedulingError on refusal."""

    def schedule(self, alarm_id: UUID, fire_at: datetime) -> None: ...

    def cancel(self, alarm_id: UUID) -> None: ...


class Presenter(Protocol):
    """Receives what the user should be shown."""

    def challenge_presented(self, alarm_id: UUID, instance: ChallengeInstance) -> None: ...

    def all_challenges_complete(self, alarm_id: UUID) -> None: ...

    def wake_up_check_requested(self, alarm_id: UUID, respond_by: datetime) -> None: ...


class AlarmStore(Protocol):
    """Persistent storage for the full alarm set."""

    def load_all(self) -> List[Alarm]: ...

    def save_all(self, alarms: List[Alarm]) -> None: ...


class SystemClock:
    """Real time in the local timezone."""

    def now(self) -> datetime:
        return datetime.now().astimezone()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(0.0, seconds))


class AsyncioPlatformScheduler:
    """Fires alarms from asyncio tasks inside this process."""

    def __init__(self, clock: Clock, max_pending: int = 512):
        self.clock = clock
        self.max_pending = max_pending
        self.on_fire: Optional[Callable[[UUID], Awaitable[None]]] = None
        self.tasks: Dict[UUID, asyncio.Task] = {}

    def schedule(self, alarm_id: UUID, fire_at: datetime) -> None:
        if self.on_fire is None:
            raise SchedulingError("No fire handler attached")
        if alarm_id not in self.tasks and len(self.tasks) >= self.max_pending:
            raise SchedulingError(f"Too many pending alarms ({self.max_pending})")
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            raise SchedulingError("No running event loop") from None
        self.cancel(alarm_id)
        self.tasks[alarm_id] = loop.create_task(self._wait_and_fire(alarm_id, fire_at))
        logger.debug(f"Platform timer set for alarm {alarm_id} at {fire_at.isoformat()}")

    def cancel(self, alarm_id: UUID) -> None:
        task = self.tasks.pop(alarm_id, None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _wait_and_fire(self, alarm_id: UUID, fire_at: datetime) -> None:
        await self.clock.sleep((fire_at - self.clock.now()).total_seconds())
        self.tasks.pop(alarm_id, None)
        try:
            await self.on_fire(alarm_id)
        except Exception as e:
            logger.error("Failed to deliver fire event for alarm %s: %s", alarm_id, e)

    async def stop(self) -> None:
        """Cancel every pending platform timer."""
        tasks = list(self.tasks.values())
        self.tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


def describe_challenge(instance: ChallengeInstance) -> str:
    """Plain-text prompt for a challenge instance."""
    if isinstance(instance, MathChallenge):
        return f"Solve: {instance.question} = ?"
    if isinstance(instance, TypingChallenge):
        return f"Type exactly: {instance.target_text}"
    if isinstance(instance, MemoryChallenge):
        colors = " ".join(color.value for color in instance.sequence)
        return f"Remember this pattern ({instance.length}): {colors}"
    if isinstance(instance, BluetoothChallenge):
        return f"Connect to {instance.target_device_name}"
    return repr(instance)


class LoggingPresenter:
    """Presenter that writes prompts to the log."""

    def challenge_presented(self, alarm_id: UUID, instance: ChallengeInstance) -> None:
        logger.info("[alarm %s] %s", alarm_id, describe_challenge(instance))

    def all_challenges_complete(self, alarm_id: UUID) -> None:
        logger.info("[alarm %s] All challenges complete, good morning!", alarm_id)

    def wake_up_check_requested(self, alarm_id: UUID, respond_by: datetime) -> None:
        logger.info("[alarm %s] Are you awake? Respond before %s", alarm_id, respond_by.strftime("%H:%M"))
