"""Orchestrator owning alarms, the firing alarm and its challenge session."""
import asyncio
import dataclasses
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Iterable, List, Optional
from uuid import UUID

from wakeguard import monitoring
from wakeguard.config import settings
from wakeguard.errors import (
    InvalidTransition,
    SchedulingError,
    SchedulingFailed,
    StorageFailed,
    WakeGuardError,
)
from wakeguard.models.alarm_models import Alarm, AlarmState, Schedule, WakeUpCheckConfig
from wakeguard.models.challenge_models import ChallengeConfig, ChallengeInstance, MemoryColor
from wakeguard.services.alarm_repository import AlarmRepository, CommitHook, next_occurrence
from wakeguard.services.challenge_engine import ChallengeEngine, PairedDeviceRegistry
from wakeguard.services.collaborators import (
    AlarmStore,
    Clock,
    PlatformScheduler,
    Presenter,
    SystemClock,
)
from wakeguard.services.sequencer_service import AnswerOutcome, ChallengeSequencer
from wakeguard.services.wakeup_service import WakeUpEvent, WakeUpPhase, WakeUpScheduler

logger = logging.getLogger(__name__)

FIRE_REASON_SCHEDULE = "schedule"
FIRE_REASON_WAKE_UP = "wake_up_check"


@dataclass(frozen=True)
class PendingTrigger:
    """A firing waiting for the current alarm to be dismissed."""
    alarm_id: UUID
    reason: str


def default_engine() -> ChallengeEngine:
    """Challenge engine configured from settings."""
    return ChallengeEngine(
        seed=settings.challenges.seed,
        paired_devices=PairedDeviceRegistry(settings.challenges.paired_devices),
    )


class AlarmManager:
    """Single owner of alarm state.

    All mutations, timer expiries and device events pass through one
    ``asyncio.Lock``. At most one alarm is triggering at a time; further
    firings queue up first-in-first-out.
    """

    def __init__(
        self,
        store: AlarmStore,
        platform: PlatformScheduler,
        presenter: Presenter,
        clock: Optional[Clock] = None,
        engine: Optional[ChallengeEngine] = None,
    ):
        self.store = store
        self.platform = platform
        self.presenter = presenter
        self.clock = clock or SystemClock()
        self.engine = engine or default_engine()
        self.repository = AlarmRepository()
        self.wake_up = WakeUpScheduler(self.clock, self._handle_wake_up_event)
        self.running = False
        self._lock = asyncio.Lock()
        self._session: Optional[ChallengeSequencer] = None
        self._triggering_id: Optional[UUID] = None
        self._last_dismissed_id: Optional[UUID] = None
        self._queue: Deque[PendingTrigger] = deque()

    # Lifecycle

    async def start(self) -> None:
        """Load alarms from the store and register scheduled ones with the platform."""
        if self.running:
            return
        async with self._lock:
            loaded = self.store.load_all()
            repaired = False
            alarms = []
            for alarm in loaded:
                if alarm.state in (AlarmState.TRIGGERING, AlarmState.COMPLETED):
                    logger.info("Alarm %s was %s at shutdown, rescheduling", alarm.id, alarm.state.value)
                    alarm = dataclasses.replace(alarm, state=AlarmState.SCHEDULED)
                    repaired = True
                alarms.append(alarm)
            self.repository = AlarmRepository(alarms)

            for alarm in self.repository.list():
                if alarm.state is not AlarmState.SCHEDULED:
                    continue
                try:
                    self.platform.schedule(alarm.id, next_occurrence(alarm.schedule, self.clock.now()))
                except SchedulingError as e:
                    monitoring.scheduling_failures.inc()
                    logger.error("Could not register alarm %s with the platform: %s", alarm.id, e)
            if repaired:
                self.store.save_all(self.repository.list())
            self.running = True
        self._update_gauge()
        logger.info("Alarm manager started with %d alarms", len(self.repository))

    async def stop(self) -> None:
        """Cancel pending wake-up checks and drop the active session."""
        if not self.running:
            return
        await self.wake_up.stop()
        async with self._lock:
            self._session = None
            self._triggering_id = None
            self._queue.clear()
            self.running = False
        logger.info("Alarm manager stopped")

    # Write-through plumbing

    def _update_gauge(self) -> None:
        scheduled = sum(1 for alarm in self.repository.list() if alarm.state is AlarmState.SCHEDULED)
        monitoring.active_alarms.set(scheduled)

    def _schedule(self, alarm: Alarm) -> None:
        fire_at = next_occurrence(alarm.schedule, self.clock.now())
        try:
            self.platform.schedule(alarm.id, fire_at)
        except SchedulingError as e:
            monitoring.scheduling_failures.inc()
            logger.error("Platform refused to schedule alarm %s: %s", alarm.id, e)
            raise SchedulingFailed(str(e), alarm.id) from e
        logger.info("Alarm %s scheduled for %s", alarm.id, fire_at.isoformat())

    def _sync_platform(self, before: Optional[Alarm], after: Optional[Alarm]) -> Callable[[], None]:
        """Push a change to the platform and return a callable that reverts it."""
        was_scheduled = before is not None and before.state is AlarmState.SCHEDULED
        if after is not None and after.state is AlarmState.SCHEDULED:
            if was_scheduled and before.schedule == after.schedule:
                return lambda: None
            self._schedule(after)
            if was_scheduled:
                return lambda: self._schedule(before)
            return lambda: self.platform.cancel(after.id)

        if after is None and not was_scheduled:
            # A ringing repeating alarm may still hold its next registration
            self.platform.cancel(before.id)
            return lambda: None
        if was_scheduled and (after is None or after.state is not AlarmState.TRIGGERING):
            self.platform.cancel(before.id)
            logger.info("Alarm %s removed from the platform", before.id)
            return lambda: self._schedule(before)
        return lambda: None

    def _write_through(self) -> CommitHook:
        def hook(before: Optional[Alarm], after: Optional[Alarm], alarms_after: List[Alarm]) -> None:
            undo = self._sync_platform(before, after)
            try:
                self.store.save_all(alarms_after)
            except Exception as e:
                monitoring.storage_failures.inc()
                try:
                    undo()
                except WakeGuardError as rollback_error:
                    logger.error("Could not roll back platform change: %s", rollback_error)
                if isinstance(e, StorageFailed):
                    raise
                raise StorageFailed(str(e)) from e
        return hook

    # Alarm operations

    async def add_alarm(
        self,
        schedule: Schedule,
        challenges: Iterable[ChallengeConfig] = (),
        title: str = "Alarm",
        icon: str = "alarm",
        wake_up_check: Optional[WakeUpCheckConfig] = None,
    ) -> Alarm:
        """Create and schedule a new alarm."""
        async with self._lock:
            alarm = self.repository.add(
                schedule,
                challenges,
                title=title,
                icon=icon,
                wake_up_check=wake_up_check,
                commit_hook=self._write_through(),
            )
        self._update_gauge()
        return alarm

    async def toggle_alarm(self, alarm_id: UUID) -> Alarm:
        """Pause a scheduled alarm or resume a paused one."""
        async with self._lock:
            alarm = self.repository.toggle(alarm_id, commit_hook=self._write_through())
            if alarm.state is AlarmState.PAUSED:
                self.wake_up.cancel(alarm_id)
                self._drop_from_queue(alarm_id)
        self._update_gauge()
        return alarm

    async def delete_alarm(self, alarm_id: UUID) -> Alarm:
        """Delete an alarm, ending its session and any wake-up check."""
        async with self._lock:
            alarm = self.repository.delete(alarm_id, commit_hook=self._write_through())
            self.wake_up.cancel(alarm_id)
            self._drop_from_queue(alarm_id)
            if self._triggering_id == alarm_id:
                logger.info("Triggering alarm %s deleted, ending its session", alarm_id)
                self._session = None
                self._triggering_id = None
                self._advance_queue()
        self._update_gauge()
        return alarm

    async def update_alarm(self, alarm_id: UUID, **fields: Any) -> Alarm:
        """Replace title, icon, schedule, challenges or wake-up settings."""
        async with self._lock:
            alarm = self.repository.update(alarm_id, commit_hook=self._write_through(), **fields)
            if not alarm.wake_up_check.is_enabled:
                self.wake_up.cancel(alarm_id)
                self._drop_from_queue(alarm_id, FIRE_REASON_WAKE_UP)
        self._update_gauge()
        return alarm

    async def duplicate_alarm(self, alarm_id: UUID) -> Alarm:
        """Copy an alarm with its challenges under a new id."""
        async with self._lock:
            alarm = self.repository.duplicate(alarm_id, commit_hook=self._write_through())
        self._update_gauge()
        return alarm

    def get_alarm(self, alarm_id: UUID) -> Alarm:
        return self.repository.get(alarm_id)

    def list_alarms(self) -> List[Alarm]:
        return self.repository.list()

    def next_alarm(self) -> Optional[Alarm]:
        """The scheduled alarm that fires next."""
        return self.repository.next_alarm(self.clock.now())

    # Firing and challenges

    @property
    def triggering_alarm(self) -> Optional[Alarm]:
        if self._triggering_id is None:
            return None
        return self.repository.get(self._triggering_id)

    @property
    def current_challenge(self) -> Optional[ChallengeInstance]:
        return self._session.current_instance if self._session else None

    @property
    def session(self) -> Optional[ChallengeSequencer]:
        return self._session

    @property
    def pending_triggers(self) -> List[UUID]:
        return [pending.alarm_id for pending in self._queue]

    async def on_fire(self, alarm_id: UUID) -> bool:
        """Platform fired an alarm. Returns True if it started ringing now."""
        async with self._lock:
            return self._fire(alarm_id, FIRE_REASON_SCHEDULE)

    def _fire(self, alarm_id: UUID, reason: str) -> bool:
        alarm = self.repository.get(alarm_id)
        if reason == FIRE_REASON_SCHEDULE and alarm.state is not AlarmState.SCHEDULED:
            logger.warning("Ignoring fire event for alarm %s in state %s", alarm_id, alarm.state.value)
            return False

        if self._triggering_id is not None:
            if self._triggering_id == alarm_id or alarm_id in self.pending_triggers:
                logger.info("Alarm %s is already ringing or queued", alarm_id)
                return False
            self._queue.append(PendingTrigger(alarm_id, reason))
            logger.info(
                "Alarm %s queued behind %s (%d waiting)", alarm_id, self._triggering_id, len(self._queue)
            )
            return False

        alarm = self.repository.set_state(alarm_id, AlarmState.TRIGGERING, commit_hook=self._write_through())
        monitoring.alarms_fired.labels(reason=reason).inc()
        logger.info("Alarm %s (%s) is ringing [%s]", alarm.id, alarm.title, reason)

        session = ChallengeSequencer(alarm.id, alarm.challenges, self.engine)
        self._session = session
        self._triggering_id = alarm.id
        instance = session.start()
        if instance is None:
            self.presenter.all_challenges_complete(alarm.id)
            self._complete(alarm.id)
            return True
        self.presenter.challenge_presented(alarm.id, instance)
        self._update_gauge()
        return True

    def _advance_queue(self) -> None:
        while self._queue and self._triggering_id is None:
            pending = self._queue.popleft()
            if pending.alarm_id not in self.repository:
                continue
            try:
                self._fire(pending.alarm_id, pending.reason)
            except WakeGuardError as e:
                logger.error("Could not start queued alarm %s: %s", pending.alarm_id, e)

    def _drop_from_queue(self, alarm_id: UUID, reason: Optional[str] = None) -> None:
        self._queue = deque(
            pending for pending in self._queue
            if pending.alarm_id != alarm_id or (reason is not None and pending.reason != reason)
        )

    def _require_session(self) -> ChallengeSequencer:
        if self._session is None:
            raise InvalidTransition("No alarm is ringing")
        return self._session

    def _handle_outcome(self, outcome: Optional[AnswerOutcome]) -> None:
        session = self._session
        if outcome is AnswerOutcome.ADVANCED:
            self.presenter.challenge_presented(session.alarm_id, session.current_instance)
        elif outcome is AnswerOutcome.COMPLETE:
            self.presenter.all_challenges_complete(session.alarm_id)
            self._complete(session.alarm_id)

    async def submit_answer(self, answer: Any) -> AnswerOutcome:
        """Answer the current challenge of the ringing alarm."""
        async with self._lock:
            outcome = self._require_session().submit(answer)
            self._handle_outcome(outcome)
            return outcome

    async def press_color(self, color: MemoryColor) -> AnswerOutcome:
        """Add one colour to the memory challenge input."""
        async with self._lock:
            outcome = self._require_session().press_color(color)
            self._handle_outcome(outcome)
            return outcome

    async def on_device_connected(self, name: str) -> Optional[AnswerOutcome]:
        """Device-proximity collaborator reported a connection."""
        async with self._lock:
            if self._session is None:
                logger.debug(f"Device {name} connected with no alarm ringing")
                return None
            outcome = self._session.device_connected(name)
            self._handle_outcome(outcome)
            return outcome

    async def on_all_challenges_complete(self, alarm_id: UUID) -> Alarm:
        """Confirm dismissal after ``AllChallengesComplete``.

        The manager already dismisses an alarm when its last challenge is
        passed, or as soon as it fires when it has none, so this returns the
        dismissed alarm for the most recent dismissal.
        """
        async with self._lock:
            alarm = self.repository.get(alarm_id)
            if self._triggering_id == alarm_id:
                if not self._session.is_complete:
                    raise InvalidTransition(f"Alarm {alarm_id} still has challenges to pass")
                return self._complete(alarm_id)
            if self._last_dismissed_id == alarm_id:
                return alarm
            raise InvalidTransition(f"Alarm {alarm_id} is not ringing")

    def _complete(self, alarm_id: UUID) -> Alarm:
        """Dismiss the ringing alarm.

        The alarm passes through COMPLETED without that state being stored:
        it lands on SCHEDULED when repeating and PAUSED when one-shot, arms
        its wake-up check and lets the next queued firing ring.
        """
        alarm = self.repository.get(alarm_id)
        logger.info("Alarm %s: %s -> %s", alarm_id, alarm.state.value, AlarmState.COMPLETED.value)
        final_state = AlarmState.SCHEDULED if alarm.is_repeating else AlarmState.PAUSED
        alarm = self.repository.set_state(alarm_id, final_state, commit_hook=self._write_through())
        logger.info("Alarm %s dismissed, now %s", alarm_id, final_state.value)
        monitoring.alarms_dismissed.inc()

        self._session = None
        self._triggering_id = None
        self._last_dismissed_id = alarm_id
        self.wake_up.on_dismissed(alarm)
        self._update_gauge()
        self._advance_queue()
        return alarm

    # Wake-up checks

    async def respond_to_wake_up_check(self, alarm_id: UUID) -> bool:
        """User confirmed being awake. Returns False if no check was waiting."""
        async with self._lock:
            self.repository.get(alarm_id)
            return self.wake_up.respond(alarm_id)

    def wake_up_phase(self, alarm_id: UUID) -> WakeUpPhase:
        return self.wake_up.phase(alarm_id)

    async def _handle_wake_up_event(self, event: WakeUpEvent) -> None:
        async with self._lock:
            check = self.wake_up.accept(event)
            if check is None:
                return
            if check.phase is WakeUpPhase.AWAITING_RESPONSE:
                self.presenter.wake_up_check_requested(check.alarm_id, check.respond_by)
                return
            try:
                self._fire(check.alarm_id, FIRE_REASON_WAKE_UP)
            except WakeGuardError as e:
                logger.error("Could not re-trigger alarm %s: %s", check.alarm_id, e)
                self.wake_up.cancel(check.alarm_id)

    # Devices

    def pair_device(self, name: str) -> None:
        self.engine.paired_devices.add(name)

    def unpair_device(self, name: str) -> None:
        self.engine.paired_devices.remove(name)
