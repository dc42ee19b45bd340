"""Tests for the alarm manager."""
from datetime import datetime, timezone
from uuid import uuid4

import pytest
from faker import Faker
from prometheus_client import REGISTRY

from wakeguard.errors import (
    InvalidConfig,
    InvalidTransition,
    NotFound,
    SchedulingFailed,
    StorageFailed,
)
from wakeguard.models.alarm_models import (
    Alarm,
    AlarmState,
    OneShot,
    WakeUpCheckConfig,
    Weekday,
    make_schedule,
)
from wakeguard.models.challenge_models import (
    BluetoothChallengeConfig,
    MathChallenge,
    MathChallengeConfig,
    MemoryChallengeConfig,
    TypingChallengeConfig,
)
from wakeguard.services.alarm_manager import AlarmManager
from wakeguard.services.sequencer_service import AnswerOutcome
from wakeguard.services.wakeup_service import WakeUpPhase

fake = Faker()


def fired_count(reason: str) -> float:
    return REGISTRY.get_sample_value("wakeguard_alarms_fired_total", {"reason": reason}) or 0.0


async def solve_all(manager: AlarmManager) -> None:
    """Answer every challenge of the ringing alarm correctly."""
    while manager.current_challenge is not None:
        await manager.submit_answer(manager.engine.correct_answer(manager.current_challenge))


async def solve_current(manager: AlarmManager) -> AnswerOutcome:
    return await manager.submit_answer(manager.engine.correct_answer(manager.current_challenge))


@pytest.mark.asyncio
async def test_add_alarm_schedules_and_saves(manager: AlarmManager, platform, store) -> None:
    """Test that a new alarm is registered and persisted."""
    alarm = await manager.add_alarm(OneShot(7, 0), [MathChallengeConfig()], title=fake.word())

    assert platform.scheduled[alarm.id] == datetime(2026, 10, 19, 7, 0, tzinfo=timezone.utc)
    assert [a.id for a in store.alarms] == [alarm.id]
    assert manager.list_alarms() == [alarm]
    assert manager.next_alarm() == alarm


@pytest.mark.asyncio
async def test_scheduling_failure_leaves_nothing(manager: AlarmManager, platform, store) -> None:
    """Test that a refused registration aborts the add."""
    platform.fail_with = "exact alarms not permitted"

    with pytest.raises(SchedulingFailed) as exc_info:
        await manager.add_alarm(OneShot(7, 0))

    assert exc_info.value.reason == "exact alarms not permitted"
    assert manager.list_alarms() == []
    assert store.saves == 0


@pytest.mark.asyncio
async def test_scheduling_failure_on_resume(manager: AlarmManager, platform) -> None:
    """Test that a resume refused by the platform keeps the alarm paused."""
    alarm = await manager.add_alarm(OneShot(7, 0))
    await manager.toggle_alarm(alarm.id)
    platform.fail_with = "denied"

    with pytest.raises(SchedulingFailed):
        await manager.toggle_alarm(alarm.id)

    assert manager.get_alarm(alarm.id).state is AlarmState.PAUSED
    assert alarm.id not in platform.scheduled


@pytest.mark.asyncio
async def test_storage_failure_rolls_back_platform(manager: AlarmManager, platform, store) -> None:
    """Test that a failed save undoes the platform registration."""
    store.fail = True

    with pytest.raises(StorageFailed):
        await manager.add_alarm(OneShot(7, 0))

    assert manager.list_alarms() == []
    assert platform.scheduled == {}


@pytest.mark.asyncio
async def test_storage_failure_on_delete(manager: AlarmManager, platform, store) -> None:
    """Test that a failed delete keeps the alarm scheduled."""
    alarm = await manager.add_alarm(OneShot(7, 0))
    store.fail = True

    with pytest.raises(StorageFailed):
        await manager.delete_alarm(alarm.id)

    assert manager.get_alarm(alarm.id) == alarm
    assert alarm.id in platform.scheduled


@pytest.mark.asyncio
async def test_unknown_alarm(manager: AlarmManager) -> None:
    """Test that operations on unknown ids raise NotFound."""
    missing = uuid4()
    with pytest.raises(NotFound):
        await manager.toggle_alarm(missing)
    with pytest.raises(NotFound):
        await manager.delete_alarm(missing)
    with pytest.raises(NotFound):
        await manager.update_alarm(missing, title="x")
    with pytest.raises(NotFound):
        await manager.on_fire(missing)
    with pytest.raises(NotFound):
        await manager.respond_to_wake_up_check(missing)


@pytest.mark.asyncio
async def test_invalid_config_rejected(manager: AlarmManager, store) -> None:
    """Test that invalid updates are rejected before anything changes."""
    alarm = await manager.add_alarm(OneShot(7, 0))
    saves = store.saves

    with pytest.raises(InvalidConfig):
        await manager.update_alarm(alarm.id, challenges=["not a challenge"])

    assert manager.get_alarm(alarm.id) == alarm
    assert store.saves == saves


@pytest.mark.asyncio
async def test_toggle_cancels_platform(manager: AlarmManager, platform) -> None:
    """Test that pausing removes the platform registration."""
    alarm = await manager.add_alarm(OneShot(7, 0))

    paused = await manager.toggle_alarm(alarm.id)

    assert paused.state is AlarmState.PAUSED
    assert alarm.id in platform.cancelled
    assert alarm.id not in platform.scheduled
    assert manager.next_alarm() is None


@pytest.mark.asyncio
async def test_update_reschedules(manager: AlarmManager, platform) -> None:
    """Test that changing the time re-registers with the platform."""
    alarm = await manager.add_alarm(OneShot(7, 0))

    await manager.update_alarm(alarm.id, schedule=make_schedule(8, 15, [Weekday.TUESDAY]))

    assert platform.scheduled[alarm.id] == datetime(2026, 10, 20, 8, 15, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_duplicate_alarm(manager: AlarmManager, platform) -> None:
    """Test that a duplicate is scheduled on its own."""
    alarm = await manager.add_alarm(OneShot(7, 0), [TypingChallengeConfig()], title="Work")

    copy = await manager.duplicate_alarm(alarm.id)

    assert copy.title == "Work (Copy)"
    assert copy.id in platform.scheduled
    assert len(manager.list_alarms()) == 2


@pytest.mark.asyncio
async def test_fire_and_dismiss_one_shot(manager: AlarmManager, presenter) -> None:
    """Test a one-shot alarm from firing to dismissal."""
    configs = [MathChallengeConfig(difficulty="easy"), MemoryChallengeConfig(difficulty="easy")]
    alarm = await manager.add_alarm(OneShot(7, 0), configs)

    assert await manager.on_fire(alarm.id) is True
    assert manager.triggering_alarm.state is AlarmState.TRIGGERING
    assert isinstance(manager.current_challenge, MathChallenge)

    outcome = await manager.submit_answer(manager.current_challenge.answer + 1)
    assert outcome is AnswerOutcome.RETRY

    await manager.submit_answer(manager.current_challenge.answer)
    for color in manager.current_challenge.sequence:
        outcome = await manager.press_color(color)
    assert outcome is AnswerOutcome.COMPLETE

    assert manager.triggering_alarm is None
    assert manager.get_alarm(alarm.id).state is AlarmState.PAUSED
    assert [e[1] for e in presenter.of_type("challenge")] == [alarm.id, alarm.id]
    assert presenter.of_type("complete") == [("complete", alarm.id)]


@pytest.mark.asyncio
async def test_repeating_alarm_reschedules(manager: AlarmManager, platform) -> None:
    """Test that a dismissed repeating alarm goes back to scheduled."""
    schedule = make_schedule(6, 0, [Weekday.MONDAY, Weekday.WEDNESDAY])
    alarm = await manager.add_alarm(schedule, [MathChallengeConfig()])
    await manager.on_fire(alarm.id)

    await solve_all(manager)

    assert manager.get_alarm(alarm.id).state is AlarmState.SCHEDULED
    assert platform.scheduled[alarm.id] == datetime(2026, 10, 21, 6, 0, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_alarm_without_challenges(manager: AlarmManager, clock, presenter) -> None:
    """Test that an alarm without challenges is dismissed as soon as it fires."""
    check = WakeUpCheckConfig(is_enabled=True, delay_minutes=5, response_time_minutes=1)
    alarm = await manager.add_alarm(OneShot(7, 0), wake_up_check=check)
    other = await manager.add_alarm(OneShot(7, 0), [MathChallengeConfig()])

    assert await manager.on_fire(alarm.id) is True
    assert await manager.on_fire(other.id) is True

    assert presenter.of_type("complete") == [("complete", alarm.id)]
    assert manager.get_alarm(alarm.id).state is AlarmState.PAUSED
    assert manager.wake_up_phase(alarm.id) is WakeUpPhase.ARMED_PENDING_DELAY
    assert manager.triggering_alarm.id == other.id
    assert manager.pending_triggers == []

    confirmed = await manager.on_all_challenges_complete(alarm.id)
    assert confirmed.state is AlarmState.PAUSED


@pytest.mark.asyncio
async def test_confirm_after_last_challenge(manager: AlarmManager) -> None:
    """Test that confirming a dismissal after the last pass returns the dismissed alarm."""
    alarm = await manager.add_alarm(OneShot(7, 0), [MathChallengeConfig()])
    await manager.on_fire(alarm.id)

    assert await solve_current(manager) is AnswerOutcome.COMPLETE
    confirmed = await manager.on_all_challenges_complete(alarm.id)

    assert confirmed.state is AlarmState.PAUSED
    assert manager.triggering_alarm is None


@pytest.mark.asyncio
async def test_confirm_never_fired(manager: AlarmManager) -> None:
    """Test that an alarm that never rang cannot be confirmed as dismissed."""
    alarm = await manager.add_alarm(OneShot(7, 0))

    with pytest.raises(InvalidTransition):
        await manager.on_all_challenges_complete(alarm.id)


@pytest.mark.asyncio
async def test_unknown_colour(manager: AlarmManager) -> None:
    """Test that an unknown colour press is rejected and the input kept."""
    alarm = await manager.add_alarm(OneShot(7, 0), [MemoryChallengeConfig(difficulty="easy")])
    await manager.on_fire(alarm.id)
    await manager.press_color(manager.current_challenge.sequence[0])

    with pytest.raises(InvalidConfig):
        await manager.press_color("purple")

    assert len(manager.session.input_buffer) == 1


@pytest.mark.asyncio
async def test_dismiss_before_challenges_done(manager: AlarmManager) -> None:
    """Test that an alarm cannot be dismissed with challenges left."""
    alarm = await manager.add_alarm(OneShot(7, 0), [MathChallengeConfig()])
    await manager.on_fire(alarm.id)

    with pytest.raises(InvalidTransition):
        await manager.on_all_challenges_complete(alarm.id)
    assert manager.triggering_alarm.id == alarm.id


@pytest.mark.asyncio
async def test_answer_without_ringing_alarm(manager: AlarmManager) -> None:
    """Test that answers are refused when nothing rings."""
    with pytest.raises(InvalidTransition):
        await manager.submit_answer(42)
    assert await manager.on_device_connected("Headphones") is None


@pytest.mark.asyncio
async def test_paused_alarm_does_not_fire(manager: AlarmManager) -> None:
    """Test that a late fire event for a paused alarm is ignored."""
    alarm = await manager.add_alarm(OneShot(7, 0), [MathChallengeConfig()])
    await manager.toggle_alarm(alarm.id)

    assert await manager.on_fire(alarm.id) is False
    assert manager.triggering_alarm is None


@pytest.mark.asyncio
async def test_toggle_while_ringing(manager: AlarmManager) -> None:
    """Test that a ringing alarm cannot be paused."""
    alarm = await manager.add_alarm(OneShot(7, 0), [MathChallengeConfig()])
    await manager.on_fire(alarm.id)

    with pytest.raises(InvalidTransition):
        await manager.toggle_alarm(alarm.id)


@pytest.mark.asyncio
async def test_second_alarm_is_queued(manager: AlarmManager) -> None:
    """Test that only one alarm rings at a time."""
    first = await manager.add_alarm(OneShot(7, 0), [MathChallengeConfig()])
    second = await manager.add_alarm(OneShot(7, 0), [TypingChallengeConfig()])

    assert await manager.on_fire(first.id) is True
    assert await manager.on_fire(second.id) is False
    assert await manager.on_fire(second.id) is False

    assert manager.triggering_alarm.id == first.id
    assert manager.pending_triggers == [second.id]
    assert manager.get_alarm(second.id).state is AlarmState.SCHEDULED

    assert await solve_current(manager) is AnswerOutcome.COMPLETE

    assert manager.triggering_alarm.id == second.id
    assert manager.pending_triggers == []
    assert manager.get_alarm(first.id).state is AlarmState.PAUSED


@pytest.mark.asyncio
async def test_pausing_queued_alarm_drops_it(manager: AlarmManager) -> None:
    """Test that a paused alarm leaves the firing queue."""
    first = await manager.add_alarm(OneShot(7, 0), [MathChallengeConfig()])
    second = await manager.add_alarm(OneShot(7, 0))
    await manager.on_fire(first.id)
    await manager.on_fire(second.id)

    await manager.toggle_alarm(second.id)
    await solve_all(manager)

    assert manager.pending_triggers == []
    assert manager.triggering_alarm is None


@pytest.mark.asyncio
async def test_deleting_ringing_alarm(manager: AlarmManager) -> None:
    """Test that deleting the ringing alarm ends its session and starts the next."""
    first = await manager.add_alarm(OneShot(7, 0), [MathChallengeConfig()])
    second = await manager.add_alarm(OneShot(7, 0), [MathChallengeConfig()])
    await manager.on_fire(first.id)
    await manager.on_fire(second.id)

    await manager.delete_alarm(first.id)

    assert manager.triggering_alarm.id == second.id
    with pytest.raises(NotFound):
        manager.get_alarm(first.id)


@pytest.mark.asyncio
async def test_bluetooth_challenge_via_device(manager: AlarmManager) -> None:
    """Test that a device connection passes a proximity challenge."""
    alarm = await manager.add_alarm(OneShot(7, 0), [BluetoothChallengeConfig(device_name="Kitchen Speaker")])
    await manager.on_fire(alarm.id)

    assert await manager.submit_answer("Kitchen Speaker") is AnswerOutcome.RETRY
    assert await manager.on_device_connected("Bedroom Lamp") is None
    assert await manager.on_device_connected("Kitchen Speaker") is AnswerOutcome.COMPLETE
    assert manager.get_alarm(alarm.id).state is AlarmState.PAUSED


@pytest.mark.asyncio
async def test_wake_up_check_retriggers_once(manager: AlarmManager, clock, presenter) -> None:
    """Test an unanswered 10/2 wake-up check re-triggers exactly once."""
    check = WakeUpCheckConfig(is_enabled=True, delay_minutes=10, response_time_minutes=2)
    alarm = await manager.add_alarm(OneShot(6, 5), [MathChallengeConfig()], wake_up_check=check)
    before = fired_count("wake_up_check")
    await manager.on_fire(alarm.id)
    await solve_all(manager)
    assert manager.wake_up_phase(alarm.id) is WakeUpPhase.ARMED_PENDING_DELAY

    await clock.advance(minutes=10)
    assert manager.wake_up_phase(alarm.id) is WakeUpPhase.AWAITING_RESPONSE
    assert len(presenter.of_type("wake_up_check")) == 1

    await clock.advance(minutes=2)
    assert manager.triggering_alarm.id == alarm.id
    assert fired_count("wake_up_check") - before == 1

    await solve_all(manager)
    await clock.advance(minutes=60)

    assert manager.triggering_alarm is None
    assert manager.wake_up_phase(alarm.id) is WakeUpPhase.INACTIVE
    assert fired_count("wake_up_check") - before == 1
    assert manager.get_alarm(alarm.id).state is AlarmState.PAUSED


@pytest.mark.asyncio
async def test_wake_up_check_answered(manager: AlarmManager, clock) -> None:
    """Test that answering the check in time prevents a re-trigger."""
    check = WakeUpCheckConfig(is_enabled=True, delay_minutes=5, response_time_minutes=1)
    alarm = await manager.add_alarm(OneShot(6, 5), wake_up_check=check)
    await manager.on_fire(alarm.id)
    await manager.on_all_challenges_complete(alarm.id)

    await clock.advance(minutes=5)
    assert await manager.respond_to_wake_up_check(alarm.id) is True
    await clock.advance(minutes=30)

    assert manager.triggering_alarm is None
    assert manager.wake_up_phase(alarm.id) is WakeUpPhase.INACTIVE


@pytest.mark.asyncio
async def test_delete_cancels_wake_up_check(manager: AlarmManager, clock, presenter) -> None:
    """Test that deleting an alarm cancels its pending check."""
    check = WakeUpCheckConfig(is_enabled=True, delay_minutes=5, response_time_minutes=1)
    alarm = await manager.add_alarm(OneShot(6, 5), wake_up_check=check)
    await manager.on_fire(alarm.id)

    await manager.delete_alarm(alarm.id)
    await clock.advance(minutes=30)

    assert presenter.of_type("wake_up_check") == []
    assert manager.triggering_alarm is None
    assert clock.pending == 0


@pytest.mark.asyncio
async def test_disabling_check_cancels_it(manager: AlarmManager, clock) -> None:
    """Test that turning the check off cancels an armed check."""
    check = WakeUpCheckConfig(is_enabled=True, delay_minutes=5, response_time_minutes=1)
    alarm = await manager.add_alarm(OneShot(6, 5), wake_up_check=check)
    await manager.on_fire(alarm.id)

    await manager.update_alarm(alarm.id, wake_up_check=WakeUpCheckConfig(is_enabled=False))
    await clock.advance(minutes=30)

    assert manager.wake_up_phase(alarm.id) is WakeUpPhase.INACTIVE
    assert manager.triggering_alarm is None


@pytest.mark.asyncio
async def test_disabling_check_drops_queued_retrigger(manager: AlarmManager, clock) -> None:
    """Test that a re-trigger waiting behind another alarm is dropped when the check is turned off."""
    check = WakeUpCheckConfig(is_enabled=True, delay_minutes=5, response_time_minutes=1)
    alarm = await manager.add_alarm(OneShot(6, 5), wake_up_check=check)
    other = await manager.add_alarm(OneShot(6, 10), [MathChallengeConfig()])
    before = fired_count("wake_up_check")
    await manager.on_fire(alarm.id)
    await clock.advance(minutes=5)
    await manager.on_fire(other.id)

    await clock.advance(minutes=1)
    assert manager.pending_triggers == [alarm.id]

    await manager.update_alarm(alarm.id, wake_up_check=WakeUpCheckConfig(is_enabled=False))
    assert manager.pending_triggers == []

    assert await solve_current(manager) is AnswerOutcome.COMPLETE
    assert manager.triggering_alarm is None
    assert fired_count("wake_up_check") == before
    assert manager.get_alarm(alarm.id).state is AlarmState.PAUSED


@pytest.mark.asyncio
async def test_start_resets_interrupted_alarms(store, platform, presenter, clock, engine) -> None:
    """Test that alarms left ringing at shutdown are scheduled again."""
    ringing = Alarm(schedule=OneShot(7, 0), state=AlarmState.TRIGGERING)
    paused = Alarm(schedule=OneShot(8, 0), state=AlarmState.PAUSED)
    store.alarms = [ringing, paused]
    manager = AlarmManager(store, platform, presenter, clock=clock, engine=engine)

    await manager.start()
    try:
        assert manager.get_alarm(ringing.id).state is AlarmState.SCHEDULED
        assert manager.get_alarm(paused.id).state is AlarmState.PAUSED
        assert set(platform.scheduled) == {ringing.id}
        assert store.saves == 1
        assert manager.triggering_alarm is None
    finally:
        await manager.stop()


@pytest.mark.asyncio
async def test_pair_device(manager: AlarmManager) -> None:
    """Test pairing and unpairing devices."""
    manager.pair_device("Watch")
    assert manager.engine.paired_devices.is_paired("Watch")

    manager.unpair_device("Watch")
    assert not manager.engine.paired_devices.is_paired("Watch")


if __name__ == "__main__":
    pytest.main([__file__])
