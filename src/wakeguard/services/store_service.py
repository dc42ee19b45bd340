"""SQLAlchemy-backed alarm store."""
import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from wakeguard.errors import InvalidConfig, StorageFailed
from wakeguard.models.alarm_models import (
    Alarm,
    AlarmState,
    WakeUpCheckConfig,
    Weekday,
    make_schedule,
)
from wakeguard.models.base import SessionLocal
from wakeguard.models.challenge_models import (
    ChallengeKind,
    challenge_config_from_record,
    peek_record,
    to_record,
)
from wakeguard.models.models import AlarmRecord, ChallengeRecord


logger = logging.getLogger(__name__)


def _weekdays_to_column(alarm: Alarm) -> str:
    if not alarm.is_repeating:
        return ""
    return ",".join(str(int(day)) for day in sorted(alarm.schedule.weekdays))


def _weekdays_from_column(value: Optional[str]) -> List[Weekday]:
    return [Weekday(int(part)) for part in (value or "").split(",") if part]


def alarm_to_record(alarm: Alarm) -> AlarmRecord:
    """Convert an alarm to its database rows."""
    record = AlarmRecord(
        id=str(alarm.id),
        title=alarm.title,
        icon=alarm.icon,
        created_at=alarm.created_at.isoformat(),
        hour=alarm.schedule.hour,
        minute=alarm.schedule.minute,
        weekdays=_weekdays_to_column(alarm),
        state=alarm.state.value,
        wake_up_enabled=alarm.wake_up_check.is_enabled,
        wake_up_delay_minutes=alarm.wake_up_check.delay_minutes,
        wake_up_response_minutes=alarm.wake_up_check.response_time_minutes,
    )
    for position, config in enumerate(alarm.challenges):
        challenge_record = to_record(config)
        record.challenges.append(
            ChallengeRecord(
                id=challenge_record["id"],
                position=position,
                kind=challenge_record["kind"],
                payload=challenge_record["payload"],
            )
        )
    return record


def alarm_from_record(record: AlarmRecord) -> Alarm:
    """Rebuild an alarm from its database rows."""
    challenges = tuple(
        challenge_config_from_record({"id": row.id, "kind": row.kind, "payload": row.payload})
        for row in sorted(record.challenges, key=lambda row: row.position)
    )
    return Alarm(
        id=UUID(record.id),
        title=record.title,
        icon=record.icon,
        created_at=datetime.fromisoformat(record.created_at),
        schedule=make_schedule(record.hour, record.minute, _weekdays_from_column(record.weekdays)),
        state=AlarmState(record.state),
        challenges=challenges,
        wake_up_check=WakeUpCheckConfig(
            is_enabled=bool(record.wake_up_enabled),
            delay_minutes=record.wake_up_delay_minutes,
            response_time_minutes=record.wake_up_response_minutes,
        ),
    )


class SqlAlchemyAlarmStore:
    """Write-through store: every save replaces the full alarm set in one transaction."""

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        self.session_factory = session_factory

    def load_all(self) -> List[Alarm]:
        """Load every alarm, skipping rows that no longer decode."""
        alarms: List[Alarm] = []
        db = self.session_factory()
        try:
            records = db.query(AlarmRecord).options(selectinload(AlarmRecord.challenges)).all()
            for record in records:
                try:
                    alarms.append(alarm_from_record(record))
                except (InvalidConfig, ValueError) as e:
                    logger.warning("Skipping alarm %s due to parse error: %s", record.id, e)
        except SQLAlchemyError as e:
            logger.error("Failed to load alarms: %s", e)
            raise StorageFailed(f"Failed to load alarms: {e}") from e
        finally:
            db.close()
        logger.info("Loaded %d alarms from store", len(alarms))
        return alarms

    def save_all(self, alarms: List[Alarm]) -> None:
        """Replace the stored alarm set."""
        db = self.session_factory()
        try:
            db.query(ChallengeRecord).delete(synchronize_session=False)
            db.query(AlarmRecord).delete(synchronize_session=False)
            db.add_all([alarm_to_record(alarm) for alarm in alarms])
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Failed to save %d alarms: %s", len(alarms), e)
            raise StorageFailed(f"Failed to save alarms: {e}") from e
        finally:
            db.close()
        logger.debug(f"Saved {len(alarms)} alarms")

    def challenge_kinds(self) -> Dict[UUID, List[ChallengeKind]]:
        """Challenge kinds per alarm, read from the kind column only."""
        kinds: Dict[UUID, List[ChallengeKind]] = {}
        db = self.session_factory()
        try:
            rows = (
                db.query(ChallengeRecord.alarm_id, ChallengeRecord.id, ChallengeRecord.kind)
                .order_by(ChallengeRecord.alarm_id, ChallengeRecord.position)
                .all()
            )
        finally:
            db.close()
        for alarm_id, challenge_id, kind in rows:
            _, challenge_kind = peek_record({"id": challenge_id, "kind": kind})
            kinds.setdefault(UUID(alarm_id), []).append(challenge_kind)
        return kinds
