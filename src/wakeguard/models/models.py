"""Database models for persisted alarms."""
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    ForeignKey,
    Integer,
    String,
)
from sqlalchemy.orm import relationship

from wakeguard.models.base import Base, TimestampMixin


class AlarmRecord(Base):
    """Alarm row. ``created_at`` is the user-facing creation time of the alarm."""

    __tablename__ = "alarms"

    id = Column(String(36), primary_key=True)
    title = Column(String, nullable=False, default="Alarm")
    icon = Column(String, nullable=False, default="alarm")
    created_at = Column(String, nullable=False)  # ISO 8601 with UTC offset
    hour = Column(Integer, nullable=False)
    minute = Column(Integer, nullable=False)
    weekdays = Column(String, nullable=False, default="")  # e.g. "0,2,4", empty = one-shot
    state = Column(String, nullable=False)
    wake_up_enabled = Column(Boolean, default=False)
    wake_up_delay_minutes = Column(Integer, default=10)
    wake_up_response_minutes = Column(Integer, default=2)

    # Relationships
    challenges = relationship(
        "ChallengeRecord",
        back_populates="alarm",
        order_by="ChallengeRecord.position",
        cascade="all, delete-orphan",
    )


class ChallengeRecord(Base, TimestampMixin):
    """Challenge config row: kind and id are columns, the rest is an opaque payload."""

    __tablename__ = "alarm_challenges"

    alarm_id = Column(String(36), ForeignKey("alarms.id", ondelete="CASCADE"), primary_key=True)
    position = Column(Integer, primary_key=True)
    id = Column(String(36), nullable=False)
    kind = Column(String, nullable=False)  # math, typing, memory, bluetooth
    payload = Column(JSON, nullable=False, default=dict)

    # Relationships
    alarm = relationship("AlarmRecord", back_populates="challenges")
