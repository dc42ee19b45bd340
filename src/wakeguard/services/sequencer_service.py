"""Ordered challenge sessions for a single alarm firing."""
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Set
from uuid import UUID

from wakeguard import monitoring
from wakeguard.errors import InvalidConfig, InvalidTransition
from wakeguard.models.challenge_models import (
    ChallengeConfig,
    ChallengeInstance,
    ChallengeKind,
    MemoryChallenge,
    MemoryColor,
)
from wakeguard.services.challenge_engine import ChallengeEngine


logger = logging.getLogger(__name__)


class SequencerState(Enum):
    """States of a challenge session."""
    IDLE = "idle"
    PRESENTING = "presenting"
    ALL_COMPLETE = "all_complete"


class AnswerOutcome(Enum):
    """Result of submitting an answer to the current challenge."""
    RETRY = "retry"  # Wrong answer, same challenge stays up
    PENDING = "pending"  # Partial input accepted, nothing verified yet
    ADVANCED = "advanced"  # Challenge passed, next one presented
    COMPLETE = "complete"  # Last challenge passed


class ChallengeSequencer:
    """Walks through an alarm's challenges strictly in configured order."""

    def __init__(self, alarm_id: UUID, configs: Sequence[ChallengeConfig], engine: ChallengeEngine):
        self.alarm_id = alarm_id
        self.configs: List[ChallengeConfig] = list(configs)
        self.engine = engine
        self.state = SequencerState.IDLE
        self.current_index = 0
        self.current_instance: Optional[ChallengeInstance] = None
        self.completed_ids: Set[UUID] = set()
        self.presented: List[UUID] = []
        self.attempts: Dict[UUID, int] = {config.id: 0 for config in self.configs}
        self.input_buffer: List[MemoryColor] = []
        self.started_at: Optional[datetime] = None

    @property
    def is_complete(self) -> bool:
        return self.state is SequencerState.ALL_COMPLETE

    @property
    def current_config(self) -> Optional[ChallengeConfig]:
        if self.state is not SequencerState.PRESENTING:
            return None
        return self.configs[self.current_index]

    def start(self) -> Optional[ChallengeInstance]:
        """Present the first challenge, or complete at once when there are none."""
        if self.state is not SequencerState.IDLE:
            raise InvalidTransition("Challenge session already started")
        self.started_at = datetime.now()
        if not self.configs:
            logger.info("Alarm %s has no challenges, session complete", self.alarm_id)
            self.state = SequencerState.ALL_COMPLETE
            return None
        self.state = SequencerState.PRESENTING
        return self._present(0)

    def _present(self, index: int) -> ChallengeInstance:
        config = self.configs[index]
        self.current_index = index
        self.current_instance = self.engine.generate(config)
        self.input_buffer = []
        self.presented.append(config.id)
        monitoring.challenges_presented.labels(kind=config.kind.value).inc()
        logger.info(
            "Alarm %s: presenting challenge %d/%d (%s)",
            self.alarm_id, index + 1, len(self.configs), config.display_name,
        )
        return self.current_instance

    def _require_presenting(self) -> ChallengeConfig:
        if self.state is SequencerState.IDLE:
            raise InvalidTransition("Challenge session has not started")
        if self.state is SequencerState.ALL_COMPLETE:
            raise InvalidTransition("Challenge session is already complete")
        return self.configs[self.current_index]

    def _record(self, config: ChallengeConfig, success: bool) -> AnswerOutcome:
        self.attempts[config.id] += 1
        if not success:
            monitoring.challenge_failures.labels(kind=config.kind.value).inc()
            logger.info(
                "Alarm %s: wrong answer for challenge %d (attempt %d)",
                self.alarm_id, self.current_index + 1, self.attempts[config.id],
            )
            return AnswerOutcome.RETRY

        self.completed_ids.add(config.id)
        if self.current_index + 1 < len(self.configs):
            self._present(self.current_index + 1)
            return AnswerOutcome.ADVANCED

        self.state = SequencerState.ALL_COMPLETE
        self.current_instance = None
        logger.info("Alarm %s: all %d challenges complete", self.alarm_id, len(self.configs))
        return AnswerOutcome.COMPLETE

    def submit(self, answer: Any) -> AnswerOutcome:
        """Verify an answer for the current challenge."""
        config = self._require_presenting()
        if config.kind is ChallengeKind.BLUETOOTH:
            # Only connection events can satisfy a proximity challenge
            return self._record(config, self.current_instance.connected)
        success = self.engine.verify(self.current_instance, answer)
        if config.kind is ChallengeKind.MEMORY:
            self.input_buffer = []
        return self._record(config, success)

    def press_color(self, color: MemoryColor) -> AnswerOutcome:
        """Add one colour to the memory input buffer, verifying once it is full."""
        config = self._require_presenting()
        if not isinstance(self.current_instance, MemoryChallenge):
            raise InvalidTransition(f"Current challenge is {config.kind.value}, not memory")
        try:
            self.input_buffer.append(MemoryColor(color))
        except ValueError:
            raise InvalidConfig(f"Unknown colour: {color!r}") from None
        if len(self.input_buffer) < self.current_instance.length:
            return AnswerOutcome.PENDING
        success = self.engine.verify(self.current_instance, self.input_buffer)
        self.input_buffer = []
        return self._record(config, success)

    def device_connected(self, name: str) -> Optional[AnswerOutcome]:
        """Feed a device connection event. Returns None when no proximity challenge is up."""
        if self.state is not SequencerState.PRESENTING:
            return None
        config = self.configs[self.current_index]
        if config.kind is not ChallengeKind.BLUETOOTH:
            return None
        if not self.engine.verify(self.current_instance, name):
            return None
        return self._record(config, True)
