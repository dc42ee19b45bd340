"""Models for challenge configurations and generated challenge instances."""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, Tuple, Type, Union
from uuid import UUID, uuid4

from wakeguard.config import settings
from wakeguard.errors import InvalidConfig


logger = logging.getLogger(__name__)


class ChallengeKind(Enum):
    """Available challenge kinds."""
    MATH = "math"  # Arithmetic puzzle
    TYPING = "typing"  # Retype a random phrase
    MEMORY = "memory"  # Repeat a colour sequence
    BLUETOOTH = "bluetooth"  # Connect to a named device


class Difficulty(Enum):
    """Challenge difficulty levels."""
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"
    EXTREME = "extreme"

    @property
    def label(self) -> str:
        return self.value.capitalize()


class MemoryColor(Enum):
    """Colours used by the memory pattern challenge."""
    RED = "red"
    GREEN = "green"
    BLUE = "blue"
    YELLOW = "yellow"


def _parse_difficulty(value: Any) -> Difficulty:
    if isinstance(value, Difficulty):
        return value
    try:
        return Difficulty(str(value).lower())
    except ValueError:
        raise InvalidConfig(f"Unknown difficulty: {value!r}") from None


def _default_difficulty() -> Difficulty:
    return _parse_difficulty(settings.challenges.default_difficulty)


@dataclass(frozen=True)
class MathChallengeConfig:
    """Arithmetic challenge configuration."""
    kind: ClassVar[ChallengeKind] = ChallengeKind.MATH
    difficulty: Difficulty = field(default_factory=_default_difficulty)
    id: UUID = field(default_factory=uuid4)

    def __post_init__(self):
        object.__setattr__(self, "difficulty", _parse_difficulty(self.difficulty))

    @property
    def display_name(self) -> str:
        return f"Math Puzzle ({self.difficulty.label})"

    def payload(self) -> Dict[str, Any]:
        return {"difficulty": self.difficulty.value}


@dataclass(frozen=True)
class TypingChallengeConfig:
    """Typing challenge configuration."""
    kind: ClassVar[ChallengeKind] = ChallengeKind.TYPING
    difficulty: Difficulty = field(default_factory=_default_difficulty)
    word_count: int = field(default_factory=lambda: settings.challenges.default_word_count)
    id: UUID = field(default_factory=uuid4)

    def __post_init__(self):
        object.__setattr__(self, "difficulty", _parse_difficulty(self.difficulty))
        if isinstance(self.word_count, bool) or not isinstance(self.word_count, int):
            raise InvalidConfig(f"Word count must be an integer, got {self.word_count!r}")
        low, high = settings.challenges.min_word_count, settings.challenges.max_word_count
        if not low <= self.word_count <= high:
            raise InvalidConfig(f"Word count must be between {low} and {high}, got {self.word_count}")

    @property
    def display_name(self) -> str:
        return f"Typing Challenge ({self.difficulty.label})"

    def payload(self) -> Dict[str, Any]:
        return {"difficulty": self.difficulty.value, "word_count": self.word_count}


@dataclass(frozen=True)
class MemoryChallengeConfig:
    """Memory pattern challenge configuration."""
    kind: ClassVar[ChallengeKind] = ChallengeKind.MEMORY
    difficulty: Difficulty = field(default_factory=_default_difficulty)
    id: UUID = field(default_factory=uuid4)

    def __post_init__(self):
        object.__setattr__(self, "difficulty", _parse_difficulty(self.difficulty))

    @property
    def display_name(self) -> str:
        return f"Memory Pattern ({self.difficulty.label})"

    def payload(self) -> Dict[str, Any]:
        return {"difficulty": self.difficulty.value}


@dataclass(frozen=True)
class BluetoothChallengeConfig:
    """Device proximity challenge configuration."""
    kind: ClassVar[ChallengeKind] = ChallengeKind.BLUETOOTH
    device_name: str = ""
    use_paired_only: bool = False
    id: UUID = field(default_factory=uuid4)

    def __post_init__(self):
        if not isinstance(self.device_name, str) or not self.device_name.strip():
            raise InvalidConfig("Bluetooth device name must not be empty")

    @property
    def display_name(self) -> str:
        return f"Bluetooth: {self.device_name}"

    def payload(self) -> Dict[str, Any]:
        return {"device_name": self.device_name, "use_paired_only": self.use_paired_only}


ChallengeConfig = Union[
    MathChallengeConfig,
    TypingChallengeConfig,
    MemoryChallengeConfig,
    BluetoothChallengeConfig,
]

CONFIG_TYPES: Dict[ChallengeKind, Type] = {
    ChallengeKind.MATH: MathChallengeConfig,
    ChallengeKind.TYPING: TypingChallengeConfig,
    ChallengeKind.MEMORY: MemoryChallengeConfig,
    ChallengeKind.BLUETOOTH: BluetoothChallengeConfig,
}


def to_record(config: ChallengeConfig) -> Dict[str, Any]:
    """Serialize a challenge config as a discriminated record."""
    return {"id": str(config.id), "kind": config.kind.value, "payload": config.payload()}


def peek_record(record: Dict[str, Any]) -> Tuple[UUID, ChallengeKind]:
    """Read identity and kind of a record without decoding its payload."""
    try:
        return UUID(str(record["id"])), ChallengeKind(record["kind"])
    except (KeyError, ValueError) as e:
        raise InvalidConfig(f"Malformed challenge record: {e}") from e


def challenge_config_from_record(record: Dict[str, Any]) -> ChallengeConfig:
    """Decode a discriminated record back into its challenge config."""
    config_id, kind = peek_record(record)
    payload = record.get("payload") or {}
    if not isinstance(payload, dict):
        raise InvalidConfig(f"Challenge payload for {config_id} must be a mapping")
    config_type = CONFIG_TYPES[kind]
    try:
        return config_type(id=config_id, **payload)
    except TypeError as e:
        raise InvalidConfig(f"Invalid {kind.value} payload: {e}") from e


@dataclass(frozen=True)
class MathChallenge:
    """Generated arithmetic puzzle."""
    question: str
    answer: int


@dataclass(frozen=True)
class TypingChallenge:
    """Generated phrase to retype."""
    target_text: str
    word_count: int


@dataclass(frozen=True)
class MemoryChallenge:
    """Generated colour sequence to repeat."""
    sequence: Tuple[MemoryColor, ...]
    length: int


@dataclass
class BluetoothChallenge:
    """Device the user has to connect to."""
    target_device_name: str
    use_paired_only: bool = False
    connected: bool = False


ChallengeInstance = Union[MathChallenge, TypingChallenge, MemoryChallenge, BluetoothChallenge]
