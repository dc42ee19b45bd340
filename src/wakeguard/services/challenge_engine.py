"""Challenge generation and verification."""
import logging
import random
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Type, final

from wakeguard.errors import InvalidConfig
from wakeguard.models.challenge_models import (
    BluetoothChallenge,
    BluetoothChallengeConfig,
    ChallengeConfig,
    ChallengeInstance,
    ChallengeKind,
    Difficulty,
    MathChallenge,
    MathChallengeConfig,
    MemoryChallenge,
    MemoryChallengeConfig,
    MemoryColor,
    TypingChallenge,
    TypingChallengeConfig,
)


logger = logging.getLogger(__name__)


EASY_WORDS = [
    "cat", "dog", "sun", "run", "big", "red", "hot", "yes",
    "car", "toy", "cup", "box", "hat", "pen", "key", "eye",
    "map", "bag", "bat", "can", "fox", "hen", "jam", "nut",
]

MEDIUM_WORDS = [
    "morning", "elephant", "bicycle", "rainbow", "kitchen",
    "computer", "umbrella", "sandwich", "dinosaur", "hospital",
    "birthday", "giraffe", "airplane", "princess", "treasure",
    "mountain", "football", "vegetable", "chocolate", "butterfly",
]

HARD_WORDS = [
    "extraordinary", "international", "revolutionary", "psychological",
    "sophisticated", "uncomfortable", "environmental", "unbelievable",
    "unconventional", "interdisciplinary", "transcontinental",
    "incomprehensible", "entrepreneurship", "electromagnetic",
    "transformation", "archaeologist", "philosophical", "unpredictable",
]

EXTREME_WORDS = [
    "electroencephalography", "deoxyribonucleic", "institutionalization",
    "psychoneuroimmunology", "counterrevolutionary", "electromagnetism",
    "telecommunications", "compartmentalization", "internationalization",
    "pneumonoultramicroscopicsilicovolcanoconiosis", "floccinaucinihilipilification",
    "antidisestablishmentarianism", "supercalifragilisticexpialidocious",
]

WORD_POOLS: Dict[Difficulty, List[str]] = {
    Difficulty.EASY: EASY_WORDS,
    Difficulty.MEDIUM: MEDIUM_WORDS,
    Difficulty.HARD: HARD_WORDS,
    Difficulty.EXTREME: EXTREME_WORDS,
}

MEMORY_SEQUENCE_LENGTHS: Dict[Difficulty, int] = {
    Difficulty.EASY: 4,
    Difficulty.MEDIUM: 6,
    Difficulty.HARD: 8,
    Difficulty.EXTREME: 12,
}


def get_all_subclasses(cls):
    """Get all subclasses of a class."""
    all_subclasses = []
    for subclass in cls.__subclasses__():
        all_subclasses.append(subclass)
        all_subclasses.extend(get_all_subclasses(subclass))
    return all_subclasses


class PairedDeviceRegistry:
    """Names of devices the user has connected to before."""

    def __init__(self, names: Iterable[str] = ()):
        self._names: Set[str] = set(names)
        self._lock = threading.Lock()

    def add(self, name: str) -> None:
        with self._lock:
            if name not in self._names:
                self._names.add(name)
                logger.info("Paired device added: %s", name)

    def remove(self, name: str) -> None:
        with self._lock:
            self._names.discard(name)

    def is_paired(self, name: str) -> bool:
        with self._lock:
            return name in self._names

    def names(self) -> List[str]:
        with self._lock:
            return sorted(self._names)


class BaseChallengeGenerator(ABC):
    """Base class for all challenge generators."""

    kind: ChallengeKind
    config_type: Type

    @abstractmethod
    def _generate(self, config: ChallengeConfig) -> ChallengeInstance:
        """Build a new challenge instance. Must be implemented by subclasses."""
        raise NotImplementedError("Subclasses must implement this method")

    @abstractmethod
    def verify(self, instance: ChallengeInstance, answer: Any) -> bool:
        """Check an answer against a generated instance."""
        raise NotImplementedError("Subclasses must implement this method")

    @abstractmethod
    def correct_answer(self, instance: ChallengeInstance) -> Any:
        """Return an answer that ``verify`` accepts."""
        raise NotImplementedError("Subclasses must implement this method")

    @final
    def __init__(self, rng: random.Random, paired_devices: PairedDeviceRegistry):
        self.rng = rng
        self.paired_devices = paired_devices

    @final
    def generate(self, config: ChallengeConfig) -> ChallengeInstance:
        """Generate a challenge instance for the given config."""
        if not isinstance(config, self.config_type):
            raise InvalidConfig(f"{type(self).__name__} cannot generate from {type(config).__name__}")
        instance = self._generate(config)
        logger.debug(f"{self.kind.value}: generated {instance}")
        return instance


class MathChallengeGenerator(BaseChallengeGenerator):
    """Arithmetic puzzles scaled by difficulty."""
    kind = ChallengeKind.MATH
    config_type = MathChallengeConfig

    def _generate(self, config: MathChallengeConfig) -> MathChallenge:
        rng = self.rng
        if config.difficulty is Difficulty.EASY:
            a, b = rng.randint(2, 9), rng.randint(2, 9)
            return MathChallenge(question=f"{a} + {b}", answer=a + b)
        if config.difficulty is Difficulty.MEDIUM:
            a, b = rng.randint(11, 99), rng.randint(11, 99)
            return MathChallenge(question=f"{a} + {b}", answer=a + b)
        if config.difficulty is Difficulty.HARD:
            a, b, c = rng.randint(11, 50), rng.randint(2, 9), rng.randint(1, 20)
            return MathChallenge(question=f"{a} × {b} - {c}", answer=a * b - c)
        a, b, c = rng.randint(11, 99), rng.randint(11, 99), rng.randint(11, 99)
        return MathChallenge(question=f"{a} + {b} + {c}", answer=a + b + c)

    def verify(self, instance: MathChallenge, answer: Any) -> bool:
        if isinstance(answer, bool):
            return False
        if isinstance(answer, str):
            try:
                answer = int(answer.strip())
            except ValueError:
                return False
        return isinstance(answer, int) and answer == instance.answer

    def correct_answer(self, instance: MathChallenge) -> int:
        return instance.answer


class TypingChallengeGenerator(BaseChallengeGenerator):
    """Random phrases drawn from a word pool per difficulty."""
    kind = ChallengeKind.TYPING
    config_type = TypingChallengeConfig

    def _generate(self, config: TypingChallengeConfig) -> TypingChallenge:
        words = WORD_POOLS[config.difficulty]
        selected = [self.rng.choice(words) for _ in range(config.word_count)]
        return TypingChallenge(target_text=" ".join(selected), word_count=config.word_count)

    def verify(self, instance: TypingChallenge, answer: Any) -> bool:
        if not isinstance(answer, str):
            return False
        # Only the ends are trimmed, spacing between words must match
        return answer.strip().lower() == instance.target_text.lower()

    def correct_answer(self, instance: TypingChallenge) -> str:
        return instance.target_text


class MemoryChallengeGenerator(BaseChallengeGenerator):
    """Colour sequences to repeat, longer at higher difficulty."""
    kind = ChallengeKind.MEMORY
    config_type = MemoryChallengeConfig

    def _generate(self, config: MemoryChallengeConfig) -> MemoryChallenge:
        length = MEMORY_SEQUENCE_LENGTHS[config.difficulty]
        colors = list(MemoryColor)
        sequence = tuple(self.rng.choice(colors) for _ in range(length))
        return MemoryChallenge(sequence=sequence, length=length)

    def verify(self, instance: MemoryChallenge, answer: Any) -> bool:
        if isinstance(answer, (str, bytes)) or not isinstance(answer, Sequence):
            return False
        if len(answer) != len(instance.sequence):
            return False
        try:
            colors = [MemoryColor(color) for color in answer]
        except ValueError:
            return False
        return all(expected == given for expected, given in zip(instance.sequence, colors))

    def correct_answer(self, instance: MemoryChallenge) -> List[MemoryColor]:
        return list(instance.sequence)


class BluetoothChallengeGenerator(BaseChallengeGenerator):
    """Proximity check: the user must connect a named device."""
    kind = ChallengeKind.BLUETOOTH
    config_type = BluetoothChallengeConfig

    def _generate(self, config: BluetoothChallengeConfig) -> BluetoothChallenge:
        return BluetoothChallenge(
            target_device_name=config.device_name,
            use_paired_only=config.use_paired_only,
        )

    def verify(self, instance: BluetoothChallenge, answer: Any) -> bool:
        """Record a connection event; ``answer`` is the connected device name."""
        if instance.connected:
            return True
        if not isinstance(answer, str) or answer != instance.target_device_name:
            return False
        if instance.use_paired_only and not self.paired_devices.is_paired(answer):
            logger.info("Ignoring connection from unpaired device %s", answer)
            return False
        instance.connected = True
        self.paired_devices.add(answer)
        return True

    def correct_answer(self, instance: BluetoothChallenge) -> str:
        return instance.target_device_name


class ChallengeEngine:
    """Dispatches generation and verification to the generator for each kind."""

    def __init__(
        self,
        rng: Optional[random.Random] = None,
        seed: Optional[int] = None,
        paired_devices: Optional[PairedDeviceRegistry] = None,
    ):
        self.rng = rng or random.Random(seed)
        self.paired_devices = paired_devices or PairedDeviceRegistry()
        self.generators: Dict[ChallengeKind, BaseChallengeGenerator] = {}
        for generator_class in get_all_subclasses(BaseChallengeGenerator):
            self.generators[generator_class.kind] = generator_class(self.rng, self.paired_devices)

    def _generator_for(self, kind: ChallengeKind) -> BaseChallengeGenerator:
        try:
            return self.generators[kind]
        except KeyError:
            raise InvalidConfig(f"No generator registered for {kind}") from None

    def generate(self, config: ChallengeConfig) -> ChallengeInstance:
        """Generate a fresh challenge for a config."""
        return self._generator_for(config.kind).generate(config)

    def verify(self, instance: ChallengeInstance, answer: Any) -> bool:
        """Verify an answer. Always returns an explicit result."""
        return self._generator_for(self.kind_of(instance)).verify(instance, answer)

    def correct_answer(self, instance: ChallengeInstance) -> Any:
        return self._generator_for(self.kind_of(instance)).correct_answer(instance)

    @staticmethod
    def kind_of(instance: ChallengeInstance) -> ChallengeKind:
        """Map an instance type back to its challenge kind."""
        if isinstance(instance, MathChallenge):
            return ChallengeKind.MATH
        if isinstance(instance, TypingChallenge):
            return ChallengeKind.TYPING
        if isinstance(instance, MemoryChallenge):
            return ChallengeKind.MEMORY
        if isinstance(instance, BluetoothChallenge):
            return ChallengeKind.BLUETOOTH
        raise InvalidConfig(f"Unknown challenge instance {type(instance).__name__}")
