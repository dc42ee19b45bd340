"""Test configuration."""
import asyncio
import heapq
import itertools
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List, Tuple
from uuid import UUID

import pytest
import pytest_asyncio
from dotenv import load_dotenv

# Set test environment before any imports
os.environ["ENV"] = "test"
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

# Load test environment variables
test_env_path = Path(__file__).parent.parent.parent.parent / ".env.test"
load_dotenv(test_env_path)

# Import after environment setup
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from wakeguard.config import ensure_directories
from wakeguard.errors import SchedulingError, StorageFailed
from wakeguard.models.base import init_db
from wakeguard.services.alarm_manager import AlarmManager
from wakeguard.services.challenge_engine import ChallengeEngine, PairedDeviceRegistry

# Monday morning
START = datetime(2026, 10, 19, 6, 0, tzinfo=timezone.utc)


class ManualClock:
    """Clock that only moves when a test advances it."""

    def __init__(self, start: datetime = START):
        self.current = start
        self._waiters: List[Tuple[datetime, int, asyncio.Future]] = []
        self._seq = itertools.count()

    def now(self) -> datetime:
        return self.current

    async def sleep(self, seconds: float) -> None:
        if seconds <= 0:
            await asyncio.sleep(0)
            return
        future = asyncio.get_running_loop().create_future()
        heapq.heappush(self._waiters, (self.current + timedelta(seconds=seconds), next(self._seq), future))
        await future

    @property
    def pending(self) -> int:
        return sum(1 for _, _, future in self._waiters if not future.done())

    async def settle(self) -> None:
        for _ in range(20):
            await asyncio.sleep(0)

    async def advance(self, seconds: float = 0, minutes: float = 0) -> None:
        """Move time forward, waking sleepers in deadline order."""
        target = self.current + timedelta(seconds=seconds, minutes=minutes)
        await self.settle()
        while self._waiters and self._waiters[0][0] <= target:
            deadline, _, future = heapq.heappop(self._waiters)
            if future.done():
                continue
            self.current = max(self.current, deadline)
            future.set_result(None)
            await self.settle()
        self.current = target
        await self.settle()


class RecordingPlatform:
    """Platform scheduler fake that remembers registered fire times."""

    def __init__(self):
        self.scheduled: Dict[UUID, datetime] = {}
        self.cancelled: List[UUID] = []
        self.fail_with = None

    def schedule(self, alarm_id: UUID, fire_at: datetime) -> None:
        if self.fail_with:
            raise SchedulingError(self.fail_with)
        self.scheduled[alarm_id] = fire_at

    def cancel(self, alarm_id: UUID) -> None:
        self.scheduled.pop(alarm_id, None)
        self.cancelled.append(alarm_id)


class MemoryStore:
    """Alarm store fake keeping the last saved set."""

    def __init__(self, alarms=()):
        self.alarms = list(alarms)
        self.saves = 0
        self.fail = False

    def load_all(self):
        return list(self.alarms)

    def save_all(self, alarms) -> None:
        if self.fail:
            raise StorageFailed("disk full")
        self.alarms = list(alarms)
        self.saves += 1


class RecordingPresenter:
    """Presenter fake collecting every notification."""

    def __init__(self):
        self.events: List[tuple] = []

    def challenge_presented(self, alarm_id, instance) -> None:
        self.events.append(("challenge", alarm_id, instance))

    def all_challenges_complete(self, alarm_id) -> None:
        self.events.append(("complete", alarm_id))

    def wake_up_check_requested(self, alarm_id, respond_by) -> None:
        self.events.append(("wake_up_check", alarm_id, respond_by))

    def of_type(self, name: str) -> List[tuple]:
        return [event for event in self.events if event[0] == name]


@pytest.fixture(autouse=True)
def setup_test_environment():
    """Set up test environment before each test."""
    ensure_directories()
    yield


@pytest.fixture
def session_factory():
    """Session factory bound to a fresh in-memory database."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    try:
        yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    finally:
        engine.dispose()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def platform() -> RecordingPlatform:
    return RecordingPlatform()


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def presenter() -> RecordingPresenter:
    return RecordingPresenter()


@pytest.fixture
def engine() -> ChallengeEngine:
    return ChallengeEngine(seed=1234, paired_devices=PairedDeviceRegistry(["Kitchen Speaker"]))


@pytest_asyncio.fixture
async def manager(store, platform, presenter, clock, engine):
    """Started alarm manager wired to the fakes."""
    manager = AlarmManager(store, platform, presenter, clock=clock, engine=engine)
    await manager.start()
    try:
        yield manager
    finally:
        await manager.stop()
