"""Configuration settings for the alarm service."""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

# Define base directory
BASE_DIR = Path(__file__).parent.parent.parent

# Load environment variables from .env file
env_file = ".env.test" if os.getenv("ENV") == "test" else ".env"
load_dotenv(env_file)


# Define data directories from environment variables
DATA_DIR = Path(os.getenv("DATA_DIR", "./data"))
LOGS_DIR = DATA_DIR / "logs"

# Allowed wake-up check options
WAKEUP_DELAY_OPTIONS = [5, 10, 15, 20, 30]  # minutes after dismissal
WAKEUP_RESPONSE_OPTIONS = [1, 2, 3, 5]  # minutes to answer the check
DIFFICULTY_LEVELS = ["easy", "medium", "hard", "extreme"]


def ensure_directories() -> None:
    """Ensure all required directories exist."""
    directories = [
        DATA_DIR,
        LOGS_DIR,
    ]

    for directory in directories:
        directory.mkdir(parents=True, exist_ok=True)


@dataclass
class PathSettings:
    """Path configuration settings."""
    base_dir: Path = BASE_DIR
    data_dir: Path = DATA_DIR
    logs_dir: Path = LOGS_DIR


@dataclass
class DatabaseSettings:
    """Database configuration settings."""
    url: str = os.getenv("DATABASE_URL", "sqlite:///wakeguard.db")
    echo: bool = os.getenv("DATABASE_ECHO", "false").lower() == "true"


@dataclass
class LoggingSettings:
    """Logging configuration settings."""
    level: str = os.getenv("LOG_LEVEL", "INFO")
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    dir: Optional[str] = os.getenv("LOG_DIR", None)
    rotation: str = os.getenv("LOG_ROTATION", "midnight")
    interval: int = int(os.getenv("LOG_INTERVAL", "1"))
    backup_count: int = int(os.getenv("LOG_BACKUP_COUNT", "7"))


def get_paired_devices() -> list[str]:
    """Get initially paired device names from environment variable."""
    return [name.strip() for name in os.getenv("PAIRED_DEVICES", "").split(",") if name.strip()]


def get_challenge_seed() -> Optional[int]:
    """Get the random seed for challenge generation, if any."""
    seed = os.getenv("CHALLENGE_SEED")
    return int(seed) if seed else None


@dataclass
class ChallengeSettings:
    """Challenge generation settings."""
    default_difficulty: str = os.getenv("DEFAULT_DIFFICULTY", "medium")
    default_word_count: int = int(os.getenv("DEFAULT_WORD_COUNT", "5"))
    min_word_count: int = 3
    max_word_count: int = 10
    seed: Optional[int] = field(default_factory=get_challenge_seed)
    paired_devices: List[str] = field(default_factory=get_paired_devices)


@dataclass
class WakeUpSettings:
    """Wake-up re-verification defaults."""
    delay_minutes: int = int(os.getenv("WAKEUP_DELAY_MINUTES", "10"))
    response_time_minutes: int = int(os.getenv("WAKEUP_RESPONSE_MINUTES", "2"))
    delay_options: List[int] = field(default_factory=lambda: list(WAKEUP_DELAY_OPTIONS))
    response_options: List[int] = field(default_factory=lambda: list(WAKEUP_RESPONSE_OPTIONS))


@dataclass
class MonitoringSettings:
    """Prometheus metrics settings."""
    enabled: bool = os.getenv("METRICS_ENABLED", "false").lower() == "true"
    port: int = int(os.getenv("METRICS_PORT", "9090"))


def get_path_settings() -> PathSettings:
    """Get path settings."""
    return PathSettings()


def get_database_settings() -> DatabaseSettings:
    """Get database settings."""
    return DatabaseSettings()


def get_logging_settings() -> LoggingSettings:
    """Get logging settings."""
    return LoggingSettings()


def get_challenge_settings() -> ChallengeSettings:
    """Get challenge settings."""
    return ChallengeSettings()


def get_wakeup_settings() -> WakeUpSettings:
    """Get wake-up check settings."""
    return WakeUpSettings()


def get_monitoring_settings() -> MonitoringSettings:
    """Get monitoring settings."""
    return MonitoringSettings()


@dataclass
class Settings:
    """Main settings class that combines all configuration settings."""
    paths: PathSettings = field(default_factory=get_path_settings)
    database: DatabaseSettings = field(default_factory=get_database_settings)
    logging: LoggingSettings = field(default_factory=get_logging_settings)
    challenges: ChallengeSettings = field(default_factory=get_challenge_settings)
    wakeup: WakeUpSettings = field(default_factory=get_wakeup_settings)
    monitoring: MonitoringSettings = field(default_factory=get_monitoring_settings)

    def validate(self) -> None:
        """Validate settings and raise ValueError if invalid."""
        if self.challenges.default_difficulty not in DIFFICULTY_LEVELS:
            raise ValueError(f"DEFAULT_DIFFICULTY must be one of {', '.join(DIFFICULTY_LEVELS)}")

        if not self.challenges.min_word_count <= self.challenges.default_word_count <= self.challenges.max_word_count:
            raise ValueError("DEFAULT_WORD_COUNT must be between 3 and 10")

        if self.wakeup.delay_minutes not in self.wakeup.delay_options:
            raise ValueError(f"WAKEUP_DELAY_MINUTES must be one of {self.wakeup.delay_options}")

        if self.wakeup.response_time_minutes not in self.wakeup.response_options:
            raise ValueError(f"WAKEUP_RESPONSE_MINUTES must be one of {self.wakeup.response_options}")

        if self.monitoring.port < 1 or self.monitoring.port > 65535:
            raise ValueError("METRICS_PORT must be a valid TCP port")


# Create global settings instance
settings = Settings()
settings.validate()
