"""Main application entry point."""
import asyncio
import logging
import signal
from typing import Optional

from wakeguard.config import settings
from wakeguard.models.base import SessionLocal, init_db
from wakeguard.monitoring import start_monitoring
from wakeguard.services.alarm_manager import AlarmManager, default_engine
from wakeguard.services.collaborators import (
    AsyncioPlatformScheduler,
    LoggingPresenter,
    SystemClock,
)
from wakeguard.services.store_service import SqlAlchemyAlarmStore


class WakeGuardApp:
    """Main application class."""

    def __init__(self):
        """Initialize the application."""
        self.clock = SystemClock()
        self.platform: Optional[AsyncioPlatformScheduler] = None
        self.manager: Optional[AlarmManager] = None
        self.running = False
        self.logger = logging.getLogger(__name__)

    async def start(self) -> None:
        """Start the application."""
        if self.running:
            return

        try:
            init_db()
            self.logger.info("Database initialized")

            if settings.monitoring.enabled:
                start_monitoring(settings.monitoring.port)
                self.logger.info("Metrics server listening on port %d", settings.monitoring.port)

            self.platform = AsyncioPlatformScheduler(self.clock)
            self.manager = AlarmManager(
                store=SqlAlchemyAlarmStore(SessionLocal),
                platform=self.platform,
                presenter=LoggingPresenter(),
                clock=self.clock,
                engine=default_engine(),
            )
            self.platform.on_fire = self.manager.on_fire
            await self.manager.start()

            next_alarm = self.manager.next_alarm()
            if next_alarm is not None:
                self.logger.info("Next alarm: %s (%s)", next_alarm.title, next_alarm.schedule.describe())
            self.running = True

        except Exception as e:
            self.logger.error("Failed to start application: %s", str(e))
            await self.stop()
            raise

    async def stop(self) -> None:
        """Stop the application."""
        if self.manager:
            await self.manager.stop()
            self.manager = None
            self.logger.info("Alarm manager stopped")

        if self.platform:
            await self.platform.stop()
            self.platform = None
            self.logger.info("Platform timers cancelled")

        self.running = False

    def run(self) -> None:
        """Run the application until interrupted."""
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)

        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, loop.stop)

        try:
            loop.run_until_complete(self.start())
            loop.run_forever()
        except KeyboardInterrupt:
            self.logger.info("Received keyboard interrupt")
        finally:
            loop.run_until_complete(self.stop())
            loop.close()


def main() -> None:
    """Main entry point."""
    app = WakeGuardApp()
    app.run()


if __name__ == "__main__":
    main()
