"""Main entry point for the alarm service."""
import asyncio
import logging
import signal

from wakeguard.app import WakeGuardApp
from wakeguard.config import ensure_directories
from wakeguard.logging_config import setup_logging


logger = logging.getLogger(__name__)


async def shutdown(sig, stop_event: asyncio.Event) -> None:
    """Request a graceful shutdown."""
    print()  # Print newline before logging
    logger.info(f"Received exit signal {sig.name}...")
    stop_event.set()


def handle_exception(loop, context):
    """Handle exceptions in the event loop."""
    msg = context.get("exception", context["message"])
    logger.error(f"Caught exception: {msg}")


async def main() -> None:
    """Run the alarm service."""
    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda s=sig: asyncio.create_task(shutdown(s, stop_event))
        )

    loop.set_exception_handler(handle_exception)

    app = WakeGuardApp()
    try:
        logger.info("Starting alarm service...")
        await app.start()
        await stop_event.wait()
    finally:
        logger.info("Cleaning up...")
        await app.stop()


if __name__ == "__main__":
    ensure_directories()

    setup_logging("Starting WakeGuard v0.1.0 ...")

    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt, shutting down...")
