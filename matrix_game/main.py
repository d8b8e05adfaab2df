"""
Matrix Game Service Main Application

This is the main entry point for the matrix game orchestrator. It
initializes the database, wires the managers together, connects the
Telegram bot used for notices and runs the timeout worker.
"""

import asyncio
import sys
from typing import Optional

from telegram import Bot

from .database.database import init_database, close_database
from .game.action_manager import ActionManager
from .game.arbiter import ArbiterManager
from .game.game_manager import GameManager
from .game.round_tracker import RoundTracker
from .game.timeouts import TimeoutProcessor
from .notifications.notifier import Notifier
from .utils.config import get_settings
from .utils.logging_config import setup_logging, get_logger
from .workers.timeout_worker import TimeoutWorker

logger = get_logger(__name__)


class MatrixGameService:
    """
    Main application class.

    Holds one instance of each manager, sharing a single notifier, plus
    the timeout worker. A transport layer calls the managers directly.
    """

    def __init__(self, bot: Optional[Bot] = None):
        """Wire the managers together."""
        self.settings = get_settings()
        self.bot = bot
        if self.bot is None and self.settings.telegram_bot_token:
            self.bot = Bot(token=self.settings.telegram_bot_token)

        self.notifier = Notifier(self.bot)
        self.actions = ActionManager(self.notifier)
        self.rounds = RoundTracker(self.notifier)
        self.games = GameManager(self.actions, self.notifier)
        self.arbiter = ArbiterManager(self.actions)
        self.timeouts = TimeoutProcessor(self.actions, self.notifier)
        self.worker = TimeoutWorker(self.timeouts)

    async def initialize(self, database_url: Optional[str] = None) -> None:
        """
        Initialize the database and start background work.

        Args:
            database_url: Overrides DATABASE_URL
        """
        try:
            logger.info("Initializing database...")
            await init_database(database_url)

            if self.bot is not None:
                await self.bot.initialize()
                logger.info(f"Notifications will be sent as @{self.bot.username}")
            else:
                logger.warning("TELEGRAM_BOT_TOKEN not set, notifications will only be logged")

            if self.settings.enable_timeout_worker:
                self.worker.start()

        except Exception as e:
            logger.error(f"Failed to initialize service: {e}")
            raise

    async def cleanup(self) -> None:
        """
        Cleanup resources when shutting down.

        Stops the worker, delivers pending notices and closes connections.
        """
        try:
            logger.info("Shutting down matrix game service...")
            await self.worker.stop()
            await self.notifier.flush()
            if self.bot is not None:
                await self.bot.shutdown()
            await close_database()
            logger.info("Shutdown complete")

        except Exception as e:
            logger.error(f"Error during cleanup: {e}")


async def main() -> None:
    """
    Run the service until interrupted.
    """
    setup_logging()
    service = MatrixGameService()

    try:
        logger.info("Starting matrix game service")
        await service.initialize()

        try:
            await asyncio.Event().wait()
        except (KeyboardInterrupt, SystemExit, asyncio.CancelledError):
            logger.info("Received shutdown signal")

    except Exception as e:
        logger.error(f"Unexpected error in main: {e}")
        sys.exit(1)
    finally:
        await service.cleanup()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nService stopped by user")
