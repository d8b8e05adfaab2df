"""
Game Notifications

Delivers short game notices to the game's Telegram chat, or as direct
messages for host-only notices. Delivery is fire-and-forget: notify()
schedules a task and returns immediately, and every delivery failure is
logged and dropped.
"""

import asyncio
from typing import Any, Dict, Iterable, Optional, Set

from telegram.error import TelegramError

from ..database.models import Game
from ..utils.config import get_settings
from ..utils.logging_config import get_logger

logger = get_logger(__name__)

GAME_STARTED = "GAME_STARTED"
ACTION_PROPOSED = "ACTION_PROPOSED"
VOTING_STARTED = "VOTING_STARTED"
ARBITER_REVIEW_STARTED = "ARBITER_REVIEW_STARTED"
RESOLUTION_READY = "RESOLUTION_READY"
NARRATION_NEEDED = "NARRATION_NEEDED"
ROUND_SUMMARY_NEEDED = "ROUND_SUMMARY_NEEDED"
NEW_ROUND = "NEW_ROUND"
TIMEOUT_OCCURRED = "TIMEOUT_OCCURRED"

_TEMPLATES = {
    GAME_STARTED: "🎲 {game_name} has started! Round 1 is open for proposals.",
    ACTION_PROPOSED: "📜 New action proposed: {description}",
    VOTING_STARTED: "🗳 Argumentation is over. Voting is open.",
    ARBITER_REVIEW_STARTED: "⚖️ Argumentation is over. The arbiter is reviewing the arguments.",
    RESOLUTION_READY: "🎯 Result: {result_type} ({result_value:+d})",
    NARRATION_NEEDED: "✍️ Waiting for the narration of the resolved action.",
    ROUND_SUMMARY_NEEDED: "📘 Round {round_number} is complete. Please submit a round summary.",
    NEW_ROUND: "🔔 Round {round_number} has begun.",
    TIMEOUT_OCCURRED: "⏰ The {phase} phase timed out.",
}


def render_message(kind: str, game_name: str, payload: Dict[str, Any]) -> str:
    """
    Render the text for a notification.

    Missing template fields fall back to a generic notice rather than failing.
    """
    template = _TEMPLATES.get(kind)
    if template is None:
        return f"{game_name}: {kind}"
    try:
        return template.format(game_name=game_name, **payload)
    except (KeyError, ValueError, TypeError):
        return f"{game_name}: {kind}"


class Notifier:
    """
    Best-effort notification sender.

    Args:
        bot: A python-telegram-bot Bot, or any object with an async
            send_message(chat_id=..., text=...). Without one, notices
            are only logged.
    """

    def __init__(self, bot=None):
        self.bot = bot
        self.settings = get_settings()
        self._pending: Set[asyncio.Task] = set()

    def notify(
        self,
        kind: str,
        game: Game,
        payload: Optional[Dict[str, Any]] = None,
        recipients: Optional[Iterable[int]] = None,
    ) -> None:
        """
        Schedule delivery of a notice and return immediately.

        Args:
            kind: Notification kind constant
            game: Game the notice is about (chat ID and name are read now)
            payload: Values for the message template
            recipients: User IDs to DM instead of posting to the game chat
        """
        payload = dict(payload or {})
        targets = list(recipients) if recipients is not None else None
        chat_id = game.chat_id if game.chat_id is not None else self.settings.fallback_chat_id
        text = render_message(kind, game.name, payload)

        try:
            task = asyncio.get_running_loop().create_task(
                self._deliver(kind, game.id, chat_id, targets, text)
            )
        except RuntimeError:
            logger.warning(f"No running event loop, dropping {kind} notice for game {game.id}")
            return
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, kind: str, game_id: str, chat_id, targets, text: str) -> None:
        destinations = targets if targets is not None else ([chat_id] if chat_id is not None else [])
        if not destinations:
            logger.info(f"Notice {kind} for game {game_id} has no destination")
            return
        if self.bot is None:
            logger.info(f"Notice {kind} for game {game_id}: {text}")
            return

        for destination in destinations:
            try:
                await self.bot.send_message(chat_id=destination, text=text)
            except TelegramError as e:
                logger.warning(f"Telegram rejected {kind} notice for game {game_id} to {destination}: {e}")
            except Exception as e:
                logger.error(f"Failed to deliver {kind} notice for game {game_id} to {destination}: {e}")

    async def flush(self) -> None:
        """Wait for every scheduled delivery to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    @property
    def pending_count(self) -> int:
        return len(self._pending)
