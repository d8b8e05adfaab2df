"""
Logging Configuration

Standard logging for the orchestrator plus two audit loggers. Every
persisted GameEvent is mirrored to ``matrix_game.events`` and every
player-initiated operation to ``matrix_game.actions``, both at DEBUG, so
a game can be followed from the logs without querying the database.
"""

import logging
import sys
from typing import Any, Dict, Mapping, Optional

from .config import get_settings, is_development

EVENT_LOGGER = "matrix_game.events"
ACTION_LOGGER = "matrix_game.actions"

# Third-party loggers that drown out game activity at INFO
_NOISY_LOGGERS = ("httpx", "telegram", "aiosqlite")


def setup_logging() -> None:
    """
    Configure root logging from settings.

    SQL statement logging is only left on when DEBUG is set in a
    development environment.
    """
    settings = get_settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    if not (settings.debug and is_development()):
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    get_logger(__name__).info(
        f"Logging initialized at {settings.log_level.upper()} ({settings.environment})"
    )


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def format_context(context: Optional[Mapping[str, Any]]) -> str:
    """Render audit context as sorted key=value pairs."""
    if not context:
        return ""
    return " ".join(f"{key}={context[key]}" for key in sorted(context))


def log_user_action(user_id: int, action: str, **context) -> None:
    """
    Audit an operation a player invoked.

    Args:
        user_id: Caller's user ID
        action: Operation name, e.g. "submit_vote"
        **context: IDs and values worth keeping (action_id, vote_type, ...)
    """
    get_logger(ACTION_LOGGER).debug(
        f"user_id={user_id} action={action} {format_context(context)}".rstrip()
    )


def log_game_event(
    game_id: str,
    event_type: str,
    player_id: Optional[str] = None,
    data: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Mirror a game event to the event log.

    The event data is logged as given; its keys never clash with the
    fixed fields because it is not spread into keyword arguments.

    Args:
        game_id: Game the event belongs to
        event_type: EventType constant
        player_id: Acting player, None for system events
        data: Event payload as stored on the GameEvent row
    """
    actor = player_id or "system"
    get_logger(EVENT_LOGGER).debug(
        f"game_id={game_id} event={event_type} by={actor} {format_context(data)}".rstrip()
    )
