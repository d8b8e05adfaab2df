"""
Game Phase Orchestrator

The top-level state machine of a game. Every phase change goes through
apply_transition(), which validates the move against a fixed table and
commits it with a conditional update so that a writer holding a stale
view of the phase fails instead of overwriting a newer phase.

This module also holds the small loaders and guards every manager uses:
loading games and players, membership and host checks, and the
persisted audit log.
"""

from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..database.database import DatabaseSession
from ..database.models import Game, GameEvent, GamePhase, GameStatus, Player, utcnow
from ..utils.logging_config import get_logger, log_game_event
from .exceptions import InvalidStateError, NotFoundError, PermissionDeniedError
from .settings import GameSettings

logger = get_logger(__name__)

TRANSITIONS = {
    GamePhase.WAITING: {GamePhase.PROPOSAL},
    GamePhase.PROPOSAL: {GamePhase.ARGUMENTATION},
    GamePhase.ARGUMENTATION: {GamePhase.VOTING, GamePhase.ARBITER_REVIEW},
    GamePhase.ARBITER_REVIEW: {GamePhase.RESOLUTION},
    GamePhase.VOTING: {GamePhase.RESOLUTION},
    GamePhase.RESOLUTION: {GamePhase.NARRATION},
    GamePhase.NARRATION: {GamePhase.PROPOSAL, GamePhase.ROUND_SUMMARY},
    GamePhase.ROUND_SUMMARY: {GamePhase.PROPOSAL},
}

# Only reachable through an explicit host override
OVERRIDE_TRANSITIONS = {
    GamePhase.PROPOSAL: {GamePhase.ROUND_SUMMARY},
}


class EventType:
    """Audit event type names."""
    GAME_CREATED = "GAME_CREATED"
    SETTINGS_UPDATED = "SETTINGS_UPDATED"
    PLAYER_JOINED = "PLAYER_JOINED"
    PLAYER_LEFT = "PLAYER_LEFT"
    PLAYER_REJOINED = "PLAYER_REJOINED"
    PERSONA_SELECTED = "PERSONA_SELECTED"
    PERSONA_LEAD_CHANGED = "PERSONA_LEAD_CHANGED"
    PLAYER_ROLE_CHANGED = "PLAYER_ROLE_CHANGED"
    GAME_STARTED = "GAME_STARTED"
    GAME_DELETED = "GAME_DELETED"
    PHASE_CHANGED = "PHASE_CHANGED"
    ACTION_PROPOSED = "ACTION_PROPOSED"
    NPC_ACTION_PROPOSED = "NPC_ACTION_PROPOSED"
    ARGUMENT_ADDED = "ARGUMENT_ADDED"
    ARGUMENTATION_COMPLETED = "ARGUMENTATION_COMPLETED"
    VOTE_SUBMITTED = "VOTE_SUBMITTED"
    ACTION_RESOLVED = "ACTION_RESOLVED"
    ACTION_NARRATED = "ACTION_NARRATED"
    ARGUMENTATION_SKIPPED = "ARGUMENTATION_SKIPPED"
    VOTING_SKIPPED = "VOTING_SKIPPED"
    PROPOSALS_SKIPPED = "PROPOSALS_SKIPPED"
    ACTION_EDITED = "ACTION_EDITED"
    ARGUMENT_EDITED = "ARGUMENT_EDITED"
    NARRATION_EDITED = "NARRATION_EDITED"
    ARGUMENT_STRENGTH_TOGGLED = "ARGUMENT_STRENGTH_TOGGLED"
    ARBITER_REVIEW_COMPLETED = "ARBITER_REVIEW_COMPLETED"
    ROUND_SUMMARY_SUBMITTED = "ROUND_SUMMARY_SUBMITTED"
    ROUND_SUMMARY_EDITED = "ROUND_SUMMARY_EDITED"
    ROUND_STARTED = "ROUND_STARTED"
    PROPOSAL_TIMEOUT = "PROPOSAL_TIMEOUT"
    ARGUMENTATION_TIMEOUT = "ARGUMENTATION_TIMEOUT"
    VOTING_TIMEOUT = "VOTING_TIMEOUT"
    NARRATION_TIMEOUT = "NARRATION_TIMEOUT"


def can_transition(current: GamePhase, target: GamePhase, override: bool = False) -> bool:
    """Check whether a phase change is allowed by the transition table."""
    if target in TRANSITIONS.get(current, set()):
        return True
    return override and target in OVERRIDE_TRANSITIONS.get(current, set())


async def load_game(session: AsyncSession, game_id: str) -> Game:
    """
    Re-read a game from the database.

    Raises:
        NotFoundError: If the game does not exist or was deleted
    """
    game = await session.get(Game, game_id, populate_existing=True)
    if game is None or game.deleted_at is not None:
        raise NotFoundError(f"Game {game_id} not found")
    return game


def require_active(game: Game) -> None:
    if game.status != GameStatus.ACTIVE:
        raise InvalidStateError(f"Game is {game.status.value}, not active")


def require_lobby(game: Game) -> None:
    if game.status != GameStatus.LOBBY:
        raise InvalidStateError("This can only be done while the game is in the lobby")


def require_phase(game: Game, *phases: GamePhase) -> None:
    if game.current_phase not in phases:
        expected = " or ".join(p.value for p in phases)
        raise InvalidStateError(f"Game is in {game.current_phase.value} phase, expected {expected}")


def game_settings(game: Game) -> GameSettings:
    return GameSettings.from_dict(game.settings)


async def load_players(session: AsyncSession, game_id: str) -> List[Player]:
    """All players of a game (including inactive and NPC), in join order."""
    result = await session.execute(
        select(Player).where(Player.game_id == game_id).order_by(Player.join_order)
    )
    return list(result.scalars().all())


async def load_player(session: AsyncSession, game_id: str, player_id: str) -> Player:
    player = await session.get(Player, player_id, populate_existing=True)
    if player is None or player.game_id != game_id:
        raise NotFoundError(f"Player {player_id} not found in this game")
    return player


async def require_member(session: AsyncSession, game_id: str, user_id: int) -> Player:
    """
    Resolve the caller's active player record.

    Raises:
        PermissionDeniedError: If the caller is not an active member of the game
    """
    result = await session.execute(
        select(Player).where(
            Player.game_id == game_id,
            Player.user_id == user_id,
            Player.is_npc.is_(False),
        )
    )
    player = result.scalar_one_or_none()
    if player is None or not player.is_active:
        raise PermissionDeniedError("You are not an active player in this game")
    return player


async def require_host(session: AsyncSession, game_id: str, user_id: int) -> Player:
    player = await require_member(session, game_id, user_id)
    if not player.is_host:
        raise PermissionDeniedError("Only the host can do this")
    return player


async def host_user_ids(session: AsyncSession, game_id: str) -> List[int]:
    result = await session.execute(
        select(Player.user_id).where(
            Player.game_id == game_id, Player.is_host.is_(True), Player.is_active.is_(True)
        )
    )
    return list(result.scalars().all())


async def record_event(
    session: AsyncSession,
    game_id: str,
    event_type: str,
    player_id: Optional[str] = None,
    data: Optional[Dict[str, Any]] = None,
) -> GameEvent:
    """Append an audit event (player_id is None for system events)."""
    event = GameEvent(game_id=game_id, player_id=player_id, event_type=event_type, event_data=data or {})
    session.add(event)
    log_game_event(game_id, event_type, player_id=player_id, data=data)
    return event


async def apply_transition(
    session: AsyncSession,
    game_id: str,
    new_phase: GamePhase,
    *,
    from_phase: Optional[GamePhase] = None,
    override: bool = False,
    player_id: Optional[str] = None,
    **values,
) -> Game:
    """
    Move a game to a new phase inside an open session.

    Args:
        session: Open session; the caller's block commits the change
        game_id: Game to move
        new_phase: Target phase
        from_phase: Phase the caller believes the game is in
        override: Allow host-override edges
        player_id: Acting player for the audit event
        **values: Extra Game columns to set in the same update

    Returns:
        Game: Refreshed game

    Raises:
        InvalidStateError: If the move is not in the table, or the phase
            changed underneath the caller
    """
    game = await load_game(session, game_id)
    current = game.current_phase

    if from_phase is not None and current != from_phase:
        raise InvalidStateError(
            f"Game moved to {current.value} phase, expected {from_phase.value}"
        )
    if not can_transition(current, new_phase, override):
        raise InvalidStateError(f"Cannot move from {current.value} to {new_phase.value}")

    result = await session.execute(
        update(Game)
        .where(Game.id == game_id, Game.current_phase == current)
        .values(current_phase=new_phase, phase_started_at=utcnow(), **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise InvalidStateError(f"Game left {current.value} phase before the change to {new_phase.value}")

    await session.refresh(game)
    await record_event(
        session, game_id, EventType.PHASE_CHANGED, player_id,
        {"from": current.value, "to": new_phase.value, "override": override},
    )
    logger.info(f"Game {game_id} phase {current.value} -> {new_phase.value}")
    return game


async def transition_phase(game_id: str, new_phase: GamePhase, override: bool = False) -> Game:
    """
    Move a game to a new phase in its own transaction.

    Args:
        game_id: Game to move
        new_phase: Target phase
        override: Allow host-override edges

    Returns:
        Game: Game after the change
    """
    async with DatabaseSession() as session:
        return await apply_transition(session, game_id, GamePhase(new_phase), override=override)
