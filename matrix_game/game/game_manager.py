"""
Game Manager

This module handles everything around the action lifecycle: creating
games, joining and leaving, claiming personas and their leads, assigning
the arbiter role, starting, soft-deleting, and reporting how long the
current phase has left.
"""

from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..database.database import DatabaseSession
from ..database.models import Game, GamePhase, GameRole, GameStatus, Persona, Player, utcnow
from ..notifications import notifier as notices
from ..utils.config import get_settings
from ..utils.logging_config import get_logger, log_user_action
from .action_manager import ActionManager
from .acting_units import is_human
from .exceptions import ConflictError, InvalidStateError, NotFoundError
from .phases import (
    EventType, apply_transition, game_settings, load_game, load_player, load_players, record_event,
    require_host, require_lobby, require_member,
)
from .round_tracker import create_round
from .settings import INFINITE_TIMEOUT, GameSettings
from .timeouts import is_expired, phase_deadline, phase_timeout_hours

logger = get_logger(__name__)

MIN_PLAYERS = 2


async def _load_persona(session: AsyncSession, game_id: str, persona_id: str) -> Persona:
    persona = await session.get(Persona, persona_id)
    if persona is None or persona.game_id != game_id:
        raise NotFoundError(f"Persona {persona_id} not found in this game")
    return persona


async def _persona_holders(session: AsyncSession, game_id: str, persona_id: str) -> List[Player]:
    result = await session.execute(
        select(Player).where(
            Player.game_id == game_id,
            Player.persona_id == persona_id,
            Player.is_active.is_(True),
            Player.is_npc.is_(False),
        ).order_by(Player.join_order)
    )
    return list(result.scalars().all())


async def promote_next_lead(session: AsyncSession, game_id: str, persona_id: str, leaving_id: str) -> Optional[Player]:
    """
    Hand a persona's lead to its earliest-joined remaining member.

    Returns:
        Optional[Player]: The new lead, or None if nobody else holds the persona
    """
    holders = [p for p in await _persona_holders(session, game_id, persona_id) if p.id != leaving_id]
    if not holders or any(p.is_persona_lead for p in holders):
        return None
    holders[0].is_persona_lead = True
    await record_event(session, game_id, EventType.PERSONA_LEAD_CHANGED, None, {
        "persona_id": persona_id, "lead_player_id": holders[0].id, "reason": "promoted",
    })
    return holders[0]


class GameManager:
    """
    Lobby and game lifecycle operations.

    Args:
        action_manager: Used to re-check thresholds when a player leaves
        notifier: Notifier for game notices
    """

    def __init__(self, action_manager: Optional[ActionManager] = None, notifier=None):
        self.action_manager = action_manager or ActionManager(notifier)
        self.notifier = notifier
        self.settings = get_settings()

    async def create_game(
        self,
        user_id: int,
        player_name: str,
        name: str,
        description: Optional[str] = None,
        chat_id: Optional[int] = None,
        settings: Optional[Dict[str, Any]] = None,
        personas: Optional[Iterable[Dict[str, Any]]] = None,
    ) -> Game:
        """
        Create a game in the lobby with the caller as host.

        Args:
            user_id: Creator, who becomes the host player
            player_name: Host's display name
            name: Game name
            description: Scenario text
            chat_id: Telegram chat that receives notices
            settings: Per-game settings (see GameSettings)
            personas: Persona definitions with name, description, is_npc,
                npc_action_description and npc_desired_outcome

        Returns:
            Game: The new game
        """
        parsed = GameSettings.from_dict(settings)
        personas = list(personas or [])
        if sum(1 for p in personas if p.get("is_npc")) > 1:
            raise InvalidStateError("A game can have at most one NPC persona")

        async with DatabaseSession() as session:
            game = Game(
                name=name,
                description=description,
                chat_id=chat_id,
                settings=parsed.to_dict(),
                status=GameStatus.LOBBY,
                current_phase=GamePhase.WAITING,
            )
            session.add(game)
            await session.flush()

            for order, definition in enumerate(personas):
                session.add(Persona(
                    game_id=game.id,
                    name=definition["name"],
                    description=definition.get("description"),
                    is_npc=bool(definition.get("is_npc", False)),
                    npc_action_description=definition.get("npc_action_description"),
                    npc_desired_outcome=definition.get("npc_desired_outcome"),
                    sort_order=order,
                ))
            session.add(Player(
                game_id=game.id, user_id=user_id, player_name=player_name, is_host=True, join_order=1,
            ))
            try:
                await session.flush()
            except IntegrityError as e:
                raise ConflictError("Persona names must be unique") from e

            await record_event(session, game.id, EventType.GAME_CREATED, None, {"name": name})

        log_user_action(user_id, "create_game", game_id=game.id)
        logger.info(f"Game created - game_id: {game.id}, name: {name}")
        return game

    async def update_settings(self, game_id: str, user_id: int, updates: Dict[str, Any]) -> GameSettings:
        """Host-only settings change while in the lobby."""
        async with DatabaseSession() as session:
            game = await load_game(session, game_id)
            host = await require_host(session, game_id, user_id)
            require_lobby(game)

            merged = GameSettings.from_dict({**(game.settings or {}), **updates})
            game.settings = merged.to_dict()
            await record_event(session, game_id, EventType.SETTINGS_UPDATED, host.id, {"changes": updates})
        return merged

    async def join_game(
        self, game_id: str, user_id: int, player_name: str, persona_id: Optional[str] = None,
    ) -> Player:
        """
        Join a game that is still in the lobby.

        Raises:
            ConflictError: If the caller already joined (use rejoin_game after leaving)
        """
        async with DatabaseSession() as session:
            game = await load_game(session, game_id)
            require_lobby(game)

            existing = await session.execute(
                select(Player).where(Player.game_id == game_id, Player.user_id == user_id)
            )
            if existing.scalar_one_or_none() is not None:
                raise ConflictError("You have already joined this game")

            last_order = await session.execute(
                select(func.max(Player.join_order)).where(Player.game_id == game_id)
            )
            player = Player(
                game_id=game_id, user_id=user_id, player_name=player_name,
                join_order=(last_order.scalar() or 0) + 1,
            )
            session.add(player)
            try:
                await session.flush()
            except IntegrityError as e:
                raise ConflictError("You have already joined this game") from e

            if persona_id is not None:
                await self._claim_persona(session, game, player, persona_id)
            await record_event(session, game_id, EventType.PLAYER_JOINED, player.id, {
                "persona_id": player.persona_id,
            })

        log_user_action(user_id, "join_game", game_id=game_id)
        return player

    async def _claim_persona(self, session: AsyncSession, game: Game, player: Player, persona_id: Optional[str]) -> None:
        settings = game_settings(game)
        if persona_id is not None:
            persona = await _load_persona(session, game.id, persona_id)
            if persona.is_npc:
                raise InvalidStateError("NPC personas cannot be selected")
            others = [p for p in await _persona_holders(session, game.id, persona_id) if p.id != player.id]
            if others and not settings.allow_shared_personas:
                raise ConflictError(f"{persona.name} has already been claimed")
        else:
            others = []

        if player.persona_id and player.is_persona_lead:
            player.is_persona_lead = False
            await session.flush()
            await promote_next_lead(session, game.id, player.persona_id, player.id)

        player.persona_id = persona_id
        player.is_persona_lead = persona_id is not None and not any(p.is_persona_lead for p in others)

    async def select_persona(self, game_id: str, user_id: int, persona_id: Optional[str]) -> Player:
        """
        Claim a persona, switch to another, or clear it (persona_id None).

        The first claimer of a persona becomes its lead. A lead who leaves
        a persona hands the lead to the next member.
        """
        async with DatabaseSession() as session:
            game = await load_game(session, game_id)
            require_lobby(game)
            player = await require_member(session, game_id, user_id)

            if persona_id != player.persona_id:
                await self._claim_persona(session, game, player, persona_id)
                await record_event(session, game_id, EventType.PERSONA_SELECTED, player.id, {
                    "persona_id": persona_id, "is_persona_lead": player.is_persona_lead,
                })

        log_user_action(user_id, "select_persona", game_id=game_id, persona_id=persona_id)
        return player

    async def set_persona_lead(self, game_id: str, user_id: int, player_id: str) -> Player:
        """Host-only: make a persona member the lead of their persona."""
        async with DatabaseSession() as session:
            game = await load_game(session, game_id)
            host = await require_host(session, game_id, user_id)
            require_lobby(game)

            target = await load_player(session, game_id, player_id)
            if not is_human(target):
                raise InvalidStateError("Only active human players can lead a persona")
            if target.persona_id is None:
                raise InvalidStateError("This player has not selected a persona")

            for member in await _persona_holders(session, game_id, target.persona_id):
                member.is_persona_lead = member.id == target.id
            await record_event(session, game_id, EventType.PERSONA_LEAD_CHANGED, host.id, {
                "persona_id": target.persona_id, "lead_player_id": target.id, "reason": "host",
            })
        return target

    async def set_player_role(self, game_id: str, user_id: int, player_id: str, role: GameRole) -> Player:
        """Host-only: assign PLAYER or ARBITER (at most one arbiter per game)."""
        try:
            role = GameRole(role)
        except ValueError as e:
            raise InvalidStateError(f"Unknown role: {role}") from e

        async with DatabaseSession() as session:
            game = await load_game(session, game_id)
            host = await require_host(session, game_id, user_id)
            require_lobby(game)
            target = await load_player(session, game_id, player_id)

            if role == GameRole.ARBITER:
                players = await load_players(session, game_id)
                if any(p.game_role == GameRole.ARBITER and p.id != target.id for p in players):
                    raise ConflictError("This game already has an arbiter")

            target.game_role = role
            await record_event(session, game_id, EventType.PLAYER_ROLE_CHANGED, host.id, {
                "player_id": target.id, "role": role.value,
            })
        return target

    async def start_game(self, game_id: str, user_id: int) -> Game:
        """
        Start the game and open round 1 for proposals.

        Raises:
            InvalidStateError: Fewer than two players, or a player without a
                persona when personas are required
        """
        async with DatabaseSession() as session:
            game = await load_game(session, game_id)
            host = await require_host(session, game_id, user_id)
            require_lobby(game)
            settings = game_settings(game)

            players = await load_players(session, game_id)
            humans = [p for p in players if is_human(p)]
            if len(humans) < MIN_PLAYERS:
                raise InvalidStateError(f"At least {MIN_PLAYERS} players are needed to start")
            if settings.personas_required and any(p.persona_id is None for p in humans):
                raise InvalidStateError("Every player must select a persona before the game starts")

            result = await session.execute(
                select(Persona).where(Persona.game_id == game_id, Persona.is_npc.is_(True))
            )
            npc_persona = result.scalars().first()
            if npc_persona is not None and not any(p.is_npc for p in players):
                session.add(Player(
                    game_id=game_id,
                    user_id=self.settings.npc_user_id,
                    player_name=npc_persona.name,
                    persona_id=npc_persona.id,
                    is_persona_lead=True,
                    is_npc=True,
                    join_order=max(p.join_order for p in players) + 1,
                ))
                await session.flush()

            first_round = await create_round(session, game_id, 1)
            started = await session.execute(
                update(Game)
                .where(Game.id == game_id, Game.status == GameStatus.LOBBY)
                .values(status=GameStatus.ACTIVE, started_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            if started.rowcount == 0:
                raise ConflictError("The game has already been started")

            game = await apply_transition(
                session, game_id, GamePhase.PROPOSAL,
                from_phase=GamePhase.WAITING, player_id=host.id, current_round_id=first_round.id,
            )
            await record_event(session, game_id, EventType.GAME_STARTED, host.id, {
                "players": len(humans), "npc": npc_persona is not None,
            })
            await record_event(session, game_id, EventType.ROUND_STARTED, None, {
                "round_id": first_round.id, "round_number": 1,
                "total_actions_required": first_round.total_actions_required,
            })

        logger.info(f"Game started - game_id: {game_id}, round 1 needs {first_round.total_actions_required} actions")
        if self.notifier:
            self.notifier.notify(notices.GAME_STARTED, game)
        return game

    async def delete_game(self, game_id: str, user_id: int) -> None:
        """Host-only soft delete of a game still in the lobby."""
        async with DatabaseSession() as session:
            game = await load_game(session, game_id)
            host = await require_host(session, game_id, user_id)
            require_lobby(game)
            game.deleted_at = utcnow()
            await record_event(session, game_id, EventType.GAME_DELETED, host.id)
        log_user_action(user_id, "delete_game", game_id=game_id)

    async def leave_game(self, game_id: str, user_id: int) -> Player:
        """
        Leave a game. The player record stays, marked inactive.

        A departing persona lead hands the lead on, and the current
        action's threshold is re-checked against the smaller roster.
        """
        async with DatabaseSession() as session:
            game = await load_game(session, game_id)
            player = await require_member(session, game_id, user_id)

            player.is_active = False
            promoted = None
            if player.persona_id and player.is_persona_lead:
                player.is_persona_lead = False
                await session.flush()
                promoted = await promote_next_lead(session, game_id, player.persona_id, player.id)
            await record_event(session, game_id, EventType.PLAYER_LEFT, player.id, {
                "promoted_lead_id": promoted.id if promoted else None,
            })
            status = game.status

        log_user_action(user_id, "leave_game", game_id=game_id)
        if status == GameStatus.ACTIVE:
            await self.action_manager.reevaluate_current_action(game_id)
        return player

    async def rejoin_game(self, game_id: str, user_id: int) -> Player:
        """Reactivate a player who left. They regain the lead if their persona has none."""
        async with DatabaseSession() as session:
            game = await load_game(session, game_id)
            result = await session.execute(
                select(Player).where(
                    Player.game_id == game_id, Player.user_id == user_id, Player.is_npc.is_(False),
                )
            )
            player = result.scalar_one_or_none()
            if player is None:
                raise NotFoundError("You have never joined this game")
            if player.is_active:
                raise ConflictError("You are already in this game")
            if game.status == GameStatus.COMPLETED:
                raise InvalidStateError("This game has finished")

            if player.persona_id:
                holders = await _persona_holders(session, game_id, player.persona_id)
                player.is_persona_lead = not any(p.is_persona_lead for p in holders)
            player.is_active = True
            await record_event(session, game_id, EventType.PLAYER_REJOINED, player.id)

        log_user_action(user_id, "rejoin_game", game_id=game_id)
        return player

    async def get_timeout_status(self, game_id: str, user_id: int) -> Dict[str, Any]:
        """
        Report the current phase's deadline.

        Returns:
            dict: phase, phase_started_at, timeout_hours, deadline,
                seconds_remaining (None when the phase never times out) and is_expired
        """
        async with DatabaseSession() as session:
            game = await load_game(session, game_id)
            await require_member(session, game_id, user_id)

        now = utcnow()
        hours = phase_timeout_hours(game)
        deadline = phase_deadline(game)
        remaining = None
        if deadline is not None:
            remaining = max(int((deadline - now).total_seconds()), 0)
        return {
            "phase": game.current_phase.value,
            "phase_started_at": game.phase_started_at,
            "timeout_hours": None if hours == INFINITE_TIMEOUT else hours,
            "deadline": deadline,
            "seconds_remaining": remaining,
            "is_expired": is_expired(game, now),
        }
