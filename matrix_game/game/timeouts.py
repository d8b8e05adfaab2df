"""
Phase Timeouts

Games may give each of the proposal, argumentation, voting and narration
phases a limit in hours (-1 means no limit). When a phase outlives its
limit:

- argumentation gets a placeholder FOR argument from every acting unit
  (other than the initiator's) that did not argue, then moves to voting;
- voting gets an UNCERTAIN vote from every unit that did not vote, then
  resolves;
- proposal and narration only alert the host, once per phase.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import select

from ..database.database import DatabaseSession
from ..database.models import (
    ActionStatus, Argument, ArgumentType, Game, GameEvent, GamePhase, GameStatus, utcnow,
)
from ..notifications import notifier as notices
from ..utils.config import get_settings
from ..utils.logging_config import get_logger
from .action_manager import ActionManager, action_arguments, load_action
from .acting_units import pending_units
from .exceptions import ConflictError
from .phases import EventType, game_settings, host_user_ids, load_game, load_players, record_event
from .settings import INFINITE_TIMEOUT, GameSettings

logger = get_logger(__name__)

TIMED_PHASES = {
    GamePhase.PROPOSAL: "proposal",
    GamePhase.ARGUMENTATION: "argumentation",
    GamePhase.VOTING: "voting",
    GamePhase.NARRATION: "narration",
}

ALERT_EVENTS = {
    GamePhase.PROPOSAL: EventType.PROPOSAL_TIMEOUT,
    GamePhase.NARRATION: EventType.NARRATION_TIMEOUT,
}


def phase_timeout_hours(game: Game, settings: Optional[GameSettings] = None) -> int:
    """Configured limit for the game's current phase, INFINITE_TIMEOUT if none."""
    phase_name = TIMED_PHASES.get(game.current_phase)
    if phase_name is None:
        return INFINITE_TIMEOUT
    settings = settings or game_settings(game)
    return settings.timeout_hours_for(phase_name)


def phase_deadline(game: Game, settings: Optional[GameSettings] = None) -> Optional[datetime]:
    """When the current phase times out, or None if it never does."""
    hours = phase_timeout_hours(game, settings)
    if hours == INFINITE_TIMEOUT or game.phase_started_at is None:
        return None
    return game.phase_started_at + timedelta(hours=hours)


def is_expired(game: Game, now: Optional[datetime] = None) -> bool:
    deadline = phase_deadline(game)
    return deadline is not None and (now or utcnow()) >= deadline


class TimeoutProcessor:
    """
    Finds and processes expired phases.

    Args:
        action_manager: Drives the forced phase advances
        notifier: Notifier for timeout notices
    """

    def __init__(self, action_manager: ActionManager, notifier=None):
        self.action_manager = action_manager
        self.notifier = notifier
        self.settings = get_settings()

    async def process_all(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Process every active game whose current phase has expired.

        A failure in one game is recorded in the report and does not stop
        the others.

        Returns:
            dict: checked (games examined), processed (timeouts applied)
                and errors (per-game failures)
        """
        now = now or utcnow()
        async with DatabaseSession() as session:
            result = await session.execute(
                select(Game).where(
                    Game.status == GameStatus.ACTIVE,
                    Game.deleted_at.is_(None),
                    Game.current_phase.in_(list(TIMED_PHASES)),
                    Game.phase_started_at.is_not(None),
                )
            )
            games = list(result.scalars().all())

        report: Dict[str, Any] = {"checked": len(games), "processed": [], "errors": []}
        for game in games:
            try:
                if not is_expired(game, now):
                    continue
                outcome = await self.process_game(game.id, now)
                if outcome is not None:
                    report["processed"].append(outcome)
            except ConflictError as e:
                logger.info(f"Timeout for game {game.id} lost to a concurrent update: {e.message}")
            except Exception as e:
                logger.error(f"Failed to process timeout for game {game.id}: {e}")
                report["errors"].append({"game_id": game.id, "error": str(e)})

        if report["processed"] or report["errors"]:
            logger.info(
                f"Timeout sweep: {len(report['processed'])} processed, {len(report['errors'])} failed"
            )
        return report

    async def process_game(self, game_id: str, now: Optional[datetime] = None) -> Optional[Dict[str, Any]]:
        """
        Apply the timeout for one game if its phase is still expired.

        Returns:
            Optional[dict]: What was done, or None if nothing was due
        """
        now = now or utcnow()
        async with DatabaseSession() as session:
            game = await load_game(session, game_id)
            if game.status != GameStatus.ACTIVE or not is_expired(game, now):
                return None
            phase = game.current_phase

        if phase == GamePhase.ARGUMENTATION:
            return await self._argumentation_timeout(game_id)
        if phase == GamePhase.VOTING:
            return await self._voting_timeout(game_id)
        if phase in ALERT_EVENTS:
            return await self._alert_host(game_id, phase)
        return None

    async def _argumentation_timeout(self, game_id: str) -> Optional[Dict[str, Any]]:
        async with DatabaseSession() as session:
            game = await load_game(session, game_id)
            if game.current_phase != GamePhase.ARGUMENTATION or game.current_action_id is None:
                return None
            action = await load_action(session, game.current_action_id)
            if action.status != ActionStatus.ARGUING:
                return None

            players = await load_players(session, game_id)
            arguments = await action_arguments(session, action.id)
            missing = pending_units(players, [a.player_id for a in arguments], exclude_unit=action.unit_key)

            sequence = len(arguments)
            for player in missing:
                sequence += 1
                session.add(Argument(
                    action_id=action.id,
                    player_id=player.id,
                    argument_type=ArgumentType.FOR,
                    content=self.settings.placeholder_argument_text,
                    sequence=sequence,
                    is_placeholder=True,
                ))
            await session.flush()

            auto_argued = [p.id for p in missing]
            await record_event(session, game_id, EventType.ARGUMENTATION_TIMEOUT, None, {
                "action_id": action.id, "auto_argued_player_ids": auto_argued,
            })
            game = await self.action_manager.finish_argumentation(session, game, action)

        logger.info(f"Argumentation timed out in game {game_id}, {len(auto_argued)} placeholder arguments added")
        self._notify(game, "argumentation")
        return {"game_id": game_id, "phase": GamePhase.ARGUMENTATION.value, "action_id": action.id,
                "auto_argued_player_ids": auto_argued}

    async def _voting_timeout(self, game_id: str) -> Optional[Dict[str, Any]]:
        async with DatabaseSession() as session:
            game = await load_game(session, game_id)
            if game.current_phase != GamePhase.VOTING or game.current_action_id is None:
                return None
            action = await load_action(session, game.current_action_id)
            if action.status != ActionStatus.VOTING:
                return None

            auto_voted = await self.action_manager.fill_missing_votes(session, game, action, game_settings(game))
            await record_event(session, game_id, EventType.VOTING_TIMEOUT, None, {
                "action_id": action.id, "auto_voted_player_ids": auto_voted,
            })
            action_id = action.id

        logger.info(f"Voting timed out in game {game_id}, {len(auto_voted)} votes cast as uncertain")
        self._notify(game, "voting")
        await self.action_manager.check_voting_complete(action_id)
        return {"game_id": game_id, "phase": GamePhase.VOTING.value, "action_id": action_id,
                "auto_voted_player_ids": auto_voted}

    async def _alert_host(self, game_id: str, phase: GamePhase) -> Optional[Dict[str, Any]]:
        event_type = ALERT_EVENTS[phase]
        async with DatabaseSession() as session:
            game = await load_game(session, game_id)
            if game.current_phase != phase:
                return None

            already = await session.execute(
                select(GameEvent.id).where(
                    GameEvent.game_id == game_id,
                    GameEvent.event_type == event_type,
                    GameEvent.created_at >= game.phase_started_at,
                )
            )
            if already.first() is not None:
                return None

            await record_event(session, game_id, event_type, None, {
                "phase_started_at": game.phase_started_at.isoformat(),
                "action_id": game.current_action_id,
            })
            hosts = await host_user_ids(session, game_id)

        logger.info(f"{phase.value} phase timed out in game {game_id}, host alerted")
        self._notify(game, phase.value, recipients=hosts)
        return {"game_id": game_id, "phase": phase.value, "host_alerted": True}

    def _notify(self, game: Game, phase_name: str, recipients: Optional[List[int]] = None) -> None:
        if self.notifier:
            self.notifier.notify(notices.TIMEOUT_OCCURRED, game, {"phase": phase_name}, recipients)
