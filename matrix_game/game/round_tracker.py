"""
Round Tracker

Rounds count narrated actions against the number of actions the round
needs (one per acting unit, plus one for an NPC). When a round is full
the game waits in ROUND_SUMMARY until a player summarises it, which
completes the round and opens the next one.
"""

from typing import Any, Dict, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..database.database import DatabaseSession
from ..database.models import (
    Action, GamePhase, Player, Round, RoundStatus, RoundSummary, utcnow,
)
from ..notifications import notifier as notices
from ..utils.logging_config import get_logger, log_user_action
from .acting_units import count_acting_units, group_units
from .exceptions import ConflictError, InvalidStateError, NotFoundError
from .phases import (
    EventType, apply_transition, load_game, load_players, record_event,
    require_active, require_host, require_member, require_phase,
)
from .resolution import ResultType

logger = get_logger(__name__)


def required_actions(players: List[Player]) -> int:
    """Actions a new round needs: one per human acting unit, plus one for an active NPC."""
    has_npc = any(p.is_npc and p.is_active for p in players)
    return count_acting_units(players) + (1 if has_npc else 0)


async def create_round(session: AsyncSession, game_id: str, round_number: int) -> Round:
    """
    Create a round sized from the current roster.

    Raises:
        ConflictError: If the round number already exists for this game
    """
    players = await load_players(session, game_id)
    game_round = Round(
        game_id=game_id,
        round_number=round_number,
        total_actions_required=required_actions(players),
    )
    session.add(game_round)
    try:
        await session.flush()
    except IntegrityError as e:
        raise ConflictError(f"Round {round_number} already exists") from e
    return game_round


async def load_round(session: AsyncSession, round_id: str) -> Round:
    game_round = await session.get(Round, round_id, populate_existing=True)
    if game_round is None:
        raise NotFoundError(f"Round {round_id} not found")
    return game_round


async def round_actions(session: AsyncSession, round_id: str) -> List[Action]:
    result = await session.execute(
        select(Action).where(Action.round_id == round_id).order_by(Action.sequence_number)
    )
    return list(result.scalars().all())


def summarize_outcomes(actions: List[Action]) -> Dict[str, Any]:
    """Tally resolved actions into triumphs, disasters and net momentum."""
    results = []
    for action in actions:
        data = action.resolution_data or {}
        if "result_type" not in data:
            continue
        results.append({
            "action_id": action.id,
            "sequence_number": action.sequence_number,
            "result_type": data["result_type"],
            "result_value": data.get("result_value", 0),
        })
    return {
        "triumphs": sum(1 for r in results if r["result_type"] == ResultType.TRIUMPH),
        "disasters": sum(1 for r in results if r["result_type"] == ResultType.DISASTER),
        "net_momentum": sum(r["result_value"] for r in results),
        "action_results": results,
    }


class RoundTracker:
    """
    Round progress queries and round summaries.

    Args:
        notifier: Notifier used for new-round notices
    """

    def __init__(self, notifier=None):
        self.notifier = notifier

    async def get_round_progress(self, round_id: str, user_id: int) -> Dict[str, Any]:
        """
        Report how far a round has progressed.

        Returns:
            dict: completed, required, remaining, is_complete and the acting
                units that have already proposed
        """
        async with DatabaseSession() as session:
            game_round = await load_round(session, round_id)
            await require_member(session, game_round.game_id, user_id)
            actions = await round_actions(session, round_id)
            players = await load_players(session, game_round.game_id)

            proposed = {a.unit_key for a in actions}
            units = group_units(players)
            return {
                "round_id": game_round.id,
                "round_number": game_round.round_number,
                "status": game_round.status.value,
                "actions_completed": game_round.actions_completed,
                "total_actions_required": game_round.total_actions_required,
                "remaining": max(game_round.total_actions_required - game_round.actions_completed, 0),
                "is_complete": game_round.is_complete,
                "proposed_units": sorted(proposed),
                "waiting_units": [key for key in units if key not in proposed],
            }

    async def submit_round_summary(self, round_id: str, user_id: int, content: str) -> RoundSummary:
        """
        Summarise a complete round and open the next one.

        Args:
            round_id: Round being summarised
            user_id: Caller
            content: Summary text

        Returns:
            RoundSummary: The stored summary

        Raises:
            InvalidStateError: If the game is not waiting for this round's summary
            ConflictError: If the round already has a summary
        """
        async with DatabaseSession() as session:
            game_round = await load_round(session, round_id)
            game = await load_game(session, game_round.game_id)
            require_active(game)
            player = await require_member(session, game.id, user_id)

            existing = await session.execute(select(RoundSummary.id).where(RoundSummary.round_id == round_id))
            if existing.first() is not None:
                raise ConflictError("This round already has a summary")
            require_phase(game, GamePhase.ROUND_SUMMARY)
            if game.current_round_id != game_round.id:
                raise InvalidStateError("This is not the current round")
            if not game_round.is_complete:
                raise InvalidStateError("The round is not complete yet")

            outcomes = summarize_outcomes(await round_actions(session, round_id))
            summary = RoundSummary(round_id=round_id, author_id=player.id, content=content, outcomes=outcomes)
            session.add(summary)
            try:
                await session.flush()
            except IntegrityError as e:
                raise ConflictError("This round already has a summary") from e

            closed = await session.execute(
                update(Round)
                .where(Round.id == round_id, Round.status == RoundStatus.IN_PROGRESS)
                .values(status=RoundStatus.COMPLETED, completed_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            if closed.rowcount == 0:
                raise ConflictError("This round was already completed")

            next_round = await create_round(session, game.id, game_round.round_number + 1)
            game = await apply_transition(
                session, game.id, GamePhase.PROPOSAL,
                from_phase=GamePhase.ROUND_SUMMARY, player_id=player.id,
                current_round_id=next_round.id, current_action_id=None,
            )
            await record_event(session, game.id, EventType.ROUND_SUMMARY_SUBMITTED, player.id, {
                "round_id": round_id, "round_number": game_round.round_number, **{
                    k: v for k, v in outcomes.items() if k != "action_results"
                },
            })
            await record_event(session, game.id, EventType.ROUND_STARTED, None, {
                "round_id": next_round.id, "round_number": next_round.round_number,
                "total_actions_required": next_round.total_actions_required,
            })

        log_user_action(user_id, "submit_round_summary", round_id=round_id)
        logger.info(f"Round {game_round.round_number} of game {game.id} summarised, round {next_round.round_number} started")
        if self.notifier:
            self.notifier.notify(notices.NEW_ROUND, game, {"round_number": next_round.round_number})
        return summary

    async def edit_round_summary(self, round_id: str, user_id: int, content: str) -> RoundSummary:
        """Host correction of a round summary's text."""
        async with DatabaseSession() as session:
            game_round = await load_round(session, round_id)
            host = await require_host(session, game_round.game_id, user_id)

            result = await session.execute(select(RoundSummary).where(RoundSummary.round_id == round_id))
            summary = result.scalar_one_or_none()
            if summary is None:
                raise NotFoundError("This round has no summary yet")

            old_content = summary.content
            summary.content = content
            await record_event(session, game_round.game_id, EventType.ROUND_SUMMARY_EDITED, host.id, {
                "round_id": round_id, "old_content": old_content, "new_content": content,
            })
        return summary

    async def get_round_summary(self, round_id: str, user_id: int) -> Optional[RoundSummary]:
        async with DatabaseSession() as session:
            game_round = await load_round(session, round_id)
            await require_member(session, game_round.game_id, user_id)
            result = await session.execute(select(RoundSummary).where(RoundSummary.round_id == round_id))
            return result.scalar_one_or_none()


async def count_round_actions(session: AsyncSession, round_id: str) -> int:
    result = await session.execute(select(func.count(Action.id)).where(Action.round_id == round_id))
    return result.scalar_one()
