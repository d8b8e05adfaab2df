"""
Arbiter Review

In games resolved by the arbiter strategy, argumentation is followed by
an arbiter review instead of a vote. The player holding the ARBITER role
marks the arguments they find strong, then completes the review, which
resolves the action from the strong-argument tally.
"""

from sqlalchemy import update

from ..database.database import DatabaseSession
from ..database.models import Action, ActionStatus, Argument, GamePhase, GameRole, utcnow
from ..utils.logging_config import get_logger, log_user_action
from .action_manager import ActionManager, load_action
from .exceptions import ConflictError, InvalidStateError, NotFoundError, PermissionDeniedError
from .phases import (
    EventType, apply_transition, load_game, record_event, require_active, require_member, require_phase,
)

logger = get_logger(__name__)


async def _require_arbiter(session, game_id: str, user_id: int):
    player = await require_member(session, game_id, user_id)
    if player.game_role != GameRole.ARBITER:
        raise PermissionDeniedError("Only the arbiter can review arguments")
    return player


class ArbiterManager:
    """
    Arbiter review operations.

    Args:
        action_manager: Used to run resolution once the review is complete
    """

    def __init__(self, action_manager: ActionManager):
        self.action_manager = action_manager

    async def mark_argument_strong(self, argument_id: str, user_id: int) -> Argument:
        """
        Toggle the strong flag on an argument of the action under review.

        Returns:
            Argument: The argument with its new flag
        """
        async with DatabaseSession() as session:
            argument = await session.get(Argument, argument_id, populate_existing=True)
            if argument is None:
                raise NotFoundError(f"Argument {argument_id} not found")
            action = await load_action(session, argument.action_id)
            game = await load_game(session, action.game_id)
            require_active(game)
            arbiter = await _require_arbiter(session, game.id, user_id)
            require_phase(game, GamePhase.ARBITER_REVIEW)
            if game.current_action_id != action.id:
                raise InvalidStateError("This argument does not belong to the action under review")

            argument.is_strong = not argument.is_strong
            await record_event(session, game.id, EventType.ARGUMENT_STRENGTH_TOGGLED, arbiter.id, {
                "action_id": action.id, "argument_id": argument_id, "is_strong": argument.is_strong,
            })

        log_user_action(user_id, "mark_argument_strong", argument_id=argument_id, is_strong=argument.is_strong)
        return argument

    async def complete_arbiter_review(self, action_id: str, user_id: int) -> Action:
        """
        Finish the review and resolve the action.

        Raises:
            ConflictError: If the review was already completed
        """
        async with DatabaseSession() as session:
            action = await load_action(session, action_id)
            game = await load_game(session, action.game_id)
            require_active(game)
            arbiter = await _require_arbiter(session, game.id, user_id)
            require_phase(game, GamePhase.ARBITER_REVIEW)
            if game.current_action_id != action.id:
                raise InvalidStateError("This action is not under review")

            finished = await session.execute(
                update(Action)
                .where(Action.id == action_id, Action.status == ActionStatus.ARGUING)
                .values(status=ActionStatus.RESOLVED, resolved_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            if finished.rowcount == 0:
                raise ConflictError("The review of this action was already completed")

            await apply_transition(
                session, game.id, GamePhase.RESOLUTION,
                from_phase=GamePhase.ARBITER_REVIEW, player_id=arbiter.id,
            )
            await record_event(session, game.id, EventType.ARBITER_REVIEW_COMPLETED, arbiter.id, {
                "action_id": action_id,
            })

        log_user_action(user_id, "complete_arbiter_review", action_id=action_id)
        return await self.action_manager.resolve_action(action_id)
