"""
Action Lifecycle

An action moves ARGUING -> VOTING -> RESOLVED -> NARRATED (arbiter games
skip VOTING). Each step is gated on every acting unit having acted, and
each step commits before the next one starts, so a failure part way
leaves the earlier steps in place and the caller retries the next step.

Double submissions are rejected by unique constraints (one proposal per
unit per round, one vote per player and per voting unit, one narration
per action) and the one-shot steps (finishing a vote, storing a
resolution) are conditional updates: whoever updates zero rows lost
the race and gets a ConflictError.
"""

from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..database.database import DatabaseSession
from ..database.models import (
    Action, ActionStatus, Argument, ArgumentationCompletion, ArgumentType, Game, GamePhase,
    Narration, Persona, Player, Round, Vote, VoteType, utcnow,
)
from ..notifications import notifier as notices
from ..utils.logging_config import get_logger, log_user_action
from .acting_units import (
    count_acting_units, count_completed_units, get_persona_member_ids, pending_units, unit_key,
)
from .exceptions import ConflictError, InvalidStateError, NotFoundError, PermissionDeniedError
from .phases import (
    EventType, apply_transition, game_settings, load_game, load_player, load_players, record_event,
    require_active, require_host, require_member, require_phase,
)
from .resolution import get_strategy
from .resolution.arbiter import ANTI_TYPES, PRO_TYPES
from .round_tracker import count_round_actions, load_round
from .settings import NARRATION_OPEN, GameSettings

logger = get_logger(__name__)


async def load_action(session: AsyncSession, action_id: str) -> Action:
    action = await session.get(Action, action_id, populate_existing=True)
    if action is None:
        raise NotFoundError(f"Action {action_id} not found")
    return action


async def action_arguments(session: AsyncSession, action_id: str) -> List[Argument]:
    result = await session.execute(
        select(Argument).where(Argument.action_id == action_id).order_by(Argument.sequence)
    )
    return list(result.scalars().all())


async def action_votes(session: AsyncSession, action_id: str) -> List[Vote]:
    result = await session.execute(select(Vote).where(Vote.action_id == action_id))
    return list(result.scalars().all())


def vote_unit_key(player: Player, settings: GameSettings) -> str:
    """A persona votes as one unit only under one-per-persona voting."""
    return unit_key(player, split_personas=not settings.one_per_persona)


def voting_threshold(players: List[Player], settings: GameSettings) -> int:
    return count_acting_units(players, split_personas=not settings.one_per_persona)


async def _flush_or_conflict(session: AsyncSession, message: str) -> None:
    try:
        await session.flush()
    except IntegrityError as e:
        raise ConflictError(message) from e


class ActionManager:
    """
    Drives actions through their lifecycle.

    Args:
        notifier: Notifier for best-effort player notices
    """

    def __init__(self, notifier=None):
        self.notifier = notifier

    def _notify(self, kind: str, game: Game, payload: Optional[Dict[str, Any]] = None, recipients=None) -> None:
        if self.notifier:
            self.notifier.notify(kind, game, payload, recipients)

    # ------------------------------------------------------------------
    # Proposal
    # ------------------------------------------------------------------

    async def propose(
        self,
        game_id: str,
        user_id: int,
        description: str,
        desired_outcome: Optional[str] = None,
        initial_arguments: Optional[Iterable[str]] = None,
    ) -> Action:
        """
        Propose the next action of the round.

        Args:
            game_id: Game to propose in
            user_id: Caller
            description: What the caller's unit attempts
            desired_outcome: What they hope happens
            initial_arguments: Opening arguments in favour, up to the argument limit

        Returns:
            Action: The new action, now being argued

        Raises:
            PermissionDeniedError: If the caller is a non-lead member of a shared persona
            ConflictError: If the caller's unit already proposed this round
            InvalidStateError: If the game is not waiting for a proposal
        """
        initial_arguments = [a for a in (initial_arguments or []) if a and a.strip()]

        async with DatabaseSession() as session:
            game = await load_game(session, game_id)
            require_active(game)
            require_phase(game, GamePhase.PROPOSAL)
            if game.current_action_id is not None:
                raise InvalidStateError("Another action is already in play")

            player = await require_member(session, game_id, user_id)
            settings = game_settings(game)
            if settings.allow_shared_personas and player.persona_id and not player.is_persona_lead:
                raise PermissionDeniedError("Only the persona lead can propose for a shared persona")
            if len(initial_arguments) > settings.argument_limit:
                raise InvalidStateError(f"At most {settings.argument_limit} opening arguments are allowed")

            action = await self._create_action(
                session, game, player, description, desired_outcome, initial_arguments,
            )
            await record_event(session, game_id, EventType.ACTION_PROPOSED, player.id, {
                "action_id": action.id, "sequence_number": action.sequence_number,
            })

        log_user_action(user_id, "propose", game_id=game_id, action_id=action.id)
        self._notify(notices.ACTION_PROPOSED, game, {"description": description})
        return action

    async def _create_action(
        self,
        session: AsyncSession,
        game: Game,
        player: Player,
        description: str,
        desired_outcome: Optional[str],
        initial_arguments: List[str],
    ) -> Action:
        game_round = await load_round(session, game.current_round_id)

        key = unit_key(player)
        duplicate = await session.execute(
            select(Action.id).where(Action.round_id == game_round.id, Action.unit_key == key)
        )
        if duplicate.first() is not None:
            raise ConflictError("Your side has already proposed an action this round")
        if await count_round_actions(session, game_round.id) >= game_round.total_actions_required:
            raise InvalidStateError("Every action for this round has already been proposed")

        last_sequence = await session.execute(
            select(func.max(Action.sequence_number)).where(Action.game_id == game.id)
        )
        action = Action(
            game_id=game.id,
            round_id=game_round.id,
            initiator_id=player.id,
            unit_key=key,
            sequence_number=(last_sequence.scalar() or 0) + 1,
            description=description,
            desired_outcome=desired_outcome,
            status=ActionStatus.ARGUING,
            argumentation_started_at=utcnow(),
        )
        session.add(action)
        await _flush_or_conflict(session, "Your side has already proposed an action this round")

        for index, content in enumerate(initial_arguments, start=1):
            session.add(Argument(
                action_id=action.id,
                player_id=player.id,
                argument_type=ArgumentType.INITIATOR_FOR,
                content=content,
                sequence=index,
            ))

        await apply_transition(
            session, game.id, GamePhase.ARGUMENTATION,
            from_phase=GamePhase.PROPOSAL, player_id=player.id, current_action_id=action.id,
        )
        return action

    async def maybe_auto_propose_npc(self, game_id: str) -> Optional[Action]:
        """
        Propose the NPC's action once every human unit has proposed this round.

        Returns:
            Optional[Action]: The NPC action, or None when it is not the NPC's turn
        """
        async with DatabaseSession() as session:
            game = await load_game(session, game_id)
            if game.current_phase != GamePhase.PROPOSAL or game.current_action_id is not None:
                return None

            players = await load_players(session, game_id)
            npc = next((p for p in players if p.is_npc and p.is_active), None)
            if npc is None or npc.persona_id is None:
                return None

            result = await session.execute(select(Action).where(Action.round_id == game.current_round_id))
            actions = list(result.scalars().all())
            npc_key = unit_key(npc)
            if any(a.unit_key == npc_key for a in actions):
                return None

            human_proposals = sum(1 for a in actions if a.unit_key != npc_key)
            if human_proposals < count_acting_units(players):
                return None

            persona = await session.get(Persona, npc.persona_id)
            description = (persona.npc_action_description if persona else None) or f"{npc.player_name} acts"
            desired_outcome = persona.npc_desired_outcome if persona else None

            action = await self._create_action(session, game, npc, description, desired_outcome, [])
            await record_event(session, game_id, EventType.NPC_ACTION_PROPOSED, None, {
                "action_id": action.id, "npc_player_id": npc.id,
            })

        logger.info(f"NPC {npc.player_name} proposed action {action.id} in game {game_id}")
        self._notify(notices.ACTION_PROPOSED, game, {"description": description})
        return action

    # ------------------------------------------------------------------
    # Argumentation
    # ------------------------------------------------------------------

    async def add_argument(
        self, action_id: str, user_id: int, argument_type: ArgumentType, content: str,
    ) -> Argument:
        """
        Add an argument to an action being argued.

        The initiator's unit may only clarify; everyone else argues FOR or
        AGAINST, up to the argument limit (per player, or pooled across a
        shared persona).

        Raises:
            InvalidStateError: Wrong phase, wrong argument type, or a cap reached
        """
        try:
            argument_type = ArgumentType(argument_type)
        except ValueError as e:
            raise InvalidStateError(f"Unknown argument type: {argument_type}") from e

        async with DatabaseSession() as session:
            action = await load_action(session, action_id)
            game = await load_game(session, action.game_id)
            require_active(game)
            require_phase(game, GamePhase.ARGUMENTATION)
            if action.status != ActionStatus.ARGUING or game.current_action_id != action.id:
                raise InvalidStateError("This action is not being argued")

            player = await require_member(session, game.id, user_id)
            settings = game_settings(game)
            strategy = get_strategy(settings.resolution_method)

            is_initiator_side = unit_key(player) == action.unit_key
            if argument_type == ArgumentType.INITIATOR_FOR:
                raise InvalidStateError("Opening arguments can only be given with the proposal")
            if is_initiator_side and argument_type != ArgumentType.CLARIFICATION:
                raise InvalidStateError("The initiator can only add clarifications")
            if not is_initiator_side and argument_type == ArgumentType.CLARIFICATION:
                raise InvalidStateError("Only the initiator can add clarifications")

            arguments = await action_arguments(session, action_id)

            if argument_type != ArgumentType.CLARIFICATION:
                if strategy.max_arguments_per_side is not None:
                    side = PRO_TYPES if argument_type in PRO_TYPES else ANTI_TYPES
                    if sum(1 for a in arguments if a.argument_type in side) >= strategy.max_arguments_per_side:
                        raise InvalidStateError(
                            f"This side already has {strategy.max_arguments_per_side} arguments"
                        )

                if settings.shared_argument_pool and player.persona_id:
                    players = await load_players(session, game.id)
                    authors = set(get_persona_member_ids(players, player.persona_id))
                else:
                    authors = {player.id}
                used = sum(
                    1 for a in arguments
                    if a.player_id in authors and a.argument_type in (ArgumentType.FOR, ArgumentType.AGAINST)
                )
                if used >= settings.argument_limit:
                    raise InvalidStateError(f"Argument limit of {settings.argument_limit} reached")

            argument = Argument(
                action_id=action_id,
                player_id=player.id,
                argument_type=argument_type,
                content=content,
                sequence=len(arguments) + 1,
            )
            session.add(argument)
            await record_event(session, game.id, EventType.ARGUMENT_ADDED, player.id, {
                "action_id": action_id, "argument_type": argument_type.value,
            })

        log_user_action(user_id, "add_argument", action_id=action_id, argument_type=argument_type.value)
        return argument

    async def complete_argumentation(self, action_id: str, user_id: int) -> int:
        """
        Signal that the caller is done arguing.

        Calling twice is harmless. When the last acting unit signals, the
        action moves on to voting (or arbiter review).

        Returns:
            int: Acting units still to signal
        """
        try:
            async with DatabaseSession() as session:
                action = await load_action(session, action_id)
                game = await load_game(session, action.game_id)
                require_active(game)
                require_phase(game, GamePhase.ARGUMENTATION)
                if action.status != ActionStatus.ARGUING:
                    raise InvalidStateError("This action is not being argued")
                player = await require_member(session, game.id, user_id)

                existing = await session.execute(
                    select(ArgumentationCompletion.id).where(
                        ArgumentationCompletion.action_id == action_id,
                        ArgumentationCompletion.player_id == player.id,
                    )
                )
                if existing.first() is None:
                    session.add(ArgumentationCompletion(action_id=action_id, player_id=player.id))
                    await _flush_or_conflict(session, "Already completed")
                    await record_event(session, game.id, EventType.ARGUMENTATION_COMPLETED, player.id, {
                        "action_id": action_id,
                    })
        except ConflictError:
            logger.debug(f"Duplicate argumentation completion for action {action_id} ignored")

        log_user_action(user_id, "complete_argumentation", action_id=action_id)
        return await self.check_argumentation_complete(action_id)

    async def check_argumentation_complete(self, action_id: str) -> int:
        """
        Advance past argumentation if every acting unit has signalled.

        Returns:
            int: Acting units still to signal (0 once advanced)
        """
        async with DatabaseSession() as session:
            action = await load_action(session, action_id)
            if action.status != ActionStatus.ARGUING:
                return 0
            game = await load_game(session, action.game_id)
            if game.current_phase != GamePhase.ARGUMENTATION:
                return 0

            players = await load_players(session, game.id)
            result = await session.execute(
                select(ArgumentationCompletion.player_id).where(ArgumentationCompletion.action_id == action_id)
            )
            done = count_completed_units(players, result.scalars().all())
            required = count_acting_units(players)
            remaining = max(required - done, 0)
            if required > 0 and remaining == 0:
                await self.finish_argumentation(session, game, action)
        return remaining

    async def finish_argumentation(self, session: AsyncSession, game: Game, action: Action) -> Game:
        """Move an action out of argumentation inside an open session."""
        settings = game_settings(game)
        strategy = get_strategy(settings.resolution_method)
        next_phase = strategy.phase_after_argumentation

        if next_phase == GamePhase.VOTING:
            moved = await session.execute(
                update(Action)
                .where(Action.id == action.id, Action.status == ActionStatus.ARGUING)
                .values(status=ActionStatus.VOTING, voting_started_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            if moved.rowcount == 0:
                raise ConflictError("Argumentation was already completed")

        game = await apply_transition(session, game.id, next_phase, from_phase=GamePhase.ARGUMENTATION)
        await session.refresh(action)

        kind = notices.VOTING_STARTED if next_phase == GamePhase.VOTING else notices.ARBITER_REVIEW_STARTED
        self._notify(kind, game, {"action_id": action.id})
        return game

    # ------------------------------------------------------------------
    # Voting and resolution
    # ------------------------------------------------------------------

    async def submit_vote(self, action_id: str, user_id: int, vote_type: VoteType) -> Dict[str, Any]:
        """
        Cast a vote on an action.

        Returns:
            dict: votes_cast, votes_required and whether the action resolved

        Raises:
            ConflictError: If the caller (or, under one-per-persona voting,
                their persona) already voted
        """
        try:
            vote_type = VoteType(vote_type)
        except ValueError as e:
            raise InvalidStateError(f"Unknown vote type: {vote_type}") from e

        async with DatabaseSession() as session:
            action = await load_action(session, action_id)
            game = await load_game(session, action.game_id)
            require_active(game)
            settings = game_settings(game)
            strategy = get_strategy(settings.resolution_method)
            if not strategy.uses_voting:
                raise InvalidStateError(f"The {strategy.display_name} method does not use voting")
            require_phase(game, GamePhase.VOTING)
            if action.status != ActionStatus.VOTING:
                raise InvalidStateError("This action is not being voted on")

            player = await require_member(session, game.id, user_id)
            key = vote_unit_key(player, settings)

            existing = await session.execute(
                select(Vote).where(Vote.action_id == action_id, Vote.player_id == player.id)
            )
            if existing.first() is not None:
                raise ConflictError("You have already voted on this action")
            persona_vote = await session.execute(
                select(Vote).where(Vote.action_id == action_id, Vote.unit_key == key)
            )
            if persona_vote.first() is not None:
                raise ConflictError("Your persona has already voted on this action")

            tokens = strategy.map_vote_to_tokens(vote_type)
            session.add(Vote(
                action_id=action_id,
                player_id=player.id,
                unit_key=key,
                vote_type=vote_type,
                success_tokens=tokens.success_tokens,
                failure_tokens=tokens.failure_tokens,
            ))
            await _flush_or_conflict(session, "A vote from your side was already recorded")
            await record_event(session, game.id, EventType.VOTE_SUBMITTED, player.id, {"action_id": action_id})

        log_user_action(user_id, "submit_vote", action_id=action_id, vote_type=vote_type.value)

        try:
            return await self.check_voting_complete(action_id)
        except ConflictError:
            logger.info(f"Voting on action {action_id} was finished by another caller")
            return {"resolved": True}

    async def fill_missing_votes(
        self, session: AsyncSession, game: Game, action: Action, settings: GameSettings,
    ) -> List[str]:
        """
        Cast an UNCERTAIN vote for every voting unit that has not voted.

        Returns:
            List[str]: Player IDs the votes were cast for
        """
        players = await load_players(session, game.id)
        votes = await action_votes(session, action.id)
        missing = pending_units(
            players, [v.player_id for v in votes], split_personas=not settings.one_per_persona,
        )
        strategy = get_strategy(settings.resolution_method)
        tokens = strategy.map_vote_to_tokens(VoteType.UNCERTAIN)
        for player in missing:
            session.add(Vote(
                action_id=action.id,
                player_id=player.id,
                unit_key=vote_unit_key(player, settings),
                vote_type=VoteType.UNCERTAIN,
                success_tokens=tokens.success_tokens,
                failure_tokens=tokens.failure_tokens,
                was_skipped=True,
            ))
        await _flush_or_conflict(session, "A vote arrived while filling missing votes")
        return [p.id for p in missing]

    async def check_voting_complete(self, action_id: str) -> Dict[str, Any]:
        """
        Resolve the action once every voting unit has voted.

        Raises:
            ConflictError: If another caller already finished the vote
        """
        async with DatabaseSession() as session:
            action = await load_action(session, action_id)
            game = await load_game(session, action.game_id)
            settings = game_settings(game)
            players = await load_players(session, game.id)
            votes = await action_votes(session, action_id)

            required = voting_threshold(players, settings)
            cast = count_completed_units(
                players, [v.player_id for v in votes], split_personas=not settings.one_per_persona,
            )
            progress = {"votes_cast": cast, "votes_required": required, "resolved": False}
            # Nobody left to vote: wait for a rejoin or a host skip
            if required == 0 or cast < required or action.status != ActionStatus.VOTING:
                return progress

            finished = await session.execute(
                update(Action)
                .where(Action.id == action_id, Action.status == ActionStatus.VOTING)
                .values(status=ActionStatus.RESOLVED, resolved_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            if finished.rowcount == 0:
                raise ConflictError("Voting on this action was already finished")
            await apply_transition(session, game.id, GamePhase.RESOLUTION, from_phase=GamePhase.VOTING)

        await self.resolve_action(action_id)
        progress["resolved"] = True
        return progress

    async def resolve(self, action_id: str, user_id: int) -> Action:
        """
        Run resolution for an action whose vote (or review) has finished.

        Resolution normally runs automatically; this lets a member retry it
        if it did not complete.

        Raises:
            ConflictError: If the action was already resolved
        """
        async with DatabaseSession() as session:
            action = await load_action(session, action_id)
            await require_member(session, action.game_id, user_id)
        return await self.resolve_action(action_id)

    async def resolve_action(self, action_id: str) -> Action:
        """
        Apply the game's resolution strategy exactly once.

        Raises:
            InvalidStateError: If the action is not ready for resolution
            ConflictError: If a resolution is already stored
        """
        async with DatabaseSession() as session:
            action = await load_action(session, action_id)
            if action.resolution_data is not None:
                raise ConflictError("This action has already been resolved")
            if action.status != ActionStatus.RESOLVED:
                raise InvalidStateError("This action is not ready for resolution")
            game = await load_game(session, action.game_id)
            require_phase(game, GamePhase.RESOLUTION)

            settings = game_settings(game)
            strategy = get_strategy(settings.resolution_method)
            result = strategy.resolve(
                votes=await action_votes(session, action_id),
                arguments=await action_arguments(session, action_id),
            )

            stored = await session.execute(
                update(Action)
                .where(Action.id == action_id, Action.resolution_data.is_(None))
                .values(resolution_data=result.to_resolution_data(), resolution_method=strategy.id)
                .execution_options(synchronize_session=False)
            )
            if stored.rowcount == 0:
                raise ConflictError("This action has already been resolved")

            initiator = await load_player(session, game.id, action.initiator_id)
            if initiator.is_npc:
                await session.execute(
                    update(Game)
                    .where(Game.id == game.id)
                    .values(npc_momentum=Game.npc_momentum + result.result_value)
                    .execution_options(synchronize_session=False)
                )

            game = await apply_transition(session, game.id, GamePhase.NARRATION, from_phase=GamePhase.RESOLUTION)
            await record_event(session, game.id, EventType.ACTION_RESOLVED, None, {
                "action_id": action_id,
                "resolution_method": strategy.id,
                "result_type": result.result_type,
                "result_value": result.result_value,
            })
            await session.refresh(action)

        logger.info(f"Action {action_id} resolved as {result.result_type} ({result.result_value:+d})")
        self._notify(notices.RESOLUTION_READY, game, {
            "result_type": result.result_type, "result_value": result.result_value,
        })
        self._notify(notices.NARRATION_NEEDED, game, {"action_id": action_id})
        return action

    # ------------------------------------------------------------------
    # Narration
    # ------------------------------------------------------------------

    async def submit_narration(self, action_id: str, user_id: int, content: str) -> Narration:
        """
        Narrate what happened and complete the action.

        Raises:
            InvalidStateError: If the action has not been resolved
            PermissionDeniedError: If narration is restricted to the initiator's side
            ConflictError: If the action was already narrated
        """
        async with DatabaseSession() as session:
            action = await load_action(session, action_id)
            game = await load_game(session, action.game_id)
            require_active(game)
            if action.resolution_data is None or action.status != ActionStatus.RESOLVED:
                if action.status == ActionStatus.NARRATED:
                    raise ConflictError("This action has already been narrated")
                raise InvalidStateError("The action must be resolved before it is narrated")
            require_phase(game, GamePhase.NARRATION)

            player = await require_member(session, game.id, user_id)
            settings = game_settings(game)
            initiator = await load_player(session, game.id, action.initiator_id)
            if settings.narration_mode != NARRATION_OPEN and not initiator.is_npc:
                allowed = player.id == initiator.id
                if not allowed and settings.allow_shared_personas and initiator.persona_id:
                    allowed = player.persona_id == initiator.persona_id and player.is_persona_lead
                if not allowed:
                    raise PermissionDeniedError("Only the initiator can narrate this action")

            narration = Narration(action_id=action_id, author_id=player.id, content=content)
            session.add(narration)
            await _flush_or_conflict(session, "This action has already been narrated")

            completed = await session.execute(
                update(Action)
                .where(Action.id == action_id, Action.status == ActionStatus.RESOLVED)
                .values(status=ActionStatus.NARRATED, completed_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            if completed.rowcount == 0:
                raise ConflictError("This action has already been narrated")

            await session.execute(
                update(Round)
                .where(Round.id == action.round_id, Round.actions_completed < Round.total_actions_required)
                .values(actions_completed=Round.actions_completed + 1)
                .execution_options(synchronize_session=False)
            )
            game_round = await load_round(session, action.round_id)

            next_phase = GamePhase.ROUND_SUMMARY if game_round.is_complete else GamePhase.PROPOSAL
            game = await apply_transition(
                session, game.id, next_phase,
                from_phase=GamePhase.NARRATION, player_id=player.id, current_action_id=None,
            )
            await record_event(session, game.id, EventType.ACTION_NARRATED, player.id, {
                "action_id": action_id,
                "actions_completed": game_round.actions_completed,
                "total_actions_required": game_round.total_actions_required,
            })

        log_user_action(user_id, "submit_narration", action_id=action_id)
        if next_phase == GamePhase.ROUND_SUMMARY:
            self._notify(notices.ROUND_SUMMARY_NEEDED, game, {"round_number": game_round.round_number})
        else:
            await self.maybe_auto_propose_npc(game.id)
        return narration

    # ------------------------------------------------------------------
    # Host overrides
    # ------------------------------------------------------------------

    async def skip_argumentation(self, action_id: str, user_id: int) -> Game:
        """Host override: end argumentation now."""
        async with DatabaseSession() as session:
            action = await load_action(session, action_id)
            game = await load_game(session, action.game_id)
            require_active(game)
            host = await require_host(session, game.id, user_id)
            require_phase(game, GamePhase.ARGUMENTATION)
            if action.status != ActionStatus.ARGUING:
                raise InvalidStateError("This action is not being argued")

            action.argumentation_was_skipped = True
            await session.flush()
            game = await self.finish_argumentation(session, game, action)
            await record_event(session, game.id, EventType.ARGUMENTATION_SKIPPED, host.id, {"action_id": action_id})

        log_user_action(user_id, "skip_argumentation", action_id=action_id)
        return game

    async def skip_voting(self, action_id: str, user_id: int) -> Dict[str, Any]:
        """
        Host override: end voting now.

        Every voting unit that has not voted gets an UNCERTAIN vote marked
        as skipped, then the action resolves as usual.
        """
        async with DatabaseSession() as session:
            action = await load_action(session, action_id)
            game = await load_game(session, action.game_id)
            require_active(game)
            host = await require_host(session, game.id, user_id)
            require_phase(game, GamePhase.VOTING)
            if action.status != ActionStatus.VOTING:
                raise InvalidStateError("This action is not being voted on")

            settings = game_settings(game)
            skipped = await self.fill_missing_votes(session, game, action, settings)
            action.voting_was_skipped = True
            await record_event(session, game.id, EventType.VOTING_SKIPPED, host.id, {
                "action_id": action_id, "skipped_player_ids": skipped,
            })

        log_user_action(user_id, "skip_voting", action_id=action_id, skipped=len(skipped))
        progress = await self.check_voting_complete(action_id)
        progress["skipped_player_ids"] = skipped
        return progress

    async def skip_to_next_action(self, game_id: str, user_id: int) -> Round:
        """
        Host override: close the round on the actions already played.

        Only allowed while waiting for a proposal and when at least one
        action exists this round.
        """
        async with DatabaseSession() as session:
            game = await load_game(session, game_id)
            require_active(game)
            host = await require_host(session, game_id, user_id)
            require_phase(game, GamePhase.PROPOSAL)
            if game.current_action_id is not None:
                raise InvalidStateError("An action is still in play")

            count = await count_round_actions(session, game.current_round_id)
            if count == 0:
                raise InvalidStateError("No actions have been played this round")

            await session.execute(
                update(Round)
                .where(Round.id == game.current_round_id)
                .values(total_actions_required=count, actions_completed=count)
                .execution_options(synchronize_session=False)
            )
            game_round = await load_round(session, game.current_round_id)
            game = await apply_transition(
                session, game_id, GamePhase.ROUND_SUMMARY,
                from_phase=GamePhase.PROPOSAL, override=True, player_id=host.id,
            )
            await record_event(session, game_id, EventType.PROPOSALS_SKIPPED, host.id, {
                "round_id": game_round.id, "actions_played": count,
            })

        log_user_action(user_id, "skip_to_next_action", game_id=game_id)
        self._notify(notices.ROUND_SUMMARY_NEEDED, game, {"round_number": game_round.round_number})
        return game_round

    async def edit_action(
        self, action_id: str, user_id: int,
        description: Optional[str] = None, desired_outcome: Optional[str] = None,
    ) -> Action:
        """Host correction of an action's text."""
        async with DatabaseSession() as session:
            action = await load_action(session, action_id)
            host = await require_host(session, action.game_id, user_id)

            changes = {}
            if description is not None:
                changes["description"] = {"old": action.description, "new": description}
                action.description = description
            if desired_outcome is not None:
                changes["desired_outcome"] = {"old": action.desired_outcome, "new": desired_outcome}
                action.desired_outcome = desired_outcome
            await record_event(session, action.game_id, EventType.ACTION_EDITED, host.id, {
                "action_id": action_id, "changes": changes,
            })
        return action

    async def edit_argument(self, argument_id: str, user_id: int, content: str) -> Argument:
        """Host correction of an argument's text."""
        async with DatabaseSession() as session:
            argument = await session.get(Argument, argument_id)
            if argument is None:
                raise NotFoundError(f"Argument {argument_id} not found")
            action = await load_action(session, argument.action_id)
            host = await require_host(session, action.game_id, user_id)

            old_content = argument.content
            argument.content = content
            await record_event(session, action.game_id, EventType.ARGUMENT_EDITED, host.id, {
                "argument_id": argument_id, "old_content": old_content, "new_content": content,
            })
        return argument

    async def edit_narration(self, action_id: str, user_id: int, content: str) -> Narration:
        """Host correction of a narration's text."""
        async with DatabaseSession() as session:
            action = await load_action(session, action_id)
            host = await require_host(session, action.game_id, user_id)
            result = await session.execute(select(Narration).where(Narration.action_id == action_id))
            narration = result.scalar_one_or_none()
            if narration is None:
                raise NotFoundError("This action has not been narrated")

            old_content = narration.content
            narration.content = content
            await record_event(session, action.game_id, EventType.NARRATION_EDITED, host.id, {
                "action_id": action_id, "old_content": old_content, "new_content": content,
            })
        return narration

    # ------------------------------------------------------------------
    # Roster changes
    # ------------------------------------------------------------------

    async def reevaluate_current_action(self, game_id: str) -> None:
        """
        Re-check the current action's threshold after the roster shrank.

        A player leaving can make the remaining units complete.
        """
        async with DatabaseSession() as session:
            game = await load_game(session, game_id)
            phase, action_id = game.current_phase, game.current_action_id
        if action_id is None:
            return

        if phase == GamePhase.ARGUMENTATION:
            await self.check_argumentation_complete(action_id)
        elif phase == GamePhase.VOTING:
            try:
                await self.check_voting_complete(action_id)
            except ConflictError:
                logger.info(f"Voting on action {action_id} was finished by another caller")
