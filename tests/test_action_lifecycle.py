import pytest
from sqlalchemy import func, select

from matrix_game.database.database import DatabaseSession
from matrix_game.database.models import (
    Action, ActionStatus, Argument, ArgumentationCompletion, ArgumentType, Game, GamePhase, Round, Vote, VoteType,
)
from matrix_game.game.exceptions import ConflictError, InvalidStateError, PermissionDeniedError
from matrix_game.game.phases import EventType

from tests.conftest import HOST, PLAYER_B, PLAYER_C, events, fetch, play_action, started_game


@pytest.mark.asyncio
async def test_two_solo_players_play_one_action(service):
    game = await started_game(service)

    action = await service.actions.propose(game.id, HOST, "Seize the harbour", "We control trade")
    assert action.status == ActionStatus.ARGUING
    assert (await fetch(Game, game.id)).current_phase == GamePhase.ARGUMENTATION

    assert await service.actions.complete_argumentation(action.id, HOST) == 1
    assert await service.actions.complete_argumentation(action.id, PLAYER_B) == 0
    assert (await fetch(Action, action.id)).status == ActionStatus.VOTING
    assert (await fetch(Game, game.id)).current_phase == GamePhase.VOTING

    progress = await service.actions.submit_vote(action.id, HOST, VoteType.LIKELY_SUCCESS)
    assert progress == {"votes_cast": 1, "votes_required": 2, "resolved": False}
    progress = await service.actions.submit_vote(action.id, PLAYER_B, VoteType.LIKELY_SUCCESS)
    assert progress["resolved"] is True

    action = await fetch(Action, action.id)
    assert action.status == ActionStatus.RESOLVED
    assert action.resolution_method == "token_draw"
    assert action.resolution_data["total_success_tokens"] == 5
    assert action.resolution_data["result_type"] in ("TRIUMPH", "SUCCESS_BUT", "FAILURE_BUT", "DISASTER")
    assert (await fetch(Game, game.id)).current_phase == GamePhase.NARRATION
    phases = [e.event_data["to"] for e in await events(game.id, EventType.PHASE_CHANGED)]
    assert phases[-2:] == ["resolution", "narration"]

    await service.actions.submit_narration(action.id, HOST, "The harbour falls")
    assert (await fetch(Action, action.id)).status == ActionStatus.NARRATED
    game = await fetch(Game, game.id)
    game_round = await fetch(Round, game.current_round_id)
    assert (game_round.actions_completed, game_round.total_actions_required) == (1, 2)
    assert game.current_phase == GamePhase.PROPOSAL
    assert game.current_action_id is None


@pytest.mark.asyncio
async def test_one_proposal_per_unit_per_round(service):
    game = await started_game(service)
    await play_action(service, game.id, HOST, (HOST, PLAYER_B))

    with pytest.raises(ConflictError):
        await service.actions.propose(game.id, HOST, "Again")


@pytest.mark.asyncio
async def test_propose_outside_proposal_phase(service):
    game = await started_game(service)
    await service.actions.propose(game.id, HOST, "First")
    with pytest.raises(InvalidStateError):
        await service.actions.propose(game.id, PLAYER_B, "Second")


@pytest.mark.asyncio
async def test_sequence_numbers_are_game_wide(service):
    game = await started_game(service)
    first = await play_action(service, game.id, HOST, (HOST, PLAYER_B))
    second = await play_action(service, game.id, PLAYER_B, (HOST, PLAYER_B))
    assert (first.sequence_number, second.sequence_number) == (1, 2)


@pytest.mark.asyncio
async def test_argument_rules(service):
    game = await started_game(service, players=(HOST, PLAYER_B, PLAYER_C))
    action = await service.actions.propose(game.id, HOST, "March", initial_arguments=["We are many"])

    with pytest.raises(InvalidStateError):
        await service.actions.add_argument(action.id, HOST, ArgumentType.FOR, "Also this")
    with pytest.raises(InvalidStateError):
        await service.actions.add_argument(action.id, PLAYER_B, ArgumentType.CLARIFICATION, "Hm")
    await service.actions.add_argument(action.id, HOST, ArgumentType.CLARIFICATION, "By night")

    for n in range(3):
        await service.actions.add_argument(action.id, PLAYER_B, ArgumentType.AGAINST, f"No {n}")
    with pytest.raises(InvalidStateError):
        await service.actions.add_argument(action.id, PLAYER_B, ArgumentType.FOR, "One more")
    # The cap is per player
    await service.actions.add_argument(action.id, PLAYER_C, ArgumentType.FOR, "Yes")


@pytest.mark.asyncio
async def test_too_many_opening_arguments(service):
    game = await started_game(service, settings={"argument_limit": 1})
    with pytest.raises(InvalidStateError):
        await service.actions.propose(game.id, HOST, "March", initial_arguments=["a", "b"])


@pytest.mark.asyncio
async def test_complete_argumentation_is_idempotent(service):
    game = await started_game(service)
    action = await service.actions.propose(game.id, HOST, "March")

    assert await service.actions.complete_argumentation(action.id, HOST) == 1
    assert await service.actions.complete_argumentation(action.id, HOST) == 1

    async with DatabaseSession() as session:
        count = await session.execute(
            select(func.count(ArgumentationCompletion.id)).where(ArgumentationCompletion.action_id == action.id)
        )
        assert count.scalar_one() == 1


@pytest.mark.asyncio
async def test_duplicate_vote_conflicts(service):
    game = await started_game(service)
    action = await service.actions.propose(game.id, HOST, "March")
    for user_id in (HOST, PLAYER_B):
        await service.actions.complete_argumentation(action.id, user_id)

    await service.actions.submit_vote(action.id, HOST, VoteType.UNCERTAIN)
    with pytest.raises(ConflictError):
        await service.actions.submit_vote(action.id, HOST, VoteType.LIKELY_FAILURE)


@pytest.mark.asyncio
async def test_resolution_happens_once(service):
    game = await started_game(service)
    action = await service.actions.propose(game.id, HOST, "March")
    for user_id in (HOST, PLAYER_B):
        await service.actions.complete_argumentation(action.id, user_id)
    for user_id in (HOST, PLAYER_B):
        await service.actions.submit_vote(action.id, user_id, VoteType.LIKELY_FAILURE)

    before = (await fetch(Action, action.id)).resolution_data
    with pytest.raises(ConflictError):
        await service.actions.resolve(action.id, HOST)
    assert (await fetch(Action, action.id)).resolution_data == before
    assert len(await events(game.id, EventType.ACTION_RESOLVED)) == 1


@pytest.mark.asyncio
async def test_narration_requires_resolution(service):
    game = await started_game(service)
    action = await service.actions.propose(game.id, HOST, "March")
    with pytest.raises(InvalidStateError):
        await service.actions.submit_narration(action.id, HOST, "Too early")


@pytest.mark.asyncio
async def test_narration_modes(service):
    game = await started_game(service)
    action = await service.actions.propose(game.id, HOST, "March")
    for user_id in (HOST, PLAYER_B):
        await service.actions.complete_argumentation(action.id, user_id)
    for user_id in (HOST, PLAYER_B):
        await service.actions.submit_vote(action.id, user_id, VoteType.UNCERTAIN)

    with pytest.raises(PermissionDeniedError):
        await service.actions.submit_narration(action.id, PLAYER_B, "Not mine to tell")
    await service.actions.submit_narration(action.id, HOST, "Told")
    with pytest.raises(ConflictError):
        await service.actions.submit_narration(action.id, HOST, "Told twice")


@pytest.mark.asyncio
async def test_open_narration(service):
    game = await started_game(service, settings={"narration_mode": "open"})
    action = await play_action(service, game.id, HOST, (HOST, PLAYER_B), narrator=PLAYER_B)
    assert (await fetch(Action, action.id)).status == ActionStatus.NARRATED


@pytest.mark.asyncio
async def test_round_fills_and_goes_to_summary(service):
    game = await started_game(service)
    await play_action(service, game.id, HOST, (HOST, PLAYER_B))
    await play_action(service, game.id, PLAYER_B, (HOST, PLAYER_B))

    game = await fetch(Game, game.id)
    game_round = await fetch(Round, game.current_round_id)
    assert game.current_phase == GamePhase.ROUND_SUMMARY
    assert game_round.actions_completed == game_round.total_actions_required == 2


@pytest.mark.asyncio
async def test_non_member_is_rejected(service):
    game = await started_game(service)
    with pytest.raises(PermissionDeniedError):
        await service.actions.propose(game.id, PLAYER_C, "Gatecrash")


@pytest.mark.asyncio
async def test_leaving_player_unblocks_argumentation(service):
    game = await started_game(service, players=(HOST, PLAYER_B, PLAYER_C))
    action = await service.actions.propose(game.id, HOST, "March")
    await service.actions.complete_argumentation(action.id, HOST)
    assert await service.actions.complete_argumentation(action.id, PLAYER_B) == 1

    await service.games.leave_game(game.id, PLAYER_C)
    assert (await fetch(Action, action.id)).status == ActionStatus.VOTING


@pytest.mark.asyncio
async def test_npc_proposes_after_every_human_unit(service):
    game = await started_game(service, personas=[{
        "name": "Empire", "is_npc": True,
        "npc_action_description": "The Empire raises taxes", "npc_desired_outcome": "Full coffers",
    }])
    assert (await fetch(Round, game.current_round_id)).total_actions_required == 3

    await play_action(service, game.id, HOST, (HOST, PLAYER_B))
    assert (await fetch(Game, game.id)).current_phase == GamePhase.PROPOSAL

    await play_action(service, game.id, PLAYER_B, (HOST, PLAYER_B))
    game = await fetch(Game, game.id)
    assert game.current_phase == GamePhase.ARGUMENTATION
    npc_action = await fetch(Action, game.current_action_id)
    assert npc_action.description == "The Empire raises taxes"
    assert len(await events(game.id, EventType.NPC_ACTION_PROPOSED)) == 1

    for user_id in (HOST, PLAYER_B):
        await service.actions.complete_argumentation(npc_action.id, user_id)
    for user_id in (HOST, PLAYER_B):
        await service.actions.submit_vote(npc_action.id, user_id, VoteType.LIKELY_FAILURE)

    npc_action = await fetch(Action, npc_action.id)
    assert (await fetch(Game, game.id)).npc_momentum == npc_action.resolution_data["result_value"]

    # Any member may narrate the NPC's action
    await service.actions.submit_narration(npc_action.id, PLAYER_B, "The coffers fill")
    assert (await fetch(Game, game.id)).current_phase == GamePhase.ROUND_SUMMARY


@pytest.mark.asyncio
async def test_votes_carry_strategy_tokens(service):
    game = await started_game(service)
    action = await service.actions.propose(game.id, HOST, "March")
    for user_id in (HOST, PLAYER_B):
        await service.actions.complete_argumentation(action.id, user_id)
    await service.actions.submit_vote(action.id, HOST, VoteType.LIKELY_FAILURE)

    async with DatabaseSession() as session:
        vote = (await session.execute(select(Vote).where(Vote.action_id == action.id))).scalar_one()
    assert (vote.success_tokens, vote.failure_tokens) == (0, 2)
    assert vote.was_skipped is False


async def argued_action(service, game_id, users):
    action = await service.actions.propose(game_id, HOST, "March")
    for user_id in users:
        await service.actions.complete_argumentation(action.id, user_id)
    return action


@pytest.mark.asyncio
async def test_host_skips_argumentation(service):
    game = await started_game(service, players=(HOST, PLAYER_B, PLAYER_C))
    action = await service.actions.propose(game.id, HOST, "March")
    await service.actions.complete_argumentation(action.id, HOST)

    with pytest.raises(PermissionDeniedError):
        await service.actions.skip_argumentation(action.id, PLAYER_B)
    game = await service.actions.skip_argumentation(action.id, HOST)

    assert game.current_phase == GamePhase.VOTING
    action = await fetch(Action, action.id)
    assert action.argumentation_was_skipped is True
    assert action.status == ActionStatus.VOTING
    assert len(await events(game.id, EventType.ARGUMENTATION_SKIPPED)) == 1


@pytest.mark.asyncio
async def test_host_skips_voting(service):
    game = await started_game(service, players=(HOST, PLAYER_B, PLAYER_C))
    action = await argued_action(service, game.id, (HOST, PLAYER_B, PLAYER_C))
    await service.actions.submit_vote(action.id, HOST, VoteType.LIKELY_SUCCESS)

    with pytest.raises(PermissionDeniedError):
        await service.actions.skip_voting(action.id, PLAYER_B)
    progress = await service.actions.skip_voting(action.id, HOST)

    assert progress["resolved"] is True
    assert len(progress["skipped_player_ids"]) == 2
    async with DatabaseSession() as session:
        votes = (await session.execute(select(Vote).where(Vote.action_id == action.id))).scalars().all()
    skipped = [v for v in votes if v.was_skipped]
    assert len(skipped) == 2
    assert all(v.vote_type == VoteType.UNCERTAIN for v in skipped)
    action = await fetch(Action, action.id)
    assert action.voting_was_skipped is True
    assert action.status == ActionStatus.RESOLVED
    assert (await fetch(Game, game.id)).current_phase == GamePhase.NARRATION


@pytest.mark.asyncio
async def test_no_resolution_without_voters(service):
    game = await started_game(service)
    action = await argued_action(service, game.id, (HOST, PLAYER_B))

    await service.games.leave_game(game.id, HOST)
    await service.games.leave_game(game.id, PLAYER_B)

    action = await fetch(Action, action.id)
    assert action.status == ActionStatus.VOTING
    assert action.resolution_data is None
    assert (await fetch(Game, game.id)).current_phase == GamePhase.VOTING


@pytest.mark.asyncio
async def test_host_edits_keep_lifecycle_state(service):
    game = await started_game(service)
    action = await service.actions.propose(game.id, HOST, "March", initial_arguments=["We are many"])

    with pytest.raises(PermissionDeniedError):
        await service.actions.edit_action(action.id, PLAYER_B, description="Retreat")
    edited = await service.actions.edit_action(action.id, HOST, description="March at dawn")
    assert edited.description == "March at dawn"
    assert edited.status == ActionStatus.ARGUING

    async with DatabaseSession() as session:
        opening = (await session.execute(select(Argument).where(Argument.action_id == action.id))).scalar_one()
    edited_argument = await service.actions.edit_argument(opening.id, HOST, "We are very many")
    assert edited_argument.content == "We are very many"
    assert edited_argument.argument_type == ArgumentType.INITIATOR_FOR

    for user_id in (HOST, PLAYER_B):
        await service.actions.complete_argumentation(action.id, user_id)
    for user_id in (HOST, PLAYER_B):
        await service.actions.submit_vote(action.id, user_id, VoteType.UNCERTAIN)
    await service.actions.submit_narration(action.id, HOST, "They marched")

    narration = await service.actions.edit_narration(action.id, HOST, "They marched at dawn")
    assert narration.content == "They marched at dawn"
    assert (await fetch(Action, action.id)).status == ActionStatus.NARRATED
    assert (await fetch(Game, game.id)).current_phase == GamePhase.PROPOSAL

    changes = (await events(game.id, EventType.ACTION_EDITED))[0].event_data["changes"]
    assert changes["description"] == {"old": "March", "new": "March at dawn"}
    assert len(await events(game.id, EventType.ARGUMENT_EDITED)) == 1
    assert len(await events(game.id, EventType.NARRATION_EDITED)) == 1
