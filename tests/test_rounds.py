import pytest

from matrix_game.database.models import Game, GamePhase, Round, RoundStatus, VoteType
from matrix_game.game.exceptions import ConflictError, InvalidStateError, PermissionDeniedError
from matrix_game.game.phases import EventType

from tests.conftest import HOST, PLAYER_B, events, fetch, play_action, started_game


async def finished_round(service):
    game = await started_game(service)
    await play_action(service, game.id, HOST, (HOST, PLAYER_B))
    await play_action(service, game.id, PLAYER_B, (HOST, PLAYER_B), vote=VoteType.LIKELY_FAILURE)
    return await fetch(Game, game.id)


@pytest.mark.asyncio
async def test_progress_tracks_proposals(service):
    game = await started_game(service)
    await play_action(service, game.id, HOST, (HOST, PLAYER_B))

    progress = await service.rounds.get_round_progress(game.current_round_id, PLAYER_B)
    assert progress["round_number"] == 1
    assert progress["actions_completed"] == 1
    assert progress["remaining"] == 1
    assert progress["is_complete"] is False
    assert len(progress["proposed_units"]) == 1
    assert len(progress["waiting_units"]) == 1


@pytest.mark.asyncio
async def test_summary_opens_the_next_round(service):
    game = await finished_round(service)
    first_round_id = game.current_round_id
    assert game.current_phase == GamePhase.ROUND_SUMMARY

    summary = await service.rounds.submit_round_summary(first_round_id, PLAYER_B, "The city changed hands")
    assert len(summary.outcomes["action_results"]) == 2
    assert summary.outcomes["net_momentum"] == sum(r["result_value"] for r in summary.outcomes["action_results"])

    game = await fetch(Game, game.id)
    assert game.current_phase == GamePhase.PROPOSAL
    assert game.current_round_id != first_round_id
    assert (await fetch(Round, first_round_id)).status == RoundStatus.COMPLETED

    next_round = await fetch(Round, game.current_round_id)
    assert next_round.round_number == 2
    assert next_round.actions_completed == 0
    started = await events(game.id, EventType.ROUND_STARTED)
    assert [e.event_data["round_number"] for e in started] == [1, 2]

    # The new round accepts a proposal from every unit again
    await service.actions.propose(game.id, HOST, "Round two opener")


@pytest.mark.asyncio
async def test_round_summarised_once(service):
    game = await finished_round(service)
    await service.rounds.submit_round_summary(game.current_round_id, HOST, "Done")
    with pytest.raises(ConflictError):
        await service.rounds.submit_round_summary(game.current_round_id, PLAYER_B, "Done again")


@pytest.mark.asyncio
async def test_summary_needs_a_complete_round(service):
    game = await started_game(service)
    with pytest.raises(InvalidStateError):
        await service.rounds.submit_round_summary(game.current_round_id, HOST, "Too soon")


@pytest.mark.asyncio
async def test_host_closes_round_early(service):
    game = await started_game(service)
    await play_action(service, game.id, HOST, (HOST, PLAYER_B))

    with pytest.raises(PermissionDeniedError):
        await service.actions.skip_to_next_action(game.id, PLAYER_B)
    game_round = await service.actions.skip_to_next_action(game.id, HOST)
    assert game_round.total_actions_required == game_round.actions_completed == 1
    assert (await fetch(Game, game.id)).current_phase == GamePhase.ROUND_SUMMARY

    changes = await events(game.id, EventType.PHASE_CHANGED)
    assert changes[-1].event_data == {"from": "proposal", "to": "round_summary", "override": True}


@pytest.mark.asyncio
async def test_close_round_needs_an_action(service):
    game = await started_game(service)
    with pytest.raises(InvalidStateError):
        await service.actions.skip_to_next_action(game.id, HOST)


@pytest.mark.asyncio
async def test_host_edits_summary(service):
    game = await finished_round(service)
    await service.rounds.submit_round_summary(game.current_round_id, PLAYER_B, "Typo")

    with pytest.raises(PermissionDeniedError):
        await service.rounds.edit_round_summary(game.current_round_id, PLAYER_B, "Fixed")
    await service.rounds.edit_round_summary(game.current_round_id, HOST, "Fixed")

    summary = await service.rounds.get_round_summary(game.current_round_id, PLAYER_B)
    assert summary.content == "Fixed"
    edits = await events(game.id, EventType.ROUND_SUMMARY_EDITED)
    assert edits[0].event_data["old_content"] == "Typo"
