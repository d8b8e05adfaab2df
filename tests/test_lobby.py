import pytest
from sqlalchemy import select

from matrix_game.database.database import DatabaseSession
from matrix_game.database.models import Game, GamePhase, GameStatus, Persona, Player, Round
from matrix_game.game.exceptions import (
    ConflictError, InvalidStateError, NotFoundError, PermissionDeniedError,
)

from tests.conftest import HOST, PLAYER_B, PLAYER_C, fetch, new_game

PERSONAS = [{"name": "Rebels"}, {"name": "Traders"}]
SHARED = {"allow_shared_personas": True}


async def _persona_ids(game_id):
    async with DatabaseSession() as session:
        result = await session.execute(
            select(Persona).where(Persona.game_id == game_id).order_by(Persona.sort_order)
        )
        return [p.id for p in result.scalars().all()]


async def _players(game_id):
    async with DatabaseSession() as session:
        result = await session.execute(
            select(Player).where(Player.game_id == game_id).order_by(Player.join_order)
        )
        return list(result.scalars().all())


@pytest.mark.asyncio
async def test_create_and_join(service):
    game = await new_game(service, players=(HOST, PLAYER_B, PLAYER_C))
    assert game.status == GameStatus.LOBBY
    assert game.current_phase == GamePhase.WAITING

    players = await _players(game.id)
    assert [p.user_id for p in players] == [HOST, PLAYER_B, PLAYER_C]
    assert [p.is_host for p in players] == [True, False, False]

    with pytest.raises(ConflictError):
        await service.games.join_game(game.id, PLAYER_B, "Again")


@pytest.mark.asyncio
async def test_first_claimer_leads_and_lead_is_handed_on(service):
    game = await new_game(service, players=(HOST, PLAYER_B, PLAYER_C), settings=SHARED, personas=PERSONAS)
    rebels, traders = await _persona_ids(game.id)

    first = await service.games.select_persona(game.id, HOST, rebels)
    second = await service.games.select_persona(game.id, PLAYER_B, rebels)
    assert first.is_persona_lead and not second.is_persona_lead

    await service.games.select_persona(game.id, HOST, None)
    leads = [p for p in await _players(game.id) if p.persona_id == rebels and p.is_persona_lead]
    assert [p.user_id for p in leads] == [PLAYER_B]

    # Re-selecting the same persona keeps lead status
    again = await service.games.select_persona(game.id, PLAYER_B, rebels)
    assert again.is_persona_lead


@pytest.mark.asyncio
async def test_claimed_persona_conflicts_without_sharing(service):
    game = await new_game(service, personas=PERSONAS)
    rebels, _ = await _persona_ids(game.id)

    await service.games.select_persona(game.id, HOST, rebels)
    with pytest.raises(ConflictError):
        await service.games.select_persona(game.id, PLAYER_B, rebels)


@pytest.mark.asyncio
async def test_npc_persona_cannot_be_selected(service):
    game = await new_game(service, personas=[{"name": "Empire", "is_npc": True}])
    (empire,) = await _persona_ids(game.id)

    with pytest.raises(InvalidStateError):
        await service.games.select_persona(game.id, PLAYER_B, empire)


@pytest.mark.asyncio
async def test_host_sets_persona_lead(service):
    game = await new_game(service, settings=SHARED, personas=PERSONAS)
    rebels, _ = await _persona_ids(game.id)
    await service.games.select_persona(game.id, HOST, rebels)
    await service.games.select_persona(game.id, PLAYER_B, rebels)
    b = [p for p in await _players(game.id) if p.user_id == PLAYER_B][0]

    with pytest.raises(PermissionDeniedError):
        await service.games.set_persona_lead(game.id, PLAYER_B, b.id)
    await service.games.set_persona_lead(game.id, HOST, b.id)

    leads = [p.user_id for p in await _players(game.id) if p.is_persona_lead]
    assert leads == [PLAYER_B]


@pytest.mark.asyncio
async def test_start_requires_two_players(service):
    game = await new_game(service, players=(HOST,))
    with pytest.raises(InvalidStateError):
        await service.games.start_game(game.id, HOST)


@pytest.mark.asyncio
async def test_only_host_starts(service):
    game = await new_game(service)
    with pytest.raises(PermissionDeniedError):
        await service.games.start_game(game.id, PLAYER_B)


@pytest.mark.asyncio
async def test_personas_required(service):
    game = await new_game(service, settings={"personas_required": True}, personas=PERSONAS)
    with pytest.raises(InvalidStateError):
        await service.games.start_game(game.id, HOST)


@pytest.mark.asyncio
async def test_start_sizes_round_from_acting_units(service):
    game = await new_game(
        service, players=(HOST, PLAYER_B, PLAYER_C), settings=SHARED,
        personas=PERSONAS + [{"name": "Empire", "is_npc": True, "npc_action_description": "Tax"}],
    )
    rebels, _, _ = await _persona_ids(game.id)
    await service.games.select_persona(game.id, HOST, rebels)
    await service.games.select_persona(game.id, PLAYER_B, rebels)

    game = await service.games.start_game(game.id, HOST)
    assert game.status == GameStatus.ACTIVE
    assert game.current_phase == GamePhase.PROPOSAL

    game_round = await fetch(Round, game.current_round_id)
    # Rebels + solo player + NPC
    assert game_round.total_actions_required == 3
    assert game_round.round_number == 1
    assert any(p.is_npc for p in await _players(game.id))

    with pytest.raises(InvalidStateError):
        await service.games.start_game(game.id, HOST)


@pytest.mark.asyncio
async def test_soft_delete(service):
    game = await new_game(service)
    with pytest.raises(PermissionDeniedError):
        await service.games.delete_game(game.id, PLAYER_B)

    await service.games.delete_game(game.id, HOST)
    assert (await fetch(Game, game.id)).deleted_at is not None
    with pytest.raises(NotFoundError):
        await service.games.join_game(game.id, PLAYER_C, "Late")


@pytest.mark.asyncio
async def test_leave_promotes_lead_and_rejoin(service):
    game = await new_game(service, settings=SHARED, personas=PERSONAS)
    rebels, _ = await _persona_ids(game.id)
    await service.games.select_persona(game.id, HOST, rebels)
    await service.games.select_persona(game.id, PLAYER_B, rebels)

    await service.games.leave_game(game.id, HOST)
    players = await _players(game.id)
    assert not players[0].is_active and not players[0].is_persona_lead
    assert players[1].is_persona_lead

    with pytest.raises(PermissionDeniedError):
        await service.games.select_persona(game.id, HOST, None)

    player = await service.games.rejoin_game(game.id, HOST)
    assert player.is_active and not player.is_persona_lead
    with pytest.raises(ConflictError):
        await service.games.rejoin_game(game.id, HOST)


@pytest.mark.asyncio
async def test_single_arbiter(service):
    game = await new_game(service, players=(HOST, PLAYER_B, PLAYER_C))
    players = await _players(game.id)

    await service.games.set_player_role(game.id, HOST, players[1].id, "arbiter")
    with pytest.raises(ConflictError):
        await service.games.set_player_role(game.id, HOST, players[2].id, "arbiter")


@pytest.mark.asyncio
async def test_settings_update_is_validated(service):
    game = await new_game(service)
    settings = await service.games.update_settings(game.id, HOST, {"narration_mode": "open"})
    assert settings.narration_mode == "open"

    with pytest.raises(InvalidStateError):
        await service.games.update_settings(game.id, HOST, {"narration_mode": "nobody"})
