"""Shared fixtures: an in-memory database per test and a wired service."""

from datetime import timedelta

import pytest
import pytest_asyncio
from sqlalchemy import select, update

from matrix_game.database.database import DatabaseSession, close_database, init_database
from matrix_game.database.models import Game, GameEvent, VoteType, utcnow
from matrix_game.main import MatrixGameService

HOST = 1001
PLAYER_B = 1002
PLAYER_C = 1003


class DummyBot:
    """Collects outbound messages instead of hitting Telegram."""

    def __init__(self):
        self.sent = []

    async def send_message(self, chat_id, text, **kwargs):
        self.sent.append((chat_id, text))


@pytest.fixture
def bot():
    return DummyBot()


@pytest_asyncio.fixture
async def service(bot):
    await init_database("sqlite+aiosqlite:///:memory:")
    svc = MatrixGameService(bot=bot)
    yield svc
    await svc.worker.stop()
    await svc.notifier.flush()
    await close_database()


async def new_game(svc, players=(HOST, PLAYER_B), settings=None, personas=None, chat_id=-100):
    """Create a lobby game hosted by the first user with the others joined."""
    game = await svc.games.create_game(
        players[0], f"Player {players[0]}", "Test Scenario",
        chat_id=chat_id, settings=settings, personas=personas,
    )
    for user_id in players[1:]:
        await svc.games.join_game(game.id, user_id, f"Player {user_id}")
    return game


async def started_game(svc, players=(HOST, PLAYER_B), settings=None, personas=None):
    game = await new_game(svc, players, settings, personas)
    return await svc.games.start_game(game.id, players[0])


async def fetch(model, object_id):
    async with DatabaseSession() as session:
        return await session.get(model, object_id)


async def events(game_id, event_type):
    async with DatabaseSession() as session:
        result = await session.execute(
            select(GameEvent)
            .where(GameEvent.game_id == game_id, GameEvent.event_type == event_type)
            .order_by(GameEvent.created_at)
        )
        return list(result.scalars().all())


async def age_phase(game_id, hours):
    """Pretend the current phase started `hours` ago."""
    async with DatabaseSession() as session:
        await session.execute(
            update(Game).where(Game.id == game_id).values(phase_started_at=utcnow() - timedelta(hours=hours))
        )


async def play_action(svc, game_id, proposer, users, narrator=None, vote=VoteType.LIKELY_SUCCESS):
    """Run one human action from proposal to narration."""
    action = await svc.actions.propose(game_id, proposer, "Storm the gates")
    for user_id in users:
        await svc.actions.complete_argumentation(action.id, user_id)
    for user_id in users:
        await svc.actions.submit_vote(action.id, user_id, vote)
    await svc.actions.submit_narration(action.id, narrator or proposer, "It happened")
    return action
