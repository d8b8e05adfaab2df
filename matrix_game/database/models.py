"""
Database Models for the Matrix Game Orchestrator

This module defines all SQLAlchemy models for the matrix game system.
Each model represents a table in the database supporting:
- Games moving through a fixed set of phases
- Rounds that count completed actions against a required total
- Players grouped into shared personas with a single lead
- Actions with arguments, votes, resolution data and narration
- An append-only audit log of game events

Uniqueness rules that guard against double submission live here as
table constraints, so duplicate writes fail at the storage boundary.
"""

import uuid
from datetime import datetime, timezone
from sqlalchemy import (
    Column, String, Integer, BigInteger, Boolean, DateTime, ForeignKey, Text, JSON, Enum,
    UniqueConstraint,
)
import enum

from .database import Base


# Use String for UUID storage since we're using SQLite
def generate_uuid():
    """Generate a UUID string for SQLite compatibility."""
    return str(uuid.uuid4())


def utcnow() -> datetime:
    """Current UTC time as a naive datetime (SQLite drops tzinfo)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# Enums for consistent data types
class GameStatus(enum.Enum):
    LOBBY = "lobby"
    ACTIVE = "active"
    COMPLETED = "completed"


class GamePhase(enum.Enum):
    WAITING = "waiting"
    PROPOSAL = "proposal"
    ARGUMENTATION = "argumentation"
    ARBITER_REVIEW = "arbiter_review"
    VOTING = "voting"
    RESOLUTION = "resolution"
    NARRATION = "narration"
    ROUND_SUMMARY = "round_summary"


class RoundStatus(enum.Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class ActionStatus(enum.Enum):
    ARGUING = "arguing"
    VOTING = "voting"
    RESOLVED = "resolved"
    NARRATED = "narrated"


class ArgumentType(enum.Enum):
    INITIATOR_FOR = "initiator_for"
    FOR = "for"
    AGAINST = "against"
    CLARIFICATION = "clarification"


class VoteType(enum.Enum):
    LIKELY_SUCCESS = "likely_success"
    LIKELY_FAILURE = "likely_failure"
    UNCERTAIN = "uncertain"


class GameRole(enum.Enum):
    PLAYER = "player"
    ARBITER = "arbiter"


class Game(Base):
    """
    Game model holding the top-level phase machine state.

    current_phase and phase_started_at are only ever written through
    the phase orchestrator.
    """
    __tablename__ = "games"

    id = Column(String(36), primary_key=True, default=generate_uuid, doc="Unique game ID")

    name = Column(String(255), nullable=False, doc="Game name")
    description = Column(Text, nullable=True, doc="Scenario description")
    status = Column(Enum(GameStatus), default=GameStatus.LOBBY, nullable=False, doc="Lifecycle status")

    # Phase machine
    current_phase = Column(Enum(GamePhase), default=GamePhase.WAITING, nullable=False, doc="Current game phase")
    phase_started_at = Column(DateTime, nullable=True, doc="When the current phase began (timeout anchor)")
    current_round_id = Column(String(36), nullable=True, doc="Round currently in progress")
    current_action_id = Column(String(36), nullable=True, doc="Action currently being played")

    settings = Column(JSON, nullable=True, doc="Per-game settings, see GameSettings")
    npc_momentum = Column(Integer, default=0, nullable=False, doc="Accumulated NPC result values")

    chat_id = Column(BigInteger, nullable=True, doc="Telegram chat ID that receives notifications")

    # Timestamps
    created_at = Column(DateTime, default=utcnow, doc="Game creation timestamp")
    started_at = Column(DateTime, nullable=True, doc="Game start timestamp")
    deleted_at = Column(DateTime, nullable=True, doc="Soft delete timestamp")

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def __repr__(self) -> str:
        return f"<Game(id={self.id}, status={self.status.value}, phase={self.current_phase.value})>"


class Round(Base):
    """
    A round of play; completes when every required action is narrated.
    """
    __tablename__ = "rounds"
    __table_args__ = (
        UniqueConstraint("game_id", "round_number", name="uq_round_number"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid, doc="Unique round ID")
    game_id = Column(String(36), ForeignKey("games.id"), nullable=False, doc="Game ID")
    round_number = Column(Integer, nullable=False, doc="1-based round number")
    status = Column(Enum(RoundStatus), default=RoundStatus.IN_PROGRESS, nullable=False, doc="Round status")

    actions_completed = Column(Integer, default=0, nullable=False, doc="Narrated actions this round")
    total_actions_required = Column(Integer, nullable=False, doc="Actions needed to complete the round")

    created_at = Column(DateTime, default=utcnow, doc="Round creation timestamp")
    completed_at = Column(DateTime, nullable=True, doc="Round completion timestamp")

    @property
    def is_complete(self) -> bool:
        return self.actions_completed >= self.total_actions_required

    def __repr__(self) -> str:
        return f"<Round(number={self.round_number}, {self.actions_completed}/{self.total_actions_required})>"


class RoundSummary(Base):
    """Narrative summary written once a round is complete."""
    __tablename__ = "round_summaries"

    id = Column(String(36), primary_key=True, default=generate_uuid, doc="Unique summary ID")
    round_id = Column(String(36), ForeignKey("rounds.id"), nullable=False, unique=True, doc="Round ID")
    author_id = Column(String(36), ForeignKey("players.id"), nullable=False, doc="Authoring player")
    content = Column(Text, nullable=False, doc="Summary text")
    outcomes = Column(JSON, nullable=True, doc="Triumphs, disasters, net momentum and per-action results")
    created_at = Column(DateTime, default=utcnow, doc="Submission timestamp")


class Persona(Base):
    """
    A character that one or more players can claim.

    NPC personas are played by the system and cannot be claimed.
    """
    __tablename__ = "personas"
    __table_args__ = (
        UniqueConstraint("game_id", "name", name="uq_persona_name"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid, doc="Unique persona ID")
    game_id = Column(String(36), ForeignKey("games.id"), nullable=False, doc="Game ID")
    name = Column(String(255), nullable=False, doc="Persona name")
    description = Column(Text, nullable=True, doc="Persona description")
    is_npc = Column(Boolean, default=False, nullable=False, doc="Whether the system plays this persona")
    npc_action_description = Column(Text, nullable=True, doc="Action the NPC proposes each round")
    npc_desired_outcome = Column(Text, nullable=True, doc="Outcome the NPC wants")
    sort_order = Column(Integer, default=0, nullable=False, doc="Display order")


class Player(Base):
    """
    A participant in one game.

    user_id is the owning identity (Telegram user ID for humans, the
    configured NPC user ID for the system player).
    """
    __tablename__ = "players"
    __table_args__ = (
        UniqueConstraint("game_id", "user_id", name="uq_player_user"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid, doc="Unique player ID")
    game_id = Column(String(36), ForeignKey("games.id"), nullable=False, doc="Game ID")
    user_id = Column(BigInteger, nullable=False, doc="Owning user ID")
    player_name = Column(String(255), nullable=False, doc="Display name")

    persona_id = Column(String(36), ForeignKey("personas.id"), nullable=True, doc="Claimed persona")
    is_persona_lead = Column(Boolean, default=False, nullable=False, doc="Lead of a shared persona")

    is_host = Column(Boolean, default=False, nullable=False, doc="Game host")
    is_npc = Column(Boolean, default=False, nullable=False, doc="System-controlled player")
    is_active = Column(Boolean, default=True, nullable=False, doc="False once the player leaves")
    game_role = Column(Enum(GameRole), default=GameRole.PLAYER, nullable=False, doc="PLAYER or ARBITER")
    join_order = Column(Integer, default=0, nullable=False, doc="Order of joining, used for lead promotion")

    joined_at = Column(DateTime, default=utcnow, doc="Join timestamp")

    def __repr__(self) -> str:
        return f"<Player(name={self.player_name}, persona={self.persona_id}, active={self.is_active})>"


class Action(Base):
    """
    A proposed action and everything that happens to it.

    unit_key identifies the initiator's acting unit so the database
    rejects a second proposal from the same unit in a round.
    """
    __tablename__ = "actions"
    __table_args__ = (
        UniqueConstraint("round_id", "unit_key", name="uq_action_unit_per_round"),
        UniqueConstraint("game_id", "sequence_number", name="uq_action_sequence"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid, doc="Unique action ID")
    game_id = Column(String(36), ForeignKey("games.id"), nullable=False, doc="Game ID")
    round_id = Column(String(36), ForeignKey("rounds.id"), nullable=False, doc="Round ID")
    initiator_id = Column(String(36), ForeignKey("players.id"), nullable=False, doc="Proposing player")
    unit_key = Column(String(80), nullable=False, doc="Acting unit of the initiator")
    sequence_number = Column(Integer, nullable=False, doc="Game-wide proposal order")

    description = Column(Text, nullable=False, doc="What the initiator attempts")
    desired_outcome = Column(Text, nullable=True, doc="What the initiator hopes happens")
    status = Column(Enum(ActionStatus), default=ActionStatus.ARGUING, nullable=False, doc="Lifecycle status")

    # Timestamps
    argumentation_started_at = Column(DateTime, default=utcnow, doc="Argumentation start")
    voting_started_at = Column(DateTime, nullable=True, doc="Voting start")
    resolved_at = Column(DateTime, nullable=True, doc="Resolution timestamp")
    completed_at = Column(DateTime, nullable=True, doc="Narration timestamp")

    # Resolution
    resolution_method = Column(String(50), nullable=True, doc="Strategy ID used to resolve")
    resolution_data = Column(JSON(none_as_null=True), nullable=True, doc="Strategy payload incl. result_type and result_value")

    # Host overrides
    argumentation_was_skipped = Column(Boolean, default=False, nullable=False, doc="Host skipped argumentation")
    voting_was_skipped = Column(Boolean, default=False, nullable=False, doc="Host skipped voting")

    def __repr__(self) -> str:
        return f"<Action(seq={self.sequence_number}, status={self.status.value})>"


class Argument(Base):
    """An argument for, against or clarifying an action."""
    __tablename__ = "arguments"

    id = Column(String(36), primary_key=True, default=generate_uuid, doc="Unique argument ID")
    action_id = Column(String(36), ForeignKey("actions.id"), nullable=False, doc="Action ID")
    player_id = Column(String(36), ForeignKey("players.id"), nullable=False, doc="Author")
    argument_type = Column(Enum(ArgumentType), nullable=False, doc="Argument type")
    content = Column(Text, nullable=False, doc="Argument text")
    sequence = Column(Integer, default=0, nullable=False, doc="Order within the action")
    is_strong = Column(Boolean, default=False, nullable=False, doc="Marked strong by the arbiter")
    is_placeholder = Column(Boolean, default=False, nullable=False, doc="Created by a timeout")
    created_at = Column(DateTime, default=utcnow, doc="Creation timestamp")


class ArgumentationCompletion(Base):
    """A player's signal that they are done arguing an action."""
    __tablename__ = "argumentation_completions"
    __table_args__ = (
        UniqueConstraint("action_id", "player_id", name="uq_completion_player"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid, doc="Unique completion ID")
    action_id = Column(String(36), ForeignKey("actions.id"), nullable=False, doc="Action ID")
    player_id = Column(String(36), ForeignKey("players.id"), nullable=False, doc="Player ID")
    completed_at = Column(DateTime, default=utcnow, doc="Completion timestamp")


class Vote(Base):
    """
    A vote on an action's likely outcome.

    unit_key is the voter's persona under one-per-persona voting and the
    voter itself otherwise, so a second vote from one unit is rejected.
    """
    __tablename__ = "votes"
    __table_args__ = (
        UniqueConstraint("action_id", "player_id", name="uq_vote_player"),
        UniqueConstraint("action_id", "unit_key", name="uq_vote_unit"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid, doc="Unique vote ID")
    action_id = Column(String(36), ForeignKey("actions.id"), nullable=False, doc="Action ID")
    player_id = Column(String(36), ForeignKey("players.id"), nullable=False, doc="Voter")
    unit_key = Column(String(80), nullable=False, doc="Voting unit")
    vote_type = Column(Enum(VoteType), nullable=False, doc="Vote type")
    success_tokens = Column(Integer, default=0, nullable=False, doc="Success weight from the strategy")
    failure_tokens = Column(Integer, default=0, nullable=False, doc="Failure weight from the strategy")
    was_skipped = Column(Boolean, default=False, nullable=False, doc="Synthesized by skip or timeout")
    created_at = Column(DateTime, default=utcnow, doc="Vote timestamp")


class Narration(Base):
    """The story of what happened; completes an action."""
    __tablename__ = "narrations"

    id = Column(String(36), primary_key=True, default=generate_uuid, doc="Unique narration ID")
    action_id = Column(String(36), ForeignKey("actions.id"), nullable=False, unique=True, doc="Action ID")
    author_id = Column(String(36), ForeignKey("players.id"), nullable=False, doc="Narrating player")
    content = Column(Text, nullable=False, doc="Narration text")
    created_at = Column(DateTime, default=utcnow, doc="Narration timestamp")


class GameEvent(Base):
    """
    Append-only audit log.

    player_id is null for events produced by the system or the timeout worker.
    """
    __tablename__ = "game_events"

    id = Column(String(36), primary_key=True, default=generate_uuid, doc="Unique event ID")
    game_id = Column(String(36), ForeignKey("games.id"), nullable=False, doc="Game ID")
    player_id = Column(String(36), nullable=True, doc="Acting player, if any")
    event_type = Column(String(50), nullable=False, doc="Event type")
    event_data = Column(JSON, nullable=True, doc="Event payload")
    created_at = Column(DateTime, default=utcnow, doc="Event timestamp")

    def __repr__(self) -> str:
        return f"<GameEvent(type={self.event_type}, game={self.game_id})>"
