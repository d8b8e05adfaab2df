"""
Resolution Strategy Base

A resolution strategy turns the votes and arguments of an action into a
narrative outcome. Concrete strategies subclass ResolutionStrategy and
register themselves by string ID.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Sequence

from ...database.models import Argument, GamePhase, Vote, VoteType


class ResultType:
    TRIUMPH = "TRIUMPH"
    SUCCESS_BUT = "SUCCESS_BUT"
    FAILURE_BUT = "FAILURE_BUT"
    DISASTER = "DISASTER"


@dataclass(frozen=True)
class VoteTokens:
    success_tokens: int
    failure_tokens: int


@dataclass(frozen=True)
class ResolutionResult:
    result_type: str
    result_value: int
    strategy_data: Dict[str, Any] = field(default_factory=dict)

    def to_resolution_data(self) -> Dict[str, Any]:
        """Payload persisted on Action.resolution_data."""
        return {
            **self.strategy_data,
            "result_type": self.result_type,
            "result_value": self.result_value,
        }


class ResolutionStrategy(ABC):
    """
    Abstract base class for resolution strategies.

    phase_after_argumentation decides where the game goes once
    argumentation completes; max_arguments_per_side, when set, caps
    FOR and AGAINST arguments separately.
    """

    id: str = ""
    display_name: str = ""
    description: str = ""
    uses_voting: bool = True
    phase_after_argumentation: GamePhase = GamePhase.VOTING
    max_arguments_per_side: Optional[int] = None

    def map_vote_to_tokens(self, vote_type: VoteType) -> VoteTokens:
        """
        Translate a vote into success/failure weights.

        Strategies that do not vote weight every vote at zero.
        """
        return VoteTokens(0, 0)

    @abstractmethod
    def resolve(
        self,
        votes: Sequence[Vote] = (),
        arguments: Sequence[Argument] = (),
    ) -> ResolutionResult:
        """Produce the outcome for an action."""
        pass

    def __repr__(self) -> str:
        return f"<ResolutionStrategy(id={self.id})>"
