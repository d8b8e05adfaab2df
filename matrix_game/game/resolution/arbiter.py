"""
Arbiter Resolution

A player with the arbiter role marks arguments as strong during arbiter
review. The action succeeds (with a complication) when strong arguments
for it outnumber strong arguments against it; otherwise it fails.
"""

from typing import Sequence

from ...database.models import Argument, ArgumentType, GamePhase, Vote
from .base import ResolutionResult, ResolutionStrategy, ResultType

PRO_TYPES = (ArgumentType.FOR, ArgumentType.INITIATOR_FOR)
ANTI_TYPES = (ArgumentType.AGAINST,)


class ArbiterStrategy(ResolutionStrategy):
    id = "arbiter"
    display_name = "Arbiter"
    description = "An arbiter marks arguments as strong. More strong arguments for than against means success."
    uses_voting = False
    phase_after_argumentation = GamePhase.ARBITER_REVIEW
    max_arguments_per_side = 3

    def resolve(
        self,
        votes: Sequence[Vote] = (),
        arguments: Sequence[Argument] = (),
    ) -> ResolutionResult:
        strong_pro = sum(1 for a in arguments if a.is_strong and a.argument_type in PRO_TYPES)
        strong_anti = sum(1 for a in arguments if a.is_strong and a.argument_type in ANTI_TYPES)

        succeeded = strong_pro > strong_anti
        return ResolutionResult(
            result_type=ResultType.SUCCESS_BUT if succeeded else ResultType.FAILURE_BUT,
            result_value=1 if succeeded else -1,
            strategy_data={
                "strong_pro_count": strong_pro,
                "strong_anti_count": strong_anti,
            },
        )
