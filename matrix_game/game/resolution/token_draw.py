"""
Token Draw Resolution

Votes add success and failure tokens to a pool that always starts with
one of each. Three tokens are drawn without replacement; the number of
success tokens drawn picks the outcome tier.

The shuffle is driven by a recorded seed, so any draw can be replayed
from its audit payload.
"""

import random
import secrets
from typing import List, Optional, Sequence

from ...database.models import Argument, Vote, VoteType
from .base import ResolutionResult, ResolutionStrategy, ResultType, VoteTokens

TOKENS_DRAWN = 3
BASE_SUCCESS_TOKENS = 1
BASE_FAILURE_TOKENS = 1

VOTE_TOKEN_MAP = {
    VoteType.LIKELY_SUCCESS: VoteTokens(2, 0),
    VoteType.LIKELY_FAILURE: VoteTokens(0, 2),
    VoteType.UNCERTAIN: VoteTokens(1, 1),
}

RESULT_TIERS = {
    3: ResultType.TRIUMPH,
    2: ResultType.SUCCESS_BUT,
    1: ResultType.FAILURE_BUT,
    0: ResultType.DISASTER,
}


def draw_tokens(total_success: int, total_failure: int, seed: str) -> List[str]:
    """
    Shuffle the pool with a seeded generator and draw from the top.

    Args:
        total_success: Success tokens in the pool
        total_failure: Failure tokens in the pool
        seed: Hex seed recorded with the result

    Returns:
        List[str]: Drawn token types in draw order
    """
    pool = ["SUCCESS"] * total_success + ["FAILURE"] * total_failure
    random.Random(seed).shuffle(pool)
    return pool[:TOKENS_DRAWN]


class TokenDrawStrategy(ResolutionStrategy):
    id = "token_draw"
    display_name = "Token Draw"
    description = "Draw 3 tokens from a pool. Votes shift the pool toward success or failure."

    def map_vote_to_tokens(self, vote_type: VoteType) -> VoteTokens:
        return VOTE_TOKEN_MAP[VoteType(vote_type)]

    def resolve(
        self,
        votes: Sequence[Vote] = (),
        arguments: Sequence[Argument] = (),
        seed: Optional[str] = None,
    ) -> ResolutionResult:
        total_success = BASE_SUCCESS_TOKENS + sum(v.success_tokens for v in votes)
        total_failure = BASE_FAILURE_TOKENS + sum(v.failure_tokens for v in votes)

        seed = seed or secrets.token_hex(32)
        drawn = draw_tokens(total_success, total_failure, seed)

        drawn_success = drawn.count("SUCCESS")
        drawn_failure = drawn.count("FAILURE")

        return ResolutionResult(
            result_type=RESULT_TIERS[drawn_success],
            result_value=drawn_success * 2 - 3,
            strategy_data={
                "seed": seed,
                "total_success_tokens": total_success,
                "total_failure_tokens": total_failure,
                "drawn_success": drawn_success,
                "drawn_failure": drawn_failure,
                "drawn_tokens": [
                    {"draw_sequence": index + 1, "token_type": token}
                    for index, token in enumerate(drawn)
                ],
            },
        )
