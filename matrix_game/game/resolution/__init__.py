"""
Resolution Strategy Registry

Strategies are looked up by the string ID stored in a game's settings.
The built-in token draw and arbiter strategies are registered on import.
"""

from typing import Dict, List

from ..exceptions import InvalidStateError
from .base import ResolutionResult, ResolutionStrategy, ResultType, VoteTokens
from .token_draw import TokenDrawStrategy
from .arbiter import ArbiterStrategy

DEFAULT_STRATEGY_ID = "token_draw"

_strategies: Dict[str, ResolutionStrategy] = {}


def register_strategy(strategy: ResolutionStrategy) -> None:
    """
    Register a strategy under its ID.

    Raises:
        ValueError: If a strategy with the same ID is already registered
    """
    if strategy.id in _strategies:
        raise ValueError(f'Resolution strategy "{strategy.id}" is already registered')
    _strategies[strategy.id] = strategy


def get_strategy(strategy_id: str) -> ResolutionStrategy:
    """
    Look up a registered strategy.

    Raises:
        InvalidStateError: If no strategy has this ID
    """
    strategy = _strategies.get(strategy_id)
    if strategy is None:
        raise InvalidStateError(f'Unknown resolution strategy: "{strategy_id}"')
    return strategy


def is_registered(strategy_id: str) -> bool:
    return strategy_id in _strategies


def list_strategies() -> List[ResolutionStrategy]:
    return list(_strategies.values())


register_strategy(TokenDrawStrategy())
register_strategy(ArbiterStrategy())

__all__ = [
    "DEFAULT_STRATEGY_ID", "ResolutionResult", "ResolutionStrategy", "ResultType", "VoteTokens",
    "register_strategy", "get_strategy", "is_registered", "list_strategies",
]
