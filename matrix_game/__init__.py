"""
Matrix Game Orchestrator Package

This package runs turn-based multiplayer matrix games:
- Phase state machine for games, rounds and actions
- Acting-unit rules for shared personas
- Pluggable resolution strategies
- Timeout worker for stalled phases
- Telegram notices for players
"""

__version__ = "1.0.0"

from .utils.config import get_settings

__all__ = ["get_settings"]
