"""
Game Package

This package contains the orchestrator logic:
- Phase transition table and audit log
- Acting-unit calculation
- Action lifecycle, arbiter review and rounds
- Lobby and game lifecycle
- Phase timeouts
"""
