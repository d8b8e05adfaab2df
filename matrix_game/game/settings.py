"""
Per-Game Settings

Games store their settings as a JSON blob. GameSettings parses that blob,
fills defaults and validates values so the rest of the core can read
typed attributes instead of dictionary keys.
"""

from dataclasses import dataclass, asdict, fields
from typing import Any, Dict, Optional

from ..utils.config import get_settings
from .exceptions import InvalidStateError
from .resolution import is_registered

INFINITE_TIMEOUT = -1

VOTING_EACH_MEMBER = "each_member"
VOTING_ONE_PER_PERSONA = "one_per_persona"
ARGUMENTS_INDEPENDENT = "independent"
ARGUMENTS_SHARED_POOL = "shared_pool"
NARRATION_INITIATOR_ONLY = "initiator_only"
NARRATION_OPEN = "open"

_CHOICES = {
    "shared_persona_voting": (VOTING_EACH_MEMBER, VOTING_ONE_PER_PERSONA),
    "shared_persona_arguments": (ARGUMENTS_INDEPENDENT, ARGUMENTS_SHARED_POOL),
    "narration_mode": (NARRATION_INITIATOR_ONLY, NARRATION_OPEN),
}


@dataclass
class GameSettings:
    argument_limit: int = 3
    proposal_timeout_hours: int = INFINITE_TIMEOUT
    argumentation_timeout_hours: int = INFINITE_TIMEOUT
    voting_timeout_hours: int = INFINITE_TIMEOUT
    narration_timeout_hours: int = INFINITE_TIMEOUT
    resolution_method: str = "token_draw"
    allow_shared_personas: bool = False
    shared_persona_voting: str = VOTING_EACH_MEMBER
    shared_persona_arguments: str = ARGUMENTS_INDEPENDENT
    narration_mode: str = NARRATION_INITIATOR_ONLY
    personas_required: bool = False

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "GameSettings":
        """
        Build settings from a stored JSON blob.

        Unknown keys are ignored and missing keys take their defaults.

        Raises:
            InvalidStateError: If a value has the wrong type or is not an allowed choice
        """
        data = data or {}
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        values.setdefault("argument_limit", get_settings().default_argument_limit)

        settings = cls(**values)
        settings.validate()
        return settings

    def validate(self) -> None:
        for name in ("argument_limit", "proposal_timeout_hours", "argumentation_timeout_hours",
                     "voting_timeout_hours", "narration_timeout_hours"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise InvalidStateError(f"Setting {name} must be an integer, got {value!r}")
        if self.argument_limit < 0:
            raise InvalidStateError("Setting argument_limit cannot be negative")

        for name, allowed in _CHOICES.items():
            if getattr(self, name) not in allowed:
                raise InvalidStateError(
                    f"Setting {name} must be one of {', '.join(allowed)}, got {getattr(self, name)!r}"
                )

        if not is_registered(self.resolution_method):
            raise InvalidStateError(f"Unknown resolution method: {self.resolution_method}")

    @property
    def one_per_persona(self) -> bool:
        return self.allow_shared_personas and self.shared_persona_voting == VOTING_ONE_PER_PERSONA

    @property
    def shared_argument_pool(self) -> bool:
        return self.allow_shared_personas and self.shared_persona_arguments == ARGUMENTS_SHARED_POOL

    def timeout_hours_for(self, phase_name: str) -> int:
        """
        Configured timeout for a phase name ("proposal", "voting", ...).

        Returns INFINITE_TIMEOUT for phases that never time out.
        """
        value = getattr(self, f"{phase_name}_timeout_hours", INFINITE_TIMEOUT)
        if value is None or value < 0:
            return INFINITE_TIMEOUT
        return value

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
