"""
Acting-Unit Calculator

An acting unit is the group of players that acts as one in a phase: all
active human holders of the same persona, or a single player without a
persona. NPC players and players who left never count.

Every completion threshold in the game (proposals, argumentation,
voting) is computed here so "everyone is done" means the same thing in
each phase.
"""

from collections import OrderedDict
from typing import Dict, Iterable, List, Optional, Sequence

from ..database.models import Player


def is_human(player: Player) -> bool:
    return bool(player.is_active) and not player.is_npc


def unit_key(player: Player, split_personas: bool = False) -> str:
    """
    Key identifying the acting unit a player belongs to.

    Args:
        player: Player to classify
        split_personas: Treat every persona member as their own unit
            (used for each-member voting)
    """
    if player.persona_id and not split_personas:
        return f"persona:{player.persona_id}"
    return f"player:{player.id}"


def group_units(players: Iterable[Player], split_personas: bool = False) -> Dict[str, List[Player]]:
    """Active human players grouped by acting unit, in join order."""
    units: Dict[str, List[Player]] = OrderedDict()
    for player in sorted((p for p in players if is_human(p)), key=lambda p: p.join_order or 0):
        units.setdefault(unit_key(player, split_personas), []).append(player)
    return units


def count_acting_units(players: Iterable[Player], split_personas: bool = False) -> int:
    """
    Count the independent units that must act in a phase.

    Each distinct persona held by active human players counts once;
    each active human without a persona counts once.
    """
    return len(group_units(players, split_personas))


def get_persona_member_ids(players: Iterable[Player], persona_id: str) -> List[str]:
    """IDs of active human players holding a persona."""
    return [p.id for p in players if is_human(p) and p.persona_id == persona_id]


def representative(members: Sequence[Player]) -> Optional[Player]:
    """The lead of a unit, or its earliest-joined member when no lead is active."""
    if not members:
        return None
    for member in members:
        if member.is_persona_lead:
            return member
    return min(members, key=lambda p: p.join_order or 0)


def completed_unit_keys(
    players: Iterable[Player], player_ids: Iterable[str], split_personas: bool = False
) -> set:
    done = set(player_ids)
    return {
        key for key, members in group_units(players, split_personas).items()
        if any(m.id in done for m in members)
    }


def count_completed_units(
    players: Iterable[Player], player_ids: Iterable[str], split_personas: bool = False
) -> int:
    """Number of units with at least one member among player_ids."""
    return len(completed_unit_keys(players, player_ids, split_personas))


def pending_units(
    players: Iterable[Player], player_ids: Iterable[str], split_personas: bool = False,
    exclude_unit: Optional[str] = None,
) -> List[Player]:
    """
    One representative for every unit that has no member among player_ids.

    Args:
        players: Full roster of the game
        player_ids: Players who already acted
        split_personas: Treat persona members individually
        exclude_unit: Unit key to leave out (the initiator's unit during argumentation)

    Returns:
        List[Player]: Lead or earliest-joined member of each pending unit
    """
    done = set(player_ids)
    pending = []
    for key, members in group_units(players, split_personas).items():
        if key == exclude_unit:
            continue
        if any(m.id in done for m in members):
            continue
        pending.append(representative(members))
    return pending
