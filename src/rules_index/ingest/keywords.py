"""Rules vocabulary used to tag chunks and tables with retrieval keywords."""
from __future__ import annotations

import re
from typing import Iterable, List, Pattern

RULES_VOCABULARY: tuple[str, ...] = (
    "exploration",
    "treasure",
    "loot",
    "injury",
    "injuries",
    "experience",
    "advance",
    "skill",
    "ability",
    "equipment",
    "weapon",
    "armour",
    "armor",
    "shield",
    "trading",
    "campaign",
    "scenario",
    "mission",
    "warband",
    "hero",
    "henchman",
    "leader",
    "movement",
    "shooting",
    "melee",
    "charge",
    "wound",
    "casualty",
    "morale",
    "rout",
    "spell",
    "prayer",
    "initiative",
    "deployment",
    "objective",
    "post-game",
    "post-battle",
)

_TERM_PATTERNS: tuple[tuple[str, Pattern[str]], ...] = tuple(
    (term, re.compile(rf"\b{re.escape(term)}", re.IGNORECASE)) for term in RULES_VOCABULARY
)

DEFAULT_KEYWORD_LIMIT = 12


def extract_keywords(text: str, *, limit: int = DEFAULT_KEYWORD_LIMIT) -> List[str]:
    """Return vocabulary terms present in ``text`` in vocabulary order."""

    found = [term for term, pattern in _TERM_PATTERNS if pattern.search(text)]
    return found[:limit]


def unique(values: Iterable[str]) -> List[str]:
    seen: set[str] = set()
    ordered: List[str] = []
    for value in values:
        if value and value not in seen:
            seen.add(value)
            ordered.append(value)
    return ordered
