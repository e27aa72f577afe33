"""AKC agility progression rules: static rule table and title ladders.

Each competition class owns an ordered chain of rules.  A rule says how many
qualifying runs (Qs) are needed at ``from_level`` to earn ``title_earned``
and, unless the level is terminal, to move up to ``to_level``.

Usage:
    from progression_rules import require_progression_rules
    rules = require_progression_rules("Standard")
    rules.starting_level  # "Novice"
"""
from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Tuple


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

COMPETITION_CLASSES: Tuple[str, ...] = (
    "Standard",
    "Jumpers",
    "T2B",
    "FAST",
    "Premier Std",
    "Premier JWW",
)

COMPETITION_LEVELS: Tuple[str, ...] = ("Novice", "Open", "Excellent", "Masters")

TERMINAL_LEVEL = "Masters"
PREMIER_CLASSES = frozenset({"Premier Std", "Premier JWW"})

# Legacy / abbreviated class names seen in imports and old records
_CLASS_ALIASES: Dict[str, str] = {
    "JWW": "Jumpers",
    "Jumpers With Weaves": "Jumpers",
    "Std": "Standard",
    "Time 2 Beat": "T2B",
    "Premier Standard": "Premier Std",
    "Premier Jumpers": "Premier JWW",
}

ADVANCE_QS = 3          # Qs needed at Novice / Open / Excellent
MASTERS_TITLE_QS = 10   # Qs at Masters for the base title (MX, MXJ, ...)


class NoRulesDefinedError(LookupError):
    """Raised when a competition class has no entry in the rule table."""

    def __init__(self, competition_class: str):
        self.competition_class = competition_class
        super().__init__(f"No progression rules defined for class {competition_class!r}")


# ---------------------------------------------------------------------------
# Dataclasses
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ProgressionRule:
    from_level: str
    qualifying_runs_required: int
    to_level: Optional[str]         # None = terminal level, titles only
    title_earned: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.to_level is None


@dataclass(frozen=True)
class ClassProgressionRules:
    competition_class: str
    starting_level: str
    rules: Tuple[ProgressionRule, ...]


@dataclass(frozen=True)
class LadderStep:
    """One rung of an advanced title ladder (Bronze/Silver/Gold/Century)."""
    title: str
    tier: str
    needed: int


def _standard_chain(suffix: str) -> Tuple[ProgressionRule, ...]:
    titles = {
        "": ("NA", "OA", "AX", "MX"),
        "J": ("NAJ", "OAJ", "AXJ", "MXJ"),
        "T": ("NAT", "OAT", "AXT", "MXT"),
        "F": ("NAF", "OAF", "AXF", "MXF"),
    }[suffix]
    return (
        ProgressionRule("Novice", ADVANCE_QS, "Open", titles[0]),
        ProgressionRule("Open", ADVANCE_QS, "Excellent", titles[1]),
        ProgressionRule("Excellent", ADVANCE_QS, "Masters", titles[2]),
        ProgressionRule("Masters", MASTERS_TITLE_QS, None, titles[3]),
    )


def _premier_chain(open_title: str, excellent_title: str, masters_title: str):
    return (
        ProgressionRule("Open", ADVANCE_QS, "Excellent", open_title),
        ProgressionRule("Excellent", ADVANCE_QS, "Masters", excellent_title),
        ProgressionRule("Masters", MASTERS_TITLE_QS, None, masters_title),
    )


# ---------------------------------------------------------------------------
# Rule table
# ---------------------------------------------------------------------------

AKC_PROGRESSION_RULES: Mapping[str, ClassProgressionRules] = MappingProxyType({
    "Standard": ClassProgressionRules("Standard", "Novice", _standard_chain("")),
    "Jumpers": ClassProgressionRules("Jumpers", "Novice", _standard_chain("J")),
    "T2B": ClassProgressionRules("T2B", "Novice", _standard_chain("T")),
    "FAST": ClassProgressionRules("FAST", "Novice", _standard_chain("F")),
    # Premier classes start at Open
    "Premier Std": ClassProgressionRules("Premier Std", "Open", _premier_chain("OP", "XP", "MP")),
    "Premier JWW": ClassProgressionRules("Premier JWW", "Open", _premier_chain("OPJ", "XPJ", "MPJ")),
})


def _ladder(*steps: Tuple[str, str, int]) -> Tuple[LadderStep, ...]:
    return tuple(LadderStep(title, tier, needed) for title, tier, needed in steps)


TITLE_LADDERS: Mapping[str, Tuple[LadderStep, ...]] = MappingProxyType({
    "Standard": _ladder(
        ("MX", "Masters", 10), ("MXB", "Bronze", 25), ("MXS", "Silver", 50),
        ("MXG", "Gold", 75), ("MXC", "Century", 100),
    ),
    "Jumpers": _ladder(
        ("MXJ", "Masters", 10), ("MJB", "Bronze", 25), ("MJS", "Silver", 50),
        ("MJG", "Gold", 75), ("MJC", "Century", 100),
    ),
    "FAST": _ladder(
        ("MXF", "Masters", 10), ("MFB", "Bronze", 25), ("MFS", "Silver", 50),
        ("MFG", "Gold", 75), ("MFC", "Century", 100),
    ),
    "Premier Std": _ladder(
        ("PAD", "Premier", 25), ("PADB", "Bronze", 50), ("PADS", "Silver", 75),
        ("PADG", "Gold", 100), ("PADC", "Century", 125),
    ),
    "Premier JWW": _ladder(
        ("PJD", "Premier", 25), ("PJDB", "Bronze", 50), ("PJDS", "Silver", 75),
        ("PJDG", "Gold", 100), ("PJDC", "Century", 125),
    ),
})


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------

def get_progression_rules(competition_class: str) -> Optional[ClassProgressionRules]:
    """Rule chain for a class, or None when the class is unknown."""
    return AKC_PROGRESSION_RULES.get(competition_class)


def require_progression_rules(competition_class: str) -> ClassProgressionRules:
    rules = get_progression_rules(competition_class)
    if rules is None:
        raise NoRulesDefinedError(competition_class)
    return rules


def get_starting_level(competition_class: str) -> str:
    return require_progression_rules(competition_class).starting_level


def rule_for_level(competition_class: str, level: str) -> Optional[ProgressionRule]:
    for rule in require_progression_rules(competition_class).rules:
        if rule.from_level == level:
            return rule
    return None


def levels_in_chain(competition_class: str) -> Tuple[str, ...]:
    """Levels a dog can hold in this class, lowest first."""
    return tuple(r.from_level for r in require_progression_rules(competition_class).rules)


def normalize_class_name(name: str) -> str:
    """Map legacy/abbreviated class names onto the canonical enumeration."""
    cleaned = (name or "").strip()
    return _CLASS_ALIASES.get(cleaned, cleaned)


def is_valid_competition_class(value: str) -> bool:
    return value in AKC_PROGRESSION_RULES


def is_valid_competition_level(value: str) -> bool:
    return value in COMPETITION_LEVELS
