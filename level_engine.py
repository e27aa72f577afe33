"""Deterministic level computation over a dog's run history.

Two interpretations of the rule chain are exposed under distinct names:

compute_level_assuming_ordered_history
    Sequential, level-gated replay.  Runs are walked in date order and a Q
    only counts when it was recorded at the level the dog held at that
    point in the replay.  This is the authoritative semantics; persisted
    class levels are rebuilt from it (see recalculate.py).

compute_level_by_thresholds_ever_met
    Evaluates each rule against the whole history ("was this threshold
    ever met?") regardless of when the dog actually held the level.  Kept
    for diagnostics; it agrees with the replay only when every Q was
    recorded at the dog's then-current level.

Both are pure: they never mutate their input and return equal results for
equal input.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Mapping, Optional

from models import Run
from progression_rules import (
    ClassProgressionRules,
    NoRulesDefinedError,
    ProgressionRule,
    require_progression_rules,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LevelComputationResult:
    current_level: str
    titles_earned: List[str] = field(default_factory=list)
    qualifying_runs_at_current_level: int = 0
    next_rule: Optional[ProgressionRule] = None
    has_progressed: bool = False

    def to_dict(self) -> Dict:
        nr = self.next_rule
        return {
            "current_level": self.current_level,
            "titles_earned": list(self.titles_earned),
            "qualifying_runs_at_current_level": self.qualifying_runs_at_current_level,
            "next_rule": None if nr is None else {
                "from_level": nr.from_level,
                "qualifying_runs_required": nr.qualifying_runs_required,
                "to_level": nr.to_level,
                "title_earned": nr.title_earned,
            },
            "has_progressed": self.has_progressed,
        }

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def sort_runs_chronologically(runs: Iterable[Run]) -> List[Run]:
    """Ascending by date; runs on the same date keep their input order."""
    return sorted(runs, key=lambda r: r.date)


def _class_runs(runs: Iterable[Run], chain: ClassProgressionRules) -> List[Run]:
    """Runs for one class, date-ordered, with malformed levels dropped."""
    valid_levels = {r.from_level for r in chain.rules}
    kept = []
    for run in sort_runs_chronologically(runs):
        if run.competition_class != chain.competition_class:
            continue
        if run.level not in valid_levels:
            logger.warning(
                "Excluding run %s: level %r is not part of the %s progression chain",
                run.id, run.level, chain.competition_class,
            )
            continue
        kept.append(run)
    return kept


def filter_class_runs(runs: Iterable[Run], competition_class: str) -> List[Run]:
    """Date-ordered runs for one class with malformed levels dropped (and logged once).

    Feeding the result to either computation logs nothing further.
    """
    return _class_runs(runs, require_progression_rules(competition_class))


def _start_level(chain: ClassProgressionRules, starting_level: Optional[str]) -> str:
    if starting_level is None:
        return chain.starting_level
    if starting_level not in {r.from_level for r in chain.rules}:
        raise ValueError(
            f"Level {starting_level!r} is not part of the {chain.competition_class} progression chain"
        )
    return starting_level


def _next_rule(chain: ClassProgressionRules, level: str, qs: int) -> Optional[ProgressionRule]:
    for rule in chain.rules:
        if rule.from_level == level and qs < rule.qualifying_runs_required:
            return rule
    return None


# ---------------------------------------------------------------------------
# Computations
# ---------------------------------------------------------------------------

def compute_level_assuming_ordered_history(
    runs: Iterable[Run], competition_class: str, starting_level: Optional[str] = None
) -> LevelComputationResult:
    """Replay qualifying runs in date order, counting only Qs at the tracked level.

    The replay begins at *starting_level* (the level the dog entered the
    class at), defaulting to the class's rule-table starting level.
    """
    chain = require_progression_rules(competition_class)
    rules_by_level = {r.from_level: r for r in chain.rules}

    start = _start_level(chain, starting_level)
    current = start
    gated_qs: Dict[str, int] = {}
    titles: List[str] = []

    for run in _class_runs(runs, chain):
        if not run.qualified or run.level != current:
            continue
        gated_qs[current] = gated_qs.get(current, 0) + 1
        rule = rules_by_level.get(current)
        if rule is None or gated_qs[current] != rule.qualifying_runs_required:
            continue
        if rule.title_earned:
            titles.append(rule.title_earned)
        if rule.to_level is not None:
            current = rule.to_level

    qs_now = gated_qs.get(current, 0)
    return LevelComputationResult(
        current_level=current,
        titles_earned=titles,
        qualifying_runs_at_current_level=qs_now,
        next_rule=_next_rule(chain, current, qs_now),
        has_progressed=current != start,
    )


def compute_level_by_thresholds_ever_met(
    runs: Iterable[Run], competition_class: str, starting_level: Optional[str] = None
) -> LevelComputationResult:
    """Evaluate every rule from the starting level on against the whole history."""
    chain = require_progression_rules(competition_class)
    class_runs = _class_runs(runs, chain)

    qs_by_level: Dict[str, int] = {}
    for run in class_runs:
        if run.qualified:
            qs_by_level[run.level] = qs_by_level.get(run.level, 0) + 1

    start = _start_level(chain, starting_level)
    levels = [r.from_level for r in chain.rules]
    current = start
    titles: List[str] = []
    for rule in chain.rules[levels.index(start):]:
        if qs_by_level.get(rule.from_level, 0) >= rule.qualifying_runs_required:
            if rule.title_earned:
                titles.append(rule.title_earned)
            if rule.to_level is not None:
                current = rule.to_level

    qs_now = qs_by_level.get(current, 0)
    return LevelComputationResult(
        current_level=current,
        titles_earned=titles,
        qualifying_runs_at_current_level=qs_now,
        next_rule=_next_rule(chain, current, qs_now),
        has_progressed=current != start,
    )


compute_level = compute_level_assuming_ordered_history

LevelStrategy = Callable[..., LevelComputationResult]


def compute_all_levels(
    runs: Iterable[Run],
    classes: Optional[Iterable[str]] = None,
    strategy: LevelStrategy = compute_level_assuming_ordered_history,
    starting_levels: Optional[Mapping[str, str]] = None,
) -> Dict[str, LevelComputationResult]:
    """Compute levels for each class (defaults to the classes seen in *runs*).

    A class without rules is logged and left out; the other classes are
    still computed.
    """
    runs = list(runs)
    starting_levels = starting_levels or {}
    if classes is None:
        classes = list(dict.fromkeys(r.competition_class for r in runs))
    result: Dict[str, LevelComputationResult] = {}
    for cls in classes:
        try:
            result[cls] = strategy(runs, cls, starting_levels.get(cls))
        except NoRulesDefinedError as exc:
            logger.error("%s; skipping level computation", exc)
    return result


def compare_level_strategies(
    runs: Iterable[Run],
    classes: Iterable[str],
    starting_levels: Optional[Mapping[str, str]] = None,
) -> Dict[str, Dict[str, LevelComputationResult]]:
    """Both computations per class, filtering each class's runs only once."""
    runs = list(runs)
    starting_levels = starting_levels or {}
    result: Dict[str, Dict[str, LevelComputationResult]] = {}
    for cls in classes:
        try:
            class_runs = filter_class_runs(runs, cls)
        except NoRulesDefinedError as exc:
            logger.error("%s; skipping level computation", exc)
            continue
        start = starting_levels.get(cls)
        result[cls] = {
            "ordered_history": compute_level_assuming_ordered_history(class_runs, cls, start),
            "thresholds_ever_met": compute_level_by_thresholds_ever_met(class_runs, cls, start),
        }
    return result
