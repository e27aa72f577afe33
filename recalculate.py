"""Full from-scratch rebuild of a dog's persisted class levels.

Used after bulk import or run edits, when runs may have been stored out of
chronological order.  All of the dog's classes are written in one atomic
call; a failure leaves every class at its previous level.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List

from interfaces import ClassLevelUpdate, ConcurrentUpdateError, DogNotFoundError, ProgressionStore
from level_engine import compute_level_assuming_ordered_history
from models import Dog, Run

logger = logging.getLogger(__name__)


class RecalculationError(RuntimeError):
    """Levels could not be persisted; nothing was committed. Safe to retry."""


@dataclass(frozen=True)
class LevelChange:
    competition_class: str
    from_level: str
    to_level: str


@dataclass
class RecalculationResult:
    dog_id: str
    dog_name: str
    levels: Dict[str, str] = field(default_factory=dict)
    changes: List[LevelChange] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dog_id": self.dog_id,
            "dog_name": self.dog_name,
            "levels": dict(self.levels),
            "changes": [
                {"class": c.competition_class, "from_level": c.from_level, "to_level": c.to_level}
                for c in self.changes
            ],
        }


def recalculate_levels(dog: Dog, all_runs: Iterable[Run]) -> List[ClassLevelUpdate]:
    """Replay the dog's qualifying runs in date order, one result per entered class.

    Each class is replayed from the level the dog entered it at.  Runs in
    classes the dog is not entered in are ignored.  Pure; nothing is
    persisted.
    """
    qualifying = [r for r in all_runs if r.qualified and r.dog_id == dog.id]
    updates = []
    for entry in dog.classes:
        result = compute_level_assuming_ordered_history(
            qualifying, entry.competition_class, entry.starting_level
        )
        updates.append(ClassLevelUpdate(entry.competition_class, result.current_level))

    entered = {c.competition_class for c in dog.classes}
    ignored = sorted({r.competition_class for r in qualifying} - entered)
    if ignored:
        logger.debug("Dog %s has runs in unentered classes %s; ignored", dog.name, ignored)
    return updates


def recalculate_dog_levels(store: ProgressionStore, dog_id: str) -> RecalculationResult:
    """Recompute and persist every class level for one dog.

    Raises DogNotFoundError for an unknown dog, NoRulesDefinedError when
    the dog is entered in a class missing from the rule table, and
    RecalculationError when the write fails (including a concurrent change
    to the dog).
    """
    dog = store.get_dog(dog_id)
    if dog is None:
        raise DogNotFoundError(f"Dog {dog_id} not found")

    runs = store.get_runs_for_dog(dog_id)
    updates = recalculate_levels(dog, runs)

    result = RecalculationResult(dog_id=dog.id, dog_name=dog.name)
    for upd in updates:
        result.levels[upd.competition_class] = upd.level
        previous = dog.level_for(upd.competition_class)
        if previous != upd.level:
            result.changes.append(LevelChange(upd.competition_class, previous, upd.level))

    try:
        store.set_class_levels(dog_id, updates, expected_version=dog.version)
    except ConcurrentUpdateError as exc:
        raise RecalculationError(f"Dog {dog.name} changed during recalculation: {exc}") from exc
    except Exception as exc:
        logger.error("Recalculation for dog %s failed, no levels written: %s", dog.name, exc)
        raise RecalculationError(f"Could not persist levels for dog {dog.name}: {exc}") from exc

    for change in result.changes:
        logger.info("Recalculated %s %s: %s -> %s", dog.name, change.competition_class,
                    change.from_level, change.to_level)
    return result
