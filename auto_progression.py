"""Incremental level-up check run right after a qualifying run is stored.

Only the run's class is examined.  A single filtered count screens out runs
that cannot complete a level; when the count reaches the threshold the
class is replayed with ``level_engine.compute_level_assuming_ordered_history``
before anything is written, so Qs logged at a level the dog had not yet
reached never move it.  After a bulk or back-dated import use
``recalculate.recalculate_dog_levels``.

Known limitation: a concurrent batch recalculation for the same dog can
race with this trigger.  Both writers pass the dog version they read, so
the loser's write is rejected instead of silently interleaving.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

from interfaces import ClassLevelUpdate, ProgressionStore
from level_engine import compute_level_assuming_ordered_history
from models import Run
from progression_rules import NoRulesDefinedError, rule_for_level

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProgressionEvent:
    """A level-up surfaced to whoever recorded the run."""
    dog_name: str
    competition_class: str
    from_level: str
    to_level: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @property
    def message(self) -> str:
        return (f"{self.dog_name} advanced from {self.from_level} to "
                f"{self.to_level} in {self.competition_class}!")


def _advance(store: ProgressionStore, dog_id: str, run: Run) -> Optional[ProgressionEvent]:
    dog = store.get_dog(dog_id)
    if dog is None:
        logger.warning("Progression check skipped: dog %s not found", dog_id)
        return None

    cls = run.competition_class
    current = dog.level_for(cls)
    if current is None:
        logger.debug("Dog %s is not entered in %s; no progression", dog.name, cls)
        return None
    if run.level != current:
        # Q logged at a level already passed (or not yet reached)
        return None

    rule = rule_for_level(cls, current)
    if rule is None or rule.is_terminal:
        return None

    qs = store.count_qualifying_runs(dog_id, cls, current)
    if qs < rule.qualifying_runs_required:
        return None

    entry = dog.class_entry(cls)
    replay = compute_level_assuming_ordered_history(
        store.get_runs_for_dog(dog_id), cls, entry.starting_level
    )
    if replay.current_level != rule.to_level:
        logger.debug(
            "%s has %d %s Qs in %s but the ordered history gives %s; not advancing",
            dog.name, qs, current, cls, replay.current_level,
        )
        return None

    store.set_class_levels(
        dog_id,
        [ClassLevelUpdate(cls, rule.to_level)],
        expected_version=dog.version,
    )
    event = ProgressionEvent(dog.name, cls, current, rule.to_level)
    logger.info("Level up: %s", event.message)
    return event


def check_progression(store: ProgressionStore, dog_id: str, run: Run) -> Optional[ProgressionEvent]:
    """Advance the run's class one level when its threshold is now met.

    Best effort: any failure is logged and swallowed so the already-stored
    run is never affected.  Returns the level-up event, or None.
    """
    if not run.qualified:
        return None
    try:
        return _advance(store, dog_id, run)
    except NoRulesDefinedError as exc:
        logger.error("Progression check for run %s: %s", run.id, exc)
    except Exception:
        logger.exception("Progression check failed for dog %s, run %s", dog_id, run.id)
    return None
