"""Dog and run operations that keep persisted class levels in sync.

Recording a run is authoritative: the run is committed first, and the
level-up check that follows is best effort.  Edits that touch a run's
class, level, date or qualified flag are handled as "old fact removed, new
fact added" by replaying the dog's full history.
"""
from __future__ import annotations

import logging
from typing import Dict, Iterable, Optional, Tuple, Union

from auto_progression import ProgressionEvent, check_progression
from interfaces import DogNotFoundError, RunNotFoundError
from models import Dog, DogClass, Run, RunValidationError, validate_run_fields
from persistence import Persistence
from progression_rules import (
    get_starting_level,
    is_valid_competition_class,
    levels_in_chain,
    normalize_class_name,
)
from recalculate import RecalculationResult, recalculate_dog_levels

logger = logging.getLogger(__name__)

# Changing any of these can move a dog's level
PROGRESSION_FIELDS = frozenset({"date", "competition_class", "level", "qualified"})

ClassSpec = Union[str, DogClass, Tuple[str, Optional[str]]]


def _parse_class_spec(spec: ClassSpec) -> Tuple[str, Optional[str]]:
    """Canonical class name plus the explicit level, if one was given."""
    if isinstance(spec, DogClass):
        name, level = spec.competition_class, spec.level
    elif isinstance(spec, str):
        name, level = spec, None
    else:
        name, level = spec
    name = normalize_class_name(name)
    if not is_valid_competition_class(name):
        raise RunValidationError(f"invalid class {name!r}")
    if level is not None and level not in levels_in_chain(name):
        raise RunValidationError(f"level {level!r} does not exist in {name}")
    return name, level


def _class_entry(spec: ClassSpec) -> DogClass:
    name, level = _parse_class_spec(spec)
    level = level or get_starting_level(name)
    # An explicit level is where the dog entered the class
    return DogClass(name, level, starting_level=level)


def create_dog(
    store: Persistence,
    name: str,
    classes: Iterable[ClassSpec],
    registered_name: str = "",
) -> Dog:
    """Create a dog; classes without an explicit level start at the class's starting level.

    An explicit level (a dog already competing at Masters, say) is kept as
    the class's starting level, so later recalculations replay from there.
    """
    if not (name or "").strip():
        raise RunValidationError("dog name is required")
    entries = list({e.competition_class: e for e in map(_class_entry, classes)}.values())
    dog = store.create_dog(name.strip(), entries, registered_name=registered_name)
    logger.info("Created dog %s with classes %s", dog.name,
                ", ".join(f"{c.competition_class}/{c.level}" for c in dog.classes))
    return dog


def update_dog(
    store: Persistence,
    dog_id: str,
    *,
    name: Optional[str] = None,
    registered_name: Optional[str] = None,
    active: Optional[bool] = None,
    classes: Optional[Iterable[ClassSpec]] = None,
) -> Tuple[Dog, Optional[RecalculationResult]]:
    """Rename, (de)activate, or replace a dog's class list.

    *classes* replaces the whole list.  A class already entered keeps its
    history unless a different level is given, which re-enters the class at
    that level.  Any change to the class list is followed by a full
    recalculation.
    """
    dog = get_dog_or_raise(store, dog_id)
    if name is not None and not name.strip():
        raise RunValidationError("dog name is required")
    if any(v is not None for v in (name, registered_name, active)):
        dog = store.update_dog(
            dog_id,
            name=name.strip() if name is not None else None,
            registered_name=registered_name,
            active=active,
        )
    if classes is None:
        return dog, None

    entries: Dict[str, DogClass] = {}
    for spec in classes:
        cls, level = _parse_class_spec(spec)
        existing = dog.class_entry(cls)
        if existing is not None and level in (None, existing.level):
            entries[cls] = existing
        else:
            entries[cls] = _class_entry((cls, level))

    def _key(entries_: Iterable[DogClass]):
        return sorted((e.competition_class, e.level, e.starting_level) for e in entries_)

    if _key(entries.values()) == _key(dog.classes):
        return dog, None

    store.replace_class_entries(dog_id, list(entries.values()), expected_version=dog.version)
    logger.info("Dog %s classes now %s; recalculating", dog.name, ", ".join(sorted(entries)))
    result = recalculate_dog_levels(store, dog_id)
    return store.get_dog(dog_id), result


def record_run(
    store: Persistence,
    dog_id: str,
    date: str,
    competition_class: str,
    level: str,
    *,
    qualified: bool = False,
    placement: Optional[int] = None,
    time: Optional[float] = None,
    mach_points: Optional[int] = None,
    location: str = "",
    notes: str = "",
) -> Tuple[Run, Optional[ProgressionEvent]]:
    """Store a run, then check whether its class should level up."""
    competition_class = normalize_class_name(competition_class)
    validate_run_fields(date, competition_class, level, placement, time, mach_points)
    run = store.create_run(
        dog_id, date, competition_class, level,
        qualified=qualified, placement=placement, time=time,
        mach_points=mach_points, location=location, notes=notes,
    )
    event = check_progression(store, dog_id, run)
    return run, event


def edit_run(store: Persistence, run_id: str, **changes) -> Tuple[Run, Optional[RecalculationResult]]:
    """Apply edits to a run; replays the dog's levels when progression fields change."""
    existing = store.get_run(run_id)
    if existing is None:
        raise RunNotFoundError(f"Run {run_id} not found")
    if "competition_class" in changes:
        changes["competition_class"] = normalize_class_name(changes["competition_class"])

    merged = {
        "date": existing.date,
        "competition_class": existing.competition_class,
        "level": existing.level,
        "placement": existing.placement,
        "time": existing.time,
        "mach_points": existing.mach_points,
    }
    merged.update({k: v for k, v in changes.items() if k in merged})
    validate_run_fields(**merged)

    run = store.update_run(run_id, **changes)
    touched = {k for k in PROGRESSION_FIELDS & set(changes)
               if getattr(existing, k) != changes[k]}
    if not touched:
        return run, None
    logger.info("Run %s changed %s; recalculating dog %s", run_id, sorted(touched), run.dog_id)
    return run, recalculate_dog_levels(store, run.dog_id)


def remove_run(store: Persistence, run_id: str) -> RecalculationResult:
    """Delete a run and rebuild the owning dog's class levels."""
    existing = store.get_run(run_id)
    if existing is None:
        raise RunNotFoundError(f"Run {run_id} not found")
    store.delete_run(run_id)
    return recalculate_dog_levels(store, existing.dog_id)


def get_dog_or_raise(store: Persistence, dog_id: str) -> Dog:
    dog = store.get_dog(dog_id)
    if dog is None:
        raise DogNotFoundError(f"Dog {dog_id} not found")
    return dog
