"""Dogs, runs and class entries: the records the progression engine reads."""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date as _date
from typing import Any, Dict, List, Optional

from progression_rules import is_valid_competition_class, is_valid_competition_level

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


class RunValidationError(ValueError):
    """A run request carries a field outside its allowed range."""


@dataclass(frozen=True)
class Run:
    id: str
    dog_id: str
    date: str                       # YYYY-MM-DD
    competition_class: str
    level: str                      # level the dog held when the run happened
    qualified: bool = False
    placement: Optional[int] = None  # 1-4, None = unplaced
    time: Optional[float] = None     # seconds
    mach_points: Optional[int] = None
    location: str = ""
    notes: str = ""
    created_at: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "dog_id": self.dog_id,
            "date": self.date,
            "class": self.competition_class,
            "level": self.level,
            "qualified": self.qualified,
            "placement": self.placement,
            "time": self.time,
            "mach_points": self.mach_points,
            "location": self.location,
            "notes": self.notes,
            "created_at": self.created_at,
        }


@dataclass(frozen=True)
class DogClass:
    competition_class: str
    level: str
    # Level the dog entered the class at; history is replayed from here
    starting_level: Optional[str] = field(default=None, compare=False)


@dataclass
class Dog:
    id: str
    name: str
    classes: List[DogClass] = field(default_factory=list)
    registered_name: str = ""
    active: bool = True
    version: int = 0
    created_at: str = ""
    updated_at: str = ""

    def class_entry(self, competition_class: str) -> Optional[DogClass]:
        for entry in self.classes:
            if entry.competition_class == competition_class:
                return entry
        return None

    def level_for(self, competition_class: str) -> Optional[str]:
        entry = self.class_entry(competition_class)
        return entry.level if entry else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "registered_name": self.registered_name,
            "active": self.active,
            "classes": [
                {"name": c.competition_class, "level": c.level, "starting_level": c.starting_level}
                for c in self.classes
            ],
            "version": self.version,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def is_valid_date(value: str) -> bool:
    if not isinstance(value, str) or not _DATE_RE.match(value):
        return False
    try:
        _date.fromisoformat(value)
    except ValueError:
        return False
    return True


def is_valid_placement(value: Optional[int]) -> bool:
    return value is None or (isinstance(value, int) and 1 <= value <= 4)


def is_valid_time(value: float) -> bool:
    return 0 < value < 600


def is_valid_mach_points(value: int) -> bool:
    return isinstance(value, int) and 0 <= value <= 100


def validate_run_fields(
    date: str,
    competition_class: str,
    level: str,
    placement: Optional[int] = None,
    time: Optional[float] = None,
    mach_points: Optional[int] = None,
) -> None:
    """Raise RunValidationError listing every bad field."""
    errors = []
    if not is_valid_date(date):
        errors.append(f"invalid date {date!r} (expected YYYY-MM-DD)")
    if not is_valid_competition_class(competition_class):
        errors.append(f"invalid class {competition_class!r}")
    if not is_valid_competition_level(level):
        errors.append(f"invalid level {level!r}")
    if not is_valid_placement(placement):
        errors.append(f"invalid placement {placement!r} (1-4 or empty)")
    if time is not None and not is_valid_time(time):
        errors.append(f"invalid time {time!r} (0-600 seconds)")
    if mach_points is not None and not is_valid_mach_points(mach_points):
        errors.append(f"invalid MACH points {mach_points!r} (0-100)")
    if errors:
        raise RunValidationError("; ".join(errors))
