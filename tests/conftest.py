"""Shared fixtures: a throwaway SQLite store and run/dog builders."""
import itertools
import sys
from pathlib import Path

# Ensure project root is on path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import pytest

from models import Dog, DogClass, Run
from persistence import Persistence

_run_ids = itertools.count(1)


def make_run(date, competition_class="Standard", level="Novice", qualified=True,
             dog_id="dog-1", mach_points=None, **kwargs):
    """Build an in-memory Run with a unique id."""
    return Run(
        id=kwargs.pop("id", f"run-{next(_run_ids)}"),
        dog_id=dog_id,
        date=date,
        competition_class=competition_class,
        level=level,
        qualified=qualified,
        mach_points=mach_points,
        **kwargs,
    )


def make_dog(dog_id="dog-1", name="Rex", version=0, active=True, **levels):
    """Build a Dog; keyword args map class -> level (use Premier_Std for spaces)."""
    classes = [DogClass(cls.replace("_", " "), lvl) for cls, lvl in levels.items()]
    return Dog(id=dog_id, name=name, classes=classes, version=version, active=active)


@pytest.fixture
def db(tmp_path):
    """Fresh DB for each test."""
    return Persistence(tmp_path / "test.db")


@pytest.fixture
def rex(db):
    """A dog entered in Standard and Jumpers at Novice."""
    return db.create_dog("Rex", [DogClass("Standard", "Novice"), DogClass("Jumpers", "Novice")])
