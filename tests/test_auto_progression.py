"""Tests for the incremental level-up trigger."""
from __future__ import annotations

import logging
import sys
from pathlib import Path

# Ensure project root is on path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import pytest
from auto_progression import ProgressionEvent, check_progression
from models import DogClass
from recalculate import recalculate_levels


def _q(db, dog, date, cls="Standard", level="Novice", qualified=True):
    return db.create_run(dog.id, date, cls, level, qualified=qualified)


class _StaleStore:
    """Proxy that hands out an old snapshot of the dog."""

    def __init__(self, db, stale_dog):
        self._db = db
        self._stale = stale_dog

    def get_dog(self, dog_id):
        return self._stale

    def __getattr__(self, name):
        return getattr(self._db, name)


class _FailingStore:
    def __init__(self, db):
        self._db = db

    def set_class_levels(self, *args, **kwargs):
        raise RuntimeError("disk full")

    def __getattr__(self, name):
        return getattr(self._db, name)


class TestCheckProgression:
    def test_third_q_advances(self, db, rex):
        _q(db, rex, "2024-01-01")
        _q(db, rex, "2024-01-02")
        run = _q(db, rex, "2024-01-03")
        event = check_progression(db, rex.id, run)
        assert event == ProgressionEvent("Rex", "Standard", "Novice", "Open")
        dog = db.get_dog(rex.id)
        assert dog.level_for("Standard") == "Open"
        assert dog.level_for("Jumpers") == "Novice"
        assert dog.version == rex.version + 1

    def test_below_threshold(self, db, rex):
        _q(db, rex, "2024-01-01")
        run = _q(db, rex, "2024-01-02")
        assert check_progression(db, rex.id, run) is None
        assert db.get_dog(rex.id).level_for("Standard") == "Novice"

    def test_non_qualifying_run(self, db, rex):
        _q(db, rex, "2024-01-01")
        _q(db, rex, "2024-01-02")
        _q(db, rex, "2024-01-03")
        run = _q(db, rex, "2024-01-04", qualified=False)
        assert check_progression(db, rex.id, run) is None

    def test_run_at_passed_level_is_noop(self, db):
        dog = db.create_dog("Ace", [DogClass("Standard", "Open")])
        for day in range(1, 4):
            run = _q(db, dog, f"2024-01-0{day}", level="Novice")
        assert check_progression(db, dog.id, run) is None
        assert db.get_dog(dog.id).level_for("Standard") == "Open"

    def test_masters_is_terminal(self, db):
        dog = db.create_dog("Ace", [DogClass("Standard", "Masters")])
        for day in range(1, 11):
            run = _q(db, dog, f"2024-01-{day:02d}", level="Masters")
        assert check_progression(db, dog.id, run) is None
        assert db.get_dog(dog.id).version == dog.version

    def test_qs_logged_before_reaching_level_do_not_count(self, db, rex):
        _q(db, rex, "2024-01-01", level="Open")
        _q(db, rex, "2024-01-02", level="Open")
        for day in (3, 4, 5):
            run = _q(db, rex, f"2024-01-0{day}")
        assert check_progression(db, rex.id, run).to_level == "Open"
        run = _q(db, rex, "2024-01-06", level="Open")
        assert check_progression(db, rex.id, run) is None
        dog = db.get_dog(rex.id)
        assert dog.level_for("Standard") == "Open"
        replayed = {u.competition_class: u.level for u in recalculate_levels(dog, db.get_runs_for_dog(rex.id))}
        assert replayed["Standard"] == dog.level_for("Standard")

    def test_entry_level_is_replay_baseline(self, db):
        dog = db.create_dog("Ace", [DogClass("Standard", "Open")])
        for day in range(1, 4):
            run = _q(db, dog, f"2024-01-0{day}", level="Open")
        assert check_progression(db, dog.id, run).to_level == "Excellent"

    def test_class_not_entered(self, db, rex):
        for day in range(1, 4):
            run = _q(db, rex, f"2024-01-0{day}", cls="FAST")
        assert check_progression(db, rex.id, run) is None
        assert db.get_dog(rex.id).level_for("FAST") is None

    def test_missing_dog(self, db, rex):
        run = _q(db, rex, "2024-01-01")
        assert check_progression(db, "nope", run) is None

    def test_event_message(self):
        event = ProgressionEvent("Rex", "Jumpers", "Open", "Excellent")
        assert event.message == "Rex advanced from Open to Excellent in Jumpers!"
        assert event.to_dict()["to_level"] == "Excellent"


class TestBestEffort:
    def test_store_failure_is_swallowed(self, db, rex, caplog):
        _q(db, rex, "2024-01-01")
        _q(db, rex, "2024-01-02")
        run = _q(db, rex, "2024-01-03")
        with caplog.at_level(logging.ERROR, logger="auto_progression"):
            assert check_progression(_FailingStore(db), rex.id, run) is None
        assert "Progression check failed" in caplog.text
        # The run itself is untouched
        assert db.get_run(run.id) is not None
        assert db.get_dog(rex.id).level_for("Standard") == "Novice"

    def test_version_conflict_loses_quietly(self, db, rex, caplog):
        _q(db, rex, "2024-01-01")
        _q(db, rex, "2024-01-02")
        run = _q(db, rex, "2024-01-03")
        stale = db.get_dog(rex.id)
        db.set_class_levels(rex.id, [])  # someone else wrote first
        with caplog.at_level(logging.ERROR, logger="auto_progression"):
            assert check_progression(_StaleStore(db, stale), rex.id, run) is None
        assert "no longer at version" in caplog.text
        assert db.get_dog(rex.id).level_for("Standard") == "Novice"

    def test_unknown_class_logged(self, db, caplog):
        dog = db.create_dog("Ace", [DogClass("Snooker", "Novice")])
        run = _q(db, dog, "2024-01-01", cls="Snooker")
        with caplog.at_level(logging.ERROR, logger="auto_progression"):
            assert check_progression(db, dog.id, run) is None
        assert "Snooker" in caplog.text
