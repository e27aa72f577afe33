"""Tests for progress_report: Double Qs, MACH math, title ladders, summaries."""
from __future__ import annotations

import sys
from pathlib import Path

# Ensure project root is on path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import pytest
from conftest import make_dog, make_run
from progress_report import (
    calculate_double_qs, calculate_total_mach_points, calculate_mach_progress,
    is_mach_eligible, calculate_class_progress, calculate_title_ladder,
    calculate_earned_titles, build_dog_progress, build_user_summary,
    dog_progress_to_dict, dog_progress_to_text,
)


def _double_q_days(n, points=0, dog_id="dog-1"):
    """n dates, each with a Masters Standard Q and a Masters Jumpers Q."""
    runs = []
    for i in range(n):
        date = f"2024-{1 + i // 28:02d}-{1 + i % 28:02d}"
        runs.append(make_run(date, "Standard", "Masters", mach_points=points, dog_id=dog_id))
        runs.append(make_run(date, "Jumpers", "Masters", mach_points=points, dog_id=dog_id))
    return runs


def _masters_dog(**extra):
    return make_dog(Standard="Masters", Jumpers="Masters", **extra)


# ---------------------------------------------------------------------------
# Double Qs and MACH points
# ---------------------------------------------------------------------------

class TestDoubleQs:
    def test_same_date_counts(self):
        assert calculate_double_qs(_double_q_days(1)) == 1

    def test_different_dates_do_not_count(self):
        runs = [make_run("2024-01-01", "Standard", "Masters"),
                make_run("2024-01-02", "Jumpers", "Masters")]
        assert calculate_double_qs(runs) == 0

    def test_two_standard_qs_same_day(self):
        runs = [make_run("2024-01-01", "Standard", "Masters"),
                make_run("2024-01-01", "Standard", "Masters")]
        assert calculate_double_qs(runs) == 0

    def test_requires_masters(self):
        runs = [make_run("2024-01-01", "Standard", "Excellent"),
                make_run("2024-01-01", "Jumpers", "Masters")]
        assert calculate_double_qs(runs) == 0

    def test_requires_qualified(self):
        runs = [make_run("2024-01-01", "Standard", "Masters", qualified=False),
                make_run("2024-01-01", "Jumpers", "Masters")]
        assert calculate_double_qs(runs) == 0

    def test_extra_runs_same_day_still_one(self):
        runs = _double_q_days(1) + [make_run("2024-01-01", "Standard", "Masters")]
        assert calculate_double_qs(runs) == 1


class TestMachPoints:
    def test_sums_masters_standard_and_jumpers(self):
        runs = [make_run("2024-01-01", "Standard", "Masters", mach_points=12),
                make_run("2024-01-02", "Jumpers", "Masters", mach_points=8)]
        assert calculate_total_mach_points(runs) == 20

    def test_excludes_fast_and_lower_levels(self):
        runs = [make_run("2024-01-01", "FAST", "Masters", mach_points=30),
                make_run("2024-01-01", "Standard", "Excellent", mach_points=30),
                make_run("2024-01-01", "Premier Std", "Masters", mach_points=30),
                make_run("2024-01-01", "Jumpers", "Masters", qualified=False, mach_points=30)]
        assert calculate_total_mach_points(runs) == 0

    def test_missing_points_count_as_zero(self):
        assert calculate_total_mach_points([make_run("2024-01-01", "Standard", "Masters")]) == 0


class TestMachProgress:
    def test_points_alone_are_not_enough(self):
        mach = calculate_mach_progress(_double_q_days(15, points=50))
        assert mach.total_mach_points == 1500
        assert mach.total_double_qs == 15
        assert mach.complete_machs == 0
        assert mach.next_mach_number == 1
        assert mach.points_progress == "1500/750"
        assert mach.double_q_progress == "15/20"

    def test_multiple_machs(self):
        mach = calculate_mach_progress(_double_q_days(40, points=20))
        assert mach.total_mach_points == 1600
        assert mach.complete_machs == 2
        assert mach.next_mach_number == 3
        assert mach.points_toward_next == 100
        assert mach.double_qs_toward_next == 0

    def test_empty(self):
        mach = calculate_mach_progress([])
        assert mach.complete_machs == 0
        assert mach.points_progress == "0/750"

    def test_eligibility(self):
        assert is_mach_eligible(_masters_dog().classes)
        assert not is_mach_eligible(make_dog(Standard="Masters", Jumpers="Excellent").classes)
        assert not is_mach_eligible(make_dog(Standard="Masters").classes)


# ---------------------------------------------------------------------------
# Titles
# ---------------------------------------------------------------------------

class TestTitleLadders:
    def test_mx_and_mxj_at_ten(self):
        dog = _masters_dog()
        runs = _double_q_days(10)
        std = calculate_title_ladder(runs, dog.classes, "Standard")
        jww = calculate_title_ladder(runs, dog.classes, "Jumpers")
        assert (std[0].title, std[0].earned, std[0].progress) == ("MX", True, 10)
        assert (jww[0].title, jww[0].earned, jww[0].progress) == ("MXJ", True, 10)
        assert (std[1].title, std[1].earned, std[1].progress, std[1].needed) == ("MXB", False, 10, 25)

    def test_progress_capped_at_needed(self):
        dog = make_dog(Premier_Std="Excellent")
        runs = [make_run(f"2024-{1 + i // 28:02d}-{1 + i % 28:02d}", "Premier Std",
                         "Open" if i < 3 else "Excellent") for i in range(30)]
        ladder = calculate_title_ladder(runs, dog.classes, "Premier Std")
        pad, padb = ladder[0], ladder[1]
        assert (pad.title, pad.earned, pad.progress, pad.needed) == ("PAD", True, 25, 25)
        assert (padb.title, padb.earned, padb.progress) == ("PADB", False, 30)

    def test_not_at_masters_shows_no_progress(self):
        dog = make_dog(Standard="Excellent")
        runs = [make_run(f"2024-01-{d:02d}", "Standard", "Masters") for d in range(1, 13)]
        ladder = calculate_title_ladder(runs, dog.classes, "Standard")
        assert all(t.progress == 0 and not t.earned for t in ladder)

    def test_premier_requires_entry(self):
        dog = make_dog(Standard="Masters")
        runs = [make_run(f"2024-01-{d:02d}", "Premier JWW", "Masters") for d in range(1, 28)]
        ladder = calculate_title_ladder(runs, dog.classes, "Premier JWW")
        assert all(t.progress == 0 for t in ladder)

    def test_premier_counts_qs_at_every_level(self):
        dog = make_dog(Premier_JWW="Open")
        runs = [make_run(f"2024-01-{d:02d}", "Premier JWW", "Open") for d in range(1, 4)]
        runs.append(make_run("2024-01-05", "Premier JWW", "Excellent", qualified=False))
        pjd = calculate_title_ladder(runs, dog.classes, "Premier JWW")[0]
        assert (pjd.title, pjd.progress, pjd.earned) == ("PJD", 3, False)

    def test_earned_level_titles(self):
        dog = make_dog(Standard="Masters", Jumpers="Excellent", FAST="Masters")
        assert calculate_earned_titles(dog.classes) == ["OAJ", "AX"]

    def test_novice_has_no_titles(self):
        assert calculate_earned_titles(make_dog(Standard="Novice").classes) == []


class TestClassProgress:
    def test_counts_qs_per_level(self):
        runs = [make_run("2024-01-01", level="Novice"), make_run("2024-01-02", level="Novice"),
                make_run("2024-01-03", level="Open"),
                make_run("2024-01-04", level="Open", qualified=False)]
        assert calculate_class_progress(runs, "Standard") == {"Novice": 2, "Open": 1}


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------

class TestReports:
    def test_build_dog_progress(self):
        dog = _masters_dog()
        report = build_dog_progress(dog, _double_q_days(20, points=40))
        assert report.dog_name == "Rex"
        assert report.double_qs == 20
        assert report.mach_points == 1600
        assert report.mach.complete_machs == 1
        assert report.mach_eligible is True
        assert set(report.title_ladders) == {"Standard", "Jumpers", "FAST", "Premier Std", "Premier JWW"}
        assert report.earned_titles == ["AX", "AXJ"]

    def test_to_dict_is_json_friendly(self):
        import json
        report = build_dog_progress(_masters_dog(), _double_q_days(2, points=10))
        data = dog_progress_to_dict(report)
        json.dumps(data)
        assert data["mach"]["points_progress"] == "40/750"
        assert data["class_progress"][0]["class"] == "Standard"

    def test_to_text(self):
        report = build_dog_progress(_masters_dog(), _double_q_days(10, points=10))
        text = dog_progress_to_text(report)
        assert "=== Rex ===" in text
        assert "Toward MACH1" in text
        assert "[x] MX" in text

    def test_summary_skips_inactive_dogs(self):
        active = make_dog("dog-1", "Rex", Standard="Masters", Jumpers="Masters")
        retired = make_dog("dog-2", "Old", active=False, Standard="Masters", Jumpers="Masters")
        runs_by_dog = {
            "dog-1": _double_q_days(20, points=40, dog_id="dog-1")
                     + [make_run("2024-06-01", qualified=False)],
            "dog-2": _double_q_days(5, points=40, dog_id="dog-2"),
        }
        summary = build_user_summary([active, retired], runs_by_dog)
        assert summary.total_dogs == 1
        assert summary.total_runs == 41
        assert summary.total_qs == 40
        assert summary.total_double_qs == 20
        assert summary.total_mach_points == 1600
        assert summary.dogs_with_mach == 1
