"""Progress/title reporting: Double Qs, MACH points, multi-MACH and title ladders.

Everything here is derived on demand from a dog's runs (and, for the title
ladders, its current class levels).  Nothing is persisted.

Usage:
    from progress_report import build_dog_progress, dog_progress_to_text
    report = build_dog_progress(dog, runs)
    print(dog_progress_to_text(report))
"""
from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from models import Dog, DogClass, Run
from progression_rules import COMPETITION_LEVELS, PREMIER_CLASSES, TERMINAL_LEVEL, TITLE_LADDERS

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

MACH_POINTS_REQUIRED = 750
MACH_DOUBLE_QS_REQUIRED = 20
MACH_CLASSES = ("Standard", "Jumpers")

# Highest level-derived title shown after the registered name
_LEVEL_TITLES = {
    "Standard": {"Open": "NA", "Excellent": "OA", "Masters": "AX"},
    "Jumpers": {"Open": "NAJ", "Excellent": "OAJ", "Masters": "AXJ"},
}
_LEVEL_TITLE_ORDER = ["NA", "NAJ", "OA", "OAJ", "AX", "AXJ"]


# ---------------------------------------------------------------------------
# Dataclasses
# ---------------------------------------------------------------------------

@dataclass
class MachProgress:
    complete_machs: int
    next_mach_number: int
    points_toward_next: int
    double_qs_toward_next: int
    total_mach_points: int
    total_double_qs: int

    @property
    def points_progress(self) -> str:
        return f"{self.points_toward_next}/{MACH_POINTS_REQUIRED}"

    @property
    def double_q_progress(self) -> str:
        return f"{self.double_qs_toward_next}/{MACH_DOUBLE_QS_REQUIRED}"


@dataclass
class TitleProgress:
    title: str
    tier: str           # Masters / Premier / Bronze / Silver / Gold / Century
    earned: bool
    progress: int       # never above needed
    needed: int


@dataclass
class ClassProgress:
    competition_class: str
    levels: Dict[str, int] = field(default_factory=dict)   # level -> Qs


@dataclass
class DogProgress:
    dog_id: str
    dog_name: str
    class_progress: List[ClassProgress] = field(default_factory=list)
    double_qs: int = 0
    mach_points: int = 0
    mach: Optional[MachProgress] = None
    mach_eligible: bool = False
    title_ladders: Dict[str, List[TitleProgress]] = field(default_factory=dict)
    earned_titles: List[str] = field(default_factory=list)


@dataclass
class ProgressSummary:
    total_dogs: int = 0
    total_runs: int = 0
    total_qs: int = 0
    total_double_qs: int = 0
    total_mach_points: int = 0
    dogs_with_mach: int = 0


# ---------------------------------------------------------------------------
# MACH
# ---------------------------------------------------------------------------

def _is_mach_run(run: Run) -> bool:
    return (run.qualified and run.level == TERMINAL_LEVEL
            and run.competition_class in MACH_CLASSES)


def calculate_double_qs(runs: Iterable[Run]) -> int:
    """Dates with both a Masters Standard Q and a Masters Jumpers Q."""
    classes_by_date: Dict[str, set] = defaultdict(set)
    for run in runs:
        if _is_mach_run(run):
            classes_by_date[run.date].add(run.competition_class)
    return sum(1 for classes in classes_by_date.values() if len(classes) == len(MACH_CLASSES))


def calculate_total_mach_points(runs: Iterable[Run]) -> int:
    """Sum of MACH points over qualifying Masters Standard/Jumpers runs."""
    return sum(run.mach_points or 0 for run in runs if _is_mach_run(run))


def calculate_mach_progress(runs: Iterable[Run]) -> MachProgress:
    """A MACH needs both 750 points and 20 Double Qs; counts repeat (MACH2, MACH3...)."""
    runs = list(runs)
    points = calculate_total_mach_points(runs)
    double_qs = calculate_double_qs(runs)
    complete = min(points // MACH_POINTS_REQUIRED, double_qs // MACH_DOUBLE_QS_REQUIRED)
    return MachProgress(
        complete_machs=complete,
        next_mach_number=complete + 1,
        points_toward_next=points - complete * MACH_POINTS_REQUIRED,
        double_qs_toward_next=double_qs - complete * MACH_DOUBLE_QS_REQUIRED,
        total_mach_points=points,
        total_double_qs=double_qs,
    )


def _level_of(classes: Sequence[DogClass], competition_class: str) -> Optional[str]:
    for entry in classes:
        if entry.competition_class == competition_class:
            return entry.level
    return None


def is_mach_eligible(classes: Sequence[DogClass]) -> bool:
    return all(_level_of(classes, c) == TERMINAL_LEVEL for c in MACH_CLASSES)


# ---------------------------------------------------------------------------
# Class and title progress
# ---------------------------------------------------------------------------

def calculate_class_progress(runs: Iterable[Run], competition_class: str) -> Dict[str, int]:
    """Qualifying runs per level for one class."""
    counts: Dict[str, int] = {}
    for run in runs:
        if run.qualified and run.competition_class == competition_class:
            counts[run.level] = counts.get(run.level, 0) + 1
    return counts


def calculate_title_ladder(
    runs: Iterable[Run], classes: Sequence[DogClass], competition_class: str
) -> List[TitleProgress]:
    """Progress along one class's advanced title ladder.

    Standard and Jumpers ladders (MX, MXJ and their bronze-and-up tiers)
    only open once the dog is at Masters, and only Masters Qs count.

    Premier ladders (PAD, PJD and up) are read differently: Premier Std and
    Premier JWW have their own Open to Masters chain, and every Premier Q
    counts toward the ladder from the day the dog enters the class, whatever
    its level.  A dog not entered in the Premier class shows no progress.
    """
    ladder = TITLE_LADDERS.get(competition_class, ())
    level = _level_of(classes, competition_class)
    if competition_class in PREMIER_CLASSES:
        gated = level is not None
        qs = sum(1 for r in runs if r.qualified and r.competition_class == competition_class)
    else:
        gated = level == TERMINAL_LEVEL
        qs = sum(1 for r in runs if r.qualified and r.competition_class == competition_class
                 and r.level == TERMINAL_LEVEL)
    return [
        TitleProgress(
            title=step.title,
            tier=step.tier,
            earned=gated and qs >= step.needed,
            progress=min(qs, step.needed) if gated else 0,
            needed=step.needed,
        )
        for step in ladder
    ]


def calculate_title_ladders(
    runs: Iterable[Run], classes: Sequence[DogClass]
) -> Dict[str, List[TitleProgress]]:
    runs = list(runs)
    return {cls: calculate_title_ladder(runs, classes, cls) for cls in TITLE_LADDERS}


def calculate_earned_titles(classes: Sequence[DogClass]) -> List[str]:
    """Highest level-derived Standard/Jumpers titles, conventional order."""
    titles = []
    for cls, by_level in _LEVEL_TITLES.items():
        title = by_level.get(_level_of(classes, cls) or "")
        if title:
            titles.append(title)
    return sorted(titles, key=_LEVEL_TITLE_ORDER.index)


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------

def build_dog_progress(dog: Dog, runs: Iterable[Run]) -> DogProgress:
    runs = list(runs)
    mach = calculate_mach_progress(runs)

    seen_classes = list(dict.fromkeys(r.competition_class for r in runs if r.qualified))
    class_progress = [
        ClassProgress(cls, calculate_class_progress(runs, cls)) for cls in seen_classes
    ]

    return DogProgress(
        dog_id=dog.id,
        dog_name=dog.name,
        class_progress=class_progress,
        double_qs=mach.total_double_qs,
        mach_points=mach.total_mach_points,
        mach=mach,
        mach_eligible=is_mach_eligible(dog.classes),
        title_ladders=calculate_title_ladders(runs, dog.classes),
        earned_titles=calculate_earned_titles(dog.classes),
    )


def build_user_summary(dogs: Iterable[Dog], runs_by_dog: Mapping[str, Sequence[Run]]) -> ProgressSummary:
    """Totals across active dogs only."""
    summary = ProgressSummary()
    for dog in dogs:
        if not dog.active:
            continue
        runs = list(runs_by_dog.get(dog.id, ()))
        mach = calculate_mach_progress(runs)
        summary.total_dogs += 1
        summary.total_runs += len(runs)
        summary.total_qs += sum(1 for r in runs if r.qualified)
        summary.total_double_qs += mach.total_double_qs
        summary.total_mach_points += mach.total_mach_points
        if mach.complete_machs > 0:
            summary.dogs_with_mach += 1
    return summary


def _title_to_dict(t: TitleProgress) -> Dict[str, Any]:
    return {
        "title": t.title,
        "tier": t.tier,
        "earned": t.earned,
        "progress": t.progress,
        "needed": t.needed,
    }


def dog_progress_to_dict(report: DogProgress) -> dict:
    """Convert DogProgress to a JSON-serializable dict."""
    mach = report.mach
    return {
        "dog_id": report.dog_id,
        "dog_name": report.dog_name,
        "class_progress": [
            {"class": cp.competition_class, "levels": dict(cp.levels)}
            for cp in report.class_progress
        ],
        "double_qs": report.double_qs,
        "mach_points": report.mach_points,
        "mach_eligible": report.mach_eligible,
        "mach": None if mach is None else {
            "complete_machs": mach.complete_machs,
            "next_mach_number": mach.next_mach_number,
            "points_toward_next": mach.points_toward_next,
            "double_qs_toward_next": mach.double_qs_toward_next,
            "total_mach_points": mach.total_mach_points,
            "total_double_qs": mach.total_double_qs,
            "points_progress": mach.points_progress,
            "double_q_progress": mach.double_q_progress,
        },
        "title_ladders": {
            cls: [_title_to_dict(t) for t in ladder]
            for cls, ladder in report.title_ladders.items()
        },
        "earned_titles": list(report.earned_titles),
    }


def dog_progress_to_text(report: DogProgress) -> str:
    """Format DogProgress as human-readable text."""
    lines = [f"=== {report.dog_name} ==="]
    if report.earned_titles:
        lines.append("Titles: " + " ".join(report.earned_titles))
    lines.append("")

    for cp in report.class_progress:
        counts = ", ".join(
            f"{lvl} {cp.levels[lvl]}" for lvl in COMPETITION_LEVELS if lvl in cp.levels
        )
        lines.append(f"{cp.competition_class}: {counts}")

    mach = report.mach
    if mach is not None:
        lines.append("")
        lines.append(f"Double Qs: {mach.total_double_qs}   MACH points: {mach.total_mach_points}")
        if mach.complete_machs:
            lines.append(f"Complete MACHs: {mach.complete_machs}")
        lines.append(f"Toward MACH{mach.next_mach_number}: points {mach.points_progress}, "
                     f"Double Qs {mach.double_q_progress}")

    for cls, ladder in report.title_ladders.items():
        if not any(t.progress for t in ladder):
            continue
        lines.append("")
        lines.append(f"{cls} titles:")
        for t in ladder:
            mark = "x" if t.earned else " "
            lines.append(f"  [{mark}] {t.title:<5s} {t.progress}/{t.needed}")

    return "\n".join(lines)
