"""Read/write capabilities the progression core depends on.

The core never talks to a database directly; ``persistence.Persistence``
satisfies these protocols, and tests can pass any object that does.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence

from models import Dog, Run


class ConcurrentUpdateError(RuntimeError):
    """The dog changed between read and write (version mismatch)."""


class DogNotFoundError(LookupError):
    pass


class RunNotFoundError(LookupError):
    pass


@dataclass(frozen=True)
class ClassLevelUpdate:
    competition_class: str
    level: str


class RunReader(Protocol):
    def get_runs_for_dog(self, dog_id: str) -> List[Run]:
        """All runs for the dog; order is not guaranteed."""


class DogReader(Protocol):
    def get_dog(self, dog_id: str) -> Optional[Dog]:
        ...


class DogWriter(Protocol):
    def set_class_levels(
        self,
        dog_id: str,
        updates: Sequence[ClassLevelUpdate],
        expected_version: Optional[int] = None,
    ) -> None:
        """Apply every update or none of them.

        Raises ConcurrentUpdateError when *expected_version* is given and no
        longer matches the stored dog.
        """


class QualifyingRunCounter(Protocol):
    def count_qualifying_runs(self, dog_id: str, competition_class: str, level: str) -> int:
        ...


class ProgressionStore(RunReader, DogReader, DogWriter, QualifyingRunCounter, Protocol):
    """Everything the trigger and batch recalculation need."""
