from datetime import datetime, timezone
from typing import Callable, Dict, Optional

Taken = Callable[[str], bool]


class IdentifierRangeExhausted(RuntimeError):
    """Every identifier of a fixed-width namespace is already in use."""


def _never_taken(candidate: str) -> bool:
    return False


class IdentifierGenerator:
    """Hands out display-facing identifiers that are unique against the current store contents.

    Every namespace keeps a monotonically increasing counter. A candidate that the
    ``taken`` predicate reports as already in use is skipped, so ids survive a
    restart from a hydrated snapshot without colliding with existing records.
    Student codes and roll numbers have a fixed width and raise
    ``IdentifierRangeExhausted`` rather than growing past it.
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._counters: Dict[str, int] = {}

    def now(self) -> datetime:
        return self._clock()

    def _allocate(
        self,
        namespace: str,
        render: Callable[[int], str],
        taken: Taken,
        limit: Optional[int] = None,
    ) -> str:
        sequence = self._counters.get(namespace, 0)
        while True:
            sequence += 1
            if limit is not None and sequence > limit:
                raise IdentifierRangeExhausted(f"No identifiers left in {namespace} (limit {limit})")
            candidate = render(sequence)
            if not taken(candidate):
                break
        self._counters[namespace] = sequence
        return candidate

    def entity_id(self, prefix: str, taken: Taken = _never_taken) -> str:
        """Record id such as ``STU-0001``; widens past 9999."""
        return self._allocate(f"id:{prefix}", lambda n: f"{prefix}-{n:04d}", taken)

    def student_code(self, taken: Taken = _never_taken) -> str:
        """External student code ``SCH<year>-<3-digit>``, at most 999 per year."""
        year = self.now().year
        return self._allocate(f"code:{year}", lambda n: f"SCH{year}-{n:03d}", taken, limit=999)

    def roll_number(self, class_name: str, section: str, taken: Taken = _never_taken) -> str:
        """Roll number ``<class><section>-<2-digit sequence>``, at most 99 per class and section."""
        return self._allocate(
            f"roll:{class_name}{section}",
            lambda n: f"{class_name}{section}-{n:02d}",
            taken,
            limit=99,
        )

    def reset(self) -> None:
        self._counters.clear()
