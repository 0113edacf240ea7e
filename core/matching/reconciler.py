"""Turns per-face match outcomes into present / absent / unknown sets."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .matcher import REASON_NO_MATCH, MatchOutcome


@dataclass(frozen=True)
class UnknownFace:
    index: int
    best_distance: Optional[float]
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "bestDistance": self.best_distance,
            "reason": self.reason,
        }


@dataclass
class ReconciliationResult:
    present_students: List[str] = field(default_factory=list)
    absent_students: List[str] = field(default_factory=list)
    unknown_faces: List[UnknownFace] = field(default_factory=list)
    outcomes: List[MatchOutcome] = field(default_factory=list)

    @property
    def faces_detected(self) -> int:
        return len(self.outcomes)


def reconcile(roster: Iterable[str], outcomes: Sequence[MatchOutcome]) -> ReconciliationResult:
    """Partition the roster using the matcher outcomes.

    present = distinct matched students, absent = roster - present, unknown =
    every unmatched face in detection order. A match naming a student outside
    the roster is rewritten as unmatched, so it shows up as unknown in both
    ``unknown_faces`` and ``outcomes``. No detected faces means the whole
    roster is absent; an empty roster makes every face unknown.
    """
    roster_ids = set(roster)
    present = set()
    unknown: List[UnknownFace] = []
    kept: List[MatchOutcome] = []
    for outcome in outcomes:
        if outcome.matched and outcome.student_id in roster_ids:
            present.add(outcome.student_id)
        else:
            if outcome.matched:
                outcome = MatchOutcome(outcome.index, None, outcome.distance, REASON_NO_MATCH)
            unknown.append(UnknownFace(outcome.index, outcome.distance, outcome.reason or REASON_NO_MATCH))
        kept.append(outcome)

    return ReconciliationResult(
        present_students=sorted(present),
        absent_students=sorted(roster_ids - present),
        unknown_faces=unknown,
        outcomes=kept,
    )


__all__ = ["ReconciliationResult", "UnknownFace", "reconcile"]
