"""Nearest-neighbour matching of detected faces against registered embeddings."""
from __future__ import annotations

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from .distance import Embedding, LengthMismatchError, as_embedding, distance
from .store import EmbeddingStore

DEFAULT_THRESHOLD = 0.6

REASON_NO_MATCH = "no_match"
REASON_NO_CANDIDATES = "no_candidates"
REASON_DUPLICATE = "duplicate_claim"


class DuplicateMatchPolicy(str, Enum):
    """What to do when several detected faces best-match the same student."""

    ALLOW = "allow"
    STRICT = "strict"

    @classmethod
    def parse(cls, value: Any) -> "DuplicateMatchPolicy":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value or "").strip().lower())
        except ValueError as exc:
            raise ValueError(f"Unknown duplicate match policy: {value!r}") from exc


@dataclass(frozen=True)
class DetectedFace:
    index: int
    embedding: Embedding


@dataclass(frozen=True)
class MatchOutcome:
    index: int
    student_id: Optional[str]
    distance: Optional[float]
    reason: Optional[str] = None

    @property
    def matched(self) -> bool:
        return self.student_id is not None


def detected_faces(embeddings: Sequence[Any]) -> List[DetectedFace]:
    """Wrap raw descriptors in detection order. Raises ValueError on bad input."""
    faces = []
    for index, raw in enumerate(embeddings or []):
        try:
            faces.append(DetectedFace(index=index, embedding=as_embedding(raw)))
        except ValueError as exc:
            raise ValueError(f"Detected face {index}: {exc}") from exc
    return faces


class Matcher:
    """Finds the best candidate student for every detected face.

    A face matches when its smallest distance to any registered embedding is
    strictly below ``threshold``. Ties go to the first student in store
    order. The matcher holds no state between calls.
    """

    def __init__(
        self,
        threshold: float = DEFAULT_THRESHOLD,
        policy: DuplicateMatchPolicy = DuplicateMatchPolicy.ALLOW,
        max_workers: int = 1,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        threshold = float(threshold)
        if not threshold > 0:
            raise ValueError(f"Match threshold must be positive, got {threshold}")
        self.threshold = threshold
        self.policy = DuplicateMatchPolicy.parse(policy)
        self.max_workers = max(1, int(max_workers or 1))
        self._logger = logger or logging.getLogger(__name__)

    def match(self, faces: Sequence[DetectedFace], store: EmbeddingStore) -> List[MatchOutcome]:
        candidates = list(store.candidates())
        if self.max_workers > 1 and len(faces) > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                outcomes = list(pool.map(lambda face: self._match_one(face, candidates), faces))
        else:
            outcomes = [self._match_one(face, candidates) for face in faces]

        if self.policy is DuplicateMatchPolicy.STRICT:
            outcomes = self._resolve_duplicates(outcomes)
        return outcomes

    def _match_one(self, face: DetectedFace, candidates) -> MatchOutcome:
        best_student: Optional[str] = None
        best_distance = math.inf
        for student_id, vector in candidates:
            try:
                value = distance(face.embedding, vector)
            except LengthMismatchError as exc:
                self._logger.warning(
                    "[Matcher] Face %d vs %s skipped: %s", face.index, student_id, exc
                )
                continue
            if value < best_distance:
                best_distance = value
                best_student = student_id

        if best_student is None:
            return MatchOutcome(face.index, None, None, REASON_NO_CANDIDATES)
        if best_distance < self.threshold:
            return MatchOutcome(face.index, best_student, best_distance)
        return MatchOutcome(face.index, None, best_distance, REASON_NO_MATCH)

    def _resolve_duplicates(self, outcomes: List[MatchOutcome]) -> List[MatchOutcome]:
        keeper: Dict[str, MatchOutcome] = {}
        for outcome in outcomes:
            if not outcome.matched:
                continue
            current = keeper.get(outcome.student_id)
            if current is None or outcome.distance < current.distance:
                keeper[outcome.student_id] = outcome

        resolved = []
        for outcome in outcomes:
            if outcome.matched and keeper[outcome.student_id] is not outcome:
                self._logger.info(
                    "[Matcher] Face %d also claims %s (kept face %d)",
                    outcome.index,
                    outcome.student_id,
                    keeper[outcome.student_id].index,
                )
                outcome = MatchOutcome(outcome.index, None, outcome.distance, REASON_DUPLICATE)
            resolved.append(outcome)
        return resolved


__all__ = [
    "DEFAULT_THRESHOLD",
    "DetectedFace",
    "DuplicateMatchPolicy",
    "MatchOutcome",
    "Matcher",
    "REASON_DUPLICATE",
    "REASON_NO_CANDIDATES",
    "REASON_NO_MATCH",
    "detected_faces",
]
