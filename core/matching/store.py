"""Registered face embeddings grouped per student for one class."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

from .distance import Embedding, as_embedding

logger = logging.getLogger(__name__)


class FaceAngle(str, Enum):
    FRONT = "front"
    LEFT = "left"
    RIGHT = "right"
    TILT = "tilt"

    @classmethod
    def parse(cls, value: Any) -> "FaceAngle":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value or "").strip().lower())
        except ValueError as exc:
            allowed = ", ".join(angle.value for angle in cls)
            raise ValueError(f"Invalid angle {value!r} (expected one of: {allowed})") from exc


@dataclass(frozen=True)
class RosterEntry:
    student_id: str
    class_id: str
    face_registered: bool = False

    @classmethod
    def from_mapping(cls, row: Mapping[str, Any]) -> "RosterEntry":
        student_id = row.get("student_id", row.get("studentId"))
        class_id = row.get("class_id", row.get("classId", row.get("class")))
        registered = row.get("face_registered", row.get("faceRegistered"))
        return cls(
            student_id=str(student_id or "").strip(),
            class_id=str(class_id or "").strip(),
            face_registered=bool(registered),
        )


@dataclass(frozen=True)
class RegisteredFace:
    student_id: str
    embedding: Embedding
    angle: FaceAngle = FaceAngle.FRONT
    confidence: float = 1.0


class EmbeddingStore:
    """Read-only view: student_id -> ordered list of registered embeddings.

    Only face-registered members of ``class_id`` are kept. Iteration follows
    roster order, and each student's embeddings keep registration order; the
    matcher relies on this order for its tie-break.
    """

    def __init__(
        self,
        class_id: str,
        roster: Iterable[str] = (),
        embeddings: Optional[Mapping[str, Iterable[Embedding]]] = None,
    ) -> None:
        self.class_id = class_id
        self._roster: List[str] = []
        seen = set()
        for student_id in roster:
            if student_id and student_id not in seen:
                seen.add(student_id)
                self._roster.append(student_id)
        self._embeddings: Dict[str, List[Embedding]] = {}
        for student_id in self._roster:
            vectors = list((embeddings or {}).get(student_id, ()))
            if vectors:
                self._embeddings[student_id] = vectors

    @classmethod
    def from_rows(
        cls,
        class_id: str,
        roster: Iterable[Any],
        registered: Iterable[Any],
    ) -> "EmbeddingStore":
        """Build a store from raw roster rows and registered-face rows.

        Roster rows of another class or without ``face_registered`` are
        ignored, as are faces belonging to students outside the roster.
        A registered embedding that cannot be parsed is skipped.
        """
        roster_ids: List[str] = []
        for row in roster:
            entry = row if isinstance(row, RosterEntry) else RosterEntry.from_mapping(row)
            if entry.class_id == class_id and entry.face_registered and entry.student_id:
                roster_ids.append(entry.student_id)

        members = set(roster_ids)
        grouped: Dict[str, List[Embedding]] = {}
        skipped = 0
        for row in registered:
            if isinstance(row, RegisteredFace):
                student_id, raw = row.student_id, row.embedding
            else:
                student_id = str(row.get("student_id", row.get("studentId")) or "").strip()
                raw = row.get("embedding")
            if student_id not in members:
                continue
            try:
                vector = as_embedding(raw)
            except ValueError as exc:
                skipped += 1
                logger.warning(
                    "[EmbeddingStore] Skipping malformed embedding for %s in class %s: %s",
                    student_id,
                    class_id,
                    exc,
                )
                continue
            grouped.setdefault(student_id, []).append(vector)

        store = cls(class_id, roster_ids, grouped)
        logger.debug(
            "[EmbeddingStore] Built store for %s: %s (skipped=%d)",
            class_id,
            store.describe(),
            skipped,
        )
        return store

    def roster(self) -> List[str]:
        return list(self._roster)

    def embeddings_for_class(self) -> Dict[str, List[Embedding]]:
        return {student_id: list(vectors) for student_id, vectors in self._embeddings.items()}

    def candidates(self) -> Iterator[Tuple[str, Embedding]]:
        for student_id, vectors in self._embeddings.items():
            for vector in vectors:
                yield student_id, vector

    def is_empty(self) -> bool:
        return not self._embeddings

    def __len__(self) -> int:
        return len(self._embeddings)

    def describe(self) -> Dict[str, Any]:
        dims = sorted({int(vector.shape[0]) for _, vector in self.candidates()})
        return {
            "class_id": self.class_id,
            "roster": len(self._roster),
            "students_with_embeddings": len(self._embeddings),
            "embeddings": sum(len(vectors) for vectors in self._embeddings.values()),
            "dimensions": dims,
        }


__all__ = [
    "EmbeddingStore",
    "FaceAngle",
    "RegisteredFace",
    "RosterEntry",
]
