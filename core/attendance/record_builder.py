"""Builds the persisted attendance record for one analysed photo."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional, Union

from core.matching.matcher import DuplicateMatchPolicy
from core.matching.reconciler import ReconciliationResult, UnknownFace


@dataclass
class AttendanceRecord:
    photo_id: Any
    class_id: str
    date: date
    present_students: List[str] = field(default_factory=list)
    absent_students: List[str] = field(default_factory=list)
    unknown_faces: List[UnknownFace] = field(default_factory=list)
    face_matches: List[Dict[str, Any]] = field(default_factory=list)
    threshold: float = 0.6
    duplicate_policy: str = DuplicateMatchPolicy.ALLOW.value
    low_confidence: bool = False

    @property
    def faces_detected(self) -> int:
        return len(self.face_matches)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "photoId": self.photo_id,
            "classId": self.class_id,
            "date": self.date.isoformat(),
            "presentStudents": list(self.present_students),
            "absentStudents": list(self.absent_students),
            "unknownFaces": [face.to_dict() for face in self.unknown_faces],
            "faceMatches": [dict(match) for match in self.face_matches],
            "facesDetected": self.faces_detected,
            "threshold": self.threshold,
            "duplicatePolicy": self.duplicate_policy,
            "lowConfidence": self.low_confidence,
        }


def build_record(
    *,
    photo_id: Any,
    class_id: str,
    result: ReconciliationResult,
    threshold: float,
    policy: Union[DuplicateMatchPolicy, str] = DuplicateMatchPolicy.ALLOW,
    record_date: Optional[date] = None,
    low_confidence_distance: Optional[float] = None,
) -> AttendanceRecord:
    """Package a reconciliation result with its per-face provenance.

    ``low_confidence`` is raised when an accepted match sits at or above
    ``low_confidence_distance`` (close to the threshold).
    """
    face_matches = [
        {
            "index": outcome.index,
            "studentId": outcome.student_id,
            "distance": outcome.distance,
        }
        for outcome in result.outcomes
    ]
    low_confidence = False
    if low_confidence_distance is not None:
        low_confidence = any(
            outcome.matched and outcome.distance >= low_confidence_distance
            for outcome in result.outcomes
        )

    return AttendanceRecord(
        photo_id=photo_id,
        class_id=class_id,
        date=record_date or date.today(),
        present_students=list(result.present_students),
        absent_students=list(result.absent_students),
        unknown_faces=list(result.unknown_faces),
        face_matches=face_matches,
        threshold=float(threshold),
        duplicate_policy=DuplicateMatchPolicy.parse(policy).value,
        low_confidence=low_confidence,
    )


__all__ = ["AttendanceRecord", "build_record"]
