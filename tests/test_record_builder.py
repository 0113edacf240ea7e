from datetime import date

from core.attendance.record_builder import build_record
from core.matching.matcher import REASON_NO_MATCH, DuplicateMatchPolicy, MatchOutcome
from core.matching.reconciler import reconcile


def _result():
    return reconcile(
        ["s1", "s2", "s3"],
        [MatchOutcome(0, "s1", 0.12), MatchOutcome(1, None, 0.75, REASON_NO_MATCH), MatchOutcome(2, "s2", 0.55)],
    )


def test_record_serializes_with_provenance():
    record = build_record(
        photo_id=7,
        class_id="c1",
        result=_result(),
        threshold=0.6,
        policy=DuplicateMatchPolicy.STRICT,
        record_date=date(2024, 3, 1),
    )
    payload = record.to_dict()

    assert payload["photoId"] == 7
    assert payload["classId"] == "c1"
    assert payload["date"] == "2024-03-01"
    assert payload["presentStudents"] == ["s1", "s2"]
    assert payload["absentStudents"] == ["s3"]
    assert payload["unknownFaces"] == [{"index": 1, "bestDistance": 0.75, "reason": REASON_NO_MATCH}]
    assert payload["faceMatches"][0] == {"index": 0, "studentId": "s1", "distance": 0.12}
    assert payload["faceMatches"][1] == {"index": 1, "studentId": None, "distance": 0.75}
    assert payload["facesDetected"] == 3
    assert payload["threshold"] == 0.6
    assert payload["duplicatePolicy"] == "strict"
    assert payload["lowConfidence"] is False


def test_record_date_defaults_to_today():
    record = build_record(photo_id=1, class_id="c1", result=_result(), threshold=0.6)
    assert record.date == date.today()
    assert record.duplicate_policy == "allow"


def test_low_confidence_flag_uses_accepted_matches_only():
    flagged = build_record(
        photo_id=1, class_id="c1", result=_result(), threshold=0.6, low_confidence_distance=0.5
    )
    assert flagged.low_confidence is True

    # The unknown face at 0.75 must not raise the flag.
    clear = build_record(
        photo_id=1, class_id="c1", result=_result(), threshold=0.6, low_confidence_distance=0.56
    )
    assert clear.low_confidence is False


def test_face_matches_do_not_name_students_outside_roster():
    result = reconcile(["s1"], [MatchOutcome(0, "s9", 0.52)])
    record = build_record(
        photo_id=3, class_id="c1", result=result, threshold=0.6, record_date=date(2024, 5, 6),
        low_confidence_distance=0.5,
    )

    assert record.to_dict()["faceMatches"] == [{"index": 0, "studentId": None, "distance": 0.52}]
    assert record.absent_students == ["s1"]
    assert record.low_confidence is False
