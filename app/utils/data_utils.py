"""
Data utilities
Helper functions cho data transformation và validation
"""
from datetime import date, datetime
from flask import request


def get_request_data():
    """Lấy request data từ JSON hoặc form."""
    if request.is_json:
        return request.get_json(silent=True) or {}
    return request.form.to_dict()


def pick(data, *keys, default=None):
    """Lấy giá trị đầu tiên khác None theo danh sách key (camelCase hoặc snake_case)."""
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return default


def parse_bool(value, default=None):
    """
    Phân tích giá trị boolean từ string, int, hoặc bool.
    Returns: True, False, hoặc default nếu không xác định được.
    """
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        lower = value.strip().lower()
        if lower in ('true', '1', 'yes', 'on'):
            return True
        if lower in ('false', '0', 'no', 'off'):
            return False
    return default


def parse_date_safe(value):
    """Phân tích chuỗi YYYY-MM-DD thành date hoặc trả về None."""
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(str(value).strip(), '%Y-%m-%d').date()
    except (ValueError, TypeError):
        return None


def parse_positive_int(value):
    """Chuyển thành số nguyên dương hoặc None."""
    try:
        number = int(value)
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


def serialize_photo(photo_row):
    """Chuyển bản ghi photos thành dict trả về client."""
    if not photo_row:
        return None
    photo = dict(photo_row)
    return {
        'photoId': photo.get('id'),
        'classId': photo.get('class_id'),
        'storagePath': photo.get('storage_path'),
        'status': photo.get('analysis_status'),
        'facesDetected': photo.get('faces_detected') or 0,
        'lowConfidence': bool(photo.get('low_confidence')),
        'errorMessage': photo.get('error_message'),
        'resubmittedFrom': photo.get('resubmitted_from'),
        'createdAt': photo.get('created_at'),
    }


def serialize_record(record_row):
    """Chuyển bản ghi attendance_records thành dict trả về client."""
    if not record_row:
        return None
    return {
        'recordId': record_row.get('id'),
        'photoId': record_row.get('photo_id'),
        'classId': record_row.get('class_id'),
        'date': record_row.get('date'),
        'presentStudents': record_row.get('present_students') or [],
        'absentStudents': record_row.get('absent_students') or [],
        'unknownFaces': record_row.get('unknown_faces') or [],
        'faceMatches': record_row.get('face_matches') or [],
        'threshold': record_row.get('threshold'),
        'duplicatePolicy': record_row.get('duplicate_policy'),
        'createdAt': record_row.get('created_at'),
    }
