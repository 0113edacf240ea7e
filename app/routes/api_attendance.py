"""
API routes for attendance
Các API endpoint xử lý điểm danh từ ảnh lớp
"""
from flask import Blueprint, current_app, jsonify, request
from app import globals as app_globals
from app.utils import (
    get_request_data,
    parse_bool,
    parse_date_safe,
    parse_positive_int,
    pick,
    serialize_record,
)
from core.attendance.photo_status import InvalidTransitionError, PhotoNotFoundError
from logging_config import api_logger, log_request_info

attendance_api_bp = Blueprint('attendance_api', __name__, url_prefix='/api/attendance')


@attendance_api_bp.route('/process', methods=['POST'])
def process_attendance():
    """So khớp khuôn mặt trong ảnh lớp và lưu kết quả điểm danh.

    Body: {photoId, detectedEmbeddings?, async?}. Không gửi
    detectedEmbeddings thì embedder sẽ trích xuất từ ảnh đã lưu.
    """
    log_request_info(request)
    data = get_request_data()
    photo_id = parse_positive_int(pick(data, 'photoId', 'photo_id'))
    if photo_id is None:
        return jsonify({'success': False, 'message': 'photoId không hợp lệ'}), 400

    detected = pick(data, 'detectedEmbeddings', 'detected_embeddings', 'descriptors')
    if detected is not None and not isinstance(detected, list):
        return jsonify({'success': False, 'message': 'detectedEmbeddings phải là danh sách'}), 400
    run_async = parse_bool(data.get('async'), default=False)

    processor = app_globals.processor
    try:
        if run_async:
            processor.submit(photo_id, detected)
            api_logger.log_response(request.endpoint, 202)
            return jsonify({
                'success': True,
                'photoId': photo_id,
                'status': 'processing',
                'wait_url': f'/api/photos/{photo_id}/wait',
            }), 202
        result = processor.process(photo_id, detected)
    except PhotoNotFoundError:
        return jsonify({'success': False, 'message': 'Không tìm thấy ảnh'}), 404
    except InvalidTransitionError as exc:
        return jsonify({'success': False, 'message': str(exc)}), 409
    except Exception as exc:
        api_logger.log_error(request.endpoint, str(exc))
        current_app.logger.error(f"Error processing attendance: {exc}", exc_info=True)
        return jsonify({'success': False, 'message': 'Không thể xử lý điểm danh'}), 500

    if not result.succeeded:
        api_logger.log_response(request.endpoint, 502)
        payload = result.to_dict()
        payload.update({'success': False, 'message': result.error})
        return jsonify(payload), 502

    record = result.record
    api_logger.log_response(request.endpoint, 200)
    return jsonify({
        'success': True,
        'photoId': photo_id,
        'status': result.status.value,
        'presentCount': len(record.present_students),
        'absentCount': len(record.absent_students),
        'unknownCount': len(record.unknown_faces),
        'record': record.to_dict(),
    })


@attendance_api_bp.route('/records/<int:photo_id>', methods=['GET'])
def get_record(photo_id):
    record = app_globals.db.get_attendance_record(photo_id)
    if not record:
        return jsonify({'success': False, 'message': 'Chưa có kết quả điểm danh cho ảnh này'}), 404
    return jsonify({'success': True, 'record': serialize_record(record)})


@attendance_api_bp.route('/records', methods=['GET'])
def list_records():
    """Lịch sử điểm danh của một lớp, lọc theo ngày nếu có."""
    class_id = (request.args.get('classId') or request.args.get('class_id') or '').strip()
    if not class_id:
        return jsonify({'success': False, 'message': 'Thiếu classId'}), 400

    raw_date = request.args.get('date')
    record_date = parse_date_safe(raw_date)
    if raw_date and record_date is None:
        return jsonify({'success': False, 'message': 'Ngày không hợp lệ (YYYY-MM-DD)'}), 400

    limit = parse_positive_int(request.args.get('limit')) or 50
    records = app_globals.db.list_attendance_records(class_id, record_date, limit=min(limit, 500))
    return jsonify({'success': True, 'records': [serialize_record(r) for r in records]})
