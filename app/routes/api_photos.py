"""
API routes for class photos
Các API endpoint cho ảnh lớp và trạng thái phân tích
"""
from flask import Blueprint, current_app, jsonify, request
from app import globals as app_globals
from app.config import MAX_STATUS_WAIT_TIMEOUT
from app.utils import get_request_data, pick, serialize_photo
from core.attendance.photo_status import InvalidTransitionError, PhotoNotFoundError

photos_api_bp = Blueprint('photos_api', __name__, url_prefix='/api/photos')


@photos_api_bp.route('', methods=['POST'])
def submit_photo():
    """Tạo bản ghi ảnh lớp (ảnh đã được lưu trữ) ở trạng thái pending."""
    data = get_request_data()
    class_id = str(pick(data, 'classId', 'class_id', default='')).strip()
    storage_path = str(pick(data, 'storagePath', 'storage_path', default='')).strip()
    if not class_id or not storage_path:
        return jsonify({'success': False, 'message': 'Thiếu classId hoặc storagePath'}), 400

    photo_id = app_globals.db.create_photo(class_id, storage_path)
    current_app.logger.info("Photo %s submitted for class %s", photo_id, class_id)
    if app_globals.event_broadcaster:
        app_globals.event_broadcaster.broadcast_photo_status(photo_id, 'pending')
    return jsonify({'success': True, 'photo': serialize_photo(app_globals.db.get_photo(photo_id))}), 201


@photos_api_bp.route('/<int:photo_id>', methods=['GET'])
def get_photo(photo_id):
    photo = app_globals.db.get_photo(photo_id)
    if not photo:
        return jsonify({'success': False, 'message': 'Không tìm thấy ảnh'}), 404
    return jsonify({'success': True, 'photo': serialize_photo(photo)})


@photos_api_bp.route('/<int:photo_id>/wait', methods=['GET'])
def wait_for_photo(photo_id):
    """Chờ ảnh tới trạng thái cuối (completed/failed) trong thời gian giới hạn.

    Hết thời gian chờ trả về status 'indeterminate' (HTTP 202): kết quả chưa
    rõ, client nên kiểm tra lại sau chứ không coi là thất bại.
    """
    if not app_globals.db.get_photo(photo_id):
        return jsonify({'success': False, 'message': 'Không tìm thấy ảnh'}), 404

    timeout = request.args.get('timeout', type=float)
    if timeout is None:
        timeout = current_app.config['STATUS_WAIT_TIMEOUT']
    timeout = max(0.0, min(timeout, MAX_STATUS_WAIT_TIMEOUT))

    signal = app_globals.notifier.wait(photo_id, timeout)
    payload = {'success': True, 'result': signal.to_dict()}
    if signal.indeterminate:
        payload['message'] = 'Chưa có kết quả, vui lòng kiểm tra lại sau'
        return jsonify(payload), 202
    payload['photo'] = serialize_photo(app_globals.db.get_photo(photo_id))
    return jsonify(payload)


@photos_api_bp.route('/<int:photo_id>/wait', methods=['DELETE'])
def cancel_wait(photo_id):
    """Hủy các yêu cầu đang chờ kết quả của ảnh."""
    cancelled = app_globals.notifier.cancel(photo_id)
    return jsonify({'success': True, 'cancelled': cancelled})


@photos_api_bp.route('/<int:photo_id>/resubmit', methods=['POST'])
def resubmit_photo(photo_id):
    """Gửi lại ảnh đã kết thúc (thường là failed) thành một lần phân tích mới."""
    try:
        new_id = app_globals.processor.resubmit(photo_id)
    except PhotoNotFoundError:
        return jsonify({'success': False, 'message': 'Không tìm thấy ảnh'}), 404
    except InvalidTransitionError as exc:
        return jsonify({'success': False, 'message': str(exc)}), 409
    return jsonify({'success': True, 'photo': serialize_photo(app_globals.db.get_photo(new_id))}), 201
