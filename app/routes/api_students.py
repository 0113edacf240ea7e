"""
API routes for students
Các API endpoint cho sinh viên và đăng ký mẫu khuôn mặt
"""
from flask import Blueprint, current_app, jsonify
from app import globals as app_globals
from app.utils import get_request_data, pick
from core.inference.embedder import EmbedderError
from core.matching.distance import as_embedding
from core.matching.store import FaceAngle

student_api_bp = Blueprint('student_api', __name__, url_prefix='/api/students')


@student_api_bp.route('', methods=['POST'])
def create_student():
    """Tạo sinh viên mới."""
    data = get_request_data()
    student_id = str(pick(data, 'studentId', 'student_id', default='')).strip()
    full_name = str(pick(data, 'name', 'full_name', default='')).strip()
    class_id = str(pick(data, 'class', 'classId', 'class_id', default='')).strip()
    roll_number = pick(data, 'rollNumber', 'roll_number')

    if not student_id or not full_name or not class_id:
        return jsonify({'success': False, 'message': 'Thiếu thông tin bắt buộc'}), 400

    created = app_globals.db.add_student(
        student_id,
        full_name,
        class_id,
        roll_number=roll_number,
        email=data.get('email'),
    )
    if not created:
        return jsonify({'success': False, 'message': f'Mã sinh viên {student_id} đã tồn tại'}), 409
    return jsonify({'success': True, 'student': app_globals.db.get_student(student_id)}), 201


@student_api_bp.route('/<student_id>', methods=['GET'])
def get_student(student_id):
    student = app_globals.db.get_student(student_id)
    if not student:
        return jsonify({'success': False, 'message': 'Không tìm thấy sinh viên'}), 404
    student['face_registered'] = bool(student.get('face_registered'))
    return jsonify({'success': True, 'student': student})


@student_api_bp.route('/<student_id>', methods=['DELETE'])
def delete_student(student_id):
    """Xóa sinh viên (các mẫu khuôn mặt bị xóa theo)."""
    if not app_globals.db.delete_student(student_id):
        return jsonify({'success': False, 'message': 'Không tìm thấy sinh viên'}), 404
    return jsonify({'success': True})


def _resolve_face_payload(face):
    """Chuẩn hóa một mẫu khuôn mặt: embedding gửi kèm, hoặc trích từ imagePath."""
    angle = FaceAngle.parse(face.get('angle'))
    confidence = float(face.get('confidence', 1.0))
    image_path = pick(face, 'imagePath', 'image_path')
    raw = face.get('embedding')

    if raw is None:
        if not image_path:
            raise ValueError('Mỗi mẫu cần embedding hoặc imagePath')
        if app_globals.embedder is None:
            raise EmbedderError('Face embedder is disabled')
        vector = app_globals.embedder.detect_single(image_path)
        if vector is None:
            raise ValueError(f'Không phát hiện khuôn mặt trong ảnh góc {angle.value}')
    else:
        vector = as_embedding(raw)

    return {
        'angle': angle.value,
        'embedding': vector.tolist(),
        'confidence': confidence,
        'photo_path': image_path,
    }


@student_api_bp.route('/<student_id>/faces', methods=['POST'])
def register_faces(student_id):
    """Đăng ký các mẫu khuôn mặt (front/left/right/tilt) cho sinh viên."""
    if not app_globals.db.get_student(student_id):
        return jsonify({'success': False, 'message': 'Không tìm thấy sinh viên'}), 404

    data = get_request_data()
    faces = data.get('faces')
    if not isinstance(faces, list) or not faces:
        return jsonify({'success': False, 'message': 'Danh sách faces không hợp lệ'}), 400

    try:
        prepared = [_resolve_face_payload(face) for face in faces]
        dims = {len(face['embedding']) for face in prepared}
        if len(dims) > 1:
            raise ValueError(f'Các embedding có độ dài khác nhau: {sorted(dims)}')
        face_ids = app_globals.db.add_faces(student_id, prepared)
    except (ValueError, TypeError, AttributeError) as exc:
        return jsonify({'success': False, 'message': str(exc)}), 400
    except EmbedderError as exc:
        current_app.logger.error("Face registration failed for %s: %s", student_id, exc)
        return jsonify({'success': False, 'message': str(exc)}), 503

    return jsonify({
        'success': True,
        'student_id': student_id,
        'face_ids': face_ids,
        'faces': app_globals.db.get_faces(student_id),
    }), 201


@student_api_bp.route('/<student_id>/faces', methods=['GET'])
def list_faces(student_id):
    if not app_globals.db.get_student(student_id):
        return jsonify({'success': False, 'message': 'Không tìm thấy sinh viên'}), 404
    return jsonify({'success': True, 'faces': app_globals.db.get_faces(student_id)})
