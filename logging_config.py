"""
Cấu hình logging cho hệ thống điểm danh
"""

import logging
import logging.handlers
from datetime import datetime
from pathlib import Path

_HANDLER_TAG = '_attendance_handler'


def _tag(handler):
    setattr(handler, _HANDLER_TAG, True)
    return handler


def setup_logging(app, log_level='INFO', log_dir='logs', max_log_size=10*1024*1024, backup_count=5):
    """
    Thiết lập logging cho ứng dụng Flask

    Args:
        app: Flask app instance
        log_level: Mức độ log (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir: Thư mục chứa file log
        max_log_size: Kích thước tối đa của file log (bytes)
        backup_count: Số lượng file log backup
    """

    # Tạo thư mục logs nếu chưa có
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    level = getattr(logging, str(log_level).upper(), logging.INFO)

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(module)s:%(lineno)d - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    # File handler với rotation
    file_handler = _tag(logging.handlers.RotatingFileHandler(
        log_dir / 'attendance_system.log',
        maxBytes=max_log_size,
        backupCount=backup_count,
        encoding='utf-8'
    ))
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)

    # Handler cho console
    console_handler = _tag(logging.StreamHandler())
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)

    # Handler cho file lỗi
    error_handler = _tag(logging.handlers.RotatingFileHandler(
        log_dir / 'errors.log',
        maxBytes=max_log_size,
        backupCount=backup_count,
        encoding='utf-8'
    ))
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Chỉ gỡ các handler do hàm này tạo ra ở lần gọi trước
    for handler in root_logger.handlers[:]:
        if getattr(handler, _HANDLER_TAG, False):
            root_logger.removeHandler(handler)
            handler.close()

    root_logger.addHandler(file_handler)
    root_logger.addHandler(console_handler)
    root_logger.addHandler(error_handler)

    for name in ('face_recognition', 'database', 'api'):
        logging.getLogger(name).setLevel(level)

    app.logger.setLevel(level)

    app.logger.info("=" * 50)
    app.logger.info("ATTENDANCE SYSTEM STARTUP")
    app.logger.info(f"Timestamp: {datetime.now().isoformat()}")
    app.logger.info(f"Log Level: {logging.getLevelName(level)}")
    app.logger.info(f"Log Directory: {log_dir.absolute()}")
    app.logger.info("=" * 50)


class MatchingLogger:
    """Logger chuyên dụng cho nhận diện và so khớp khuôn mặt"""

    def __init__(self):
        self.logger = logging.getLogger('face_recognition')

    def log_faces_detected(self, photo_id, face_count):
        """Log số khuôn mặt phát hiện trong ảnh lớp"""
        self.logger.info(f"Faces detected - Photo: {photo_id}, Count: {face_count}")

    def log_face_matched(self, photo_id, index, student_id, distance):
        """Log khuôn mặt khớp với sinh viên"""
        self.logger.debug(
            f"Face matched - Photo: {photo_id}, Index: {index}, Student ID: {student_id}, Distance: {distance:.3f}"
        )

    def log_unknown_face(self, photo_id, index, best_distance, reason=None):
        """Log khuôn mặt không xác định"""
        distance_info = f"{best_distance:.3f}" if best_distance is not None else "n/a"
        reason_info = f", Reason: {reason}" if reason else ""
        self.logger.info(
            f"Unknown face - Photo: {photo_id}, Index: {index}, Best distance: {distance_info}{reason_info}"
        )

    def log_run_summary(self, photo_id, class_id, present, absent, unknown, duration=None):
        """Log tổng kết một lần điểm danh"""
        duration_info = f", Duration: {duration:.3f}s" if duration is not None else ""
        self.logger.info(
            f"Attendance resolved - Photo: {photo_id}, Class: {class_id}, "
            f"Present: {present}, Absent: {absent}, Unknown: {unknown}{duration_info}"
        )

    def log_recognition_error(self, photo_id, error_message):
        """Log lỗi nhận diện"""
        self.logger.error(f"Recognition error - Photo: {photo_id}, Error: {error_message}")


class DatabaseLogger:
    """Logger chuyên dụng cho database operations"""

    def __init__(self):
        self.logger = logging.getLogger('database')

    def log_query(self, query_type, table, duration=None):
        """Log truy vấn database"""
        duration_info = f", Duration: {duration:.3f}s" if duration is not None else ""
        self.logger.debug(f"DB Query - Type: {query_type}, Table: {table}{duration_info}")

    def log_error(self, operation, error_message):
        """Log lỗi database"""
        self.logger.error(f"DB Error - Operation: {operation}, Error: {error_message}")


class APILogger:
    """Logger chuyên dụng cho API calls"""

    def __init__(self):
        self.logger = logging.getLogger('api')

    def log_request(self, method, endpoint, ip_address=None):
        """Log yêu cầu API"""
        ip_info = f", IP: {ip_address}" if ip_address else ""
        self.logger.info(f"API Request - {method} {endpoint}{ip_info}")

    def log_response(self, endpoint, status_code, duration=None):
        """Log phản hồi API"""
        duration_info = f", Duration: {duration:.3f}s" if duration is not None else ""
        self.logger.info(f"API Response - {endpoint}, Status: {status_code}{duration_info}")

    def log_error(self, endpoint, error_message, status_code=500):
        """Log lỗi API"""
        self.logger.error(f"API Error - {endpoint}, Status: {status_code}, Error: {error_message}")


# Các instance logger toàn cục
matching_logger = MatchingLogger()
database_logger = DatabaseLogger()
api_logger = APILogger()


def get_client_ip(request):
    """Lấy IP address của client"""
    if request.headers.get('X-Forwarded-For'):
        return request.headers.get('X-Forwarded-For').split(',')[0].strip()
    elif request.headers.get('X-Real-IP'):
        return request.headers.get('X-Real-IP')
    else:
        return request.remote_addr


def log_request_info(request):
    """Log thông tin request"""
    ip_address = get_client_ip(request)
    api_logger.log_request(request.method, request.endpoint, ip_address=ip_address)
    return ip_address
