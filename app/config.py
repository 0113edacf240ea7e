"""
Configuration constants và settings
"""
import os
from pathlib import Path

# Flask app configuration
SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
MAX_CONTENT_LENGTH = 16 * 1024 * 1024  # 16MB

# Directory paths
DATABASE_PATH = os.getenv('DATABASE_PATH', 'attendance_system.db')
PHOTO_STORAGE_DIR = Path(os.getenv('PHOTO_STORAGE_DIR', os.path.join('uploads', 'group_photos')))
LOG_DIR = os.getenv('LOG_DIR', 'logs')
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

# Face matching configuration
MATCH_THRESHOLD = float(os.getenv('MATCH_THRESHOLD', '0.6'))
DUPLICATE_MATCH_POLICY = os.getenv('DUPLICATE_MATCH_POLICY', 'allow')
LOW_CONFIDENCE_DISTANCE = float(os.getenv('LOW_CONFIDENCE_DISTANCE', '0.5'))
MATCHER_WORKERS = max(1, int(os.getenv('MATCHER_WORKERS', '1')))

# Background processing and status waiting
PROCESSING_WORKERS = max(1, int(os.getenv('PROCESSING_WORKERS', '2')))
STATUS_WAIT_TIMEOUT = float(os.getenv('STATUS_WAIT_TIMEOUT', '30'))
MAX_STATUS_WAIT_TIMEOUT = 120.0

# Face embedder (face_recognition / dlib)
USE_EMBEDDER = os.getenv('USE_EMBEDDER', '1') == '1'
EMBEDDER_DETECTION_MODEL = os.getenv('EMBEDDER_DETECTION_MODEL', 'hog')
EMBEDDER_NUM_JITTERS = max(1, int(os.getenv('EMBEDDER_NUM_JITTERS', '1')))
EMBEDDER_UPSAMPLE = max(0, int(os.getenv('EMBEDDER_UPSAMPLE', '1')))
EMBEDDER_PRELOAD = os.getenv('EMBEDDER_PRELOAD', '0') == '1'


def as_flask_config():
    """Các giá trị mặc định nạp vào app.config (có thể ghi đè khi test)."""
    return {
        'SECRET_KEY': SECRET_KEY,
        'MAX_CONTENT_LENGTH': MAX_CONTENT_LENGTH,
        'DATABASE_PATH': DATABASE_PATH,
        'PHOTO_STORAGE_DIR': str(PHOTO_STORAGE_DIR),
        'LOG_DIR': LOG_DIR,
        'LOG_LEVEL': LOG_LEVEL,
        'MATCH_THRESHOLD': MATCH_THRESHOLD,
        'DUPLICATE_MATCH_POLICY': DUPLICATE_MATCH_POLICY,
        'LOW_CONFIDENCE_DISTANCE': LOW_CONFIDENCE_DISTANCE,
        'MATCHER_WORKERS': MATCHER_WORKERS,
        'PROCESSING_WORKERS': PROCESSING_WORKERS,
        'STATUS_WAIT_TIMEOUT': STATUS_WAIT_TIMEOUT,
        'USE_EMBEDDER': USE_EMBEDDER,
        'EMBEDDER_DETECTION_MODEL': EMBEDDER_DETECTION_MODEL,
        'EMBEDDER_NUM_JITTERS': EMBEDDER_NUM_JITTERS,
        'EMBEDDER_UPSAMPLE': EMBEDDER_UPSAMPLE,
        'EMBEDDER_PRELOAD': EMBEDDER_PRELOAD,
    }
