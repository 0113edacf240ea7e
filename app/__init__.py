"""
App package initialization
Khởi tạo Flask application và cấu hình
"""
from concurrent.futures import ThreadPoolExecutor
import os
from pathlib import Path

from flask import Flask

from app import config
from app import globals as app_globals
from app.models import EventBroadcaster
from core.attendance.notifier import CompletionNotifier
from core.attendance.processor import AttendanceProcessor
from core.inference.embedder import EmbedderError, FaceRecognitionEmbedder
from core.matching.matcher import DuplicateMatchPolicy, Matcher
from database import DatabaseManager
from logging_config import matching_logger, setup_logging


def _init_embedder(app):
    """Khởi tạo embedder (face_recognition), nạp model ngay nếu EMBEDDER_PRELOAD."""
    if 'EMBEDDER' in app.config:
        return app.config['EMBEDDER']
    if not app.config['USE_EMBEDDER']:
        app.logger.info("[STARTUP] Embedder disabled, descriptors must be supplied by clients")
        return None

    embedder = FaceRecognitionEmbedder(
        detection_model=app.config['EMBEDDER_DETECTION_MODEL'],
        num_jitters=app.config['EMBEDDER_NUM_JITTERS'],
        upsample_times=app.config['EMBEDDER_UPSAMPLE'],
        logger=app.logger,
    )
    if app.config['EMBEDDER_PRELOAD']:
        try:
            embedder.warmup()
            app.logger.info("[STARTUP] ✅ Embedder ready")
        except EmbedderError as e:
            app.logger.warning(f"[STARTUP] ⚠️ Embedder not available: {e}")
    return embedder


def create_app(config_overrides=None):
    """Factory function để tạo Flask application"""
    app = Flask(__name__)

    # Cấu hình cơ bản, cho phép ghi đè (test)
    app.config.update(config.as_flask_config())
    if config_overrides:
        app.config.update(config_overrides)

    # Thiết lập logging
    setup_logging(app, log_level=app.config['LOG_LEVEL'], log_dir=app.config['LOG_DIR'])

    app.logger.info(f"[STARTUP] Working directory: {os.getcwd()}")
    app.logger.info(f"[STARTUP] Database path: {os.path.abspath(app.config['DATABASE_PATH'])}")
    Path(app.config['PHOTO_STORAGE_DIR']).mkdir(parents=True, exist_ok=True)

    # =============================================================================
    # INITIALIZE SERVICES
    # =============================================================================

    # 1. Database
    app_globals.db = DatabaseManager(app.config['DATABASE_PATH'])

    # 2. Embedder
    app_globals.embedder = _init_embedder(app)

    # 3. Matcher
    app_globals.matcher = Matcher(
        threshold=app.config['MATCH_THRESHOLD'],
        policy=DuplicateMatchPolicy.parse(app.config['DUPLICATE_MATCH_POLICY']),
        max_workers=app.config['MATCHER_WORKERS'],
        logger=app.logger,
    )
    app.logger.info(
        "[STARTUP] ✅ Matcher: threshold=%.3f, policy=%s",
        app_globals.matcher.threshold,
        app_globals.matcher.policy.value,
    )

    # 4. EventBroadcaster + CompletionNotifier
    app_globals.event_broadcaster = EventBroadcaster(logger=app.logger)
    app_globals.notifier = CompletionNotifier(status_lookup=app_globals.db.get_photo, logger=app.logger)

    # 5. Background processing
    if app_globals.executor is not None:
        app_globals.executor.shutdown(wait=False)
    app_globals.executor = ThreadPoolExecutor(
        max_workers=app.config['PROCESSING_WORKERS'],
        thread_name_prefix='attendance',
    )
    app_globals.processor = AttendanceProcessor(
        db=app_globals.db,
        matcher=app_globals.matcher,
        embedder=app_globals.embedder,
        notifier=app_globals.notifier,
        broadcaster=app_globals.event_broadcaster.broadcast_event,
        executor=app_globals.executor,
        low_confidence_distance=app.config['LOW_CONFIDENCE_DISTANCE'],
        run_logger=matching_logger,
        logger=app.logger,
    )
    app.logger.info("[STARTUP] ✅ All services initialized successfully")

    # Đăng ký blueprints
    from app.routes import register_blueprints
    register_blueprints(app)

    return app
