"""
Database module for Attendance System
Quản lý cơ sở dữ liệu SQLite: sinh viên, mẫu khuôn mặt, ảnh lớp và kết quả điểm danh
"""

import json
import sqlite3
from datetime import date, datetime
from pathlib import Path
import logging

from core.attendance.photo_status import (
    InvalidTransitionError,
    PhotoNotFoundError,
    PhotoStatus,
)
from core.matching.store import EmbeddingStore, FaceAngle
from logging_config import database_logger

logger = logging.getLogger(__name__)


def _json_dumps(value):
    return json.dumps(value, ensure_ascii=False)


def _json_loads(value, default):
    if value is None or value == '':
        return default
    try:
        return json.loads(value)
    except (TypeError, ValueError):
        logger.warning("Không thể đọc JSON từ database: %r", value)
        return default


class DatabaseManager:
    def __init__(self, db_path="attendance_system.db"):
        self.db_path = str(db_path)
        if self.db_path != ':memory:':
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self.init_database()

    def get_connection(self):
        """Tạo kết nối database"""
        conn = sqlite3.connect(self.db_path, timeout=10)
        conn.row_factory = sqlite3.Row  # Cho phép truy cập theo tên cột
        conn.execute('PRAGMA foreign_keys = ON')
        return conn

    def init_database(self):
        """Khởi tạo database và các bảng"""
        with self.get_connection() as conn:
            cursor = conn.cursor()

            # Bảng sinh viên
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS students (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    student_id VARCHAR(64) UNIQUE NOT NULL,
                    full_name VARCHAR(100) NOT NULL,
                    roll_number VARCHAR(32) UNIQUE,
                    email VARCHAR(100),
                    class_id VARCHAR(64) NOT NULL,
                    face_registered BOOLEAN DEFAULT 0,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            ''')

            # Bảng embedding khuôn mặt (mỗi góc chụp một dòng, không sửa sau khi tạo)
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS faces_data (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    student_id VARCHAR(64) NOT NULL,
                    embedding TEXT NOT NULL,
                    photo_path VARCHAR(200),
                    angle VARCHAR(10) NOT NULL CHECK (angle IN ('front', 'left', 'right', 'tilt')),
                    confidence REAL DEFAULT 1.0,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    FOREIGN KEY (student_id) REFERENCES students(student_id) ON DELETE CASCADE
                )
            ''')

            # Bảng ảnh lớp do admin chụp
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS photos (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    class_id VARCHAR(64) NOT NULL,
                    storage_path VARCHAR(300) NOT NULL,
                    analysis_status VARCHAR(20) DEFAULT 'pending'
                        CHECK (analysis_status IN ('pending', 'processing', 'completed', 'failed')),
                    faces_detected INTEGER DEFAULT 0,
                    low_confidence BOOLEAN DEFAULT 0,
                    error_message TEXT,
                    resubmitted_from INTEGER,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    FOREIGN KEY (resubmitted_from) REFERENCES photos(id) ON DELETE SET NULL
                )
            ''')

            # Bảng kết quả điểm danh (một bản ghi cho mỗi ảnh)
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS attendance_records (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    photo_id INTEGER UNIQUE NOT NULL,
                    class_id VARCHAR(64) NOT NULL,
                    date DATE NOT NULL,
                    present_students TEXT DEFAULT '[]',
                    absent_students TEXT DEFAULT '[]',
                    unknown_faces TEXT DEFAULT '[]',
                    face_matches TEXT DEFAULT '[]',
                    threshold REAL,
                    duplicate_policy VARCHAR(20),
                    notes TEXT,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    FOREIGN KEY (photo_id) REFERENCES photos(id) ON DELETE CASCADE
                )
            ''')

            cursor.execute('CREATE INDEX IF NOT EXISTS idx_students_class ON students(class_id)')
            cursor.execute('CREATE INDEX IF NOT EXISTS idx_faces_data_student_id ON faces_data(student_id)')
            cursor.execute('CREATE INDEX IF NOT EXISTS idx_photos_class_id ON photos(class_id)')
            cursor.execute('CREATE INDEX IF NOT EXISTS idx_photos_analysis_status ON photos(analysis_status)')
            cursor.execute(
                'CREATE INDEX IF NOT EXISTS idx_attendance_class_date ON attendance_records(class_id, date)'
            )
            conn.commit()
        logger.info("Database initialized: %s", self.db_path)

    # === QUẢN LÝ SINH VIÊN ===

    def add_student(self, student_id, full_name, class_id, roll_number=None, email=None):
        """Thêm sinh viên mới. Trả về False nếu mã sinh viên đã tồn tại."""
        if not student_id or not full_name or not class_id:
            raise ValueError("Thiếu mã sinh viên, họ tên hoặc lớp")
        with self.get_connection() as conn:
            cursor = conn.cursor()
            try:
                cursor.execute('''
                    INSERT INTO students (student_id, full_name, roll_number, email, class_id)
                    VALUES (?, ?, ?, ?, ?)
                ''', (student_id, full_name, roll_number, email, class_id))
                conn.commit()
                logger.info("Added student: %s (%s) in class %s", full_name, student_id, class_id)
                return True
            except sqlite3.IntegrityError as e:
                database_logger.log_error("add_student", f"Student {student_id} already exists: {e}")
                return False

    def get_student(self, student_id):
        """Lấy thông tin sinh viên"""
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('SELECT * FROM students WHERE student_id = ?', (student_id,))
            row = cursor.fetchone()
            return dict(row) if row else None

    def delete_student(self, student_id):
        """Xóa sinh viên cùng toàn bộ mẫu khuôn mặt (cascade)."""
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('DELETE FROM students WHERE student_id = ?', (student_id,))
            conn.commit()
            return cursor.rowcount > 0

    def get_roster(self, class_id):
        """Danh sách sinh viên của lớp đã đăng ký khuôn mặt, theo thứ tự ổn định."""
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                SELECT student_id, full_name, roll_number, class_id, face_registered
                FROM students
                WHERE class_id = ? AND face_registered = 1
                ORDER BY id
            ''', (class_id,))
            return [dict(row) for row in cursor.fetchall()]

    # === QUẢN LÝ MẪU KHUÔN MẶT ===

    def add_faces(self, student_id, faces):
        """Lưu các embedding đã đăng ký cho sinh viên và bật face_registered.

        Args:
            student_id: Mã sinh viên
            faces: Danh sách dict {angle, embedding, confidence?, photo_path?}

        Returns:
            Danh sách ID của các dòng faces_data vừa tạo
        """
        rows = []
        for face in faces:
            angle = FaceAngle.parse(face.get('angle'))
            embedding = [float(v) for v in face['embedding']]
            confidence = float(face.get('confidence', 1.0))
            rows.append((student_id, _json_dumps(embedding), face.get('photo_path'), angle.value, confidence))
        if not rows:
            raise ValueError("Không có mẫu khuôn mặt nào để lưu")

        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('SELECT 1 FROM students WHERE student_id = ?', (student_id,))
            if cursor.fetchone() is None:
                raise LookupError(f"Student {student_id} not found")
            ids = []
            for row in rows:
                cursor.execute('''
                    INSERT INTO faces_data (student_id, embedding, photo_path, angle, confidence)
                    VALUES (?, ?, ?, ?, ?)
                ''', row)
                ids.append(cursor.lastrowid)
            cursor.execute('''
                UPDATE students SET face_registered = 1, updated_at = CURRENT_TIMESTAMP
                WHERE student_id = ?
            ''', (student_id,))
            conn.commit()
        logger.info("Registered %d face sample(s) for student %s", len(ids), student_id)
        return ids

    def get_faces(self, student_id):
        """Lấy metadata các mẫu khuôn mặt (không gồm vector)."""
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                SELECT id, student_id, angle, confidence, photo_path, created_at
                FROM faces_data WHERE student_id = ?
                ORDER BY id
            ''', (student_id,))
            return [dict(row) for row in cursor.fetchall()]

    def get_registered_faces(self, class_id):
        """Embeddings của các sinh viên trong lớp (đã đăng ký khuôn mặt)."""
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                SELECT fd.student_id, fd.embedding, fd.angle, fd.confidence
                FROM faces_data fd
                JOIN students s ON fd.student_id = s.student_id
                WHERE s.class_id = ? AND s.face_registered = 1
                ORDER BY s.id, fd.id
            ''', (class_id,))
            rows = []
            for row in cursor.fetchall():
                item = dict(row)
                item['embedding'] = _json_loads(item['embedding'], None)
                rows.append(item)
            return rows

    def load_embedding_store(self, class_id):
        """Tạo EmbeddingStore cho lớp từ roster và faces_data."""
        started = datetime.now()
        roster = self.get_roster(class_id)
        faces = self.get_registered_faces(class_id)
        database_logger.log_query('SELECT', 'faces_data', (datetime.now() - started).total_seconds())
        return EmbeddingStore.from_rows(class_id, roster, faces)

    def embeddings_for_class(self, class_id):
        """Mapping student_id -> danh sách embedding của lớp."""
        return self.load_embedding_store(class_id).embeddings_for_class()

    # === QUẢN LÝ ẢNH LỚP ===

    def create_photo(self, class_id, storage_path, resubmitted_from=None):
        """Tạo bản ghi ảnh mới ở trạng thái pending."""
        if not class_id or not storage_path:
            raise ValueError("Thiếu lớp hoặc đường dẫn ảnh")
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                INSERT INTO photos (class_id, storage_path, analysis_status, resubmitted_from)
                VALUES (?, ?, ?, ?)
            ''', (class_id, storage_path, PhotoStatus.PENDING.value, resubmitted_from))
            conn.commit()
            return cursor.lastrowid

    def get_photo(self, photo_id):
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('SELECT * FROM photos WHERE id = ?', (photo_id,))
            row = cursor.fetchone()
            return dict(row) if row else None

    def _require_photo(self, cursor, photo_id):
        cursor.execute('SELECT analysis_status FROM photos WHERE id = ?', (photo_id,))
        row = cursor.fetchone()
        if row is None:
            raise PhotoNotFoundError(photo_id)
        return row['analysis_status']

    def begin_processing(self, photo_id):
        """pending -> processing (compare-and-set, chỉ một tiến trình thắng)."""
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                UPDATE photos
                SET analysis_status = ?, error_message = NULL, updated_at = CURRENT_TIMESTAMP
                WHERE id = ? AND analysis_status = ?
            ''', (PhotoStatus.PROCESSING.value, photo_id, PhotoStatus.PENDING.value))
            if cursor.rowcount == 0:
                current = self._require_photo(cursor, photo_id)
                raise InvalidTransitionError(photo_id, current, PhotoStatus.PROCESSING)
            conn.commit()
            return True

    def mark_photo_failed(self, photo_id, error_message):
        """processing -> failed, lưu thông báo lỗi."""
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                UPDATE photos
                SET analysis_status = ?, error_message = ?, updated_at = CURRENT_TIMESTAMP
                WHERE id = ? AND analysis_status = ?
            ''', (PhotoStatus.FAILED.value, error_message, photo_id, PhotoStatus.PROCESSING.value))
            if cursor.rowcount == 0:
                current = self._require_photo(cursor, photo_id)
                raise InvalidTransitionError(photo_id, current, PhotoStatus.FAILED)
            conn.commit()
            return True

    def complete_photo_with_record(self, record):
        """Lưu bản ghi điểm danh và chuyển ảnh sang completed trong cùng transaction."""
        payload = record.to_dict()
        with self.get_connection() as conn:
            cursor = conn.cursor()
            try:
                cursor.execute('''
                    UPDATE photos
                    SET analysis_status = ?, faces_detected = ?, low_confidence = ?,
                        error_message = NULL, updated_at = CURRENT_TIMESTAMP
                    WHERE id = ? AND analysis_status = ?
                ''', (
                    PhotoStatus.COMPLETED.value,
                    record.faces_detected,
                    1 if record.low_confidence else 0,
                    record.photo_id,
                    PhotoStatus.PROCESSING.value,
                ))
                if cursor.rowcount == 0:
                    current = self._require_photo(cursor, record.photo_id)
                    raise InvalidTransitionError(record.photo_id, current, PhotoStatus.COMPLETED)
                cursor.execute('''
                    INSERT INTO attendance_records (
                        photo_id, class_id, date, present_students, absent_students,
                        unknown_faces, face_matches, threshold, duplicate_policy
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ''', (
                    record.photo_id,
                    record.class_id,
                    payload['date'],
                    _json_dumps(payload['presentStudents']),
                    _json_dumps(payload['absentStudents']),
                    _json_dumps(payload['unknownFaces']),
                    _json_dumps(payload['faceMatches']),
                    record.threshold,
                    record.duplicate_policy,
                ))
                record_id = cursor.lastrowid
                conn.commit()
            except Exception as e:
                conn.rollback()
                database_logger.log_error("complete_photo_with_record", f"Photo {record.photo_id}: {e}")
                raise
        logger.info(
            "Saved attendance record %s for photo %s (present=%d, absent=%d, unknown=%d)",
            record_id,
            record.photo_id,
            len(record.present_students),
            len(record.absent_students),
            len(record.unknown_faces),
        )
        return record_id

    # === KẾT QUẢ ĐIỂM DANH ===

    def _record_row_to_dict(self, row):
        if row is None:
            return None
        item = dict(row)
        for column in ('present_students', 'absent_students', 'unknown_faces', 'face_matches'):
            item[column] = _json_loads(item.get(column), [])
        return item

    def get_attendance_record(self, photo_id):
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('SELECT * FROM attendance_records WHERE photo_id = ?', (photo_id,))
            return self._record_row_to_dict(cursor.fetchone())

    def list_attendance_records(self, class_id, record_date=None, limit=50):
        """Các bản ghi điểm danh của lớp, mới nhất trước."""
        query = 'SELECT * FROM attendance_records WHERE class_id = ?'
        params = [class_id]
        if record_date:
            if isinstance(record_date, date):
                record_date = record_date.isoformat()
            query += ' AND date = ?'
            params.append(record_date)
        query += ' ORDER BY created_at DESC, id DESC LIMIT ?'
        params.append(int(limit))
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return [self._record_row_to_dict(row) for row in cursor.fetchall()]
