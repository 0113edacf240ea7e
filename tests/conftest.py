import numpy as np
import pytest

from app import create_app
from app import globals as app_globals
from core.inference.embedder import EmbedderError
from database import DatabaseManager


class FakeEmbedder:
    """Stands in for FaceRecognitionEmbedder: returns preset descriptors."""

    name = "fake"

    def __init__(self, faces=None, single=None, error=None):
        self.faces = list(faces or [])
        self.single = single
        self.error = error
        self.calls = []

    def _check(self, image_path):
        self.calls.append(image_path)
        if self.error:
            raise EmbedderError(self.error)

    def extract(self, image_path):
        self._check(image_path)
        return [np.asarray(face, dtype=np.float64) for face in self.faces]

    def detect_single(self, image_path):
        self._check(image_path)
        return None if self.single is None else np.asarray(self.single, dtype=np.float64)

    def describe(self):
        return {"name": self.name, "ready": True}


@pytest.fixture
def db(tmp_path):
    return DatabaseManager(tmp_path / "attendance.db")


@pytest.fixture
def seeded_db(db):
    """Class c1: s1 at (0, 0), s2 at (1, 0), s3 without faces. x1 belongs to c2."""
    db.add_student("s1", "Nguyen Van A", "c1")
    db.add_student("s2", "Tran Thi B", "c1")
    db.add_student("s3", "Le Van C", "c1")
    db.add_student("x1", "Pham Van D", "c2")
    db.add_faces("s1", [{"angle": "front", "embedding": [0.0, 0.0]}])
    db.add_faces("s2", [{"angle": "front", "embedding": [1.0, 0.0]}])
    db.add_faces("x1", [{"angle": "front", "embedding": [0.05, 0.0]}])
    return db


@pytest.fixture
def fake_embedder():
    return FakeEmbedder()


@pytest.fixture
def app(tmp_path, fake_embedder):
    app = create_app({
        'TESTING': True,
        'DATABASE_PATH': str(tmp_path / "app.db"),
        'LOG_DIR': str(tmp_path / "logs"),
        'PHOTO_STORAGE_DIR': str(tmp_path / "photos"),
        'USE_EMBEDDER': False,
        'EMBEDDER': fake_embedder,
        'STATUS_WAIT_TIMEOUT': 2,
        'PROCESSING_WORKERS': 2,
    })
    yield app
    app_globals.executor.shutdown(wait=True)
    app_globals.executor = None


@pytest.fixture
def client(app):
    return app.test_client()
