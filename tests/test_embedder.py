import sys
import threading
import time

import numpy as np
import pytest

from core.inference import embedder as embedder_module
from core.inference.embedder import EmbedderError, EmbedderState, FaceRecognitionEmbedder


class FakeFaceLib:
    """Minimal face_recognition look-alike; boxes are (top, right, bottom, left)."""

    def __init__(self, boxes):
        self.boxes = boxes

    def load_image_file(self, path):
        return np.zeros((40, 40, 3), dtype=np.uint8)

    def face_locations(self, image, number_of_times_to_upsample=1, model="hog"):
        return list(self.boxes)

    def face_encodings(self, image, known_face_locations=None, num_jitters=1):
        return [np.full(4, float(box[1])) for box in known_face_locations]


def test_state_loads_model_once_under_concurrency():
    calls = []
    lock = threading.Lock()

    def loader():
        time.sleep(0.05)
        with lock:
            calls.append(1)
        return "model"

    state = EmbedderState(loader, name="test")
    assert not state.is_ready()
    assert state.wait_until_ready(timeout=0.01) is False

    threads = [threading.Thread(target=state.ensure_ready) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(calls) == 1
    assert state.is_ready()
    assert state.ensure_ready() == "model"
    assert state.wait_until_ready(timeout=0) is True
    assert state.describe()["loaded_at"] is not None


def test_state_failure_is_reported_and_retried():
    attempts = []

    def loader():
        attempts.append(1)
        raise OSError("weights missing")

    state = EmbedderState(loader, name="broken")
    for _ in range(2):
        with pytest.raises(EmbedderError, match="weights missing"):
            state.ensure_ready()

    assert len(attempts) == 2
    assert not state.is_ready()
    assert state.describe()["error"] == "weights missing"


def test_missing_library_raises_embedder_error(monkeypatch):
    monkeypatch.setitem(sys.modules, "face_recognition", None)
    embedder = FaceRecognitionEmbedder()

    with pytest.raises(EmbedderError, match="not installed"):
        embedder.warmup()
    assert not embedder.is_ready()


@pytest.fixture
def image(tmp_path):
    path = tmp_path / "class.jpg"
    path.write_bytes(b"fake")
    return path


def _embedder(monkeypatch, boxes):
    lib = FakeFaceLib(boxes)
    monkeypatch.setattr(embedder_module, "_import_face_recognition", lambda: lib)
    return FaceRecognitionEmbedder(num_jitters=2)


def test_extract_returns_one_descriptor_per_face_in_detector_order(monkeypatch, image):
    embedder = _embedder(monkeypatch, [(0, 10, 10, 0), (0, 30, 30, 0)])

    descriptors = embedder.extract(image)

    assert [d[0] for d in descriptors] == [10.0, 30.0]
    assert all(d.dtype == np.float64 for d in descriptors)
    assert embedder.is_ready()
    assert embedder.describe()["num_jitters"] == 2


def test_detect_single_picks_largest_face(monkeypatch, image):
    embedder = _embedder(monkeypatch, [(0, 10, 10, 0), (0, 30, 30, 0), (0, 20, 20, 0)])
    assert embedder.detect_single(image)[0] == 30.0


def test_detect_single_without_face_returns_none(monkeypatch, image):
    assert _embedder(monkeypatch, []).detect_single(image) is None


def test_missing_image_raises(monkeypatch, tmp_path):
    embedder = _embedder(monkeypatch, [(0, 10, 10, 0)])
    with pytest.raises(EmbedderError, match="Image not found"):
        embedder.extract(tmp_path / "missing.jpg")
