"""Face detection / descriptor extraction behind an explicit readiness state.

The embedding model is an external collaborator. Loading it is expensive, so
it happens once per process inside :class:`EmbedderState`; callers either
trigger the load with ``ensure_ready()`` or block on ``wait_until_ready()``.
"""
from __future__ import annotations

import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

import numpy as np

from core.attendance.photo_status import UpstreamFailure


class EmbedderError(UpstreamFailure):
    """Raised when the detector/embedder cannot load or process an image."""


class EmbedderState:
    """Idempotent, thread-safe one-time initialization of a model."""

    def __init__(
        self,
        loader: Callable[[], Any],
        *,
        name: str = "embedder",
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._loader = loader
        self._name = name
        self._logger = logger or logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._ready = threading.Event()
        self._model: Any = None
        self._error: Optional[str] = None
        self._loaded_at: Optional[datetime] = None

    def ensure_ready(self) -> Any:
        if self._ready.is_set():
            return self._model
        with self._lock:
            if self._ready.is_set():
                return self._model
            self._logger.info("[Embedder] Loading %s model", self._name)
            try:
                model = self._loader()
            except EmbedderError as exc:
                self._error = str(exc)
                raise
            except Exception as exc:
                self._error = str(exc)
                self._logger.error("[Embedder] %s failed to load: %s", self._name, exc)
                raise EmbedderError(f"{self._name} failed to load: {exc}") from exc
            self._model = model
            self._error = None
            self._loaded_at = datetime.now()
            self._ready.set()
            self._logger.info("[Embedder] %s ready", self._name)
            return model

    def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        return self._ready.wait(timeout)

    def is_ready(self) -> bool:
        return self._ready.is_set()

    def describe(self) -> Dict[str, Any]:
        return {
            "name": self._name,
            "ready": self.is_ready(),
            "error": self._error,
            "loaded_at": self._loaded_at.isoformat() if self._loaded_at else None,
        }


def _import_face_recognition() -> Any:
    try:
        import face_recognition
    except ImportError as exc:
        raise EmbedderError(
            "face_recognition is not installed (pip install '.[vision]')"
        ) from exc
    return face_recognition


class FaceRecognitionEmbedder:
    """128-d dlib descriptors via the ``face_recognition`` package.

    Descriptors are returned in the detector's output order, which defines the
    detected-face indices used in attendance records.
    """

    name = "face_recognition"

    def __init__(
        self,
        *,
        detection_model: str = "hog",
        num_jitters: int = 1,
        upsample_times: int = 1,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.detection_model = detection_model
        self.num_jitters = max(1, int(num_jitters))
        self.upsample_times = max(0, int(upsample_times))
        self._logger = logger or logging.getLogger(__name__)
        self.state = EmbedderState(_import_face_recognition, name=self.name, logger=self._logger)

    def warmup(self) -> None:
        self.state.ensure_ready()

    def is_ready(self) -> bool:
        return self.state.is_ready()

    def describe(self) -> Dict[str, Any]:
        info = self.state.describe()
        info.update({"detection_model": self.detection_model, "num_jitters": self.num_jitters})
        return info

    def _load_image(self, lib: Any, image_path: Union[str, Path]) -> np.ndarray:
        path = Path(image_path)
        if not path.exists():
            raise EmbedderError(f"Image not found: {path}")
        try:
            return lib.load_image_file(str(path))
        except Exception as exc:
            raise EmbedderError(f"Cannot read image {path}: {exc}") from exc

    def extract(self, image_path: Union[str, Path]) -> List[np.ndarray]:
        """Detect every face in the image and return one descriptor per face."""
        lib = self.state.ensure_ready()
        image = self._load_image(lib, image_path)
        try:
            locations = lib.face_locations(
                image,
                number_of_times_to_upsample=self.upsample_times,
                model=self.detection_model,
            )
            encodings = lib.face_encodings(
                image,
                known_face_locations=locations,
                num_jitters=self.num_jitters,
            )
        except Exception as exc:
            raise EmbedderError(f"Face extraction failed for {image_path}: {exc}") from exc
        self._logger.debug("[Embedder] %d face(s) in %s", len(encodings), image_path)
        return [np.asarray(encoding, dtype=np.float64) for encoding in encodings]

    def detect_single(self, image_path: Union[str, Path]) -> Optional[np.ndarray]:
        """Descriptor of the largest face, or None when no face is found."""
        lib = self.state.ensure_ready()
        image = self._load_image(lib, image_path)
        try:
            locations = lib.face_locations(
                image,
                number_of_times_to_upsample=self.upsample_times,
                model=self.detection_model,
            )
            if not locations:
                return None
            # (top, right, bottom, left)
            largest = max(locations, key=lambda box: (box[2] - box[0]) * (box[1] - box[3]))
            encodings = lib.face_encodings(
                image,
                known_face_locations=[largest],
                num_jitters=self.num_jitters,
            )
        except Exception as exc:
            raise EmbedderError(f"Face extraction failed for {image_path}: {exc}") from exc
        return np.asarray(encodings[0], dtype=np.float64) if encodings else None


__all__ = ["EmbedderError", "EmbedderState", "FaceRecognitionEmbedder"]
