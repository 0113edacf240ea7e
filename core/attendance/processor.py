"""Runs face matching for a submitted class photo and records the result."""
from __future__ import annotations

import logging
import time
from concurrent.futures import Executor, Future
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, Dict, Optional, Sequence

from core.matching.matcher import Matcher, detected_faces
from core.matching.reconciler import reconcile

from .notifier import CompletionNotifier
from .photo_status import (
    InvalidTransitionError,
    PhotoNotFoundError,
    PhotoStatus,
    StoreError,
    UpstreamFailure,
)
from .record_builder import AttendanceRecord, build_record

EventBroadcaster = Callable[[Dict[str, Any]], None]


@dataclass
class ProcessingResult:
    photo_id: Any
    status: PhotoStatus
    record: Optional[AttendanceRecord] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status is PhotoStatus.COMPLETED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "photoId": self.photo_id,
            "status": self.status.value,
            "record": self.record.to_dict() if self.record else None,
            "error": self.error,
        }


class AttendanceProcessor:
    """Orchestrates one matching run per photo.

    The photo moves pending -> processing before any work starts; the
    database guards that step so a photo is processed at most once. A run
    ends either with the record stored and the photo ``completed`` (one
    transaction), or with the photo ``failed`` and nothing stored.
    """

    def __init__(
        self,
        *,
        db: Any,
        matcher: Matcher,
        embedder: Any = None,
        notifier: Optional[CompletionNotifier] = None,
        broadcaster: Optional[EventBroadcaster] = None,
        executor: Optional[Executor] = None,
        low_confidence_distance: Optional[float] = None,
        run_logger: Any = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._db = db
        self._matcher = matcher
        self._embedder = embedder
        self._notifier = notifier
        self._broadcast = broadcaster
        self._executor = executor
        self._low_confidence_distance = low_confidence_distance
        self._run_logger = run_logger
        self._logger = logger or logging.getLogger(__name__)

    @property
    def matcher(self) -> Matcher:
        return self._matcher

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------
    def process(
        self,
        photo_id: Any,
        detected_embeddings: Optional[Sequence[Any]] = None,
        *,
        record_date: Optional[date] = None,
    ) -> ProcessingResult:
        photo = self.start(photo_id)
        return self.run(photo, detected_embeddings, record_date=record_date)

    def submit(
        self,
        photo_id: Any,
        detected_embeddings: Optional[Sequence[Any]] = None,
    ) -> Future:
        """Claim the photo now and finish the run on the executor."""
        if self._executor is None:
            raise RuntimeError("No executor configured for background processing")
        photo = self.start(photo_id)
        try:
            return self._executor.submit(self.run, photo, detected_embeddings)
        except Exception as exc:
            self._fail(photo_id, f"Could not schedule processing: {exc}")
            raise

    def start(self, photo_id: Any) -> Dict[str, Any]:
        photo = self._db.get_photo(photo_id)
        if photo is None:
            raise PhotoNotFoundError(photo_id)
        self._db.begin_processing(photo_id)
        # Claimed: from here on every error has to end in ``failed``.
        try:
            photo["analysis_status"] = PhotoStatus.PROCESSING.value
            self._emit(photo_id, PhotoStatus.PROCESSING)
            self._logger.info("[Processor] Photo %s (class %s) processing", photo_id, photo.get("class_id"))
        except Exception as exc:
            self._fail(photo_id, str(exc) or exc.__class__.__name__)
            raise
        return photo

    def run(
        self,
        photo: Dict[str, Any],
        detected_embeddings: Optional[Sequence[Any]] = None,
        *,
        record_date: Optional[date] = None,
    ) -> ProcessingResult:
        photo_id = photo["id"]
        started = time.monotonic()
        try:
            record = self._build(photo, detected_embeddings, record_date)
            self._db.complete_photo_with_record(record)
        except Exception as exc:
            message = str(exc) or exc.__class__.__name__
            if isinstance(exc, (UpstreamFailure, ValueError)):
                self._logger.error("[Processor] Photo %s failed: %s", photo_id, message)
            else:
                self._logger.error("[Processor] Photo %s failed", photo_id, exc_info=True)
            self._fail(photo_id, message)
            self._log_run("log_recognition_error", photo_id, message)
            return ProcessingResult(photo_id, PhotoStatus.FAILED, error=message)

        self._log_run(
            "log_run_summary",
            photo_id,
            record.class_id,
            len(record.present_students),
            len(record.absent_students),
            len(record.unknown_faces),
            duration=time.monotonic() - started,
        )
        self._emit(photo_id, PhotoStatus.COMPLETED, record=record)
        return ProcessingResult(photo_id, PhotoStatus.COMPLETED, record=record)

    def resubmit(self, photo_id: Any) -> int:
        """New pending submission for the same stored image."""
        photo = self._db.get_photo(photo_id)
        if photo is None:
            raise PhotoNotFoundError(photo_id)
        status = PhotoStatus(photo["analysis_status"])
        if not status.is_terminal:
            raise InvalidTransitionError(photo_id, status, PhotoStatus.PENDING)
        new_id = self._db.create_photo(
            photo["class_id"], photo["storage_path"], resubmitted_from=photo_id
        )
        self._logger.info("[Processor] Photo %s resubmitted as %s", photo_id, new_id)
        self._emit(new_id, PhotoStatus.PENDING)
        return new_id

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _build(
        self,
        photo: Dict[str, Any],
        detected_embeddings: Optional[Sequence[Any]],
        record_date: Optional[date],
    ) -> AttendanceRecord:
        photo_id = photo["id"]
        class_id = photo["class_id"]
        try:
            store = self._db.load_embedding_store(class_id)
        except UpstreamFailure:
            raise
        except Exception as exc:
            raise StoreError(f"Embedding store unavailable for class {class_id}: {exc}") from exc

        if detected_embeddings is None:
            if self._embedder is None:
                raise UpstreamFailure("No face embedder configured and no descriptors supplied")
            detected_embeddings = self._embedder.extract(photo["storage_path"])

        faces = detected_faces(detected_embeddings)
        if self._run_logger:
            self._run_logger.log_faces_detected(photo_id, len(faces))

        outcomes = self._matcher.match(faces, store)
        result = reconcile(store.roster(), outcomes)
        if self._run_logger:
            for outcome in outcomes:
                if outcome.matched:
                    self._run_logger.log_face_matched(
                        photo_id, outcome.index, outcome.student_id, outcome.distance
                    )
            for unknown in result.unknown_faces:
                self._run_logger.log_unknown_face(
                    photo_id, unknown.index, unknown.best_distance, unknown.reason
                )

        return build_record(
            photo_id=photo_id,
            class_id=class_id,
            result=result,
            threshold=self._matcher.threshold,
            policy=self._matcher.policy,
            record_date=record_date,
            low_confidence_distance=self._low_confidence_distance,
        )

    def _fail(self, photo_id: Any, message: str) -> None:
        try:
            self._db.mark_photo_failed(photo_id, message)
        except InvalidTransitionError as exc:
            self._logger.warning("[Processor] Could not mark photo %s failed: %s", photo_id, exc)
            return
        except Exception:
            self._logger.error("[Processor] Photo %s left in processing", photo_id, exc_info=True)
            return
        self._emit(photo_id, PhotoStatus.FAILED, error=message)

    def _log_run(self, method: str, *args: Any, **kwargs: Any) -> None:
        """Run-logger calls made once the photo status is settled; never raise."""
        if self._run_logger is None:
            return
        try:
            getattr(self._run_logger, method)(*args, **kwargs)
        except Exception:
            self._logger.warning("[Processor] Run logger %s failed", method, exc_info=True)

    def _emit(
        self,
        photo_id: Any,
        status: PhotoStatus,
        *,
        error: Optional[str] = None,
        record: Optional[AttendanceRecord] = None,
    ) -> None:
        """Notify waiters and SSE clients. Status is already persisted, so errors are only logged."""
        data: Dict[str, Any] = {"photo_id": photo_id, "status": status.value}
        if error:
            data["error"] = error
        if record is not None:
            data["present_count"] = len(record.present_students)
            data["absent_count"] = len(record.absent_students)
            data["unknown_count"] = len(record.unknown_faces)

        if self._notifier is not None:
            try:
                self._notifier.resolve(photo_id, status, error)
            except Exception:
                self._logger.warning("[Processor] Notifier failed for photo %s", photo_id, exc_info=True)
        if self._broadcast is not None:
            try:
                self._broadcast({"type": "photo_status", "data": data})
            except Exception:
                self._logger.warning("[Processor] Broadcast failed for photo %s", photo_id, exc_info=True)


__all__ = ["AttendanceProcessor", "ProcessingResult"]
