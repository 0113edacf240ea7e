"""Future-based completion signal for photo analysis runs.

Callers waiting for a photo to reach a terminal status get a
``concurrent.futures.Future`` instead of polling the photos table. A wait is
bounded by a timeout; on timeout the outcome is ``indeterminate``, which the
caller must not report as a failure.
"""
from __future__ import annotations

import concurrent.futures
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from .photo_status import INDETERMINATE, parse_status

StatusLookup = Callable[[Any], Optional[Dict[str, Any]]]


@dataclass(frozen=True)
class CompletionSignal:
    photo_id: Any
    status: str
    error: Optional[str] = None

    @property
    def indeterminate(self) -> bool:
        return self.status == INDETERMINATE

    def to_dict(self) -> Dict[str, Any]:
        return {"photoId": self.photo_id, "status": self.status, "error": self.error}


class CompletionNotifier:
    """Thread-safe registry of per-photo completion futures."""

    def __init__(
        self,
        *,
        status_lookup: Optional[StatusLookup] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._status_lookup = status_lookup
        self._logger = logger or logging.getLogger(__name__)
        self._futures: Dict[str, concurrent.futures.Future] = {}
        self._waiters: Dict[str, int] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _key(photo_id: Any) -> str:
        return str(photo_id)

    def future_for(self, photo_id: Any) -> concurrent.futures.Future:
        key = self._key(photo_id)
        with self._lock:
            future = self._futures.get(key)
            if future is None:
                future = concurrent.futures.Future()
                self._futures[key] = future

        # Registered before the lookup so a concurrent resolve() cannot be missed.
        if self._status_lookup is not None:
            photo = self._status_lookup(photo_id)
            if photo:
                status = parse_status(photo.get("analysis_status"))
                if status.is_terminal:
                    self.resolve(photo_id, status, photo.get("error_message"))
        return future

    def resolve(self, photo_id: Any, status: Any, error: Optional[str] = None) -> None:
        status = parse_status(status)
        if not status.is_terminal:
            return
        with self._lock:
            future = self._futures.pop(self._key(photo_id), None)
        if future is not None and not future.done():
            future.set_result(CompletionSignal(photo_id, status.value, error))
            self._logger.debug("[Notifier] Photo %s resolved as %s", photo_id, status.value)

    def cancel(self, photo_id: Any) -> bool:
        with self._lock:
            future = self._futures.pop(self._key(photo_id), None)
        if future is None:
            return False
        return future.cancel()

    def wait(self, photo_id: Any, timeout: float) -> CompletionSignal:
        key = self._key(photo_id)
        with self._lock:
            self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            future = self.future_for(photo_id)
            return future.result(timeout=max(0.0, float(timeout)))
        except concurrent.futures.TimeoutError:
            self._logger.info("[Notifier] Wait for photo %s timed out after %.1fs", photo_id, timeout)
        except concurrent.futures.CancelledError:
            self._logger.info("[Notifier] Wait for photo %s cancelled", photo_id)
        finally:
            self._release(key)
        return CompletionSignal(photo_id, INDETERMINATE)

    def _release(self, key: str) -> None:
        """Drop the future once its last waiter has gone."""
        with self._lock:
            remaining = self._waiters.get(key, 1) - 1
            if remaining > 0:
                self._waiters[key] = remaining
                return
            self._waiters.pop(key, None)
            future = self._futures.get(key)
            if future is not None and not future.done():
                del self._futures[key]

    def pending_count(self) -> int:
        with self._lock:
            return len(self._futures)


__all__ = ["CompletionNotifier", "CompletionSignal"]
