"""Photo analysis lifecycle: pending -> processing -> completed | failed."""
from __future__ import annotations

from enum import Enum
from typing import Any, Dict, FrozenSet


class PhotoStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES: FrozenSet[PhotoStatus] = frozenset({PhotoStatus.COMPLETED, PhotoStatus.FAILED})

# Result reported to a waiter whose timeout elapsed; never stored on a photo.
INDETERMINATE = "indeterminate"

_TRANSITIONS: Dict[PhotoStatus, FrozenSet[PhotoStatus]] = {
    PhotoStatus.PENDING: frozenset({PhotoStatus.PROCESSING}),
    PhotoStatus.PROCESSING: frozenset({PhotoStatus.COMPLETED, PhotoStatus.FAILED}),
    PhotoStatus.COMPLETED: frozenset(),
    PhotoStatus.FAILED: frozenset(),
}


class UpstreamFailure(RuntimeError):
    """A collaborator (store, detector, persistence) failed during a run."""


class StoreError(UpstreamFailure):
    """The embedding store or the attendance database is unavailable."""


class PhotoNotFoundError(LookupError):
    def __init__(self, photo_id: Any) -> None:
        super().__init__(f"Photo {photo_id} not found")
        self.photo_id = photo_id


class InvalidTransitionError(RuntimeError):
    def __init__(self, photo_id: Any, current: Any, target: Any) -> None:
        current_value = getattr(current, "value", current)
        target_value = getattr(target, "value", target)
        super().__init__(
            f"Photo {photo_id} cannot move from {current_value} to {target_value}"
        )
        self.photo_id = photo_id
        self.current = current
        self.target = target


def parse_status(value: Any) -> PhotoStatus:
    if isinstance(value, PhotoStatus):
        return value
    try:
        return PhotoStatus(str(value or PhotoStatus.PENDING.value).strip().lower())
    except ValueError as exc:
        raise ValueError(f"Unknown analysis status: {value!r}") from exc


def can_transition(current: PhotoStatus, target: PhotoStatus) -> bool:
    return target in _TRANSITIONS[current]


def ensure_transition(photo_id: Any, current: Any, target: Any) -> PhotoStatus:
    """Validate a status change and return the target status."""
    current_status = parse_status(current)
    target_status = parse_status(target)
    if not can_transition(current_status, target_status):
        raise InvalidTransitionError(photo_id, current_status, target_status)
    return target_status


__all__ = [
    "INDETERMINATE",
    "InvalidTransitionError",
    "PhotoNotFoundError",
    "PhotoStatus",
    "StoreError",
    "TERMINAL_STATUSES",
    "UpstreamFailure",
    "can_transition",
    "ensure_transition",
    "parse_status",
]
