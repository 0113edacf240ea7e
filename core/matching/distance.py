"""Embedding helpers and the Euclidean distance used for face matching.

Descriptors produced by the dlib/face_recognition model are trained so that
two images of the same person lie close together under L2 distance; a
distance below ~0.6 is the conventional "same identity" cut-off.
"""
from __future__ import annotations

from typing import Any, Sequence, Union

import numpy as np

Embedding = np.ndarray
EmbeddingLike = Union[np.ndarray, Sequence[float]]


class LengthMismatchError(ValueError):
    """Raised when two embeddings of different dimensionality are compared."""

    def __init__(self, left: int, right: int) -> None:
        super().__init__(f"Embedding length mismatch: {left} != {right}")
        self.left = left
        self.right = right


def as_embedding(value: Any) -> Embedding:
    """Convert a JSON list / array into a flat float64 vector.

    Raises:
        ValueError: value is empty, not one-dimensional, not numeric, or
            contains NaN/inf.
    """
    if value is None:
        raise ValueError("Embedding is missing")
    try:
        vector = np.asarray(value, dtype=np.float64)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Embedding is not numeric: {exc}") from exc
    if vector.ndim != 1:
        raise ValueError(f"Embedding must be one-dimensional, got shape {vector.shape}")
    if vector.size == 0:
        raise ValueError("Embedding is empty")
    if not np.all(np.isfinite(vector)):
        raise ValueError("Embedding contains non-finite values")
    return vector


def distance(a: EmbeddingLike, b: EmbeddingLike) -> float:
    """L2 distance between two equal-length embeddings; smaller is more similar."""
    left = np.asarray(a, dtype=np.float64).ravel()
    right = np.asarray(b, dtype=np.float64).ravel()
    if left.shape[0] != right.shape[0]:
        raise LengthMismatchError(left.shape[0], right.shape[0])
    return float(np.linalg.norm(left - right))


__all__ = [
    "Embedding",
    "EmbeddingLike",
    "LengthMismatchError",
    "as_embedding",
    "distance",
]
