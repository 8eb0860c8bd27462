"""
scoring/vector_utils.py
-----------------------
Vector math for embedding comparison.
Used by the image encoder (normalize) and the scoring task (cosine_similarity).
"""

import math

import numpy as np

from game_core.errors import LengthMismatchError

CHUNK_SIZE = 128


# === CORE MATH ===
def normalize(vec: np.ndarray) -> np.ndarray:
    """L2-normalize a vector (safe for zero-length)."""
    vec = np.asarray(vec, dtype=np.float32)
    norm = np.linalg.norm(vec)
    return vec / norm if norm > 0 else vec


def _ordered_sum(values: np.ndarray) -> float:
    # add.accumulate walks strictly left to right; np.sum would sum pairwise
    return float(np.add.accumulate(values)[-1])


def cosine_similarity(a, b, chunk_size: int = CHUNK_SIZE) -> float:
    """
    Cosine similarity of two equal-length embeddings.

    Dot product and both squared norms are accumulated in float64 over
    fixed windows of `chunk_size` elements. Each window is summed left to
    right and window partials are added to the totals in window order, so
    the result depends only on the inputs and the chunk size.

    Returns 0.0 when either vector has zero norm (including empty vectors).
    Raises LengthMismatchError if the lengths differ.
    """
    a = np.asarray(a).reshape(-1)
    b = np.asarray(b).reshape(-1)
    if a.shape[0] != b.shape[0]:
        raise LengthMismatchError(a.shape[0], b.shape[0])
    if chunk_size < 1:
        raise ValueError(f"chunk_size must be >= 1, got {chunk_size}")

    dot = norm_a = norm_b = 0.0
    for start in range(0, a.shape[0], chunk_size):
        ca = a[start:start + chunk_size].astype(np.float64)
        cb = b[start:start + chunk_size].astype(np.float64)
        dot += _ordered_sum(ca * cb)
        norm_a += _ordered_sum(ca * ca)
        norm_b += _ordered_sum(cb * cb)

    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return dot / (math.sqrt(norm_a) * math.sqrt(norm_b))
