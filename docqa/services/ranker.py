"""Cosine-similarity ranking of stored chunk vectors against a query vector."""

import math
from dataclasses import dataclass
from typing import Any, Generic, List, Sequence, Tuple, TypeVar

import numpy as np

T = TypeVar("T")


@dataclass(frozen=True)
class RankedItem(Generic[T]):
    item: T
    score: float

    @property
    def degenerate(self) -> bool:
        return math.isnan(self.score)


def _to_vec(raw: Any) -> np.ndarray:
    # Older rows may carry {"v": [...]}
    if isinstance(raw, dict):
        raw = raw.get("v", [])
    if raw is None:
        raw = []
    return np.asarray(raw, dtype=np.float64).reshape(-1)


def vector_dim(raw: Any) -> int:
    return int(_to_vec(raw).size)


def cosine_similarity(a: Any, b: Any) -> float:
    """dot(a, b) / (|a| * |b|); NaN for zero-magnitude or mismatched vectors."""
    va, vb = _to_vec(a), _to_vec(b)
    if va.size == 0 or va.shape != vb.shape:
        return math.nan
    denom = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if denom == 0.0:
        return math.nan
    return float(np.dot(va, vb) / denom)


def rank(query_vector: Any, candidates: Sequence[Tuple[T, Any]], k: int) -> List[RankedItem[T]]:
    """Return at most ``k`` candidates ordered by descending cosine similarity.

    Equal scores keep their input order. Candidates whose score is undefined
    (zero vector, dimension mismatch) sort after every defined score.
    """
    if k <= 0 or not candidates:
        return []
    q = _to_vec(query_vector)
    scored = [RankedItem(item, cosine_similarity(q, vec)) for item, vec in candidates]
    # sorted() is stable, so ties fall back to input order
    scored = sorted(scored, key=lambda r: (1, 0.0) if r.degenerate else (0, -r.score))
    return scored[:k]
