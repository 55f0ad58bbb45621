"""Cosine similarity scoring and top-k ranking."""

import math
from collections.abc import Iterable
from typing import TypeVar

T = TypeVar("T")


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Normalized dot product.

    Returns 0.0 for mismatched lengths, empty vectors, or zero-norm vectors
    instead of raising.
    """
    if not a or not b or len(a) != len(b):
        return 0.0
    dot = sum(x * y for x, y in zip(a, b, strict=True))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    divisor = norm_a * norm_b
    if divisor == 0:
        return 0.0
    return dot / divisor


def rank_similar(
    target: list[float],
    candidates: Iterable[tuple[T, list[float]]],
    top_k: int,
) -> list[tuple[T, float]]:
    """Score candidates against ``target`` and return the best ``top_k``, highest first.

    The sort is stable, so equal scores keep candidate order.
    """
    if top_k <= 0:
        return []
    scored = [(item, cosine_similarity(target, vector)) for item, vector in candidates]
    scored.sort(key=lambda pair: pair[1], reverse=True)
    return scored[:top_k]
