"""Vector and numeric helpers shared by every scoring component."""

import math
from typing import Iterable, Sequence

Vector = Sequence[float]


def cosine_similarity(vec_a: Vector, vec_b: Vector) -> float:
    """
    Raw cosine similarity between two equal-length vectors.

    Mismatched lengths, empty vectors and zero-magnitude vectors yield 0,
    which callers treat as "no evidence of similarity" rather than an error.
    """
    if not vec_a or not vec_b or len(vec_a) != len(vec_b):
        return 0.0

    dot_product = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for a, b in zip(vec_a, vec_b):
        dot_product += a * b
        norm_a += a * a
        norm_b += b * b

    magnitude = math.sqrt(norm_a) * math.sqrt(norm_b)
    if magnitude == 0 or math.isnan(magnitude):
        return 0.0
    result = dot_product / magnitude
    return 0.0 if math.isnan(result) else result


def clamped_similarity(vec_a: Vector, vec_b: Vector) -> float:
    """Cosine similarity clamped to [0, 1]; negative similarity carries no weight."""
    return clamp(cosine_similarity(vec_a, vec_b), 0.0, 1.0)


def clamp(value: float, low: float, high: float) -> float:
    """Clamp ``value`` to [low, high]. NaN maps to ``low``."""
    if value is None or math.isnan(value):
        return low
    return max(low, min(high, value))


def round_half_up(value: float) -> int:
    """Round halves away from zero for positives (2.5 -> 3), matching score display rules."""
    return int(math.floor(value + 0.5))


def population_std_dev(values: Iterable[float]) -> float:
    values = list(values)
    if not values:
        return 0.0
    mean = sum(values) / len(values)
    return math.sqrt(sum((v - mean) ** 2 for v in values) / len(values))
