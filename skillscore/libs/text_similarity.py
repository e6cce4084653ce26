"""Edit-distance string similarity used to reconcile free-form labels."""

from typing import Callable, List, Optional, Sequence, Tuple, TypeVar

T = TypeVar("T")

# Effective similarity granted when one label contains the other,
# e.g. "Clarity of the Response" vs "Clarity".
CONTAINMENT_SIMILARITY = 0.85


def _normalize(text: str) -> str:
    return text.lower().strip()


def levenshtein_distance(a: str, b: str) -> int:
    """Classic dynamic-programming edit distance (insert, delete, substitute)."""
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            if char_a == char_b:
                current.append(previous[j - 1])
            else:
                current.append(min(previous[j - 1], current[j - 1], previous[j]) + 1)
        previous = current
    return previous[-1]


def similarity(a: str, b: str) -> float:
    """
    Case-insensitive, trimmed edit-distance similarity in [0, 1].

    Identical strings (after normalization) and two empty strings score 1.
    """
    norm_a = _normalize(a)
    norm_b = _normalize(b)
    if norm_a == norm_b:
        return 1.0

    max_length = max(len(norm_a), len(norm_b))
    if max_length == 0:
        return 1.0
    return 1.0 - levenshtein_distance(norm_a, norm_b) / max_length


def effective_similarity(a: str, b: str) -> float:
    """Edit similarity with the containment boost applied."""
    base = similarity(a, b)
    norm_a = _normalize(a)
    norm_b = _normalize(b)
    if norm_a and norm_b and (norm_a in norm_b or norm_b in norm_a):
        return max(base, CONTAINMENT_SIMILARITY)
    return base


def find_best_match(
    label: str,
    pool: Sequence[T],
    threshold: float,
    key: Callable[[T], str] = str,
) -> Tuple[Optional[T], float]:
    """
    Find the pool entry most similar to ``label``.

    Returns (match, best_similarity); match is None when the best
    similarity does not clear ``threshold``.
    """
    best_match: Optional[T] = None
    best_similarity = 0.0

    for entry in pool:
        score = effective_similarity(label, key(entry))
        if score > best_similarity:
            best_similarity = score
            best_match = entry

    if best_similarity >= threshold:
        return best_match, best_similarity
    return None, best_similarity


def rank_matches(
    labels: Sequence[str],
    pool: Sequence[T],
    key: Callable[[T], str] = str,
) -> List[Tuple[int, int, float]]:
    """
    Score every (label, pool entry) pair.

    Returns (label_index, pool_index, effective_similarity) tuples sorted by
    descending similarity; ties keep label order, then pool order.
    """
    pairs = []
    for label_idx, label in enumerate(labels):
        for pool_idx, entry in enumerate(pool):
            pairs.append((label_idx, pool_idx, effective_similarity(label, key(entry))))
    pairs.sort(key=lambda p: (-p[2], p[0], p[1]))
    return pairs
