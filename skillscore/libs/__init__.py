"""Shared building blocks: configuration, vector math, string similarity and caches."""

from .cache import BoundedCache, CachePolicy, EmbeddingCache, pair_key
from .text_similarity import find_best_match, levenshtein_distance, rank_matches, similarity
from .vector_math import clamp, clamped_similarity, cosine_similarity, population_std_dev, round_half_up

__all__ = [
    'BoundedCache',
    'CachePolicy',
    'EmbeddingCache',
    'pair_key',
    'find_best_match',
    'levenshtein_distance',
    'rank_matches',
    'similarity',
    'clamp',
    'clamped_similarity',
    'cosine_similarity',
    'population_std_dev',
    'round_half_up',
]
