"""Reference answer bank: pool matching, cross-exercise fallback and seeding."""

from .matcher import (
    CrossExercisePolicy,
    CrossExercisePoolStrategy,
    DirectPoolStrategy,
    ReferenceMatcher,
    ReferencePolicy,
    alignment_message,
    calculate_multi_reference_weight,
    resolve_pool,
    summarize_pool,
)
from .models import (
    AddReferenceResult,
    PoolMatch,
    ReferenceAnswer,
    ReferenceFilters,
    ReferenceStats,
    ScoredReference,
    SeedBatchResult,
    SeedingStatus,
    SeedReferenceInput,
    SeedResult,
)
from .persistence import InMemoryReferenceStore, ReferencePersistence, ReferencePersistenceError

__all__ = [
    'CrossExercisePolicy',
    'CrossExercisePoolStrategy',
    'DirectPoolStrategy',
    'ReferenceMatcher',
    'ReferencePolicy',
    'alignment_message',
    'calculate_multi_reference_weight',
    'resolve_pool',
    'summarize_pool',
    'AddReferenceResult',
    'PoolMatch',
    'ReferenceAnswer',
    'ReferenceFilters',
    'ReferenceStats',
    'ScoredReference',
    'SeedBatchResult',
    'SeedingStatus',
    'SeedReferenceInput',
    'SeedResult',
    'InMemoryReferenceStore',
    'ReferencePersistence',
    'ReferencePersistenceError',
]
