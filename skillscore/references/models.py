"""Data models for the reference answer bank."""

from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field

SourceKind = Literal['learner', 'curated', 'seed']


class ReferenceAnswer(BaseModel):
    """A previously scored, high-quality submission kept for comparison."""
    id: Optional[str] = Field(default=None, description="Assigned by the persistence layer on insert")
    exercise_id: str
    submission_text: str
    score: float = Field(ge=0, le=100)
    embedding: List[float] = Field(default_factory=list)
    source_kind: SourceKind = 'learner'
    verified: bool = False
    active: bool = True
    skill_category: Optional[str] = None
    difficulty: Optional[str] = None
    created_at: str = Field(default_factory=lambda: datetime.now().isoformat())


class ReferenceFilters(BaseModel):
    """Query filters understood by every ReferencePersistence implementation."""
    skill_category: Optional[str] = None
    exclude_exercise_id: Optional[str] = None
    min_score: Optional[float] = None
    active_only: bool = True
    limit: Optional[int] = None


class ScoredReference(BaseModel):
    """A pool candidate with its similarity to the submission."""
    id: Optional[str] = None
    exercise_id: str = Field(description="Exercise the reference was originally written for")
    score: float
    similarity: float = Field(description="Raw cosine similarity, clamped to [0, 1]")
    adjusted_similarity: float = Field(description="Similarity after cross-exercise adjustments")
    weight_multiplier: float = 1.0
    is_cross_exercise: bool = False
    verified: bool = False
    source_kind: SourceKind = 'learner'
    difficulty: Optional[str] = None


class PoolMatch(BaseModel):
    """Resolved comparison pool and the metadata derived from it."""
    references: List[ScoredReference] = Field(default_factory=list)
    average_similarity: float = 0.0
    best_match_similarity: float = 0.0
    best_match_score: float = 0.0
    good_match_count: int = 0
    weighted_score: float = 0.0
    percentile_estimate: int = 50
    total_from_exercise: int = 0
    total_from_cross_exercise: int = 0
    source_exercises: List[str] = Field(
        default_factory=list, description="Other exercises that contributed cross-exercise references"
    )
    used_cross_exercise_fallback: bool = False
    weight: float = Field(default=0.0, description="Ensemble weight for the pool signal")
    error: Optional[str] = Field(default=None, description="Persistence failure, if any")

    @property
    def pool_signal(self) -> Optional[float]:
        """Pool signal on a 0-100 scale: similarity-weighted reference score scaled by average similarity."""
        if not self.references:
            return None
        return max(0.0, min(100.0, self.weighted_score * self.average_similarity))


class ReferenceStats(BaseModel):
    total_references: int = 0
    verified_count: int = 0
    avg_score: float = 0.0
    min_score: float = 0.0
    max_score: float = 0.0
    counts_by_source: Dict[str, int] = Field(default_factory=dict)


class AddReferenceResult(BaseModel):
    added: bool
    id: Optional[str] = None
    reason: Optional[str] = None


class SeedReferenceInput(BaseModel):
    """Curated answer used to bootstrap an exercise's reference pool."""
    exercise_id: str
    submission_text: str
    score: float
    embedding: List[float] = Field(default_factory=list)
    skill_category: Optional[str] = None
    difficulty: Optional[str] = None
    notes: Optional[str] = None


class SeedResult(BaseModel):
    exercise_id: str
    success: bool
    reference_id: Optional[str] = None
    error: Optional[str] = None


class SeedingStatus(BaseModel):
    well_seeded: List[str] = Field(default_factory=list, description="5+ active references")
    partially_seeded: List[str] = Field(default_factory=list, description="1-4 active references")
    not_seeded: List[str] = Field(default_factory=list)

    @property
    def seeded(self) -> int:
        return len(self.well_seeded) + len(self.partially_seeded)

    @property
    def needs_seeding(self) -> int:
        return len(self.not_seeded)


class SeedBatchResult(BaseModel):
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    results: List[SeedResult] = Field(default_factory=list)
