"""Scoring pipeline: judgment, rubric, integrity, reference pool and ensemble."""

import logging
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field

from skillscore.libs.cache import CachePolicy, EmbeddingCache, EmbeddingProvider
from skillscore.libs.config_loader import ConfigType
from skillscore.libs.vector_math import clamped_similarity
from skillscore.references import AddReferenceResult, PoolMatch, ReferenceAnswer, ReferenceMatcher
from .catalog import ExerciseCatalog, ExerciseProfile
from .ensemble import EnsemblePolicy, combine_ensemble
from .integrity import IntegrityPolicy, detect_integrity
from .judgment_parser import parse_judgment
from .models import (
    BreakdownSummary,
    ConsistencyOverride,
    EnsembleResult,
    EnsembleSignals,
    IntegrityVerdict,
    Judgment,
    RubricValidationResult,
    SubmissionTiming,
)
from .rubric_validator import RubricValidationPolicy, reconcile_rubric, summarize_breakdown

LOG = logging.getLogger(__name__)


class UnknownExerciseError(KeyError):
    """Raised when a request names an exercise the catalog does not have."""


class ScoringRequest(BaseModel):
    exercise_id: str
    submission: str
    judgment: Union[str, Dict[str, Any], None] = Field(
        default=None, description="Raw judgment payload, JSON text or dict"
    )
    validator_score: Optional[float] = Field(default=None, description="Rule-based score, 0-100")
    submission_embedding: Optional[List[float]] = Field(
        default=None, description="Precomputed embedding; computed with the provider when absent"
    )
    duration_ms: Optional[float] = None
    override: Optional[ConsistencyOverride] = None


class ScoringOutcome(BaseModel):
    exercise_id: str
    final_score: int
    judgment: Optional[Judgment] = None
    parse_error: Optional[str] = None
    parse_warnings: List[str] = Field(default_factory=list)
    rubric: Optional[RubricValidationResult] = None
    breakdown_summary: Optional[BreakdownSummary] = None
    exemplar_similarity: Optional[float] = None
    integrity: IntegrityVerdict
    references: PoolMatch
    ensemble: EnsembleResult
    errors: List[str] = Field(default_factory=list, description="Collaborator failures that were tolerated")
    submission_embedding: Optional[List[float]] = Field(default=None, exclude=True)


class ScoringEngine:
    """
    Orchestrates one scoring request.

    Every collaborator is optional: without an embedding provider the
    similarity and reference signals are absent, without a matcher the
    reference pool is empty. The ensemble renormalizes over what is left.
    """

    def __init__(
        self,
        catalog: ExerciseCatalog,
        matcher: Optional[ReferenceMatcher] = None,
        embedding_provider: Optional[EmbeddingProvider] = None,
        embedding_cache: Optional[EmbeddingCache] = None,
        rubric_policy: Optional[RubricValidationPolicy] = None,
        integrity_policy: Optional[IntegrityPolicy] = None,
        ensemble_policy: Optional[EnsemblePolicy] = None,
    ):
        self.catalog = catalog
        self.matcher = matcher
        self.embedding_provider = embedding_provider
        self.embedding_cache = embedding_cache if embedding_cache is not None else EmbeddingCache()
        self.rubric_policy = rubric_policy or RubricValidationPolicy()
        self.integrity_policy = integrity_policy or IntegrityPolicy()
        self.ensemble_policy = ensemble_policy or EnsemblePolicy()

    @classmethod
    def from_config(cls, configs: Optional[ConfigType], catalog: ExerciseCatalog,
                    matcher: Optional[ReferenceMatcher] = None,
                    embedding_provider: Optional[EmbeddingProvider] = None) -> "ScoringEngine":
        cache_policy = CachePolicy.from_config(configs)
        return cls(
            catalog,
            matcher=matcher,
            embedding_provider=embedding_provider,
            embedding_cache=EmbeddingCache(cache_policy.embedding_max_entries),
            rubric_policy=RubricValidationPolicy.from_config(configs),
            integrity_policy=IntegrityPolicy.from_config(configs),
            ensemble_policy=EnsemblePolicy.from_config(configs),
        )

    def _exercise(self, exercise_id: str) -> ExerciseProfile:
        exercise = self.catalog.get_exercise(exercise_id)
        if exercise is None:
            raise UnknownExerciseError(exercise_id)
        return exercise

    def _submission_embedding(self, request: ScoringRequest, errors: List[str]) -> Optional[List[float]]:
        if request.submission_embedding:
            return list(request.submission_embedding)
        if self.embedding_provider is None:
            return None
        try:
            embedding = list(self.embedding_provider(request.submission))
        except Exception as e:
            LOG.warning(f"Could not embed submission for {request.exercise_id}: {e}")
            errors.append(f"submission embedding: {e}")
            return None
        return embedding or None

    def _exemplar_similarity(self, exercise: ExerciseProfile,
                             embedding: Optional[List[float]]) -> Optional[float]:
        if not exercise.exemplar or not embedding:
            return None
        if exercise.exemplar_embedding:
            return clamped_similarity(embedding, exercise.exemplar_embedding)
        if self.embedding_provider is None:
            return None
        exemplar_embedding = self.embedding_cache.get_embedding(
            exercise.exercise_id, exercise.exemplar, self.embedding_provider
        )
        if exemplar_embedding is None:
            return None
        return clamped_similarity(embedding, exemplar_embedding)

    def score(self, request: ScoringRequest) -> ScoringOutcome:
        """
        Score one submission.

        Raises:
            UnknownExerciseError: If the exercise is not in the catalog
        """
        exercise = self._exercise(request.exercise_id)
        errors: List[str] = []

        parsed = parse_judgment(request.judgment)
        if not parsed.success:
            LOG.warning(f"Malformed judgment for {exercise.exercise_id}: {parsed.error}")

        judgment_score = None
        rubric_result = None
        summary = None
        if parsed.judgment is not None:
            judgment_score = parsed.judgment.overall_score
            if exercise.rubric:
                rubric_result = reconcile_rubric(
                    parsed.judgment.criteria, exercise.rubric, judgment_score, self.rubric_policy
                )
                summary = summarize_breakdown(rubric_result.breakdown)
                if rubric_result.corrected_score is not None:
                    judgment_score = rubric_result.corrected_score

        embedding = self._submission_embedding(request, errors)
        exemplar_similarity = self._exemplar_similarity(exercise, embedding)

        timing = None
        if request.duration_ms is not None:
            timing = SubmissionTiming(duration_ms=request.duration_ms, min_expected_ms=exercise.min_expected_ms)
        integrity = detect_integrity(
            request.submission,
            exemplar=exercise.exemplar,
            embedding_similarity=exemplar_similarity or 0.0,
            timing=timing,
            policy=self.integrity_policy,
        )

        pool = PoolMatch()
        if self.matcher is not None and embedding:
            pool = self.matcher.match_references(
                exercise.exercise_id,
                embedding,
                skill_category=exercise.skill_category,
                difficulty=exercise.difficulty,
                bootstrap=exercise.is_new,
            )
            if pool.error:
                errors.append(f"reference lookup: {pool.error}")

        ensemble = combine_ensemble(
            EnsembleSignals(
                judgment_score=judgment_score,
                validator_score=request.validator_score,
                embedding_similarity=exemplar_similarity,
                has_exemplar=bool(exercise.exemplar),
                reference_score=pool.pool_signal,
                reference_weight=pool.weight,
            ),
            integrity=integrity,
            override=request.override,
            policy=self.ensemble_policy,
        )
        LOG.info(f"Scored {exercise.exercise_id}: {ensemble.final_score} "
                 f"(confidence {ensemble.confidence}, {ensemble.confidence_band})")

        return ScoringOutcome(
            exercise_id=exercise.exercise_id,
            final_score=ensemble.final_score,
            judgment=parsed.judgment,
            parse_error=parsed.error,
            parse_warnings=parsed.warnings,
            rubric=rubric_result,
            breakdown_summary=summary,
            exemplar_similarity=exemplar_similarity,
            integrity=integrity,
            references=pool,
            ensemble=ensemble,
            errors=errors,
            submission_embedding=embedding,
        )

    def retain_reference(self, request: ScoringRequest, outcome: ScoringOutcome) -> AddReferenceResult:
        """Offer a scored submission to the reference bank."""
        if self.matcher is None:
            return AddReferenceResult(added=False, reason="No reference matcher configured")
        if outcome.integrity.risk_level != 'low':
            return AddReferenceResult(added=False, reason=f"Integrity risk is {outcome.integrity.risk_level}")
        if not outcome.submission_embedding:
            return AddReferenceResult(added=False, reason="Submission has no embedding")

        exercise = self._exercise(request.exercise_id)
        return self.matcher.add_reference_answer(
            ReferenceAnswer(
                exercise_id=exercise.exercise_id,
                submission_text=request.submission,
                score=outcome.final_score,
                embedding=outcome.submission_embedding,
                source_kind='learner',
                skill_category=exercise.skill_category,
                difficulty=exercise.difficulty,
            ),
            bootstrap=exercise.is_new,
        )
