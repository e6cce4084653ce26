"""Reference-pool matching with a cross-exercise fallback, plus bank maintenance."""

import dataclasses
import logging
import threading
from collections import Counter
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence

from pydantic import ValidationError

from skillscore.libs.config_loader import ConfigType, policy_from_config
from skillscore.libs.vector_math import clamp, clamped_similarity, round_half_up
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
from .persistence import ReferencePersistence

LOG = logging.getLogger(__name__)


@dataclass(frozen=True)
class CrossExercisePolicy:
    """Settings for borrowing references from exercises in the same skill category."""

    enabled: bool = True
    # Fallback runs only when the direct pool is smaller than this
    min_direct_references: int = 3
    max_candidates: int = 15
    similarity_penalty: float = 0.10
    weight_multiplier: float = 0.7
    min_similarity: float = 0.60
    prefer_same_difficulty: bool = True
    same_difficulty_bonus: float = 0.05


@dataclass(frozen=True)
class ReferencePolicy:
    min_score: float = 80
    max_references: int = 10
    match_similarity: float = 0.70
    duplicate_similarity: float = 0.95
    base_weight: float = 0.10
    bonus_weight_per_verified: float = 0.01
    max_bonus_weight: float = 0.05
    medium_pool_size: int = 5
    medium_pool_bonus: float = 0.01
    large_pool_size: int = 10
    large_pool_bonus: float = 0.02
    max_weight: float = 0.20
    well_seeded_count: int = 5
    bootstrap_min_score: float = 70
    bootstrap_match_similarity: float = 0.65
    cross_exercise: CrossExercisePolicy = field(default_factory=CrossExercisePolicy)

    @classmethod
    def from_config(cls, configs: Optional[ConfigType]) -> "ReferencePolicy":
        return policy_from_config(cls, configs, "scoring.references")

    def bootstrap(self) -> "ReferencePolicy":
        """Relaxed thresholds for exercises whose bank is still being built."""
        return dataclasses.replace(
            self,
            min_score=self.bootstrap_min_score,
            match_similarity=self.bootstrap_match_similarity,
        )


class DirectPoolStrategy:
    """References written for the exercise itself, at full weight."""

    name = 'direct'
    weight_multiplier = 1.0

    def __init__(self, policy: ReferencePolicy):
        self.policy = policy

    def applies(self, pool_size: int, skill_category: Optional[str]) -> bool:
        return True

    def fetch(self, persistence: ReferencePersistence, exercise_id: str,
              skill_category: Optional[str]) -> List[ReferenceAnswer]:
        return persistence.find_by_exercise(
            exercise_id, ReferenceFilters(min_score=self.policy.min_score, active_only=True)
        )

    def score(self, candidates: Sequence[ReferenceAnswer], embedding: Sequence[float],
              difficulty: Optional[str], limit: int) -> List[ScoredReference]:
        scored = []
        for ref in candidates:
            if not ref.embedding:
                continue
            sim = clamped_similarity(embedding, ref.embedding)
            scored.append(ScoredReference(
                id=ref.id,
                exercise_id=ref.exercise_id,
                score=ref.score,
                similarity=sim,
                adjusted_similarity=sim,
                weight_multiplier=self.weight_multiplier,
                verified=ref.verified,
                source_kind=ref.source_kind,
                difficulty=ref.difficulty,
            ))
        scored.sort(key=lambda r: r.adjusted_similarity, reverse=True)
        return scored[:limit]


class CrossExercisePoolStrategy:
    """
    References from other exercises in the same skill category.

    Similarity is penalized for the change of context, nudged up for a
    matching difficulty, clamped, then held to a stricter minimum. Survivors
    carry a reduced weight in the pool aggregate.
    """

    name = 'cross_exercise'

    def __init__(self, policy: ReferencePolicy):
        self.policy = policy
        self.cross = policy.cross_exercise
        self.weight_multiplier = self.cross.weight_multiplier

    def applies(self, pool_size: int, skill_category: Optional[str]) -> bool:
        return bool(self.cross.enabled and skill_category and pool_size < self.cross.min_direct_references)

    def fetch(self, persistence: ReferencePersistence, exercise_id: str,
              skill_category: Optional[str]) -> List[ReferenceAnswer]:
        return persistence.find_by_exercise(None, ReferenceFilters(
            skill_category=skill_category,
            exclude_exercise_id=exercise_id,
            min_score=self.policy.min_score,
            active_only=True,
        ))

    def score(self, candidates: Sequence[ReferenceAnswer], embedding: Sequence[float],
              difficulty: Optional[str], limit: int) -> List[ScoredReference]:
        scored = []
        for ref in candidates:
            if not ref.embedding:
                continue
            raw = clamped_similarity(embedding, ref.embedding)
            adjusted = raw - self.cross.similarity_penalty
            if self.cross.prefer_same_difficulty and difficulty and ref.difficulty == difficulty:
                adjusted += self.cross.same_difficulty_bonus
            adjusted = clamp(adjusted, 0.0, 1.0)
            if adjusted < self.cross.min_similarity:
                continue
            scored.append(ScoredReference(
                id=ref.id,
                exercise_id=ref.exercise_id,
                score=ref.score,
                similarity=raw,
                adjusted_similarity=adjusted,
                weight_multiplier=self.weight_multiplier,
                is_cross_exercise=True,
                verified=ref.verified,
                source_kind=ref.source_kind,
                difficulty=ref.difficulty,
            ))
        scored.sort(key=lambda r: r.adjusted_similarity, reverse=True)
        return scored[:min(limit, self.cross.max_candidates)]


def summarize_pool(references: Sequence[ScoredReference], policy: ReferencePolicy) -> PoolMatch:
    """
    Aggregate statistics over an already resolved pool.

    An empty pool is "no evidence, no opinion": neutral percentile 50 and
    every similarity and weight field zero.
    """
    if not references:
        return PoolMatch()

    similarities = [r.adjusted_similarity for r in references]
    average = sum(similarities) / len(similarities)
    best = max(references, key=lambda r: r.adjusted_similarity)
    good = sum(1 for s in similarities if s >= policy.match_similarity)

    total_weight = sum(r.adjusted_similarity * r.weight_multiplier for r in references)
    weighted_score = 0.0
    if total_weight > 0:
        weighted_score = sum(r.adjusted_similarity * r.weight_multiplier * r.score
                             for r in references) / total_weight

    percentile = round_half_up(50 * average + 30 * best.adjusted_similarity + 20 * good / len(references))

    return PoolMatch(
        references=list(references),
        average_similarity=average,
        best_match_similarity=best.adjusted_similarity,
        best_match_score=best.score,
        good_match_count=good,
        weighted_score=weighted_score,
        percentile_estimate=int(clamp(percentile, 1, 99)),
    )


def resolve_pool(direct: Sequence[ScoredReference], cross: Sequence[ScoredReference],
                 policy: ReferencePolicy) -> PoolMatch:
    """Merge both tiers, sort by adjusted similarity, cap at the pool size and summarize."""
    combined = sorted(list(direct) + list(cross), key=lambda r: r.adjusted_similarity, reverse=True)
    combined = combined[:policy.max_references]

    pool = summarize_pool(combined, policy)
    source_exercises = []
    for ref in cross:
        if ref.exercise_id not in source_exercises:
            source_exercises.append(ref.exercise_id)

    pool.total_from_exercise = len(direct)
    pool.total_from_cross_exercise = len(cross)
    pool.source_exercises = source_exercises
    pool.used_cross_exercise_fallback = len(cross) > 0
    pool.weight = calculate_multi_reference_weight(pool_stats(combined), policy)
    return pool


def pool_stats(references: Sequence[ScoredReference]) -> ReferenceStats:
    if not references:
        return ReferenceStats()
    scores = [r.score for r in references]
    return ReferenceStats(
        total_references=len(references),
        verified_count=sum(1 for r in references if r.verified),
        avg_score=sum(scores) / len(scores),
        min_score=min(scores),
        max_score=max(scores),
        counts_by_source=dict(Counter(r.source_kind for r in references)),
    )


def calculate_multi_reference_weight(stats: Optional[ReferenceStats],
                                     policy: Optional[ReferencePolicy] = None) -> float:
    """Ensemble weight for the pool signal: grows with verified and total references, capped."""
    policy = policy or ReferencePolicy()
    if stats is None or stats.total_references == 0:
        return 0.0

    weight = policy.base_weight
    weight += min(policy.max_bonus_weight, stats.verified_count * policy.bonus_weight_per_verified)
    if stats.total_references >= policy.large_pool_size:
        weight += policy.large_pool_bonus
    elif stats.total_references >= policy.medium_pool_size:
        weight += policy.medium_pool_bonus
    return min(policy.max_weight, weight)


def alignment_message(pool: PoolMatch) -> str:
    """One-line reading of how the submission lines up with proven answers."""
    if not pool.references:
        return ''
    if pool.average_similarity >= 0.85:
        return 'Your approach aligns very well with proven high-scoring solutions.'
    if pool.average_similarity >= 0.75:
        return 'Your approach is solidly aligned with successful submissions.'
    if pool.average_similarity >= 0.65:
        return 'Your approach shows some alignment with top answers, with room to improve.'
    return 'Your approach differs from most high-scoring submissions. Review the patterns that work well.'


class ReferenceMatcher:
    """Query and maintain the reference bank through an injected persistence collaborator."""

    def __init__(self, persistence: ReferencePersistence, policy: Optional[ReferencePolicy] = None):
        self.persistence = persistence
        self.policy = policy or ReferencePolicy()
        # Guards the duplicate check and insert as one step
        self._write_lock = threading.Lock()

    def strategies(self, policy: ReferencePolicy) -> List:
        return [DirectPoolStrategy(policy), CrossExercisePoolStrategy(policy)]

    def match_references(
        self,
        exercise_id: str,
        embedding: Optional[Sequence[float]],
        skill_category: Optional[str] = None,
        difficulty: Optional[str] = None,
        bootstrap: bool = False,
    ) -> PoolMatch:
        """
        Resolve the comparison pool for a submission embedding.

        Strategies run in order; each later tier runs only while its gate
        says the evidence so far is insufficient. A failing fetch is logged,
        recorded on the result, and treated as an empty tier.
        """
        policy = self.policy.bootstrap() if bootstrap else self.policy
        if not embedding:
            return PoolMatch()

        tiers = {}
        errors = []
        pool_size = 0
        for strategy in self.strategies(policy):
            if not strategy.applies(pool_size, skill_category):
                continue
            try:
                candidates = strategy.fetch(self.persistence, exercise_id, skill_category)
            except Exception as e:
                LOG.warning(f"Reference lookup ({strategy.name}) failed for {exercise_id}: {e}")
                errors.append(f"{strategy.name}: {e}")
                candidates = []
            scored = strategy.score(candidates, embedding, difficulty, policy.max_references - pool_size)
            tiers[strategy.name] = scored
            pool_size += len(scored)

        cross = tiers.get(CrossExercisePoolStrategy.name, [])
        if cross:
            LOG.info(f"Exercise {exercise_id} used {len(cross)} cross-exercise references "
                     f"from skill category {skill_category!r}")

        pool = resolve_pool(tiers.get(DirectPoolStrategy.name, []), cross, policy)
        if errors:
            pool.error = '; '.join(errors)
        return pool

    def add_reference_answer(self, reference: ReferenceAnswer, bootstrap: bool = False) -> AddReferenceResult:
        """Store a reference if it clears the quality bar and is not a near-duplicate."""
        policy = self.policy.bootstrap() if bootstrap else self.policy
        if reference.score < policy.min_score:
            return AddReferenceResult(
                added=False, reason=f"Score {reference.score:g} is below threshold {policy.min_score:g}"
            )
        if not reference.embedding:
            return AddReferenceResult(added=False, reason="Reference has no embedding")

        with self._write_lock:
            try:
                existing = self.persistence.find_by_exercise(
                    reference.exercise_id, ReferenceFilters(active_only=True)
                )
                for other in existing:
                    if other.embedding and \
                            clamped_similarity(reference.embedding, other.embedding) > policy.duplicate_similarity:
                        return AddReferenceResult(
                            added=False, reason=f"Too similar to existing reference {other.id}"
                        )
                ref_id = self.persistence.insert(reference)
            except Exception as e:
                LOG.warning(f"Could not store reference for {reference.exercise_id}: {e}")
                return AddReferenceResult(added=False, reason=str(e))

        LOG.info(f"Added {reference.source_kind} reference {ref_id} for exercise {reference.exercise_id}")
        return AddReferenceResult(added=True, id=ref_id)

    def reference_stats(self, exercise_id: str) -> ReferenceStats:
        try:
            refs = self.persistence.find_by_exercise(exercise_id, ReferenceFilters(active_only=True))
        except Exception as e:
            LOG.warning(f"Could not load reference stats for {exercise_id}: {e}")
            return ReferenceStats()
        if not refs:
            return ReferenceStats()
        scores = [r.score for r in refs]
        return ReferenceStats(
            total_references=len(refs),
            verified_count=sum(1 for r in refs if r.verified),
            avg_score=sum(scores) / len(scores),
            min_score=min(scores),
            max_score=max(scores),
            counts_by_source=dict(Counter(r.source_kind for r in refs)),
        )

    def promote_to_verified(self, reference_id: str, promoted_by: Optional[str] = None) -> bool:
        """Mark a reference verified and upgrade it to curated."""
        try:
            ok = self.persistence.mark_verified(reference_id, source_kind='curated')
        except Exception as e:
            LOG.warning(f"Could not promote reference {reference_id}: {e}")
            return False
        if ok:
            suffix = f" by {promoted_by}" if promoted_by else ""
            LOG.info(f"Reference {reference_id} promoted to verified{suffix}")
        return ok

    def deactivate_reference(self, reference_id: str) -> bool:
        try:
            return self.persistence.deactivate(reference_id)
        except Exception as e:
            LOG.warning(f"Could not deactivate reference {reference_id}: {e}")
            return False

    def seed_reference_answer(self, seed: SeedReferenceInput, embedding: Optional[Sequence[float]] = None,
                              verify_immediately: bool = True) -> SeedResult:
        """Insert a curated seed answer, optionally marking it verified straight away."""
        try:
            reference = ReferenceAnswer(
                exercise_id=seed.exercise_id,
                submission_text=seed.submission_text,
                score=seed.score,
                embedding=list(embedding if embedding is not None else seed.embedding),
                source_kind='seed',
                skill_category=seed.skill_category,
                difficulty=seed.difficulty,
            )
        except ValidationError as e:
            return SeedResult(exercise_id=seed.exercise_id, success=False, error=str(e))

        result = self.add_reference_answer(reference)
        if not result.added:
            return SeedResult(exercise_id=seed.exercise_id, success=False,
                              error=result.reason or 'Failed to add reference')

        if verify_immediately:
            try:
                self.persistence.mark_verified(result.id)
            except Exception as e:
                LOG.warning(f"Seeded reference {result.id} but could not verify it: {e}")

        return SeedResult(exercise_id=seed.exercise_id, success=True, reference_id=result.id)

    def seed_many(self, seeds: Iterable[SeedReferenceInput], verify_immediately: bool = True) -> SeedBatchResult:
        results = [self.seed_reference_answer(seed, verify_immediately=verify_immediately) for seed in seeds]
        succeeded = sum(1 for r in results if r.success)
        return SeedBatchResult(
            total=len(results),
            succeeded=succeeded,
            failed=len(results) - succeeded,
            results=results,
        )

    def seeding_status(self, exercise_ids: Sequence[str]) -> SeedingStatus:
        """Bucket exercises by how many active references they have."""
        try:
            refs = self.persistence.find_by_exercise(None, ReferenceFilters(active_only=True))
        except Exception as e:
            LOG.warning(f"Could not load seeding status: {e}")
            return SeedingStatus(not_seeded=list(exercise_ids))

        counts = Counter(r.exercise_id for r in refs)
        status = SeedingStatus()
        for exercise_id in exercise_ids:
            count = counts.get(exercise_id, 0)
            if count >= self.policy.well_seeded_count:
                status.well_seeded.append(exercise_id)
            elif count > 0:
                status.partially_seeded.append(exercise_id)
            else:
                status.not_seeded.append(exercise_id)
        return status

    def exercises_needing_seeding(self, exercise_ids: Sequence[str]) -> List[str]:
        return self.seeding_status(exercise_ids).not_seeded
