"""Exercise-to-exercise similarity, relationship labels and progression insights."""

import logging
import re
import threading
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence

from skillscore.libs.cache import BoundedCache, CachePolicy, pair_key
from skillscore.libs.config_loader import ConfigType, policy_from_config
from skillscore.libs.vector_math import clamped_similarity, round_half_up
from .models import (
    ClusterAnalysis,
    ClusterProgress,
    ExerciseCluster,
    ExerciseEmbeddingRecord,
    ExerciseRecommendation,
    ExerciseSimilarity,
    SimilarExercise,
    SkillProgressionInsight,
)

LOG = logging.getLogger(__name__)

DIFFICULTY_TIERS = {'easy': 1, 'medium': 2, 'hard': 3}

SKILL_TAG_PATTERNS = {
    'boolean-operators': re.compile(r'\b(and|or|not|boolean)\b'),
    'linkedin': re.compile(r'\blinkedin\b'),
    'github': re.compile(r'\bgithub\b'),
    'x-ray': re.compile(r'\bx.?ray\b'),
    'outreach': re.compile(r'\b(outreach|message|email|cold)\b'),
    'diversity': re.compile(r'\b(diversity|dei|inclusion|equity)\b'),
    'persona': re.compile(r'\b(persona|profile|candidate)\b'),
    'negotiation': re.compile(r'\b(negotiat\w*|offer|salary|compensation)\b'),
    'sourcing': re.compile(r'\b(sourcing|source|talent)\b'),
    'screening': re.compile(r'\b(screen|resume|cv)\b'),
    'data': re.compile(r'\b(data|analytic|metric)\b'),
}

RECOMMENDATION_REASONS = {
    'prerequisite': 'Builds the foundation for this exercise',
    'advanced': 'A harder exercise in the same skill',
    'parallel': 'Same skill at the same level',
    'variation': 'Similar content in a different skill area',
    'related': 'Similar to the current exercise',
}


@dataclass(frozen=True)
class ClusteringPolicy:
    content_weight: float = 0.50
    skill_weight: float = 0.35
    difficulty_weight: float = 0.15
    same_skill_score: float = 1.0
    other_skill_score: float = 0.3
    same_tier_score: float = 1.0
    adjacent_tier_score: float = 0.7
    distant_tier_score: float = 0.4
    # Content similarity above which cross-skill exercises count as variations
    variation_content_threshold: float = 0.7
    min_similarity: float = 0.5
    mastery_score: float = 85
    proficient_score: float = 70
    min_attempts_for_decline: int = 3

    @classmethod
    def from_config(cls, configs: Optional[ConfigType]) -> "ClusteringPolicy":
        return policy_from_config(cls, configs, "scoring.clustering")


def difficulty_tier(difficulty: Optional[str]) -> int:
    """easy/medium/hard -> 1/2/3; anything else is treated as medium."""
    return DIFFICULTY_TIERS.get((difficulty or '').lower(), 2)


def compute_exercise_similarity(a: ExerciseEmbeddingRecord, b: ExerciseEmbeddingRecord,
                                policy: Optional[ClusteringPolicy] = None) -> ExerciseSimilarity:
    """Fixed weighted blend of content, skill-category and difficulty proximity."""
    policy = policy or ClusteringPolicy()

    content = 0.0
    if a.content_embedding and b.content_embedding:
        content = clamped_similarity(a.content_embedding, b.content_embedding)

    skill = policy.same_skill_score if a.skill_category == b.skill_category else policy.other_skill_score

    delta = abs(difficulty_tier(a.difficulty) - difficulty_tier(b.difficulty))
    if delta == 0:
        difficulty = policy.same_tier_score
    elif delta == 1:
        difficulty = policy.adjacent_tier_score
    else:
        difficulty = policy.distant_tier_score

    overall = (content * policy.content_weight
               + skill * policy.skill_weight
               + difficulty * policy.difficulty_weight)
    return ExerciseSimilarity(overall=overall, content=content, skill=skill, difficulty=difficulty)


def determine_relationship(a: ExerciseEmbeddingRecord, b: ExerciseEmbeddingRecord,
                           content_similarity: float,
                           policy: Optional[ClusteringPolicy] = None) -> str:
    """
    Label the pair (a, b).

    Within a skill category the label is a's role relative to b: an easier
    ``a`` is a prerequisite of ``b``, a harder one is advanced.
    """
    policy = policy or ClusteringPolicy()
    if a.skill_category == b.skill_category:
        tier_a, tier_b = difficulty_tier(a.difficulty), difficulty_tier(b.difficulty)
        if tier_a < tier_b:
            return 'prerequisite'
        if tier_a > tier_b:
            return 'advanced'
        return 'parallel'
    if content_similarity > policy.variation_content_threshold:
        return 'variation'
    return 'related'


def extract_skill_tags(title: str, description: str = "", task: str = "",
                       skill_category: Optional[str] = None) -> List[str]:
    """Skill category plus any tags whose keywords appear in the exercise text."""
    tags = [skill_category] if skill_category else []
    text = f"{title} {description} {task}".lower()
    for tag, pattern in SKILL_TAG_PATTERNS.items():
        if pattern.search(text) and tag not in tags:
            tags.append(tag)
    return tags


def generate_insights(current_score: float, related: Sequence[SimilarExercise],
                      progress: Optional[ClusterProgress],
                      policy: Optional[ClusteringPolicy] = None) -> List[SkillProgressionInsight]:
    """Human-readable progression notes for one scored attempt."""
    policy = policy or ClusteringPolicy()
    insights: List[SkillProgressionInsight] = []

    if current_score >= policy.mastery_score:
        insights.append(SkillProgressionInsight(
            type='mastery',
            title='Skill Mastery',
            message=f'Excellent! Your score of {current_score:g} shows strong mastery in this skill area.',
            related_exercises=[r.exercise_id for r in related[:3]],
            metrics={'current_score': current_score},
        ))

    if progress is not None:
        if progress.score_trend == 'improving':
            insights.append(SkillProgressionInsight(
                type='improvement',
                title='Skill Growth',
                message=(f"You're improving in {progress.primary_skill} exercises! Your average has "
                         f"increased by {round_half_up(progress.improvement_rate)}%."),
                metrics={
                    'improvement_percent': progress.improvement_rate,
                    'cluster_avg': progress.avg_score,
                },
            ))
        elif progress.score_trend == 'declining' and progress.exercises_played >= policy.min_attempts_for_decline:
            insights.append(SkillProgressionInsight(
                type='struggle',
                title='Area for Focus',
                message=(f'Your recent {progress.primary_skill} scores are lower than usual. '
                         'Consider reviewing fundamentals.'),
                metrics={
                    'cluster_avg': progress.avg_score,
                    'previous_score': progress.best_score,
                    'current_score': current_score,
                },
            ))

        if 0 < progress.completion_rate < 1:
            remaining = progress.total_exercises - progress.exercises_played
            insights.append(SkillProgressionInsight(
                type='recommendation',
                title='Cluster Progress',
                message=(f"You've completed {progress.exercises_played}/{progress.total_exercises} "
                         f"exercises in this skill cluster. {remaining} more to go!"),
                related_exercises=[r.exercise_id for r in related if r.skill_category == progress.primary_skill],
            ))

    prerequisites = [r.exercise_id for r in related if r.relationship == 'prerequisite']
    if prerequisites and current_score < policy.proficient_score:
        insights.append(SkillProgressionInsight(
            type='recommendation',
            title='Build Foundation First',
            message='Consider trying some easier related exercises to build your foundational skills.',
            related_exercises=prerequisites[:2],
        ))

    advanced = [r.exercise_id for r in related if r.relationship == 'advanced']
    if advanced and current_score >= policy.proficient_score:
        insights.append(SkillProgressionInsight(
            type='recommendation',
            title='Ready for More Challenge',
            message='Great performance! Try some more advanced exercises in this area.',
            related_exercises=advanced[:2],
        ))

    return insights


class SkillClusterAnalyzer:
    """
    Holds the exercise records and answers similarity questions about them.

    Pairwise similarities are memoized in an injected bounded cache keyed by
    the unordered exercise pair; replacing a record drops its pairs.
    """

    def __init__(self, records: Iterable[ExerciseEmbeddingRecord] = (),
                 policy: Optional[ClusteringPolicy] = None,
                 pair_cache: Optional[BoundedCache] = None):
        self.policy = policy or ClusteringPolicy()
        if pair_cache is None:
            pair_cache = BoundedCache(CachePolicy().similarity_max_entries, name="exercise-pairs")
        self.pair_cache = pair_cache
        self._lock = threading.Lock()
        self._records: Dict[str, ExerciseEmbeddingRecord] = {r.exercise_id: r for r in records}

    @classmethod
    def from_config(cls, configs: Optional[ConfigType],
                    records: Iterable[ExerciseEmbeddingRecord] = ()) -> "SkillClusterAnalyzer":
        cache_policy = CachePolicy.from_config(configs)
        return cls(
            records,
            policy=ClusteringPolicy.from_config(configs),
            pair_cache=BoundedCache(cache_policy.similarity_max_entries, name="exercise-pairs"),
        )

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def get_record(self, exercise_id: str) -> Optional[ExerciseEmbeddingRecord]:
        with self._lock:
            return self._records.get(exercise_id)

    def update_record(self, record: ExerciseEmbeddingRecord) -> int:
        """Add or replace a record. Returns the number of cached pairs dropped."""
        with self._lock:
            self._records[record.exercise_id] = record
        dropped = self.pair_cache.invalidate(lambda key: record.exercise_id in key)
        LOG.debug("Updated exercise %s, dropped %d cached pairs", record.exercise_id, dropped)
        return dropped

    def pair_similarity(self, a: ExerciseEmbeddingRecord, b: ExerciseEmbeddingRecord) -> ExerciseSimilarity:
        return self.pair_cache.get_or_compute(
            pair_key(a.exercise_id, b.exercise_id),
            lambda: compute_exercise_similarity(a, b, self.policy),
        )

    def find_similar_exercises(self, exercise_id: str, limit: int = 5,
                               min_similarity: Optional[float] = None,
                               exclude: Sequence[str] = ()) -> List[SimilarExercise]:
        source = self.get_record(exercise_id)
        if source is None:
            LOG.warning(f"No embedding record for exercise {exercise_id}")
            return []
        if min_similarity is None:
            min_similarity = self.policy.min_similarity

        with self._lock:
            others = [r for r in self._records.values()
                      if r.exercise_id != exercise_id and r.exercise_id not in exclude]

        similar = []
        for other in others:
            sim = self.pair_similarity(source, other)
            if sim.overall < min_similarity:
                continue
            similar.append(SimilarExercise(
                exercise_id=other.exercise_id,
                title=other.title,
                skill_category=other.skill_category,
                difficulty=other.difficulty,
                similarity=sim.overall,
                relationship=determine_relationship(other, source, sim.content, self.policy),
            ))
        similar.sort(key=lambda s: s.similarity, reverse=True)
        return similar[:limit]

    def recommend_exercises(self, exercise_id: str, limit: int = 3,
                            exclude: Sequence[str] = ()) -> List[ExerciseRecommendation]:
        return [
            ExerciseRecommendation(
                exercise_id=s.exercise_id,
                title=s.title,
                skill_category=s.skill_category,
                difficulty=s.difficulty,
                reason=RECOMMENDATION_REASONS[s.relationship],
                similarity_score=s.similarity,
                priority=idx + 1,
            )
            for idx, s in enumerate(self.find_similar_exercises(exercise_id, limit=limit, exclude=exclude))
        ]

    def build_skill_clusters(self) -> List[ExerciseCluster]:
        """One cluster per skill category, with its mean difficulty tier."""
        by_skill: Dict[str, List[ExerciseEmbeddingRecord]] = defaultdict(list)
        with self._lock:
            for record in self._records.values():
                by_skill[record.skill_category].append(record)

        clusters = []
        for skill, records in sorted(by_skill.items()):
            clusters.append(ExerciseCluster(
                cluster_id=f"skill:{skill}",
                name=f"{skill[:1].upper()}{skill[1:]} Skills",
                exercise_ids=[r.exercise_id for r in records],
                primary_skill=skill,
                avg_difficulty=sum(difficulty_tier(r.difficulty) for r in records) / len(records),
                exercise_count=len(records),
            ))
        return clusters

    def analyze_progression(self, exercise_id: str, current_score: float,
                            progress: Sequence[ClusterProgress] = ()) -> ClusterAnalysis:
        """Related exercises, the learner's matching cluster, insights and recommendations."""
        related = self.find_similar_exercises(exercise_id)
        source = self.get_record(exercise_id)

        skills = [source.skill_category] if source else []
        skills += [r.skill_category for r in related]
        cluster_progress = None
        for skill in skills:
            cluster_progress = next((p for p in progress if p.primary_skill == skill), None)
            if cluster_progress is not None:
                break

        return ClusterAnalysis(
            cluster_id=cluster_progress.cluster_id if cluster_progress else "",
            cluster_name=cluster_progress.cluster_name if cluster_progress else "",
            progress=cluster_progress,
            related=related,
            insights=generate_insights(current_score, related, cluster_progress, self.policy),
            recommendations=self.recommend_exercises(exercise_id),
        )
