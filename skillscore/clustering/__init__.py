"""Skill clustering: how exercises relate and what a learner should try next."""

from .analyzer import (
    ClusteringPolicy,
    SkillClusterAnalyzer,
    compute_exercise_similarity,
    determine_relationship,
    difficulty_tier,
    extract_skill_tags,
    generate_insights,
)
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

__all__ = [
    'ClusteringPolicy',
    'SkillClusterAnalyzer',
    'compute_exercise_similarity',
    'determine_relationship',
    'difficulty_tier',
    'extract_skill_tags',
    'generate_insights',
    'ClusterAnalysis',
    'ClusterProgress',
    'ExerciseCluster',
    'ExerciseEmbeddingRecord',
    'ExerciseRecommendation',
    'ExerciseSimilarity',
    'SimilarExercise',
    'SkillProgressionInsight',
]
