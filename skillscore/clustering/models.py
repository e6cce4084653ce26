"""Data models for exercise similarity, clusters and learner progression."""

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field

Relationship = Literal['prerequisite', 'advanced', 'parallel', 'variation', 'related']
ScoreTrend = Literal['improving', 'stable', 'declining', 'new']
InsightType = Literal['improvement', 'struggle', 'mastery', 'skill_transfer', 'recommendation']


class ExerciseEmbeddingRecord(BaseModel):
    """What the analyzer knows about one exercise."""
    exercise_id: str
    title: str = ""
    skill_category: str
    difficulty: str = 'medium'
    content_embedding: List[float] = Field(default_factory=list)
    skill_tags: List[str] = Field(default_factory=list)


class ExerciseSimilarity(BaseModel):
    overall: float
    content: float = Field(description="Embedding cosine, clamped to [0, 1]")
    skill: float
    difficulty: float


class SimilarExercise(BaseModel):
    exercise_id: str
    title: str = ""
    skill_category: str
    difficulty: str
    similarity: float
    relationship: Relationship


class ExerciseCluster(BaseModel):
    cluster_id: str
    name: str
    cluster_type: Literal['skill', 'difficulty', 'hybrid', 'semantic'] = 'skill'
    exercise_ids: List[str] = Field(default_factory=list)
    primary_skill: str
    avg_difficulty: float
    exercise_count: int


class ClusterProgress(BaseModel):
    """A learner's externally computed trend snapshot for one skill cluster."""
    cluster_id: str
    cluster_name: str = ""
    primary_skill: str
    exercises_played: int = 0
    total_exercises: int = 0
    completion_rate: float = Field(default=0.0, ge=0, le=1)
    avg_score: float = 0.0
    best_score: float = 0.0
    score_trend: ScoreTrend = 'new'
    improvement_rate: float = Field(default=0.0, description="Percent change of the cluster average")
    last_played_at: Optional[str] = None


class SkillProgressionInsight(BaseModel):
    type: InsightType
    title: str
    message: str
    related_exercises: List[str] = Field(default_factory=list)
    metrics: Dict[str, float] = Field(default_factory=dict)


class ExerciseRecommendation(BaseModel):
    exercise_id: str
    title: str = ""
    skill_category: str
    difficulty: str
    reason: str
    similarity_score: float
    priority: int


class ClusterAnalysis(BaseModel):
    cluster_id: str = ""
    cluster_name: str = ""
    progress: Optional[ClusterProgress] = None
    related: List[SimilarExercise] = Field(default_factory=list)
    insights: List[SkillProgressionInsight] = Field(default_factory=list)
    recommendations: List[ExerciseRecommendation] = Field(default_factory=list)
