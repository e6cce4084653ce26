"""Read-only exercise lookup: rubric, skill category, difficulty and exemplar."""

import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Protocol

import yaml
from pydantic import BaseModel, Field

from skillscore.clustering import ExerciseEmbeddingRecord, extract_skill_tags
from .models import RubricCriterion

LOG = logging.getLogger(__name__)


class ExerciseProfile(BaseModel):
    """Everything the scorer needs to know about one exercise."""
    exercise_id: str
    title: str = ""
    description: str = ""
    task: str = ""
    skill_category: str
    difficulty: str = 'medium'
    rubric: List[RubricCriterion] = Field(default_factory=list)
    exemplar: Optional[str] = Field(default=None, description="Example solution text")
    exemplar_embedding: List[float] = Field(
        default_factory=list, description="Precomputed exemplar embedding, used before asking the provider"
    )
    content_embedding: List[float] = Field(
        default_factory=list, description="Embedding of the exercise content, for clustering"
    )
    min_expected_ms: Optional[float] = Field(
        default=None, description="Minimum plausible time to complete the exercise"
    )
    is_new: bool = Field(default=False, description="Use bootstrap reference thresholds")

    def to_embedding_record(self) -> ExerciseEmbeddingRecord:
        return ExerciseEmbeddingRecord(
            exercise_id=self.exercise_id,
            title=self.title,
            skill_category=self.skill_category,
            difficulty=self.difficulty,
            content_embedding=self.content_embedding,
            skill_tags=extract_skill_tags(self.title, self.description, self.task, self.skill_category),
        )


class ExerciseCatalog(Protocol):
    def get_exercise(self, exercise_id: str) -> Optional[ExerciseProfile]:
        ...

    def list_exercises(self) -> List[ExerciseProfile]:
        ...


class InMemoryExerciseCatalog:
    """Catalog backed by a dict, loadable from a YAML file with an ``exercises`` list."""

    def __init__(self, exercises: Iterable[ExerciseProfile] = ()):
        self._exercises: Dict[str, ExerciseProfile] = {e.exercise_id: e for e in exercises}

    def get_exercise(self, exercise_id: str) -> Optional[ExerciseProfile]:
        return self._exercises.get(exercise_id)

    def list_exercises(self) -> List[ExerciseProfile]:
        return list(self._exercises.values())

    @classmethod
    def load(cls, yaml_path: Path) -> "InMemoryExerciseCatalog":
        with open(yaml_path, 'r') as f:
            data = yaml.safe_load(f)
        if not isinstance(data, dict) or not isinstance(data.get('exercises'), list):
            raise TypeError(f"Exercise catalog {yaml_path} must be a dict with an 'exercises' list")
        exercises = [ExerciseProfile.model_validate(row) for row in data['exercises']]
        LOG.info(f"Loaded {len(exercises)} exercises from {yaml_path}")
        return cls(exercises)
