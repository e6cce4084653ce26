"""Submission scoring: judgment parsing, rubric reconciliation, integrity and ensemble."""

from .catalog import ExerciseCatalog, ExerciseProfile, InMemoryExerciseCatalog
from .engine import ScoringEngine, ScoringOutcome, ScoringRequest, UnknownExerciseError
from .ensemble import EnsemblePolicy, combine_ensemble
from .integrity import IntegrityPolicy, detect_integrity
from .judgment_parser import parse_judgment
from .models import (
    ConsistencyOverride,
    CriterionJudgment,
    EnsembleResult,
    EnsembleSignals,
    IntegrityVerdict,
    Judgment,
    RubricCriterion,
    RubricValidationResult,
    SubmissionTiming,
)
from .rubric_validator import (
    RubricValidationPolicy,
    calculate_corrected_score,
    reconcile_rubric,
    summarize_breakdown,
)

__all__ = [
    'ExerciseCatalog',
    'ExerciseProfile',
    'InMemoryExerciseCatalog',
    'ScoringEngine',
    'ScoringOutcome',
    'ScoringRequest',
    'UnknownExerciseError',
    'EnsemblePolicy',
    'combine_ensemble',
    'IntegrityPolicy',
    'detect_integrity',
    'parse_judgment',
    'ConsistencyOverride',
    'CriterionJudgment',
    'EnsembleResult',
    'EnsembleSignals',
    'IntegrityVerdict',
    'Judgment',
    'RubricCriterion',
    'RubricValidationResult',
    'SubmissionTiming',
    'RubricValidationPolicy',
    'calculate_corrected_score',
    'reconcile_rubric',
    'summarize_breakdown',
]
