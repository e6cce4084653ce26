"""Pydantic models for judgments, rubric reconciliation, integrity and ensemble results."""

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

Severity = Literal['error', 'warning']
IssueType = Literal[
    'missing_criterion',
    'extra_criterion',
    'exceeds_max',
    'negative_points',
    'non_finite_points',
    'score_mismatch',
    'invalid_max',
]
RiskLevel = Literal['low', 'medium', 'high']
ConfidenceBand = Literal['high', 'medium', 'low']


class RubricCriterion(BaseModel):
    """Single canonical rubric criterion for an exercise."""
    name: str = Field(description="Canonical name of the criterion")
    max_points: float = Field(gt=0, description="Maximum points for this criterion")
    description: str = Field(default="", description="What the criterion evaluates")


class CriterionJudgment(BaseModel):
    """One entry of the judge's per-criterion breakdown, label as emitted by the judge."""
    label: str = Field(description="Free-text criterion label produced by the judge")
    points_awarded: float = Field(description="Points the judge awarded")
    max_points_claimed: Optional[float] = Field(
        default=None,
        description="Maximum the judge believed the criterion was worth"
    )
    rationale: str = Field(default="", description="Judge's explanation for the points")


class Judgment(BaseModel):
    """Validated judgment for one submission."""
    overall_score: float = Field(description="Overall score claimed by the judge (0-100)")
    criteria: List[CriterionJudgment] = Field(default_factory=list)
    feedback: str = Field(default="", description="Free-form feedback text")
    strengths: List[str] = Field(default_factory=list)
    improvements: List[str] = Field(default_factory=list)


class JudgmentParseResult(BaseModel):
    """Outcome of parsing a raw judgment payload; never raises."""
    judgment: Optional[Judgment] = None
    error: Optional[str] = None
    warnings: List[str] = Field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.judgment is not None


class ReconciledCriterion(BaseModel):
    """A canonical criterion's score after reconciliation."""
    points_awarded: float
    max_points: float
    rationale: str = ""
    source_label: Optional[str] = Field(
        default=None,
        description="Judge label that was matched to this criterion, None if it was not scored"
    )

    @property
    def was_scored(self) -> bool:
        return self.source_label is not None


class ValidationIssue(BaseModel):
    """A structured finding from rubric reconciliation."""
    type: IssueType
    severity: Severity
    criterion: Optional[str] = None
    message: str
    expected: Optional[float] = None
    actual: Optional[float] = None


class RubricAggregation(BaseModel):
    """Totals derived from the reconciled breakdown."""
    total_awarded: float
    total_max: float
    percentage: int = Field(description="Rubric-derived score, 0-100")
    criteria_count: int
    matched_count: int
    unmatched_labels: List[str] = Field(default_factory=list)


class RubricValidationResult(BaseModel):
    """Reconciled breakdown plus every issue found along the way."""
    is_valid: bool
    issues: List[ValidationIssue] = Field(default_factory=list)
    notes: List[str] = Field(
        default_factory=list,
        description="Informational notes such as fuzzy label matches and auto-corrections"
    )
    breakdown: Dict[str, ReconciledCriterion] = Field(
        description="Canonical criterion name -> reconciled score, in rubric order"
    )
    corrected_score: Optional[int] = Field(
        default=None,
        description="Rubric-derived overall score, only set when score auto-correction is enabled"
    )
    aggregation: RubricAggregation

    @property
    def errors(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity == 'error']

    @property
    def warnings(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity == 'warning']

    def issues_of_type(self, issue_type: str) -> List[ValidationIssue]:
        return [i for i in self.issues if i.type == issue_type]


class CorrectedScore(BaseModel):
    """Result of blending the claimed score with the rubric-derived percentage."""
    score: float
    was_adjusted: bool
    adjustment: float = 0


class CriterionPercentage(BaseModel):
    name: str
    score: float
    max_score: float
    percentage: int


class BreakdownSummary(BaseModel):
    """Per-criterion analytics for a reconciled breakdown."""
    criterion_scores: List[CriterionPercentage] = Field(default_factory=list)
    lowest_criterion: Optional[str] = None
    highest_criterion: Optional[str] = None
    average_percentage: int = 0


class SubmissionTiming(BaseModel):
    """Optional timing metadata for a submission, in milliseconds."""
    duration_ms: Optional[float] = None
    min_expected_ms: Optional[float] = None


class IntegritySignals(BaseModel):
    """Counters and flags gathered by the integrity rules."""
    model_config = ConfigDict(frozen=True)

    example_copy_score: int = Field(description="Embedding similarity to the exemplar, 0-100")
    is_exact_copy: bool = False
    is_too_short: bool = False
    is_too_fast: bool = False
    has_repetitive_patterns: bool = False
    has_placeholders: bool = False
    low_effort_indicators: int = 0
    word_count: int = 0


class IntegrityVerdict(BaseModel):
    """Assessment of copying, low effort or gaming for one submission."""
    model_config = ConfigDict(frozen=True)

    risk_level: RiskLevel
    is_likely_original: bool
    flags: List[str] = Field(default_factory=list)
    signals: IntegritySignals

    @property
    def is_exact_copy(self) -> bool:
        return self.signals.is_exact_copy


class ConsistencyOverride(BaseModel):
    """Adjustments supplied by an external consistency / cross-validation process."""
    adjusted_judgment_weight: Optional[float] = Field(
        default=None, ge=0, description="Replaces the default judgment weight before renormalization"
    )
    score_delta: Optional[float] = Field(
        default=None, description="Added to the judgment score before combination"
    )
    confidence_level: Optional[str] = None
    flags: List[str] = Field(default_factory=list)


class EnsembleSignals(BaseModel):
    """Inputs to the ensemble. A None signal is unavailable and carries no weight."""
    judgment_score: Optional[float] = Field(default=None, description="0-100")
    validator_score: Optional[float] = Field(default=None, description="0-100")
    embedding_similarity: Optional[float] = Field(default=None, description="0-1")
    has_exemplar: bool = True
    reference_score: Optional[float] = Field(
        default=None, description="Reference-pool signal, 0-100"
    )
    reference_weight: float = Field(
        default=0.0, ge=0, description="Weight of the reference-pool signal before renormalization"
    )


class EnsembleResult(BaseModel):
    """Final bounded score with its confidence estimate."""
    model_config = ConfigDict(frozen=True)

    final_score: int = Field(ge=0, le=100)
    blended_score: int = Field(ge=0, le=100, description="Weighted combination before adjustments")
    confidence: int = Field(ge=0, le=100)
    confidence_band: ConfidenceBand
    range: List[int] = Field(description="[low, high] uncertainty interval")
    component_scores: Dict[str, float] = Field(default_factory=dict)
    component_weights: Dict[str, float] = Field(default_factory=dict)
    agreement: int = Field(ge=0, le=100)
    adjustments: List[str] = Field(
        default_factory=list,
        description="Post-combination adjustments applied, in order"
    )
