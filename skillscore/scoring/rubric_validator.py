"""Reconcile a judge's per-criterion breakdown against the canonical rubric."""

import logging
import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from skillscore.libs.config_loader import ConfigType, policy_from_config
from skillscore.libs.text_similarity import rank_matches
from skillscore.libs.vector_math import clamp, round_half_up
from .models import (
    BreakdownSummary,
    CorrectedScore,
    CriterionJudgment,
    CriterionPercentage,
    ReconciledCriterion,
    RubricAggregation,
    RubricCriterion,
    RubricValidationResult,
    ValidationIssue,
)

LOG = logging.getLogger(__name__)


@dataclass(frozen=True)
class RubricValidationPolicy:
    """Knobs for rubric reconciliation."""

    allow_fuzzy_match: bool = True
    fuzzy_match_threshold: float = 0.7
    # Divergence (points) between rubric sum and claimed score that gets flagged
    max_score_divergence: float = 5
    auto_correct_exceeding_points: bool = True
    # Surfacing a mismatch is the default; overwriting the claimed score is opt-in
    auto_correct_score_mismatch: bool = False
    # Blend helper: only correct beyond this divergence, using this rubric share
    correction_divergence_threshold: float = 10
    correction_rubric_weight: float = 0.3

    @classmethod
    def from_config(cls, configs: Optional[ConfigType]) -> "RubricValidationPolicy":
        return policy_from_config(cls, configs, "scoring.rubric")


def _norm(label: str) -> str:
    return label.lower().strip()


def _match_labels(
    judgments: Sequence[CriterionJudgment],
    rubric: Sequence[RubricCriterion],
    policy: RubricValidationPolicy,
    notes: List[str],
) -> Dict[int, int]:
    """
    One-to-one assignment of judge labels to rubric criteria.

    Exact (case-insensitive) matches are taken first. Remaining labels and
    criteria are then paired greedily by descending fuzzy similarity.
    Returns judgment index -> rubric index.
    """
    assignment: Dict[int, int] = {}
    claimed = set()

    for j_idx, judgment in enumerate(judgments):
        for r_idx, criterion in enumerate(rubric):
            if r_idx not in claimed and _norm(criterion.name) == _norm(judgment.label):
                assignment[j_idx] = r_idx
                claimed.add(r_idx)
                break

    if not policy.allow_fuzzy_match:
        return assignment

    open_labels = [j for j in range(len(judgments)) if j not in assignment]
    open_criteria = [r for r in range(len(rubric)) if r not in claimed]
    ranked = rank_matches(
        [judgments[j].label for j in open_labels],
        [rubric[r] for r in open_criteria],
        key=lambda c: c.name,
    )
    for label_pos, criterion_pos, score in ranked:
        if score < policy.fuzzy_match_threshold:
            break
        j_idx = open_labels[label_pos]
        r_idx = open_criteria[criterion_pos]
        if j_idx in assignment or r_idx in claimed:
            continue
        assignment[j_idx] = r_idx
        claimed.add(r_idx)
        notes.append(
            f'Fuzzy matched "{judgments[j_idx].label}" -> "{rubric[r_idx].name}" '
            f'({round_half_up(score * 100)}% similarity)'
        )

    return assignment


def reconcile_rubric(
    breakdown: Sequence[CriterionJudgment],
    rubric: Sequence[RubricCriterion],
    claimed_score: float,
    policy: Optional[RubricValidationPolicy] = None,
) -> RubricValidationResult:
    """
    Validate a judge's breakdown against the exercise rubric.

    The reconciled breakdown covers every rubric criterion exactly once, in
    rubric order. Labels that match no criterion are reported and dropped
    from scoring; criteria that were never scored default to zero.

    Args:
        breakdown: Judge-provided per-criterion scores
        rubric: Canonical rubric criteria for the exercise
        claimed_score: Judge's overall score (0-100)
        policy: Reconciliation settings (defaults if None)

    Returns:
        RubricValidationResult with issues, notes and aggregation
    """
    policy = policy or RubricValidationPolicy()
    issues: List[ValidationIssue] = []
    notes: List[str] = []

    assignment = _match_labels(breakdown, rubric, policy, notes)
    by_criterion = {r_idx: j_idx for j_idx, r_idx in assignment.items()}

    unmatched_labels: List[str] = []
    for j_idx, judgment in enumerate(breakdown):
        if j_idx not in assignment:
            unmatched_labels.append(judgment.label)
            issues.append(ValidationIssue(
                type='extra_criterion',
                severity='warning',
                criterion=judgment.label,
                message=f'Judge used criterion "{judgment.label}" which does not match any rubric criterion',
            ))

    reconciled: Dict[str, ReconciledCriterion] = {}
    total_awarded = 0.0
    total_max = 0.0

    for r_idx, criterion in enumerate(rubric):
        expected_max = criterion.max_points
        total_max += expected_max

        if r_idx not in by_criterion:
            issues.append(ValidationIssue(
                type='missing_criterion',
                severity='error',
                criterion=criterion.name,
                message=f'Judge did not score criterion "{criterion.name}"',
                expected=expected_max,
            ))
            reconciled[criterion.name] = ReconciledCriterion(
                points_awarded=0,
                max_points=expected_max,
                rationale='[Not scored by judge - defaulted to 0]',
            )
            continue

        judgment = breakdown[by_criterion[r_idx]]
        points = judgment.points_awarded
        rationale = judgment.rationale

        if not math.isfinite(points):
            issues.append(ValidationIssue(
                type='non_finite_points',
                severity='error',
                criterion=criterion.name,
                message=f'Points awarded ({points}) for "{criterion.name}" is not a finite number',
                expected=expected_max,
            ))
            points = 0
            rationale = f"{rationale} [Invalid points defaulted to 0]".strip()
        elif points < 0:
            issues.append(ValidationIssue(
                type='negative_points',
                severity='error',
                criterion=criterion.name,
                message=f'Negative points ({points}) for "{criterion.name}"',
                actual=points,
            ))
            points = 0
        elif points > expected_max:
            issues.append(ValidationIssue(
                type='exceeds_max',
                severity='error',
                criterion=criterion.name,
                message=f'Points awarded ({points}) exceeds max ({expected_max}) for "{criterion.name}"',
                expected=expected_max,
                actual=points,
            ))
            if policy.auto_correct_exceeding_points:
                points = expected_max
                rationale = f"{rationale} [Points capped to max]".strip()
                notes.append(f'Capped "{criterion.name}" from {judgment.points_awarded} to {expected_max}')

        if judgment.max_points_claimed is not None and judgment.max_points_claimed != expected_max:
            issues.append(ValidationIssue(
                type='invalid_max',
                severity='warning',
                criterion=criterion.name,
                message=(f'Judge used max points {judgment.max_points_claimed} but rubric '
                         f'specifies {expected_max} for "{criterion.name}"'),
                expected=expected_max,
                actual=judgment.max_points_claimed,
            ))

        LOG.debug("Reconciled %s (from %r): %s/%s", criterion.name, judgment.label, points, expected_max)
        total_awarded += points
        reconciled[criterion.name] = ReconciledCriterion(
            points_awarded=points,
            max_points=expected_max,
            rationale=rationale,
            source_label=judgment.label,
        )

    percentage = 0
    if total_max > 0:
        percentage = int(clamp(round_half_up(total_awarded / total_max * 100), 0, 100))

    corrected_score: Optional[int] = None
    divergence = abs(percentage - claimed_score)
    if not math.isfinite(divergence) or divergence > policy.max_score_divergence:
        issues.append(ValidationIssue(
            type='score_mismatch',
            severity='warning',
            message=(f'Rubric sum ({total_awarded:g}/{total_max:g} = {percentage}%) differs from '
                     f'claimed overall score ({claimed_score:g}) by {divergence:g} points'),
            expected=percentage,
            actual=claimed_score if math.isfinite(claimed_score) else None,
        ))
        if policy.auto_correct_score_mismatch:
            corrected_score = percentage
            notes.append(f'Auto-corrected overall score from {claimed_score:g} to {percentage} based on rubric sum')

    is_valid = not any(issue.severity == 'error' for issue in issues)
    if not is_valid:
        LOG.info("Rubric reconciliation found %d error(s)",
                 sum(1 for i in issues if i.severity == 'error'))

    return RubricValidationResult(
        is_valid=is_valid,
        issues=issues,
        notes=notes,
        breakdown=reconciled,
        corrected_score=corrected_score,
        aggregation=RubricAggregation(
            total_awarded=total_awarded,
            total_max=total_max,
            percentage=percentage,
            criteria_count=len(rubric),
            matched_count=len(assignment),
            unmatched_labels=unmatched_labels,
        ),
    )


def calculate_corrected_score(
    claimed_score: float,
    validation: RubricValidationResult,
    policy: Optional[RubricValidationPolicy] = None,
) -> CorrectedScore:
    """
    Blend the claimed score with the rubric-derived percentage.

    The blend only happens when the two diverge by more than the policy's
    ``correction_divergence_threshold``; smaller drift is left to the
    score_mismatch flag. A non-finite claimed score is replaced outright.
    """
    policy = policy or RubricValidationPolicy()
    rubric_score = validation.aggregation.percentage
    if not math.isfinite(claimed_score):
        return CorrectedScore(score=rubric_score, was_adjusted=True, adjustment=0)
    if abs(rubric_score - claimed_score) <= policy.correction_divergence_threshold:
        return CorrectedScore(score=claimed_score, was_adjusted=False, adjustment=0)

    weight = policy.correction_rubric_weight
    blended = round_half_up(claimed_score * (1 - weight) + rubric_score * weight)
    blended = int(clamp(blended, 0, 100))
    return CorrectedScore(
        score=blended,
        was_adjusted=True,
        adjustment=blended - claimed_score,
    )


def summarize_breakdown(breakdown: Dict[str, ReconciledCriterion]) -> BreakdownSummary:
    """Per-criterion percentages with the weakest and strongest criterion."""
    scores = [
        CriterionPercentage(
            name=name,
            score=entry.points_awarded,
            max_score=entry.max_points,
            percentage=round_half_up(entry.points_awarded / entry.max_points * 100) if entry.max_points > 0 else 0,
        )
        for name, entry in breakdown.items()
    ]
    if not scores:
        return BreakdownSummary()

    ordered = sorted(scores, key=lambda s: s.percentage)
    return BreakdownSummary(
        criterion_scores=scores,
        lowest_criterion=ordered[0].name,
        highest_criterion=ordered[-1].name,
        average_percentage=round_half_up(sum(s.percentage for s in scores) / len(scores)),
    )
