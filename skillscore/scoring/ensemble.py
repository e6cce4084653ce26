"""Weighted combination of judgment, validator, similarity and reference signals."""

import logging
import math
from dataclasses import dataclass
from typing import Dict, List, Optional

from skillscore.libs.config_loader import ConfigType, policy_from_config
from skillscore.libs.vector_math import clamp, population_std_dev, round_half_up
from .models import ConsistencyOverride, EnsembleResult, EnsembleSignals, IntegrityVerdict

LOG = logging.getLogger(__name__)


@dataclass(frozen=True)
class EnsemblePolicy:
    """Default weights and post-combination rules."""

    judgment_weight: float = 0.55
    validator_weight: float = 0.30
    embedding_weight: float = 0.15
    exact_copy_cap: int = 50
    high_risk_penalty: float = 0.15
    medium_risk_penalty: float = 0.05
    perfect_score_min_similarity: float = 0.95
    high_confidence: int = 75
    medium_confidence: int = 50

    @classmethod
    def from_config(cls, configs: Optional[ConfigType]) -> "EnsemblePolicy":
        return policy_from_config(cls, configs, "scoring.ensemble")


def confidence_band(confidence: int, policy: EnsemblePolicy) -> str:
    if confidence >= policy.high_confidence:
        return 'high'
    if confidence >= policy.medium_confidence:
        return 'medium'
    return 'low'


def _available(value: Optional[float]) -> bool:
    return value is not None and not math.isnan(value)


def _active_components(signals: EnsembleSignals, judgment_score: Optional[float],
                       judgment_weight: float, policy: EnsemblePolicy) -> Dict[str, tuple]:
    """Map component name -> (score on 0-100, raw weight) for available signals. NaN counts as unavailable."""
    components: Dict[str, tuple] = {}
    if _available(judgment_score):
        components['judgment'] = (judgment_score, judgment_weight)
    if _available(signals.validator_score):
        components['validator'] = (clamp(signals.validator_score, 0, 100), policy.validator_weight)
    if signals.has_exemplar and _available(signals.embedding_similarity):
        components['embedding'] = (clamp(signals.embedding_similarity, 0, 1) * 100, policy.embedding_weight)
    if _available(signals.reference_score) and signals.reference_weight > 0:
        components['reference'] = (clamp(signals.reference_score, 0, 100), signals.reference_weight)
    return {name: c for name, c in components.items() if math.isfinite(c[1]) and c[1] > 0}


def combine_ensemble(
    signals: EnsembleSignals,
    integrity: Optional[IntegrityVerdict] = None,
    override: Optional[ConsistencyOverride] = None,
    policy: Optional[EnsemblePolicy] = None,
) -> EnsembleResult:
    """
    Combine the available signals into one bounded score with a confidence estimate.

    Disagreement between the signals drives confidence: the population
    standard deviation of the active signals lowers both agreement and
    confidence and widens the reported range.

    Adjustments run in a fixed order: score delta from ``override`` (before
    combination), exact-copy cap, integrity-risk penalty, perfect-score guard.
    The reported range is centred on the adjusted final score, so a capped
    or penalized result never sits outside its own interval.
    """
    policy = policy or EnsemblePolicy()
    adjustments: List[str] = []

    judgment_score = signals.judgment_score
    if _available(judgment_score):
        judgment_score = clamp(judgment_score, 0, 100)
        if override and override.score_delta and math.isfinite(override.score_delta):
            judgment_score = clamp(judgment_score + override.score_delta, 0, 100)
            adjustments.append(f"judgment score adjusted by {override.score_delta:+g} from cross-validation")

    judgment_weight = policy.judgment_weight
    if (override and override.adjusted_judgment_weight is not None
            and math.isfinite(override.adjusted_judgment_weight)):
        judgment_weight = override.adjusted_judgment_weight

    components = _active_components(signals, judgment_score, judgment_weight, policy)
    if not components:
        LOG.warning("No scoring signals available; returning an empty ensemble result")
        return EnsembleResult(
            final_score=0,
            blended_score=0,
            confidence=0,
            confidence_band='low',
            range=[0, 0],
            agreement=0,
            adjustments=['no signals available'],
        )

    total_weight = sum(weight for _, weight in components.values())
    weights = {name: weight / total_weight for name, (_, weight) in components.items()}
    scores = {name: score for name, (score, _) in components.items()}

    blended = int(clamp(round_half_up(sum(scores[n] * weights[n] for n in components)), 0, 100))

    values = list(scores.values())
    std_dev = population_std_dev(values)
    spread = max(values) - min(values)
    agreement = int(clamp(round_half_up(100 - std_dev * 2), 0, 100))
    confidence = int(clamp(round_half_up(100 - std_dev * 1.5 - spread * 0.3), 0, 100))

    final = blended
    if integrity is not None and integrity.is_exact_copy:
        if final > policy.exact_copy_cap:
            adjustments.append(f"capped at {policy.exact_copy_cap} for copying the example solution")
        final = min(final, policy.exact_copy_cap)
    elif integrity is not None and integrity.risk_level == 'high':
        final = round_half_up(final * (1 - policy.high_risk_penalty))
        adjustments.append(f"{round_half_up(policy.high_risk_penalty * 100)}% high integrity risk penalty")
    elif integrity is not None and integrity.risk_level == 'medium':
        final = round_half_up(final * (1 - policy.medium_risk_penalty))
        adjustments.append(f"{round_half_up(policy.medium_risk_penalty * 100)}% medium integrity risk penalty")

    if final >= 100:
        earned = (
            signals.validator_score is not None and signals.validator_score >= 100
            and signals.embedding_similarity is not None
            and signals.embedding_similarity >= policy.perfect_score_min_similarity
        )
        if not earned:
            final = 99
            adjustments.append("perfect score requires a perfect validator score and exemplar similarity")

    final = int(clamp(final, 0, 100))
    margin = round_half_up(std_dev * 1.5)

    return EnsembleResult(
        final_score=final,
        blended_score=blended,
        confidence=confidence,
        confidence_band=confidence_band(confidence, policy),
        range=[int(clamp(final - margin, 0, 100)), int(clamp(final + margin, 0, 100))],
        component_scores=scores,
        component_weights=weights,
        agreement=agreement,
        adjustments=adjustments,
    )
