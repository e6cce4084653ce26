"""Tests for the ensemble scorer."""

import pytest

from skillscore.scoring.ensemble import EnsemblePolicy, combine_ensemble, confidence_band
from skillscore.scoring.integrity import detect_integrity
from skillscore.scoring.models import (
    ConsistencyOverride,
    EnsembleSignals,
    IntegritySignals,
    IntegrityVerdict,
)


def verdict(risk_level, exact_copy=False):
    return IntegrityVerdict(
        risk_level=risk_level,
        is_likely_original=risk_level == 'low',
        signals=IntegritySignals(example_copy_score=0, is_exact_copy=exact_copy),
    )


def test_default_weights_with_exemplar():
    result = combine_ensemble(EnsembleSignals(judgment_score=80, validator_score=70, embedding_similarity=0.6))

    assert result.component_weights == pytest.approx({'judgment': 0.55, 'validator': 0.30, 'embedding': 0.15})
    # 44 + 21 + 9
    assert result.final_score == 74
    assert result.blended_score == 74
    assert result.component_scores['embedding'] == pytest.approx(60)


def test_embedding_weight_dropped_without_exemplar():
    result = combine_ensemble(EnsembleSignals(
        judgment_score=80, validator_score=60, embedding_similarity=0.9, has_exemplar=False,
    ))

    assert 'embedding' not in result.component_weights
    assert sum(result.component_weights.values()) == pytest.approx(1.0)
    assert result.component_weights['judgment'] == pytest.approx(0.55 / 0.85)
    assert result.final_score == 73


def test_agreement_confidence_and_range():
    result = combine_ensemble(EnsembleSignals(judgment_score=80, validator_score=60, has_exemplar=False))

    # population std dev of [80, 60] is 10, spread 20
    assert result.agreement == 80
    assert result.confidence == 79
    assert result.confidence_band == 'high'
    assert result.range == [58, 88]


def test_identical_signals_full_confidence():
    result = combine_ensemble(EnsembleSignals(judgment_score=70, validator_score=70, embedding_similarity=0.7))
    assert result.confidence == 100
    assert result.agreement == 100
    assert result.range == [70, 70]


def test_disagreement_lowers_confidence():
    result = combine_ensemble(EnsembleSignals(judgment_score=95, validator_score=30, embedding_similarity=0.2))
    assert result.confidence_band == 'low'
    assert result.range[0] < result.final_score < result.range[1]


def test_missing_signal_renormalizes():
    result = combine_ensemble(EnsembleSignals(judgment_score=None, validator_score=64, embedding_similarity=None))
    assert result.component_weights == {'validator': 1.0}
    assert result.final_score == 64


def test_no_signals():
    result = combine_ensemble(EnsembleSignals())
    assert result.final_score == 0
    assert result.confidence == 0
    assert result.confidence_band == 'low'


def test_exact_copy_capped_at_fifty():
    integrity = detect_integrity("A perfectly reasonable answer " * 5, exemplar="something else",
                                 embedding_similarity=0.97)
    assert integrity.is_exact_copy

    result = combine_ensemble(
        EnsembleSignals(judgment_score=90, validator_score=85, embedding_similarity=0.97),
        integrity=integrity,
    )
    assert result.blended_score == 90
    assert result.final_score == 50


def test_high_and_medium_risk_penalties():
    signals = EnsembleSignals(judgment_score=80, validator_score=80, has_exemplar=False)

    assert combine_ensemble(signals, integrity=verdict('medium')).final_score == 76
    assert combine_ensemble(signals, integrity=verdict('high')).final_score == 68
    assert combine_ensemble(signals, integrity=verdict('low')).final_score == 80


def test_perfect_score_requires_every_signal():
    earned = combine_ensemble(EnsembleSignals(judgment_score=100, validator_score=100, embedding_similarity=1.0))
    assert earned.final_score == 100

    no_exemplar = combine_ensemble(EnsembleSignals(judgment_score=100, validator_score=100, has_exemplar=False))
    assert no_exemplar.final_score == 99

    imperfect_validator = combine_ensemble(
        EnsembleSignals(judgment_score=100, validator_score=99, embedding_similarity=1.0)
    )
    assert imperfect_validator.blended_score == 100
    assert imperfect_validator.final_score == 99


@pytest.mark.parametrize("judgment,validator,similarity", [
    (150, 120, 1.5),
    (-20, -5, -0.4),
    (100, 100, 0.95),
    (0, 0, 0),
])
def test_output_always_bounded(judgment, validator, similarity):
    result = combine_ensemble(EnsembleSignals(
        judgment_score=judgment, validator_score=validator, embedding_similarity=similarity,
    ))
    assert 0 <= result.final_score <= 100
    assert 0 <= result.confidence <= 100
    assert 0 <= result.range[0] <= result.range[1] <= 100


def test_override_delta_applied_to_judgment():
    result = combine_ensemble(
        EnsembleSignals(judgment_score=70, validator_score=80, has_exemplar=False),
        override=ConsistencyOverride(score_delta=10),
    )
    assert result.component_scores['judgment'] == 80
    assert result.final_score == 80
    assert any('cross-validation' in a for a in result.adjustments)


def test_override_delta_clamped():
    result = combine_ensemble(
        EnsembleSignals(judgment_score=95, validator_score=None, has_exemplar=False),
        override=ConsistencyOverride(score_delta=20),
    )
    assert result.component_scores['judgment'] == 100


def test_override_judgment_weight():
    result = combine_ensemble(
        EnsembleSignals(judgment_score=90, validator_score=60, has_exemplar=False),
        override=ConsistencyOverride(adjusted_judgment_weight=0.30),
    )
    assert result.component_weights['judgment'] == pytest.approx(0.5)
    assert result.final_score == 75


def test_reference_signal_joins_ensemble():
    result = combine_ensemble(EnsembleSignals(
        judgment_score=80, validator_score=80, has_exemplar=False,
        reference_score=60, reference_weight=0.15,
    ))
    assert 'reference' in result.component_weights
    assert result.final_score < 80

    ignored = combine_ensemble(EnsembleSignals(
        judgment_score=80, validator_score=80, has_exemplar=False, reference_score=60, reference_weight=0,
    ))
    assert 'reference' not in ignored.component_weights


def test_confidence_band_thresholds():
    policy = EnsemblePolicy()
    assert confidence_band(75, policy) == 'high'
    assert confidence_band(74, policy) == 'medium'
    assert confidence_band(50, policy) == 'medium'
    assert confidence_band(49, policy) == 'low'


def test_nan_signal_is_unavailable():
    result = combine_ensemble(EnsembleSignals(judgment_score=float('nan'), validator_score=70, has_exemplar=False))
    assert result.component_weights == {'validator': 1.0}
    assert result.final_score == 70


def test_non_finite_signals_never_raise():
    result = combine_ensemble(EnsembleSignals(
        judgment_score=80, validator_score=float('inf'), embedding_similarity=float('nan'),
    ))
    assert result.component_scores['validator'] == 100
    assert 'embedding' not in result.component_weights
    # 80 * 0.55/0.85 + 100 * 0.30/0.85
    assert result.final_score == 87
    assert 0 <= result.range[0] <= result.range[1] <= 100


def test_nan_override_ignored():
    result = combine_ensemble(
        EnsembleSignals(judgment_score=70, validator_score=80, has_exemplar=False),
        override=ConsistencyOverride(score_delta=float('nan')),
    )
    assert result.component_scores['judgment'] == 70
    assert result.adjustments == []


def test_range_centred_on_adjusted_score():
    result = combine_ensemble(
        EnsembleSignals(judgment_score=90, validator_score=70, has_exemplar=False),
        integrity=verdict('high'),
    )
    assert result.blended_score == 83
    assert result.final_score == 71
    assert result.range[0] <= result.final_score <= result.range[1]
    assert result.range[1] - result.final_score == result.final_score - result.range[0]
