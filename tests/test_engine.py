"""Tests for the end-to-end scoring pipeline."""

from unittest.mock import Mock

import pytest

from skillscore.references import InMemoryReferenceStore, ReferenceMatcher, ReferencePersistenceError
from skillscore.scoring import (
    ConsistencyOverride,
    ExerciseProfile,
    InMemoryExerciseCatalog,
    RubricCriterion,
    ScoringEngine,
    ScoringRequest,
    UnknownExerciseError,
)

EXEMPLAR = (
    "Start with a list of target companies, then write a boolean string combining "
    "skills and seniority terms, and iterate on the results to remove noise."
)

SUBMISSION = (
    "I would start by mapping the target companies and then build a boolean search "
    "that combines the core skills with seniority keywords. After reviewing the first "
    "results I would refine the query to remove recruiters and add adjacent job titles."
)

JUDGMENT = {
    "score": 85,
    "feedback": "Solid approach",
    "rubricBreakdown": {
        "Clarity": {"points": 20, "maxPoints": 25},
        "Completeness": {"points": 25, "maxPoints": 25},
        "Accuracy": {"points": 40, "maxPoints": 50},
    },
}

EMBEDDINGS = {
    EXEMPLAR: [1.0, 0.0],
    SUBMISSION: [0.6, 0.8],
}


@pytest.fixture
def catalog():
    return InMemoryExerciseCatalog([
        ExerciseProfile(
            exercise_id='boolean-1',
            title='Boolean Search Basics',
            skill_category='sourcing',
            difficulty='medium',
            rubric=[
                RubricCriterion(name='Clarity', max_points=25),
                RubricCriterion(name='Completeness', max_points=25),
                RubricCriterion(name='Accuracy', max_points=50),
            ],
            exemplar=EXEMPLAR,
            min_expected_ms=60_000,
        ),
        ExerciseProfile(exercise_id='freeform', skill_category='outreach'),
    ])


@pytest.fixture
def provider():
    return Mock(side_effect=lambda text: EMBEDDINGS.get(text, [0.0, 1.0]))


@pytest.fixture
def engine(catalog, provider):
    matcher = ReferenceMatcher(InMemoryReferenceStore())
    return ScoringEngine(catalog, matcher=matcher, embedding_provider=provider)


def request(**kwargs):
    fields = dict(exercise_id='boolean-1', submission=SUBMISSION, judgment=JUDGMENT, validator_score=80)
    fields.update(kwargs)
    return ScoringRequest(**fields)


def test_score_combines_all_signals(engine):
    outcome = engine.score(request())

    assert outcome.exemplar_similarity == pytest.approx(0.6)
    assert outcome.integrity.risk_level == 'low'
    assert outcome.rubric.is_valid
    assert outcome.rubric.aggregation.percentage == 85
    # 85 * 0.55 + 80 * 0.30 + 60 * 0.15 = 79.75
    assert outcome.final_score == 80
    assert outcome.ensemble.component_weights.keys() == {'judgment', 'validator', 'embedding'}
    assert outcome.references.percentile_estimate == 50
    assert outcome.errors == []
    assert outcome.breakdown_summary.highest_criterion == 'Completeness'


def test_exemplar_embedding_cached(engine, provider):
    engine.score(request())
    engine.score(request())
    exemplar_calls = [c for c in provider.call_args_list if c.args[0] == EXEMPLAR]
    assert len(exemplar_calls) == 1


def test_copied_exemplar_capped(engine):
    outcome = engine.score(request(submission=EXEMPLAR, validator_score=90,
                                   judgment={**JUDGMENT, "score": 95}))

    assert outcome.integrity.is_exact_copy
    assert outcome.final_score <= 50


def test_malformed_judgment_degrades(engine):
    outcome = engine.score(request(judgment="the judge returned prose instead of JSON"))

    assert outcome.parse_error
    assert outcome.rubric is None
    assert 'judgment' not in outcome.ensemble.component_weights
    assert outcome.final_score > 0


def test_precomputed_embedding_skips_provider(catalog):
    provider = Mock(side_effect=lambda text: EMBEDDINGS[text])
    engine = ScoringEngine(catalog, embedding_provider=provider)
    outcome = engine.score(request(submission_embedding=[0.6, 0.8]))

    assert outcome.exemplar_similarity == pytest.approx(0.6)
    provider.assert_called_once_with(EXEMPLAR)


def test_embedding_failure_is_no_signal(catalog):
    engine = ScoringEngine(catalog, embedding_provider=Mock(side_effect=TimeoutError("slow provider")))
    outcome = engine.score(request())

    assert outcome.exemplar_similarity is None
    assert 'embedding' not in outcome.ensemble.component_weights
    assert any('slow provider' in e for e in outcome.errors)


def test_reference_lookup_failure_tolerated(catalog, provider):
    persistence = Mock()
    persistence.find_by_exercise.side_effect = ReferencePersistenceError("database unavailable")
    engine = ScoringEngine(catalog, matcher=ReferenceMatcher(persistence), embedding_provider=provider)

    outcome = engine.score(request())
    assert outcome.final_score == 80
    assert any('database unavailable' in e for e in outcome.errors)


def test_too_fast_submission_flagged(engine):
    outcome = engine.score(request(duration_ms=5_000))
    assert outcome.integrity.signals.is_too_fast


def test_override_passed_to_ensemble(engine):
    outcome = engine.score(request(override=ConsistencyOverride(score_delta=-10)))
    assert outcome.ensemble.component_scores['judgment'] == 75


def test_exercise_without_rubric_or_exemplar(engine):
    outcome = engine.score(request(exercise_id='freeform'))
    assert outcome.rubric is None
    assert outcome.exemplar_similarity is None
    assert outcome.final_score == pytest.approx(83, abs=1)


def test_unknown_exercise(engine):
    with pytest.raises(UnknownExerciseError):
        engine.score(request(exercise_id='nope'))


def test_retain_reference(engine):
    req = request()
    outcome = engine.score(req)

    added = engine.retain_reference(req, outcome)
    assert added.added

    again = engine.retain_reference(req, outcome)
    assert not again.added
    assert 'Too similar' in again.reason

    followup = engine.score(req)
    assert len(followup.references.references) == 1
    assert followup.references.best_match_similarity == pytest.approx(1.0)


def test_retain_reference_rejects_risky_submission(engine):
    req = request(submission=EXEMPLAR)
    outcome = engine.score(req)
    result = engine.retain_reference(req, outcome)
    assert not result.added
    assert 'Integrity risk' in result.reason


def test_from_config(catalog):
    configs = {"scoring": {"ensemble": {"judgment_weight": 0.7}, "cache": {"embedding_max_entries": 3}}}
    engine = ScoringEngine.from_config(configs, catalog)
    assert engine.ensemble_policy.judgment_weight == 0.7
    assert engine.embedding_cache.metrics()['max_entries'] == 3


def test_catalog_load(tmp_path):
    path = tmp_path / "exercises.yaml"
    path.write_text(
        "exercises:\n"
        "  - exercise_id: ex1\n"
        "    skill_category: sourcing\n"
        "    rubric:\n"
        "      - name: Clarity\n"
        "        max_points: 100\n"
    )
    catalog = InMemoryExerciseCatalog.load(path)
    assert catalog.get_exercise('ex1').rubric[0].max_points == 100

    bad = tmp_path / "bad.yaml"
    bad.write_text("- just a list\n")
    with pytest.raises(TypeError):
        InMemoryExerciseCatalog.load(bad)
