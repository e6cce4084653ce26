"""Tests for rubric reconciliation and judgment parsing."""

import json

import pytest

from skillscore.scoring.judgment_parser import extract_json_object, parse_judgment
from skillscore.scoring.models import CriterionJudgment, RubricCriterion
from skillscore.scoring.rubric_validator import (
    RubricValidationPolicy,
    calculate_corrected_score,
    reconcile_rubric,
    summarize_breakdown,
)


@pytest.fixture
def rubric():
    return [
        RubricCriterion(name="Clarity", max_points=25),
        RubricCriterion(name="Completeness", max_points=25),
        RubricCriterion(name="Accuracy", max_points=50),
    ]


def judged(label, points, max_points=None, rationale=""):
    return CriterionJudgment(label=label, points_awarded=points,
                             max_points_claimed=max_points, rationale=rationale)


class TestReconcileRubric:

    def test_clean_breakdown_is_valid(self, rubric):
        breakdown = [judged("Clarity", 20, 25), judged("Completeness", 25, 25), judged("Accuracy", 40, 50)]
        result = reconcile_rubric(breakdown, rubric, 85)

        assert result.is_valid
        assert result.errors == []
        assert result.issues == []
        assert result.aggregation.percentage == 85
        assert result.aggregation.matched_count == 3
        assert list(result.breakdown) == ["Clarity", "Completeness", "Accuracy"]

    def test_typo_and_over_max(self, rubric):
        breakdown = [judged("clarity", 25), judged("Completness", 20), judged("Accuracy", 60)]
        result = reconcile_rubric(breakdown, rubric, 95)

        assert result.breakdown["Completeness"].points_awarded == 20
        assert result.breakdown["Completeness"].source_label == "Completness"
        assert result.breakdown["Accuracy"].points_awarded == 50
        assert result.aggregation.total_awarded == 95
        assert result.aggregation.total_max == 100

        exceeds = result.issues_of_type('exceeds_max')
        assert len(exceeds) == 1
        assert exceeds[0].criterion == "Accuracy"
        assert exceeds[0].severity == 'error'
        assert not result.is_valid
        assert any("Fuzzy matched" in note for note in result.notes)

    def test_over_max_kept_without_auto_correct(self, rubric):
        breakdown = [judged("Clarity", 25), judged("Completeness", 25), judged("Accuracy", 60)]
        policy = RubricValidationPolicy(auto_correct_exceeding_points=False)
        result = reconcile_rubric(breakdown, rubric, 100, policy)

        assert result.breakdown["Accuracy"].points_awarded == 60
        assert len(result.issues_of_type('exceeds_max')) == 1

    def test_missing_criterion_defaults_to_zero(self, rubric):
        breakdown = [judged("Clarity", 20), judged("Accuracy", 40)]
        result = reconcile_rubric(breakdown, rubric, 60)

        missing = result.issues_of_type('missing_criterion')
        assert len(missing) == 1
        assert missing[0].criterion == "Completeness"
        assert result.breakdown["Completeness"].points_awarded == 0
        assert not result.breakdown["Completeness"].was_scored
        assert not result.is_valid

    def test_negative_points_clamped(self, rubric):
        breakdown = [judged("Clarity", -5), judged("Completeness", 25), judged("Accuracy", 50)]
        result = reconcile_rubric(breakdown, rubric, 75)

        assert result.breakdown["Clarity"].points_awarded == 0
        assert result.issues_of_type('negative_points')[0].actual == -5
        assert not result.is_valid

    def test_nan_points_defaulted_to_zero(self, rubric):
        breakdown = [judged("Clarity", float('nan')), judged("Completeness", 20), judged("Accuracy", 40)]
        result = reconcile_rubric(breakdown, rubric, 80)

        assert result.breakdown["Clarity"].points_awarded == 0
        assert len(result.issues_of_type('non_finite_points')) == 1
        assert result.aggregation.total_awarded == 60
        assert result.aggregation.percentage == 60
        assert not result.is_valid

    @pytest.mark.parametrize("points", [float('inf'), float('-inf')])
    def test_infinite_points_without_auto_correct(self, rubric, points):
        breakdown = [judged("Clarity", 20), judged("Completeness", 20), judged("Accuracy", points)]
        policy = RubricValidationPolicy(auto_correct_exceeding_points=False)
        result = reconcile_rubric(breakdown, rubric, 40, policy)

        assert result.breakdown["Accuracy"].points_awarded == 0
        assert result.issues_of_type('non_finite_points')[0].criterion == "Accuracy"
        assert not result.issues_of_type('exceeds_max')
        assert result.aggregation.percentage == 40

    def test_nan_claimed_score_is_mismatch(self, rubric):
        breakdown = [judged("Clarity", 20), judged("Completeness", 20), judged("Accuracy", 40)]
        policy = RubricValidationPolicy(auto_correct_score_mismatch=True)
        result = reconcile_rubric(breakdown, rubric, float('nan'), policy)

        mismatch = result.issues_of_type('score_mismatch')
        assert len(mismatch) == 1
        assert mismatch[0].actual is None
        assert result.corrected_score == 80

    def test_extra_label_is_warning(self, rubric):
        breakdown = [
            judged("Clarity", 25), judged("Completeness", 25), judged("Accuracy", 50),
            judged("Creativity Bonus", 10),
        ]
        result = reconcile_rubric(breakdown, rubric, 100)

        assert result.is_valid
        extra = result.issues_of_type('extra_criterion')
        assert len(extra) == 1
        assert extra[0].severity == 'warning'
        assert result.aggregation.unmatched_labels == ["Creativity Bonus"]
        assert result.aggregation.total_awarded == 100

    def test_each_criterion_claimed_once(self, rubric):
        breakdown = [
            judged("Clarity", 20), judged("Clarity of the Response", 10),
            judged("Completeness", 25), judged("Accuracy", 50),
        ]
        result = reconcile_rubric(breakdown, rubric, 95)

        assert result.breakdown["Clarity"].points_awarded == 20
        assert result.aggregation.unmatched_labels == ["Clarity of the Response"]

    def test_containment_label_matches(self, rubric):
        breakdown = [judged("Clarity of the Response", 20), judged("Completeness", 25), judged("Accuracy", 50)]
        result = reconcile_rubric(breakdown, rubric, 95)

        assert result.breakdown["Clarity"].source_label == "Clarity of the Response"
        assert result.is_valid

    def test_fuzzy_disabled(self, rubric):
        breakdown = [judged("Clarity", 25), judged("Completness", 20), judged("Accuracy", 50)]
        policy = RubricValidationPolicy(allow_fuzzy_match=False)
        result = reconcile_rubric(breakdown, rubric, 95, policy)

        assert len(result.issues_of_type('missing_criterion')) == 1
        assert len(result.issues_of_type('extra_criterion')) == 1

    def test_greedy_assignment_prefers_best_pair(self):
        rubric = [RubricCriterion(name="Tone", max_points=50), RubricCriterion(name="Tonality", max_points=50)]
        breakdown = [judged("Tonalty", 40), judged("Tones", 30)]
        result = reconcile_rubric(breakdown, rubric, 70)

        assert result.breakdown["Tonality"].source_label == "Tonalty"
        assert result.breakdown["Tone"].source_label == "Tones"

    def test_claimed_max_mismatch_is_warning(self, rubric):
        breakdown = [judged("Clarity", 20, 30), judged("Completeness", 25, 25), judged("Accuracy", 40, 50)]
        result = reconcile_rubric(breakdown, rubric, 85)

        invalid = result.issues_of_type('invalid_max')
        assert len(invalid) == 1
        assert invalid[0].expected == 25
        assert invalid[0].actual == 30
        assert result.is_valid

    def test_score_mismatch_surfaced_not_corrected(self, rubric):
        breakdown = [judged("Clarity", 20), judged("Completeness", 20), judged("Accuracy", 40)]
        result = reconcile_rubric(breakdown, rubric, 92)

        mismatch = result.issues_of_type('score_mismatch')
        assert len(mismatch) == 1
        assert mismatch[0].severity == 'warning'
        assert result.corrected_score is None
        assert result.is_valid

    def test_small_divergence_not_flagged(self, rubric):
        breakdown = [judged("Clarity", 20), judged("Completeness", 20), judged("Accuracy", 40)]
        result = reconcile_rubric(breakdown, rubric, 84)
        assert result.issues_of_type('score_mismatch') == []

    def test_score_mismatch_auto_correct_opt_in(self, rubric):
        breakdown = [judged("Clarity", 20), judged("Completeness", 20), judged("Accuracy", 40)]
        policy = RubricValidationPolicy(auto_correct_score_mismatch=True)
        result = reconcile_rubric(breakdown, rubric, 92, policy)
        assert result.corrected_score == 80


class TestCorrectedScore:

    def _validation(self, rubric, percentage_points):
        breakdown = [judged("Clarity", 25), judged("Completeness", 25), judged("Accuracy", percentage_points - 50)]
        return reconcile_rubric(breakdown, rubric, percentage_points)

    def test_no_blend_within_threshold(self, rubric):
        corrected = calculate_corrected_score(88, self._validation(rubric, 80))
        assert not corrected.was_adjusted
        assert corrected.score == 88

    def test_blend_beyond_threshold(self, rubric):
        corrected = calculate_corrected_score(95, self._validation(rubric, 70))
        # 95 * 0.7 + 70 * 0.3 = 87.5
        assert corrected.was_adjusted
        assert corrected.score == 88
        assert corrected.adjustment == -7

    def test_policy_controls_blend(self, rubric):
        validation = self._validation(rubric, 70)

        heavier = calculate_corrected_score(95, validation, RubricValidationPolicy(correction_rubric_weight=0.5))
        # 95 * 0.5 + 70 * 0.5 = 82.5
        assert heavier.score == 83

        tolerant = calculate_corrected_score(95, validation, RubricValidationPolicy(correction_divergence_threshold=30))
        assert not tolerant.was_adjusted
        assert tolerant.score == 95

    def test_policy_from_config(self, rubric):
        policy = RubricValidationPolicy.from_config({"scoring": {"rubric": {"correction_rubric_weight": 1.0}}})
        corrected = calculate_corrected_score(95, self._validation(rubric, 70), policy)
        assert corrected.score == 70

    def test_non_finite_claimed_replaced(self, rubric):
        corrected = calculate_corrected_score(float('nan'), self._validation(rubric, 70))
        assert corrected.was_adjusted
        assert corrected.score == 70


def test_summarize_breakdown(rubric):
    breakdown = [judged("Clarity", 25), judged("Completeness", 10), judged("Accuracy", 40)]
    summary = summarize_breakdown(reconcile_rubric(breakdown, rubric, 75).breakdown)

    assert summary.lowest_criterion == "Completeness"
    assert summary.highest_criterion == "Clarity"
    assert summary.average_percentage == 73
    assert summarize_breakdown({}).criterion_scores == []


class TestParseJudgment:

    def test_fenced_json_with_dict_breakdown(self):
        payload = {
            "score": 82,
            "feedback": "Solid",
            "rubricBreakdown": {
                "Clarity": {"points": 20, "maxPoints": 25, "reasoning": "clear"},
                "Accuracy": {"score": 45},
            },
        }
        raw = f"Here is my evaluation:\n```json\n{json.dumps(payload)}\n```"
        result = parse_judgment(raw)

        assert result.success
        judgment = result.judgment
        assert judgment.overall_score == 82
        assert [c.label for c in judgment.criteria] == ["Clarity", "Accuracy"]
        assert judgment.criteria[0].max_points_claimed == 25
        assert judgment.criteria[0].rationale == "clear"
        assert judgment.criteria[1].points_awarded == 45

    def test_list_breakdown(self):
        result = parse_judgment({
            "overall_score": 70,
            "breakdown": [{"criterion": "Clarity", "points_awarded": 18}, {"name": "Accuracy", "score": 40}],
        })
        assert [c.label for c in result.judgment.criteria] == ["Clarity", "Accuracy"]

    def test_numeric_breakdown_values(self):
        result = parse_judgment({"score": 60, "rubricBreakdown": {"Clarity": 15}})
        assert result.judgment.criteria[0].points_awarded == 15

    def test_malformed_entry_dropped_with_warning(self):
        result = parse_judgment({"score": 60, "rubricBreakdown": {"Clarity": {"points": "lots"}, "Accuracy": 30}})

        assert result.success
        assert [c.label for c in result.judgment.criteria] == ["Accuracy"]
        assert len(result.warnings) == 1

    @pytest.mark.parametrize("raw", [None, "not json at all", "{broken json", 42, {"feedback": "no score"}])
    def test_fails_closed(self, raw):
        result = parse_judgment(raw)
        assert not result.success
        assert result.judgment is None
        assert result.error

    def test_extract_json_object_ignores_prose(self):
        assert extract_json_object('Result: {"score": 5} done') == {"score": 5}
        assert extract_json_object("nothing here") is None
