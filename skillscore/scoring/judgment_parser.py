"""Schema-checked parsing of raw judge output into a Judgment."""

import json
import logging
import re
from typing import Any, Dict, List, Optional, Union

from pydantic import AliasChoices, BaseModel, Field, ValidationError

from .models import CriterionJudgment, Judgment, JudgmentParseResult

LOG = logging.getLogger(__name__)

_FENCE_RE = re.compile(r'```(?:json)?', re.IGNORECASE)


class _RawCriterionScore(BaseModel):
    points: float = Field(
        allow_inf_nan=False,
        validation_alias=AliasChoices('points', 'score', 'points_awarded', 'pointsAwarded'),
    )
    max_points: Optional[float] = Field(
        default=None,
        allow_inf_nan=False,
        validation_alias=AliasChoices('maxPoints', 'max_points', 'max_score', 'maxScore'),
    )
    reasoning: str = Field(
        default="",
        validation_alias=AliasChoices('reasoning', 'rationale', 'feedback'),
    )


class _RawJudgment(BaseModel):
    score: float = Field(
        allow_inf_nan=False,
        validation_alias=AliasChoices('score', 'overall_score', 'overallScore', 'total_score'),
    )
    breakdown: Any = Field(
        default=None,
        validation_alias=AliasChoices('rubricBreakdown', 'rubric_breakdown', 'breakdown', 'components'),
    )
    feedback: str = ""
    strengths: List[str] = Field(default_factory=list)
    improvements: List[str] = Field(default_factory=list)


def extract_json_object(text: str) -> Optional[Dict[str, Any]]:
    """Pull the outermost JSON object out of model output that may include fences or prose."""
    cleaned = _FENCE_RE.sub('', text).strip()
    start = cleaned.find('{')
    end = cleaned.rfind('}')
    if start == -1 or end <= start:
        return None
    data = json.loads(cleaned[start:end + 1])
    return data if isinstance(data, dict) else None


def _entries(breakdown: Any) -> List[tuple]:
    """Normalize dict-keyed or list-shaped breakdowns into (label, entry) pairs."""
    if breakdown is None:
        return []
    if isinstance(breakdown, dict):
        return list(breakdown.items())
    if isinstance(breakdown, list):
        pairs = []
        for item in breakdown:
            if isinstance(item, dict):
                label = item.get('criterion') or item.get('name') or item.get('label')
                pairs.append((label, item))
            else:
                pairs.append((None, item))
        return pairs
    return [(None, breakdown)]


def parse_judgment(raw: Union[str, Dict[str, Any], None]) -> JudgmentParseResult:
    """
    Parse a raw judgment into a validated Judgment.

    Accepts the judge's text response or an already-decoded dict. Failures
    never raise: they produce a result with ``judgment=None`` and an error
    message. Individual breakdown entries that fail validation are dropped
    with a warning so that reconciliation reports them as missing criteria.
    """
    if raw is None:
        return JudgmentParseResult(error="No judgment supplied")

    if isinstance(raw, str):
        try:
            data = extract_json_object(raw)
        except json.JSONDecodeError as e:
            LOG.warning(f"Judgment JSON could not be decoded: {e}")
            return JudgmentParseResult(error=f"JSON parsing failed: {e}")
        if data is None:
            LOG.warning("No JSON object found in judgment response")
            return JudgmentParseResult(error="No JSON object found in response")
    elif isinstance(raw, dict):
        data = raw
    else:
        return JudgmentParseResult(error=f"Unsupported judgment payload type: {type(raw).__name__}")

    try:
        payload = _RawJudgment.model_validate(data)
    except ValidationError as e:
        messages = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        LOG.warning(f"Judgment failed schema validation: {messages}")
        return JudgmentParseResult(error=f"Schema validation failed: {messages}")

    warnings: List[str] = []
    criteria: List[CriterionJudgment] = []
    for label, entry in _entries(payload.breakdown):
        if not isinstance(label, str) or not label.strip():
            warnings.append(f"Dropped breakdown entry without a criterion label: {entry!r}")
            continue
        if isinstance(entry, (int, float)) and not isinstance(entry, bool):
            entry = {'points': entry}
        try:
            score = _RawCriterionScore.model_validate(entry)
        except ValidationError as e:
            warnings.append(f"Dropped malformed breakdown entry '{label}': {e.errors()[0]['msg']}")
            continue
        criteria.append(CriterionJudgment(
            label=label,
            points_awarded=score.points,
            max_points_claimed=score.max_points,
            rationale=score.reasoning,
        ))

    for warning in warnings:
        LOG.warning(warning)

    return JudgmentParseResult(
        judgment=Judgment(
            overall_score=payload.score,
            criteria=criteria,
            feedback=payload.feedback,
            strengths=payload.strengths,
            improvements=payload.improvements,
        ),
        warnings=warnings,
    )
