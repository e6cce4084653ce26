"""Rule-based detection of copied, low-effort or gamed submissions."""

import logging
import re
from dataclasses import dataclass
from typing import List, Optional

from skillscore.libs.config_loader import ConfigType, policy_from_config
from skillscore.libs.vector_math import clamp, round_half_up
from .models import IntegritySignals, IntegrityVerdict, SubmissionTiming

LOG = logging.getLogger(__name__)

PLACEHOLDER_PATTERNS = [
    re.compile(r'\[your (answer|response|name|company)\]', re.IGNORECASE),
    re.compile(r'\{(name|company|role)\}', re.IGNORECASE),
    re.compile(r'\.\.\.\s*$'),
    re.compile(r'^e\.g\.,?\s', re.IGNORECASE),
    re.compile(r'lorem ipsum', re.IGNORECASE),
    re.compile(r'xxx+', re.IGNORECASE),
]

_SENTENCE_SPLIT_RE = re.compile(r'[.!?]+')
_WHITESPACE_RE = re.compile(r'\s+')


@dataclass(frozen=True)
class IntegrityPolicy:
    """Thresholds for the integrity rule cascade."""

    copy_similarity_threshold: float = 0.95
    medium_risk_similarity_threshold: float = 0.9
    min_word_count: int = 15
    min_sentence_chars: int = 10
    min_sentences_for_repetition: int = 3
    min_unique_sentence_ratio: float = 0.6
    min_time_fraction: float = 0.3

    @classmethod
    def from_config(cls, configs: Optional[ConfigType]) -> "IntegrityPolicy":
        return policy_from_config(cls, configs, "scoring.integrity")


def normalize_text(text: str) -> str:
    """Lowercase and collapse whitespace."""
    return _WHITESPACE_RE.sub(' ', text.lower()).strip()


def has_repetitive_sentences(text: str, policy: IntegrityPolicy) -> bool:
    sentences = [s for s in _SENTENCE_SPLIT_RE.split(text) if len(s.strip()) > policy.min_sentence_chars]
    if len(sentences) <= policy.min_sentences_for_repetition:
        return False
    unique = {normalize_text(s) for s in sentences}
    return len(unique) < len(sentences) * policy.min_unique_sentence_ratio


def has_unfilled_placeholders(text: str) -> bool:
    return any(pattern.search(text) for pattern in PLACEHOLDER_PATTERNS)


def detect_integrity(
    submission: str,
    exemplar: Optional[str] = None,
    embedding_similarity: float = 0.0,
    timing: Optional[SubmissionTiming] = None,
    policy: Optional[IntegrityPolicy] = None,
) -> IntegrityVerdict:
    """
    Score a submission for signs of copying, low effort or gaming.

    Each rule is evaluated independently. Risk is then assigned by a
    first-match cascade: exact copy -> high; two or more low-effort
    indicators or high exemplar similarity -> medium; otherwise low.

    Args:
        submission: Submission text
        exemplar: Optional exemplar (example solution) text
        embedding_similarity: Embedding similarity of submission to exemplar (0-1)
        timing: Optional duration metadata
        policy: Thresholds (defaults if None)
    """
    policy = policy or IntegrityPolicy()
    similarity = clamp(embedding_similarity or 0.0, 0.0, 1.0)
    flags: List[str] = []

    is_exact_copy = False
    if exemplar and normalize_text(submission) == normalize_text(exemplar):
        is_exact_copy = True
        flags.append('Exact copy of example solution detected')
    elif similarity > policy.copy_similarity_threshold:
        is_exact_copy = True
        flags.append(f'Near-identical to example solution (>{round_half_up(policy.copy_similarity_threshold * 100)}% similarity)')

    low_effort = 0
    word_count = len(submission.split())
    is_too_short = word_count < policy.min_word_count
    if is_too_short:
        low_effort += 1
        flags.append(f'Submission is very short (< {policy.min_word_count} words)')

    is_repetitive = has_repetitive_sentences(submission, policy)
    if is_repetitive:
        low_effort += 1
        flags.append('Contains repetitive content')

    is_too_fast = False
    if timing and timing.duration_ms and timing.min_expected_ms:
        if timing.duration_ms < timing.min_expected_ms * policy.min_time_fraction:
            is_too_fast = True
            low_effort += 1
            flags.append('Submitted unusually quickly')

    has_placeholders = has_unfilled_placeholders(submission)
    if has_placeholders:
        low_effort += 1
        flags.append('Contains unfilled placeholders')

    if is_exact_copy:
        risk = 'high'
    elif low_effort >= 2 or similarity > policy.medium_risk_similarity_threshold:
        risk = 'medium'
    else:
        risk = 'low'

    is_likely_original = risk == 'low' and low_effort == 0
    if risk != 'low':
        LOG.info(f"Integrity risk {risk}: {'; '.join(flags)}")

    return IntegrityVerdict(
        risk_level=risk,
        is_likely_original=is_likely_original,
        flags=flags,
        signals=IntegritySignals(
            example_copy_score=round_half_up(similarity * 100),
            is_exact_copy=is_exact_copy,
            is_too_short=is_too_short,
            is_too_fast=is_too_fast,
            has_repetitive_patterns=is_repetitive,
            has_placeholders=has_placeholders,
            low_effort_indicators=low_effort,
            word_count=word_count,
        ),
    )
