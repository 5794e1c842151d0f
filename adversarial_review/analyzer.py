#!/usr/bin/env python3
"""
Adversarial Review Response Analyzer

Lexical heuristics over raw agent output: completion phrases, fix/agreement
keyword counts and an issue fingerprint used to spot the same findings
recurring across iterations. These are signals, not interpretations; every
function degrades to zeroed values on empty or malformed input.
"""
from __future__ import annotations

import dataclasses
import re
from typing import Any, Dict, Optional, Tuple

from adversarial_review.parsers import has_no_issues_sentinel
from adversarial_review.utils import normalize_for_hash, sha256

COMPLETION_PATTERNS = ("no_issues", "no issues", "code is clean", "all tests pass", "no problems found")
FIX_PATTERNS = ("fixed", "changed", "modified", "updated", "corrected", "refactored", "fixes_made")
DISAGREEMENT_PATTERNS = ("disagree", "incorrect", "wrong", "invalid", "false positive", "not an issue")
AGREEMENT_PATTERNS = ("agree", "valid point", "correct", "good catch", "confirmed")

ISSUE_LINE_PATTERN = re.compile(r"issue|bug|problem|error|warning|should", re.IGNORECASE)

FULL_AGREEMENT = "full_agreement"
PARTIAL_AGREEMENT = "partial_agreement"
DISAGREEMENT = "disagreement"

CONVINCED = "convinced"
REJECTED = "rejected"
NEUTRAL = "neutral"


def _compile_words(patterns: Tuple[str, ...]) -> "re.Pattern[str]":
    # Whole-word matching keeps "disagree" from also counting as "agree"
    alternatives = "|".join(re.escape(p) for p in patterns)
    return re.compile(rf"\b(?:{alternatives})\b", re.IGNORECASE)


_FIX_RE = _compile_words(FIX_PATTERNS)
_DISAGREEMENT_RE = _compile_words(DISAGREEMENT_PATTERNS)
_AGREEMENT_RE = _compile_words(AGREEMENT_PATTERNS)


@dataclasses.dataclass(frozen=True)
class ResponseAnalysis:
    """Lexical summary of one agent response."""
    is_complete: bool = False
    explicit_no_issues: bool = False
    mentions_fixes: bool = False
    fix_count: int = 0
    disagreement_count: int = 0
    agreement_count: int = 0
    line_count: int = 0
    issues_fingerprint: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)


def issues_fingerprint(text: Optional[str]) -> str:
    """Digest of the normalized, sorted set of issue-like lines.

    Returns an empty string when the text has no issue-like lines.
    """
    if not text:
        return ""
    lines = {
        normalize_for_hash(line)
        for line in text.splitlines()
        if ISSUE_LINE_PATTERN.search(line)
    }
    lines.discard("")
    if not lines:
        return ""
    return sha256("\n".join(sorted(lines)))


def analyze(text: Optional[str]) -> ResponseAnalysis:
    """Compute completion, fix and agreement signals for a response."""
    if not text:
        return ResponseAnalysis()

    lowered = text.lower()
    explicit_no_issues = has_no_issues_sentinel(text)
    is_complete = explicit_no_issues or any(p in lowered for p in COMPLETION_PATTERNS)

    fix_count = len(_FIX_RE.findall(text))
    return ResponseAnalysis(
        is_complete=is_complete,
        explicit_no_issues=explicit_no_issues,
        mentions_fixes=fix_count > 0,
        fix_count=fix_count,
        disagreement_count=len(_DISAGREEMENT_RE.findall(text)),
        agreement_count=len(_AGREEMENT_RE.findall(text)),
        line_count=len(text.splitlines()),
        issues_fingerprint=issues_fingerprint(text),
    )


def compare(a: ResponseAnalysis, b: ResponseAnalysis) -> str:
    """Agreement level between two analyses of independent reviews."""
    if a.is_complete and b.is_complete:
        return FULL_AGREEMENT
    if a.is_complete == b.is_complete:
        if a.issues_fingerprint == b.issues_fingerprint:
            return FULL_AGREEMENT
        return PARTIAL_AGREEMENT
    # One claims resolution, the other does not
    return DISAGREEMENT


def classify_conviction(agreement_count: int, disagreement_count: int) -> str:
    """Whether a cross-review reads as convinced, rejecting or neutral."""
    if agreement_count > disagreement_count:
        return CONVINCED
    if disagreement_count > agreement_count:
        return REJECTED
    return NEUTRAL
