"""
Phase scoring for display ordering.

The explicit phase tag is authoritative. Keyword matching over the ledger
text is only a fallback tier for photos whose phase is missing or unknown.
"""

import re
from typing import Optional

from ..models import Analysis, Phase

PHASE_SCORES = {
    Phase.BEFORE: 0,
    Phase.STATUS: 1,
    Phase.AFTER: 2,
}

BEFORE_PATTERN = re.compile(r'\b(before|pre)\b|着手前|施工前', re.IGNORECASE)
AFTER_PATTERN = re.compile(r'\b(done|complete|completed|after|finished)\b|完了|竣工|完成',
                           re.IGNORECASE)


def keyword_phase_score(text: str) -> int:
    """Score free text: 0 for before-work wording, 2 for completion wording, else 1."""
    if BEFORE_PATTERN.search(text):
        return 0
    if AFTER_PATTERN.search(text):
        return 2
    return 1


def phase_score(analysis: Optional[Analysis]) -> int:
    """
    Position of a photo within its scene: before=0, status=1, after=2

    Args:
        analysis: Photo analysis, may be None

    Returns:
        Score from the explicit phase, or from remark/variety/work type keywords
    """
    if analysis is None:
        return 1
    if analysis.phase is not None and analysis.phase != Phase.UNKNOWN:
        return PHASE_SCORES[analysis.phase]
    text = ' '.join([analysis.remarks, analysis.variety, analysis.work_type])
    return keyword_phase_score(text)
