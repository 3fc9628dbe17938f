"""Merging of match outcomes from several hops and probes into one result.

Names are unioned. Each name keeps the highest priority seen for it, and
the aggregate priority is the highest single contribution, never a sum.
"""
import logging
from typing import Dict, Optional, Set

from models.detection import MatchOutcome, honeypot_name

logger = logging.getLogger(__name__)


def merge_outcomes(base: MatchOutcome, other: MatchOutcome) -> MatchOutcome:
    """Name-union of two outcomes, max priority wins per name."""
    merged = dict(base)
    for name, weight in other.items():
        if weight > merged.get(name, -1):
            merged[name] = weight
    return merged


def collapse_honeypot(names: Set[str], threshold: int) -> Optional[str]:
    """
    Return the sentinel name if `names` is implausibly large, else None.

    A host answering with more than `threshold` unrelated products at once
    is far more likely to be a deception target than a real stack.
    """
    if len(names) > threshold:
        return honeypot_name(len(names))
    return None


class MatchAggregator:
    """Running matches for one target."""

    def __init__(self):
        self.matches: Dict[str, int] = {}
        self.priority = 0
        self.top_match: Optional[str] = None

    def add(self, outcome: MatchOutcome) -> None:
        self.matches = merge_outcomes(self.matches, outcome)
        for name, weight in outcome.items():
            # Strictly greater keeps the first-seen name on ties
            if self.top_match is None or weight > self.priority:
                self.priority = weight
                self.top_match = name
        if outcome:
            logger.debug(f"Merged {sorted(outcome)}, priority now {self.priority} ({self.top_match})")

    @property
    def names(self) -> Set[str]:
        return set(self.matches)
