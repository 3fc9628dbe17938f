"""Matching of response snapshots against fingerprint rules.

Everything here is pure: no I/O and no state outside the arguments. Main
rules and special rules have separate entry points because a special
rule's probe path is part of its evidence, so its snapshot may only ever be
scored against that one rule.
"""
import logging
import re
from functools import lru_cache
from typing import Iterable

from core.context import ResponseSnapshot
from models.detection import MatchOutcome
from models.fingerprint import FingerprintRule, Indicator, MatchSpec

logger = logging.getLogger(__name__)


@lru_cache(maxsize=4096)
def _compile(pattern: str) -> "re.Pattern[str]":
    return re.compile(pattern, re.IGNORECASE)


def _header_holds(indicator: Indicator, snapshot: ResponseSnapshot) -> bool:
    if not isinstance(indicator.name, str):
        return False
    header_value = snapshot.headers.get(indicator.name.lower())
    if header_value is None:
        return False
    if indicator.value and indicator.value.lower() not in header_value.lower():
        return False
    if indicator.pattern and not _compile(indicator.pattern).search(header_value):
        return False
    return True


def indicator_holds(indicator: Indicator, snapshot: ResponseSnapshot) -> bool:
    """Check a single indicator against a snapshot."""
    kind = indicator.type
    if kind == "status_code":
        # Compared as text so an odd value fails to match instead of raising
        return str(indicator.value).strip() == str(snapshot.status_code)
    if kind == "header":
        return _header_holds(indicator, snapshot)
    if kind == "body":
        return bool(indicator.value) and indicator.value in snapshot.body
    if kind == "body_regex":
        return bool(indicator.pattern) and _compile(indicator.pattern).search(snapshot.body) is not None
    if kind == "favicon_hash":
        wanted = {v.lower() for v in indicator.values}
        return any(h.lower() in wanted for h in snapshot.asset_hashes.values())
    if kind == "url":
        return bool(indicator.value) and indicator.value in snapshot.url
    if kind == "group":
        return indicator.match is not None and spec_matches(indicator.match, snapshot)
    # Loader validation keeps unknown types out of a RuleStore
    logger.debug(f"Ignoring unknown indicator type {kind!r}")
    return False


def spec_matches(spec: MatchSpec, snapshot: ResponseSnapshot) -> bool:
    """ALL needs every indicator (and at least one), ANY needs one."""
    if not spec.indicators:
        return False
    results = (indicator_holds(i, snapshot) for i in spec.indicators)
    if spec.combinator == "any":
        return any(results)
    return all(results)


def evaluate_main(snapshot: ResponseSnapshot, rules: Iterable[FingerprintRule]) -> MatchOutcome:
    """Score one root-probe snapshot against every main rule."""
    outcome: MatchOutcome = {}
    for rule in rules:
        if spec_matches(rule.match_spec, snapshot):
            logger.debug(f"Matched {rule.name} on {snapshot.url}")
            outcome.setdefault(rule.name, rule.priority_weight)
    return outcome


def evaluate_special(snapshot: ResponseSnapshot, rule: FingerprintRule) -> MatchOutcome:
    """Score the snapshot produced by `rule`'s own probe against that rule only."""
    if spec_matches(rule.match_spec, snapshot):
        logger.debug(f"Matched special rule {rule.name} on {snapshot.url}")
        return {rule.name: rule.priority_weight}
    return {}
