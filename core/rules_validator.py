"""
Validation of raw fingerprint rules before they are turned into a RuleStore.

Rules arrive here already normalised to the native mapping layout
(`name`, `priority`, `request`, `match`). Any problem is reported as a
LoadError so that a broken database never produces a partial store.
"""

import re
from collections import defaultdict
from typing import Any, Dict, List

from core.errors import LoadError
from models.fingerprint import COMBINATORS, INDICATOR_TYPES

# Indicator type -> fields of which at least one must be set
REQUIRED_FIELDS = {
    "status_code": ("value",),
    "header": ("name",),
    "body": ("value",),
    "body_regex": ("pattern",),
    "favicon_hash": ("value", "values"),
    "url": ("value",),
    "group": ("match",),
}


def validate_match(match: Any, where: str) -> List[str]:
    """Return the problems found in a `match` mapping."""
    if not isinstance(match, dict):
        return [f"{where}: 'match' must be a mapping"]

    errors = []
    combinator = match.get("combinator", "all")
    if combinator not in COMBINATORS:
        errors.append(f"{where}: unknown combinator {combinator!r}")

    indicators = match.get("indicators")
    if not isinstance(indicators, list) or not indicators:
        errors.append(f"{where}: 'indicators' must be a non-empty list")
        return errors

    for i, indicator in enumerate(indicators):
        errors.extend(validate_indicator(indicator, f"{where}.indicators[{i}]"))
    return errors


def _is_status(value: Any) -> bool:
    # YAML turns `200.0` into a float and `true` into a bool; neither is a status
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, str) and value.strip().isdigit()


def validate_indicator(indicator: Any, where: str) -> List[str]:
    if not isinstance(indicator, dict):
        return [f"{where}: indicator must be a mapping"]

    kind = indicator.get("type")
    if kind not in INDICATOR_TYPES:
        return [f"{where}: unknown indicator type {kind!r}"]

    errors = []
    if not any(indicator.get(f) not in (None, "", []) for f in REQUIRED_FIELDS[kind]):
        wanted = " or ".join(REQUIRED_FIELDS[kind])
        errors.append(f"{where}: {kind} indicator needs {wanted}")

    value = indicator.get("value")
    if kind == "status_code" and value is not None and not _is_status(value):
        errors.append(f"{where}: status_code value must be an integer, got {value!r}")

    if kind == "header" and not isinstance(indicator.get("name", ""), str):
        errors.append(f"{where}: header name must be a string")

    if kind in ("body", "url") and value is not None and not isinstance(value, (str, int)):
        errors.append(f"{where}: {kind} value must be a string")

    if not isinstance(indicator.get("values", []), list):
        errors.append(f"{where}: 'values' must be a list")

    pattern = indicator.get("pattern")
    if pattern:
        try:
            re.compile(pattern)
        except (re.error, TypeError) as e:
            errors.append(f"{where}: invalid pattern {pattern!r}: {e}")

    if kind == "group":
        errors.extend(validate_match(indicator.get("match"), where))
    return errors


def validate_rule(rule: Any, where: str) -> List[str]:
    """Return the problems found in one rule mapping."""
    if not isinstance(rule, dict):
        return [f"{where}: rule must be a mapping"]

    name = rule.get("name")
    if not isinstance(name, str) or not name.strip():
        return [f"{where}: rule needs a non-empty 'name'"]
    where = f"{where} ({name})"

    errors = []
    priority = rule.get("priority", 0)
    if isinstance(priority, bool) or not isinstance(priority, int) or priority < 0:
        errors.append(f"{where}: priority must be a non-negative integer")

    request = rule.get("request", {})
    if not isinstance(request, dict):
        errors.append(f"{where}: 'request' must be a mapping")
    elif not isinstance(request.get("headers", {}), dict):
        errors.append(f"{where}: request headers must be a mapping")

    errors.extend(validate_match(rule.get("match"), where))
    return errors


def detect_duplicate_names(rules: List[Dict[str, Any]]) -> Dict[str, int]:
    """Names that occur more than once, with their occurrence count."""
    counts = defaultdict(int)
    for rule in rules:
        if isinstance(rule, dict) and isinstance(rule.get("name"), str):
            counts[rule["name"]] += 1
    return {name: n for name, n in counts.items() if n > 1}


def detect_keyword_overlaps(rules: List[Dict[str, Any]]) -> Dict[str, List[str]]:
    """
    Find body keywords shared by several rules.

    Shared keywords are a common cause of honeypot false positives, so the
    report is useful when curating a database.
    """
    keywords_map = defaultdict(list)

    def walk(name: str, match: Dict[str, Any]):
        for ind in match.get("indicators", []):
            if ind.get("type") == "body" and ind.get("value"):
                keywords_map[ind["value"]].append(name)
            elif ind.get("type") == "group" and isinstance(ind.get("match"), dict):
                walk(name, ind["match"])

    for rule in rules:
        walk(rule.get("name", "Unknown"), rule.get("match") or {})

    return {kw: names for kw, names in keywords_map.items() if len(set(names)) > 1}


def validate_rules(main: List[Any], special: List[Any]) -> None:
    """Validate both rule classes, raising one LoadError listing every problem."""
    errors: List[str] = []
    for label, rules in (("fingerprints", main), ("special", special)):
        for i, rule in enumerate(rules):
            errors.extend(validate_rule(rule, f"{label}[{i}]"))
        for name, count in detect_duplicate_names(rules).items():
            errors.append(f"{label}: duplicate rule name {name!r} ({count} times)")

    if errors:
        shown = "; ".join(errors[:10])
        more = f" (and {len(errors) - 10} more)" if len(errors) > 10 else ""
        raise LoadError(f"{len(errors)} invalid rule(s): {shown}{more}")


if __name__ == "__main__":
    import argparse
    import sys
    from rules.rules_loader import read_raw_rules

    parser = argparse.ArgumentParser(description="Validate a fingerprint database")
    parser.add_argument("path", help="Database file or directory")
    args = parser.parse_args()

    try:
        main_rules, special_rules = read_raw_rules(args.path)
        validate_rules(main_rules, special_rules)
    except LoadError as e:
        print(f"Error: {e}")
        sys.exit(1)

    print(f"Main rules: {len(main_rules)}, special rules: {len(special_rules)}")
    overlaps = detect_keyword_overlaps(main_rules + special_rules)
    if overlaps:
        print(f"⚠ KEYWORD OVERLAPS: {len(overlaps)}")
        for keyword, names in sorted(overlaps.items()):
            print(f"  '{keyword}' -> {', '.join(names)}")
    else:
        print("✓ No keyword overlaps")
