import json
import logging
import os
from typing import Any, Dict, List, Sequence, Tuple

import yaml

from core.errors import LoadError
from core.rules_validator import validate_rules
from models.fingerprint import FingerprintRule, Indicator, MatchSpec, RequestTemplate, ROOT_REQUEST

logger = logging.getLogger(__name__)

DEFAULT_DATABASE = os.path.join(os.path.dirname(__file__), "web_fingerprint.yaml")
RULE_FILE_EXTENSIONS = (".json", ".yaml", ".yml")


class RuleStore:
    """Read-only registry of main rules and special rules.

    Built once before any scan starts and shared by reference. The rule
    sequences are tuples of frozen dataclasses, so concurrent readers need
    no locking.
    """

    def __init__(self, main: Sequence[FingerprintRule], special: Sequence[FingerprintRule]):
        self._main = tuple(main)
        self._special = tuple(special)

    def main_rules(self) -> Tuple[FingerprintRule, ...]:
        return self._main

    def special_rules(self) -> Tuple[FingerprintRule, ...]:
        return self._special

    def __len__(self) -> int:
        return len(self._main) + len(self._special)

    def __repr__(self) -> str:
        return f"RuleStore(main={len(self._main)}, special={len(self._special)})"


def _parse_file(filepath: str) -> Any:
    try:
        with open(filepath, "r", encoding="utf-8") as f:
            if filepath.endswith(".json"):
                return json.load(f)
            return yaml.safe_load(f)
    except OSError as e:
        raise LoadError(f"Cannot read fingerprint database {filepath}: {e}") from e
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise LoadError(f"Cannot parse fingerprint database {filepath}: {e}") from e


def _as_list(value: Any) -> List[Any]:
    # Hand-edited hub files sometimes hold a single string instead of a list
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value] if value else []


def _convert_hub_rule(rule: Dict[str, Any]) -> Dict[str, Any]:
    """Translate a FingerprintHub rule into the native layout."""
    request = rule.get("request") or {}
    match_rules = rule.get("match_rules") or {}

    core = []
    status_code = match_rules.get("status_code") or 0
    if status_code:
        core.append({"type": "status_code", "value": status_code})
    for name, value in (match_rules.get("headers") or {}).items():
        # "*" only asks for the header to be present
        if value in ("*", "", None):
            core.append({"type": "header", "name": name})
        else:
            core.append({"type": "header", "name": name, "value": value})
    for keyword in _as_list(match_rules.get("keyword")):
        core.append({"type": "body", "value": keyword})

    favicon = _as_list(match_rules.get("favicon_hash"))
    if favicon and core:
        match = {
            "combinator": "any",
            "indicators": [
                {"type": "favicon_hash", "values": list(favicon)},
                {"type": "group", "match": {"combinator": "all", "indicators": core}},
            ],
        }
    elif favicon:
        match = {"combinator": "all", "indicators": [{"type": "favicon_hash", "values": list(favicon)}]}
    else:
        match = {"combinator": "all", "indicators": core}

    return {
        "name": rule.get("name"),
        "priority": rule.get("priority", 0),
        "request": {
            "method": request.get("request_method", "GET"),
            "path": request.get("path", "/"),
            "headers": request.get("request_headers") or {},
            "data": request.get("request_data", ""),
        },
        "match": match,
    }


def _request_is_root(rule: Dict[str, Any]) -> bool:
    request = rule.get("request") or {}
    if not isinstance(request, dict) or not isinstance(request.get("headers") or {}, dict):
        return False
    return _build_request(request).is_root()


def read_raw_rules(path: str) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
    """
    Read a database file or directory into (main, special) raw rule lists.

    Both the native mapping layout and FingerprintHub lists are accepted.
    A rule whose request is anything other than a plain `GET /` is a
    special rule regardless of which section it was declared in.
    """
    if os.path.isdir(path):
        filepaths = [
            os.path.join(path, filename)
            for filename in sorted(os.listdir(path))
            if filename.endswith(RULE_FILE_EXTENSIONS)
        ]
        if not filepaths:
            raise LoadError(f"No fingerprint files found in {path}")
    elif os.path.isfile(path):
        filepaths = [path]
    else:
        raise LoadError(f"Fingerprint database not found: {path}")

    main: List[Dict[str, Any]] = []
    special: List[Dict[str, Any]] = []
    for filepath in filepaths:
        data = _parse_file(filepath)
        if isinstance(data, dict):
            declared_main = data.get("fingerprints") or []
            declared_special = data.get("special") or []
            if not isinstance(declared_main, list) or not isinstance(declared_special, list):
                raise LoadError(f"{filepath}: 'fingerprints' and 'special' must be lists")
        elif isinstance(data, list):
            declared_main, declared_special = data, []
        else:
            raise LoadError(f"{filepath}: expected a mapping or a list of rules")

        for rule in declared_main:
            if isinstance(rule, dict) and "match_rules" in rule:
                rule = _convert_hub_rule(rule)
            if isinstance(rule, dict) and not _request_is_root(rule):
                special.append(rule)
            else:
                main.append(rule)
        for rule in declared_special:
            if isinstance(rule, dict) and "match_rules" in rule:
                rule = _convert_hub_rule(rule)
            special.append(rule)

        logger.debug(f"Read {filepath}: {len(main)} main / {len(special)} special rules so far")

    return main, special


def _build_request(request: Dict[str, Any]) -> RequestTemplate:
    path = str(request.get("path") or "/")
    if not path.startswith("/"):
        path = "/" + path
    return RequestTemplate(
        method=str(request.get("method") or "GET").upper(),
        path=path,
        headers={str(k): str(v) for k, v in (request.get("headers") or {}).items()},
        body=str(request.get("data") or ""),
    )


def _build_indicator(raw: Dict[str, Any]) -> Indicator:
    kind = raw["type"]
    value = raw.get("value")
    values = tuple(str(v) for v in raw.get("values") or ())
    if kind == "favicon_hash" and value:
        values = values + (str(value),)
        value = None
    elif kind == "status_code" and value is not None:
        value = str(int(value))
    elif value is not None:
        value = str(value)

    return Indicator(
        type=kind,
        name=raw.get("name"),
        value=value,
        pattern=raw.get("pattern"),
        values=values,
        match=_build_match(raw["match"]) if kind == "group" else None,
    )


def _build_match(raw: Dict[str, Any]) -> MatchSpec:
    return MatchSpec(
        combinator=raw.get("combinator", "all"),
        indicators=tuple(_build_indicator(i) for i in raw["indicators"]),
    )


def _build_rule(raw: Dict[str, Any], special: bool) -> FingerprintRule:
    return FingerprintRule(
        name=raw["name"],
        priority_weight=raw.get("priority", 0),
        request_template=_build_request(raw.get("request") or {}) if special else ROOT_REQUEST,
        match_spec=_build_match(raw["match"]),
    )


def load_rule_store(path: str = DEFAULT_DATABASE) -> RuleStore:
    """
    Load and validate the fingerprint database.

    Raises:
        LoadError: the database is missing or any rule in it is malformed.
    """
    main, special = read_raw_rules(path)
    validate_rules(main, special)
    store = RuleStore(
        [_build_rule(r, special=False) for r in main],
        [_build_rule(r, special=True) for r in special],
    )
    logger.info(f"Loaded {store!r} from {path}")
    return store


def load_rule_file(path: str) -> RuleStore:
    """Load a single rule file, as used when verifying a new fingerprint."""
    if not os.path.isfile(path):
        raise LoadError(f"Rule file not found: {path}")
    return load_rule_store(path)
