from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

# Indicator types understood by the evaluator
INDICATOR_TYPES = frozenset({
    "status_code",
    "header",
    "body",
    "body_regex",
    "favicon_hash",
    "url",
    "group",
})

COMBINATORS = frozenset({"all", "any"})


@dataclass(frozen=True)
class RequestTemplate:
    """Describes the HTTP request a rule needs to see its evidence."""
    method: str = "GET"
    path: str = "/"
    headers: Dict[str, str] = field(default_factory=dict)
    body: str = ""

    def is_root(self) -> bool:
        """True for the plain `GET /` request every main rule shares."""
        return (
            self.method.upper() == "GET"
            and self.path == "/"
            and not self.headers
            and not self.body
        )


ROOT_REQUEST = RequestTemplate()


@dataclass(frozen=True)
class Indicator:
    """A single predicate over a response snapshot."""
    type: str # e.g., 'header', 'body', 'favicon_hash'
    name: Optional[str] = None # Header name for 'header' indicators
    value: Optional[str] = None # Literal to compare or look for
    pattern: Optional[str] = None # Regex for 'header' and 'body_regex'
    values: Tuple[str, ...] = () # Alternatives, used by 'favicon_hash'
    match: Optional["MatchSpec"] = None # Nested spec for 'group'


@dataclass(frozen=True)
class MatchSpec:
    """Ordered indicators combined by ALL or ANY."""
    combinator: str = "all"
    indicators: Tuple[Indicator, ...] = ()


@dataclass(frozen=True)
class FingerprintRule:
    """A named product fingerprint and the request that exposes it."""
    name: str
    priority_weight: int = 0
    request_template: RequestTemplate = ROOT_REQUEST
    match_spec: MatchSpec = field(default_factory=MatchSpec)
