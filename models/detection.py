from dataclasses import dataclass, field
from typing import Dict, Set, Any

# Prefix of the synthetic name that replaces an implausible match set
HONEYPOT_PREFIX = "Honeypot"

# Rule name -> priority contribution
MatchOutcome = Dict[str, int]


def honeypot_name(count: int) -> str:
    return f"{HONEYPOT_PREFIX} {count}"


def is_honeypot_name(name: str) -> bool:
    """True if `name` is the sentinel produced by honeypot collapse."""
    prefix, _, count = name.partition(" ")
    return prefix == HONEYPOT_PREFIX and count.isdigit()


@dataclass
class ScanResult:
    """Represents the fingerprinting outcome for one target."""
    url: str
    matched_names: Set[str] = field(default_factory=set)
    priority: int = 0
    length: int = 0
    title: str = ""
    plugins: Set[str] = field(default_factory=set)
    honeypot: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "matched_names": sorted(self.matched_names),
            "priority": self.priority,
            "length": self.length,
            "title": self.title,
            "plugins": sorted(self.plugins),
        }
