from dataclasses import dataclass, field
from typing import Dict


@dataclass(frozen=True)
class ResponseSnapshot:
    """Everything the evaluator may look at from one HTTP response."""
    url: str # Final URL of this hop
    status_code: int
    headers: Dict[str, str] # Lower-cased header names
    body: str
    title: str = ""

    # Favicon URL -> md5 hex digest
    asset_hashes: Dict[str, str] = field(default_factory=dict)

    @property
    def length(self) -> int:
        return len(self.body)
