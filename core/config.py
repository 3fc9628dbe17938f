from dataclasses import dataclass, field
from typing import Dict, Optional

# Default timeout configuration (in seconds)
DEFAULT_TIMEOUT = 10.0
DEFAULT_CONNECT_TIMEOUT = 5.0
DEFAULT_MAX_REDIRECTS = 5
DEFAULT_HONEYPOT_THRESHOLD = 5
DEFAULT_CONCURRENCY = 20
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


@dataclass(frozen=True)
class ScanConfig:
    """Settings shared by every scan in a run."""
    timeout: float = DEFAULT_TIMEOUT # Per request
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    proxy: Optional[str] = None # http(s)://host:port or socks5://host:port
    verify_tls: bool = False
    max_redirects: int = DEFAULT_MAX_REDIRECTS
    user_agent: str = DEFAULT_USER_AGENT
    custom_headers: Dict[str, str] = field(default_factory=dict)

    # Plugin correlation, disabled when plugins_path is None
    plugins_path: Optional[str] = None
    tool: str = "nuclei"
    tool_timeout: Optional[float] = None

    honeypot_threshold: int = DEFAULT_HONEYPOT_THRESHOLD
    scan_timeout: Optional[float] = None # Whole-scan bound, off by default
    concurrency: int = DEFAULT_CONCURRENCY
