from dataclasses import dataclass
from typing import Dict, Optional

from .utils import parse_duration

DEFAULT_CONFIG = {
    "timeout_seconds": "30",
    "inter_target_delay": "3",
    "scroll_count": "2",
    "scroll_interval": "4",
    "settle_delay": "4",
    "max_completed_jobs": "3",
    "headless": "1",
    "extractor_script": "",
}

ALLOWED_CONFIG_KEYS = set(DEFAULT_CONFIG.keys())

# keys whose values are durations ("3", "2.5", "20s", "1m30s")
DURATION_KEYS = {"timeout_seconds", "inter_target_delay", "scroll_interval", "settle_delay"}


@dataclass
class Settings:
    timeout_seconds: float = 30.0
    inter_target_delay: float = 3.0
    scroll_count: int = 2
    scroll_interval: float = 4.0
    settle_delay: float = 4.0
    max_completed_jobs: int = 3
    headless: bool = True
    extractor_script: Optional[str] = None

    @classmethod
    def from_config(cls, cfg: Dict[str, str]) -> "Settings":
        merged = dict(DEFAULT_CONFIG)
        merged.update(cfg or {})
        return cls(
            timeout_seconds=parse_duration(merged["timeout_seconds"]),
            inter_target_delay=parse_duration(merged["inter_target_delay"]),
            scroll_count=int(merged["scroll_count"]),
            scroll_interval=parse_duration(merged["scroll_interval"]),
            settle_delay=parse_duration(merged["settle_delay"]),
            max_completed_jobs=int(merged["max_completed_jobs"]),
            headless=merged["headless"].strip().lower() not in ("0", "false", "no", "off"),
            extractor_script=merged["extractor_script"].strip() or None,
        )
