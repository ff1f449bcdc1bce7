import logging
from dataclasses import dataclass

from sitemon.errors import SettingsError

logger = logging.getLogger(__name__)

# sane bounds for the three user-facing knobs
MAX_PAYLOAD = 65500
MIN_TIMEOUT_S = 0.05
MAX_TIMEOUT_S = 60.0
MIN_INTERVAL_S = 0.05

@dataclass
class Settings:
    payload_size: int = 256         # echo payload, bytes
    timeout_s: float = 4.0          # per-probe timeout
    interval_s: float = 30.0        # round period
    reload_interval_s: float = 60.0  # 0 = reload only on demand
    sites_path: str = "sites.json"
    ping_bin: str = "ping"
    max_in_flight: int = 256        # cap on concurrent ping subprocesses
    failure_streak: int = 3         # consecutive errors before a target counts as down

    def validate(self) -> "Settings":
        if not 0 <= self.payload_size <= MAX_PAYLOAD:
            raise SettingsError("payload_size", f"must be between 0 and {MAX_PAYLOAD} bytes")
        if not MIN_TIMEOUT_S <= self.timeout_s <= MAX_TIMEOUT_S:
            raise SettingsError("timeout_s", f"must be between {MIN_TIMEOUT_S}s and {MAX_TIMEOUT_S}s")
        if self.interval_s < MIN_INTERVAL_S:
            raise SettingsError("interval_s", f"must be at least {MIN_INTERVAL_S}s")
        if self.reload_interval_s < 0:
            raise SettingsError("reload_interval_s", "must not be negative")
        if self.max_in_flight < 1:
            raise SettingsError("max_in_flight", "must be at least 1")
        if self.failure_streak < 1:
            raise SettingsError("failure_streak", "must be at least 1")
        if self.interval_s < self.timeout_s:
            # allowed: rounds overlap and the store applies results in completion order
            logger.info("interval %.2fs is shorter than timeout %.2fs; rounds will overlap",
                        self.interval_s, self.timeout_s)
        return self
