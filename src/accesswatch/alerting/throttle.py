"""Escalation rate limiting."""

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from ..models.access_event import utc_now

logger = logging.getLogger(__name__)


@dataclass
class ThrottleConfig:
    """Configuration for the escalation throttle.

    Attributes:
        window_seconds: Length of the sliding window
        max_events: Escalations allowed per key within the window
        max_keys: Keys tracked before the oldest are evicted
        sweep_interval: Checks between sweeps of expired keys
    """

    window_seconds: int = 24 * 60 * 60
    max_events: int = 1
    max_keys: int = 10000
    sweep_interval: int = 1000

    @classmethod
    def from_environment(cls) -> "ThrottleConfig":
        """Create config from environment variables."""
        return cls(
            window_seconds=int(os.environ.get("ESCALATION_WINDOW_SECONDS", str(24 * 60 * 60))),
            max_events=int(os.environ.get("ESCALATION_MAX_PER_WINDOW", "1")),
            max_keys=int(os.environ.get("ESCALATION_MAX_KEYS", "10000")),
        )


class EscalationThrottle:
    """Bounded sliding-window counter keyed by user.

    check_and_increment() admits at most max_events per key per window.
    Expired keys are swept every sweep_interval calls, and when the map is
    full the key with the oldest activity is evicted.
    """

    def __init__(self, config: Optional[ThrottleConfig] = None):
        self.config = config or ThrottleConfig()
        self._events: Dict[str, List[datetime]] = {}
        self._checks = 0

    def __len__(self) -> int:
        return len(self._events)

    @property
    def window(self) -> timedelta:
        return timedelta(seconds=self.config.window_seconds)

    def check_and_increment(self, key: str, now: Optional[datetime] = None) -> Tuple[bool, int]:
        """Record an attempt for key if the window allows it.

        Args:
            key: Throttle key (user id)
            now: Current time (defaults to the wall clock)

        Returns:
            Tuple of (allowed, count in window including this attempt if allowed)
        """
        now = now or utc_now()
        window_start = now - self.window

        self._checks += 1
        if self._checks % self.config.sweep_interval == 0:
            self.sweep(now)

        recent = [t for t in self._events.get(key, []) if t > window_start]
        if len(recent) >= self.config.max_events:
            self._events[key] = recent
            return False, len(recent)

        if key not in self._events and len(self._events) >= self.config.max_keys:
            self.sweep(now)
            if len(self._events) >= self.config.max_keys:
                self._evict_oldest()

        recent.append(now)
        self._events[key] = recent
        return True, len(recent)

    def sweep(self, now: Optional[datetime] = None) -> int:
        """Drop keys whose events have all left the window.

        Returns:
            Number of keys removed
        """
        now = now or utc_now()
        window_start = now - self.window
        expired = [
            key for key, times in self._events.items()
            if not any(t > window_start for t in times)
        ]
        for key in expired:
            del self._events[key]
        if expired:
            logger.debug(f"Swept {len(expired)} expired escalation keys")
        return len(expired)

    def _evict_oldest(self) -> None:
        oldest_key = min(self._events, key=lambda k: max(self._events[k], default=datetime.min))
        del self._events[oldest_key]
        logger.warning(f"Escalation throttle full, evicted {oldest_key}")

    def reset(self, key: Optional[str] = None) -> None:
        if key is None:
            self._events.clear()
        else:
            self._events.pop(key, None)
