from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Optional

from yfkit.settings import RetrySettings


@dataclass(frozen=True)
class BackoffPolicy:
    """Exponential backoff: ``min(base_delay * multiplier ** attempt, max_delay)``."""

    base_delay: float = 0.2
    multiplier: float = 2.0
    max_delay: float = 3.0
    jitter: bool = False
    rng: random.Random = field(
        default_factory=random.Random, compare=False, repr=False
    )

    @classmethod
    def from_settings(cls, settings: RetrySettings) -> "BackoffPolicy":
        return cls(
            base_delay=settings.base_delay,
            multiplier=settings.multiplier,
            max_delay=settings.max_delay,
            jitter=settings.jitter,
        )

    def delay(self, attempt: int, retry_after: Optional[float] = None) -> float:
        """Seconds to wait before retry number ``attempt`` (0-based)."""
        ceiling = max(0.0, self.max_delay)
        # Respect Retry-After if present and valid
        if retry_after is not None and retry_after > 0:
            return min(float(retry_after), ceiling)
        try:
            raw = self.base_delay * (self.multiplier ** max(0, attempt))
        except OverflowError:
            raw = ceiling
        wait = min(raw, ceiling)
        if self.jitter:
            wait = min(wait * self.rng.uniform(0.85, 1.15), ceiling)
        return max(0.0, wait)


__all__ = ["BackoffPolicy"]
