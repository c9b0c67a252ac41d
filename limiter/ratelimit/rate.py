"""
Refill rates and token/time conversion.
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Union

from shared.errors import ValidationError

# Timestamps are meaningful to the microsecond.
CLOCK_RESOLUTION = 0.000001

# Largest fraction of a token that rounding tolerance may add.
MAX_TOKEN_SLACK = 0.001


class TimeUnit(Enum):
    """Refill time units, valued in seconds.

    Month and year are fixed nominal lengths, not calendar arithmetic, so
    long-period limits drift against the calendar.
    """
    MICROSECOND = 0.000001
    MILLISECOND = 0.001
    SECOND = 1.0
    MINUTE = 60.0
    HOUR = 3600.0
    DAY = 86400.0
    WEEK = 604800.0
    MONTH = 2629743.83
    YEAR = 31556926.0

    @property
    def seconds(self) -> float:
        return self.value

    @classmethod
    def parse(cls, unit: Union["TimeUnit", str]) -> "TimeUnit":
        """Accept a TimeUnit or its lowercase name ("second", "minute", ...)."""
        if isinstance(unit, cls):
            return unit
        try:
            return cls[str(unit).upper()]
        except KeyError:
            raise ValidationError(
                f"Unknown time unit: {unit}",
                details={"unit": unit, "supported": [u.name.lower() for u in cls]}
            ) from None


@dataclass(frozen=True)
class Rate:
    """``tokens`` added per ``unit`` of elapsed time."""

    tokens: int
    unit: TimeUnit = TimeUnit.SECOND

    def __post_init__(self):
        if self.tokens <= 0:
            raise ValidationError("Fill amount must be positive", details={"fill": self.tokens})

    @property
    def tokens_per_second(self) -> float:
        return self.tokens / self.unit.seconds

    def seconds_to_tokens(self, seconds: float) -> int:
        """Whole tokens refilled in ``seconds``.

        Float error in timestamp arithmetic is forgiven up to
        CLOCK_RESOLUTION of elapsed time, but never by more than
        MAX_TOKEN_SLACK of a token, so fast rates cannot round up into
        tokens that were never refilled.
        """
        slack = min(CLOCK_RESOLUTION * self.tokens_per_second, MAX_TOKEN_SLACK)
        return math.floor(seconds * self.tokens_per_second + slack)

    def tokens_to_seconds(self, tokens: float) -> float:
        """Seconds needed to refill ``tokens``."""
        return tokens / self.tokens_per_second

    def tokens_to_microtime(self, tokens: float, now: float) -> float:
        """Timestamp at which a bucket holding ``tokens`` at ``now`` was empty."""
        return now - self.tokens_to_seconds(tokens)

    def microtime_to_tokens(self, microtime: float, now: float) -> int:
        return self.seconds_to_tokens(now - microtime)
